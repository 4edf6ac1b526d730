"""
Error taxonomy for the sync core.
Transient and conflict conditions are handled inside the core; the rest surface to the UI.
"""


class FieldSyncError(Exception):
    """Base class for all sync core errors."""


class LocalStorageError(FieldSyncError):
    """A local write or read could not be durably committed."""


class RemoteUnavailable(FieldSyncError):
    """The remote authority could not be reached (timeout, refused, DNS)."""


class RemoteServerError(FieldSyncError):
    """The remote authority answered, but with a server-side failure."""

    def __init__(self, status_code: int, detail: str = ""):
        super().__init__(f"Remote server error {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class AuthExpired(FieldSyncError):
    """The remote authority rejected the session. Re-authentication is required."""


class InvalidCredentials(FieldSyncError):
    """Online login was refused."""


class NotAuthenticated(FieldSyncError):
    """An operation that requires identity ran without a session."""


class MutationDecodeError(FieldSyncError):
    """A queued payload does not decode into a known mutation variant."""


class QueueItemNotFound(FieldSyncError):
    pass


class QueueItemNotRetryable(FieldSyncError):
    pass


class UnexpectedRemoteResponse(RemoteServerError):
    """The remote authority answered with a status or body the client cannot use."""
