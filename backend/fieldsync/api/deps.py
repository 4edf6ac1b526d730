"""Process-wide sync core used by the API routers."""
from fastapi import Depends, HTTPException, status

from ..core.errors import AuthExpired, NotAuthenticated
from ..services.coordinator import SyncCoordinator, build_sync_core
from ..services.capture import CaptureService
from ..services.offline_auth import CachedSession
from ..services.remote_client import RemoteAuthorityClient

remote_client = RemoteAuthorityClient()
sync_core = build_sync_core(remote=remote_client)


def get_coordinator() -> SyncCoordinator:
    return sync_core


def get_capture_service() -> CaptureService:
    return CaptureService(sync_core.store)


def get_current_session(coordinator: SyncCoordinator = Depends(get_coordinator)) -> CachedSession:
    """Local writes need a usable session, online or cached."""
    try:
        return coordinator.require_session()
    except (AuthExpired, NotAuthenticated) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Login required: {exc}",
        )
