"""
Offline Authentication Cache.
Keeps the last successful online session so field agents can keep working
without a network, and revalidates it when connectivity returns.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from ..core.config import settings
from ..core.errors import AuthExpired
from ..models.base import utcnow
from .connectivity import ConnectivityMode
from .local_store import LocalStore
from .remote_client import RemoteAuthorityClient, RemoteSession

logger = logging.getLogger(__name__)


class AuthMode(str, Enum):
    ONLINE_PENDING = "online_pending"  # online; cached session still to be validated
    OFFLINE_AUTHENTICATED = "offline_authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass
class CachedSession:
    user: Dict[str, Any]
    token: str
    captured_at: datetime
    expires_at: datetime

    @property
    def user_id(self) -> Optional[str]:
        return self.user.get("id")


class OfflineAuthCache:
    """Sole owner of the cached session row and the offline-mode flag."""

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteAuthorityClient,
        cache_days: Optional[int] = None,
    ):
        self._store = store
        self._remote = remote
        self.cache_days = cache_days if cache_days is not None else settings.SESSION_CACHE_DAYS

    def get_cached_session(self) -> Optional[CachedSession]:
        record = self._store.get_cached_session_record()
        if record is None:
            return None
        if record.expires_at <= utcnow():
            logger.info("Cached session expired at %s", record.expires_at.isoformat())
            return None
        return CachedSession(
            user=dict(record.user or {}),
            token=record.token,
            captured_at=record.captured_at,
            expires_at=record.expires_at,
        )

    def save_session(self, session: RemoteSession) -> CachedSession:
        """Overwrite the cache. Only called after a successful online authentication."""
        captured_at = utcnow()
        expires_at = captured_at + timedelta(days=self.cache_days)
        self._store.save_cached_session_record(session.user, session.token, captured_at, expires_at)
        return CachedSession(user=dict(session.user), token=session.token, captured_at=captured_at, expires_at=expires_at)

    def clear(self) -> None:
        self._store.clear_cached_session_record()

    def set_offline_mode(self, enabled: bool) -> None:
        self._store.set_offline_state(enabled)

    @property
    def is_offline_mode(self) -> bool:
        return self._store.get_offline_state()

    def can_work_offline(self) -> bool:
        return self.get_cached_session() is not None

    def startup(self, mode: ConnectivityMode) -> AuthMode:
        """Decide the authentication mode at process start."""
        session = self.get_cached_session()
        if mode is ConnectivityMode.OFFLINE:
            if session is None:
                logger.info("Offline with no cached session; online login required")
                self.set_offline_mode(False)
                return AuthMode.UNAUTHENTICATED
            self.set_offline_mode(True)
            return AuthMode.OFFLINE_AUTHENTICATED
        return AuthMode.ONLINE_PENDING if session else AuthMode.UNAUTHENTICATED

    async def sync_with_server(self) -> Optional[CachedSession]:
        """Revalidate the cached session against the remote authority.

        Returns the refreshed session, or None when nothing is cached.
        On rejection the cache is cleared and AuthExpired propagates.
        """
        session = self.get_cached_session()
        if session is None:
            return None
        try:
            user = await self._remote.validate_session(session.token)
        except AuthExpired:
            logger.warning("Cached session rejected by remote authority; re-authentication required")
            self.clear()
            raise
        refreshed = self.save_session(RemoteSession(user=user or session.user, token=session.token))
        self.set_offline_mode(False)
        logger.info("Session refreshed for user %s", refreshed.user_id)
        return refreshed

    async def login(self, username: str, password: str) -> CachedSession:
        remote_session = await self._remote.authenticate(username, password)
        session = self.save_session(remote_session)
        self.set_offline_mode(False)
        logger.info("Online login succeeded for user %s", session.user_id)
        return session

    def logout(self) -> None:
        self.clear()
        self.set_offline_mode(False)
