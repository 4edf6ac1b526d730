"""
Sync Coordinator.
Owns every online/offline decision: reacts to connectivity transitions,
refreshes the session and starts drains. At most one drain runs at a time.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..core.errors import (
    AuthExpired,
    NotAuthenticated,
    RemoteServerError,
    RemoteUnavailable,
)
from ..models.base import EntitySyncStatus
from ..models.form import FormTemplate
from ..models.mission import Mission, MissionStatus
from ..models.sync_queue import SyncQueueItem
from .conflict_resolver import ConflictResolver
from .connectivity import ConnectivityMode, ConnectivityMonitor
from .local_store import LocalStore
from .offline_auth import AuthMode, CachedSession, OfflineAuthCache
from .offline_sync import DrainResult, SyncQueueProcessor
from .remote_client import RemoteAuthorityClient

logger = logging.getLogger(__name__)


def _parse_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _mission_from_remote(row: Dict[str, Any]) -> Mission:
    return Mission(
        id=row["id"],
        assigned_to=row.get("assigned_to"),
        priority=row.get("priority") or "medium",
        status=row.get("status") or MissionStatus.NEW,
        deadline=_parse_datetime(row.get("deadline")),
        latitude=row.get("latitude"),
        longitude=row.get("longitude"),
        address=row.get("address"),
        property_code=row.get("property_code"),
        notes=row.get("notes"),
        sync_status=EntitySyncStatus.SYNCED,
    )


def _form_from_remote(row: Dict[str, Any]) -> FormTemplate:
    return FormTemplate(
        id=row["id"],
        version=str(row.get("version") or "1"),
        title=row.get("title") or "",
        schema_json=row.get("schema_json") or {},
        is_active=bool(row.get("is_active", True)),
    )


class SyncCoordinator:

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        auth: OfflineAuthCache,
        processor: SyncQueueProcessor,
        store: LocalStore,
        remote: Optional[RemoteAuthorityClient] = None,
    ):
        self.monitor = monitor
        self.auth = auth
        self.processor = processor
        self.store = store
        self.remote = remote
        self.auth_expired = False
        self.last_result: Optional[DrainResult] = None
        self._draining = False
        self._auth_expired_listeners: List[Callable[[], None]] = []
        self._unsubscribe = monitor.subscribe(self._on_transition)

    @property
    def draining(self) -> bool:
        return self._draining

    def on_auth_expired(self, listener: Callable[[], None]) -> None:
        """Register a UI hook for the forced re-authentication prompt."""
        self._auth_expired_listeners.append(listener)

    async def start(self, check_reachable: Optional[Callable[[], Awaitable[bool]]] = None) -> AuthMode:
        """Startup: settle connectivity, apply the offline auth policy, drain if online."""
        if check_reachable is not None:
            await self.monitor.recompute(check_reachable)
        auth_mode = self.auth.startup(self.monitor.current_mode)
        logger.info("Sync core started: %s, %s", self.monitor.current_mode.value, auth_mode.value)
        if self.monitor.is_online:
            await self._handle_online()
        return auth_mode

    def close(self) -> None:
        self._unsubscribe()
        self.monitor.close()

    # ------------------------------------------------------------------
    # Connectivity transitions
    # ------------------------------------------------------------------

    async def _on_transition(self, previous: ConnectivityMode, current: ConnectivityMode) -> None:
        if current is ConnectivityMode.ONLINE:
            await self._handle_online()
        else:
            self._handle_offline()

    async def _handle_online(self) -> None:
        try:
            session = await self.auth.sync_with_server()
        except AuthExpired:
            self._signal_auth_expired()
            return
        except (RemoteUnavailable, RemoteServerError) as exc:
            logger.warning("Session refresh failed, drain postponed: %s", exc)
            return
        if session is None:
            logger.info("No cached session; queue drain waits for an online login")
            return
        try:
            await self.drain()
        except AuthExpired:
            return  # already signalled by drain()
        await self.refresh_reference_data()

    async def refresh_reference_data(self) -> Optional[Dict[str, int]]:
        """Pull assigned missions and form templates into the offline cache.

        Runs after queued work has drained, so pending local mission edits are
        never overwritten. Returns None when the pull was skipped or failed.
        """
        if self.auth_expired or not self.monitor.is_online:
            return None
        session = self.auth.get_cached_session()
        if session is None or self.remote is None:
            return None
        try:
            missions = await self.remote.fetch_missions(session.token)
            forms = await self.remote.fetch_forms(session.token)
        except AuthExpired:
            self.auth.clear()
            self._signal_auth_expired()
            return None
        except (RemoteUnavailable, RemoteServerError) as exc:
            logger.warning("Reference data refresh failed, keeping cached copy: %s", exc)
            return None
        counts = {
            "mission": self.store.cache_missions(_mission_from_remote(row) for row in missions if row.get("id")),
            "form": self.store.cache_forms(_form_from_remote(row) for row in forms if row.get("id")),
        }
        logger.info("Reference data cached: %s", counts)
        return counts

    def _handle_offline(self) -> None:
        self.auth.set_offline_mode(True)
        logger.info("Offline: %s queue items stay pending", self.store.queue_stats()["pending"])

    def _signal_auth_expired(self) -> None:
        self.auth_expired = True
        for listener in list(self._auth_expired_listeners):
            listener()

    # ------------------------------------------------------------------
    # Drains
    # ------------------------------------------------------------------

    def require_session(self) -> CachedSession:
        if self.auth_expired:
            raise AuthExpired("Re-authentication required")
        session = self.auth.get_cached_session()
        if session is None:
            raise NotAuthenticated("No session available for sync")
        return session

    async def drain(self) -> Optional[DrainResult]:
        """Run one drain. Returns None when one is already running or the device is offline."""
        if self._draining:
            logger.debug("Drain already in progress; request coalesced")
            return None
        session = self.require_session()
        if not self.monitor.is_online:
            logger.info("Drain skipped: offline")
            return None

        self._draining = True
        try:
            result = await self.processor.drain(is_online=lambda: self.monitor.is_online, token=session.token)
        except AuthExpired:
            self.auth.clear()
            self._signal_auth_expired()
            raise
        finally:
            self._draining = False
        self.last_result = result
        return result

    async def retry_failed_item(self, item_id: str) -> SyncQueueItem:
        """Manual retry from the UI; drains straight away when possible."""
        item = self.processor.retry_failed_item(item_id)
        if self.monitor.is_online and not self.auth_expired and self.auth.get_cached_session():
            await self.drain()
            item = self.store.get_queue_item(item_id)
        return item

    # ------------------------------------------------------------------
    # Login / logout / status
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> CachedSession:
        session = await self.auth.login(username, password)
        self.auth_expired = False
        if self.monitor.is_online:
            await self.drain()
            await self.refresh_reference_data()
        return session

    def logout(self) -> None:
        self.auth.logout()

    def status(self) -> Dict[str, Any]:
        session = self.auth.get_cached_session()
        return {
            "mode": self.monitor.current_mode.value,
            "offline_mode": self.auth.is_offline_mode,
            "authenticated": session is not None and not self.auth_expired,
            "auth_expired": self.auth_expired,
            "draining": self._draining,
            "queue": self.store.queue_stats(),
            "last_drain": self.last_result.as_dict() if self.last_result else None,
        }


def build_sync_core(
    bind=None,
    remote: Optional[RemoteAuthorityClient] = None,
    initial_mode: ConnectivityMode = ConnectivityMode.OFFLINE,
    debounce_seconds: Optional[float] = None,
) -> SyncCoordinator:
    """Wire the default object graph."""
    store = LocalStore(bind)
    remote = remote or RemoteAuthorityClient()
    monitor = ConnectivityMonitor(initial_mode=initial_mode, debounce_seconds=debounce_seconds)
    auth = OfflineAuthCache(store, remote)
    processor = SyncQueueProcessor(store, remote, ConflictResolver())
    return SyncCoordinator(monitor, auth, processor, store, remote)
