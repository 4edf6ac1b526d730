"""
Offline Sync Queue Processor.
Drains locally queued mutations against the remote authority, oldest first,
once connectivity is back. Only this module changes queue item status,
attempts, last attempt and error.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..core.config import settings
from ..core.errors import (
    AuthExpired,
    MutationDecodeError,
    QueueItemNotFound,
    QueueItemNotRetryable,
    RemoteServerError,
    RemoteUnavailable,
)
from ..models import ENTITY_MODELS
from ..models.base import EntitySyncStatus, utcnow
from ..models.sync_queue import SyncQueueItem, QueueStatus
from .conflict_resolver import ConflictResolver, KeepLocal, KeepRemote, Merged
from .local_store import LocalStore
from .mutations import (
    DeleteCollection,
    DeletePhoto,
    Mutation,
    UpdateCollection,
    UploadPhoto,
    decode_mutation,
    queue_item_for,
)
from .remote_client import Accepted, Conflict, RemoteAuthorityClient, Rejected

logger = logging.getLogger(__name__)

STOP_OFFLINE = "offline"
STOP_NETWORK = "network"
STOP_SERVER = "server_error"
STOP_AUTH = "auth_expired"


@dataclass
class DrainResult:
    eligible: int = 0
    attempts: int = 0
    completed: int = 0
    failed: int = 0
    deferred: int = 0
    conflicts: int = 0
    stopped: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "eligible": self.eligible,
            "attempts": self.attempts,
            "completed": self.completed,
            "failed": self.failed,
            "deferred": self.deferred,
            "conflicts": self.conflicts,
            "stopped": self.stopped,
        }


def _entity_patch(entity_type: str, fields: Dict[str, Any], current=None) -> Dict[str, Any]:
    """Map mutation or remote fields onto entity columns. form_responses merge per key."""
    model = ENTITY_MODELS[entity_type]
    patch: Dict[str, Any] = {}
    for key, value in (fields or {}).items():
        if key in ("id", "version", "sync_status") or not hasattr(model, key):
            continue
        if key == "form_responses" and isinstance(value, dict):
            base = dict(getattr(current, "form_responses", None) or {}) if current is not None else {}
            base.update(value)
            value = base
        patch[key] = value
    return patch


class SyncQueueProcessor:
    """
    Replays queued mutations in created_at order.

    Network and server failures stop the drain so the remaining items keep
    their attempt budget; application rejections fail one item and the drain
    moves on. An item never overtakes an open earlier item on the same entity.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteAuthorityClient,
        resolver: Optional[ConflictResolver] = None,
        max_attempts: Optional[int] = None,
        max_conflict_rounds: Optional[int] = None,
    ):
        self._store = store
        self._remote = remote
        self._resolver = resolver or ConflictResolver()
        self.max_attempts = max_attempts if max_attempts is not None else settings.SYNC_MAX_ATTEMPTS
        self.max_conflict_rounds = (
            max_conflict_rounds if max_conflict_rounds is not None else settings.SYNC_MAX_CONFLICT_ROUNDS
        )

    async def drain(
        self,
        is_online: Callable[[], bool] = lambda: True,
        token: Optional[str] = None,
    ) -> DrainResult:
        """One pass over every eligible queue item.

        ``is_online`` is checked between items, never mid-call.
        AuthExpired propagates after the current item is returned to pending.
        """
        items = self._store.scan_pending()
        result = DrainResult(eligible=len(items))
        logger.info("Drain started: %s eligible queue items", len(items))
        # Entities with an earlier item still open; later items on them wait.
        blocked = set()

        for item in items:
            if not is_online():
                result.stopped = STOP_OFFLINE
                logger.info("Connectivity lost; drain stopped before item %s", item.id)
                break
            if item.reference_id in blocked:
                result.deferred += 1
                logger.info("Queue item %s held back behind an earlier item on %s", item.id, item.reference_id)
                continue
            try:
                await self._process_item(item, token, is_online, result)
            except RemoteUnavailable:
                result.stopped = STOP_NETWORK
                result.deferred += 1
                logger.warning("Network failure on item %s; drain stopped", item.id)
                break
            except RemoteServerError as exc:
                result.stopped = STOP_SERVER
                result.deferred += 1
                logger.warning("Remote server error on item %s; drain stopped: %s", item.id, exc)
                break
            except AuthExpired:
                result.stopped = STOP_AUTH
                result.deferred += 1
                logger.warning("Session rejected during drain; remaining items stay queued")
                raise
            current = self._store.get_queue_item(item.id)
            if current is not None and current.status != QueueStatus.COMPLETED and not current.permanent:
                blocked.add(item.reference_id)

        logger.info("Drain finished: %s", result.as_dict())
        return result

    def retry_failed_item(self, item_id: str) -> SyncQueueItem:
        """Manual retry: a failed item goes back to pending with a fresh attempt budget."""
        item = self._store.get_queue_item(item_id)
        if item is None:
            raise QueueItemNotFound(item_id)
        if item.status != QueueStatus.FAILED:
            raise QueueItemNotRetryable(f"Queue item {item_id} is {item.status}, not failed")
        item = self._store.update_queue_item(
            item_id,
            {
                "status": QueueStatus.PENDING,
                "permanent": False,
                "attempts_at_retry": item.attempts,
                "error": None,
            },
        )
        self._mark_entity_from_item(item, EntitySyncStatus.PENDING)
        logger.info("Queue item %s queued for manual retry", item_id)
        return item

    # ------------------------------------------------------------------
    # Per-item processing
    # ------------------------------------------------------------------

    async def _process_item(
        self,
        item: SyncQueueItem,
        token: Optional[str],
        is_online: Callable[[], bool],
        result: DrainResult,
    ) -> None:
        try:
            mutation = decode_mutation(item.type, item.reference_id, item.payload)
        except MutationDecodeError as exc:
            logger.warning("Queue item %s has an unreadable payload: %s", item.id, exc)
            self._fail(item, str(exc), permanent=True)
            result.failed += 1
            return

        rounds = 0
        while True:
            item = self._begin_attempt(item)
            result.attempts += 1
            self._mark_entity(mutation, EntitySyncStatus.SYNCING)

            try:
                outcome = await self._remote.apply_mutation(mutation, token)
            except (RemoteUnavailable, RemoteServerError) as exc:
                self._defer(item, mutation, str(exc))
                raise
            except AuthExpired:
                self._store.update_queue_item(
                    item.id, {"status": QueueStatus.PENDING, "error": "Authentication expired"}
                )
                self._mark_entity(mutation, EntitySyncStatus.PENDING)
                raise

            if isinstance(outcome, Accepted):
                self._complete(item, mutation, outcome)
                result.completed += 1
                return

            if isinstance(outcome, Rejected):
                logger.warning("Queue item %s rejected by remote authority: %s", item.id, outcome.reason)
                self._fail(item, outcome.reason, permanent=True)
                self._mark_entity(mutation, EntitySyncStatus.ERROR)
                result.failed += 1
                return

            result.conflicts += 1
            mutation = self._resolve_conflict(item, mutation, outcome)
            if mutation is None:
                result.completed += 1
                return
            rounds += 1
            if rounds >= self.max_conflict_rounds or not is_online():
                result.deferred += 1
                return
            item = self._store.get_queue_item(item.id)

    def _begin_attempt(self, item: SyncQueueItem) -> SyncQueueItem:
        return self._store.update_queue_item(
            item.id,
            {
                "status": QueueStatus.PROCESSING,
                "attempts": item.attempts + 1,
                "last_attempt": utcnow(),
            },
        )

    def _defer(self, item: SyncQueueItem, mutation: Mutation, error: str) -> None:
        if item.attempts_since_retry >= self.max_attempts:
            logger.warning("Queue item %s gave up after %s attempts", item.id, item.attempts)
            self._fail(item, f"Gave up after {item.attempts} attempts: {error}", permanent=True)
            self._mark_entity(mutation, EntitySyncStatus.ERROR)
            return
        self._store.update_queue_item(item.id, {"status": QueueStatus.PENDING, "error": error})
        self._mark_entity(mutation, EntitySyncStatus.PENDING)

    def _fail(self, item: SyncQueueItem, error: str, permanent: bool) -> None:
        self._store.update_queue_item(
            item.id,
            {"status": QueueStatus.FAILED, "error": error, "permanent": permanent},
        )

    def _complete(self, item: SyncQueueItem, mutation: Mutation, accepted: Accepted) -> None:
        self._store.update_queue_item(item.id, {"status": QueueStatus.COMPLETED, "error": None})
        if isinstance(mutation, (DeleteCollection, DeletePhoto)):
            self._store.delete(mutation.ENTITY_TYPE, mutation.reference_id)
            return
        patch: Dict[str, Any] = {}
        if isinstance(mutation, UploadPhoto) and accepted.remote_path:
            patch["remote_path"] = accepted.remote_path
        if self._store.has_open_items(mutation.reference_id, exclude_id=item.id):
            patch["sync_status"] = EntitySyncStatus.PENDING
        else:
            patch["sync_status"] = EntitySyncStatus.SYNCED
        self._store.update_entity(mutation.ENTITY_TYPE, mutation.reference_id, patch)

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def _resolve_conflict(
        self, item: SyncQueueItem, mutation: Mutation, conflict: Conflict
    ) -> Optional[Mutation]:
        """Apply the resolver's decision.

        Returns the rewritten mutation to resubmit, or None when the item is done.
        The authority numbers versions one ahead of the client (it bumps on every
        accepted write), so remote version N shares a base with local version N - 1.
        """
        if mutation.versioned:
            local_version = mutation.version
            local_fields = mutation.conflict_fields()
            decision = self._resolver.resolve(
                local_version, local_fields, conflict.remote_version - 1, conflict.remote_payload
            )
        else:
            # Unversioned records carry no tie-breaker; the authority's copy stands.
            local_version = None
            decision = KeepRemote()
        entity_type = mutation.ENTITY_TYPE
        current = self._store.get(entity_type, mutation.reference_id)
        logger.info(
            "Conflict on %s %s (local v%s, remote v%s): %s",
            entity_type, mutation.reference_id, local_version, conflict.remote_version,
            type(decision).__name__,
        )

        if isinstance(decision, KeepLocal):
            rewritten = mutation.rewrite(local_fields, mutation.version, conflict.remote_version)
            self._requeue(item, rewritten)
            return rewritten

        if isinstance(decision, Merged):
            new_version = max(local_version, conflict.remote_version) + 1
            if current is not None and mutation.versioned:
                patch = _entity_patch(entity_type, decision.payload, current)
                patch.update({"version": new_version, "sync_status": EntitySyncStatus.PENDING})
                self._store.update_entity(entity_type, mutation.reference_id, patch)
            rewritten = mutation.rewrite(decision.payload, new_version, conflict.remote_version)
            self._requeue(item, rewritten)
            return rewritten

        # KeepRemote: remote state overwrites the local entity, this item is settled.
        if current is not None:
            patch = _entity_patch(entity_type, conflict.remote_payload, current)
            if hasattr(current, "version"):
                patch["version"] = conflict.remote_version
            patch["sync_status"] = EntitySyncStatus.SYNCED
            self._store.update_entity(entity_type, mutation.reference_id, patch)
            current = self._store.get(entity_type, mutation.reference_id)
        self._store.update_queue_item(
            item.id, {"status": QueueStatus.COMPLETED, "error": "Superseded by remote version"}
        )

        if decision.follow_up and current is not None:
            self._queue_follow_up(entity_type, current, decision, conflict)
        return None

    def _requeue(self, item: SyncQueueItem, rewritten: Mutation) -> None:
        self._store.update_queue_item(
            item.id,
            {
                "status": QueueStatus.PENDING,
                "type": rewritten.TYPE,
                "payload": rewritten.to_payload(),
                "error": None,
            },
        )

    def _queue_follow_up(self, entity_type: str, current, decision: KeepRemote, conflict: Conflict) -> None:
        """Keep a colliding local edit as a new, newer-versioned mutation."""
        new_version = conflict.remote_version + 1
        follow_up = UpdateCollection(
            reference_id=current.id,
            version=new_version,
            changes=dict(decision.follow_up),
        )
        patch = _entity_patch(entity_type, decision.follow_up, current)
        patch.update({"version": new_version, "sync_status": EntitySyncStatus.PENDING})
        self._store.update_entity(entity_type, current.id, patch)
        follow_item = self._store.enqueue(queue_item_for(follow_up))
        logger.info("Local edit on %s kept as follow-up mutation %s (v%s)", current.id, follow_item.id, new_version)

    # ------------------------------------------------------------------
    # Entity status
    # ------------------------------------------------------------------

    def _mark_entity(self, mutation: Mutation, status: str) -> None:
        self._store.update_entity(mutation.ENTITY_TYPE, mutation.reference_id, {"sync_status": status})

    def _mark_entity_from_item(self, item: SyncQueueItem, status: str) -> None:
        try:
            mutation = decode_mutation(item.type, item.reference_id, item.payload)
        except MutationDecodeError:
            return
        self._mark_entity(mutation, status)
