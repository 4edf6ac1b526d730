"""
Local Store: durable persistence of entities, the sync queue and the cached session.

Every public write runs in its own transaction behind a single re-entrant lock,
so a record is either the old value or the new value after a crash. This is the
only module that opens database sessions for the sync core.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..core.errors import LocalStorageError, QueueItemNotFound
from ..models import ENTITY_MODELS, Base
from ..models.auth_state import CachedSessionRecord, OfflineStateRecord, SINGLETON_KEY
from ..models.base import EntitySyncStatus, engine as default_engine, utcnow
from ..models.form import FormTemplate
from ..models.mission import Mission
from ..models.sync_queue import SyncQueueItem, QueueStatus

logger = logging.getLogger(__name__)

# Queue fields that may be patched through update_queue_item.
QUEUE_PATCHABLE_FIELDS = {
    "status",
    "attempts",
    "last_attempt",
    "error",
    "permanent",
    "attempts_at_retry",
    "type",
    "payload",
}


def _row_to_dict(row) -> Dict[str, Any]:
    data = {}
    for column in row.__table__.columns:
        value = getattr(row, column.name)
        if isinstance(value, datetime):
            value = value.isoformat()
        data[column.name] = value
    return data


class LocalStore:
    """Durable key-addressed storage for the offline core.

    Entities are addressed by ``(entity_type, id)`` where ``entity_type`` is one
    of ``mission``, ``property_collection`` or ``photo``. Queue rows are scanned
    in ``created_at`` order, ties broken by insertion sequence.
    """

    def __init__(self, bind=None):
        self._engine = bind if bind is not None else default_engine
        self._session_factory = sessionmaker(
            bind=self._engine, autoflush=False, expire_on_commit=False
        )
        self._write_lock = threading.RLock()

    def init_schema(self) -> None:
        """Create any missing tables."""
        try:
            Base.metadata.create_all(bind=self._engine)
        except SQLAlchemyError as exc:
            raise LocalStorageError(f"Could not create local schema: {exc}") from exc

    # ------------------------------------------------------------------
    # Session helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _writing(self):
        with self._write_lock:
            db = self._session_factory()
            try:
                yield db
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error("Local write failed, rolled back: %s", exc)
                raise LocalStorageError(str(exc)) from exc
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    @contextmanager
    def _reading(self):
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            logger.error("Local read failed: %s", exc)
            raise LocalStorageError(str(exc)) from exc
        finally:
            db.close()

    @staticmethod
    def _model_for(entity_type: str):
        try:
            return ENTITY_MODELS[entity_type]
        except KeyError:
            raise ValueError(f"Unknown entity type {entity_type!r}. Choose from: {sorted(ENTITY_MODELS)}")

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def put(self, entity):
        """Insert or overwrite an entity; returns the stored instance."""
        with self._writing() as db:
            stored = db.merge(entity)
        return stored

    def get(self, entity_type: str, entity_id: str):
        model = self._model_for(entity_type)
        with self._reading() as db:
            return db.get(model, entity_id)

    def update_entity(self, entity_type: str, entity_id: str, patch: Dict[str, Any]):
        """Apply ``patch`` to an entity; returns it, or None if it does not exist."""
        model = self._model_for(entity_type)
        with self._writing() as db:
            entity = db.get(model, entity_id)
            if entity is None:
                return None
            for key, value in patch.items():
                if not hasattr(model, key):
                    raise ValueError(f"{model.__name__} has no field {key!r}")
                setattr(entity, key, value)
        return entity

    def delete(self, entity_type: str, entity_id: str) -> bool:
        model = self._model_for(entity_type)
        with self._writing() as db:
            entity = db.get(model, entity_id)
            if entity is None:
                return False
            db.delete(entity)
        return True

    def stage(self, entity, item: SyncQueueItem):
        """Write an entity and its queue row in one transaction (a local capture)."""
        with self._writing() as db:
            stored = db.merge(entity)
            self._add_queue_item(db, item)
        return stored

    def stage_delete(self, entity_type: str, entity_id: str, item: SyncQueueItem) -> bool:
        """Delete an entity and queue its delete mutation in one transaction.

        Returns False, queuing nothing, when the entity does not exist.
        """
        model = self._model_for(entity_type)
        with self._writing() as db:
            entity = db.get(model, entity_id)
            if entity is None:
                return False
            db.delete(entity)
            self._add_queue_item(db, item)
        return True

    # ------------------------------------------------------------------
    # Sync queue
    # ------------------------------------------------------------------

    def _add_queue_item(self, db, item: SyncQueueItem) -> None:
        if item.created_at is None:
            item.created_at = utcnow()
        if item.status is None:
            item.status = QueueStatus.PENDING
        if item.attempts is None:
            item.attempts = 0
        last = db.query(func.max(SyncQueueItem.sequence)).scalar()
        item.sequence = (last or 0) + 1
        db.add(item)

    def enqueue(self, item: SyncQueueItem) -> SyncQueueItem:
        with self._writing() as db:
            self._add_queue_item(db, item)
        return item

    def scan_pending(self) -> List[SyncQueueItem]:
        """Items eligible for a drain, oldest first.

        Includes ``processing`` rows left behind by an interrupted drain and
        ``failed`` rows whose failure was not permanent.
        """
        with self._reading() as db:
            return (
                db.query(SyncQueueItem)
                .filter(
                    or_(
                        SyncQueueItem.status.in_([QueueStatus.PENDING, QueueStatus.PROCESSING]),
                        and_(
                            SyncQueueItem.status == QueueStatus.FAILED,
                            SyncQueueItem.permanent == False,  # noqa: E712
                        ),
                    )
                )
                .order_by(SyncQueueItem.created_at, SyncQueueItem.sequence)
                .all()
            )

    def get_queue_item(self, item_id: str) -> Optional[SyncQueueItem]:
        with self._reading() as db:
            return db.get(SyncQueueItem, item_id)

    def list_queue_items(self, status: Optional[str] = None) -> List[SyncQueueItem]:
        with self._reading() as db:
            query = db.query(SyncQueueItem)
            if status is not None:
                query = query.filter(SyncQueueItem.status == status)
            return query.order_by(SyncQueueItem.created_at, SyncQueueItem.sequence).all()

    def has_open_items(self, reference_id: str, exclude_id: Optional[str] = None) -> bool:
        """True if any non-completed queue row still targets ``reference_id``."""
        with self._reading() as db:
            query = db.query(SyncQueueItem.id).filter(
                SyncQueueItem.reference_id == reference_id,
                SyncQueueItem.status != QueueStatus.COMPLETED,
            )
            if exclude_id is not None:
                query = query.filter(SyncQueueItem.id != exclude_id)
            return query.first() is not None

    def update_queue_item(self, item_id: str, patch: Dict[str, Any]) -> SyncQueueItem:
        """Patch queue bookkeeping fields atomically.

        ``attempts`` never decreases and a ``completed`` item stays completed.
        """
        unknown = set(patch) - QUEUE_PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch queue fields: {sorted(unknown)}")

        with self._writing() as db:
            item = db.get(SyncQueueItem, item_id)
            if item is None:
                raise QueueItemNotFound(item_id)
            if "attempts" in patch and patch["attempts"] < item.attempts:
                raise ValueError(
                    f"attempts for {item_id} cannot decrease ({item.attempts} -> {patch['attempts']})"
                )
            if item.status == QueueStatus.COMPLETED and patch.get("status", QueueStatus.COMPLETED) != QueueStatus.COMPLETED:
                raise ValueError(f"Queue item {item_id} is completed and cannot be reopened")
            for key, value in patch.items():
                setattr(item, key, value)
        return item

    def queue_stats(self) -> Dict[str, int]:
        """Queue depth per status, for status indicators."""
        with self._reading() as db:
            rows = (
                db.query(SyncQueueItem.status, func.count(SyncQueueItem.id))
                .group_by(SyncQueueItem.status)
                .all()
            )
        stats = {status: 0 for status in QueueStatus.ALL}
        for status, count in rows:
            stats[status] = count
        stats["total"] = sum(stats[s] for s in QueueStatus.ALL)
        return stats

    def purge_queue(self, status: str = QueueStatus.COMPLETED, before: Optional[datetime] = None) -> int:
        """Delete completed or failed rows; pending work is never purged."""
        if status not in (QueueStatus.COMPLETED, QueueStatus.FAILED):
            raise ValueError("Only completed or failed queue items can be purged")
        with self._writing() as db:
            query = db.query(SyncQueueItem).filter(SyncQueueItem.status == status)
            if before is not None:
                query = query.filter(SyncQueueItem.created_at < before)
            removed = query.delete(synchronize_session=False)
        logger.info("Purged %s %s queue items", removed, status)
        return removed

    # ------------------------------------------------------------------
    # Reference data cache (missions and form templates)
    # ------------------------------------------------------------------

    def cache_missions(self, missions: Iterable[Mission]) -> int:
        """Store missions pulled from the authority.

        A cached mission with unsynced local edits is left alone; the queued
        mutation carries its state to the authority first.
        """
        count = 0
        with self._writing() as db:
            for mission in missions:
                existing = db.get(Mission, mission.id) if mission.id else None
                if existing is not None and existing.sync_status != EntitySyncStatus.SYNCED:
                    continue
                if mission.sync_status is None:
                    mission.sync_status = EntitySyncStatus.SYNCED
                db.merge(mission)
                count += 1
        return count

    def list_missions(self, assigned_to: Optional[str] = None) -> List[Mission]:
        with self._reading() as db:
            query = db.query(Mission)
            if assigned_to is not None:
                query = query.filter(Mission.assigned_to == assigned_to)
            return query.order_by(Mission.deadline, Mission.id).all()

    def cache_forms(self, forms: Iterable[FormTemplate]) -> int:
        count = 0
        with self._writing() as db:
            for form in forms:
                form.cached_at = utcnow()
                db.merge(form)
                count += 1
        return count

    def list_forms(self, active_only: bool = True) -> List[FormTemplate]:
        with self._reading() as db:
            query = db.query(FormTemplate)
            if active_only:
                query = query.filter(FormTemplate.is_active == True)  # noqa: E712
            return query.order_by(FormTemplate.title).all()

    def clear_cache(self) -> Dict[str, int]:
        """Drop cached form templates and missions that carry no unsynced local edits."""
        with self._writing() as db:
            missions = (
                db.query(Mission)
                .filter(Mission.sync_status == EntitySyncStatus.SYNCED)
                .delete(synchronize_session=False)
            )
            forms = db.query(FormTemplate).delete(synchronize_session=False)
        logger.info("Cleared reference cache: %s missions, %s forms", missions, forms)
        return {"mission": missions, "form": forms}

    def export_data(self) -> Dict[str, List[Dict[str, Any]]]:
        """Dump entity, form and queue tables as plain dicts (support/backup export)."""
        tables = {**ENTITY_MODELS, "form": FormTemplate, "sync_queue": SyncQueueItem}
        data: Dict[str, List[Dict[str, Any]]] = {}
        with self._reading() as db:
            for name, model in tables.items():
                data[name] = [_row_to_dict(row) for row in db.query(model).all()]
        return data

    # ------------------------------------------------------------------
    # Cached session and offline flag (owned by the offline auth cache)
    # ------------------------------------------------------------------

    def get_cached_session_record(self) -> Optional[CachedSessionRecord]:
        with self._reading() as db:
            return db.get(CachedSessionRecord, SINGLETON_KEY)

    def save_cached_session_record(
        self, user: Dict[str, Any], token: str, captured_at: datetime, expires_at: datetime
    ) -> CachedSessionRecord:
        record = CachedSessionRecord(
            id=SINGLETON_KEY,
            user=user,
            token=token,
            captured_at=captured_at,
            expires_at=expires_at,
        )
        with self._writing() as db:
            stored = db.merge(record)
        return stored

    def clear_cached_session_record(self) -> None:
        with self._writing() as db:
            db.query(CachedSessionRecord).delete(synchronize_session=False)

    def get_offline_state(self) -> bool:
        with self._reading() as db:
            record = db.get(OfflineStateRecord, SINGLETON_KEY)
            return bool(record and record.is_offline)

    def set_offline_state(self, is_offline: bool) -> None:
        with self._writing() as db:
            db.merge(OfflineStateRecord(id=SINGLETON_KEY, is_offline=is_offline, changed_at=utcnow()))
