"""
Local capture helpers.
Write an entity and queue its mutation in one step, the way the field UI records work offline.
"""
import logging
from typing import Any, Dict, List, Optional

from ..models.base import EntitySyncStatus, generate_uuid, utcnow
from ..models.collection import PropertyCollection
from ..models.form import FormTemplate
from ..models.mission import Mission, MissionStatus
from ..models.photo import Photo
from .local_store import LocalStore
from .mutations import (
    CreateCollection,
    DeleteCollection,
    DeletePhoto,
    UpdateCollection,
    UpdateMissionStatus,
    UploadPhoto,
    queue_item_for,
)

logger = logging.getLogger(__name__)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


class CaptureService:
    """Thin write path used by the UI layer. Every call is durable or raises LocalStorageError."""

    def __init__(self, store: LocalStore):
        self._store = store

    # ── Property collections ────────────────────────────────────────────

    def get_collection(self, collection_id: str) -> Optional[PropertyCollection]:
        return self._store.get("property_collection", collection_id)

    def save_collection(self, collection: PropertyCollection) -> PropertyCollection:
        collection.id = collection.id or generate_uuid()
        collection.version = collection.version or 1
        collection.collected_at = collection.collected_at or utcnow()
        collection.form_responses = dict(collection.form_responses or {})
        collection.sync_status = EntitySyncStatus.PENDING
        mutation = CreateCollection(
            reference_id=collection.id,
            version=collection.version,
            form_responses=collection.form_responses,
            latitude=collection.latitude,
            longitude=collection.longitude,
            accuracy=collection.accuracy,
            mission_id=collection.mission_id,
            collected_by=collection.collected_by,
            collected_at=_iso(collection.collected_at),
        )
        return self._store.stage(collection, queue_item_for(mutation))

    def update_collection(self, collection_id: str, changes: Dict[str, Any]) -> PropertyCollection:
        """Commit a local edit: bump the version and queue just the changed fields."""
        collection = self._store.get("property_collection", collection_id)
        if collection is None:
            raise KeyError(f"Property collection {collection_id} not found")

        for key, value in changes.items():
            if key == "form_responses":
                collection.form_responses = {**(collection.form_responses or {}), **value}
            elif key in PropertyCollection.MERGEABLE_FIELDS:
                setattr(collection, key, value)
            else:
                raise ValueError(f"Field {key!r} cannot be edited")
        collection.version = (collection.version or 1) + 1
        collection.sync_status = EntitySyncStatus.PENDING

        mutation = UpdateCollection(reference_id=collection_id, version=collection.version, changes=dict(changes))
        return self._store.stage(collection, queue_item_for(mutation))

    def delete_collection(self, collection_id: str) -> bool:
        collection = self._store.get("property_collection", collection_id)
        if collection is None:
            return False
        mutation = DeleteCollection(reference_id=collection_id, version=(collection.version or 1) + 1)
        return self._store.stage_delete("property_collection", collection_id, queue_item_for(mutation))

    # ── Photos ──────────────────────────────────────────────────────────

    def save_photo(self, photo: Photo) -> Photo:
        photo.id = photo.id or generate_uuid()
        photo.captured_at = photo.captured_at or utcnow()
        photo.sync_status = EntitySyncStatus.PENDING
        mutation = UploadPhoto(
            reference_id=photo.id,
            filename=photo.filename,
            photo_type=photo.photo_type,
            collection_id=photo.collection_id,
            mission_id=photo.mission_id,
            local_path=photo.local_path,
            is_primary=bool(photo.is_primary),
            latitude=photo.latitude,
            longitude=photo.longitude,
            width=photo.width,
            height=photo.height,
            file_size=photo.file_size,
            captured_at=_iso(photo.captured_at),
        )
        return self._store.stage(photo, queue_item_for(mutation))

    def delete_photo(self, photo_id: str) -> bool:
        return self._store.stage_delete("photo", photo_id, queue_item_for(DeletePhoto(reference_id=photo_id)))

    # ── Missions ────────────────────────────────────────────────────────

    def list_missions(self, assigned_to: Optional[str] = None) -> List[Mission]:
        return self._store.list_missions(assigned_to)

    def update_mission_status(self, mission_id: str, status: str, notes: Optional[str] = None) -> Mission:
        if status not in MissionStatus.ALL:
            raise ValueError(f"Invalid mission status. Choose from: {MissionStatus.ALL}")
        mission = self._store.get("mission", mission_id)
        if mission is None:
            raise KeyError(f"Mission {mission_id} not found")
        mission.status = status
        if notes is not None:
            mission.notes = notes
        mission.sync_status = EntitySyncStatus.PENDING
        mutation = UpdateMissionStatus(reference_id=mission_id, status=status, notes=notes)
        logger.info("Mission %s marked %s locally", mission_id, status)
        return self._store.stage(mission, queue_item_for(mutation))
