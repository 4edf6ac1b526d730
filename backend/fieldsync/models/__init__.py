from .base import Base
from .mission import Mission, MissionStatus
from .collection import PropertyCollection
from .photo import Photo, PhotoType
from .form import FormTemplate
from .sync_queue import SyncQueueItem, QueueStatus
from .auth_state import CachedSessionRecord, OfflineStateRecord
from .base import EntitySyncStatus

# Entity tables addressable through the Local Store, keyed by entity type name.
ENTITY_MODELS = {
    "mission": Mission,
    "property_collection": PropertyCollection,
    "photo": Photo,
}

__all__ = [
    "Base",
    "EntitySyncStatus",
    "Mission",
    "MissionStatus",
    "PropertyCollection",
    "Photo",
    "PhotoType",
    "FormTemplate",
    "SyncQueueItem",
    "QueueStatus",
    "CachedSessionRecord",
    "OfflineStateRecord",
    "ENTITY_MODELS",
]
