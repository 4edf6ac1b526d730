"""
Tagged mutation variants carried by the sync queue.

Each variant owns its payload shape and its request encoding, so the queue
row stays a plain (type, reference_id, payload) triple while the processor
works with typed objects.
"""
from dataclasses import dataclass, field, asdict, fields as dataclass_fields
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional, Type

from ..core.errors import MutationDecodeError
from ..models.base import generate_uuid, utcnow
from ..models.sync_queue import SyncQueueItem, QueueStatus


@dataclass
class RemoteRequest:
    """HTTP call that applies a mutation on the remote authority."""
    method: str
    path: str
    json: Dict[str, Any] = field(default_factory=dict)
    upload_path: Optional[str] = None  # local file sent alongside the JSON body


@dataclass
class Mutation:
    TYPE: ClassVar[str] = ""
    ENTITY_TYPE: ClassVar[str] = ""

    reference_id: str

    def to_payload(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload.pop("reference_id")
        return payload

    @classmethod
    def from_payload(cls, reference_id: str, payload: Dict[str, Any]) -> "Mutation":
        known = {f.name for f in dataclass_fields(cls)} - {"reference_id"}
        unknown = set(payload) - known
        if unknown:
            raise MutationDecodeError(f"Unexpected fields for {cls.TYPE}: {sorted(unknown)}")
        return cls(reference_id=reference_id, **payload)

    def request(self) -> RemoteRequest:
        raise NotImplementedError

    @property
    def versioned(self) -> bool:
        return False


@dataclass
class VersionedMutation(Mutation):
    """Mutation on a versioned entity; eligible for conflict resolution.

    ``version`` is the local version of the edit. ``base_version`` is the remote
    version the edit is rebased onto after a conflict; ``None`` means the remote
    should check against its own record.
    """
    version: int = 1
    base_version: Optional[int] = None

    @property
    def versioned(self) -> bool:
        return True

    def conflict_fields(self) -> Dict[str, Any]:
        return {}

    def rewrite(self, fields: Dict[str, Any], version: int, base_version: Optional[int]) -> "VersionedMutation":
        raise NotImplementedError

    def _version_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"version": self.version}
        if self.base_version is not None:
            body["base_version"] = self.base_version
        return body


# ── Property collections ────────────────────────────────────────────────────

@dataclass
class CreateCollection(VersionedMutation):
    TYPE: ClassVar[str] = "create_collection"
    ENTITY_TYPE: ClassVar[str] = "property_collection"

    form_responses: Dict[str, Any] = field(default_factory=dict)
    latitude: float = 0.0
    longitude: float = 0.0
    accuracy: Optional[float] = None
    mission_id: Optional[str] = None
    collected_by: Optional[str] = None
    collected_at: Optional[str] = None  # ISO-8601

    def conflict_fields(self) -> Dict[str, Any]:
        return {
            "form_responses": dict(self.form_responses),
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "mission_id": self.mission_id,
        }

    def rewrite(self, fields, version, base_version):
        merged = {**self.conflict_fields(), **fields}
        return CreateCollection(
            reference_id=self.reference_id,
            version=version,
            base_version=base_version,
            form_responses=merged.get("form_responses") or {},
            latitude=merged.get("latitude", self.latitude),
            longitude=merged.get("longitude", self.longitude),
            accuracy=merged.get("accuracy"),
            mission_id=merged.get("mission_id"),
            collected_by=self.collected_by,
            collected_at=self.collected_at,
        )

    def request(self) -> RemoteRequest:
        body = {"id": self.reference_id, **self.conflict_fields(), **self._version_body()}
        body["collected_by"] = self.collected_by
        body["collected_at"] = self.collected_at
        return RemoteRequest("POST", "/api/property-collections", body)


@dataclass
class UpdateCollection(VersionedMutation):
    TYPE: ClassVar[str] = "update_collection"
    ENTITY_TYPE: ClassVar[str] = "property_collection"

    changes: Dict[str, Any] = field(default_factory=dict)

    def conflict_fields(self) -> Dict[str, Any]:
        return dict(self.changes)

    def rewrite(self, fields, version, base_version):
        return UpdateCollection(
            reference_id=self.reference_id,
            version=version,
            base_version=base_version,
            changes=dict(fields),
        )

    def request(self) -> RemoteRequest:
        body = {"changes": self.changes, **self._version_body()}
        return RemoteRequest("PATCH", f"/api/property-collections/{self.reference_id}", body)


@dataclass
class DeleteCollection(VersionedMutation):
    TYPE: ClassVar[str] = "delete_collection"
    ENTITY_TYPE: ClassVar[str] = "property_collection"

    def rewrite(self, fields, version, base_version):
        return DeleteCollection(reference_id=self.reference_id, version=version, base_version=base_version)

    def request(self) -> RemoteRequest:
        return RemoteRequest("DELETE", f"/api/property-collections/{self.reference_id}", self._version_body())


# ── Photos ──────────────────────────────────────────────────────────────────

@dataclass
class UploadPhoto(Mutation):
    TYPE: ClassVar[str] = "upload_photo"
    ENTITY_TYPE: ClassVar[str] = "photo"

    filename: str = ""
    photo_type: str = "facade"
    collection_id: Optional[str] = None
    mission_id: Optional[str] = None
    local_path: Optional[str] = None
    is_primary: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None
    captured_at: Optional[str] = None

    def request(self) -> RemoteRequest:
        body = self.to_payload()
        body.pop("local_path")
        body["id"] = self.reference_id
        return RemoteRequest("POST", "/api/photos", body, upload_path=self.local_path)


@dataclass
class DeletePhoto(Mutation):
    TYPE: ClassVar[str] = "delete_photo"
    ENTITY_TYPE: ClassVar[str] = "photo"

    def request(self) -> RemoteRequest:
        return RemoteRequest("DELETE", f"/api/photos/{self.reference_id}")


# ── Missions ────────────────────────────────────────────────────────────────

@dataclass
class UpdateMissionStatus(Mutation):
    TYPE: ClassVar[str] = "update_mission_status"
    ENTITY_TYPE: ClassVar[str] = "mission"

    status: str = "in_progress"
    notes: Optional[str] = None

    def request(self) -> RemoteRequest:
        return RemoteRequest(
            "PATCH",
            f"/api/missions/{self.reference_id}/status",
            {"status": self.status, "notes": self.notes},
        )


MUTATION_TYPES: Dict[str, Type[Mutation]] = {
    cls.TYPE: cls
    for cls in (
        CreateCollection,
        UpdateCollection,
        DeleteCollection,
        UploadPhoto,
        DeletePhoto,
        UpdateMissionStatus,
    )
}


def decode_mutation(mutation_type: str, reference_id: str, payload: Optional[Dict[str, Any]]) -> Mutation:
    """Rebuild the typed mutation stored in a queue row."""
    cls = MUTATION_TYPES.get(mutation_type)
    if cls is None:
        raise MutationDecodeError(f"Unknown mutation type: {mutation_type!r}")
    try:
        return cls.from_payload(reference_id, dict(payload or {}))
    except TypeError as exc:
        raise MutationDecodeError(f"Invalid payload for {mutation_type}: {exc}") from exc


def queue_item_for(mutation: Mutation, created_at: Optional[datetime] = None) -> SyncQueueItem:
    """Build a fresh ``pending`` queue row for a mutation."""
    return SyncQueueItem(
        id=generate_uuid(),
        type=mutation.TYPE,
        reference_id=mutation.reference_id,
        payload=mutation.to_payload(),
        status=QueueStatus.PENDING,
        attempts=0,
        permanent=False,
        attempts_at_retry=0,
        created_at=created_at or utcnow(),
    )
