"""Sync status, queue inspection and manual retry for the field UI."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict

from ..core.errors import AuthExpired, NotAuthenticated, QueueItemNotFound, QueueItemNotRetryable
from ..models import ENTITY_MODELS
from ..models.sync_queue import QueueStatus
from ..services.coordinator import SyncCoordinator
from .deps import get_coordinator

router = APIRouter(prefix="/sync", tags=["sync"])


# ── Response schemas ────────────────────────────────────────────────────────

class QueueItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    reference_id: str
    status: str
    attempts: int
    last_attempt: Optional[datetime]
    error: Optional[str]
    permanent: bool
    created_at: datetime


class DrainResponse(BaseModel):
    eligible: int
    attempts: int
    completed: int
    failed: int
    deferred: int
    conflicts: int
    stopped: Optional[str]


class SyncStatusResponse(BaseModel):
    mode: str
    offline_mode: bool
    authenticated: bool
    auth_expired: bool
    draining: bool
    queue: Dict[str, int]
    last_drain: Optional[DrainResponse]


class EntityStatusResponse(BaseModel):
    id: str
    entity_type: str
    sync_status: str
    version: Optional[int] = None


class ConnectivitySignal(BaseModel):
    online: bool


# ── Endpoints ────────────────────────────────────────────────────────────────

@router.get("/status", response_model=SyncStatusResponse)
def get_sync_status(coordinator: SyncCoordinator = Depends(get_coordinator)):
    return coordinator.status()


@router.get("/queue", response_model=List[QueueItemResponse])
def list_queue(
    status_filter: Optional[str] = Query(None, alias="status"),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    if status_filter is not None and status_filter not in QueueStatus.ALL:
        raise HTTPException(status_code=400, detail=f"Invalid status. Choose from: {QueueStatus.ALL}")
    return coordinator.store.list_queue_items(status_filter)


@router.post("/queue/{item_id}/retry", response_model=QueueItemResponse)
async def retry_queue_item(item_id: str, coordinator: SyncCoordinator = Depends(get_coordinator)):
    try:
        return await coordinator.retry_failed_item(item_id)
    except QueueItemNotFound:
        raise HTTPException(status_code=404, detail="Queue item not found")
    except QueueItemNotRetryable as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except AuthExpired:
        raise HTTPException(status_code=401, detail="Session expired, please log in again")


@router.post("/process", response_model=DrainResponse)
async def process_queue(coordinator: SyncCoordinator = Depends(get_coordinator)):
    """Explicit drain request from the UI."""
    try:
        result = await coordinator.drain()
    except (AuthExpired, NotAuthenticated) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Login required before syncing: {exc}",
        )
    if result is None:
        raise HTTPException(status_code=409, detail="Sync not started: offline or already running")
    return result.as_dict()


@router.get("/entities/{entity_type}/{entity_id}", response_model=EntityStatusResponse)
def get_entity_status(
    entity_type: str,
    entity_id: str,
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    if entity_type not in ENTITY_MODELS:
        raise HTTPException(status_code=400, detail=f"Invalid entity type. Choose from: {sorted(ENTITY_MODELS)}")
    entity = coordinator.store.get(entity_type, entity_id)
    if entity is None:
        raise HTTPException(status_code=404, detail="Entity not found")
    return EntityStatusResponse(
        id=entity.id,
        entity_type=entity_type,
        sync_status=entity.sync_status,
        version=getattr(entity, "version", None),
    )


@router.post("/connectivity", status_code=status.HTTP_202_ACCEPTED)
async def report_connectivity(
    signal: ConnectivitySignal,
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> Dict[str, Any]:
    """Reachability signal from the device shell; settles after the debounce window."""
    coordinator.monitor.report(signal.online)
    return {"observed": "online" if signal.online else "offline", "mode": coordinator.monitor.current_mode.value}


@router.get("/export")
def export_local_data(coordinator: SyncCoordinator = Depends(get_coordinator)) -> Dict[str, List[Dict[str, Any]]]:
    """Support/backup dump of every local table."""
    return coordinator.store.export_data()


@router.delete("/queue")
def purge_queue(
    status_filter: str = Query(QueueStatus.COMPLETED, alias="status"),
    before: Optional[datetime] = None,
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> Dict[str, int]:
    """Remove finished queue rows. Pending work is never purged."""
    try:
        removed = coordinator.store.purge_queue(status_filter, before)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"removed": removed}


@router.delete("/cache")
def clear_reference_cache(coordinator: SyncCoordinator = Depends(get_coordinator)) -> Dict[str, int]:
    """Drop cached missions and form templates; they are pulled again on the next refresh."""
    return coordinator.store.clear_cache()
