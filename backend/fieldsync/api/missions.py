from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional
from pydantic import BaseModel, ConfigDict
from datetime import datetime
from ..services.capture import CaptureService
from ..services.offline_auth import CachedSession
from .deps import get_capture_service, get_current_session

router = APIRouter(prefix="/missions", tags=["missions"])


class MissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    assigned_to: Optional[str]
    priority: str
    status: str
    deadline: Optional[datetime]
    latitude: Optional[float]
    longitude: Optional[float]
    address: Optional[str]
    property_code: Optional[str]
    notes: Optional[str]
    sync_status: str


class MissionStatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = None


@router.get("/", response_model=List[MissionResponse])
def list_missions(
    assigned_to: Optional[str] = None,
    capture: CaptureService = Depends(get_capture_service),
    session: CachedSession = Depends(get_current_session),
):
    """Missions available on this device, including ones cached for offline work."""
    return capture.list_missions(assigned_to)


@router.patch("/{mission_id}/status", response_model=MissionResponse)
def update_mission_status(
    mission_id: str,
    update: MissionStatusUpdate,
    capture: CaptureService = Depends(get_capture_service),
    session: CachedSession = Depends(get_current_session),
):
    try:
        return capture.update_mission_status(mission_id, update.status, update.notes)
    except KeyError:
        raise HTTPException(status_code=404, detail="Mission not found")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
