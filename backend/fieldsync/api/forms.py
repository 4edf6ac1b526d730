from fastapi import APIRouter, Depends
from typing import Any, Dict, List
from pydantic import BaseModel, ConfigDict
from datetime import datetime
from ..services.capture import CaptureService
from ..services.offline_auth import CachedSession
from .deps import get_capture_service, get_current_session

router = APIRouter(prefix="/forms", tags=["forms"])


class FormTemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    version: str
    title: str
    schema_json: Dict[str, Any]
    is_active: bool
    cached_at: datetime


@router.get("/", response_model=List[FormTemplateResponse])
def list_forms(
    include_inactive: bool = False,
    capture: CaptureService = Depends(get_capture_service),
    session: CachedSession = Depends(get_current_session),
):
    """Form templates cached for offline collection."""
    return capture.list_forms(active_only=not include_inactive)
