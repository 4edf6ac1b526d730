from fastapi import APIRouter, Depends, HTTPException, status
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict
from datetime import datetime
from ..models.collection import PropertyCollection
from ..models.photo import Photo, PhotoType
from ..services.capture import CaptureService
from ..services.offline_auth import CachedSession
from .deps import get_capture_service, get_current_session

router = APIRouter(prefix="/collections", tags=["collections"])


class CollectionCreate(BaseModel):
    mission_id: Optional[str] = None
    form_responses: Dict[str, Any] = {}
    latitude: float
    longitude: float
    accuracy: Optional[float] = None


class CollectionUpdate(BaseModel):
    changes: Dict[str, Any]


class CollectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    mission_id: Optional[str]
    form_responses: Dict[str, Any]
    latitude: float
    longitude: float
    accuracy: Optional[float]
    collected_by: Optional[str]
    collected_at: datetime
    version: int
    sync_status: str


class PhotoCreate(BaseModel):
    filename: str
    local_path: str
    photo_type: str = PhotoType.FACADE
    is_primary: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None


class PhotoResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    collection_id: Optional[str]
    photo_type: str
    filename: str
    remote_path: Optional[str]
    is_primary: bool
    sync_status: str


@router.post("/", response_model=CollectionResponse, status_code=status.HTTP_201_CREATED)
def create_collection(
    collection_in: CollectionCreate,
    capture: CaptureService = Depends(get_capture_service),
    session: CachedSession = Depends(get_current_session),
):
    """Save a property collection locally and queue it for sync."""
    collection = PropertyCollection(collected_by=session.user_id, **collection_in.model_dump())
    return capture.save_collection(collection)


@router.patch("/{collection_id}", response_model=CollectionResponse)
def update_collection(
    collection_id: str,
    update: CollectionUpdate,
    capture: CaptureService = Depends(get_capture_service),
    session: CachedSession = Depends(get_current_session),
):
    try:
        return capture.update_collection(collection_id, update.changes)
    except KeyError:
        raise HTTPException(status_code=404, detail="Collection not found")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.delete("/{collection_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_collection(
    collection_id: str,
    capture: CaptureService = Depends(get_capture_service),
    session: CachedSession = Depends(get_current_session),
):
    if not capture.delete_collection(collection_id):
        raise HTTPException(status_code=404, detail="Collection not found")


@router.post("/{collection_id}/photos", response_model=PhotoResponse, status_code=status.HTTP_201_CREATED)
def add_photo(
    collection_id: str,
    photo_in: PhotoCreate,
    capture: CaptureService = Depends(get_capture_service),
    session: CachedSession = Depends(get_current_session),
):
    if photo_in.photo_type not in PhotoType.ALL:
        raise HTTPException(status_code=400, detail=f"Invalid photo type. Choose from: {PhotoType.ALL}")
    collection = capture.get_collection(collection_id)
    if collection is None:
        raise HTTPException(status_code=404, detail="Collection not found")
    photo = Photo(collection_id=collection_id, mission_id=collection.mission_id, **photo_in.model_dump())
    return capture.save_photo(photo)


@router.delete("/photos/{photo_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_photo(
    photo_id: str,
    capture: CaptureService = Depends(get_capture_service),
    session: CachedSession = Depends(get_current_session),
):
    if not capture.delete_photo(photo_id):
        raise HTTPException(status_code=404, detail="Photo not found")
