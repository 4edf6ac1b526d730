from sqlalchemy import Column, String, Float, Integer, Boolean, DateTime, ForeignKey
from .base import Base, SyncTrackedMixin, generate_uuid, utcnow


class PhotoType:
    FACADE = "facade"
    NUMBER = "number"
    LATERAL = "lateral"
    BACK = "back"

    ALL = [FACADE, NUMBER, LATERAL, BACK]


class Photo(Base, SyncTrackedMixin):
    __tablename__ = "photos"

    id = Column(String, primary_key=True, default=generate_uuid)
    collection_id = Column(String, ForeignKey("property_collections.id"), nullable=True, index=True)
    mission_id = Column(String, ForeignKey("missions.id"), nullable=True, index=True)
    photo_type = Column(String(20), nullable=False, default=PhotoType.FACADE)

    filename = Column(String(255), nullable=False)
    local_path = Column(String(500), nullable=True)
    remote_path = Column(String(500), nullable=True)  # set once the upload is accepted
    is_primary = Column(Boolean, default=False)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    file_size = Column(Integer, nullable=True)
    captured_at = Column(DateTime, nullable=False, default=utcnow)
