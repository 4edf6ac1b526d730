from sqlalchemy import Column, String, Float, Text, DateTime
from .base import Base, TimestampMixin, SyncTrackedMixin, generate_uuid


class MissionStatus:
    NEW = "new"
    IN_PROGRESS = "in_progress"
    PENDING_PHOTOS = "pending_photos"
    COMPLETED = "completed"
    APPROVED = "approved"
    REJECTED = "rejected"

    ALL = [NEW, IN_PROGRESS, PENDING_PHOTOS, COMPLETED, APPROVED, REJECTED]


class Mission(Base, TimestampMixin, SyncTrackedMixin):
    """A property visit assigned to a field agent. Cached locally for offline work."""
    __tablename__ = "missions"

    id = Column(String, primary_key=True, default=generate_uuid)
    assigned_to = Column(String(100), nullable=True, index=True)
    priority = Column(String(10), nullable=False, default="medium")  # low, medium, high
    status = Column(String(20), nullable=False, default=MissionStatus.NEW, index=True)
    deadline = Column(DateTime, nullable=True)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    address = Column(Text, nullable=True)
    property_code = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
