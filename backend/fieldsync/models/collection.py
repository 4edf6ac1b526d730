from sqlalchemy import Column, String, Float, Integer, DateTime, ForeignKey, JSON
from .base import Base, SyncTrackedMixin, generate_uuid, utcnow


class PropertyCollection(Base, SyncTrackedMixin):
    """Form responses and GPS fix captured for one property.

    ``version`` is bumped on every locally committed edit and is the
    tie-breaker used by the conflict resolver.
    """
    __tablename__ = "property_collections"

    id = Column(String, primary_key=True, default=generate_uuid)
    mission_id = Column(String, ForeignKey("missions.id"), nullable=True, index=True)
    form_responses = Column(JSON, nullable=False, default=dict)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy = Column(Float, nullable=True)  # metres

    collected_by = Column(String(100), nullable=True)
    collected_at = Column(DateTime, nullable=False, default=utcnow)
    version = Column(Integer, nullable=False, default=1)

    # Fields the resolver compares and merges, besides form_responses keys.
    MERGEABLE_FIELDS = ("latitude", "longitude", "accuracy", "mission_id")
