from sqlalchemy import Column, String, Boolean, DateTime, JSON
from .base import Base, generate_uuid, utcnow


class FormTemplate(Base):
    """Collection form definition cached from the remote authority. Read-only on the device."""
    __tablename__ = "form_templates"

    id = Column(String, primary_key=True, default=generate_uuid)
    version = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    schema_json = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, default=True)
    cached_at = Column(DateTime, nullable=False, default=utcnow)
