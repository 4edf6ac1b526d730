from sqlalchemy import Column, String, Boolean, Text, DateTime, JSON
from .base import utcnow, Base

SINGLETON_KEY = "current"


class CachedSessionRecord(Base):
    """Last known-good identity. Singleton row, written only after an online authentication."""
    __tablename__ = "cached_session"

    id = Column(String, primary_key=True, default=SINGLETON_KEY)
    user = Column(JSON, nullable=False)
    token = Column(Text, nullable=False)
    captured_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)


class OfflineStateRecord(Base):
    """Advisory flag: the system is running without a verified remote session."""
    __tablename__ = "offline_state"

    id = Column(String, primary_key=True, default=SINGLETON_KEY)
    is_offline = Column(Boolean, nullable=False, default=False)
    changed_at = Column(DateTime, nullable=False, default=utcnow)
