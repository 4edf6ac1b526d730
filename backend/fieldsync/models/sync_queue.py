from sqlalchemy import Column, String, Integer, Boolean, Text, DateTime, JSON, Index
from .base import Base, generate_uuid, utcnow


class QueueStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = [PENDING, PROCESSING, COMPLETED, FAILED]


class SyncQueueItem(Base):
    """One pending mutation against one entity, replayed against the remote authority."""
    __tablename__ = "sync_queue"

    id = Column(String, primary_key=True, default=generate_uuid)
    type = Column(String(50), nullable=False)  # mutation tag, e.g. "update_collection"
    reference_id = Column(String, nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)

    status = Column(String(20), nullable=False, default=QueueStatus.PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt = Column(DateTime, nullable=True)
    error = Column(Text, nullable=True)

    # Failed items are retried on later drains unless the failure is permanent.
    permanent = Column(Boolean, nullable=False, default=False)
    # Value of ``attempts`` at the last manual retry; the attempt cap counts from here.
    attempts_at_retry = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    sequence = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_sync_queue_order", "created_at", "sequence"),
    )

    @property
    def attempts_since_retry(self) -> int:
        return (self.attempts or 0) - (self.attempts_at_retry or 0)
