"""Job model for the durable work queues."""

import uuid

from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from twincast.database import Base, utcnow
from twincast.models.types import JSONType


class JobStatus:
    """Job lifecycle states."""

    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = (COMPLETED, FAILED)


class Job(Base):
    """Job represents one unit of work on a named queue."""

    __tablename__ = "jobs"

    job_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    queue = Column(String(64), nullable=False)
    name = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default=JobStatus.WAITING)
    payload = Column(JSONType, nullable=False)
    priority = Column(Integer, nullable=False, default=0)
    attempts_made = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=1)
    backoff = Column(JSONType)  # {"type": "exponential"|"fixed", "delay_ms": int}
    remove_on_complete = Column(JSONType)  # {"count": int, "age_seconds": int}
    remove_on_fail = Column(JSONType)
    progress = Column(Integer, nullable=False, default=0)
    result = Column(JSONType)
    last_error = Column(Text)
    stalled_count = Column(Integer, nullable=False, default=0)
    process_at = Column(DateTime)
    locked_until = Column(DateTime)
    lock_token = Column(String(36))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    finished_at = Column(DateTime)

    __table_args__ = (
        Index("idx_jobs_queue_status", "queue", "status"),
        Index("idx_jobs_process_at", "process_at"),
    )
