"""SQLAlchemy ORM models."""

from twincast.models.agent import Agent, AgentStatus
from twincast.models.cast import Cast, Reply
from twincast.models.job import Job, JobStatus
from twincast.models.lock import ResourceLock
from twincast.models.vector import VectorRecord

__all__ = [
    "Agent",
    "AgentStatus",
    "Cast",
    "Reply",
    "Job",
    "JobStatus",
    "ResourceLock",
    "VectorRecord",
]
