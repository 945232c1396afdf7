"""Lease rows backing the distributed lock."""

from sqlalchemy import Column, DateTime, String

from twincast.database import Base


class ResourceLock(Base):
    """A held lease on a named resource, e.g. ``lock:user:42``."""

    __tablename__ = "resource_locks"

    resource = Column(String(255), primary_key=True)
    token = Column(String(36), nullable=False)
    expires_at = Column(DateTime, nullable=False)
