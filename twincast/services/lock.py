"""Lease-based distributed lock backed by the shared database."""

import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from twincast.config import settings
from twincast.database import utcnow
from twincast.errors import LockTimeout
from twincast.models.lock import ResourceLock

logger = logging.getLogger(__name__)


def user_resource(fid: int) -> str:
    """Lock resource name serialising mutations of one user's agent."""
    return f"lock:user:{fid}"


@dataclass
class LockHandle:
    """Proof of ownership of a lease."""

    resource: str
    token: str
    expires_at: datetime


class DistributedLock:
    """Mutual exclusion keyed by resource name.

    A lease expires on its own after ``lease_ms`` so a crashed holder cannot
    block the resource forever. Holders of long critical sections call
    ``extend`` between steps.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        retry_count: int = settings.LOCK_RETRY_COUNT,
        retry_delay_ms: int = settings.LOCK_RETRY_DELAY_MS,
    ):
        """Initialize the lock."""
        self.session_factory = session_factory
        self.retry_count = retry_count
        self.retry_delay_ms = retry_delay_ms

    def acquire(self, resource: str, lease_ms: int = settings.LOCK_LEASE_MS) -> LockHandle:
        """
        Acquire a lease on ``resource``, retrying while it is held.

        Args:
            resource: Resource name, e.g. ``lock:user:42``
            lease_ms: Lease duration in milliseconds

        Returns:
            LockHandle for ``release`` / ``extend``

        Raises:
            LockTimeout: If the resource is still held after the retry budget
        """
        token = str(uuid.uuid4())
        attempts = self.retry_count + 1

        for attempt in range(attempts):
            handle = self._try_acquire(resource, token, lease_ms)
            if handle:
                logger.debug(f"Acquired {resource} on attempt {attempt + 1}")
                return handle
            if attempt < attempts - 1:
                time.sleep(self.retry_delay_ms / 1000)

        logger.warning(f"Lock timeout on {resource} after {attempts} attempts")
        raise LockTimeout(resource, attempts)

    def _try_acquire(self, resource: str, token: str, lease_ms: int):
        now = utcnow()
        expires_at = now + timedelta(milliseconds=lease_ms)

        db = self.session_factory()
        try:
            db.add(ResourceLock(resource=resource, token=token, expires_at=expires_at))
            try:
                db.commit()
                return LockHandle(resource=resource, token=token, expires_at=expires_at)
            except IntegrityError:
                db.rollback()

            # Held: take it over only if the lease has expired
            result = db.execute(
                update(ResourceLock)
                .where(ResourceLock.resource == resource, ResourceLock.expires_at < now)
                .values(token=token, expires_at=expires_at)
            )
            db.commit()
            if result.rowcount == 1:
                logger.info(f"Took over expired lease on {resource}")
                return LockHandle(resource=resource, token=token, expires_at=expires_at)
            return None
        finally:
            db.close()

    def release(self, handle: LockHandle) -> bool:
        """Release the lease if still owned. Safe to call more than once."""
        db = self.session_factory()
        try:
            result = db.execute(
                delete(ResourceLock).where(
                    ResourceLock.resource == handle.resource,
                    ResourceLock.token == handle.token,
                )
            )
            db.commit()
            released = result.rowcount == 1
            if not released:
                logger.warning(f"Lease on {handle.resource} was already released or expired")
            return released
        finally:
            db.close()

    def extend(self, handle: LockHandle, lease_ms: int = settings.LOCK_LEASE_MS) -> LockHandle:
        """
        Push the lease expiry forward.

        Raises:
            LockTimeout: If ownership was lost (lease expired and taken over)
        """
        expires_at = utcnow() + timedelta(milliseconds=lease_ms)
        db = self.session_factory()
        try:
            result = db.execute(
                update(ResourceLock)
                .where(ResourceLock.resource == handle.resource, ResourceLock.token == handle.token)
                .values(expires_at=expires_at)
            )
            db.commit()
        finally:
            db.close()

        if result.rowcount != 1:
            raise LockTimeout(handle.resource)
        handle.expires_at = expires_at
        return handle

    @contextmanager
    def hold(self, resource: str, lease_ms: int = settings.LOCK_LEASE_MS) -> Iterator[LockHandle]:
        """Scoped acquisition; the lease is released on every exit path."""
        handle = self.acquire(resource, lease_ms)
        try:
            yield handle
        finally:
            self.release(handle)

    def user_lock(self, fid: int, lease_ms: int = settings.LOCK_LEASE_MS):
        """Hold ``lock:user:{fid}``."""
        return self.hold(user_resource(fid), lease_ms)
