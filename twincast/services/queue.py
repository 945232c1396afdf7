"""Durable job queue backed by the jobs table."""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.orm import sessionmaker

from twincast.config import settings
from twincast.database import utcnow
from twincast.errors import InvalidPayload
from twincast.models.job import Job, JobStatus
from twincast.schemas.jobs import (
    ActiveProgress,
    BackoffPolicy,
    CompletedProgress,
    DelayedProgress,
    FailedProgress,
    JobOptions,
    JobProgress,
    RetentionPolicy,
    WaitingProgress,
)

logger = logging.getLogger(__name__)


def default_retention() -> Tuple[RetentionPolicy, RetentionPolicy]:
    """Retention for completed and failed jobs from settings."""
    return (
        RetentionPolicy(count=settings.COMPLETED_KEEP_COUNT, age_seconds=settings.COMPLETED_KEEP_AGE),
        RetentionPolicy(count=settings.FAILED_KEEP_COUNT, age_seconds=settings.FAILED_KEEP_AGE),
    )


class JobQueue:
    """A named queue with per-type payload validation, retries and retention."""

    def __init__(
        self,
        name: str,
        session_factory: sessionmaker,
        payload_schema: Type[BaseModel],
        default_options: Optional[JobOptions] = None,
        max_stalled_count: int = settings.MAX_STALLED_COUNT,
    ):
        """Initialize the queue."""
        self.name = name
        self.session_factory = session_factory
        self.payload_schema = payload_schema
        self.default_options = default_options or JobOptions()
        self.max_stalled_count = max_stalled_count

    # Producer side

    def validate(self, payload: Any) -> BaseModel:
        """
        Validate a payload against the queue schema.

        Raises:
            InvalidPayload: If the payload does not match
        """
        if isinstance(payload, self.payload_schema):
            return payload
        try:
            return self.payload_schema.model_validate(payload)
        except PydanticValidationError as e:
            raise InvalidPayload(f"Invalid payload for queue {self.name}", errors=e.errors()) from e

    def add(self, name: str, payload: Any, options: Optional[JobOptions] = None) -> str:
        """
        Enqueue a job.

        Args:
            name: Job name (informational)
            payload: Job data, validated against the queue schema
            options: Attempts, backoff, priority and retention

        Returns:
            The new job id

        Raises:
            InvalidPayload: If the payload is invalid; nothing is stored
        """
        data = self.validate(payload)
        options = options or self.default_options
        keep_completed, keep_failed = default_retention()

        job = Job(
            job_id=str(uuid.uuid4()),
            queue=self.name,
            name=name,
            status=JobStatus.WAITING,
            payload=data.model_dump(mode="json"),
            priority=options.priority,
            max_attempts=options.attempts,
            backoff=options.backoff.model_dump(),
            remove_on_complete=(options.remove_on_complete or keep_completed).model_dump(),
            remove_on_fail=(options.remove_on_fail or keep_failed).model_dump(),
        )

        db = self.session_factory()
        try:
            db.add(job)
            db.commit()
            job_id = job.job_id
        finally:
            db.close()

        logger.info(f"Enqueued job {job_id} on {self.name} ({name})")
        return job_id

    # Consumer side

    def fetch_next(self, lock_duration: int = settings.JOB_LOCK_DURATION) -> Optional[Job]:
        """
        Claim the next runnable job.

        Due delayed jobs are promoted to waiting first. The claim is a
        conditional update so two workers never activate the same job.

        Returns:
            The claimed job (detached) or None
        """
        now = utcnow()
        db = self.session_factory()
        try:
            db.execute(
                update(Job)
                .where(
                    Job.queue == self.name,
                    Job.status == JobStatus.DELAYED,
                    Job.process_at <= now,
                )
                .values(status=JobStatus.WAITING)
            )
            db.commit()

            candidates = db.execute(
                select(Job.job_id)
                .where(Job.queue == self.name, Job.status == JobStatus.WAITING)
                .order_by(Job.priority.desc(), Job.created_at)
                .limit(5)
                .with_for_update(skip_locked=True)
            ).scalars().all()

            for job_id in candidates:
                token = str(uuid.uuid4())
                result = db.execute(
                    update(Job)
                    .where(Job.job_id == job_id, Job.status == JobStatus.WAITING)
                    .values(
                        status=JobStatus.ACTIVE,
                        lock_token=token,
                        locked_until=now + timedelta(seconds=lock_duration),
                        updated_at=now,
                    )
                )
                db.commit()
                if result.rowcount == 1:
                    job = db.get(Job, job_id)
                    db.expunge(job)
                    return job
            db.commit()
            return None
        finally:
            db.close()

    def complete(self, job_id: str, token: str, result: Optional[Dict[str, Any]] = None) -> bool:
        """Mark an active job completed. Returns False if the claim was lost."""
        now = utcnow()
        db = self.session_factory()
        try:
            updated = db.execute(
                update(Job)
                .where(Job.job_id == job_id, Job.lock_token == token, Job.status == JobStatus.ACTIVE)
                .values(
                    status=JobStatus.COMPLETED,
                    attempts_made=Job.attempts_made + 1,
                    progress=100,
                    result=result,
                    lock_token=None,
                    locked_until=None,
                    finished_at=now,
                    updated_at=now,
                )
            )
            db.commit()
        finally:
            db.close()

        if updated.rowcount != 1:
            logger.warning(f"Job {job_id} on {self.name} lost its claim before completing")
            return False
        self.clean()
        return True

    def fail(self, job_id: str, token: str, error: str) -> Optional[str]:
        """
        Record a failed attempt.

        The job is retried with backoff while attempts remain, otherwise it
        becomes permanently failed.

        Returns:
            The resulting status, or None if the claim was lost
        """
        now = utcnow()
        db = self.session_factory()
        try:
            job = db.execute(
                select(Job).where(
                    Job.job_id == job_id,
                    Job.lock_token == token,
                    Job.status == JobStatus.ACTIVE,
                )
            ).scalar_one_or_none()
            if job is None:
                logger.warning(f"Job {job_id} on {self.name} lost its claim before failing")
                return None

            job.attempts_made += 1
            job.last_error = error
            job.lock_token = None
            job.locked_until = None
            job.updated_at = now

            if job.attempts_made < job.max_attempts:
                backoff = BackoffPolicy.model_validate(job.backoff or {})
                delay_ms = backoff.delay_for(job.attempts_made)
                job.status = JobStatus.DELAYED
                job.process_at = now + timedelta(milliseconds=delay_ms)
                logger.warning(
                    f"Job {job_id} retry {job.attempts_made}/{job.max_attempts} in {delay_ms}ms"
                )
            else:
                job.status = JobStatus.FAILED
                job.finished_at = now
                logger.error(f"Job {job_id} failed after {job.attempts_made} attempts: {error}")

            status = job.status
            db.commit()
        finally:
            db.close()

        if status == JobStatus.FAILED:
            self.clean()
        return status

    def update_progress(self, job_id: str, progress: float) -> int:
        """Report progress (clamped to 0-100) for an active job."""
        value = int(min(max(progress, 0), 100))
        db = self.session_factory()
        try:
            db.execute(
                update(Job)
                .where(Job.job_id == job_id, Job.status == JobStatus.ACTIVE)
                .values(progress=value, updated_at=utcnow())
            )
            db.commit()
        finally:
            db.close()
        return value

    def extend_lock(self, job_id: str, token: str, duration: int = settings.JOB_LOCK_DURATION) -> bool:
        """Keep an in-flight job from being considered stalled."""
        db = self.session_factory()
        try:
            result = db.execute(
                update(Job)
                .where(Job.job_id == job_id, Job.lock_token == token, Job.status == JobStatus.ACTIVE)
                .values(locked_until=utcnow() + timedelta(seconds=duration))
            )
            db.commit()
            return result.rowcount == 1
        finally:
            db.close()

    def check_stalled(self) -> Tuple[int, int]:
        """
        Recover active jobs whose worker stopped renewing the claim.

        Returns:
            (requeued, failed) counts
        """
        now = utcnow()
        requeued = failed = 0
        db = self.session_factory()
        try:
            stalled = db.execute(
                select(Job).where(
                    Job.queue == self.name,
                    Job.status == JobStatus.ACTIVE,
                    Job.locked_until < now,
                )
            ).scalars().all()

            for job in stalled:
                job.stalled_count += 1
                job.lock_token = None
                job.locked_until = None
                job.updated_at = now
                if job.stalled_count > self.max_stalled_count:
                    job.status = JobStatus.FAILED
                    job.finished_at = now
                    job.last_error = "job stalled more than allowable limit"
                    failed += 1
                    logger.error(f"Job {job.job_id} on {self.name} stalled too many times")
                else:
                    job.status = JobStatus.WAITING
                    requeued += 1
                    logger.warning(f"Job {job.job_id} on {self.name} stalled, requeued")
            db.commit()
        finally:
            db.close()
        return requeued, failed

    # Inspection and maintenance

    def get_job(self, job_id: str) -> Optional[Job]:
        db = self.session_factory()
        try:
            job = db.execute(
                select(Job).where(Job.job_id == job_id, Job.queue == self.name)
            ).scalar_one_or_none()
            if job is not None:
                db.expunge(job)
            return job
        finally:
            db.close()

    def get_progress(self, job_id: str) -> Optional[JobProgress]:
        """Status-tagged view of a job for API callers."""
        job = self.get_job(job_id)
        if job is None:
            return None

        if job.status == JobStatus.WAITING:
            db = self.session_factory()
            try:
                ahead = db.execute(
                    select(func.count(Job.job_id)).where(
                        Job.queue == self.name,
                        Job.status == JobStatus.WAITING,
                        or_(
                            Job.priority > job.priority,
                            and_(Job.priority == job.priority, Job.created_at < job.created_at),
                        ),
                    )
                ).scalar()
            finally:
                db.close()
            return WaitingProgress(
                progress=job.progress,
                position=ahead,
                created_at=job.created_at,
                updated_at=job.updated_at,
            )
        if job.status == JobStatus.ACTIVE:
            return ActiveProgress(
                progress=job.progress,
                attempts_made=job.attempts_made,
                created_at=job.created_at,
                updated_at=job.updated_at,
            )
        if job.status == JobStatus.DELAYED:
            return DelayedProgress(
                progress=job.progress,
                delay_reason=job.last_error or "retry backoff",
                process_at=job.process_at,
                created_at=job.created_at,
                updated_at=job.updated_at,
            )
        if job.status == JobStatus.COMPLETED:
            return CompletedProgress(
                progress=job.progress,
                result=job.result,
                created_at=job.created_at,
                updated_at=job.updated_at,
            )
        return FailedProgress(
            progress=job.progress,
            error=job.last_error or "",
            attempts_made=job.attempts_made,
            attempts_remaining=max(job.max_attempts - job.attempts_made, 0),
            created_at=job.created_at,
            updated_at=job.updated_at,
        )

    def counts(self) -> Dict[str, int]:
        """Number of jobs per status."""
        db = self.session_factory()
        try:
            rows = db.execute(
                select(Job.status, func.count(Job.job_id))
                .where(Job.queue == self.name)
                .group_by(Job.status)
            ).all()
        finally:
            db.close()
        counts = {status: 0 for status in (
            JobStatus.WAITING, JobStatus.ACTIVE, JobStatus.DELAYED, JobStatus.COMPLETED, JobStatus.FAILED,
        )}
        counts.update({status: count for status, count in rows})
        return counts

    def clean(self) -> int:
        """Apply the retention policy of finished jobs. Returns deleted count."""
        deleted = 0
        now = utcnow()
        db = self.session_factory()
        try:
            for status, column in ((JobStatus.COMPLETED, Job.remove_on_complete), (JobStatus.FAILED, Job.remove_on_fail)):
                jobs = db.execute(
                    select(Job.job_id, Job.finished_at, column)
                    .where(Job.queue == self.name, Job.status == status)
                    .order_by(Job.finished_at.desc(), Job.created_at.desc())
                ).all()

                doomed = []
                for index, (job_id, finished_at, retention) in enumerate(jobs):
                    policy = RetentionPolicy.model_validate(retention or {})
                    if policy.count is not None and index >= policy.count:
                        doomed.append(job_id)
                    elif policy.age_seconds is not None and _older_than(finished_at, now, policy.age_seconds):
                        doomed.append(job_id)

                if doomed:
                    db.execute(delete(Job).where(Job.job_id.in_(doomed)))
                    deleted += len(doomed)
            db.commit()
        finally:
            db.close()

        if deleted:
            logger.info(f"Removed {deleted} finished jobs from {self.name}")
        return deleted

    def drain(self) -> bool:
        """
        Delete every job of the queue, refusing while any job is active.

        Returns:
            True if the queue was emptied
        """
        db = self.session_factory()
        try:
            active = db.execute(
                select(func.count(Job.job_id)).where(Job.queue == self.name, Job.status == JobStatus.ACTIVE)
            ).scalar()
            if active:
                logger.warning(f"Refusing to drain {self.name}: {active} active jobs")
                return False
            db.execute(delete(Job).where(Job.queue == self.name))
            db.commit()
        finally:
            db.close()
        logger.info(f"Drained queue {self.name}")
        return True


def _older_than(finished_at: Optional[datetime], now: datetime, age_seconds: int) -> bool:
    return finished_at is not None and (now - finished_at).total_seconds() > age_seconds
