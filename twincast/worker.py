"""Background workers pulling jobs from the queues."""

import logging
import signal
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from pydantic import BaseModel

from twincast.config import settings
from twincast.models.job import Job
from twincast.schemas.jobs import JobResult
from twincast.services.queue import JobQueue

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


class JobContext:
    """What a handler sees of the job it runs."""

    def __init__(self, job: Job, data: BaseModel, queue: JobQueue):
        self.id = job.job_id
        self.name = job.name
        self.data = data
        self.attempts_made = job.attempts_made
        self.max_attempts = job.max_attempts
        self.progress = job.progress
        self._queue = queue

    @property
    def is_final_attempt(self) -> bool:
        """True when a failure of this attempt fails the job permanently."""
        return self.attempts_made + 1 >= self.max_attempts

    def update_progress(self, progress: float) -> None:
        self.progress = self._queue.update_progress(self.id, progress)
        logger.info(f"[{self._queue.name}] job #{self.id} progress: {self.progress}%")


JobHandler = Callable[[JobContext], Dict[str, Any]]


class RateLimiter:
    """At most ``max_jobs`` job starts per sliding ``window`` seconds."""

    def __init__(self, max_jobs: int, window: float, clock: Callable[[], float] = time.monotonic):
        self.max_jobs = max_jobs
        self.window = window
        self.clock = clock
        self._starts: Deque[float] = deque()
        self._lock = threading.Lock()

    def try_acquire(self) -> float:
        """
        Reserve a slot.

        Returns:
            0 if a slot was reserved, otherwise seconds until one frees up
        """
        with self._lock:
            now = self.clock()
            while self._starts and now - self._starts[0] >= self.window:
                self._starts.popleft()
            if len(self._starts) < self.max_jobs:
                self._starts.append(now)
                return 0.0
            return self.window - (now - self._starts[0])

    def release(self) -> None:
        """Give back a reserved slot that did not start a job."""
        with self._lock:
            if self._starts:
                self._starts.pop()


class Worker:
    """Runs a handler over one queue with bounded concurrency."""

    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler,
        concurrency: int = 1,
        limiter: Optional[RateLimiter] = None,
        poll_interval: float = settings.WORKER_POLL_INTERVAL,
        lock_duration: int = settings.JOB_LOCK_DURATION,
        stalled_interval: int = settings.STALLED_INTERVAL,
    ):
        """Initialize worker."""
        self.queue = queue
        self.handler = handler
        self.concurrency = concurrency
        self.limiter = limiter
        self.poll_interval = poll_interval
        self.lock_duration = lock_duration
        self.stalled_interval = stalled_interval

        self.stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._in_flight: Dict[str, str] = {}  # job_id -> lock token
        self._in_flight_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self.queue.name

    def run_once(self) -> Optional[str]:
        """
        Fetch and process a single job.

        Returns:
            The processed job id, or None if nothing was runnable
        """
        if self.limiter:
            wait = self.limiter.try_acquire()
            if wait > 0:
                logger.debug(f"[{self.name}] rate limited for {wait:.1f}s")
                return None

        job = self.queue.fetch_next(self.lock_duration)
        if job is None:
            # Empty polls do not count against the rate limit
            if self.limiter:
                self.limiter.release()
            return None

        self.process_job(job)
        return job.job_id

    def process_job(self, job: Job) -> None:
        """Run the handler and report the terminal status back to the queue."""
        logger.info(f"[{self.name}] processing job #{job.job_id} (attempt {job.attempts_made + 1}/{job.max_attempts})")

        with self._in_flight_lock:
            self._in_flight[job.job_id] = job.lock_token

        try:
            data = self.queue.validate(job.payload)
            outcome = self.handler(JobContext(job, data, self.queue))
            result = JobResult.model_validate(outcome or {}).model_dump(mode="json")
        except Exception as e:
            logger.error(f"[{self.name}] failed job #{job.job_id}: {e}", exc_info=True)
            self.queue.fail(job.job_id, job.lock_token, f"{type(e).__name__}: {e}")
        else:
            if self.queue.complete(job.job_id, job.lock_token, result):
                logger.info(f"[{self.name}] completed job #{job.job_id}")
        finally:
            with self._in_flight_lock:
                self._in_flight.pop(job.job_id, None)

    def _loop(self):
        while not self.stop_event.is_set():
            try:
                if self.run_once() is None:
                    self.stop_event.wait(self.poll_interval)
            except Exception as e:
                logger.error(f"[{self.name}] worker error: {e}", exc_info=True)
                self.stop_event.wait(self.poll_interval)

    def _maintenance_loop(self):
        """Renew claims of in-flight jobs and recover stalled ones."""
        heartbeat = max(self.lock_duration / 2, 0.1)
        last_stalled_check = 0.0
        while not self.stop_event.wait(heartbeat):
            with self._in_flight_lock:
                in_flight = list(self._in_flight.items())
            for job_id, token in in_flight:
                try:
                    self.queue.extend_lock(job_id, token, self.lock_duration)
                except Exception as e:
                    logger.error(f"[{self.name}] could not extend lock of job #{job_id}: {e}")

            if time.monotonic() - last_stalled_check >= self.stalled_interval:
                last_stalled_check = time.monotonic()
                try:
                    self.queue.check_stalled()
                except Exception as e:
                    logger.error(f"[{self.name}] stalled check failed: {e}")

    def start(self) -> None:
        """Start the worker threads."""
        self.stop_event.clear()
        for index in range(self.concurrency):
            thread = threading.Thread(target=self._loop, name=f"{self.name}-{index}", daemon=True)
            thread.start()
            self._threads.append(thread)
        thread = threading.Thread(target=self._maintenance_loop, name=f"{self.name}-maintenance", daemon=True)
        thread.start()
        self._threads.append(thread)
        logger.info(f"[{self.name}] worker started with concurrency {self.concurrency}")

    def close(self, timeout: float = 10.0) -> None:
        """
        Stop fetching and wait for in-flight jobs.

        Jobs still running after ``timeout`` are abandoned; their claims
        expire and the stalled check of another worker requeues them.
        """
        self.stop_event.set()
        deadline = time.monotonic() + timeout
        for thread in self._threads:
            thread.join(timeout=max(deadline - time.monotonic(), 0))
        abandoned = [t.name for t in self._threads if t.is_alive()]
        if abandoned:
            logger.warning(f"[{self.name}] abandoned in-flight work in {abandoned}")
        self._threads = []
        logger.info(f"[{self.name}] worker closed")


class WorkerPool:
    """One worker per queue, started and stopped together."""

    def __init__(self, workers: List[Worker]):
        self.workers = workers

    def start(self) -> None:
        for worker in self.workers:
            worker.start()

    def close(self, timeout: float = 10.0) -> None:
        for worker in self.workers:
            worker.close(timeout=timeout)

    def install_signal_handlers(self) -> threading.Event:
        """Close the pool on SIGTERM / SIGINT. Returns the event set on shutdown."""
        stopped = threading.Event()

        def _shutdown(signum, frame):
            logger.info(f"{signal.Signals(signum).name} received, closing workers...")
            self.close()
            stopped.set()

        signal.signal(signal.SIGTERM, _shutdown)
        signal.signal(signal.SIGINT, _shutdown)
        return stopped


def main():
    """Entry point for standalone workers."""
    from twincast.container import build_container

    container = build_container()
    container.create_tables()
    pool = container.worker_pool()
    stopped = pool.install_signal_handlers()
    pool.start()
    logger.info("Workers running, waiting for jobs")
    stopped.wait()
    container.close()


if __name__ == "__main__":
    main()
