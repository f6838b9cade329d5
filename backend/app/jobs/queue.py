"""Originality job queue with broker availability probing.

Jobs are Celery tasks on the Redis broker. The producer side keeps a cached
availability flag that startup, the background monitor and any failed publish
update; while it is down the service runs in degraded mode and ``enqueue``
raises ``QueueUnavailable`` without touching the network.
"""

from __future__ import annotations

import logging
import queue as stdlib_queue
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any, Protocol

import redis
from celery import Celery
from kombu.exceptions import OperationalError

from app.errors import QueueUnavailable
from app.models import utcnow
from app.settings import settings

logger = logging.getLogger(__name__)

ORIGINALITY_TASK = "originality.check"

_BROKER_ERRORS = (OperationalError, redis.RedisError, OSError)


@dataclass
class Job:
    submission_id: int
    version: int
    attempt: int
    storage_key: str
    declared_mime: str
    enqueued_at: str = ""

    def __post_init__(self) -> None:
        if not self.enqueued_at:
            self.enqueued_at = utcnow().isoformat()

    @property
    def job_id(self) -> str:
        return job_id_for(self.submission_id, self.version, self.attempt)

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Job":
        return cls(**payload)


@dataclass
class JobHandle:
    job_id: str
    duplicate: bool = False


def job_id_for(submission_id: int, version: int, attempt: int) -> str:
    return f"originality-{submission_id}-v{version}-a{attempt}"


class JobQueue(Protocol):
    def is_available(self) -> bool:
        """Return the cached broker availability without blocking."""

    def probe(self) -> bool:
        """Check broker connectivity now and refresh the cached flag."""

    def enqueue(self, job: Job) -> JobHandle:
        """Queue a job or raise QueueUnavailable."""

    def drain(self, timeout: float) -> None:
        """Stop accepting jobs and release broker connections."""


class CeleryJobQueue:
    """Publishes originality checks as Celery tasks keyed by job id.

    Delivery guarantees live on the task: it is acknowledged late and
    requeued when its worker dies, so a crashed check runs again.
    """

    def __init__(
        self,
        celery: Celery,
        task_name: str = ORIGINALITY_TASK,
        probe_timeout: float = 2.0,
        connect_attempts: int = 5,
        backoff_base_ms: int = 200,
        backoff_cap_ms: int = 3000,
    ) -> None:
        self.celery = celery
        self.task_name = task_name
        self.probe_timeout = probe_timeout
        self.connect_attempts = max(1, connect_attempts)
        self.backoff_base_ms = backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms
        self._available = False
        self._accepting = True

    def backoff_seconds(self, attempt: int) -> float:
        return min(self.backoff_base_ms * attempt, self.backoff_cap_ms) / 1000

    def _mark_unavailable(self, exc: Exception) -> None:
        if self._available:
            logger.warning("job broker became unavailable", extra={"queue": self.task_name, "error": str(exc)})
        self._available = False

    def is_available(self) -> bool:
        return self._available and self._accepting

    def probe(self) -> bool:
        if not self._accepting:
            return False

        def _on_retry(exc: Exception, interval: float) -> None:
            logger.debug("broker connection retry", extra={"error": str(exc), "interval": interval})

        try:
            with self.celery.connection_for_write() as connection:
                connection.ensure_connection(
                    errback=_on_retry,
                    max_retries=self.connect_attempts - 1,
                    interval_start=self.backoff_seconds(1),
                    interval_step=self.backoff_base_ms / 1000,
                    interval_max=self.backoff_cap_ms / 1000,
                    timeout=self.probe_timeout,
                )
        except _BROKER_ERRORS as exc:
            if self._available:
                self._mark_unavailable(exc)
            else:
                logger.warning(
                    "job broker unreachable; running in degraded mode",
                    extra={"queue": self.task_name, "attempts": self.connect_attempts, "error": str(exc)},
                )
            return False

        if not self._available:
            logger.info("job broker available", extra={"queue": self.task_name})
        self._available = True
        return True

    def enqueue(self, job: Job) -> JobHandle:
        if not self._accepting:
            raise QueueUnavailable("Job queue is draining")
        if not self._available:
            raise QueueUnavailable("Job broker is unavailable")

        try:
            result = self.celery.send_task(
                self.task_name,
                args=[job.to_payload()],
                task_id=job.job_id,
                retry=True,
                retry_policy={"max_retries": 0},
            )
        except _BROKER_ERRORS as exc:
            self._mark_unavailable(exc)
            raise QueueUnavailable(f"Could not enqueue {job.job_id}: {exc}") from exc
        return JobHandle(job_id=result.id)

    def drain(self, timeout: float) -> None:
        del timeout
        self._accepting = False
        self._available = False
        self.celery.close()
        logger.info("job queue closed", extra={"queue": self.task_name})


class InMemoryJobQueue:
    """Single-process queue for tests and broker-less development; callers pull jobs themselves."""

    def __init__(self) -> None:
        self._accepting = True
        self._in_flight = 0
        self._condition = threading.Condition()
        self._jobs: stdlib_queue.Queue[Job] = stdlib_queue.Queue()
        self._seen: set[str] = set()

    @property
    def in_flight(self) -> int:
        with self._condition:
            return self._in_flight

    def is_available(self) -> bool:
        return self._accepting

    def probe(self) -> bool:
        return self._accepting

    def enqueue(self, job: Job) -> JobHandle:
        if not self._accepting:
            raise QueueUnavailable("Job queue is draining")
        with self._condition:
            if job.job_id in self._seen:
                return JobHandle(job_id=job.job_id, duplicate=True)
            self._seen.add(job.job_id)
        self._jobs.put(job)
        return JobHandle(job_id=job.job_id)

    def dequeue(self, timeout: float) -> Job | None:
        if not self._accepting:
            return None
        try:
            job = self._jobs.get(timeout=timeout)
        except stdlib_queue.Empty:
            return None
        with self._condition:
            self._in_flight += 1
        return job

    def ack(self, job: Job) -> None:
        del job
        with self._condition:
            self._in_flight = max(0, self._in_flight - 1)
            self._condition.notify_all()

    def pending(self) -> int:
        return self._jobs.qsize()

    def drain(self, timeout: float) -> None:
        self._accepting = False
        with self._condition:
            idle = self._condition.wait_for(lambda: self._in_flight == 0, timeout=timeout)
        if not idle:
            logger.warning("drain timed out with jobs in flight", extra={"in_flight": self.in_flight})


class QueueMonitor:
    """Re-probes the broker on an interval and reports recoveries."""

    def __init__(self, job_queue: JobQueue, interval: float, on_recovered: Callable[[], None] | None = None) -> None:
        self.job_queue = job_queue
        self.interval = interval
        self.on_recovered = on_recovered
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def check_once(self) -> bool:
        """Probe once; return True when the broker just came back."""
        was_available = self.job_queue.is_available()
        available = self.job_queue.probe()
        recovered = available and not was_available
        if recovered and self.on_recovered is not None:
            self.on_recovered()
        return recovered

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.check_once()
            except Exception:  # noqa: BLE001
                logger.exception("queue monitor check failed")

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="queue-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 1)
            self._thread = None


_queue: JobQueue | None = None


def _create_queue() -> JobQueue:
    backend = settings.queue_backend.lower().strip()
    if backend == "memory":
        return InMemoryJobQueue()
    if backend != "redis":
        raise RuntimeError(f"Unknown queue backend '{settings.queue_backend}'. Use one of: redis, memory")

    from app.jobs.celery_app import celery_app

    return CeleryJobQueue(
        celery_app,
        probe_timeout=settings.redis_probe_timeout_seconds,
        connect_attempts=settings.redis_connect_attempts,
        backoff_base_ms=settings.redis_backoff_base_ms,
        backoff_cap_ms=settings.redis_backoff_cap_ms,
    )


def get_job_queue() -> JobQueue:
    global _queue
    if _queue is None:
        _queue = _create_queue()
    return _queue


def reset_job_queue() -> None:
    set_job_queue(None)


def set_job_queue(job_queue: JobQueue | None) -> None:
    global _queue
    _queue = job_queue
