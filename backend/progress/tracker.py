"""
Progress Tracker
In-memory registry of scrape jobs with publish/subscribe job snapshots
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Set
import asyncio
import logging
import time

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

GLOBAL_TOPIC = "*"


class JobStatus(str, Enum):
    """Job status enumeration."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobSnapshot(BaseModel):
    """Immutable view of a job, published on every mutation."""
    model_config = ConfigDict(frozen=True)

    job_id: str
    status: JobStatus
    total_items: int
    processed_items: int
    saved_items: int
    percentage: int
    current_category: Optional[str] = None
    start_time: datetime
    last_update: datetime
    elapsed_seconds: float
    error: Optional[str] = None
    summary: Optional[dict] = None


@dataclass
class ScrapeJob:
    job_id: str
    status: JobStatus = JobStatus.PENDING
    total_items: int = 0
    processed_items: int = 0
    saved_items: int = 0
    current_category: Optional[str] = None
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_update: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: float = 0.0
    finished_at: Optional[float] = None
    error: Optional[str] = None
    summary: Optional[dict] = None

    @property
    def percentage(self) -> int:
        if self.total_items <= 0:
            return 0
        return max(0, min(100, round(self.processed_items / self.total_items * 100)))


class Subscription:
    """Queue-backed stream of snapshots for one topic. Detaching never touches the job."""

    def __init__(self, tracker: "ProgressTracker", topic: str):
        self._tracker = tracker
        self.topic = topic
        self.queue: "asyncio.Queue[JobSnapshot]" = asyncio.Queue()
        self.closed = False

    async def get(self, timeout: Optional[float] = None) -> JobSnapshot:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def close(self):
        if not self.closed:
            self.closed = True
            self._tracker._detach(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> JobSnapshot:
        if self.closed:
            raise StopAsyncIteration
        return await self.queue.get()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


class ProgressTracker:
    """jobId -> ScrapeJob with per-job and global snapshot topics.

    Mutations never await, so each one is applied and published atomically
    with respect to other coroutines on the loop. Terminal jobs stay readable
    for ``eviction_seconds`` and are evicted lazily.
    """

    def __init__(self, eviction_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.eviction_seconds = eviction_seconds
        self._clock = clock
        self._jobs: Dict[str, ScrapeJob] = {}
        self._subscribers: Dict[str, Set[Subscription]] = {}

    # Job lifecycle

    def start(self, job_id: str, total_items: int = 0) -> JobSnapshot:
        self._evict_expired()
        job = ScrapeJob(
            job_id=job_id,
            status=JobStatus.RUNNING,
            total_items=max(0, total_items),
            started_at=self._clock(),
        )
        self._jobs[job_id] = job
        logger.info(f"📊 Job {job_id} started ({total_items} items)")
        return self._publish(job)

    def set_total(self, job_id: str, total_items: int) -> Optional[JobSnapshot]:
        job = self._running_job(job_id)
        if job is None:
            return None
        job.total_items = max(0, total_items)
        return self._publish(job)

    def increment_processed(self, job_id: str, count: int = 1) -> Optional[JobSnapshot]:
        job = self._running_job(job_id)
        if job is None:
            return None
        job.processed_items += max(0, count)
        return self._publish(job)

    def increment_saved(self, job_id: str, count: int = 1) -> Optional[JobSnapshot]:
        job = self._running_job(job_id)
        if job is None:
            return None
        job.saved_items += max(0, count)
        return self._publish(job)

    def set_current_category(self, job_id: str, category: Optional[str]) -> Optional[JobSnapshot]:
        job = self._running_job(job_id)
        if job is None:
            return None
        job.current_category = category
        return self._publish(job)

    def complete(self, job_id: str, total_saved: Optional[int] = None,
                 summary: Optional[dict] = None) -> Optional[JobSnapshot]:
        job = self._running_job(job_id)
        if job is None:
            return None
        if total_saved is not None:
            job.saved_items = max(job.saved_items, total_saved)
        job.status = JobStatus.COMPLETED
        job.summary = summary
        job.finished_at = self._clock()
        logger.info(f"✅ Job {job_id} completed ({job.saved_items} saved)")
        return self._publish(job)

    def fail(self, job_id: str, error: str, summary: Optional[dict] = None) -> Optional[JobSnapshot]:
        job = self._running_job(job_id)
        if job is None:
            return None
        job.status = JobStatus.FAILED
        job.error = error
        job.summary = summary
        job.finished_at = self._clock()
        logger.error(f"❌ Job {job_id} failed: {error}")
        return self._publish(job)

    # Queries

    def get_job(self, job_id: str) -> Optional[JobSnapshot]:
        self._evict_expired()
        job = self._jobs.get(job_id)
        return self._snapshot(job) if job else None

    def all_jobs(self) -> List[JobSnapshot]:
        self._evict_expired()
        return [self._snapshot(job) for job in self._jobs.values()]

    # Pub/sub

    def subscribe(self, job_id: Optional[str] = None) -> Subscription:
        """Subscribe to one job's snapshots, or to every job when job_id is None."""
        subscription = Subscription(self, job_id or GLOBAL_TOPIC)
        self._subscribers.setdefault(subscription.topic, set()).add(subscription)
        return subscription

    def subscriber_count(self, job_id: Optional[str] = None) -> int:
        return len(self._subscribers.get(job_id or GLOBAL_TOPIC, ()))

    def _detach(self, subscription: Subscription):
        subscribers = self._subscribers.get(subscription.topic)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.topic]

    # Internals

    def _running_job(self, job_id: str) -> Optional[ScrapeJob]:
        job = self._jobs.get(job_id)
        if job is None:
            logger.warning(f"Progress update for unknown job {job_id}")
            return None
        if job.status.is_terminal:
            logger.warning(f"Progress update for finished job {job_id} ignored")
            return None
        return job

    def _snapshot(self, job: ScrapeJob) -> JobSnapshot:
        return JobSnapshot(
            job_id=job.job_id,
            status=job.status,
            total_items=job.total_items,
            processed_items=job.processed_items,
            saved_items=job.saved_items,
            percentage=job.percentage,
            current_category=job.current_category,
            start_time=job.start_time,
            last_update=job.last_update,
            elapsed_seconds=round((job.finished_at or self._clock()) - job.started_at, 3),
            error=job.error,
            summary=job.summary,
        )

    def _publish(self, job: ScrapeJob) -> JobSnapshot:
        job.last_update = datetime.now(timezone.utc)
        snapshot = self._snapshot(job)
        for topic in (job.job_id, GLOBAL_TOPIC):
            for subscription in list(self._subscribers.get(topic, ())):
                subscription.queue.put_nowait(snapshot)
        return snapshot

    def _evict_expired(self):
        now = self._clock()
        expired = [
            job_id for job_id, job in self._jobs.items()
            if job.finished_at is not None and now - job.finished_at >= self.eviction_seconds
        ]
        for job_id in expired:
            del self._jobs[job_id]
            logger.debug(f"Evicted finished job {job_id}")
