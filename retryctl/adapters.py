"""
Queue adapters.

An adapter stores descriptors until they are due and hands them to the
Executor. Every adapter guarantees that a job never runs before its
``scheduled_at``; running late is fine.
"""

import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, List, Optional

from .log import get_logger
from .models import JobDescriptor, JobState
from .storage import cancel_job, upsert_job
from .utils import utcnow

if TYPE_CHECKING:
    from .executor import Executor

logger = get_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class QueueAdapter(ABC):
    executor: Optional["Executor"] = None

    def attach(self, executor: "Executor") -> None:
        self.executor = executor

    @abstractmethod
    def enqueue(self, descriptor: JobDescriptor) -> None:
        """Store a new or re-enqueued descriptor."""

    @abstractmethod
    def update(self, descriptor: JobDescriptor) -> None:
        """Persist a state transition of a descriptor that is not pending."""

    @abstractmethod
    def cancel(self, job_id: str) -> bool:
        """Cancel a pending job. Returns False when nothing was pending."""

    def dispatch(self) -> None:
        """Called after a new lineage is enqueued."""


class _PendingQueue:
    def __init__(self) -> None:
        self._pending: List[JobDescriptor] = []
        self._lock = threading.Lock()

    def push(self, descriptor: JobDescriptor) -> None:
        with self._lock:
            self._pending.append(descriptor)

    def pop_next(self) -> Optional[JobDescriptor]:
        """Earliest scheduled first, then higher priority, then FIFO."""
        with self._lock:
            if not self._pending:
                return None
            best = min(
                range(len(self._pending)),
                key=lambda i: (
                    self._pending[i].scheduled_at or _EPOCH,
                    -self._pending[i].priority,
                    i,
                ),
            )
            return self._pending.pop(best)

    def remove(self, job_id: str) -> Optional[JobDescriptor]:
        with self._lock:
            for i, descriptor in enumerate(self._pending):
                if descriptor.id == job_id:
                    return self._pending.pop(i)
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)


class TestAdapter(QueueAdapter):
    """
    In-memory adapter for tests.

    Nothing runs until :meth:`perform_enqueued_jobs`, which drains pending
    jobs in schedule order and moves ``clock`` forward to each job's
    ``scheduled_at`` instead of sleeping.
    """

    __test__ = False  # keep pytest from collecting this class

    def __init__(self, clock) -> None:
        self.clock = clock
        self._queue = _PendingQueue()
        self.enqueued: List[JobDescriptor] = []
        self.performed: List[JobDescriptor] = []
        self.finished: List[JobDescriptor] = []

    def enqueue(self, descriptor: JobDescriptor) -> None:
        self.enqueued.append(descriptor.model_copy(deep=True))
        self._queue.push(descriptor)

    def update(self, descriptor: JobDescriptor) -> None:
        if descriptor.terminal:
            self.finished.append(descriptor.model_copy(deep=True))

    def cancel(self, job_id: str) -> bool:
        descriptor = self._queue.remove(job_id)
        if descriptor is None:
            return False
        descriptor.state = JobState.CANCELLED
        descriptor.updated_at = self.clock()
        self.update(descriptor)
        return True

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    def perform_enqueued_jobs(self, limit: Optional[int] = None) -> int:
        """Run everything pending, including retries scheduled on the way.

        ``limit`` stops after that many jobs, leaving the rest pending.
        """
        if self.executor is None:
            raise RuntimeError("adapter is not attached to an executor")
        count = 0
        while limit is None or count < limit:
            descriptor = self._queue.pop_next()
            if descriptor is None:
                break
            if descriptor.scheduled_at is not None and descriptor.scheduled_at > self.clock():
                self.clock.travel_to(descriptor.scheduled_at)
            self.performed.append(descriptor.model_copy(deep=True))
            count += 1
            self.executor.run_job(descriptor)
        return count


class InlineAdapter(QueueAdapter):
    """
    Runs jobs in the calling thread as soon as they are enqueued.

    Retries scheduled while a job is running are queued and run after it,
    sleeping until they are due.
    """

    def __init__(self, sleep: Callable[[float], None] = time.sleep, clock: Callable[[], datetime] = utcnow) -> None:
        self.sleep = sleep
        self.clock = clock
        self._queue = _PendingQueue()
        self._draining = threading.local()

    def enqueue(self, descriptor: JobDescriptor) -> None:
        self._queue.push(descriptor)

    def update(self, descriptor: JobDescriptor) -> None:
        logger.debug("Job %s is now %s", descriptor.id, descriptor.state.value)

    def cancel(self, job_id: str) -> bool:
        descriptor = self._queue.remove(job_id)
        if descriptor is None:
            return False
        descriptor.state = JobState.CANCELLED
        return True

    def dispatch(self) -> None:
        if getattr(self._draining, "active", False):
            return
        self._draining.active = True
        try:
            while True:
                descriptor = self._queue.pop_next()
                if descriptor is None:
                    break
                if descriptor.scheduled_at is not None:
                    delay = (descriptor.scheduled_at - self.clock()).total_seconds()
                    if delay > 0:
                        self.sleep(delay)
                self.executor.run_job(descriptor)
        finally:
            self._draining.active = False


class SQLiteAdapter(QueueAdapter):
    """Persistent adapter over :mod:`retryctl.storage`; workers do the running."""

    def enqueue(self, descriptor: JobDescriptor) -> None:
        descriptor.worker_id = None
        upsert_job(descriptor)

    def update(self, descriptor: JobDescriptor) -> None:
        if descriptor.terminal:
            descriptor.worker_id = None
        upsert_job(descriptor)

    def cancel(self, job_id: str) -> bool:
        return cancel_job(job_id)
