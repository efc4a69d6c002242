"""
Test helpers.

    harness = build_harness()
    harness.executor.enqueue(MyJob, 1)
    harness.perform_enqueued_jobs()
    assert harness.buffer.values == [...]
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Union

from .adapters import TestAdapter
from .buffer import JobBuffer
from .config import ExecutorConfig
from .executor import Executor
from .kinds import KindRegistry
from .utils import utcnow


class FrozenClock:
    """A clock that only moves when told to."""

    def __init__(self, now: Optional[datetime] = None) -> None:
        self._now = now or utcnow()
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def travel_to(self, moment: datetime) -> None:
        with self._lock:
            self._now = moment

    def advance(self, seconds: Union[int, float, timedelta]) -> datetime:
        delta = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        with self._lock:
            self._now = self._now + delta
            return self._now


@dataclass
class Harness:
    clock: FrozenClock
    adapter: TestAdapter
    executor: Executor
    buffer: JobBuffer = field(default_factory=JobBuffer)

    def perform_enqueued_jobs(self, limit: Optional[int] = None) -> int:
        return self.adapter.perform_enqueued_jobs(limit)

    def scheduled_delays(self) -> List[float]:
        """Seconds between consecutive performs of the recorded jobs."""
        times = [d.scheduled_at for d in self.adapter.performed]
        return [(b - a).total_seconds() for a, b in zip(times, times[1:])]


def build_harness(
    config: Optional[ExecutorConfig] = None,
    registry: Optional[KindRegistry] = None,
    buffer: Optional[JobBuffer] = None,
    now: Optional[datetime] = None,
) -> Harness:
    clock = FrozenClock(now)
    adapter = TestAdapter(clock)
    executor = Executor(adapter, config=config, clock=clock, registry=registry)
    return Harness(clock=clock, adapter=adapter, executor=executor, buffer=buffer or JobBuffer())
