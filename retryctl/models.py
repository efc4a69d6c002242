from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    DISCARDED = "discarded"
    EXHAUSTED = "exhausted"
    ESCALATED = "escalated"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    {JobState.SUCCEEDED, JobState.DISCARDED, JobState.EXHAUSTED, JobState.ESCALATED, JobState.CANCELLED}
)
# jobs a worker may pick up once scheduled_at has passed
RUNNABLE_STATES = frozenset({JobState.PENDING, JobState.RETRYING})


class JobDescriptor(BaseModel):
    """
    One job execution lineage.

    ``executions`` counts attempts of the lineage; ``exception_executions``
    holds the attempt counter of each retry declaration that has matched so
    far, keyed by the declaration's key.
    """

    id: str
    job_class: str
    arguments: List[Any] = Field(default_factory=list)  # serialized form
    queue: str = "default"
    priority: int = 0
    state: JobState = JobState.PENDING
    executions: int = 0
    exception_executions: Dict[str, int] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    scheduled_at: Optional[datetime] = None
    last_error: Optional[str] = None
    worker_id: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES


DEFAULTS = {
    "default_queue": "default",
    "default_priority": 0,
    "poll_interval": 1.0,
    "max_error_length": 512,
    "log_level": "INFO",
}
