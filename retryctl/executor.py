"""
Executor: runs one attempt of a job lineage and applies the retry decision.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Type

from .adapters import QueueAdapter
from .config import ExecutorConfig
from .errors import EnqueueError, JobClassNotFoundError
from .job import Job, resolve_job_class
from .kinds import KindRegistry
from .log import get_logger
from .models import JobDescriptor, JobState
from .policy import Action, Decision, classify
from .serialization import deserialize, serialize
from .utils import utcnow

logger = get_logger(__name__)


@dataclass
class Outcome:
    state: JobState
    descriptor: JobDescriptor
    decision: Optional[Decision] = None
    result: Any = None


class Executor:
    def __init__(
        self,
        adapter: QueueAdapter,
        config: Optional[ExecutorConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        registry: Optional[KindRegistry] = None,
    ) -> None:
        self.adapter = adapter
        self.config = config or ExecutorConfig()
        self.clock = clock
        self.registry = registry
        adapter.attach(self)

    # -----------------------------
    # Enqueue
    # -----------------------------
    def enqueue(
        self,
        job_cls: Type[Job],
        *arguments: Any,
        wait: Optional[float] = None,
        queue: Optional[str] = None,
        priority: Optional[int] = None,
        job_id: Optional[str] = None,
    ) -> JobDescriptor:
        """Start a new lineage for ``job_cls`` with ``arguments``."""
        now = self.clock()
        descriptor = JobDescriptor(
            id=job_id or uuid.uuid4().hex,
            job_class=job_cls.job_name(),
            arguments=serialize(arguments),
            queue=queue or job_cls.queue or self.config.default_queue,
            priority=priority if priority is not None else (
                job_cls.priority if job_cls.priority is not None else self.config.default_priority
            ),
            created_at=now,
            updated_at=now,
            scheduled_at=now + timedelta(seconds=wait) if wait else now,
        )
        self._submit(descriptor)
        logger.info("Enqueued %s (%s) on %s", descriptor.job_class, descriptor.id, descriptor.queue)
        self.adapter.dispatch()
        return descriptor

    def cancel(self, job_id: str) -> bool:
        cancelled = self.adapter.cancel(job_id)
        if cancelled:
            logger.info("Cancelled job %s", job_id)
        return cancelled

    def _submit(self, descriptor: JobDescriptor) -> None:
        try:
            self.adapter.enqueue(descriptor)
        except EnqueueError:
            raise
        except Exception as e:
            raise EnqueueError(descriptor.id, str(e)) from e

    # -----------------------------
    # Run
    # -----------------------------
    def run_job(self, descriptor: JobDescriptor) -> Outcome:
        """
        Run one attempt.

        Retries, discards and handled exhaustion return an Outcome. Anything
        else (no matching rule, exhaustion without handler, a failing
        handler, a failed re-enqueue) marks the job escalated and raises.
        """
        if descriptor.terminal:
            logger.debug("Skipping job %s in terminal state %s", descriptor.id, descriptor.state.value)
            return Outcome(state=descriptor.state, descriptor=descriptor)

        try:
            job_cls = resolve_job_class(descriptor.job_class)
        except JobClassNotFoundError as e:
            self._finish(descriptor, JobState.ESCALATED, error=e)
            logger.error("Cannot run job %s: %s", descriptor.id, e)
            raise

        descriptor.executions += 1
        descriptor.state = JobState.RUNNING
        descriptor.updated_at = self.clock()
        job = job_cls(descriptor)
        logger.debug("Performing %s (%s), execution %d", descriptor.job_class, descriptor.id, descriptor.executions)

        try:
            job.arguments = deserialize(descriptor.arguments)
            result = job.perform(*job.arguments)
        except Exception as error:
            return self._handle_failure(job_cls, job, descriptor, error)

        self._finish(descriptor, JobState.SUCCEEDED)
        logger.info("Performed %s (%s) after %d execution(s)", descriptor.job_class, descriptor.id, descriptor.executions)
        return Outcome(state=JobState.SUCCEEDED, descriptor=descriptor, result=result)

    def _handle_failure(self, job_cls: Type[Job], job: Job, descriptor: JobDescriptor, error: Exception) -> Outcome:
        try:
            decision = classify(
                error,
                job_cls.retry_rules,
                descriptor.exception_executions,
                job_cls.discard_rules,
                registry=self.registry,
            )
        except Exception as classify_error:
            self._finish(descriptor, JobState.ESCALATED, error=classify_error)
            logger.error(
                "Could not decide how to handle %s from %s (%s): %s",
                type(error).__name__,
                descriptor.job_class,
                descriptor.id,
                classify_error,
            )
            raise

        if decision.action is Action.RETRY:
            self._reschedule(descriptor, decision)
            return Outcome(state=JobState.RETRYING, descriptor=descriptor, decision=decision)

        if decision.action in (Action.DISCARD, Action.EXHAUSTED):
            state = JobState.DISCARDED if decision.action is Action.DISCARD else JobState.EXHAUSTED
            logger.warning(
                "%s %s (%s): %s: %s",
                "Discarded" if state is JobState.DISCARDED else "Stopped retrying",
                descriptor.job_class,
                descriptor.id,
                type(error).__name__,
                error,
            )
            handler = decision.handler
            if handler is not None:
                try:
                    handler(job, error)
                except Exception as handler_error:
                    self._finish(descriptor, JobState.ESCALATED, error=handler_error)
                    raise
            self._finish(descriptor, state, error=error)
            return Outcome(state=state, descriptor=descriptor, decision=decision)

        self._finish(descriptor, JobState.ESCALATED, error=error)
        if decision.exhausted:
            logger.error(
                "Stopped retrying %s (%s) after %d attempts of %s",
                descriptor.job_class,
                descriptor.id,
                decision.attempt,
                type(error).__name__,
            )
        else:
            logger.error("Error performing %s (%s): %s: %s", descriptor.job_class, descriptor.id, type(error).__name__, error)
        raise error

    def _reschedule(self, descriptor: JobDescriptor, decision: Decision) -> None:
        rule = decision.rule
        now = self.clock()
        descriptor.state = JobState.RETRYING
        descriptor.scheduled_at = now + timedelta(seconds=decision.wait)
        descriptor.updated_at = now
        descriptor.last_error = self._describe(decision.error)
        if rule.queue:
            descriptor.queue = rule.queue
        if rule.priority is not None:
            descriptor.priority = rule.priority
        try:
            self._submit(descriptor)
        except EnqueueError as e:
            descriptor.state = JobState.ESCALATED
            descriptor.last_error = self._describe(e)
            logger.error("Could not re-enqueue job %s: %s", descriptor.id, e)
            raise
        logger.info(
            "Retrying %s (%s) in %.2f seconds, attempt %d of %d, due to %s",
            descriptor.job_class,
            descriptor.id,
            decision.wait,
            decision.attempt,
            rule.attempts,
            type(decision.error).__name__,
        )

    def _finish(self, descriptor: JobDescriptor, state: JobState, error: Optional[BaseException] = None) -> None:
        descriptor.state = state
        descriptor.updated_at = self.clock()
        descriptor.scheduled_at = None
        if error is not None:
            descriptor.last_error = self._describe(error)
        self.adapter.update(descriptor)

    def _describe(self, error: BaseException) -> str:
        # truncate error to keep storage small
        return f"{type(error).__name__}: {error}"[: self.config.max_error_length]
