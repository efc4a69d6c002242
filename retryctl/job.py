"""
Job types.

Subclass :class:`Job`, implement ``perform`` and declare how failures are
handled at definition time::

    class SyncAccount(Job):
        def perform(self, account_id):
            ...

    SyncAccount.retry_on(TimeoutError, wait=30, attempts=3)
    SyncAccount.retry_on(RateLimited, wait="exponentially_longer")
    SyncAccount.discard_on(AccountClosed)

Declarations are kept per class. A subclass starts with its parent's
declarations and can add its own without changing the parent.
"""

import importlib
import threading
from typing import Any, Dict, List, Optional, Tuple, Type

from .errors import JobClassNotFoundError
from .kinds import KindSpec
from .models import JobDescriptor
from .policy import DEFAULT_ATTEMPTS, DiscardRule, Handler, RetryRule

_registry: Dict[str, Type["Job"]] = {}
_registry_lock = threading.Lock()


class Job:
    queue: Optional[str] = None
    priority: Optional[int] = None

    retry_rules: Tuple[RetryRule, ...] = ()
    discard_rules: Tuple[DiscardRule, ...] = ()

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        with _registry_lock:
            _registry[cls.job_name()] = cls

    def __init__(self, descriptor: Optional[JobDescriptor] = None) -> None:
        self.descriptor = descriptor
        self.arguments: Optional[List[Any]] = None

    @classmethod
    def job_name(cls) -> str:
        return f"{cls.__module__}:{cls.__qualname__}"

    @classmethod
    def retry_on(
        cls,
        *kinds: KindSpec,
        wait=None,
        attempts: int = DEFAULT_ATTEMPTS,
        jitter: Optional[float] = None,
        queue: Optional[str] = None,
        priority: Optional[int] = None,
        on_exhaust: Optional[Handler] = None,
    ) -> RetryRule:
        """
        Retry the job when it fails with one of ``kinds``.

        ``wait`` is seconds, a timedelta, ``"exponentially_longer"`` (default),
        a callable taking the attempt number, or a WaitPolicy. ``attempts``
        is the number of retries; once exceeded ``on_exhaust(job, error)``
        runs if given, otherwise the error propagates.
        """
        rule = RetryRule.build(
            *kinds,
            wait=wait,
            attempts=attempts,
            jitter=jitter,
            on_exhaust=on_exhaust,
            queue=queue,
            priority=priority,
            key=f"{cls.job_name()}#retry{len(cls.retry_rules)}",
        )
        cls.retry_rules = cls.retry_rules + (rule,)
        return rule

    @classmethod
    def discard_on(cls, *kinds: KindSpec, on_discard: Optional[Handler] = None) -> DiscardRule:
        """Drop the job without retrying when it fails with one of ``kinds``."""
        rule = DiscardRule.build(*kinds, on_discard=on_discard, key=f"{cls.job_name()}#discard{len(cls.discard_rules)}")
        cls.discard_rules = cls.discard_rules + (rule,)
        return rule

    @property
    def job_id(self) -> Optional[str]:
        return self.descriptor.id if self.descriptor else None

    @property
    def executions(self) -> int:
        return self.descriptor.executions if self.descriptor else 0

    @property
    def serialized_arguments(self) -> List[Any]:
        return list(self.descriptor.arguments) if self.descriptor else []

    def perform(self, *arguments: Any) -> Any:
        raise NotImplementedError(f"{type(self).__name__} must implement perform()")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.job_id} executions={self.executions}>"


def resolve_job_class(name: str) -> Type[Job]:
    """Find a Job subclass by ``module:QualName``, importing the module if needed."""
    with _registry_lock:
        cls = _registry.get(name)
    if cls is not None:
        return cls
    module_name, _, qualname = name.partition(":")
    if not module_name or not qualname:
        raise JobClassNotFoundError(name)
    try:
        obj: Any = importlib.import_module(module_name)
        for part in qualname.split("."):
            obj = getattr(obj, part)
    except (ImportError, AttributeError) as e:
        raise JobClassNotFoundError(name) from e
    if not (isinstance(obj, type) and issubclass(obj, Job)):
        raise JobClassNotFoundError(name)
    return obj
