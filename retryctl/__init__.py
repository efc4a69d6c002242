"""retryctl - background jobs with declarative retry and discard rules."""

from .buffer import JobBuffer
from .errors import (
    ConfigurationError,
    DeserializationError,
    EnqueueError,
    JobClassNotFoundError,
    RetryctlError,
    SerializationError,
    TaggedFailure,
)
from .executor import Executor, Outcome
from .job import Job
from .kinds import ExceptionKind, KindRegistry
from .models import JobDescriptor, JobState
from .policy import Action, Decision, DiscardRule, RetryRule, classify
from .wait import CustomWait, ExponentialBackoff, FixedWait, LinearWait, WaitPolicy

__version__ = "0.1.0"

__all__ = [
    "Action",
    "ConfigurationError",
    "CustomWait",
    "Decision",
    "DeserializationError",
    "DiscardRule",
    "EnqueueError",
    "ExceptionKind",
    "Executor",
    "ExponentialBackoff",
    "FixedWait",
    "Job",
    "JobBuffer",
    "JobClassNotFoundError",
    "JobDescriptor",
    "JobState",
    "KindRegistry",
    "LinearWait",
    "Outcome",
    "RetryRule",
    "RetryctlError",
    "SerializationError",
    "TaggedFailure",
    "WaitPolicy",
    "classify",
]
