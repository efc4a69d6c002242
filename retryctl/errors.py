"""
retryctl exception hierarchy.

    RetryctlError
    ├── ConfigurationError     - bad declarations or config values
    ├── SerializationError     - job arguments cannot be encoded
    ├── DeserializationError   - job arguments cannot be decoded
    ├── JobClassNotFoundError  - job class name cannot be resolved
    ├── EnqueueError           - an adapter failed to (re-)enqueue a job
    └── TaggedFailure          - failure carrying a registered kind tag
"""

from typing import Any, Dict, Optional


class RetryctlError(Exception):
    """Base exception for all retryctl errors."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(RetryctlError):
    """Raised for invalid retry/discard declarations or config values."""


class SerializationError(RetryctlError):
    """Raised at enqueue time when an argument has no wire representation."""


class DeserializationError(RetryctlError):
    """Raised before the job body runs when arguments cannot be decoded.

    The underlying error is chained as ``__cause__``. Jobs may declare
    retry or discard rules for this kind like for any other failure.
    """


class JobClassNotFoundError(RetryctlError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Job class not found: {name}", details={"job_class": name})
        self.job_class = name


class EnqueueError(RetryctlError):
    """Raised when a retry cannot be scheduled. Fatal to the lineage."""

    def __init__(self, job_id: str, message: str) -> None:
        super().__init__(f"Failed to enqueue job {job_id}: {message}", details={"job_id": job_id})
        self.job_id = job_id


class TaggedFailure(RetryctlError):
    """A failure identified by a kind tag rather than by its class.

    Tags are matched through a :class:`retryctl.kinds.KindRegistry`, so
    ``TaggedFailure("CardDeclined", ...)`` can be caught by a rule declared
    for its registered parent ``"PaymentError"``.
    """

    def __init__(self, kind: str, message: str = "") -> None:
        super().__init__(message or kind, details={"kind": kind})
        self.kind = kind
