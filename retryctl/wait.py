"""
Wait policies: how long to wait before the Nth retry of a rule.

``compute(attempt)`` receives the rule's attempt counter (1 for the first
failure) and returns a delay in seconds.
"""

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional, Union

BACKOFF_ALIASES = ("exponentially_longer", "polynomially_longer")


def _check_attempt(attempt: int) -> None:
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")


class WaitPolicy(ABC):
    @abstractmethod
    def compute(self, attempt: int) -> float:
        ...


@dataclass(frozen=True)
class FixedWait(WaitPolicy):
    seconds: float

    def __post_init__(self):
        if self.seconds < 0:
            raise ValueError("seconds must be >= 0")

    def compute(self, attempt: int) -> float:
        _check_attempt(attempt)
        return float(self.seconds)


@dataclass(frozen=True)
class LinearWait(WaitPolicy):
    """delay = base * attempt"""

    base: float

    def __post_init__(self):
        if self.base < 0:
            raise ValueError("base must be >= 0")

    def compute(self, attempt: int) -> float:
        _check_attempt(attempt)
        return float(self.base * attempt)


@dataclass(frozen=True)
class ExponentialBackoff(WaitPolicy):
    """
    Default policy: ``attempt**exponent + offset + jitter``.

    With the defaults the base delays for attempts 1..4 are 3, 18, 83 and
    258 seconds. Jitter is drawn uniformly from
    ``[0, jitter * attempt**exponent]``, so ``jitter=0`` gives exact delays
    and the default ``jitter=1.0`` never more than doubles the polynomial
    term.
    """

    exponent: int = 4
    offset: float = 2.0
    jitter: float = 1.0
    rng: Optional[random.Random] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if self.exponent < 1:
            raise ValueError("exponent must be >= 1")
        if self.jitter < 0:
            raise ValueError("jitter must be >= 0")

    def base_delay(self, attempt: int) -> float:
        _check_attempt(attempt)
        return float(attempt ** self.exponent + self.offset)

    def compute(self, attempt: int) -> float:
        delay = self.base_delay(attempt)
        if self.jitter:
            rng = self.rng or random
            delay += rng.uniform(0, self.jitter * attempt ** self.exponent)
        return delay


@dataclass(frozen=True)
class CustomWait(WaitPolicy):
    func: Callable[[int], Union[int, float, timedelta]]

    def compute(self, attempt: int) -> float:
        _check_attempt(attempt)
        value = self.func(attempt)
        if isinstance(value, timedelta):
            value = value.total_seconds()
        if value < 0:
            raise ValueError(f"custom wait returned a negative delay ({value}) for attempt {attempt}")
        return float(value)


WaitSpec = Union[None, int, float, timedelta, str, Callable[[int], float], WaitPolicy]


def wait_policy(value: WaitSpec = None, jitter: Optional[float] = None) -> WaitPolicy:
    """Coerce a ``retry_on(wait=...)`` value into a WaitPolicy."""
    if isinstance(value, WaitPolicy):
        if jitter is not None:
            raise ValueError("jitter only applies to the default backoff policy")
        return value
    if value is None or (isinstance(value, str) and value in BACKOFF_ALIASES):
        return ExponentialBackoff() if jitter is None else ExponentialBackoff(jitter=jitter)
    if jitter is not None:
        raise ValueError("jitter only applies to the default backoff policy")
    if isinstance(value, bool):
        raise TypeError("wait must not be a boolean")
    if isinstance(value, timedelta):
        return FixedWait(value.total_seconds())
    if isinstance(value, (int, float)):
        return FixedWait(float(value))
    if isinstance(value, str):
        raise ValueError(f"unknown wait policy {value!r}; expected one of {', '.join(BACKOFF_ALIASES)}")
    if callable(value):
        return CustomWait(value)
    raise TypeError(f"unsupported wait value: {value!r}")
