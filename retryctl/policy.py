"""
Retry policy engine.

Given a failure and the rules declared for a job type, :func:`classify`
produces exactly one :class:`Decision`. The only state it touches is the
attempt counter of the selected retry rule.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, MutableMapping, Optional, Sequence, Tuple

from .kinds import KindRegistry, KindSpec, default_registry, kind_name
from .log import get_logger
from .wait import WaitPolicy, wait_policy

logger = get_logger(__name__)

DEFAULT_ATTEMPTS = 5

Handler = Callable[[Any, BaseException], Any]


def _normalize_kinds(kinds: Sequence[KindSpec]) -> Tuple[str, ...]:
    if not kinds:
        raise ValueError("at least one exception kind is required")
    return tuple(kind_name(k) for k in kinds)


@dataclass(frozen=True, eq=False)
class RetryRule:
    """
    ``retry_on`` declaration.

    ``attempts`` limits the number of retries: the rule keeps retrying while
    its counter is ``<= attempts``, so a job failing every time runs
    ``attempts + 1`` times in total.

    ``key`` identifies the declaration in persisted attempt counters. Rules
    declared through :meth:`retryctl.job.Job.retry_on` get a stable key;
    rules built by hand get one unique to the object.
    """

    kinds: Tuple[str, ...]
    wait: WaitPolicy
    attempts: int = DEFAULT_ATTEMPTS
    on_exhaust: Optional[Handler] = None
    queue: Optional[str] = None
    priority: Optional[int] = None
    key: str = ""

    def __post_init__(self):
        if self.attempts < 0:
            raise ValueError("attempts must be >= 0")
        if not self.key:
            object.__setattr__(self, "key", f"retry@{id(self):x}:{'|'.join(self.kinds)}")

    @classmethod
    def build(
        cls,
        *kinds: KindSpec,
        wait=None,
        attempts: int = DEFAULT_ATTEMPTS,
        jitter: Optional[float] = None,
        on_exhaust: Optional[Handler] = None,
        queue: Optional[str] = None,
        priority: Optional[int] = None,
        key: str = "",
    ) -> "RetryRule":
        return cls(
            kinds=_normalize_kinds(kinds),
            wait=wait_policy(wait, jitter=jitter),
            attempts=attempts,
            on_exhaust=on_exhaust,
            queue=queue,
            priority=priority,
            key=key,
        )


@dataclass(frozen=True, eq=False)
class DiscardRule:
    kinds: Tuple[str, ...]
    on_discard: Optional[Handler] = None
    key: str = ""

    def __post_init__(self):
        if not self.key:
            object.__setattr__(self, "key", f"discard@{id(self):x}:{'|'.join(self.kinds)}")

    @classmethod
    def build(cls, *kinds: KindSpec, on_discard: Optional[Handler] = None, key: str = "") -> "DiscardRule":
        return cls(kinds=_normalize_kinds(kinds), on_discard=on_discard, key=key)


class Action(str, Enum):
    RETRY = "retry"
    DISCARD = "discard"
    EXHAUSTED = "exhausted"  # over the limit, on_exhaust handler present
    ESCALATE = "escalate"


@dataclass(frozen=True)
class Decision:
    action: Action
    error: BaseException
    rule: Optional[Any] = None
    attempt: int = 0
    wait: Optional[float] = None
    exhausted: bool = False

    @property
    def handler(self) -> Optional[Handler]:
        if self.action is Action.DISCARD:
            return self.rule.on_discard
        if self.action is Action.EXHAUSTED:
            return self.rule.on_exhaust
        return None


def classify(
    failure: BaseException,
    rules: Sequence[RetryRule],
    counters: MutableMapping[str, int],
    discard_rules: Sequence[DiscardRule] = (),
    registry: Optional[KindRegistry] = None,
) -> Decision:
    """
    Decide what to do with ``failure``.

    Discard rules win regardless of declaration order and leave counters
    alone. Otherwise the first retry rule, in declaration order, whose kinds
    appear in the failure's ancestor chain is selected and its counter (and
    only its counter) is incremented.
    """
    kind = (registry or default_registry).kind_of(failure)

    for discard in discard_rules:
        if kind.matches_any(discard.kinds):
            logger.debug("%s matched discard rule %s", kind.name, discard.key)
            return Decision(action=Action.DISCARD, error=failure, rule=discard)

    for rule in rules:
        if not kind.matches_any(rule.kinds):
            continue
        attempt = counters.get(rule.key, 0) + 1
        counters[rule.key] = attempt
        if attempt <= rule.attempts:
            return Decision(
                action=Action.RETRY,
                error=failure,
                rule=rule,
                attempt=attempt,
                wait=rule.wait.compute(attempt),
            )
        if rule.on_exhaust is not None:
            return Decision(action=Action.EXHAUSTED, error=failure, rule=rule, attempt=attempt, exhausted=True)
        return Decision(action=Action.ESCALATE, error=failure, rule=rule, attempt=attempt, exhausted=True)

    return Decision(action=Action.ESCALATE, error=failure)
