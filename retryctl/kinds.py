"""
Exception kinds.

A failure is classified by its *kind*: a name plus the chain of ancestor
names it should also answer to. Kinds of Python exceptions come from the
class MRO, each class being known by its dotted path and its short name.
Kind tags raised through :class:`~retryctl.errors.TaggedFailure` get their
ancestors from a :class:`KindRegistry` parent table.

Matching is plain membership in the ancestor chain, so rules never inspect
exception objects at decision time.
"""

import threading
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Tuple, Type, Union

from .errors import TaggedFailure

KindSpec = Union[str, Type[BaseException]]


def class_names(cls: type) -> Tuple[str, ...]:
    """Names a class answers to: ``module.QualName`` and ``QualName``."""
    dotted = f"{cls.__module__}.{cls.__qualname__}"
    if cls.__module__ == "builtins":
        return (cls.__qualname__,)
    return (dotted, cls.__qualname__)


def kind_name(spec: KindSpec) -> str:
    """Normalize a declared kind to the name it is matched by."""
    if isinstance(spec, str):
        if not spec:
            raise ValueError("kind name must not be empty")
        return spec
    if isinstance(spec, type) and issubclass(spec, BaseException):
        return class_names(spec)[0]
    raise TypeError(f"kinds must be exception classes or names, got {spec!r}")


@dataclass(frozen=True)
class ExceptionKind:
    name: str
    lineage: FrozenSet[str]

    def is_a(self, name: str) -> bool:
        return name in self.lineage

    def matches_any(self, names: Iterable[str]) -> bool:
        return any(n in self.lineage for n in names)


class KindRegistry:
    """Parent table for kind tags.

    >>> registry = KindRegistry()
    >>> registry.register("PaymentError")
    >>> registry.register("CardDeclined", parent="PaymentError")
    >>> registry.ancestors("CardDeclined")
    ('CardDeclined', 'PaymentError')
    """

    def __init__(self) -> None:
        self._parents: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()
        self._class_cache: Dict[type, FrozenSet[str]] = {}

    def register(self, name: str, parent: Optional[KindSpec] = None) -> None:
        parent_name = kind_name(parent) if parent is not None else None
        with self._lock:
            if parent_name is not None and name in self._walk(parent_name):
                raise ValueError(f"registering {name!r} under {parent_name!r} would create a cycle")
            self._parents[name] = parent_name

    def ancestors(self, name: str) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._walk(name))

    def _walk(self, name: str):
        seen = []
        current: Optional[str] = name
        while current is not None and current not in seen:
            seen.append(current)
            current = self._parents.get(current)
        return seen

    def _class_lineage(self, cls: type) -> FrozenSet[str]:
        lineage = self._class_cache.get(cls)
        if lineage is None:
            names = set()
            for klass in cls.__mro__:
                if klass is object:
                    continue
                names.update(class_names(klass))
            lineage = frozenset(names)
            self._class_cache[cls] = lineage
        return lineage

    def kind_of(self, error: BaseException) -> ExceptionKind:
        """Build the kind of an occurred failure."""
        lineage = set(self._class_lineage(type(error)))
        if isinstance(error, TaggedFailure) and error.kind:
            lineage.update(self.ancestors(error.kind))
            return ExceptionKind(name=error.kind, lineage=frozenset(lineage))
        return ExceptionKind(name=class_names(type(error))[0], lineage=frozenset(lineage))


default_registry = KindRegistry()
