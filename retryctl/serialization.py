"""
Job argument serialization.

Arguments are stored in a JSON-safe form. Besides JSON primitives, lists and
string-keyed dicts, two extra shapes are supported:

    datetime          -> {"_datetime": "2024-01-01T00:00:00+00:00"}
    locatable record  -> {"_gid": "Person/42"}

Records are looked up again when the job runs. A record that can no longer
be located turns into a :class:`~retryctl.errors.DeserializationError`
before the job body is invoked.
"""

from datetime import datetime
from typing import Any, Dict, List, Sequence, Type

from .errors import DeserializationError, SerializationError

GID_KEY = "_gid"
DATETIME_KEY = "_datetime"
RESERVED_KEYS = (GID_KEY, DATETIME_KEY)

_locatables: Dict[str, type] = {}


def locatable(cls: Type) -> Type:
    """
    Register a record class for serialization by id.

    The class must expose a ``record_id`` attribute and a ``locate(id)``
    classmethod that returns the record or raises.
    """
    if not callable(getattr(cls, "locate", None)):
        raise TypeError(f"{cls.__name__} must define a locate(id) classmethod")
    _locatables[cls.__name__] = cls
    return cls


def global_id(record: Any) -> str:
    return f"{type(record).__name__}/{record.record_id}"


def serialize(arguments: Sequence[Any]) -> List[Any]:
    return [_serialize(a) for a in arguments]


def deserialize(data: Sequence[Any]) -> List[Any]:
    try:
        return [_deserialize(a) for a in data]
    except DeserializationError:
        raise
    except Exception as e:
        raise DeserializationError(f"Error while trying to deserialize arguments: {e}") from e


def _serialize(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return {DATETIME_KEY: value.isoformat()}
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise SerializationError(f"Only string keys are supported, got {k!r}")
            if k in RESERVED_KEYS:
                raise SerializationError(f"Can't serialize a dict with reserved key {k!r}")
            out[k] = _serialize(v)
        return out
    if type(value).__name__ in _locatables and type(value) is _locatables[type(value).__name__]:
        return {GID_KEY: global_id(value)}
    raise SerializationError(f"Unsupported argument type: {type(value).__name__}")


def _deserialize(value: Any) -> Any:
    if isinstance(value, list):
        return [_deserialize(v) for v in value]
    if isinstance(value, dict):
        if GID_KEY in value:
            return _locate(value[GID_KEY])
        if DATETIME_KEY in value:
            return datetime.fromisoformat(value[DATETIME_KEY])
        return {k: _deserialize(v) for k, v in value.items()}
    return value


def _locate(gid: str) -> Any:
    name, _, record_id = str(gid).partition("/")
    cls = _locatables.get(name)
    if cls is None:
        raise DeserializationError(f"Unknown record type in global id {gid!r}")
    try:
        return cls.locate(record_id)
    except Exception as e:
        raise DeserializationError(f"Error while trying to deserialize arguments: {e}") from e
