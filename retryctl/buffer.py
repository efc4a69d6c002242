import threading
from typing import List, Optional


class JobBuffer:
    """Ordered, thread-safe log of strings that jobs append to."""

    def __init__(self) -> None:
        self._values: List[str] = []
        self._lock = threading.Lock()

    def add(self, value: str) -> None:
        with self._lock:
            self._values.append(value)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()

    @property
    def values(self) -> List[str]:
        with self._lock:
            return list(self._values)

    @property
    def last_value(self) -> Optional[str]:
        with self._lock:
            return self._values[-1] if self._values else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
