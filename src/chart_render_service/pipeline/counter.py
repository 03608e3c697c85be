from __future__ import annotations

import threading


class PendingCounter:
    """Number of requests that started parsing and have not replied yet."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def decrement(self) -> int:
        with self._lock:
            if self._value <= 0:
                raise RuntimeError("pending counter would go negative")
            self._value -= 1
            return self._value
