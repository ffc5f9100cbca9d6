from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import date
from threading import Lock, RLock

WeekKey = tuple[str, date]


class WeekGuardRegistry:
    """Process-wide locks keyed by (class_id, week_start).

    Holders keep the lock until their transaction commits. Multiple keys are
    always taken in sorted order.
    """

    def __init__(self) -> None:
        self._locks: dict[WeekKey, RLock] = {}
        self._lock = Lock()

    def lock_for(self, key: WeekKey) -> RLock:
        with self._lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys: Iterable[WeekKey]) -> Iterator[None]:
        ordered = sorted(set(keys))
        acquired: list[RLock] = []
        try:
            for key in ordered:
                lock = self.lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def clear(self) -> None:
        with self._lock:
            self._locks.clear()


_registry = WeekGuardRegistry()


def week_guard(*keys: WeekKey):
    return _registry.hold(keys)


def clear_week_guards() -> None:
    _registry.clear()
