"""Process-local locks keyed by user."""

from __future__ import annotations

import threading
from typing import Any, Callable, Hashable


class KeyedLocks:
    def __init__(self, factory: Callable[[], Any] = threading.Lock) -> None:
        self._factory = factory
        self._guard = threading.Lock()
        self._locks: dict[Hashable, Any] = {}

    def get(self, key: Hashable) -> Any:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = self._factory()
            return lock


class SchedulingGuard:
    """Single owner plus a one-slot mailbox for the newest request.

    A caller that finds the guard busy leaves its request in the slot and
    returns; the owner keeps taking requests until the slot is empty, so the
    last request made is always the last one applied.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._busy = False
        self._pending: Any = None

    def acquire(self, request: Any = None) -> bool:
        with self._lock:
            if request is not None:
                self._pending = request
            if self._busy:
                return False
            self._busy = True
            return True

    def next_request(self) -> Any:
        """Pop the waiting request, or give up ownership when there is none."""
        with self._lock:
            request, self._pending = self._pending, None
            if request is None:
                self._busy = False
            return request

    def release(self) -> None:
        with self._lock:
            self._busy = False


# One clock action or dashboard refresh at a time per user. Re-entrant so a
# clock action can refresh while holding it.
action_locks = KeyedLocks(threading.RLock)
# One reminder schedule/cancel at a time per user; overlapping calls hand over.
reminder_guards = KeyedLocks(SchedulingGuard)
