"""Keyed locks.

``KeyedLocks.hold(keys)`` acquires one re-entrant lock per key in sorted
order, so two writers touching overlapping key sets can never deadlock.
Acquisition is time bounded; on timeout every lock taken so far is released
and ``LockTimeout`` is raised.
"""
from __future__ import annotations
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
import threading
import time

from .errors import LockTimeout


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLocks:
    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                return
            entry.users -= 1
            if entry.users <= 0:
                del self._entries[key]

    @contextmanager
    def hold(self, keys: Iterable[str], timeout: Optional[float] = None) -> Iterator[List[str]]:
        ordered = sorted(set(keys))
        budget = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + budget
        acquired: List[Tuple[str, _Entry]] = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                remaining = max(0.0, deadline - time.monotonic())
                if not entry.lock.acquire(timeout=remaining):
                    self._checkin(key)
                    raise LockTimeout(ordered, budget)
                acquired.append((key, entry))
            yield ordered
        finally:
            for key, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(key)

    def held_count(self) -> int:
        with self._guard:
            return len(self._entries)
