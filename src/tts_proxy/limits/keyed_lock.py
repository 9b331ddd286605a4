"""
Per-key mutual exclusion.

KeyedLock hands out one threading.Lock per key so updates to the same
identity are serialized while different identities proceed in parallel.
Locks are reference counted and dropped when the last holder leaves, so
the lock table never outgrows the set of keys currently in use.

Usage:
    locks = KeyedLock()
    with locks.hold("203.0.113.7"):
        window = windows.get("203.0.113.7")
        ...
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class KeyedLock:
    """A table of reference-counted locks keyed by string."""

    def __init__(self) -> None:
        # Guards the table only; never held while a key lock is awaited
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.holders += 1

        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
