"""
Profile reference-count registry.

Maps profile name -> number of containers currently depending on it. The
counts live in memory only; after a restart the startup sweep clears every
owned profile instead of trying to recover them.

Locking:
- one mutex guards the count map itself and is held only for dict updates
- one lock per profile name serializes register/unregister/update of that
  name across the whole "check disk -> call loader -> update map" sequence,
  so slow apparmor_parser runs on different names never block each other;
  it lives while the name is tracked or a thread is using it
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Tuple


class ProfileRegistry:
    """Refcounts of loaded profiles with per-name serialization."""

    def __init__(self):
        self._counts: Dict[str, int] = {}
        self._lock = threading.Lock()
        # name -> [lock, threads holding or waiting on it]
        self._name_locks: Dict[str, List] = {}

    @contextmanager
    def name_lock(self, profile_name: str) -> Iterator[None]:
        """
        Hold the lock for one profile name.

        The lock is dropped once no thread uses it and the name is no
        longer tracked.
        """
        with self._lock:
            entry = self._name_locks.get(profile_name)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._name_locks[profile_name] = entry
            entry[1] += 1

        try:
            with entry[0]:
                yield
        finally:
            with self._lock:
                entry[1] -= 1
                if entry[1] == 0 and profile_name not in self._counts:
                    del self._name_locks[profile_name]

    def count(self, profile_name: str) -> int:
        """Current refcount, 0 when untracked."""
        with self._lock:
            return self._counts.get(profile_name, 0)

    def increment(self, profile_name: str) -> Tuple[int, int]:
        """Add one consumer; creates the entry at 1. Returns (old, new)."""
        with self._lock:
            old = self._counts.get(profile_name, 0)
            self._counts[profile_name] = old + 1
            return old, old + 1

    def decrement(self, profile_name: str) -> Tuple[int, int]:
        """
        Drop one consumer of a shared profile. Returns (old, new).

        Raises:
            KeyError: the name is untracked
            ValueError: the count is 1; the last consumer must be removed
                with discard() once the profile is detached
        """
        with self._lock:
            old = self._counts[profile_name]
            if old <= 1:
                raise ValueError(f"refcount of {profile_name} would reach zero")
            self._counts[profile_name] = old - 1
            return old, old - 1

    def _drop_idle_lock(self, profile_name: str) -> None:
        entry = self._name_locks.get(profile_name)
        if entry is not None and entry[1] == 0:
            del self._name_locks[profile_name]

    def discard(self, profile_name: str) -> int:
        """Remove the entry; returns the count it had (0 if untracked)."""
        with self._lock:
            count = self._counts.pop(profile_name, 0)
            self._drop_idle_lock(profile_name)
            return count

    def clear(self) -> None:
        """Forget every tracked profile."""
        with self._lock:
            for profile_name in list(self._counts):
                del self._counts[profile_name]
                self._drop_idle_lock(profile_name)

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._counts)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def __contains__(self, profile_name: object) -> bool:
        with self._lock:
            return profile_name in self._counts

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)


__all__ = ['ProfileRegistry']
