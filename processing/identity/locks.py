"""
In-process mutual exclusion keyed by identity value.

Requests touching the same email, phone or cluster queue behind each
other; unrelated requests proceed in parallel.
"""

import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Iterable, Optional


def email_key(email: str) -> str:
    return f"email:{email.strip().lower()}"


def phone_key(phone: str) -> str:
    return f"phone:{phone.strip()}"


def cluster_key(primary_id: int) -> str:
    # Zero-padded so string order matches numeric order
    return f"contact:{primary_id:020d}"


class KeyedLocks:
    """
    Registry of reference-counted locks, one per key.

    Keys passed to hold() are acquired in sorted order, so two callers
    asking for overlapping key sets cannot deadlock each other.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._waiters: dict[str, int] = defaultdict(int)

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._waiters[key] += 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    @contextmanager
    def hold(self, keys: Iterable[str], timeout: Optional[float] = None):
        """
        Hold every lock in keys for the duration of the block.

        Raises TimeoutError if timeout elapses before all locks are taken;
        locks already taken are released first.
        """
        acquired: list[tuple[str, threading.Lock]] = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                if not lock.acquire(timeout=-1 if timeout is None else timeout):
                    self._checkin(key)
                    raise TimeoutError(f"Timed out waiting for lock {key}")
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Shared by every resolver the service creates
default_locks = KeyedLocks()
