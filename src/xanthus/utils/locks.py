# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Per-key lock table so unrelated keys never contend on one global lock."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterator

K = TypeVar("K", bound="Hashable")


class KeyedLocks(Generic[K]):
    """Hand out one reentrant lock per key, created on first use.

    Locks are never removed; the table grows with the number of distinct keys
    seen, which is bounded by the number of deployments and descriptors.
    """

    def __init__(self) -> None:
        self._locks: dict[K, threading.RLock] = {}
        self._table_lock = threading.Lock()

    def get(self, key: K) -> threading.RLock:
        """Return the lock for ``key``, creating it if needed."""
        with self._table_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: K, *, timeout: float | None = None) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of the block.

        Raises:
            TimeoutError: If the lock cannot be acquired within ``timeout``.
        """
        lock = self.get(key)
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            msg = f"timed out waiting for lock on {key!r}"
            raise TimeoutError(msg)
        try:
            yield
        finally:
            lock.release()
