"""Locking primitives shared by the executor, switch and failover paths."""

import threading
from contextlib import contextmanager
from typing import Dict


class ReadWriteLock:
    """Many concurrent readers or one writer.

    Writers are preferred once waiting so a steady stream of lookups cannot
    starve an insertion.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self):
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class PairLockRegistry:
    """One mutex per validator pair so only one switch runs per pair."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock_for(self, pair_key: str) -> threading.Lock:
        with self._guard:
            if pair_key not in self._locks:
                self._locks[pair_key] = threading.Lock()
            return self._locks[pair_key]

    def try_acquire(self, pair_key: str) -> bool:
        return self.lock_for(pair_key).acquire(blocking=False)

    def release(self, pair_key: str):
        self.lock_for(pair_key).release()

    def is_busy(self, pair_key: str) -> bool:
        return self.lock_for(pair_key).locked()


# Shared by manual switches and emergency failovers within one process.
_registry = PairLockRegistry()


def get_pair_locks() -> PairLockRegistry:
    return _registry
