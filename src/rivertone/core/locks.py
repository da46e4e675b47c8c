"""Thread synchronization primitives shared by the index and transcode cache.

Request handlers run on worker threads, so everything here is built on
``threading``.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List


class ReadWriteLock:
    """Many concurrent readers or a single writer.

    Writer-preferring: once a writer is waiting, new readers queue behind it
    so that a reload cannot be starved by a steady stream of listings.
    Not reentrant.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class _LockHandle:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.refs = 0


class KeyedLockRegistry:
    """One mutual-exclusion lock per key, created on demand.

    Every caller asking for the same key while it is in use receives the same
    lock. Handles are reference counted and dropped once the last holder or
    waiter leaves, so the registry only contains keys with activity. The
    registry's own lock is held just long enough to look up, insert or remove
    a handle, never while a per-key lock is being waited on.

    Usage:
        registry = KeyedLockRegistry()
        with registry.locked("/stream/abcdefgh.mp3"):
            ...  # at most one thread per key here
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: Dict[Hashable, _LockHandle] = {}

    def _checkout(self, key: Hashable) -> _LockHandle:
        with self._lock:
            handle = self._handles.get(key)
            if handle is None:
                handle = _LockHandle()
                self._handles[key] = handle
            handle.refs += 1
            return handle

    def _checkin(self, key: Hashable, handle: _LockHandle) -> None:
        with self._lock:
            handle.refs -= 1
            if handle.refs == 0:
                del self._handles[key]

    @contextmanager
    def locked(self, key: Hashable) -> Iterator[None]:
        handle = self._checkout(key)
        try:
            with handle.lock:
                yield
        finally:
            self._checkin(key, handle)

    @contextmanager
    def try_locked(self, key: Hashable) -> Iterator[bool]:
        """Like ``locked``, but never waits.

        Yields True if the key's lock was taken, False if someone else holds
        it; the body runs either way and must check.
        """
        handle = self._checkout(key)
        acquired = handle.lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                handle.lock.release()
            self._checkin(key, handle)

    def active_keys(self) -> List[Hashable]:
        with self._lock:
            return list(self._handles)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
