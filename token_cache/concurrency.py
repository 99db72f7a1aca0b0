"""
Read/write guard for the token cache.
Lookups share the lock; mutations (save, delete account, clear) hold it exclusively, so a reader sees
either the state before a mutation or the state after it, never a half-applied one.
Waiting writers block new readers so a steady stream of lookups cannot starve a save.
"""
import threading
import weakref
from contextlib import contextmanager
from typing import Iterator


class ReadWriteLock:
    """Many readers or one writer. Not reentrant: do not take read() inside write() on one thread."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0
        # Bumped after every write; lets holders of derived state tell it is out of date
        self.generation = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self.generation += 1
                self._cond.notify_all()


# One lock per physical store, shared by every cache built over the same accessor instance
_locks: "weakref.WeakKeyDictionary[object, ReadWriteLock]" = weakref.WeakKeyDictionary()
_locks_guard = threading.Lock()


def lock_for(storage: object) -> ReadWriteLock:
    with _locks_guard:
        lock = _locks.get(storage)
        if lock is None:
            lock = ReadWriteLock()
            _locks[storage] = lock
        return lock
