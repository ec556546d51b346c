from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Iterator


class RWLock:
    """Shared/exclusive lock built on `threading.Condition`.

    Readers are preferred: a pending writer never blocks new readers, so a
    thread already holding the shared lock may acquire it again while
    resolving nested dependencies. Writers wait until no reader remains.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer_active = False

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer_active:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            if self._readers <= 0:
                msg = "release_read called with no active readers"
                raise RuntimeError(msg)
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            while self._writer_active or self._readers > 0:
                self._cond.wait()
            self._writer_active = True

    def release_write(self) -> None:
        with self._cond:
            if not self._writer_active:
                msg = "release_write called with no active writer"
                raise RuntimeError(msg)
            self._writer_active = False
            self._cond.notify_all()

    @contextmanager
    def read_lock(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_lock(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
