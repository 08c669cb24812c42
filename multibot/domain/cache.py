"""Name→ID caches shared between a receive loop and outbound formatting."""

import threading
from contextlib import contextmanager
from typing import Dict, Generic, Iterator, Optional, TypeVar

V = TypeVar("V")


class RWLock:
    """Many concurrent readers or one exclusive writer.

    Writers are preferred: once a writer is waiting, new readers block.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

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
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class KnownCache(Generic[V]):
    """Dict guarded by an RWLock. Used for KnownUsers and channel-name lookups."""

    def __init__(self):
        self._lock = RWLock()
        self._items: Dict[str, V] = {}

    def get(self, key: str) -> Optional[V]:
        with self._lock.read():
            return self._items.get(key)

    def put(self, key: str, value: V) -> None:
        with self._lock.write():
            self._items[key] = value

    def update(self, items: Dict[str, V]) -> None:
        with self._lock.write():
            self._items.update(items)

    def __contains__(self, key: str) -> bool:
        with self._lock.read():
            return key in self._items

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._items)

    def snapshot(self) -> Dict[str, V]:
        with self._lock.read():
            return dict(self._items)
