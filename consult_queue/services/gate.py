import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List


class KeyedLock:
    """
    Mutual exclusion per key.

    Holders of different keys never block each other. Locks are created on
    first use and dropped once no thread holds or waits for them.
    """

    def __init__(self):
        self._registry_lock = threading.Lock()
        # key -> [lock, number of threads holding or waiting]
        self._locks: Dict[Hashable, List] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._registry_lock:
            slot = self._locks.get(key)
            if slot is None:
                slot = [threading.Lock(), 0]
                self._locks[key] = slot
            slot[1] += 1

        lock = slot[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._registry_lock:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._locks[key]

    def active_keys(self) -> int:
        with self._registry_lock:
            return len(self._locks)
