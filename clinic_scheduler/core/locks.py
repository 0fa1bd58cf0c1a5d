"""
Process-local striped locks.

Workers that touch the same slot counter (or, under the single-booking
policy, the same patient) are serialized by hashing the key onto a fixed
set of stripes. Stripes are always taken in ascending index order so two
workers needing overlapping sets cannot deadlock.
"""
import logging
import threading
import zlib
from contextlib import contextmanager
from typing import Iterable, Iterator, List

from .config import settings
from .exceptions import ConflictError

logger = logging.getLogger(__name__)


class StripedLocks:
    def __init__(self, stripes: int = 64):
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._locks = [threading.Lock() for _ in range(stripes)]

    def _index(self, key: str) -> int:
        return zlib.crc32(key.encode("utf-8")) % len(self._locks)

    def stripes_for(self, keys: Iterable[str]) -> List[int]:
        return sorted({self._index(key) for key in keys})

    @contextmanager
    def hold(self, keys: Iterable[str], timeout: float) -> Iterator[None]:
        """Hold the stripes for ``keys``; raise ConflictError on timeout."""
        keys = list(keys)
        acquired: List[threading.Lock] = []
        try:
            for index in self.stripes_for(keys):
                lock = self._locks[index]
                if not lock.acquire(timeout=timeout):
                    logger.warning(f"Lock timeout after {timeout}s for {keys}")
                    raise ConflictError(
                        "Slot is busy, please retry",
                        keys=keys,
                    )
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


booking_locks = StripedLocks(settings.LOCK_STRIPES)


def slot_key(slot_id: str) -> str:
    return f"slot:{slot_id}"


def patient_key(patient_id: int) -> str:
    return f"patient:{patient_id}"
