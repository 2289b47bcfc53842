"""
Single-slot, time-bounded cache of the full product list.

The slot is shared by every request thread. Reads and writes of the slot are
short critical sections; callers must never hold the lock across a database
call. A version counter, bumped by every ``invalidate()``, lets a reader that
queried the database before a write land its result without resurrecting data
that write has already invalidated.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import config

logger = logging.getLogger(__name__)

Snapshot = Tuple[Dict[str, Any], ...]


class ProductCache:
    def __init__(self, ttl: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl = config.PRODUCT_CACHE_TTL if ttl is None else ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._products: Optional[Snapshot] = None
        self._stored_at = 0.0
        self._version = 0

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def get(self) -> Optional[Snapshot]:
        """Return the cached list while it is fresh, else None."""
        with self._lock:
            if self._products is None:
                return None
            if self._clock() - self._stored_at >= self.ttl:
                return None
            return self._products

    def populate(self, products: Iterable[Dict[str, Any]], version: Optional[int] = None) -> bool:
        """Store a new snapshot.

        ``version`` is the value of ``self.version`` read before the database
        query that produced ``products``. If an invalidation happened since,
        the snapshot is discarded and False is returned.
        """
        snapshot = tuple(products)
        with self._lock:
            if version is not None and version != self._version:
                logger.debug("Discarding stale product snapshot (v%s < v%s)", version, self._version)
                return False
            self._products = snapshot
            self._stored_at = self._clock()
            return True

    def invalidate(self) -> None:
        with self._lock:
            self._products = None
            self._version += 1
