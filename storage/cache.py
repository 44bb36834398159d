"""
Single-flight query cache.
Maps a canonical query key to the Future of the batch fetched for it, so concurrent and repeated
requests for the same query share one fetch.
"""

import json
import time
import threading
import logging
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional, Tuple

from normalize.models import Bug

logger = logging.getLogger(__name__)

Batch = Tuple[Bug, ...]


def canonical_key(value: Any) -> str:
    """Deterministic JSON serialization used as a cache key."""
    return json.dumps(value, sort_keys=True, separators=(',', ':'), default=str)


class QueryCache:
    """In-process cache of fetched bug batches with single-flight loading.

    Eviction policy: a successful batch stays for the lifetime of the cache object
    (no TTL, no size bound); a failed fetch is dropped as soon as it settles, so a
    later call fetches again. clear() resets everything.
    """

    def __init__(self):
        self._futures: Dict[str, Future] = {}
        self._created: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get_or_load(self, key: str, loader: Callable[[], List[Bug]]) -> Batch:
        """Return the batch for key, running loader only if no fetch for key exists yet.

        Blocks until the batch is available. Loader exceptions propagate to every
        caller waiting on the same key.
        """
        with self._lock:
            future = self._futures.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._futures[key] = future
                self._created[key] = time.time()
                self._misses += 1
            else:
                self._hits += 1

        if owner:
            logger.debug("cache miss, loading %s", key)
            try:
                batch = tuple(loader())
            except BaseException as exc:
                self._discard(key, future)
                future.set_exception(exc)
            else:
                future.set_result(batch)
        return future.result()

    def _discard(self, key: str, future: Future):
        with self._lock:
            if self._futures.get(key) is future:
                del self._futures[key]
                self._created.pop(key, None)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._futures

    def __len__(self) -> int:
        with self._lock:
            return len(self._futures)

    def stats(self) -> Dict[str, Any]:
        """Return basic statistics: entries, pending fetches, hits and misses."""
        with self._lock:
            pending = sum(1 for f in self._futures.values() if not f.done())
            return {'entries': len(self._futures), 'pending': pending, 'hits': self._hits, 'misses': self._misses}

    def list_keys(self, limit: int = 1000) -> List[Dict[str, Any]]:
        """Return cache keys with basic metadata, newest first."""
        with self._lock:
            rows = sorted(self._created.items(), key=lambda kv: kv[1], reverse=True)[:limit]
            return [{'key': k, 'timestamp': ts, 'done': self._futures[k].done()} for k, ts in rows]

    def clear(self) -> int:
        """Forget every entry. Fetches already running still complete for their current waiters."""
        with self._lock:
            count = len(self._futures)
            self._futures.clear()
            self._created.clear()
            return count


__all__ = ["QueryCache", "canonical_key"]
