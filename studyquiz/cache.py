"""
Query cache keyed by (resource, scope_id).

Replaces an ambient global cache: the app keeps one QueryCache per browser
session in st.session_state and hands it to whoever needs it. Entries go stale
after stale_seconds and are re-fetched; mutations call invalidate() explicitly.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Tuple

from engine import CACHE_STALE_SECONDS

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, Hashable]

# resources derived from documents and quizzes rows
DOCUMENT_VIEWS = ("documents", "storage", "dashboard", "progress")
QUIZ_VIEWS = ("quizzes", "dashboard", "document_quiz")


@dataclass
class _Entry:
    value: Any
    fetched_at: float


class QueryCache:
    def __init__(self, stale_seconds: float = CACHE_STALE_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.stale_seconds = stale_seconds
        self.clock = clock
        self._entries: Dict[CacheKey, _Entry] = {}

    def get(self, resource: str, scope_id: Hashable) -> Optional[Any]:
        entry = self._entries.get((resource, scope_id))
        if entry is None or self._is_stale(entry):
            return None
        return entry.value

    def set(self, resource: str, scope_id: Hashable, value: Any) -> None:
        self._entries[(resource, scope_id)] = _Entry(value, self.clock())

    def get_or_fetch(self, resource: str, scope_id: Hashable, fetch: Callable[[], Any]) -> Any:
        """Cached value if fresh, else fetch(), store and return it. Fetch errors are not cached."""
        key = (resource, scope_id)
        entry = self._entries.get(key)
        if entry is not None and not self._is_stale(entry):
            return entry.value
        logger.debug(f"Cache miss for {resource}/{scope_id}")
        value = fetch()
        self._entries[key] = _Entry(value, self.clock())
        return value

    def invalidate(self, resource: str, scope_id: Optional[Hashable] = None) -> int:
        """Drop one entry, or every entry of resource when scope_id is None. Returns how many were dropped."""
        if scope_id is not None:
            return 1 if self._entries.pop((resource, scope_id), None) is not None else 0
        keys = [k for k in self._entries if k[0] == resource]
        for k in keys:
            del self._entries[k]
        return len(keys)

    def invalidate_views(self, resources: Iterable[str]) -> int:
        """Drop every entry of each resource, whatever its scope."""
        return sum(self.invalidate(resource) for resource in resources)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not self._is_stale(entry)

    def _is_stale(self, entry: _Entry) -> bool:
        return self.clock() - entry.fetched_at > self.stale_seconds
