"""
Small TTL cache on top of the ``agent_cache`` table.

Each process keeps its own copy of the entries it has read or written in
front of the table. The copy is what keeps fallback reads working while the
database itself is unreachable, so a storage failure here is logged and
treated as a miss rather than raised.
"""

import copy
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from shop_agent.core.exceptions import PersistenceError
from shop_agent.core.logging_config import get_logger
from shop_agent.repositories.cache_repo import CacheRepository

logger = get_logger(__name__)

_MISSING = object()


class CacheService:

    def __init__(self, repo: Optional[CacheRepository] = None, clock: Callable[[], datetime] = datetime.utcnow):
        self.repo = repo or CacheRepository()
        self.clock = clock
        self._local: Dict[str, Tuple[Any, Optional[datetime]]] = {}

    def _expired(self, expires_at: Optional[datetime]) -> bool:
        return expires_at is not None and expires_at <= self.clock()

    def get(self, key: str, default: Any = None) -> Any:
        local = self._local.get(key)
        if local is not None:
            value, expires_at = local
            if not self._expired(expires_at):
                return copy.deepcopy(value)
            del self._local[key]

        try:
            entry = self.repo.get(key)
        except PersistenceError as e:
            logger.warning("Cache read failed, treating as miss", key=key, error=e.message)
            return default
        if entry is None or self._expired(entry.expires_at):
            return default
        self._local[key] = (copy.deepcopy(entry.value), entry.expires_at)
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store ``value``; ``ttl`` in seconds, ``None`` keeps it until overwritten."""
        expires_at = self.clock() + timedelta(seconds=ttl) if ttl else None
        self._local[key] = (copy.deepcopy(value), expires_at)
        try:
            self.repo.set(key, value, expires_at)
        except PersistenceError as e:
            logger.warning("Cache write failed, kept in process only", key=key, error=e.message)

    def delete(self, key: str) -> bool:
        self._local.pop(key, None)
        return self.repo.delete(key)

    def remember(self, key: str, ttl: Optional[int], producer: Callable[[], Any]) -> Any:
        cached = self.get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        value = producer()
        self.set(key, value, ttl)
        return value

    def purge_expired(self) -> int:
        for key in [k for k, (_, expires_at) in self._local.items() if self._expired(expires_at)]:
            del self._local[key]
        removed = self.repo.purge_expired(self.clock())
        if removed:
            logger.debug("Expired cache entries purged", removed=removed)
        return removed
