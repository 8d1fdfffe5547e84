"""Durable cache rows used for read fallbacks."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete

from shop_agent.models import CacheEntry
from .base import BaseRepository


class CacheRepository(BaseRepository):

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._read("cache_get") as session:
            return session.get(CacheEntry, key)

    def set(self, key: str, value: Any, expires_at: Optional[datetime] = None) -> None:
        with self._write("cache_set") as session:
            session.merge(CacheEntry(key=key, value=value, expires_at=expires_at, updated_at=datetime.utcnow()))

    def delete(self, key: str) -> bool:
        with self._write("cache_delete") as session:
            result = session.execute(delete(CacheEntry).where(CacheEntry.key == key))
            return (result.rowcount or 0) > 0

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        with self._write("cache_purge") as session:
            result = session.execute(
                delete(CacheEntry).where(CacheEntry.expires_at.is_not(None)).where(CacheEntry.expires_at < now)
            )
            return result.rowcount or 0
