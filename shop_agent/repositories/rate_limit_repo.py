"""Fixed-window request counters."""

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError

from shop_agent.core.exceptions import PersistenceError
from shop_agent.models import RateLimitCounter
from .base import BaseRepository


class RateLimitRepository(BaseRepository):

    def get(self, key: str) -> int:
        with self._read("rate_limit_get") as session:
            row = session.get(RateLimitCounter, key)
            return row.count if row else 0

    def increment(self, key: str, expires_at: datetime) -> int:
        """Atomically add one hit to the window, creating it on first use."""
        with self._write("rate_limit_increment") as session:
            result = session.execute(
                update(RateLimitCounter)
                .where(RateLimitCounter.key == key)
                .values(count=RateLimitCounter.count + 1)
            )
            updated = (result.rowcount or 0) > 0

        if not updated:
            try:
                with self._write("rate_limit_create") as session:
                    session.add(RateLimitCounter(key=key, count=1, expires_at=expires_at))
                return 1
            except PersistenceError as e:
                if not isinstance(e.__cause__, IntegrityError):
                    raise
                return self.increment(key, expires_at)

        return self.get(key)

    def reset(self, key_prefix: str) -> int:
        with self._write("rate_limit_reset") as session:
            result = session.execute(delete(RateLimitCounter).where(RateLimitCounter.key.startswith(key_prefix)))
            return result.rowcount or 0

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        with self._write("rate_limit_purge") as session:
            result = session.execute(delete(RateLimitCounter).where(RateLimitCounter.expires_at < now))
            return result.rowcount or 0
