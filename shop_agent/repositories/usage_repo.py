"""Per-day usage counters with increment-or-create semantics."""

from datetime import date, timedelta
from typing import Optional, Dict

from sqlalchemy import update, delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from shop_agent.core.exceptions import PersistenceError
from shop_agent.models import UsageCounter
from .base import BaseRepository


class UsageRepository(BaseRepository):

    def _bump(self, usage_type: str, day: date, amount: int) -> bool:
        with self._write("increment_usage") as session:
            result = session.execute(
                update(UsageCounter)
                .where(UsageCounter.usage_type == usage_type)
                .where(UsageCounter.usage_date == day)
                .values(count=UsageCounter.count + amount)
            )
            return (result.rowcount or 0) > 0

    def increment(self, usage_type: str, amount: int = 1, day: Optional[date] = None) -> int:
        """Atomically add ``amount`` to today's counter, creating the row on first use."""
        day = day or date.today()
        if not self._bump(usage_type, day, amount):
            try:
                with self._write("create_usage") as session:
                    session.add(UsageCounter(usage_type=usage_type, usage_date=day, count=amount))
            except PersistenceError as e:
                # Another writer created the row first; add to theirs
                if not isinstance(e.__cause__, IntegrityError):
                    raise
                self._bump(usage_type, day, amount)
        return self.get(usage_type, day)

    def get(self, usage_type: str, day: Optional[date] = None) -> int:
        day = day or date.today()
        with self._read("get_usage") as session:
            row = session.exec(
                select(UsageCounter)
                .where(UsageCounter.usage_type == usage_type)
                .where(UsageCounter.usage_date == day)
            ).first()
            return row.count if row else 0

    def get_day(self, day: Optional[date] = None) -> Dict[str, int]:
        day = day or date.today()
        with self._read("get_usage_day") as session:
            rows = session.exec(select(UsageCounter).where(UsageCounter.usage_date == day)).all()
            return {row.usage_type: row.count for row in rows}

    def delete_older_than(self, days: int) -> int:
        cutoff = date.today() - timedelta(days=days)
        with self._write("cleanup_usage") as session:
            result = session.execute(delete(UsageCounter).where(UsageCounter.usage_date < cutoff))
            return result.rowcount or 0
