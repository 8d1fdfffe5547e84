"""Persisted circuit breaker state so every process sees the same circuit."""

from datetime import datetime
from typing import List, Optional

from sqlmodel import select

from shop_agent.models import CircuitBreakerRecord
from .base import BaseRepository


class CircuitBreakerRepository(BaseRepository):

    def get(self, operation: str) -> Optional[CircuitBreakerRecord]:
        with self._read("get_circuit") as session:
            return session.get(CircuitBreakerRecord, operation)

    def save(self, record: CircuitBreakerRecord) -> CircuitBreakerRecord:
        record.updated_at = datetime.utcnow()
        with self._write("save_circuit") as session:
            merged = session.merge(record)
            session.flush()
            return merged

    def list(self) -> List[CircuitBreakerRecord]:
        with self._read("list_circuits") as session:
            return list(session.exec(select(CircuitBreakerRecord).order_by(CircuitBreakerRecord.operation)).all())

    def delete(self, operation: str) -> bool:
        with self._write("delete_circuit") as session:
            record = session.get(CircuitBreakerRecord, operation)
            if record is None:
                return False
            session.delete(record)
            return True
