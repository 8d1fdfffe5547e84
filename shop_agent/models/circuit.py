"""Persisted circuit breaker state, one row per guarded operation."""

from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field

from .base import UTCDateTime


class CircuitBreakerRecord(SQLModel, table=True):
    __tablename__ = "agent_circuit_breakers"

    operation: str = Field(primary_key=True)
    state: str = Field(default="closed")
    failure_count: int = Field(default=0)
    opened_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    next_retry_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    last_failure_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    last_error: Optional[str] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_type=UTCDateTime)
