"""Base models and enums shared by the agent tables."""

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field
from datetime import datetime, timezone
from enum import Enum


class UTCDateTime(TypeDecorator):
    """Timestamps are stored as naive UTC; aware values are converted on the way in."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class AnalysisType(str, Enum):
    PRODUCT = "product"
    CUSTOMER = "customer"


class AnalysisStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class ActionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def terminal(cls) -> tuple:
        return (cls.COMPLETED, cls.FAILED, cls.CANCELLED)

    @classmethod
    def open(cls) -> tuple:
        return (cls.PENDING, cls.APPROVED)


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class BaseCreatedOnly(SQLModel):
    """Base model for append-only tables (only created_at)."""
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True, sa_type=UTCDateTime)


class BaseCreatedUpdated(SQLModel):
    """Base model for mutable tables (created_at + updated_at)."""
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_type=UTCDateTime)
