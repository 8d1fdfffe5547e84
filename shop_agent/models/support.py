"""Support tables: scheduled tasks, runtime settings, cache entries."""

from datetime import datetime
from typing import Optional, Dict, Any
from sqlmodel import SQLModel, Field, Column, JSON

from .base import BaseCreatedOnly, TaskStatus, UTCDateTime


class ScheduledTask(BaseCreatedOnly, table=True):
    __tablename__ = "agent_scheduled_tasks"

    id: Optional[int] = Field(default=None, primary_key=True)
    task_type: str = Field(index=True)
    task_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    scheduled_at: datetime = Field(index=True, sa_type=UTCDateTime)
    status: str = Field(default=TaskStatus.PENDING.value, index=True)
    result: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    executed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_type": self.task_type,
            "task_data": self.task_data,
            "scheduled_at": self.scheduled_at.isoformat(),
            "status": self.status,
            "result": self.result,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
        }


class SettingRecord(SQLModel, table=True):
    __tablename__ = "agent_settings"

    key: str = Field(primary_key=True)
    value: Any = Field(default=None, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_type=UTCDateTime)


class CacheEntry(SQLModel, table=True):
    __tablename__ = "agent_cache"

    key: str = Field(primary_key=True)
    value: Any = Field(default=None, sa_column=Column(JSON))
    expires_at: Optional[datetime] = Field(default=None, index=True, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_type=UTCDateTime)


class RateLimitCounter(SQLModel, table=True):
    """Request count for one caller key inside one fixed window."""
    __tablename__ = "agent_rate_limits"

    key: str = Field(primary_key=True)
    count: int = Field(default=0)
    expires_at: datetime = Field(index=True, sa_type=UTCDateTime)
