"""Per-day usage counters."""

from datetime import date
from typing import Optional
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class UsageCounter(SQLModel, table=True):
    __tablename__ = "agent_usage"
    __table_args__ = (UniqueConstraint("usage_type", "usage_date", name="uq_agent_usage_type_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    usage_type: str = Field(index=True)
    usage_date: date = Field(index=True)
    count: int = Field(default=0)
