"""Durable singleton row holding the in-flight analysis job."""

from datetime import datetime
from typing import Dict, Any
from sqlmodel import SQLModel, Field, Column, JSON

from .base import UTCDateTime

CURRENT_JOB_KEY = "current"


class JobStateRecord(SQLModel, table=True):
    """
    The whole job state is one JSON document. ``version`` is bumped on every
    write and used as the compare-and-swap token.
    """
    __tablename__ = "agent_job_state"

    key: str = Field(default=CURRENT_JOB_KEY, primary_key=True)
    version: int = Field(default=0)
    state: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_type=UTCDateTime)
