"""Action records driven through the approval/execution state machine."""

from datetime import datetime
from typing import Optional, Dict, Any
from sqlmodel import Field, Column, JSON

from .base import BaseCreatedOnly, ActionStatus, UTCDateTime


class ActionRecord(BaseCreatedOnly, table=True):
    __tablename__ = "agent_actions"

    id: Optional[int] = Field(default=None, primary_key=True)
    analysis_id: Optional[int] = Field(default=None, index=True)
    action_type: str = Field(index=True)
    action_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    status: str = Field(default=ActionStatus.PENDING.value, index=True)
    priority_score: int = Field(default=50, index=True)
    requires_approval: bool = Field(default=False)
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    executed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    result: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    error_message: Optional[str] = None
    retry_count: int = Field(default=0)

    @property
    def entity_key(self) -> Optional[tuple]:
        data = self.action_data or {}
        if data.get("entity_id") is None:
            return None
        return (data.get("entity_type"), str(data.get("entity_id")))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "analysis_id": self.analysis_id,
            "action_type": self.action_type,
            "action_data": self.action_data or {},
            "status": self.status,
            "priority_score": self.priority_score,
            "requires_approval": self.requires_approval,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "result": self.result,
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
