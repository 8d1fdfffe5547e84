"""Analysis records and completed-run summaries."""

from typing import Optional, Dict, Any, List
from sqlmodel import Field, Column, JSON

from .base import BaseCreatedOnly, AnalysisStatus


class AnalysisRecord(BaseCreatedOnly, table=True):
    """One LLM analysis of a single product or customer."""
    __tablename__ = "agent_analyses"

    id: Optional[int] = Field(default=None, primary_key=True)
    analysis_type: str = Field(index=True)
    entity_id: int = Field(index=True)
    entity_type: str
    analysis_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    suggestions: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    priority_score: int = Field(default=50)
    status: str = Field(default=AnalysisStatus.COMPLETED.value, index=True)
    llm_provider: Optional[str] = None
    llm_model: Optional[str] = None
    tokens_used: int = Field(default=0)
    duration_ms: int = Field(default=0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "analysis_type": self.analysis_type,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "analysis_data": self.analysis_data,
            "suggestions": self.suggestions or [],
            "priority_score": self.priority_score,
            "status": self.status,
            "llm_provider": self.llm_provider,
            "llm_model": self.llm_model,
            "tokens_used": self.tokens_used,
            "duration_ms": self.duration_ms,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class AnalysisRun(BaseCreatedOnly, table=True):
    """Summary row written when an analysis job finishes."""
    __tablename__ = "agent_analysis_runs"

    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: str = Field(index=True)
    type: str
    success: bool = Field(default=True)
    products_analyzed: int = Field(default=0)
    customers_analyzed: int = Field(default=0)
    actions_created: int = Field(default=0)
    errors: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    duration_ms: int = Field(default=0)
