"""Domain types produced by the entity analyzers."""

from typing import List, Dict, Any, Optional
from pydantic import BaseModel, Field

NEUTRAL_PRIORITY = 50


def clamp_score(value: Any, default: int = NEUTRAL_PRIORITY) -> int:
    """Coerce model output into an integer score within 0-100."""
    if isinstance(value, bool):
        return default
    try:
        score = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return default
    if score != score:  # NaN
        return default
    return int(round(max(0.0, min(100.0, score))))


class Suggestion(BaseModel):
    """One model-proposed action, before it becomes an ActionRecord."""
    type: str
    priority: int = NEUTRAL_PRIORITY
    data: Dict[str, Any] = Field(default_factory=dict)
    reasoning: Optional[str] = None


class ParsedAnalysis(BaseModel):
    analysis: str = ""
    suggestions: List[Suggestion] = Field(default_factory=list)
    priority_score: int = NEUTRAL_PRIORITY
    extra: Dict[str, Any] = Field(default_factory=dict)


class EntityAnalysis(BaseModel):
    """Outcome of analyzing a single entity."""
    analysis_id: Optional[int] = None
    entity_id: int
    entity_type: str
    success: bool
    priority_score: int = NEUTRAL_PRIORITY
    suggestions: List[Suggestion] = Field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None
