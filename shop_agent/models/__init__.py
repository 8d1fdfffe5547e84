"""Models package for the shop agent."""

from .base import (
    AnalysisType,
    AnalysisStatus,
    ActionStatus,
    TaskStatus,
)
from .analysis import AnalysisRecord, AnalysisRun
from .actions import ActionRecord
from .job_state import JobStateRecord, CURRENT_JOB_KEY
from .usage import UsageCounter
from .circuit import CircuitBreakerRecord
from .support import ScheduledTask, SettingRecord, CacheEntry, RateLimitCounter

__all__ = [
    "AnalysisType",
    "AnalysisStatus",
    "ActionStatus",
    "TaskStatus",
    "AnalysisRecord",
    "AnalysisRun",
    "ActionRecord",
    "JobStateRecord",
    "CURRENT_JOB_KEY",
    "UsageCounter",
    "CircuitBreakerRecord",
    "ScheduledTask",
    "SettingRecord",
    "CacheEntry",
    "RateLimitCounter",
]
