"""Retention-based cleanup of old analyses, actions and counters."""

from typing import Dict, Optional

from shop_agent.core.logging_config import get_logger
from shop_agent.repositories.action_repo import ActionRepository
from shop_agent.repositories.analysis_repo import AnalysisRepository
from shop_agent.repositories.cache_repo import CacheRepository
from shop_agent.repositories.rate_limit_repo import RateLimitRepository
from shop_agent.repositories.task_repo import ScheduledTaskRepository
from shop_agent.repositories.usage_repo import UsageRepository
from shop_agent.services.settings_store import SettingsStore

logger = get_logger(__name__)


class RetentionService:

    def __init__(
        self,
        settings_store: Optional[SettingsStore] = None,
        analyses: Optional[AnalysisRepository] = None,
        actions: Optional[ActionRepository] = None,
        usage: Optional[UsageRepository] = None,
        cache: Optional[CacheRepository] = None,
        rate_limits: Optional[RateLimitRepository] = None,
        tasks: Optional[ScheduledTaskRepository] = None,
    ):
        self.settings = settings_store or SettingsStore()
        self.analyses = analyses or AnalysisRepository()
        self.actions = actions or ActionRepository()
        self.usage = usage or UsageRepository()
        self.cache = cache or CacheRepository()
        self.rate_limits = rate_limits or RateLimitRepository()
        self.tasks = tasks or ScheduledTaskRepository()

    def cleanup(self, days: Optional[int] = None) -> Dict[str, int]:
        """Delete records older than ``days`` (default: ``analysis_retention_days``)."""
        days = days or self.settings.get_int("analysis_retention_days", 90)
        removed = {
            "analyses": self.analyses.delete_older_than(days),
            "actions": self.actions.delete_terminal_older_than(days),
            "usage": self.usage.delete_older_than(days),
            "tasks": self.tasks.delete_finished_older_than(days),
            "cache": self.cache.purge_expired(),
            "rate_limits": self.rate_limits.purge_expired(),
        }
        logger.info("Retention cleanup finished", days=days, **removed)
        return removed
