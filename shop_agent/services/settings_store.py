"""Runtime settings consulted by the analysis pipeline.

Values live in the ``agent_settings`` table as JSON; anything never written
falls back to ``DEFAULTS``.
"""

from typing import Any, Dict, List, Optional

from shop_agent.core.logging_config import get_logger
from shop_agent.repositories.settings_repo import SettingsRepository

logger = get_logger(__name__)

DEFAULTS: Dict[str, Any] = {
    # LLM
    "llm_provider": "ollama",
    "llm_api_key": "",
    "llm_endpoint": "",
    "llm_model": "llama2",
    "llm_temperature": 0.7,
    "llm_max_tokens": 2000,
    "llm_timeout": 60,
    "llm_json_mode": True,
    "llm_retry_attempts": 3,
    "llm_retry_delay": 1000,  # ms
    # Analysis
    "analysis_product_limit": 50,
    "analysis_customer_limit": 100,
    "analysis_priority_threshold": 70,
    "analysis_retention_days": 90,
    # Actions
    "actions_max_per_run": 10,
    "actions_retry_failed": True,
    "actions_retry_attempts": 3,
    "actions_enabled_types": ["send_email", "create_discount"],
    "actions_require_approval": ["create_discount", "update_product"],
    # Rate limits
    "rate_limit_per_hour": 100,
    "rate_limit_per_day": 1000,
    # Notifications
    "notify_admin_email": "",
    "notify_on_high_priority": True,
    "notify_on_errors": True,
    "notify_on_daily_summary": False,
    # Debug
    "debug_save_prompts": False,
    # SMS
    "sms_provider": "",
}


class SettingsStore:
    """get / set / all over the persisted settings, with defaults."""

    def __init__(self, repo: Optional[SettingsRepository] = None):
        self.repo = repo or SettingsRepository()

    def get(self, key: str, default: Any = None) -> Any:
        record = self.repo.get(key)
        if record is not None and record.value is not None:
            return record.value
        if default is not None:
            return default
        return DEFAULTS.get(key)

    def set(self, key: str, value: Any) -> None:
        self.repo.set(key, value)
        logger.info("Setting updated", key=key)

    def update(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            self.set(key, value)

    def all(self) -> Dict[str, Any]:
        merged = dict(DEFAULTS)
        merged.update({k: v for k, v in self.repo.all().items() if v is not None})
        return merged

    def get_int(self, key: str, default: int = 0) -> int:
        try:
            return int(self.get(key, default))
        except (TypeError, ValueError):
            return default

    def get_list(self, key: str) -> List[str]:
        value = self.get(key)
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        return list(value or [])

    def is_notification_enabled(self, kind: str) -> bool:
        return bool(self.get(f"notify_on_{kind}", False))

    def llm_config(self) -> Dict[str, Any]:
        """The provider configuration assembled from ``llm_*`` keys."""
        config = {
            "provider": self.get("llm_provider"),
            "api_key": self.get("llm_api_key"),
            "model": self.get("llm_model"),
            "temperature": self.get("llm_temperature"),
            "max_tokens": self.get("llm_max_tokens"),
            "timeout": self.get("llm_timeout"),
            "json_mode": self.get("llm_json_mode"),
        }
        endpoint = self.get("llm_endpoint")
        if endpoint:
            config["endpoint"] = endpoint
        return config
