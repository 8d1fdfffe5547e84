"""Service wiring shared by the API and the worker."""

from functools import lru_cache

from shop_agent.config import settings
from shop_agent.core.resilience import CircuitBreakerConfig, ResilienceManager
from shop_agent.repositories.circuit_repo import CircuitBreakerRepository
from shop_agent.services.actions.executor import ActionExecutor
from shop_agent.services.actions.registry import ActionRegistry
from shop_agent.services.analyzers.customer import CustomerAnalyzer
from shop_agent.services.analyzers.product import ProductAnalyzer
from shop_agent.services.cache import CacheService
from shop_agent.services.job_manager import AnalysisJobManager
from shop_agent.services.llm.audit import PromptAuditLogger
from shop_agent.services.llm.factory import LLMFactory
from shop_agent.services.llm.gateway import LLMGateway
from shop_agent.services.notification import NotificationService
from shop_agent.services.rate_limiter import RateLimiter
from shop_agent.services.retention import RetentionService
from shop_agent.services.scheduled_tasks import ScheduledTaskService
from shop_agent.services.settings_store import SettingsStore
from shop_agent.services.store import InMemoryStore, StoreGateway
from shop_agent.services.subscription import SubscriptionGate


@lru_cache(maxsize=1)
def get_settings_store() -> SettingsStore:
    return SettingsStore()


@lru_cache(maxsize=1)
def get_store() -> StoreGateway:
    """The shop backend. Deployments override this dependency with their own gateway."""
    return InMemoryStore()


@lru_cache(maxsize=1)
def get_subscription() -> SubscriptionGate:
    return SubscriptionGate(settings.subscription_tier)


@lru_cache(maxsize=1)
def get_resilience() -> ResilienceManager:
    return ResilienceManager(
        store=CircuitBreakerRepository(),
        breaker_config=CircuitBreakerConfig(
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=settings.circuit_recovery_timeout_seconds,
        ),
        default_timeout=settings.operation_timeout_seconds,
    )


def get_llm_gateway() -> LLMGateway:
    """Built per call so provider changes in the settings store apply immediately."""
    store = get_settings_store()
    provider = LLMFactory.create(
        store.llm_config(),
        subscription=get_subscription(),
        audit=PromptAuditLogger(enabled=bool(store.get("debug_save_prompts"))),
    )
    return LLMGateway(
        provider,
        resilience=get_resilience(),
        retry_attempts=store.get_int("llm_retry_attempts", 3),
        retry_delay_ms=store.get_int("llm_retry_delay", 1000),
    )


@lru_cache(maxsize=1)
def get_notifications() -> NotificationService:
    return NotificationService(get_store(), get_settings_store())


@lru_cache(maxsize=1)
def get_action_executor() -> ActionExecutor:
    registry = ActionRegistry(get_store(), get_settings_store())
    return ActionExecutor(
        registry,
        subscription=get_subscription(),
        notifications=get_notifications(),
        settings_store=get_settings_store(),
    )


def get_job_manager() -> AnalysisJobManager:
    llm = get_llm_gateway()
    store = get_store()
    return AnalysisJobManager(
        ProductAnalyzer(llm, store, settings_store=get_settings_store()),
        CustomerAnalyzer(llm, store, settings_store=get_settings_store()),
        get_action_executor(),
    )


@lru_cache(maxsize=1)
def get_task_service() -> ScheduledTaskService:
    return ScheduledTaskService(get_action_executor())


@lru_cache(maxsize=1)
def get_retention_service() -> RetentionService:
    return RetentionService(get_settings_store())


@lru_cache(maxsize=1)
def get_cache() -> CacheService:
    return CacheService()


@lru_cache(maxsize=1)
def get_rate_limiter() -> RateLimiter:
    return RateLimiter(get_settings_store())
