"""
Subscription / usage gate.

The policy itself is pure: ``evaluate_limit`` and ``TierPolicy`` decide from a
tier, a usage count and a requested amount. ``SubscriptionGate`` binds a tier
to the per-day usage counters so callers can ask "may I?" and record "I did".
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, FrozenSet, List, Optional

from shop_agent.config import settings
from shop_agent.core.exceptions import RateLimitError, ValidationError
from shop_agent.core.logging_config import get_logger
from shop_agent.repositories.usage_repo import UsageRepository

logger = get_logger(__name__)

UNLIMITED = -1
ANY = "*"

FEATURE_PRODUCT_ANALYSIS = "product_analysis"
FEATURE_CUSTOMER_ANALYSIS = "customer_analysis"
FEATURE_AUTO_ACTIONS = "auto_actions"
FEATURE_SQL_ANALYSIS = "sql_analysis"
FEATURE_ADVANCED_REPORTS = "advanced_reports"

LIMIT_ANALYSES_PER_DAY = "analyses_per_day"
LIMIT_ACTIONS_PER_DAY = "actions_per_day"
LIMIT_PRODUCTS_PER_ANALYSIS = "products_per_analysis"
LIMIT_CUSTOMERS_PER_ANALYSIS = "customers_per_analysis"

# Counted against LIMIT_ACTIONS_PER_DAY when suggestions are stored as actions
USAGE_ACTIONS_CREATED = "actions_created"


@dataclass(frozen=True)
class TierPolicy:
    name: str
    label: str
    features: FrozenSet[str]
    limits: Dict[str, int]
    llm_providers: FrozenSet[str]
    action_types: FrozenSet[str] = field(default_factory=frozenset)

    def has_feature(self, feature: str) -> bool:
        return ANY in self.features or feature in self.features

    def allows_provider(self, provider: str) -> bool:
        return ANY in self.llm_providers or provider in self.llm_providers

    def allows_action(self, action_type: str) -> bool:
        return ANY in self.action_types or action_type in self.action_types

    def limit(self, limit_key: str) -> int:
        return self.limits.get(limit_key, 0)


TIERS: Dict[str, TierPolicy] = {
    "free": TierPolicy(
        name="free",
        label="Free",
        features=frozenset({FEATURE_PRODUCT_ANALYSIS}),
        limits={
            LIMIT_ANALYSES_PER_DAY: 5,
            LIMIT_ACTIONS_PER_DAY: 0,
            LIMIT_PRODUCTS_PER_ANALYSIS: 10,
            LIMIT_CUSTOMERS_PER_ANALYSIS: 0,
        },
        llm_providers=frozenset({"ollama"}),
    ),
    "basic": TierPolicy(
        name="basic",
        label="Basic",
        features=frozenset({FEATURE_PRODUCT_ANALYSIS, FEATURE_CUSTOMER_ANALYSIS, FEATURE_AUTO_ACTIONS}),
        limits={
            LIMIT_ANALYSES_PER_DAY: 20,
            LIMIT_ACTIONS_PER_DAY: 50,
            LIMIT_PRODUCTS_PER_ANALYSIS: 50,
            LIMIT_CUSTOMERS_PER_ANALYSIS: 100,
        },
        llm_providers=frozenset({"ollama", "openai"}),
        action_types=frozenset({
            "send_email", "send_sms", "create_discount", "schedule_followup", "inventory_alert",
        }),
    ),
    "pro": TierPolicy(
        name="pro",
        label="Professional",
        features=frozenset({
            FEATURE_PRODUCT_ANALYSIS, FEATURE_CUSTOMER_ANALYSIS, FEATURE_AUTO_ACTIONS,
            FEATURE_SQL_ANALYSIS, FEATURE_ADVANCED_REPORTS,
        }),
        limits={
            LIMIT_ANALYSES_PER_DAY: 100,
            LIMIT_ACTIONS_PER_DAY: 500,
            LIMIT_PRODUCTS_PER_ANALYSIS: 200,
            LIMIT_CUSTOMERS_PER_ANALYSIS: 500,
        },
        llm_providers=frozenset({"ollama", "openai", "anthropic"}),
        action_types=frozenset({ANY}),
    ),
    "enterprise": TierPolicy(
        name="enterprise",
        label="Enterprise",
        features=frozenset({ANY}),
        limits={
            LIMIT_ANALYSES_PER_DAY: UNLIMITED,
            LIMIT_ACTIONS_PER_DAY: UNLIMITED,
            LIMIT_PRODUCTS_PER_ANALYSIS: UNLIMITED,
            LIMIT_CUSTOMERS_PER_ANALYSIS: UNLIMITED,
        },
        llm_providers=frozenset({ANY}),
        action_types=frozenset({ANY}),
    ),
}


@dataclass(frozen=True)
class LimitDecision:
    allowed: bool
    limit: int
    used: int
    remaining: int  # -1 when unlimited

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    def to_dict(self) -> Dict[str, int]:
        return {"allowed": self.allowed, "limit": self.limit, "used": self.used, "remaining": self.remaining}


def get_tier(tier: str) -> TierPolicy:
    try:
        return TIERS[tier]
    except KeyError:
        raise ValidationError(f"Unknown subscription tier '{tier}'", field="tier")


def evaluate_limit(policy: TierPolicy, limit_key: str, used: int, requested: int = 1) -> LimitDecision:
    """Pure decision: may ``requested`` more units be consumed today?"""
    limit = policy.limit(limit_key)
    if limit == UNLIMITED:
        return LimitDecision(allowed=True, limit=limit, used=used, remaining=UNLIMITED)
    remaining = max(0, limit - used)
    return LimitDecision(allowed=requested <= remaining, limit=limit, used=used, remaining=remaining)


def cap_count(policy: TierPolicy, limit_key: str, requested: int) -> int:
    """Cap a per-run entity count by the tier limit."""
    limit = policy.limit(limit_key)
    if limit == UNLIMITED:
        return requested
    return max(0, min(requested, limit))


class SubscriptionGate:

    def __init__(self, tier: Optional[str] = None, usage_repo: Optional[UsageRepository] = None):
        self.policy = get_tier(tier or settings.subscription_tier)
        self.usage = usage_repo or UsageRepository()

    @property
    def tier(self) -> str:
        return self.policy.name

    def is_feature_enabled(self, feature: str) -> bool:
        return self.policy.has_feature(feature)

    def is_provider_allowed(self, provider: str) -> bool:
        return self.policy.allows_provider(provider)

    def allowed_providers(self, known: List[str]) -> List[str]:
        return [p for p in known if self.policy.allows_provider(p)]

    def is_action_allowed(self, action_type: str) -> bool:
        return self.policy.allows_action(action_type)

    def get_limit(self, limit_key: str) -> int:
        return self.policy.limit(limit_key)

    def cap(self, limit_key: str, requested: int) -> int:
        return cap_count(self.policy, limit_key, requested)

    def check_usage_limit(self, usage_type: str, requested: int = 1, day: Optional[date] = None) -> LimitDecision:
        return evaluate_limit(self.policy, usage_type, self.usage.get(usage_type, day), requested)

    def require_within_limit(self, usage_type: str, requested: int = 1) -> LimitDecision:
        decision = self.check_usage_limit(usage_type, requested)
        if not decision.allowed:
            raise RateLimitError(
                limit=decision.limit,
                window="day",
                remaining=decision.remaining,
                user_message=f"Daily {usage_type.replace('_', ' ')} limit of {decision.limit} reached for the {self.policy.label} plan.",
            )
        return decision

    def check_action_creation(self, requested: int = 1) -> LimitDecision:
        used = self.usage.get(USAGE_ACTIONS_CREATED)
        return evaluate_limit(self.policy, LIMIT_ACTIONS_PER_DAY, used, requested)

    def increment_usage(self, usage_type: str, amount: int = 1) -> int:
        count = self.usage.increment(usage_type, amount)
        logger.debug("Usage incremented", usage_type=usage_type, count=count, tier=self.tier)
        return count

    def usage_summary(self) -> Dict[str, Dict[str, int]]:
        today = self.usage.get_day()
        summary = {
            key: evaluate_limit(self.policy, key, today.get(key, 0), 0).to_dict()
            for key in (LIMIT_ANALYSES_PER_DAY, LIMIT_ACTIONS_PER_DAY)
        }
        summary[USAGE_ACTIONS_CREATED] = evaluate_limit(
            self.policy, LIMIT_ACTIONS_PER_DAY, today.get(USAGE_ACTIONS_CREATED, 0), 0
        ).to_dict()
        return summary
