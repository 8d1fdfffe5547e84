import pytest

from shop_agent.core.exceptions import RateLimitError, ValidationError
from shop_agent.services.subscription import (
    LIMIT_ACTIONS_PER_DAY, LIMIT_ANALYSES_PER_DAY, LIMIT_PRODUCTS_PER_ANALYSIS, TIERS, SubscriptionGate,
    cap_count, evaluate_limit, get_tier,
)


class TestPolicy:

    def test_unlimited(self):
        decision = evaluate_limit(TIERS["enterprise"], LIMIT_ANALYSES_PER_DAY, used=10_000)
        assert decision.allowed
        assert decision.unlimited
        assert decision.remaining == -1

    def test_limited(self):
        assert evaluate_limit(TIERS["free"], LIMIT_ANALYSES_PER_DAY, used=4).allowed
        decision = evaluate_limit(TIERS["free"], LIMIT_ANALYSES_PER_DAY, used=5)
        assert not decision.allowed
        assert decision.remaining == 0

    def test_requested_amount_must_fit(self):
        assert not evaluate_limit(TIERS["basic"], LIMIT_ANALYSES_PER_DAY, used=18, requested=3).allowed

    def test_free_tier_has_no_actions(self):
        assert not evaluate_limit(TIERS["free"], LIMIT_ACTIONS_PER_DAY, used=0).allowed

    def test_cap_count(self):
        assert cap_count(TIERS["free"], LIMIT_PRODUCTS_PER_ANALYSIS, 50) == 10
        assert cap_count(TIERS["free"], LIMIT_PRODUCTS_PER_ANALYSIS, 3) == 3
        assert cap_count(TIERS["enterprise"], LIMIT_PRODUCTS_PER_ANALYSIS, 500) == 500

    @pytest.mark.parametrize("tier,action,allowed", [
        ("free", "send_email", False),
        ("basic", "send_email", True),
        ("basic", "update_product", False),
        ("pro", "schedule_price_change", True),
    ])
    def test_action_types_by_tier(self, tier, action, allowed):
        assert TIERS[tier].allows_action(action) is allowed

    def test_unknown_tier(self):
        with pytest.raises(ValidationError):
            get_tier("platinum")


class TestSubscriptionGate:

    def test_usage_counts_against_the_daily_limit(self, usage_repo):
        gate = SubscriptionGate("free", usage_repo)
        for _ in range(5):
            gate.require_within_limit(LIMIT_ANALYSES_PER_DAY)
            gate.increment_usage(LIMIT_ANALYSES_PER_DAY)

        with pytest.raises(RateLimitError) as exc_info:
            gate.require_within_limit(LIMIT_ANALYSES_PER_DAY)
        assert "Free plan" in exc_info.value.user_message
        assert exc_info.value.details["window"] == "day"

    def test_usage_summary(self, usage_repo):
        gate = SubscriptionGate("basic", usage_repo)
        gate.increment_usage(LIMIT_ACTIONS_PER_DAY, 4)

        summary = gate.usage_summary()

        assert summary[LIMIT_ACTIONS_PER_DAY] == {"allowed": True, "limit": 50, "used": 4, "remaining": 46}
        assert summary[LIMIT_ANALYSES_PER_DAY]["used"] == 0

    def test_features_and_providers(self, usage_repo):
        gate = SubscriptionGate("basic", usage_repo)
        assert gate.is_feature_enabled("customer_analysis")
        assert not gate.is_feature_enabled("sql_analysis")
        assert gate.allowed_providers(["ollama", "openai", "anthropic"]) == ["ollama", "openai"]
