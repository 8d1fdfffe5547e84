import calendar
from datetime import datetime

import pytest

from shop_agent.core.exceptions import RateLimitError
from shop_agent.repositories.rate_limit_repo import RateLimitRepository
from shop_agent.services.rate_limiter import RateLimiter


@pytest.fixture
def limiter(settings_store, db, clock):
    settings_store.update({"rate_limit_per_hour": 3, "rate_limit_per_day": 5})
    return RateLimiter(settings_store, RateLimitRepository(db), clock=clock)


class TestRateLimiter:

    def test_allows_until_hour_window_is_full(self, limiter):
        outcomes = [limiter.check_and_increment("ip_1") for _ in range(4)]

        assert [o["allowed"] for o in outcomes] == [True, True, True, False]
        assert outcomes[0]["remaining"] == 2
        assert outcomes[3]["window"] == "hour"
        assert outcomes[3]["remaining"] == 0

    def test_rejected_hits_are_not_counted(self, limiter):
        for _ in range(5):
            limiter.check_and_increment("ip_1")
        assert limiter.status("ip_1")["hour"]["used"] == 3

    def test_reset_time_is_next_window_boundary(self, limiter):
        outcome = limiter.check_and_increment("ip_1")
        # Clock starts at 2024-06-01 12:00 UTC
        assert outcome["reset_time"] == calendar.timegm(datetime(2024, 6, 1, 13, 0).timetuple())

    def test_new_hour_opens_a_new_window_but_day_still_counts(self, limiter, clock):
        for _ in range(3):
            limiter.check_and_increment("ip_1")
        clock.advance(3600)

        assert limiter.check_and_increment("ip_1")["allowed"]
        assert limiter.check_and_increment("ip_1")["allowed"]
        blocked = limiter.check_and_increment("ip_1")
        assert not blocked["allowed"]
        assert blocked["window"] == "day"

    def test_keys_are_independent(self, limiter):
        for _ in range(3):
            limiter.check_and_increment("ip_1")
        assert limiter.check_and_increment("ip_2")["allowed"]

    def test_enforce_raises_with_machine_readable_details(self, limiter):
        for _ in range(3):
            limiter.enforce("ip_1")

        with pytest.raises(RateLimitError) as exc_info:
            limiter.enforce("ip_1")
        assert exc_info.value.details["remaining"] == 0
        assert exc_info.value.details["reset_time"] == exc_info.value.retry_after

    def test_zero_limit_means_unlimited(self, limiter, settings_store):
        settings_store.update({"rate_limit_per_hour": 0, "rate_limit_per_day": 0})
        outcomes = [limiter.check_and_increment("ip_1") for _ in range(10)]

        assert all(o["allowed"] for o in outcomes)
        assert outcomes[-1]["remaining"] == -1

    def test_reset_clears_counters(self, limiter):
        for _ in range(3):
            limiter.check_and_increment("ip_1")

        assert limiter.reset("ip_1") == 2
        assert limiter.check_and_increment("ip_1")["allowed"]
