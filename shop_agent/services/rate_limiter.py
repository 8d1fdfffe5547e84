"""Fixed-window rate limiting per caller key (hour and day windows)."""

import calendar
from datetime import datetime, timedelta
from typing import Callable, Dict, Any, Optional

from shop_agent.core.exceptions import RateLimitError
from shop_agent.core.logging_config import get_logger
from shop_agent.repositories.rate_limit_repo import RateLimitRepository
from shop_agent.services.settings_store import SettingsStore

logger = get_logger(__name__)

WINDOWS = ("hour", "day")


class RateLimiter:
    """
    Counts hits per key in the current hour and day. A hit is rejected when
    either window is full; a rejected hit is not counted.
    """

    def __init__(
        self,
        settings_store: Optional[SettingsStore] = None,
        repo: Optional[RateLimitRepository] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.settings = settings_store or SettingsStore()
        self.repo = repo or RateLimitRepository()
        self.clock = clock

    def _limit(self, window: str) -> int:
        return self.settings.get_int(f"rate_limit_per_{window}", 0)

    def _window_key(self, key: str, window: str, now: datetime) -> str:
        stamp = now.strftime("%Y-%m-%d-%H") if window == "hour" else now.strftime("%Y-%m-%d")
        return f"rate_limit_{key}_{window}_{stamp}"

    def _reset_at(self, window: str, now: datetime) -> datetime:
        if window == "hour":
            return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
        return now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)

    def status(self, key: str) -> Dict[str, Any]:
        """Current usage for both windows without counting a hit."""
        now = self.clock()
        windows = {}
        for window in WINDOWS:
            limit = self._limit(window)
            used = self.repo.get(self._window_key(key, window, now))
            reset_at = self._reset_at(window, now)
            windows[window] = {
                "limit": limit,
                "used": used,
                "remaining": max(0, limit - used) if limit > 0 else -1,
                "reset_time": calendar.timegm(reset_at.timetuple()),
            }
        return windows

    def check_and_increment(self, key: str) -> Dict[str, Any]:
        now = self.clock()
        current = self.status(key)

        for window in WINDOWS:
            info = current[window]
            if info["limit"] > 0 and info["used"] >= info["limit"]:
                logger.warning("Rate limit exceeded", key=key, window=window, limit=info["limit"])
                return {
                    "allowed": False,
                    "window": window,
                    "remaining": 0,
                    "reset_time": info["reset_time"],
                    "limit": info["limit"],
                }

        remaining = {}
        for window in WINDOWS:
            expires_at = self._reset_at(window, now)
            used = self.repo.increment(self._window_key(key, window, now), expires_at)
            limit = current[window]["limit"]
            remaining[window] = max(0, limit - used) if limit > 0 else -1

        tightest = min(WINDOWS, key=lambda w: remaining[w] if remaining[w] >= 0 else float("inf"))
        return {
            "allowed": True,
            "window": tightest,
            "remaining": remaining[tightest],
            "reset_time": current[tightest]["reset_time"],
            "limit": current[tightest]["limit"],
        }

    def enforce(self, key: str) -> Dict[str, Any]:
        """Like ``check_and_increment`` but raises ``RateLimitError`` when rejected."""
        outcome = self.check_and_increment(key)
        if not outcome["allowed"]:
            raise RateLimitError(
                limit=outcome["limit"],
                window=outcome["window"],
                remaining=0,
                reset_time=outcome["reset_time"],
            )
        return outcome

    def reset(self, key: str) -> int:
        return self.repo.reset(f"rate_limit_{key}_")
