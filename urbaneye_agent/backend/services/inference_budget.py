# backend/services/inference_budget.py
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, Optional

import redis

from .automation_config import CostControl

logger = logging.getLogger(__name__)

REDIS_KEY_PREFIX = "urbaneye:ai_usage"


class InferenceBudget:
    """
    Tracks AI spend against the daily/monthly cost ceilings, the daily
    complaint cap and the per-minute request rate.

    Once a limit is hit, inference is disabled until the end of that
    limit's window (midnight, month end or the rate-limit minute), so every
    complaint in between goes straight to keyword scoring. Counters are kept
    in process and, when a Redis client is given, mirrored there so several
    workers share one budget.
    """

    def __init__(self, cost_control: CostControl, redis_client: Optional[redis.Redis] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.cost_control = cost_control
        self.redis_client = redis_client
        self.clock = clock

        self._day_key = ""
        self._month_key = ""
        self._daily_cost = 0.0
        self._monthly_cost = 0.0
        self._daily_items = 0
        self._request_times: Deque[datetime] = deque()
        self._disabled_until: Optional[datetime] = None
        self._disabled_reason: Optional[str] = None

    # ==================== WINDOW HANDLING ====================

    def _roll_windows(self, now: datetime):
        day_key = now.strftime("%Y-%m-%d")
        month_key = now.strftime("%Y-%m")

        if month_key != self._month_key:
            self._month_key = month_key
            self._monthly_cost = 0.0
        if day_key != self._day_key:
            self._day_key = day_key
            self._daily_cost = 0.0
            self._daily_items = 0

        while self._request_times and now - self._request_times[0] >= timedelta(minutes=1):
            self._request_times.popleft()

        if self._disabled_until and now >= self._disabled_until:
            logger.info(f"AI budget window reopened after {self._disabled_reason}")
            self._disabled_until = None
            self._disabled_reason = None

    @staticmethod
    def _end_of_day(now: datetime) -> datetime:
        return datetime(now.year, now.month, now.day) + timedelta(days=1)

    @staticmethod
    def _end_of_month(now: datetime) -> datetime:
        if now.month == 12:
            return datetime(now.year + 1, 1, 1)
        return datetime(now.year, now.month + 1, 1)

    def suspend(self, reason: str, seconds: float = 60.0):
        """Disable inference for a while after the provider itself pushed back"""
        self._disable(reason, self.clock() + timedelta(seconds=seconds))

    def _disable(self, reason: str, until: datetime):
        self._disabled_until = until
        self._disabled_reason = reason
        logger.warning(f"⚠️ AI inference disabled until {until.isoformat()} ({reason}), "
                       f"using keyword classification")

    # ==================== REDIS MIRROR ====================

    def _redis_totals(self) -> Optional[Dict[str, float]]:
        if self.redis_client is None:
            return None
        try:
            daily_cost, monthly_cost, daily_items = self.redis_client.mget(
                f"{REDIS_KEY_PREFIX}:cost:day:{self._day_key}",
                f"{REDIS_KEY_PREFIX}:cost:month:{self._month_key}",
                f"{REDIS_KEY_PREFIX}:items:day:{self._day_key}",
            )
            return {
                "daily_cost": float(daily_cost or 0),
                "monthly_cost": float(monthly_cost or 0),
                "daily_items": float(daily_items or 0),
            }
        except redis.RedisError as e:
            logger.warning(f"Redis budget read failed, using local counters: {e}")
            return None

    def _redis_record(self, cost: float, items: int):
        if self.redis_client is None:
            return
        try:
            pipe = self.redis_client.pipeline()
            day_cost_key = f"{REDIS_KEY_PREFIX}:cost:day:{self._day_key}"
            month_cost_key = f"{REDIS_KEY_PREFIX}:cost:month:{self._month_key}"
            day_items_key = f"{REDIS_KEY_PREFIX}:items:day:{self._day_key}"
            pipe.incrbyfloat(day_cost_key, cost)
            pipe.expire(day_cost_key, int(timedelta(days=2).total_seconds()))
            pipe.incrbyfloat(month_cost_key, cost)
            pipe.expire(month_cost_key, int(timedelta(days=32).total_seconds()))
            if items:
                pipe.incrby(day_items_key, items)
                pipe.expire(day_items_key, int(timedelta(days=2).total_seconds()))
            pipe.execute()
        except redis.RedisError as e:
            logger.warning(f"Redis budget write failed: {e}")

    # ==================== PUBLIC API ====================

    def denial_reason(self, estimated_cost: float) -> Optional[str]:
        """Return why a spend of `estimated_cost` is refused, or None if allowed"""
        now = self.clock()
        self._roll_windows(now)

        if self._disabled_until is not None:
            return self._disabled_reason

        daily_cost = self._daily_cost
        monthly_cost = self._monthly_cost
        daily_items = self._daily_items
        shared = self._redis_totals()
        if shared:
            daily_cost = max(daily_cost, shared["daily_cost"])
            monthly_cost = max(monthly_cost, shared["monthly_cost"])
            daily_items = max(daily_items, int(shared["daily_items"]))

        limits = self.cost_control
        if daily_cost + estimated_cost > limits.max_daily_cost:
            self._disable("daily_cost_limit", self._end_of_day(now))
        elif monthly_cost + estimated_cost > limits.max_monthly_cost:
            self._disable("monthly_cost_limit", self._end_of_month(now))
        elif daily_items >= limits.max_complaints_per_day:
            self._disable("daily_complaint_limit", self._end_of_day(now))
        elif len(self._request_times) >= limits.max_requests_per_minute:
            self._disable("rate_limited", self._request_times[0] + timedelta(minutes=1))

        return self._disabled_reason

    def allows(self, estimated_cost: float) -> bool:
        return self.denial_reason(estimated_cost) is None

    def record_request(self):
        """Count one provider request against the per-minute rate"""
        now = self.clock()
        self._roll_windows(now)
        self._request_times.append(now)

    def record_spend(self, cost: float, items: int = 1):
        now = self.clock()
        self._roll_windows(now)
        self._daily_cost += cost
        self._monthly_cost += cost
        self._daily_items += items
        self._redis_record(cost, items)

    def snapshot(self) -> Dict[str, Any]:
        now = self.clock()
        self._roll_windows(now)
        return {
            "daily_cost": round(self._daily_cost, 4),
            "monthly_cost": round(self._monthly_cost, 4),
            "daily_items": self._daily_items,
            "requests_last_minute": len(self._request_times),
            "disabled": self._disabled_until is not None,
            "disabled_reason": self._disabled_reason,
            "disabled_until": self._disabled_until.isoformat() if self._disabled_until else None,
            "shared_with_redis": self.redis_client is not None,
        }
