from datetime import datetime, timedelta

import pytest

from services.automation_config import CostControl
from services.inference_budget import InferenceBudget


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock():
    return Clock(datetime(2025, 3, 12, 10, 0))


def test_daily_cost_limit_holds_until_midnight(clock):
    budget = InferenceBudget(CostControl(max_daily_cost=0.05, cost_per_complaint=0.02), clock=clock)

    budget.record_spend(0.02)
    budget.record_spend(0.02)

    assert budget.denial_reason(0.02) == "daily_cost_limit"
    clock.advance(hours=6)
    assert budget.allows(0.001) is False

    clock.advance(hours=8)
    assert budget.allows(0.02) is True
    assert budget.snapshot()["daily_cost"] == 0.0
    assert budget.snapshot()["monthly_cost"] == pytest.approx(0.04)


def test_monthly_limit_rolls_over_with_the_month(clock):
    clock.now = datetime(2025, 3, 31, 12, 0)
    budget = InferenceBudget(CostControl(max_monthly_cost=0.03, max_daily_cost=10.0), clock=clock)

    budget.record_spend(0.02)

    assert budget.denial_reason(0.02) == "monthly_cost_limit"
    clock.advance(days=1)
    assert budget.allows(0.02) is True


def test_daily_complaint_cap(clock):
    budget = InferenceBudget(CostControl(max_complaints_per_day=2), clock=clock)

    budget.record_spend(0.02)
    budget.record_spend(0.01, items=0)
    assert budget.allows(0.02) is True

    budget.record_spend(0.02)
    assert budget.denial_reason(0.02) == "daily_complaint_limit"


def test_request_rate_limit_reopens_after_a_minute(clock):
    budget = InferenceBudget(CostControl(max_requests_per_minute=3), clock=clock)

    for _ in range(3):
        assert budget.allows(0.02)
        budget.record_request()
        clock.advance(seconds=5)

    assert budget.denial_reason(0.02) == "rate_limited"
    clock.advance(seconds=50)
    assert budget.allows(0.02) is True


def test_suspend_blocks_for_given_seconds(clock):
    budget = InferenceBudget(CostControl(), clock=clock)

    budget.suspend("rate_limited", seconds=30)

    assert budget.allows(0.02) is False
    assert budget.snapshot()["disabled"] is True
    clock.advance(seconds=31)
    assert budget.allows(0.02) is True
