import asyncio

import pytest

from models.complaint_models import AutomationStats, BatchSummary, Department, RebalanceSummary
from services.automation_config import SchedulerSettings
from services.errors import UnknownJobError
from services.scheduler_service import (
    COMPLAINT_PROCESSING,
    HEALTH_CHECK,
    WORKLOAD_REBALANCE,
    SchedulerService,
)


class GatedOrchestrator:
    """Holds a batch open until the test releases it"""

    def __init__(self, stats=None):
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.batches = []
        self.stats = stats or AutomationStats()

    async def process_pending_batch(self, max_items=None):
        self.batches.append(max_items)
        self.started.set()
        await self.release.wait()
        return BatchSummary(processed=1, succeeded=1)

    async def get_automation_stats(self):
        return self.stats


class FailingOrchestrator(GatedOrchestrator):
    async def process_pending_batch(self, max_items=None):
        raise RuntimeError("database went away")


class RecordingRebalancer:
    def __init__(self):
        self.calls = []

    async def rebalance(self, department=None):
        self.calls.append(department)
        return RebalanceSummary(message="No rebalancing needed")


def test_second_batch_is_skipped_while_first_runs():
    async def scenario():
        orchestrator = GatedOrchestrator()
        scheduler = SchedulerService(orchestrator, RecordingRebalancer(), batch_size=5)

        first = asyncio.create_task(scheduler.process_pending())
        await orchestrator.started.wait()
        second = await scheduler.trigger_job(COMPLAINT_PROCESSING)
        orchestrator.release.set()
        return await first, second, orchestrator.batches

    first, second, batches = asyncio.run(scenario())

    assert first.status == "completed"
    assert first.result["processed"] == 1
    assert second.status == "skipped"
    assert second.reason == "already_running"
    assert batches == [5]


def test_rebalance_requested_mid_batch_runs_afterwards():
    async def scenario():
        orchestrator = GatedOrchestrator()
        rebalancer = RecordingRebalancer()
        scheduler = SchedulerService(orchestrator, rebalancer)

        batch = asyncio.create_task(scheduler.process_pending(3))
        await orchestrator.started.wait()
        deferred = await scheduler.request_rebalance(Department.SANITATION)
        calls_before = list(rebalancer.calls)
        orchestrator.release.set()
        await batch
        return deferred, calls_before, rebalancer.calls, scheduler.get_status()

    deferred, calls_before, calls_after, status = asyncio.run(scenario())

    assert deferred.status == "deferred"
    assert calls_before == []
    assert calls_after == [Department.SANITATION]
    assert status["deferred_rebalance"] is False
    assert status["jobs"][WORKLOAD_REBALANCE]["last_run"]["status"] == "completed"


def test_rebalance_runs_immediately_when_idle():
    rebalancer = RecordingRebalancer()
    scheduler = SchedulerService(GatedOrchestrator(), rebalancer)

    result = asyncio.run(scheduler.trigger_job(WORKLOAD_REBALANCE))

    assert result.status == "completed"
    assert rebalancer.calls == [None]


def test_unknown_job_is_rejected():
    scheduler = SchedulerService(GatedOrchestrator(), RecordingRebalancer())

    with pytest.raises(UnknownJobError):
        asyncio.run(scheduler.trigger_job("defragment"))


def test_failed_job_is_reported_and_lane_released():
    scheduler = SchedulerService(FailingOrchestrator(), RecordingRebalancer())

    failed = asyncio.run(scheduler.process_pending())
    again = asyncio.run(scheduler.trigger_job(WORKLOAD_REBALANCE))

    assert failed.status == "failed"
    assert "database went away" in failed.reason
    assert again.status == "completed"


def test_health_check_alerts_on_low_success_rate():
    stats = AutomationStats(total_automated=6, total_errors=6, success_rate=50.0)
    scheduler = SchedulerService(GatedOrchestrator(stats), RecordingRebalancer())

    result = asyncio.run(scheduler.trigger_job(HEALTH_CHECK))

    assert result.status == "completed"
    assert result.result["alert"] is True


def test_health_check_quiet_for_small_samples():
    stats = AutomationStats(total_automated=2, total_errors=3, success_rate=40.0)
    scheduler = SchedulerService(GatedOrchestrator(stats), RecordingRebalancer())

    result = asyncio.run(scheduler.trigger_job(HEALTH_CHECK))

    assert result.result["alert"] is False


def test_start_and_stop_schedule_enabled_jobs():
    settings = SchedulerSettings(rebalance_enabled=False)

    async def scenario():
        scheduler = SchedulerService(GatedOrchestrator(), RecordingRebalancer(), settings)
        scheduler.start()
        running = scheduler.get_status()
        await scheduler.stop()
        return running, scheduler.get_status()

    running, stopped = asyncio.run(scenario())

    assert running["is_running"] is True
    assert running["jobs"][COMPLAINT_PROCESSING]["scheduled"] is True
    assert running["jobs"][WORKLOAD_REBALANCE]["enabled"] is False
    assert stopped["is_running"] is False
