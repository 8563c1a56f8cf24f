# backend/services/scheduler_service.py
import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from models.complaint_models import Department, JobRunResult
from .automation_config import SchedulerSettings
from .automation_orchestrator import AutomationOrchestrator
from .errors import UnknownJobError
from .workload_rebalancer import WorkloadRebalancer

logger = logging.getLogger(__name__)

COMPLAINT_PROCESSING = "complaint_processing"
WORKLOAD_REBALANCE = "workload_rebalance"
HEALTH_CHECK = "health_check"
JOB_NAMES = (COMPLAINT_PROCESSING, WORKLOAD_REBALANCE, HEALTH_CHECK)

SUCCESS_RATE_ALERT = 80.0
MIN_RUNS_FOR_ALERT = 10


class SchedulerService:
    """
    Periodic driver for automated processing.

    Complaint processing and workload rebalancing run one at a time in a
    single lane. A tick or manual trigger that finds the lane busy is
    skipped, not queued. A rebalance requested while the lane is busy is
    remembered and runs as soon as the current job finishes.
    """

    def __init__(self, orchestrator: AutomationOrchestrator, rebalancer: WorkloadRebalancer,
                 settings: Optional[SchedulerSettings] = None, batch_size: int = 10,
                 clock: Callable[[], datetime] = datetime.now):
        self.orchestrator = orchestrator
        self.rebalancer = rebalancer
        self.settings = settings or SchedulerSettings()
        self.batch_size = batch_size
        self.clock = clock

        self._lane = asyncio.Lock()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._last_runs: Dict[str, JobRunResult] = {}
        self._deferred_rebalance = False
        self._deferred_department: Optional[Department] = None
        self._current_job: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    def _intervals(self) -> Dict[str, Optional[float]]:
        return {
            COMPLAINT_PROCESSING: self.settings.complaint_processing_interval_seconds,
            WORKLOAD_REBALANCE: (self.settings.rebalance_interval_seconds
                                 if self.settings.rebalance_enabled else None),
            HEALTH_CHECK: self.settings.health_check_interval_seconds,
        }

    # ==================== LIFECYCLE ====================

    def start(self):
        if self.is_running:
            logger.info("Scheduler already running")
            return

        for job_name, interval in self._intervals().items():
            if interval is None:
                logger.info(f"Job {job_name} disabled")
                continue
            self._tasks[job_name] = asyncio.create_task(self._run_every(job_name, interval))
            logger.info(f"✅ Scheduled {job_name} every {interval:.0f}s")

        logger.info("✅ Automation scheduler started")

    async def stop(self):
        if not self.is_running:
            return

        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("🛑 Automation scheduler stopped")

    async def _run_every(self, job_name: str, interval: float):
        while True:
            await asyncio.sleep(interval)
            result = await self.trigger_job(job_name)
            if result.status == "skipped":
                logger.info(f"Scheduled {job_name} skipped: {result.reason}")

    def get_status(self) -> Dict[str, Any]:
        intervals = self._intervals()
        return {
            "is_running": self.is_running,
            "lane_busy": self._lane.locked(),
            "current_job": self._current_job,
            "deferred_rebalance": self._deferred_rebalance,
            "jobs": {
                job_name: {
                    "enabled": intervals[job_name] is not None,
                    "interval_seconds": intervals[job_name],
                    "scheduled": job_name in self._tasks,
                    "last_run": (self._last_runs[job_name].model_dump(mode="json")
                                 if job_name in self._last_runs else None),
                }
                for job_name in JOB_NAMES
            },
        }

    # ==================== TRIGGERS ====================

    async def trigger_job(self, job_name: str) -> JobRunResult:
        if job_name not in JOB_NAMES:
            raise UnknownJobError(job_name)

        if job_name == HEALTH_CHECK:
            return await self._execute(HEALTH_CHECK, self._health_check)

        if job_name == COMPLAINT_PROCESSING:
            return await self.process_pending()
        return await self._run_in_lane(WORKLOAD_REBALANCE, lambda: self._rebalance(None))

    async def process_pending(self, max_items: Optional[int] = None) -> JobRunResult:
        return await self._run_in_lane(COMPLAINT_PROCESSING, lambda: self._process_complaints(max_items))

    async def request_rebalance(self, department: Optional[Department] = None) -> JobRunResult:
        """Run a rebalance now, or as soon as the lane frees up"""
        if self._lane.locked():
            self._deferred_rebalance = True
            self._deferred_department = department
            logger.info(f"Rebalance deferred until {self._current_job} finishes")
            return JobRunResult(job_name=WORKLOAD_REBALANCE, status="deferred",
                                reason="already_running", started_at=self.clock())
        return await self._run_in_lane(WORKLOAD_REBALANCE, lambda: self._rebalance(department))

    async def _run_in_lane(self, job_name: str,
                           job: Callable[[], Awaitable[Dict[str, Any]]]) -> JobRunResult:
        if self._lane.locked():
            logger.warning(f"⚠️ {job_name} skipped: {self._current_job} is still running")
            return JobRunResult(job_name=job_name, status="skipped", reason="already_running",
                                started_at=self.clock())

        async with self._lane:
            self._current_job = job_name
            try:
                result = await self._execute(job_name, job)

                while self._deferred_rebalance:
                    department = self._deferred_department
                    self._deferred_rebalance = False
                    self._deferred_department = None
                    self._current_job = WORKLOAD_REBALANCE
                    logger.info("Running deferred rebalance")
                    await self._execute(WORKLOAD_REBALANCE, lambda: self._rebalance(department))
            finally:
                self._current_job = None
        return result

    async def _execute(self, job_name: str,
                       job: Callable[[], Awaitable[Dict[str, Any]]]) -> JobRunResult:
        started_at = self.clock()
        try:
            payload = await job()
            result = JobRunResult(job_name=job_name, status="completed", started_at=started_at,
                                  finished_at=self.clock(), result=payload)
        except Exception as e:
            logger.error(f"❌ Job {job_name} failed: {e}")
            result = JobRunResult(job_name=job_name, status="failed", reason=str(e),
                                  started_at=started_at, finished_at=self.clock())
        self._last_runs[job_name] = result
        return result

    # ==================== JOBS ====================

    async def _process_complaints(self, max_items: Optional[int]) -> Dict[str, Any]:
        summary = await self.orchestrator.process_pending_batch(max_items or self.batch_size)
        return summary.model_dump(mode="json")

    async def _rebalance(self, department: Optional[Department]) -> Dict[str, Any]:
        summary = await self.rebalancer.rebalance(department)
        return summary.model_dump(mode="json")

    async def _health_check(self) -> Dict[str, Any]:
        stats = await self.orchestrator.get_automation_stats()
        total = stats.total_automated + stats.total_errors
        alert = total > MIN_RUNS_FOR_ALERT and stats.success_rate < SUCCESS_RATE_ALERT
        if alert:
            logger.warning(
                f"⚠️ Automation success rate is {stats.success_rate}% over {total} runs "
                f"(threshold {SUCCESS_RATE_ALERT}%)"
            )
        else:
            logger.info(f"Automation health: {stats.success_rate}% success over {total} runs")

        payload = stats.model_dump(mode="json")
        payload["alert"] = alert
        return payload
