# backend/main.py
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Depends, Query, status
from fastapi.responses import JSONResponse

import uvicorn
from datetime import datetime
from typing import Optional, Dict, Any
import logging
import redis
from dotenv import load_dotenv

from models.complaint_models import AssignmentRequest, AuditAction, Department
from services.assignment_executor import AssignmentExecutor
from services.assignment_selector import AssignmentSelector
from services.automation_config import AutomationConfig
from services.automation_orchestrator import AutomationOrchestrator
from services.content_classifier import ContentClassifier
from services.database_service import DatabaseService
from services.errors import (
    AssignmentConflictError,
    AssignmentError,
    ComplaintNotFoundError,
    StaffCapacityError,
    StaffNotFoundError,
    UnknownJobError,
)
from services.inference_budget import InferenceBudget
from services.inference_provider import InferenceProvider
from services.notification_service import NotificationService
from services.priority_scorer import PriorityScorer
from services.scheduler_service import SchedulerService
from services.staff_directory import StaffDirectory
from services.workload_rebalancer import WorkloadRebalancer

# Load environment variables
load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
# Configure logging to reduce verbosity
logging.getLogger("twilio.http_client").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# Global services dictionary
services: Dict[str, Any] = {}


def initialize_redis_client(redis_url: Optional[str]) -> Optional[redis.Redis]:
    """Shared Redis client for the AI budget; None keeps counters in process"""
    if not redis_url:
        return None
    try:
        client = redis.from_url(
            redis_url,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        client.ping()
        logger.info("✅ Redis budget mirror connected")
        return client
    except redis.RedisError as e:
        logger.warning(f"⚠️ Redis unavailable, AI budget kept in process: {e}")
        return None


def build_services(config: AutomationConfig, db: DatabaseService,
                   notifier: Optional[NotificationService] = None,
                   provider: Optional[InferenceProvider] = None,
                   redis_client: Optional[redis.Redis] = None) -> Dict[str, Any]:
    """Wire the automation engine around an already connected store"""
    if provider is None:
        provider = InferenceProvider(config.inference, config.images)

    budget = InferenceBudget(config.cost_control, redis_client=redis_client)
    classifier = ContentClassifier(config, provider=provider, budget=budget)
    scorer = PriorityScorer()
    directory = StaffDirectory(db, config.workload_thresholds)
    selector = AssignmentSelector(config.selector_weights)
    executor = AssignmentExecutor(
        db, directory,
        notifier=notifier,
        notification_timeout=config.notification_timeout_seconds,
    )
    orchestrator = AutomationOrchestrator(db, config, classifier, scorer, directory, selector, executor)
    rebalancer = WorkloadRebalancer(directory, executor, max_moves_per_staff=config.max_moves_per_staff)
    scheduler = SchedulerService(orchestrator, rebalancer, config.scheduler, batch_size=config.batch_size)

    return {
        "config": config,
        "db": db,
        "notifications": notifier,
        "provider": provider,
        "budget": budget,
        "classifier": classifier,
        "directory": directory,
        "executor": executor,
        "orchestrator": orchestrator,
        "rebalancer": rebalancer,
        "scheduler": scheduler,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        logger.info("🚀 Starting UrbanEye automation API...")
        config = AutomationConfig.from_env()

        db = DatabaseService()
        await db.connect()

        services.update(build_services(
            config,
            db,
            notifier=NotificationService(),
            redis_client=initialize_redis_client(config.redis_url),
        ))

        logger.info(f"  AI classification: {'✅ Enabled' if config.should_use_ai() else '⚠️ Keyword fallback only'}")
        if config.scheduler.autostart:
            services["scheduler"].start()
        logger.info("🌐 API is ready to serve requests")

        yield

    except Exception as e:
        logger.error(f"❌ Error during startup: {e}")
        raise
    finally:
        logger.info("🧹 Cleaning up resources...")
        if "scheduler" in services:
            await services["scheduler"].stop()
        if "db" in services:
            await services["db"].disconnect()
            logger.info("✅ Database disconnected")
        services.clear()


app = FastAPI(
    title="UrbanEye Automation API",
    version="1.0.0",
    lifespan=lifespan
)


# Dependency to get services
def get_db_service() -> DatabaseService:
    return services["db"]

def get_scheduler() -> SchedulerService:
    return services["scheduler"]

def get_orchestrator() -> AutomationOrchestrator:
    return services["orchestrator"]

def get_rebalancer() -> WorkloadRebalancer:
    return services["rebalancer"]

def get_executor() -> AssignmentExecutor:
    return services["executor"]


# ==================== BASIC ENDPOINTS ====================

@app.get("/")
async def root():
    return {"message": "UrbanEye automation API is running"}

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "services": {
            "database": "connected" if services.get("db") else "disconnected",
            "scheduler": "running" if services.get("scheduler") and services["scheduler"].is_running else "stopped",
        }
    }

@app.get("/health/detailed")
async def detailed_health_check(check_ai: bool = False):
    """Detailed health check with AI budget and scheduler status; check_ai pings the provider"""
    database = {"status": "unavailable"}
    if services.get("db"):
        database = await services["db"].health_check()

    config: Optional[AutomationConfig] = services.get("config")
    budget: Optional[InferenceBudget] = services.get("budget")
    scheduler: Optional[SchedulerService] = services.get("scheduler")

    provider_status = None
    if check_ai and services.get("provider"):
        provider_status = await services["provider"].health_check()

    return {
        "status": "healthy" if database.get("status") == "healthy" else "degraded",
        "timestamp": datetime.now().isoformat(),
        "services": {
            "database": database,
            "ai_classification": {
                "enabled": config.should_use_ai() if config else False,
                "budget": budget.snapshot() if budget else None,
                "provider": provider_status,
            },
            "scheduler": scheduler.get_status() if scheduler else None,
        }
    }

# ==================== SCHEDULER ENDPOINTS ====================

@app.get("/api/scheduler/status")
async def scheduler_status(scheduler: SchedulerService = Depends(get_scheduler)):
    return {"success": True, "data": scheduler.get_status()}

@app.post("/api/scheduler/start")
async def start_scheduler(scheduler: SchedulerService = Depends(get_scheduler)):
    scheduler.start()
    return {"success": True, "message": "Automation scheduler started", "data": scheduler.get_status()}

@app.post("/api/scheduler/stop")
async def stop_scheduler(scheduler: SchedulerService = Depends(get_scheduler)):
    await scheduler.stop()
    return {"success": True, "message": "Automation scheduler stopped", "data": scheduler.get_status()}

@app.post("/api/scheduler/trigger/{job_name}")
async def trigger_job(job_name: str, scheduler: SchedulerService = Depends(get_scheduler)):
    try:
        result = await scheduler.trigger_job(job_name)
    except UnknownJobError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return {"success": result.status == "completed", "data": result.model_dump(mode="json")}

# ==================== AUTOMATION ENDPOINTS ====================

@app.post("/api/automation/process-pending")
async def process_pending(max_items: Optional[int] = Query(default=None, ge=1, le=100),
                          scheduler: SchedulerService = Depends(get_scheduler)):
    result = await scheduler.process_pending(max_items)
    return {"success": result.status == "completed", "data": result.model_dump(mode="json")}

@app.post("/api/automation/rebalance")
async def rebalance(department: Optional[Department] = None,
                    scheduler: SchedulerService = Depends(get_scheduler)):
    result = await scheduler.request_rebalance(department)
    return {"success": result.status in ("completed", "deferred"), "data": result.model_dump(mode="json")}

@app.get("/api/automation/stats")
async def automation_stats(orchestrator: AutomationOrchestrator = Depends(get_orchestrator)):
    stats = await orchestrator.get_automation_stats()
    return {"success": True, "data": stats.model_dump(mode="json")}

@app.get("/api/automation/workload")
async def workload_report(department: Optional[Department] = None,
                          rebalancer: WorkloadRebalancer = Depends(get_rebalancer)):
    report = await rebalancer.get_workload_report(department)
    return {"success": True, "data": [entry.model_dump(mode="json") for entry in report]}

# ==================== COMPLAINT ENDPOINTS ====================

@app.post("/api/complaints/{complaint_id}/assign")
async def assign_complaint(complaint_id: str, request: AssignmentRequest,
                           executor: AssignmentExecutor = Depends(get_executor)):
    """Operator assignment or reassignment of a complaint"""
    try:
        decision = await executor.assign(
            complaint_id,
            request.staff_id,
            assigned_by=request.operator_id,
            action=AuditAction.MANUAL_ASSIGN,
            reason=request.reason or "manual assignment by operator",
            enforce_capacity=request.enforce_capacity,
        )
    except (ComplaintNotFoundError, StaffNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (StaffCapacityError, AssignmentConflictError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except AssignmentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {"success": True, "data": decision.model_dump(mode="json")}

@app.get("/api/complaints/{complaint_id}/audit")
async def complaint_audit(complaint_id: str, db_service: DatabaseService = Depends(get_db_service)):
    if await db_service.get_complaint(complaint_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Complaint not found: {complaint_id}")

    trail = await db_service.get_audit_trail(complaint_id)
    return {"success": True, "data": trail}

# ==================== ERROR HANDLERS ====================

@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "error_code": "HTTP_ERROR",
            "status_code": exc.status_code
        }
    )

@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    logger.error(f"❌ Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "error_code": "INTERNAL_ERROR"
        }
    )

if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8001, reload=True)
