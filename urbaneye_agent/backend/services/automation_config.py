# backend/services/automation_config.py
"""
Automation configuration for UrbanEye.

Controls AI usage and cost, image analysis, business-hour restrictions,
batch sizing, assignment scoring weights, workload tiers and scheduler
intervals. Values come from the environment (a .env file is honoured).
"""

import os
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


class InferenceSettings(BaseModel):
    enabled: bool = True
    api_key: Optional[str] = None
    model: str = "claude-sonnet-4-20250514"
    timeout_seconds: float = Field(default=15.0, gt=0)
    max_tokens: int = 300
    temperature: float = 0.3


class CostControl(BaseModel):
    max_daily_cost: float = 10.0
    max_monthly_cost: float = 50.0
    cost_per_complaint: float = 0.02
    cost_per_image: float = 0.01
    max_complaints_per_day: int = 500
    max_requests_per_minute: int = 10


class ImageAnalysisSettings(BaseModel):
    enabled: bool = True
    max_images_per_complaint: int = 3
    max_image_size_mb: float = 5.0
    skip_if_text_confident: bool = True
    text_confidence_threshold: float = 0.8
    upload_dir: str = "uploads/complaints"


class TimeRestrictions(BaseModel):
    business_hours_only: bool = False
    business_hours_start: int = 9
    business_hours_end: int = 18


class SelectorWeights(BaseModel):
    """Hand-tuned staff scoring weights (lower total score wins)"""
    per_active_assignment: float = 10.0
    per_experience_year: float = 2.0
    unavailable_penalty: float = 100.0
    urgent_load_multiplier: float = 5.0
    high_load_multiplier: float = 3.0
    per_idle_day_bonus: float = 0.5


class WorkloadThresholds(BaseModel):
    """Upper bounds (inclusive) of the light, moderate and heavy tiers"""
    light_max: int = 3
    moderate_max: int = 6
    heavy_max: int = 10


class SchedulerSettings(BaseModel):
    autostart: bool = True
    complaint_processing_interval_seconds: float = 300.0
    rebalance_interval_seconds: float = 3600.0
    rebalance_enabled: bool = True
    health_check_interval_seconds: float = 3600.0


class AutomationConfig(BaseModel):
    inference: InferenceSettings = Field(default_factory=InferenceSettings)
    cost_control: CostControl = Field(default_factory=CostControl)
    images: ImageAnalysisSettings = Field(default_factory=ImageAnalysisSettings)
    time_restrictions: TimeRestrictions = Field(default_factory=TimeRestrictions)
    selector_weights: SelectorWeights = Field(default_factory=SelectorWeights)
    workload_thresholds: WorkloadThresholds = Field(default_factory=WorkloadThresholds)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    batch_size: int = Field(default=10, ge=1)
    max_concurrency: int = Field(default=4, ge=1)
    category_update_threshold: float = 0.6
    priority_update_threshold: float = 0.5
    max_moves_per_staff: int = 2
    notification_timeout_seconds: float = 10.0
    redis_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "AutomationConfig":
        return cls(
            inference=InferenceSettings(
                enabled=_env_bool("AI_ENABLED", True),
                api_key=os.getenv("ANTHROPIC_API_KEY"),
                model=os.getenv("AI_MODEL", "claude-sonnet-4-20250514"),
                timeout_seconds=_env_float("AI_TIMEOUT_SECONDS", 15.0),
            ),
            cost_control=CostControl(
                max_daily_cost=_env_float("AI_MAX_DAILY_COST", 10.0),
                max_monthly_cost=_env_float("AI_MAX_MONTHLY_COST", 50.0),
                cost_per_complaint=_env_float("AI_COST_PER_COMPLAINT", 0.02),
                cost_per_image=_env_float("AI_COST_PER_IMAGE", 0.01),
                max_complaints_per_day=_env_int("AI_MAX_COMPLAINTS_PER_DAY", 500),
                max_requests_per_minute=_env_int("AI_MAX_REQUESTS_PER_MINUTE", 10),
            ),
            images=ImageAnalysisSettings(
                enabled=_env_bool("AI_IMAGE_ANALYSIS_ENABLED", True),
                max_images_per_complaint=_env_int("AI_MAX_IMAGES", 3),
                skip_if_text_confident=_env_bool("AI_SKIP_IMAGES_IF_TEXT_CONFIDENT", True),
                text_confidence_threshold=_env_float("AI_TEXT_CONFIDENCE_THRESHOLD", 0.8),
                upload_dir=os.getenv("COMPLAINT_UPLOAD_DIR", "uploads/complaints"),
            ),
            time_restrictions=TimeRestrictions(
                business_hours_only=_env_bool("AI_BUSINESS_HOURS_ONLY", False),
                business_hours_start=_env_int("AI_BUSINESS_HOURS_START", 9),
                business_hours_end=_env_int("AI_BUSINESS_HOURS_END", 18),
            ),
            scheduler=SchedulerSettings(
                autostart=_env_bool("SCHEDULER_AUTOSTART", True),
                complaint_processing_interval_seconds=_env_float(
                    "SCHEDULER_PROCESSING_INTERVAL_SECONDS", 300.0
                ),
                rebalance_interval_seconds=_env_float("SCHEDULER_REBALANCE_INTERVAL_SECONDS", 3600.0),
                rebalance_enabled=_env_bool("SCHEDULER_REBALANCE_ENABLED", True),
                health_check_interval_seconds=_env_float(
                    "SCHEDULER_HEALTH_CHECK_INTERVAL_SECONDS", 3600.0
                ),
            ),
            batch_size=_env_int("AUTOMATION_BATCH_SIZE", 10),
            max_concurrency=_env_int("AUTOMATION_MAX_CONCURRENCY", 4),
            redis_url=os.getenv("REDIS_URL") or None,
        )

    # ==================== POLICY HELPERS ====================

    def should_use_ai(self, now: Optional[datetime] = None) -> bool:
        """Check if AI should be used based on the current settings"""
        if not self.inference.enabled or not self.inference.api_key:
            return False

        if self.time_restrictions.business_hours_only:
            current_hour = (now or datetime.now()).hour
            start = self.time_restrictions.business_hours_start
            end = self.time_restrictions.business_hours_end
            if current_hour < start or current_hour >= end:
                return False

        return True

    def should_analyze_images(self, text_confidence: float = 0.0) -> bool:
        if not self.images.enabled:
            return False

        if (self.images.skip_if_text_confident
                and text_confidence >= self.images.text_confidence_threshold):
            return False

        return True

    def estimated_cost(self, image_count: int = 0) -> float:
        return self.cost_control.cost_per_complaint + image_count * self.cost_control.cost_per_image
