# backend/services/automation_orchestrator.py
"""
Automated complaint processing.

Each pending complaint walks PENDING -> CLASSIFYING -> SCORING -> SELECTING
-> ASSIGNING -> ASSIGNED, or ends in FAILED. Classification and scoring cannot fail
(they fall back to keyword scoring); a FAILED complaint stays pending and
becomes eligible again on the next sweep. A complaint that already carries
a classification re-enters at SELECTING and is never classified twice.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from models.complaint_models import (
    SYSTEM_ACTOR,
    AssignmentDecision,
    AuditAction,
    AuditEntry,
    AutomationStats,
    BatchError,
    BatchSummary,
    ClassificationRecord,
    ClassificationResult,
    Complaint,
    ComplaintCategory,
    to_document,
)
from .assignment_executor import AssignmentExecutor
from .assignment_selector import AssignmentSelector
from .automation_config import AutomationConfig
from .content_classifier import ContentClassifier
from .database_service import DatabaseService
from .errors import AssignmentError
from .priority_scorer import PriorityScorer
from .staff_directory import StaffDirectory, department_for_category

logger = logging.getLogger(__name__)


class ProcessingState(str, Enum):
    PENDING = "pending"
    CLASSIFYING = "classifying"
    SCORING = "scoring"
    SELECTING = "selecting"
    ASSIGNING = "assigning"
    ASSIGNED = "assigned"
    FAILED = "failed"


class ProcessingOutcome(BaseModel):
    complaint_id: str
    state: ProcessingState
    failed_stage: Optional[ProcessingState] = None
    error: Optional[str] = None
    classification: Optional[ClassificationResult] = None
    reclassified: bool = False
    decision: Optional[AssignmentDecision] = None

    @property
    def succeeded(self) -> bool:
        return self.state == ProcessingState.ASSIGNED


class AutomationOrchestrator:
    def __init__(self, db: DatabaseService, config: AutomationConfig,
                 classifier: ContentClassifier, scorer: PriorityScorer,
                 directory: StaffDirectory, selector: AssignmentSelector,
                 executor: AssignmentExecutor,
                 clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.config = config
        self.classifier = classifier
        self.scorer = scorer
        self.directory = directory
        self.selector = selector
        self.executor = executor
        self.clock = clock

    # ==================== BATCH ====================

    async def process_pending_batch(self, max_items: Optional[int] = None) -> BatchSummary:
        limit = max_items or self.config.batch_size
        # New intake first; earlier soft failures only take the slots left over
        documents = await self.db.find_pending_complaints(limit, classified=False)
        if len(documents) < limit:
            documents += await self.db.find_pending_complaints(limit - len(documents), classified=True)
        if not documents:
            logger.info("No pending complaints to process")
            return BatchSummary()

        logger.info(f"Processing {len(documents)} pending complaints")
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def run(document: Dict[str, Any]) -> ProcessingOutcome:
            async with semaphore:
                return await self._process_document(document)

        # gather keeps selection order
        outcomes: List[ProcessingOutcome] = await asyncio.gather(*(run(doc) for doc in documents))

        summary = BatchSummary(processed=len(outcomes))
        for outcome in outcomes:
            if outcome.succeeded:
                summary.succeeded += 1
            else:
                summary.failed += 1
                summary.errors.append(BatchError(
                    complaint_id=outcome.complaint_id,
                    stage=(outcome.failed_stage or ProcessingState.FAILED).value,
                    error=outcome.error or "unknown error",
                ))

        logger.info(f"✅ Batch done: {summary.succeeded} assigned, {summary.failed} failed "
                    f"of {summary.processed}")
        return summary

    async def _process_document(self, document: Dict[str, Any]) -> ProcessingOutcome:
        complaint_id = str(document.get("complaint_id", "unknown"))
        try:
            complaint = Complaint.from_document(document)
        except ValueError as e:
            logger.error(f"❌ Unparseable complaint {complaint_id}: {e}")
            return ProcessingOutcome(
                complaint_id=complaint_id,
                state=ProcessingState.FAILED,
                failed_stage=ProcessingState.PENDING,
                error=f"invalid complaint document: {e}",
            )
        return await self.process_complaint(complaint)

    # ==================== SINGLE COMPLAINT ====================

    async def process_complaint(self, complaint: Complaint) -> ProcessingOutcome:
        outcome = ProcessingOutcome(complaint_id=complaint.complaint_id, state=ProcessingState.PENDING)
        category = complaint.category
        priority = complaint.priority

        if not complaint.is_classified:
            outcome.state = ProcessingState.CLASSIFYING
            result = await self.classifier.classify(complaint.title, complaint.description, complaint.images)
            outcome.classification = result
            outcome.reclassified = True

            outcome.state = ProcessingState.SCORING
            scored_priority = self.scorer.score(complaint.text, result.category)

            category, priority = self._apply_confidence_gates(complaint, result, scored_priority)
            try:
                await self.save_classification(complaint, result, scored_priority, category, priority)
            except Exception as e:
                return await self._fail(outcome, ProcessingState.SCORING, f"could not save classification: {e}")

        outcome.state = ProcessingState.SELECTING
        try:
            department = department_for_category(category)
            candidates = await self.directory.list_eligible_staff(department)
            staff_id = self.selector.select_best_staff(category, priority, candidates, now=self.clock())
        except Exception as e:
            return await self._fail(outcome, ProcessingState.SELECTING, f"staff lookup failed: {e}")

        if staff_id is None:
            return await self._fail(
                outcome, ProcessingState.SELECTING,
                f"no eligible staff in department {department.value}",
            )

        outcome.state = ProcessingState.ASSIGNING
        try:
            decision = await self.executor.assign(
                complaint.complaint_id,
                staff_id,
                assigned_by=SYSTEM_ACTOR,
                action=AuditAction.AUTO_ASSIGN,
                reason=f"automatic assignment ({category.value}, {priority.value})",
            )
        except AssignmentError as e:
            return await self._fail(outcome, ProcessingState.ASSIGNING, str(e))
        except Exception as e:
            return await self._fail(outcome, ProcessingState.ASSIGNING, f"persistence error: {e}")

        outcome.decision = decision
        outcome.state = ProcessingState.ASSIGNED

        await self._audit(
            complaint.complaint_id,
            AuditAction.AUTOMATED_PROCESSING,
            reason="complaint classified and assigned automatically",
            new_staff_id=staff_id,
            details={
                "category": category.value,
                "priority": priority.value,
                "confidence": outcome.classification.confidence if outcome.classification else None,
                "used_ai": outcome.classification.used_ai if outcome.classification else False,
                "reclassified": outcome.reclassified,
                "assignment_audit_id": decision.audit_id,
                "notification_delivered": decision.notification.delivered if decision.notification else False,
            },
        )
        return outcome

    def _apply_confidence_gates(self, complaint: Complaint, result: ClassificationResult, scored_priority):
        category = complaint.category
        priority = complaint.priority
        if result.confidence > self.config.category_update_threshold and result.category != ComplaintCategory.OTHER:
            category = result.category
        if result.confidence > self.config.priority_update_threshold:
            priority = scored_priority
        return category, priority

    async def save_classification(self, complaint: Complaint, result: ClassificationResult,
                                  scored_priority, category, priority) -> None:
        record = ClassificationRecord(
            category=result.category,
            priority=scored_priority,
            confidence=result.confidence,
            reasoning=result.reasoning,
            used_ai=result.used_ai,
            classified_at=self.clock(),
        )
        saved = await self.db.save_classification(
            complaint.complaint_id,
            to_document(record),
            category=category.value if category != complaint.category else None,
            priority=priority.value if priority != complaint.priority else None,
        )
        if not saved:
            raise AssignmentError(f"Complaint {complaint.complaint_id} disappeared before classification was saved")

    # ==================== FAILURE & AUDIT ====================

    async def _fail(self, outcome: ProcessingOutcome, stage: ProcessingState, error: str) -> ProcessingOutcome:
        outcome.state = ProcessingState.FAILED
        outcome.failed_stage = stage
        outcome.error = error
        logger.error(f"❌ Automated processing of {outcome.complaint_id} failed at {stage.value}: {error}")

        await self._audit(
            outcome.complaint_id,
            AuditAction.AUTOMATION_ERROR,
            reason=error,
            details={"stage": stage.value},
        )
        return outcome

    async def _audit(self, complaint_id: str, action: AuditAction, reason: str,
                     new_staff_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        entry = AuditEntry(
            audit_id=str(uuid.uuid4()),
            actor=SYSTEM_ACTOR,
            action=action,
            complaint_id=complaint_id,
            new_staff_id=new_staff_id,
            reason=reason,
            details=details or {},
            timestamp=self.clock(),
        )
        try:
            await self.db.append_audit_entry(to_document(entry))
        except Exception as e:
            # The batch summary still carries the outcome
            logger.error(f"❌ Could not write {action.value} audit entry for {complaint_id}: {e}")

    # ==================== STATS ====================

    async def get_automation_stats(self) -> AutomationStats:
        counts = await self.db.count_audit_actions([
            AuditAction.AUTOMATED_PROCESSING.value,
            AuditAction.AUTOMATION_ERROR.value,
        ])
        total_automated = counts.get(AuditAction.AUTOMATED_PROCESSING.value, 0)
        total_errors = counts.get(AuditAction.AUTOMATION_ERROR.value, 0)
        total = total_automated + total_errors
        success_rate = round(total_automated / total * 100, 2) if total else 0.0
        return AutomationStats(
            total_automated=total_automated,
            total_errors=total_errors,
            success_rate=success_rate,
        )
