# backend/services/assignment_executor.py
import asyncio
import logging
import uuid
import weakref
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from models.complaint_models import (
    SYSTEM_ACTOR,
    TERMINAL_STATUSES,
    AssignmentDecision,
    AuditAction,
    AuditEntry,
    Complaint,
    ComplaintStatus,
    NotificationOutcome,
    StaffMember,
    to_document,
)
from .database_service import DatabaseService
from .errors import (
    AssignmentConflictError,
    AssignmentError,
    ComplaintNotFoundError,
    StaffCapacityError,
    StaffNotFoundError,
)
from .notification_service import NotificationService
from .staff_directory import StaffDirectory

logger = logging.getLogger(__name__)


class AssignmentExecutor:
    """
    Applies a staff selection to a complaint.

    A per-complaint lock is taken first, then a per-staff lock; inside the
    staff lock the live active-assignment count is re-read, so the capacity
    check and the write form one unit for that staff member. The write
    itself is conditional on the previously observed assignee, which
    catches writers outside this process.
    """

    def __init__(self, db: DatabaseService, directory: StaffDirectory,
                 notifier: Optional[NotificationService] = None,
                 notification_timeout: float = 10.0,
                 clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.directory = directory
        self.notifier = notifier
        self.notification_timeout = notification_timeout
        self.clock = clock

        # Locks live as long as someone holds or waits on them
        self._complaint_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._staff_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @staticmethod
    def _lock_for(locks: "weakref.WeakValueDictionary[str, asyncio.Lock]", key: str) -> asyncio.Lock:
        lock = locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            locks[key] = lock
        return lock

    async def assign(self, complaint_id: str, staff_id: str, assigned_by: Optional[str] = None,
                     action: AuditAction = AuditAction.AUTO_ASSIGN, reason: str = "automatic assignment",
                     enforce_capacity: bool = True,
                     details: Optional[Dict[str, Any]] = None) -> AssignmentDecision:
        complaint_lock = self._lock_for(self._complaint_locks, complaint_id)
        async with complaint_lock:
            complaint = await self._load_complaint(complaint_id)

            if complaint.assigned_staff_id == staff_id:
                logger.info(f"Complaint {complaint_id} already assigned to {staff_id}, nothing to do")
                return AssignmentDecision(
                    complaint_id=complaint_id,
                    previous_staff_id=staff_id,
                    staff_id=staff_id,
                    assigned_by=complaint.assigned_by,
                    action=action,
                    status=complaint.status,
                    assigned_at=complaint.assigned_at or complaint.last_updated,
                )

            staff = await self.directory.get_staff(staff_id)
            if staff is None:
                raise StaffNotFoundError(staff_id)
            if not staff.is_active:
                raise AssignmentError(f"Field staff {staff_id} is not active")

            previous_staff_id = complaint.assigned_staff_id
            if previous_staff_id and action in (AuditAction.AUTO_ASSIGN, AuditAction.MANUAL_ASSIGN):
                action = AuditAction.REASSIGN

            # Rebalancing only ever moves work nobody has started
            expected_status = None
            if action == AuditAction.REBALANCE:
                if complaint.status != ComplaintStatus.ASSIGNED:
                    raise AssignmentConflictError(complaint_id, previous_staff_id)
                expected_status = ComplaintStatus.ASSIGNED.value

            staff_lock = self._lock_for(self._staff_locks, staff_id)
            async with staff_lock:
                if enforce_capacity:
                    active = await self.directory.current_active_assignment_count(staff_id)
                    if active >= staff.max_workload:
                        raise StaffCapacityError(staff_id, active, staff.max_workload)

                now = self.clock()
                # Started work keeps its status when it changes hands
                status = (ComplaintStatus.IN_PROGRESS
                          if complaint.status == ComplaintStatus.IN_PROGRESS
                          else ComplaintStatus.ASSIGNED)
                fields = {
                    "assigned_staff_id": staff_id,
                    "assigned_at": now,
                    "assigned_by": assigned_by,
                    "status": status.value,
                    "last_updated": now,
                }
                updated = await self.db.update_complaint_assignment(
                    complaint_id, previous_staff_id, fields, expected_status=expected_status
                )
                if updated is None:
                    raise AssignmentConflictError(complaint_id, previous_staff_id)

                await self.db.touch_staff_last_assigned(staff_id, now)

            entry = AuditEntry(
                audit_id=str(uuid.uuid4()),
                actor=assigned_by or SYSTEM_ACTOR,
                action=action,
                complaint_id=complaint_id,
                previous_staff_id=previous_staff_id,
                new_staff_id=staff_id,
                reason=reason,
                details=details or {},
                timestamp=now,
            )
            audit_id: Optional[str] = entry.audit_id
            try:
                await self.db.append_audit_entry(to_document(entry))
            except Exception as e:
                # Assignment is already committed, keep it
                logger.error(f"❌ Could not write {action.value} audit entry for {complaint_id}: {e}")
                audit_id = None

        logger.info(
            f"✅ Complaint {complaint_id} {action.value}: "
            f"{previous_staff_id or 'unassigned'} -> {staff_id} ({staff.name})"
        )

        notification = await self._notify(Complaint.from_document(updated), staff)

        return AssignmentDecision(
            complaint_id=complaint_id,
            previous_staff_id=previous_staff_id,
            staff_id=staff_id,
            assigned_by=assigned_by,
            action=action,
            status=status,
            assigned_at=now,
            audit_id=audit_id,
            notification=notification,
        )

    async def _load_complaint(self, complaint_id: str) -> Complaint:
        document = await self.db.get_complaint(complaint_id)
        if document is None:
            raise ComplaintNotFoundError(complaint_id)

        complaint = Complaint.from_document(document)
        if complaint.is_deleted or complaint.status in TERMINAL_STATUSES:
            raise AssignmentError(
                f"Complaint {complaint_id} is {complaint.status.value} and cannot be assigned"
            )
        return complaint

    async def _notify(self, complaint: Complaint, staff: StaffMember) -> Optional[NotificationOutcome]:
        if self.notifier is None:
            return None
        try:
            return await asyncio.wait_for(
                self.notifier.notify_assignment(complaint, staff),
                timeout=self.notification_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ Notification for complaint {complaint.complaint_id} timed out")
            return NotificationOutcome(errors=["timeout"])
        except Exception as e:
            logger.error(f"❌ Notification for complaint {complaint.complaint_id} failed: {e}")
            return NotificationOutcome(errors=[str(e)])
