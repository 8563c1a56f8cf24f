# backend/services/workload_rebalancer.py
import logging
from typing import List, Optional

from pymongo.errors import PyMongoError

from models.complaint_models import (
    SYSTEM_ACTOR,
    AuditAction,
    Department,
    RebalanceSummary,
    ReassignmentRecord,
    StaffWorkload,
    WorkloadLevel,
)
from .assignment_executor import AssignmentExecutor
from .errors import AssignmentError
from .staff_directory import StaffDirectory, workload_level

logger = logging.getLogger(__name__)

DONOR_LEVELS = (WorkloadLevel.HEAVY, WorkloadLevel.OVERLOADED)
RECEIVER_LEVELS = (WorkloadLevel.AVAILABLE, WorkloadLevel.LIGHT)
REBALANCE_REASON = "workload balancing"


class WorkloadRebalancer:
    """
    Moves not-yet-started work from heavy or overloaded staff to staff with
    little or nothing to do. Only complaints still in "assigned" status move;
    anything a worker has started stays put.
    """

    def __init__(self, directory: StaffDirectory, executor: AssignmentExecutor,
                 max_moves_per_staff: int = 2):
        self.directory = directory
        self.executor = executor
        self.max_moves_per_staff = max_moves_per_staff

    async def get_workload_report(self, department: Optional[Department] = None) -> List[StaffWorkload]:
        return await self.directory.list_staff_with_workload(department)

    async def rebalance(self, department: Optional[Department] = None) -> RebalanceSummary:
        report = await self.get_workload_report(department)
        thresholds = self.directory.thresholds

        donors = sorted(
            (s for s in report if s.workload_level in DONOR_LEVELS),
            key=lambda s: (-s.active_complaints, s.staff_id),
        )
        receivers = sorted(
            (s for s in report if s.workload_level in RECEIVER_LEVELS and s.is_available),
            key=lambda s: (s.active_complaints, s.staff_id),
        )

        if not donors or not receivers:
            message = "No rebalancing needed" if not donors else "No staff available to take over work"
            logger.info(message)
            return RebalanceSummary(message=message)

        actions: List[ReassignmentRecord] = []
        for donor in donors:
            if not receivers:
                break

            unstarted = await self.directory.unstarted_assignments(donor.staff_id, self.max_moves_per_staff)
            for document in unstarted:
                if not receivers:
                    break
                receiver = self._pick_receiver(receivers, donor)
                if receiver is None:
                    break

                complaint_id = document["complaint_id"]
                try:
                    await self.executor.assign(
                        complaint_id,
                        receiver.staff_id,
                        assigned_by=SYSTEM_ACTOR,
                        action=AuditAction.REBALANCE,
                        reason=REBALANCE_REASON,
                    )
                except (AssignmentError, PyMongoError) as e:
                    logger.warning(f"⚠️ Could not move {complaint_id} from {donor.staff_id} "
                                   f"to {receiver.staff_id}: {e}")
                    continue

                actions.append(ReassignmentRecord(
                    complaint_id=complaint_id,
                    from_staff_id=donor.staff_id,
                    to_staff_id=receiver.staff_id,
                    from_staff_name=donor.name,
                    to_staff_name=receiver.name,
                    reason=REBALANCE_REASON,
                ))

                donor.active_complaints -= 1
                receiver.active_complaints += 1
                receiver.workload_level = workload_level(receiver.active_complaints, thresholds)
                if receiver.workload_level not in RECEIVER_LEVELS:
                    receivers.remove(receiver)
                receivers.sort(key=lambda s: (s.active_complaints, s.staff_id))

        message = f"Rebalanced {len(actions)} complaints"
        logger.info(f"✅ {message}")
        return RebalanceSummary(reassigned_count=len(actions), actions=actions, message=message)

    @staticmethod
    def _pick_receiver(receivers: List[StaffWorkload], donor: StaffWorkload) -> Optional[StaffWorkload]:
        # Work only moves within its own department
        for receiver in receivers:
            if receiver.department == donor.department and receiver.staff_id != donor.staff_id:
                return receiver
        return None
