# backend/services/assignment_selector.py
import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from models.complaint_models import ComplaintCategory, Priority, StaffCandidate
from .automation_config import SelectorWeights

logger = logging.getLogger(__name__)


class AssignmentSelector:
    """
    Picks the field worker best suited for a complaint.

    Each candidate gets a workload score (lower is better): active
    assignments push it up, experience and time since the last assignment
    pull it down, unavailability adds a large penalty instead of removing
    the candidate. Urgent and high priority work weighs current load more
    heavily. Ties go to the longest-registered staff member, then staff id.
    """

    def __init__(self, weights: Optional[SelectorWeights] = None):
        self.weights = weights or SelectorWeights()

    def calculate_workload_score(self, candidate: StaffCandidate, priority: Priority,
                                 now: datetime) -> float:
        weights = self.weights
        staff = candidate.staff
        active = candidate.active_assignments

        score = active * weights.per_active_assignment
        score -= staff.experience_years * weights.per_experience_year

        if not staff.is_available:
            score += weights.unavailable_penalty

        if priority == Priority.URGENT:
            score += active * weights.urgent_load_multiplier
        elif priority == Priority.HIGH:
            score += active * weights.high_load_multiplier

        if staff.last_assigned_at:
            idle_days = max((now - staff.last_assigned_at).total_seconds() / 86400, 0.0)
            score -= idle_days * weights.per_idle_day_bonus

        return score

    def rank_candidates(self, priority: Priority, candidates: Sequence[StaffCandidate],
                        now: Optional[datetime] = None) -> List[Tuple[StaffCandidate, float]]:
        now = now or datetime.now()
        scored = [(candidate, self.calculate_workload_score(candidate, priority, now))
                  for candidate in candidates]
        scored.sort(key=lambda item: (item[1], item[0].staff.registered_at, item[0].staff.staff_id))
        return scored

    def select_best_staff(self, category: ComplaintCategory, priority: Priority,
                          candidates: Sequence[StaffCandidate],
                          now: Optional[datetime] = None) -> Optional[str]:
        if not candidates:
            logger.warning(f"⚠️ No eligible staff for category {category.value}")
            return None

        ranked = self.rank_candidates(priority, candidates, now)
        best, score = ranked[0]
        logger.info(
            f"Selected staff {best.staff.staff_id} ({best.staff.name}) for "
            f"{category.value}/{priority.value} with score {score:.2f}"
        )
        return best.staff.staff_id
