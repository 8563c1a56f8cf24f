# backend/services/staff_directory.py
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.complaint_models import (
    ComplaintCategory,
    Department,
    StaffCandidate,
    StaffMember,
    StaffWorkload,
    WorkloadLevel,
)
from .automation_config import WorkloadThresholds
from .database_service import DatabaseService

logger = logging.getLogger(__name__)

CATEGORY_TO_DEPARTMENT = {
    ComplaintCategory.WASTE_MANAGEMENT: Department.SANITATION,
    ComplaintCategory.WATER_SUPPLY: Department.WATER_SUPPLY,
    ComplaintCategory.ELECTRICITY: Department.ELECTRICITY,
    ComplaintCategory.STREET_LIGHTING: Department.ELECTRICITY,
    ComplaintCategory.ROAD_ISSUES: Department.PUBLIC_WORKS,
    ComplaintCategory.DRAINAGE: Department.PUBLIC_WORKS,
    ComplaintCategory.PARKS_RECREATION: Department.PUBLIC_WORKS,
    ComplaintCategory.SAFETY_SECURITY: Department.PUBLIC_WORKS,
    ComplaintCategory.NOISE_POLLUTION: Department.PUBLIC_WORKS,
    ComplaintCategory.AIR_POLLUTION: Department.PUBLIC_WORKS,
    ComplaintCategory.PUBLIC_TRANSPORT: Department.PUBLIC_WORKS,
    ComplaintCategory.OTHER: Department.PUBLIC_WORKS,
}

DEFAULT_DEPARTMENT = Department.PUBLIC_WORKS


def department_for_category(category: ComplaintCategory) -> Department:
    return CATEGORY_TO_DEPARTMENT.get(category, DEFAULT_DEPARTMENT)


def workload_level(active_count: int, thresholds: WorkloadThresholds) -> WorkloadLevel:
    if active_count <= 0:
        return WorkloadLevel.AVAILABLE
    if active_count <= thresholds.light_max:
        return WorkloadLevel.LIGHT
    if active_count <= thresholds.moderate_max:
        return WorkloadLevel.MODERATE
    if active_count <= thresholds.heavy_max:
        return WorkloadLevel.HEAVY
    return WorkloadLevel.OVERLOADED


def start_of_month(now: datetime) -> datetime:
    return datetime(now.year, now.month, 1)


class StaffDirectory:
    """Read-only view over field staff with live workload counts"""

    def __init__(self, db: DatabaseService, thresholds: Optional[WorkloadThresholds] = None):
        self.db = db
        self.thresholds = thresholds or WorkloadThresholds()

    async def get_staff(self, staff_id: str) -> Optional[StaffMember]:
        document = await self.db.get_staff(staff_id)
        return StaffMember.from_document(document) if document else None

    async def current_active_assignment_count(self, staff_id: str) -> int:
        return await self.db.count_active_assignments(staff_id)

    async def unstarted_assignments(self, staff_id: str, limit: int) -> List[Dict[str, Any]]:
        return await self.db.find_unstarted_assignments(staff_id, limit)

    async def list_eligible_staff(self, department: Department) -> List[StaffCandidate]:
        """Active staff of the department who are not on leave, with their live counts"""
        documents = await self.db.list_staff(department.value, active_only=True)

        candidates = []
        for document in documents:
            staff = StaffMember.from_document(document)
            if not staff.is_active or staff.is_on_leave:
                continue
            active = await self.db.count_active_assignments(staff.staff_id)
            candidates.append(StaffCandidate(staff=staff, active_assignments=active))
        return candidates

    async def list_staff_with_workload(self, department: Optional[Department] = None,
                                       now: Optional[datetime] = None) -> List[StaffWorkload]:
        month_start = start_of_month(now or datetime.now())
        documents = await self.db.list_staff(department.value if department else None, active_only=True)

        report = []
        for document in documents:
            staff = StaffMember.from_document(document)
            active = await self.db.count_active_assignments(staff.staff_id)
            completed = await self.db.count_completed_since(staff.staff_id, month_start)
            report.append(StaffWorkload(
                staff_id=staff.staff_id,
                name=staff.name,
                department=staff.department,
                experience_years=staff.experience_years,
                max_workload=staff.max_workload,
                active_complaints=active,
                completed_this_month=completed,
                is_available=staff.is_available and not staff.is_on_leave,
                workload_level=workload_level(active, self.thresholds),
                registered_at=staff.registered_at,
            ))
        return report
