# backend/services/errors.py
from typing import Optional


class AutomationError(Exception):
    """Base class for errors raised by the automation engine"""


class InferenceUnavailableError(AutomationError):
    """Inference provider is disabled, out of budget, timed out or failed"""

    def __init__(self, message: str, reason: str = "provider_error"):
        super().__init__(message)
        self.reason = reason


class AssignmentError(AutomationError):
    """Assignment could not be applied to the complaint"""


class ComplaintNotFoundError(AssignmentError):
    def __init__(self, complaint_id: str):
        super().__init__(f"Complaint not found: {complaint_id}")
        self.complaint_id = complaint_id


class StaffNotFoundError(AssignmentError):
    def __init__(self, staff_id: str):
        super().__init__(f"Field staff not found: {staff_id}")
        self.staff_id = staff_id


class StaffCapacityError(AssignmentError):
    def __init__(self, staff_id: str, active: int, capacity: int):
        super().__init__(
            f"Field staff {staff_id} is at capacity ({active}/{capacity} active assignments)"
        )
        self.staff_id = staff_id
        self.active = active
        self.capacity = capacity


class AssignmentConflictError(AssignmentError):
    """Complaint assignment changed between read and conditional write"""

    def __init__(self, complaint_id: str, expected_staff_id: Optional[str]):
        super().__init__(
            f"Assignment of complaint {complaint_id} changed concurrently "
            f"(expected staff: {expected_staff_id or 'none'})"
        )
        self.complaint_id = complaint_id
        self.expected_staff_id = expected_staff_id


class UnknownJobError(AutomationError):
    def __init__(self, job_name: str):
        super().__init__(f"Unknown job: {job_name}")
        self.job_name = job_name
