import copy
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from models.complaint_models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ComplaintCategory,
    ImageVerdict,
)
from services.database_service import COMPLETED_STATUSES
from services.errors import InferenceUnavailableError
from services.inference_provider import TextVerdict

NOW = datetime(2025, 3, 12, 10, 30)

class InMemoryStore:
    """Dict-backed stand-in for DatabaseService with the same method surface"""

    def __init__(self):
        self.complaints: Dict[str, Dict[str, Any]] = {}
        self.staff: Dict[str, Dict[str, Any]] = {}
        self.audit: List[Dict[str, Any]] = []
        self.fail_assignment_for: set = set()
        self.fail_audit_writes = False

    # helpers used by tests
    def add_complaint(self, complaint_id: str, title: str, description: str = "", **fields) -> Dict[str, Any]:
        document = {
            "complaint_id": complaint_id,
            "title": title,
            "description": description,
            "images": [],
            "category": "other",
            "priority": "medium",
            "status": "pending",
            "assigned_staff_id": None,
            "assigned_at": None,
            "assigned_by": None,
            "classification": None,
            "created_at": NOW - timedelta(hours=len(self.complaints) + 1),
            "last_updated": NOW,
            "is_deleted": False,
        }
        document.update(fields)
        self.complaints[complaint_id] = document
        return document

    def add_staff(self, staff_id: str, department: str, **fields) -> Dict[str, Any]:
        document = {
            "staff_id": staff_id,
            "name": fields.pop("name", f"Staff {staff_id}"),
            "email": None,
            "phone": None,
            "department": department,
            "job_role": None,
            "is_active": True,
            "is_available": True,
            "is_on_leave": False,
            "experience_years": 0,
            "max_workload": 10,
            "last_assigned_at": None,
            "registered_at": datetime(2020, 1, 1),
        }
        document.update(fields)
        self.staff[staff_id] = document
        return document

    def assign_directly(self, staff_id: str, count: int, status: str = "assigned", prefix: Optional[str] = None):
        for index in range(count):
            complaint_id = f"{prefix or staff_id}-{status}-{index}"
            self.add_complaint(
                complaint_id, "existing work",
                status=status,
                assigned_staff_id=staff_id,
                assigned_at=NOW - timedelta(days=count - index),
                category="road_issues",
            )

    def audit_for(self, complaint_id: str) -> List[Dict[str, Any]]:
        return [entry for entry in self.audit if entry["complaint_id"] == complaint_id]

    # DatabaseService surface
    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "database_name": "memory"}

    async def get_complaint(self, complaint_id: str) -> Optional[Dict[str, Any]]:
        document = self.complaints.get(complaint_id)
        return copy.deepcopy(document) if document else None

    async def find_pending_complaints(self, limit: int, classified: bool = False) -> List[Dict[str, Any]]:
        pending = [doc for doc in self.complaints.values()
                   if doc["status"] == "pending" and not doc.get("is_deleted")
                   and (doc.get("classification") is not None) == classified]
        pending.sort(key=lambda doc: doc["created_at"])
        return [copy.deepcopy(doc) for doc in pending[:limit]]

    async def save_classification(self, complaint_id, record, category=None, priority=None) -> bool:
        document = self.complaints.get(complaint_id)
        if document is None:
            return False
        document["classification"] = record
        if category is not None:
            document["category"] = category
        if priority is not None:
            document["priority"] = priority
        return True

    async def update_complaint_assignment(self, complaint_id, expected_staff_id, fields, expected_status=None):
        if complaint_id in self.fail_assignment_for:
            raise ConnectionError("simulated write failure")
        document = self.complaints.get(complaint_id)
        if document is None:
            return None
        if document.get("assigned_staff_id") != expected_staff_id:
            return None
        if document["status"] in [status.value for status in TERMINAL_STATUSES]:
            return None
        if expected_status is not None and document["status"] != expected_status:
            return None
        document.update(fields)
        return copy.deepcopy(document)

    async def count_active_assignments(self, staff_id: str) -> int:
        active = [status.value for status in ACTIVE_STATUSES]
        return sum(1 for doc in self.complaints.values()
                   if doc.get("assigned_staff_id") == staff_id and doc["status"] in active
                   and not doc.get("is_deleted"))

    async def count_completed_since(self, staff_id: str, since: datetime) -> int:
        completed = [status.value for status in COMPLETED_STATUSES]
        return sum(1 for doc in self.complaints.values()
                   if doc.get("assigned_staff_id") == staff_id and doc["status"] in completed
                   and doc["last_updated"] >= since)

    async def find_unstarted_assignments(self, staff_id: str, limit: int) -> List[Dict[str, Any]]:
        unstarted = [doc for doc in self.complaints.values()
                     if doc.get("assigned_staff_id") == staff_id and doc["status"] == "assigned"
                     and not doc.get("is_deleted")]
        unstarted.sort(key=lambda doc: doc["assigned_at"])
        return [copy.deepcopy(doc) for doc in unstarted[:limit]]

    async def get_staff(self, staff_id: str) -> Optional[Dict[str, Any]]:
        document = self.staff.get(staff_id)
        return copy.deepcopy(document) if document else None

    async def list_staff(self, department=None, active_only=True) -> List[Dict[str, Any]]:
        result = []
        for document in self.staff.values():
            if department and document["department"] != department:
                continue
            if active_only and (not document["is_active"] or document["is_on_leave"]):
                continue
            result.append(copy.deepcopy(document))
        result.sort(key=lambda doc: doc["registered_at"])
        return result

    async def touch_staff_last_assigned(self, staff_id: str, when: datetime) -> bool:
        if staff_id not in self.staff:
            return False
        self.staff[staff_id]["last_assigned_at"] = when
        return True

    async def append_audit_entry(self, entry: Dict[str, Any]) -> str:
        if self.fail_audit_writes:
            raise ConnectionError("audit write failed")
        self.audit.append(copy.deepcopy(entry))
        return entry["audit_id"]

    async def get_audit_trail(self, complaint_id: str) -> List[Dict[str, Any]]:
        return sorted(self.audit_for(complaint_id), key=lambda entry: entry["timestamp"])

    async def count_audit_actions(self, actions: List[str]) -> Dict[str, int]:
        counts = {action: 0 for action in actions}
        for entry in self.audit:
            if entry["action"] in counts:
                counts[entry["action"]] += 1
        return counts

class ScriptedProvider:
    """Inference provider double that replays queued answers or errors"""

    def __init__(self, text_answers=None, image_answers=None):
        self.text_answers = list(text_answers or [])
        self.image_answers = list(image_answers or [])
        self.text_calls: List[str] = []
        self.image_calls: List[str] = []
        self.available = True

    async def classify_text(self, text: str) -> TextVerdict:
        self.text_calls.append(text)
        answer = self.text_answers.pop(0) if self.text_answers else InferenceUnavailableError("no answer")
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def classify_image(self, image) -> ImageVerdict:
        self.image_calls.append(image.filename)
        answer = self.image_answers.pop(0) if self.image_answers else InferenceUnavailableError("no answer")
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy"}

def text_verdict(category: str, confidence: float, reasoning: str = "scripted") -> TextVerdict:
    return TextVerdict(category=ComplaintCategory(category), confidence=confidence, reasoning=reasoning)

def image_verdict(category: str, confidence: float) -> ImageVerdict:
    return ImageVerdict(category=ComplaintCategory(category), confidence=confidence)
