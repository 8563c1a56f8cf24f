# backend/models/complaint_models.py
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum

class ComplaintCategory(str, Enum):
    ROAD_ISSUES = "road_issues"
    WASTE_MANAGEMENT = "waste_management"
    WATER_SUPPLY = "water_supply"
    ELECTRICITY = "electricity"
    STREET_LIGHTING = "street_lighting"
    DRAINAGE = "drainage"
    PARKS_RECREATION = "parks_recreation"
    SAFETY_SECURITY = "safety_security"
    NOISE_POLLUTION = "noise_pollution"
    AIR_POLLUTION = "air_pollution"
    PUBLIC_TRANSPORT = "public_transport"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "ComplaintCategory":
        """Unknown or missing labels collapse to OTHER"""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OTHER

class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANKS[self]

_PRIORITY_RANKS = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.URGENT: 3,
}

class ComplaintStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    WORK_COMPLETED = "work_completed"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    CLOSED = "closed"
    DELETED = "deleted"

# Statuses that count towards a field worker's workload
ACTIVE_STATUSES = (ComplaintStatus.ASSIGNED, ComplaintStatus.IN_PROGRESS)

TERMINAL_STATUSES = (
    ComplaintStatus.WORK_COMPLETED,
    ComplaintStatus.RESOLVED,
    ComplaintStatus.REJECTED,
    ComplaintStatus.CLOSED,
    ComplaintStatus.DELETED,
)

class Department(str, Enum):
    SANITATION = "sanitation"
    WATER_SUPPLY = "water_supply"
    ELECTRICITY = "electricity"
    PUBLIC_WORKS = "public_works"

class WorkloadLevel(str, Enum):
    AVAILABLE = "available"
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"
    OVERLOADED = "overloaded"

class AuditAction(str, Enum):
    AUTO_ASSIGN = "auto_assign"
    MANUAL_ASSIGN = "manual_assign"
    REASSIGN = "reassign"
    REBALANCE = "rebalance"
    AUTOMATED_PROCESSING = "automated_processing"
    AUTOMATION_ERROR = "automation_error"

SYSTEM_ACTOR = "system"

def to_document(model: BaseModel) -> Dict[str, Any]:
    """Dump a record for Mongo: enums as plain values, datetimes kept native"""
    document = model.model_dump(mode="json")
    for key, value in model:
        if isinstance(value, datetime):
            document[key] = value
    return document

class ImageReference(BaseModel):
    filename: str
    path: Optional[str] = None
    content_type: Optional[str] = None

class ImageVerdict(BaseModel):
    """Single image classification returned by the inference provider"""
    category: ComplaintCategory
    confidence: float = Field(ge=0.0, le=1.0)
    description: str = ""
    objects_detected: List[str] = []

class ImageAnalysis(BaseModel):
    """Combined verdict over all analysed images of one complaint"""
    category: ComplaintCategory
    confidence: float = Field(ge=0.0, le=1.0)
    total_images: int
    objects_detected: List[str] = []
    individual_results: List[ImageVerdict] = []

class ClassificationResult(BaseModel):
    category: ComplaintCategory
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str
    used_ai: bool = False
    keywords_found: List[str] = []
    image_analysis: Optional[ImageAnalysis] = None

class ClassificationRecord(BaseModel):
    """Classification folded into the complaint document"""
    category: ComplaintCategory
    priority: Priority
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str
    used_ai: bool = False
    classified_at: datetime = Field(default_factory=datetime.now)

class Complaint(BaseModel):
    complaint_id: str
    title: str
    description: str = ""
    images: List[ImageReference] = []
    category: ComplaintCategory = ComplaintCategory.OTHER
    priority: Priority = Priority.MEDIUM
    status: ComplaintStatus = ComplaintStatus.PENDING
    assigned_staff_id: Optional[str] = None
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[str] = None
    classification: Optional[ClassificationRecord] = None
    created_at: datetime = Field(default_factory=datetime.now)
    last_updated: datetime = Field(default_factory=datetime.now)
    is_deleted: bool = False

    @property
    def is_classified(self) -> bool:
        return self.classification is not None

    @property
    def text(self) -> str:
        return f"{self.title} {self.description}"

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Complaint":
        """Parse a raw complaints collection document"""
        data = {key: value for key, value in document.items() if key != "_id"}
        data["category"] = ComplaintCategory.parse(data.get("category"))
        data["images"] = [
            image if isinstance(image, dict) else {"filename": str(image)}
            for image in data.get("images") or []
        ]
        return cls.model_validate(data)

class StaffMember(BaseModel):
    staff_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    department: Department
    job_role: Optional[str] = None
    is_active: bool = True
    is_available: bool = True
    is_on_leave: bool = False
    experience_years: float = Field(default=0, ge=0)
    max_workload: int = Field(default=10, ge=1)
    last_assigned_at: Optional[datetime] = None
    registered_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "StaffMember":
        data = {key: value for key, value in document.items() if key != "_id"}
        return cls.model_validate(data)

class StaffCandidate(BaseModel):
    """A staff member paired with the live count of active assignments"""
    staff: StaffMember
    active_assignments: int = Field(default=0, ge=0)

class AuditEntry(BaseModel):
    audit_id: str
    actor: str = SYSTEM_ACTOR
    action: AuditAction
    complaint_id: str
    previous_staff_id: Optional[str] = None
    new_staff_id: Optional[str] = None
    reason: str = ""
    details: Dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=datetime.now)

class NotificationOutcome(BaseModel):
    email_sent: bool = False
    sms_sent: bool = False
    errors: List[str] = []

    @property
    def delivered(self) -> bool:
        return self.email_sent or self.sms_sent

class AssignmentDecision(BaseModel):
    complaint_id: str
    previous_staff_id: Optional[str] = None
    staff_id: str
    assigned_by: Optional[str] = None
    action: AuditAction
    status: ComplaintStatus
    assigned_at: datetime
    audit_id: Optional[str] = None
    notification: Optional[NotificationOutcome] = None

    @property
    def is_reassignment(self) -> bool:
        return self.previous_staff_id is not None

class ReassignmentRecord(BaseModel):
    complaint_id: str
    from_staff_id: str
    to_staff_id: str
    from_staff_name: str
    to_staff_name: str
    reason: str

class BatchError(BaseModel):
    complaint_id: str
    stage: str
    error: str

class BatchSummary(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[BatchError] = []

class RebalanceSummary(BaseModel):
    reassigned_count: int = 0
    actions: List[ReassignmentRecord] = []
    message: str = ""

class StaffWorkload(BaseModel):
    """Per-staff workload statistics for reports and rebalancing"""
    staff_id: str
    name: str
    department: Department
    experience_years: float
    max_workload: int
    active_complaints: int
    completed_this_month: int = 0
    is_available: bool = True
    workload_level: WorkloadLevel
    registered_at: Optional[datetime] = None

class AutomationStats(BaseModel):
    total_automated: int = 0
    total_errors: int = 0
    success_rate: float = 0.0

class JobRunResult(BaseModel):
    job_name: str
    status: str  # "completed", "skipped", "deferred", "failed"
    reason: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None

class AssignmentRequest(BaseModel):
    """Operator-initiated assignment or reassignment"""
    staff_id: str
    operator_id: str
    reason: Optional[str] = None
    enforce_capacity: bool = True
