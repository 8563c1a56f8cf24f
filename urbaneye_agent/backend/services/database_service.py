# backend/services/database_service.py
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection
from pymongo import ASCENDING, ReturnDocument
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable
import logging
import os

from models.complaint_models import ACTIVE_STATUSES, TERMINAL_STATUSES, ComplaintStatus

logger = logging.getLogger(__name__)

# Statuses counted as finished work in workload statistics
COMPLETED_STATUSES = (
    ComplaintStatus.WORK_COMPLETED,
    ComplaintStatus.RESOLVED,
    ComplaintStatus.CLOSED,
)


def _values(statuses: Iterable[ComplaintStatus]) -> List[str]:
    return [status.value for status in statuses]


class DatabaseService:
    """
    MongoDB store for complaints, field staff and the assignment audit log.

    Documents are returned as plain dicts without the Mongo `_id`; callers
    parse them into the typed models. Every method raises ConnectionError
    when called before connect().
    """

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self.complaints_collection: Optional[AsyncIOMotorCollection] = None
        self.staff_collection: Optional[AsyncIOMotorCollection] = None
        self.audit_collection: Optional[AsyncIOMotorCollection] = None

        self.connection_string = os.getenv("MONGODB_URL", "mongodb://localhost:27017/")
        self.database_name = os.getenv("DB_NAME", "urbaneye")

    def _check_connection(self) -> bool:
        return (
            self.client is not None and
            self.database is not None and
            self.complaints_collection is not None and
            self.staff_collection is not None and
            self.audit_collection is not None
        )

    def _require_connection(self):
        if not self._check_connection():
            raise ConnectionError("Database connection not established")

    def _reset(self):
        self.client = None
        self.database = None
        self.complaints_collection = None
        self.staff_collection = None
        self.audit_collection = None

    async def connect(self):
        try:
            self.client = AsyncIOMotorClient(
                self.connection_string,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=5000,
                socketTimeoutMS=5000
            )
            # Test connection first before setting up collections
            await self.client.admin.command('ping')
            self.database = self.client[self.database_name]
            self.complaints_collection = self.database.complaints
            self.staff_collection = self.database.field_staff
            self.audit_collection = self.database.audit_logs
            await self.create_indexes()
            logger.info(f"✅ Connected to MongoDB database '{self.database_name}'")
        except Exception:
            if self.client:
                self.client.close()
            self._reset()
            raise

    async def disconnect(self):
        if self.client:
            self.client.close()
        self._reset()

    async def create_indexes(self):
        self._require_connection()
        try:
            complaints_col = self.complaints_collection
            staff_col = self.staff_collection
            audit_col = self.audit_collection
            assert complaints_col is not None
            assert staff_col is not None
            assert audit_col is not None

            await complaints_col.create_index([("complaint_id", ASCENDING)], unique=True)
            await complaints_col.create_index([("status", ASCENDING), ("created_at", ASCENDING)])
            await complaints_col.create_index([("assigned_staff_id", ASCENDING), ("status", ASCENDING)])
            await staff_col.create_index([("staff_id", ASCENDING)], unique=True)
            await staff_col.create_index([("department", ASCENDING), ("is_active", ASCENDING)])
            await audit_col.create_index([("complaint_id", ASCENDING), ("timestamp", ASCENDING)])
            await audit_col.create_index([("action", ASCENDING)])
        except Exception as e:
            logger.warning(f"⚠️ Index creation failed: {e}")

    async def health_check(self) -> Dict[str, Any]:
        try:
            if not self.client:
                return {"status": "unhealthy", "error": "Database client not initialized"}
            await self.client.admin.command('ping')
            if self.database is None:
                return {"status": "unhealthy", "error": "Database not initialized"}
            stats = await self.database.command("dbstats")
            return {
                "status": "healthy",
                "database_name": self.database.name,
                "collections": stats.get("collections", 0),
                "dataSize": stats.get("dataSize", 0),
                "storageSize": stats.get("storageSize", 0)
            }
        except Exception as e:
            return {"status": "unhealthy", "error": str(e)}

    # ==================== COMPLAINTS ====================

    async def get_complaint(self, complaint_id: str) -> Optional[Dict[str, Any]]:
        self._require_connection()
        complaints_col = self.complaints_collection
        assert complaints_col is not None
        return await complaints_col.find_one({"complaint_id": complaint_id}, {"_id": 0})

    async def find_pending_complaints(self, limit: int, classified: bool = False) -> List[Dict[str, Any]]:
        """
        Pending, non-deleted complaints, oldest first. `classified` picks
        either fresh intake (no classification record) or complaints that
        were classified on an earlier sweep but never got assigned.
        """
        self._require_connection()
        complaints_col = self.complaints_collection
        assert complaints_col is not None
        return await complaints_col.find(
            {
                "status": ComplaintStatus.PENDING.value,
                "is_deleted": {"$ne": True},
                "classification": {"$ne": None} if classified else None,
            },
            {"_id": 0}
        ).sort("created_at", ASCENDING).limit(limit).to_list(length=limit)

    async def save_classification(self, complaint_id: str, record: Dict[str, Any],
                                  category: Optional[str] = None, priority: Optional[str] = None) -> bool:
        self._require_connection()
        complaints_col = self.complaints_collection
        assert complaints_col is not None

        update_doc: Dict[str, Any] = {"classification": record, "last_updated": datetime.now()}
        if category is not None:
            update_doc["category"] = category
        if priority is not None:
            update_doc["priority"] = priority

        result = await complaints_col.update_one(
            {"complaint_id": complaint_id},
            {"$set": update_doc}
        )
        return result.matched_count > 0

    async def update_complaint_assignment(self, complaint_id: str, expected_staff_id: Optional[str],
                                          fields: Dict[str, Any],
                                          expected_status: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Apply assignment fields only if the complaint is still assigned to
        `expected_staff_id` (None meaning unassigned), not closed, and in
        `expected_status` when one is given.
        Returns the updated document, or None when the condition failed.
        """
        self._require_connection()
        complaints_col = self.complaints_collection
        assert complaints_col is not None

        status_filter: Any = {"$nin": _values(TERMINAL_STATUSES)}
        if expected_status is not None:
            status_filter = expected_status

        return await complaints_col.find_one_and_update(
            {
                "complaint_id": complaint_id,
                "assigned_staff_id": expected_staff_id,
                "status": status_filter,
            },
            {"$set": fields},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER
        )

    async def count_active_assignments(self, staff_id: str) -> int:
        self._require_connection()
        complaints_col = self.complaints_collection
        assert complaints_col is not None
        return await complaints_col.count_documents({
            "assigned_staff_id": staff_id,
            "status": {"$in": _values(ACTIVE_STATUSES)},
            "is_deleted": {"$ne": True},
        })

    async def count_completed_since(self, staff_id: str, since: datetime) -> int:
        self._require_connection()
        complaints_col = self.complaints_collection
        assert complaints_col is not None
        return await complaints_col.count_documents({
            "assigned_staff_id": staff_id,
            "status": {"$in": _values(COMPLETED_STATUSES)},
            "last_updated": {"$gte": since},
        })

    async def find_unstarted_assignments(self, staff_id: str, limit: int) -> List[Dict[str, Any]]:
        """Complaints assigned to the staff member that nobody has started, oldest assignment first"""
        self._require_connection()
        complaints_col = self.complaints_collection
        assert complaints_col is not None
        return await complaints_col.find(
            {
                "assigned_staff_id": staff_id,
                "status": ComplaintStatus.ASSIGNED.value,
                "is_deleted": {"$ne": True},
            },
            {"_id": 0}
        ).sort("assigned_at", ASCENDING).limit(limit).to_list(length=limit)

    # ==================== FIELD STAFF ====================

    async def get_staff(self, staff_id: str) -> Optional[Dict[str, Any]]:
        self._require_connection()
        staff_col = self.staff_collection
        assert staff_col is not None
        return await staff_col.find_one({"staff_id": staff_id}, {"_id": 0})

    async def list_staff(self, department: Optional[str] = None, active_only: bool = True) -> List[Dict[str, Any]]:
        self._require_connection()
        staff_col = self.staff_collection
        assert staff_col is not None

        query: Dict[str, Any] = {}
        if department:
            query["department"] = department
        if active_only:
            query["is_active"] = True
            query["is_on_leave"] = {"$ne": True}

        return await staff_col.find(query, {"_id": 0}).sort("registered_at", ASCENDING).to_list(length=None)

    async def touch_staff_last_assigned(self, staff_id: str, when: datetime) -> bool:
        self._require_connection()
        staff_col = self.staff_collection
        assert staff_col is not None
        result = await staff_col.update_one(
            {"staff_id": staff_id},
            {"$set": {"last_assigned_at": when}}
        )
        return result.matched_count > 0

    # ==================== AUDIT LOG ====================

    async def append_audit_entry(self, entry: Dict[str, Any]) -> str:
        self._require_connection()
        audit_col = self.audit_collection
        assert audit_col is not None
        await audit_col.insert_one(dict(entry))
        return entry["audit_id"]

    async def get_audit_trail(self, complaint_id: str) -> List[Dict[str, Any]]:
        self._require_connection()
        audit_col = self.audit_collection
        assert audit_col is not None
        return await audit_col.find(
            {"complaint_id": complaint_id},
            {"_id": 0}
        ).sort("timestamp", ASCENDING).to_list(length=None)

    async def count_audit_actions(self, actions: List[str]) -> Dict[str, int]:
        self._require_connection()
        audit_col = self.audit_collection
        assert audit_col is not None

        pipeline = [
            {"$match": {"action": {"$in": actions}}},
            {"$group": {"_id": "$action", "count": {"$sum": 1}}}
        ]
        stats = await audit_col.aggregate(pipeline).to_list(length=None)
        counts = {action: 0 for action in actions}
        counts.update({stat["_id"]: stat["count"] for stat in stats})
        return counts

