# data/data_generator.py
"""
UrbanEye Synthetic Data Generator - MongoDB Only

Seeds field staff for every department and a backlog of citizen
complaints, some pending and some already assigned, so the automation
engine has something to classify, assign and rebalance.
"""
import json
import random
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

import faker
import pymongo
from pymongo.errors import PyMongoError

# Initialize Faker for realistic data generation
fake = faker.Faker()


def generate_phone_number() -> str:
    """
    Generate phone number in strict format: +19966118088
    """
    phone_digits = ''.join([str(random.randint(0, 9)) for _ in range(10)])
    return f"+1{phone_digits}"


# =============================================================================
# DATA MODELS AND ENUMS
# =============================================================================

class Department(Enum):
    SANITATION = "sanitation"
    WATER_SUPPLY = "water_supply"
    ELECTRICITY = "electricity"
    PUBLIC_WORKS = "public_works"


JOB_ROLES = {
    Department.SANITATION: ["Sanitation Worker", "Waste Collection Supervisor"],
    Department.WATER_SUPPLY: ["Plumber", "Water Line Technician"],
    Department.ELECTRICITY: ["Electrician", "Lighting Technician"],
    Department.PUBLIC_WORKS: ["Road Maintenance Crew", "Parks Maintenance Worker", "Field Inspector"],
}


@dataclass
class StaffProfile:
    staff_id: str
    name: str
    email: str
    phone: str
    department: str
    job_role: str
    experience_years: int
    max_workload: int
    is_active: bool = True
    is_available: bool = True
    is_on_leave: bool = False
    last_assigned_at: Optional[datetime] = None
    registered_at: datetime = field(default_factory=datetime.now)


@dataclass
class ComplaintSeed:
    complaint_id: str
    title: str
    description: str
    status: str
    created_at: datetime
    last_updated: datetime
    images: List[Dict[str, str]] = field(default_factory=list)
    category: str = "other"
    priority: str = "medium"
    assigned_staff_id: Optional[str] = None
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[str] = None
    is_deleted: bool = False


# Category -> (titles, descriptions) written the way citizens report things
COMPLAINT_TEMPLATES: Dict[str, Dict[str, List[str]]] = {
    "road_issues": {
        "titles": ["Large pothole on {street}", "Road damage near {street}", "Cracked pavement on {street}"],
        "descriptions": [
            "There is a deep pothole on {street} and the asphalt around it keeps breaking.",
            "The road surface near {street} has serious cracks, cars swerve to avoid them.",
        ],
    },
    "waste_management": {
        "titles": ["Garbage not collected on {street}", "Overflowing trash bin at {street}"],
        "descriptions": [
            "Garbage has not been collected for a week and the waste bin is overflowing.",
            "Litter and trash are piling up next to the container on {street}.",
        ],
    },
    "water_supply": {
        "titles": ["Water pipe burst on {street}", "Low water pressure around {street}"],
        "descriptions": [
            "A water pipe burst causing flooding near {street}.",
            "Water leak from the main line, water pressure has been low for days.",
        ],
    },
    "electricity": {
        "titles": ["Power outage on {street}", "Exposed electrical wire at {street}"],
        "descriptions": [
            "Power outage since last night, the transformer on {street} is making noise.",
            "An electrical cable is hanging low near {street}, looks like an electrical hazard.",
        ],
    },
    "street_lighting": {
        "titles": ["Street light not working on {street}", "Broken lamp post at {street}"],
        "descriptions": [
            "The street light on {street} has been dark for two weeks, the bulb seems broken.",
            "Lamp post lighting is flickering and the area is dark at night.",
        ],
    },
    "drainage": {
        "titles": ["Blocked drain on {street}", "Drain overflow near {street}"],
        "descriptions": [
            "The drain is blocked and there is overflow every time it rains.",
            "Blocked drain causing water logging near {street}.",
        ],
    },
    "parks_recreation": {
        "titles": ["Broken playground equipment in {park}", "Damaged bench in {park}"],
        "descriptions": [
            "Playground equipment in the park is broken, children could get hurt.",
            "Several benches in the park garden are damaged.",
        ],
    },
    "noise_pollution": {
        "titles": ["Loud construction noise on {street}"],
        "descriptions": ["Construction noise starts at 5am every day, the loud disturbance never stops."],
    },
    "other": {
        "titles": ["General concern about {street}"],
        "descriptions": ["Please have someone look at {street}, residents are unhappy."],
    },
}


class SyntheticDataGenerator:
    """
    Main class for generating synthetic field staff and complaint data.
    """

    def __init__(self, mongo_connection_string: str = "mongodb://localhost:27017/",
                 database_name: str = "urbaneye"):
        self.mongo_client = pymongo.MongoClient(mongo_connection_string)
        self.mongo_db = self.mongo_client[database_name]
        self.complaints_collection = self.mongo_db['complaints']
        self.staff_collection = self.mongo_db['field_staff']

    # =========================================================================
    # DATABASE VALIDATION METHODS
    # =========================================================================

    def _staff_exists_mongodb(self, staff_id: str) -> bool:
        return self.staff_collection.count_documents({"staff_id": staff_id}) > 0

    def _complaint_exists_mongodb(self, complaint_id: str) -> bool:
        return self.complaints_collection.count_documents({"complaint_id": complaint_id}) > 0

    # =========================================================================
    # DATA GENERATION METHODS
    # =========================================================================

    def generate_staff_profile(self, department: Department) -> StaffProfile:
        registered_at = datetime.combine(fake.date_between(start_date='-8y', end_date='-30d'), datetime.min.time())
        last_assigned = None
        if random.random() < 0.7:
            last_assigned = datetime.now() - timedelta(days=random.randint(0, 20), hours=random.randint(0, 23))

        return StaffProfile(
            staff_id=f"FS-{uuid.uuid4().hex[:8].upper()}",
            name=fake.name(),
            email=fake.email(),
            phone=generate_phone_number(),
            department=department.value,
            job_role=random.choice(JOB_ROLES[department]),
            experience_years=random.randint(0, 15),
            max_workload=random.choice([8, 10, 10, 12]),
            is_available=random.random() > 0.1,
            is_on_leave=random.random() < 0.05,
            last_assigned_at=last_assigned,
            registered_at=registered_at,
        )

    def generate_complaint(self, category: str) -> ComplaintSeed:
        template = COMPLAINT_TEMPLATES[category]
        placeholders = {"street": fake.street_name(), "park": f"{fake.last_name()} Park"}
        created_at = datetime.now() - timedelta(hours=random.randint(1, 24 * 14))

        images = []
        if random.random() < 0.3:
            images.append({"filename": f"{uuid.uuid4().hex}.jpg", "content_type": "image/jpeg"})

        return ComplaintSeed(
            complaint_id=f"CMP-{uuid.uuid4().hex[:10].upper()}",
            title=random.choice(template["titles"]).format(**placeholders),
            description=random.choice(template["descriptions"]).format(**placeholders),
            status="pending",
            created_at=created_at,
            last_updated=created_at,
            images=images,
        )

    def generate_synthetic_dataset(self, staff_per_department: int = 4,
                                   total_complaints: int = 60,
                                   assigned_share: float = 0.4) -> Dict[str, List]:
        """
        Generate staff for each department and a complaint backlog.

        A share of the complaints is pre-assigned (skewed towards the first
        staff member of each department) so rebalancing has work to move.
        """
        staff: List[StaffProfile] = []
        for department in Department:
            for _ in range(staff_per_department):
                staff.append(self.generate_staff_profile(department))

        category_department = {
            "road_issues": Department.PUBLIC_WORKS,
            "waste_management": Department.SANITATION,
            "water_supply": Department.WATER_SUPPLY,
            "electricity": Department.ELECTRICITY,
            "street_lighting": Department.ELECTRICITY,
            "drainage": Department.PUBLIC_WORKS,
            "parks_recreation": Department.PUBLIC_WORKS,
            "noise_pollution": Department.PUBLIC_WORKS,
            "other": Department.PUBLIC_WORKS,
        }

        complaints: List[ComplaintSeed] = []
        for _ in range(total_complaints):
            category = random.choice(list(COMPLAINT_TEMPLATES))
            complaint = self.generate_complaint(category)

            if random.random() < assigned_share:
                department = category_department[category].value
                team = [member for member in staff if member.department == department and not member.is_on_leave]
                if team:
                    # Overload the first team member on purpose
                    assignee = team[0] if random.random() < 0.6 else random.choice(team)
                    complaint.category = category
                    complaint.status = random.choice(["assigned", "assigned", "in_progress"])
                    complaint.assigned_staff_id = assignee.staff_id
                    complaint.assigned_at = complaint.created_at + timedelta(minutes=30)
                    complaint.assigned_by = "system"

            complaints.append(complaint)

        return {"staff": staff, "complaints": complaints}

    # =========================================================================
    # DATABASE PERSISTENCE METHODS
    # =========================================================================

    def save_to_mongodb(self, dataset: Dict[str, List]):
        """
        Save generated data to MongoDB, skipping records that already exist.
        """
        new_staff = [asdict(member) for member in dataset["staff"]
                     if not self._staff_exists_mongodb(member.staff_id)]
        if new_staff:
            self.staff_collection.insert_many(new_staff)

        new_complaints = [asdict(complaint) for complaint in dataset["complaints"]
                          if not self._complaint_exists_mongodb(complaint.complaint_id)]
        if new_complaints:
            self.complaints_collection.insert_many(new_complaints)

        print(f"✓ MongoDB: Saved {len(new_staff)} field staff, {len(new_complaints)} complaints")

    # =========================================================================
    # PUBLIC API METHODS
    # =========================================================================

    def generate_and_save_dataset(self, staff_per_department: int = 4,
                                  total_complaints: int = 60) -> Dict[str, List]:
        print(f"🚀 Generating synthetic dataset with {total_complaints} complaints...")
        dataset = self.generate_synthetic_dataset(staff_per_department, total_complaints)

        try:
            self.save_to_mongodb(dataset)
        except PyMongoError as e:
            print(f"❌ MongoDB save failed: {e}")

        print("✨ Dataset generation complete!")
        return dataset


if __name__ == "__main__":
    generator = SyntheticDataGenerator(mongo_connection_string="mongodb://localhost:27017/")
    dataset = generator.generate_and_save_dataset(staff_per_department=4, total_complaints=80)

    print("\n" + "="*50)
    print("SAMPLE GENERATED DATA")
    print("="*50)

    print("\n👷 Sample Field Staff:")
    print(json.dumps(asdict(dataset["staff"][0]), indent=2, default=str))

    print("\n🎫 Sample Complaint:")
    print(json.dumps(asdict(dataset["complaints"][0]), indent=2, default=str))

    pending = sum(1 for c in dataset["complaints"] if c.status == "pending")
    print(f"\n📊 Dataset Statistics:")
    print(f"   • Total Field Staff: {len(dataset['staff'])}")
    print(f"   • Total Complaints: {len(dataset['complaints'])}")
    print(f"   • Pending Complaints: {pending}")
