from datetime import datetime, timedelta

import pytest

from models.complaint_models import ComplaintCategory, Department, Priority, StaffCandidate, StaffMember
from services.assignment_selector import AssignmentSelector

NOW = datetime(2025, 3, 12, 10, 30)


def candidate(staff_id, active=0, experience=0, available=True, last_assigned_at=None,
              registered_at=datetime(2020, 1, 1)):
    staff = StaffMember(
        staff_id=staff_id,
        name=staff_id,
        department=Department.PUBLIC_WORKS,
        experience_years=experience,
        is_available=available,
        last_assigned_at=last_assigned_at,
        registered_at=registered_at,
    )
    return StaffCandidate(staff=staff, active_assignments=active)


@pytest.fixture()
def selector():
    return AssignmentSelector()


def test_lower_load_beats_experience(selector):
    pool = [candidate("A", active=2, experience=5), candidate("B", active=0, experience=1)]

    assert selector.select_best_staff(ComplaintCategory.ROAD_ISSUES, Priority.MEDIUM, pool, now=NOW) == "B"


def test_empty_pool_returns_none(selector):
    assert selector.select_best_staff(ComplaintCategory.ROAD_ISSUES, Priority.HIGH, [], now=NOW) is None



def test_pool_at_capacity_still_yields_staff(selector):
    pool = [candidate("A", active=10), candidate("B", active=12)]

    assert all(entry.active_assignments >= entry.staff.max_workload for entry in pool)
    assert selector.select_best_staff(ComplaintCategory.ROAD_ISSUES, Priority.URGENT, pool, now=NOW) == "A"

def test_unavailable_staff_penalised_not_excluded(selector):
    pool = [candidate("busy", active=0, available=False)]

    assert selector.select_best_staff(ComplaintCategory.DRAINAGE, Priority.LOW, pool, now=NOW) == "busy"
    assert selector.calculate_workload_score(pool[0], Priority.LOW, NOW) == pytest.approx(100.0)


def test_urgent_priority_weighs_load_more(selector):
    loaded = candidate("A", active=2)

    medium = selector.calculate_workload_score(loaded, Priority.MEDIUM, NOW)
    high = selector.calculate_workload_score(loaded, Priority.HIGH, NOW)
    urgent = selector.calculate_workload_score(loaded, Priority.URGENT, NOW)

    assert (medium, high, urgent) == (20.0, 26.0, 30.0)


def test_idle_days_lower_the_score(selector):
    rested = candidate("A", last_assigned_at=NOW - timedelta(days=4))
    never = candidate("B")

    assert selector.calculate_workload_score(rested, Priority.MEDIUM, NOW) == pytest.approx(-2.0)
    assert selector.calculate_workload_score(never, Priority.MEDIUM, NOW) == pytest.approx(0.0)


def test_score_is_not_clamped(selector):
    veteran = candidate("A", experience=12)

    assert selector.calculate_workload_score(veteran, Priority.MEDIUM, NOW) == pytest.approx(-24.0)


def test_ties_go_to_longest_registered_then_id(selector):
    pool = [
        candidate("C", registered_at=datetime(2021, 5, 1)),
        candidate("B", registered_at=datetime(2019, 5, 1)),
        candidate("A", registered_at=datetime(2019, 5, 1)),
    ]

    ranked = selector.rank_candidates(Priority.MEDIUM, pool, now=NOW)

    assert [item[0].staff.staff_id for item in ranked] == ["A", "B", "C"]


def test_selection_is_deterministic(selector):
    pool = [candidate(f"S{index}", active=index % 3, experience=index % 4) for index in range(9)]

    picks = {selector.select_best_staff(ComplaintCategory.OTHER, Priority.HIGH, list(reversed(pool)), now=NOW)
             for _ in range(5)}
    picks.add(selector.select_best_staff(ComplaintCategory.OTHER, Priority.HIGH, pool, now=NOW))

    assert len(picks) == 1
