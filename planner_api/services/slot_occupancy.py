# planner_api/services/slot_occupancy.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from planner_api.common.dates import is_business_day
from planner_api.common.errors import AbsenceConflict, CapacityExceeded, InvalidDate, InvalidRequest
from planner_api.models.assignment import SLOTS
from planner_api.services.absence_index import AbsenceIndex
from planner_api.services.store import AssignmentStore

# product rule: at most four tasks share one half-day slot
MAX_TASKS_PER_SLOT = 4
SLOTS_PER_DAY = len(SLOTS)
MAX_UNITS_PER_DAY = SLOTS_PER_DAY * MAX_TASKS_PER_SLOT


@dataclass
class Occupancy:
    employee_id: int
    date: date
    slot: str
    count: int = 0
    task_ids: List[int] = field(default_factory=list)
    assignment_ids: List[int] = field(default_factory=list)

    @property
    def available(self) -> int:
        return max(MAX_TASKS_PER_SLOT - self.count, 0)

    def as_dict(self) -> dict:
        return {
            "employee_id": self.employee_id,
            "date": self.date.isoformat(),
            "slot": self.slot,
            "count": self.count,
            "task_ids": list(self.task_ids),
            "assignment_ids": list(self.assignment_ids),
        }


def check_slot_value(slot: str):
    if slot not in SLOTS:
        raise InvalidRequest(f"Unknown slot '{slot}'", slot=slot)


class SlotOccupancy:
    """Occupancy reads and the cap/absence acceptance rule for one slot."""

    def __init__(self, absences: AbsenceIndex, store: Optional[AssignmentStore] = None):
        self.absences = absences
        self.store = store or AssignmentStore()

    def occupancy(self, employee_id: int, d: date, slot: str,
                  exclude_assignment_id: Optional[int] = None) -> Occupancy:
        rows = self.store.in_slot(employee_id, d, slot)
        if exclude_assignment_id is not None:
            rows = [a for a in rows if a.id != exclude_assignment_id]
        return Occupancy(
            employee_id=employee_id, date=d, slot=slot, count=len(rows),
            task_ids=[a.task_id for a in rows],
            assignment_ids=[a.id for a in rows],
        )

    def can_accept(self, employee_id: int, d: date, slot: str,
                   exclude_assignment_id: Optional[int] = None, pending: int = 0) -> bool:
        if not is_business_day(d):
            return False
        if self.absences.is_blocked(employee_id, d, slot):
            return False
        occ = self.occupancy(employee_id, d, slot, exclude_assignment_id)
        return occ.count + pending < MAX_TASKS_PER_SLOT

    def check(self, employee_id: int, d: date, slot: str,
              exclude_assignment_id: Optional[int] = None, pending: int = 0) -> Occupancy:
        """Same rule as can_accept, but raises the specific reason."""
        check_slot_value(slot)
        if not is_business_day(d):
            raise InvalidDate("Cannot schedule on a weekend", employee_id=employee_id, day=d, slot=slot)
        if self.absences.is_blocked(employee_id, d, slot):
            raise AbsenceConflict("Slot is blocked by an absence", employee_id=employee_id, day=d, slot=slot)
        occ = self.occupancy(employee_id, d, slot, exclude_assignment_id)
        if occ.count + pending >= MAX_TASKS_PER_SLOT:
            raise CapacityExceeded(
                f"Slot already holds {occ.count + pending} of {MAX_TASKS_PER_SLOT} tasks",
                employee_id=employee_id, day=d, slot=slot,
                count=occ.count + pending, max_capacity=MAX_TASKS_PER_SLOT,
            )
        return occ
