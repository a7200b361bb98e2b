# planner_api/services/availability.py
from __future__ import annotations

from collections import Counter
from datetime import date
from typing import Dict, Optional

from planner_api.common.dates import business_days, parse_date
from planner_api.common.errors import InvalidDate, InvalidRequest
from planner_api.models.assignment import SLOTS
from planner_api.services.absence_index import AbsenceIndex, DISPLAY_BLOCKING, PREVIEW_BLOCKING
from planner_api.services.slot_occupancy import MAX_TASKS_PER_SLOT
from planner_api.services.store import AbsenceStore, AssignmentStore

INTENT_CAN_PLACE_NEW = "can_place_new"   # could a new task go here?
INTENT_OCCUPIED = "occupied"             # is anything (task or absence) in this slot?
INTENTS = (INTENT_CAN_PLACE_NEW, INTENT_OCCUPIED)

DEFAULT_MAX_RANGE_DAYS = 366


def resolve_range(start, end, max_days: int = DEFAULT_MAX_RANGE_DAYS):
    """Parse and bound-check a [start, end] date range."""
    s, e = parse_date(start), parse_date(end)
    if s is None or e is None:
        raise InvalidDate(f"Invalid date range '{start}'..'{end}'")
    if e < s:
        raise InvalidDate("End date cannot be before start date", day=s)
    if (e - s).days + 1 > max_days:
        raise InvalidDate(f"Date range longer than {max_days} days", day=s)
    return s, e


class AvailabilityMatrix:
    """
    Date x slot boolean grid for one employee.

    Weekends are left out of the grid entirely. The caller names the intent;
    there is no default.
    """

    def __init__(self, pending_absence_blocks: bool = True, max_range_days: int = DEFAULT_MAX_RANGE_DAYS,
                 assignments: Optional[AssignmentStore] = None, absences: Optional[AbsenceStore] = None):
        self.blocking = PREVIEW_BLOCKING if pending_absence_blocks else DISPLAY_BLOCKING
        self.max_range_days = max_range_days
        self.assignments = assignments or AssignmentStore()
        self.absences = absences or AbsenceStore()

    def build(self, employee_id: int, start, end, intent: str) -> Dict[date, Dict[str, bool]]:
        if intent not in INTENTS:
            raise InvalidRequest(f"Unknown availability intent '{intent}'", employee_id=employee_id)
        s, e = resolve_range(start, end, self.max_range_days)

        index = AbsenceIndex.load([employee_id], s, e, self.blocking, store=self.absences)
        counts = Counter(a.slot_key for a in self.assignments.in_range(s, e, [employee_id]))

        grid: Dict[date, Dict[str, bool]] = {}
        for d in business_days(s, e):
            row = {}
            for slot in SLOTS:
                blocked = index.is_blocked(employee_id, d, slot)
                n = counts.get((employee_id, d, slot), 0)
                if intent == INTENT_CAN_PLACE_NEW:
                    row[slot] = not blocked and n < MAX_TASKS_PER_SLOT
                else:
                    row[slot] = blocked or n > 0
            grid[d] = row
        return grid


def as_json(grid: Dict[date, Dict[str, bool]]) -> Dict[str, Dict[str, bool]]:
    return {d.isoformat(): dict(slots) for d, slots in grid.items()}
