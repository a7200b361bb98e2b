# planner_api/services/absence_index.py
from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Iterable, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError

from planner_api.common.dates import business_days
from planner_api.common.errors import InsufficientAllocation, InvalidDate, InvalidRequest
from planner_api.models.absence import (
    AbsenceRecord, STATUS_APPROVED, STATUS_PENDING, TYPE_ANNUAL_LEAVE, ABSENCE_TYPES,
    DEFAULT_ANNUAL_LEAVE_DAYS,
)
from planner_api.models.assignment import SLOTS
from planner_api.services.store import AbsenceStore

log = logging.getLogger(__name__)

# what counts as blocking depends on the query
DISPLAY_BLOCKING = (STATUS_APPROVED,)
PREVIEW_BLOCKING = (STATUS_APPROVED, STATUS_PENDING)


class AbsenceIndex:
    """
    Read-only answer to "is employee E blocked on date D, slot S?".

    A degraded index (absence data could not be read) reports every slot as
    blocked so nothing gets overbooked on top of an unknown absence.
    """

    def __init__(self, records: Iterable[AbsenceRecord] = (), blocking_statuses=DISPLAY_BLOCKING,
                 degraded: bool = False):
        self.blocking_statuses = tuple(blocking_statuses)
        self.degraded = degraded
        self._by_employee = defaultdict(list)
        for r in records:
            if r.status in self.blocking_statuses:
                self._by_employee[r.employee_id].append(r)

    @classmethod
    def load(cls, employee_ids: Optional[Iterable[int]], start: date, end: date,
             blocking_statuses=DISPLAY_BLOCKING, store: Optional[AbsenceStore] = None) -> "AbsenceIndex":
        store = store or AbsenceStore()
        try:
            records = store.list_absences(employee_ids, start, end, statuses=blocking_statuses)
        except SQLAlchemyError:
            log.warning("[absence] absence data unavailable for %s..%s; failing closed", start, end, exc_info=True)
            return cls(blocking_statuses=blocking_statuses, degraded=True)
        return cls(records, blocking_statuses=blocking_statuses)

    def absence_for(self, employee_id: int, d: date, slot: str) -> Optional[AbsenceRecord]:
        # approved wins over pending when both cover the slot
        hits = [r for r in self._by_employee.get(employee_id, ()) if r.covers(d, slot)]
        if not hits:
            return None
        hits.sort(key=lambda r: (r.status != STATUS_APPROVED, r.id or 0))
        return hits[0]

    def is_blocked(self, employee_id: int, d: date, slot: str) -> bool:
        if self.degraded:
            return True
        return self.absence_for(employee_id, d, slot) is not None

    def blocked_slots(self, employee_id: int, d: date) -> set:
        return {s for s in SLOTS if self.is_blocked(employee_id, d, s)}


def absence_days(start: date, end: date, slot: Optional[str]) -> float:
    """Business days requested; a half-day record counts 0.5."""
    if slot is not None:
        return 0.5 if start == end and start.weekday() < 5 else 0.0
    return float(sum(1 for _ in business_days(start, end)))


def validate_absence_shape(start: date, end: date, slot: Optional[str], absence_type: str):
    if absence_type not in ABSENCE_TYPES:
        raise InvalidRequest(f"Unknown absence type '{absence_type}'")
    if start is None or end is None:
        raise InvalidDate("start_date and end_date are required")
    if start > end:
        raise InvalidDate("Start date cannot be after end date", day=start)
    if slot is not None:
        if slot not in SLOTS:
            raise InvalidRequest(f"Unknown slot '{slot}'", slot=slot)
        if start != end:
            raise InvalidDate("Half-day absence must cover a single date", day=start, slot=slot)


def check_allocation(employee_id: int, absence_type: str, start: date, end: date,
                     slot: Optional[str] = None, store: Optional[AbsenceStore] = None) -> dict:
    """
    Would a new absence request fit into the employee's allocation?

    Only annual leave is balance-limited. Approved and pending annual leave in
    the same year both count as used. Requests spanning a year boundary are
    checked against the start year's allocation. No allocation row for
    that year means the default allowance.
    """
    validate_absence_shape(start, end, slot, absence_type)
    requested = absence_days(start, end, slot)
    if absence_type != TYPE_ANNUAL_LEAVE:
        return {"employee_id": employee_id, "requested_days": requested, "limited": False}

    store = store or AbsenceStore()
    year = start.year
    alloc = store.allocation_for(employee_id, year)
    allowed = float(alloc.annual_leave_days) if alloc else float(DEFAULT_ANNUAL_LEAVE_DAYS)

    year_start, year_end = date(year, 1, 1), date(year, 12, 31)
    used = 0.0
    for r in store.list_absences([employee_id], year_start, year_end, statuses=PREVIEW_BLOCKING):
        if r.absence_type != TYPE_ANNUAL_LEAVE:
            continue
        used += absence_days(max(r.start_date, year_start), min(r.end_date, year_end), r.slot)

    remaining = allowed - used
    if requested > remaining:
        raise InsufficientAllocation(
            f"Insufficient annual leave. Remaining: {remaining:g}, requested: {requested:g}",
            employee_id=employee_id, day=start, slot=slot,
            remaining_days=remaining, requested_days=requested,
        )
    return {
        "employee_id": employee_id,
        "year": year,
        "allowed_days": allowed,
        "used_days": used,
        "requested_days": requested,
        "remaining_after": remaining - requested,
        "limited": True,
    }
