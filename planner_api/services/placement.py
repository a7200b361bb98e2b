# planner_api/services/placement.py
"""
Assignment placement: the only engine component with write effects.

All operations run inside the caller's UnitOfWork. Each write takes the
per-slot lock (`AssignmentStore.lock_slots`) before it counts occupancy, so the
count-then-insert sequence cannot race another writer on the same slot.
Failures raise before any row is touched; the UnitOfWork rolls the rest back.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, date
from typing import Iterable, List, Optional
import logging

from planner_api.common.dates import business_days, parse_date
from planner_api.common.errors import (
    AbsenceConflict, EmployeeInactive, EngineError, EngineUnavailable,
    InvalidDate, InvalidRequest, NotFound,
)
from planner_api.models.absence import STATUS_APPROVED, STATUS_REJECTED
from planner_api.models.assignment import Assignment, SLOTS
from planner_api.services.absence_index import AbsenceIndex, DISPLAY_BLOCKING, PREVIEW_BLOCKING
from planner_api.services.slot_occupancy import SlotOccupancy, Occupancy, check_slot_value
from planner_api.services.store import AbsenceStore, AssignmentStore, Directory, UnitOfWork

log = logging.getLogger(__name__)

APPROVAL_REJECT = "reject"
APPROVAL_CANCEL = "cancel"
APPROVAL_POLICIES = (APPROVAL_REJECT, APPROVAL_CANCEL)


@dataclass(frozen=True)
class Placement:
    employee_id: int
    task_id: int
    date: date
    slot: str
    notes: Optional[str] = None

    @property
    def key(self):
        return (self.employee_id, self.date, self.slot)

    @classmethod
    def from_dict(cls, d: dict) -> "Placement":
        try:
            employee_id = int(d["employee_id"])
            task_id = int(d["task_id"])
        except (KeyError, TypeError, ValueError):
            raise InvalidRequest("employee_id and task_id are required integers")
        raw_day = d.get("date", d.get("assigned_date"))
        day = parse_date(raw_day)
        if day is None:
            raise InvalidDate(f"Invalid date '{raw_day}'", employee_id=employee_id)
        slot = d.get("slot")
        check_slot_value(slot)
        return cls(employee_id=employee_id, task_id=task_id, date=day, slot=slot, notes=d.get("notes"))


def _as_date(value, employee_id=None) -> date:
    d = parse_date(value)
    if d is None:
        raise InvalidDate(f"Invalid date '{value}'", employee_id=employee_id)
    return d


class AssignmentPlacement:

    def __init__(self, uow: UnitOfWork, pending_absence_blocks: bool = True):
        self.uow = uow
        session = uow.session
        self.assignments = AssignmentStore(session)
        self.directory = Directory(session)
        self.absence_store = AbsenceStore(session)
        self.blocking = PREVIEW_BLOCKING if pending_absence_blocks else DISPLAY_BLOCKING

    # ---------- helpers ----------
    def _occupancy(self, employee_ids: Iterable[int], start: date, end: date) -> SlotOccupancy:
        idx = AbsenceIndex.load(employee_ids, start, end, self.blocking, store=self.absence_store)
        if idx.degraded:
            raise EngineUnavailable("Absence data unavailable; placement refused")
        return SlotOccupancy(idx, store=self.assignments)

    def _employee(self, employee_id: int):
        emp = self.directory.get_employee(employee_id)
        if not emp:
            raise NotFound("Employee not found", employee_id=employee_id)
        if not emp.is_active:
            raise EmployeeInactive("Employee is deactivated", employee_id=employee_id)
        return emp

    def _task(self, task_id: int, employee_id: Optional[int] = None):
        task = self.directory.get_task(task_id)
        if not task or not task.is_active:
            raise NotFound("Task not found or inactive", employee_id=employee_id, task_id=task_id)
        return task

    # ---------- validation ----------
    def validate(self, employee_id: int, day, slot: str, task_id: Optional[int] = None) -> Occupancy:
        """ValidatePlacement: run every create check without writing."""
        d = _as_date(day, employee_id)
        self._employee(employee_id)
        if task_id is not None:
            self._task(task_id, employee_id)
        return self._occupancy([employee_id], d, d).check(employee_id, d, slot)

    def conflicts(self, employee_id: int, task_id: Optional[int], day, slot: str) -> List[EngineError]:
        """Every failing check for a prospective placement, not just the first."""
        out: List[EngineError] = []
        d = parse_date(day)
        try:
            self._employee(employee_id)
        except EngineError as e:
            out.append(e)
        if task_id is not None:
            try:
                self._task(task_id, employee_id)
            except EngineError as e:
                out.append(e)
        if d is None:
            out.append(InvalidDate(f"Invalid date '{day}'", employee_id=employee_id))
            return out
        try:
            self._occupancy([employee_id], d, d).check(employee_id, d, slot)
        except EngineError as e:
            out.append(e)
        return out

    # ---------- writes ----------
    def create(self, employee_id: int, task_id: int, day, slot: str, notes: Optional[str] = None) -> Assignment:
        self._employee(employee_id)
        self._task(task_id, employee_id)
        d = _as_date(day, employee_id)
        check_slot_value(slot)

        self.assignments.lock_slot(employee_id, d, slot)
        occ = self._occupancy([employee_id], d, d).check(employee_id, d, slot)

        a = Assignment(
            employee_id=employee_id,
            task_id=task_id,
            assigned_date=d,
            slot=slot,
            notes=notes,
            slot_order=occ.count,   # new tasks go to the right
            is_active=True,
        )
        self.assignments.add(a)
        log.info("[placement] created assignment %s emp=%s %s/%s order=%s",
                 a.id, employee_id, d.isoformat(), slot, a.slot_order)
        return a

    def move(self, assignment_id: int, new_employee_id: int, new_day, new_slot: str) -> Assignment:
        a = self.assignments.get_active(assignment_id)
        if not a:
            raise NotFound("Assignment not found", assignment_id=assignment_id)

        d = _as_date(new_day, new_employee_id)
        check_slot_value(new_slot)
        self._employee(new_employee_id)

        src = a.slot_key
        dst = (new_employee_id, d, new_slot)
        if src == dst:
            return a

        self.assignments.lock_slots([src, dst])
        occ = self._occupancy([new_employee_id], d, d).check(
            new_employee_id, d, new_slot, exclude_assignment_id=a.id)

        a.employee_id = new_employee_id
        a.assigned_date = d
        a.slot = new_slot
        a.slot_order = occ.count
        a.updated_at = datetime.utcnow()
        self.uow.flush()
        self.assignments.redensify(*src)

        log.info("[placement] moved assignment %s %s/%s/%s -> %s/%s/%s",
                 a.id, src[0], src[1].isoformat(), src[2], new_employee_id, d.isoformat(), new_slot)
        return a

    def bulk_create(self, placements: Iterable) -> List[Assignment]:
        """
        All-or-nothing batch creation.

        Items are validated in list order. Placements into the same slot are
        counted cumulatively; different slots never affect each other.
        Re-submitting a placement that already exists returns the existing
        assignment, and duplicates inside the batch collapse into one.
        """
        items: List[Placement] = []
        for i, raw in enumerate(placements):
            try:
                items.append(raw if isinstance(raw, Placement) else Placement.from_dict(raw))
            except EngineError as e:
                raise e.at_index(i)
        if not items:
            return []

        for i, p in enumerate(items):
            try:
                self._employee(p.employee_id)
                self._task(p.task_id, p.employee_id)
            except EngineError as e:
                raise e.at_index(i)

        self.assignments.lock_slots(p.key for p in items)
        occupancy = self._occupancy(
            {p.employee_id for p in items},
            min(p.date for p in items),
            max(p.date for p in items),
        )

        in_batch = Counter()
        planned = {}     # (employee, task, date, slot) -> Assignment
        results: List[Assignment] = []
        for i, p in enumerate(items):
            ident = (p.employee_id, p.task_id, p.date, p.slot)
            if ident in planned:
                results.append(planned[ident])
                continue
            existing = self.assignments.find_existing(*ident)
            if existing:
                planned[ident] = existing
                results.append(existing)
                continue
            try:
                occ = occupancy.check(p.employee_id, p.date, p.slot, pending=in_batch[p.key])
            except EngineError as e:
                log.info("[placement] bulk batch rejected at item %s: %s", i, e.message)
                raise e.at_index(i)
            a = Assignment(
                employee_id=p.employee_id,
                task_id=p.task_id,
                assigned_date=p.date,
                slot=p.slot,
                notes=p.notes,
                slot_order=occ.count + in_batch[p.key],
                is_active=True,
            )
            in_batch[p.key] += 1
            planned[ident] = a
            results.append(a)

        for a in {id(a): a for a in results if a.id is None}.values():
            self.assignments.session.add(a)
        self.uow.flush()
        log.info("[placement] bulk created %s assignments (%s items)", sum(in_batch.values()), len(items))
        return results

    def remove(self, assignment_id: int) -> Assignment:
        a = self.assignments.get_active(assignment_id)
        if not a:
            raise NotFound("Assignment not found", assignment_id=assignment_id)
        self.assignments.lock_slot(*a.slot_key)
        a.is_active = False
        a.updated_at = datetime.utcnow()
        self.uow.flush()
        self.assignments.redensify(*a.slot_key)
        log.info("[placement] removed assignment %s", a.id)
        return a

    # ---------- absence reconciliation ----------
    def approve_absence(self, record_id: int, policy: str = APPROVAL_REJECT,
                        approved_by_user_id: Optional[int] = None) -> dict:
        """
        Approve a pending absence without leaving assignments underneath it.

        policy 'reject': fail with AbsenceConflict if any active assignment
        occupies a covered slot. policy 'cancel': soft-delete those
        assignments in the same transaction.
        """
        if policy not in APPROVAL_POLICIES:
            raise InvalidRequest(f"Unknown approval policy '{policy}'")

        rec = self.absence_store.get(record_id)
        if not rec:
            raise NotFound("Absence record not found", absence_id=record_id)
        if rec.status == STATUS_APPROVED:
            return {"id": rec.id, "status": rec.status, "cancelled_assignment_ids": []}
        if rec.status == STATUS_REJECTED:
            raise InvalidRequest("Cannot approve a rejected absence", employee_id=rec.employee_id,
                                 absence_id=rec.id)

        slots = (rec.slot,) if rec.slot else SLOTS
        keys = [(rec.employee_id, d, s) for d in business_days(rec.start_date, rec.end_date) for s in slots]
        self.assignments.lock_slots(keys)

        occupied = [
            a for a in self.assignments.in_range(rec.start_date, rec.end_date, [rec.employee_id])
            if a.slot in slots
        ]
        if occupied and policy == APPROVAL_REJECT:
            first = min(occupied, key=lambda a: (a.assigned_date, SLOTS.index(a.slot)))
            raise AbsenceConflict(
                f"{len(occupied)} assignment(s) occupy the absence period",
                employee_id=rec.employee_id, day=first.assigned_date, slot=first.slot,
                assignment_ids=sorted(a.id for a in occupied),
            )

        cancelled = []
        for a in occupied:
            a.is_active = False
            a.updated_at = datetime.utcnow()
            cancelled.append(a.id)
        self.uow.flush()
        for key in sorted({a.slot_key for a in occupied}):
            self.assignments.redensify(*key)

        rec.status = STATUS_APPROVED
        rec.approved_at = datetime.utcnow()
        rec.approved_by_user_id = approved_by_user_id
        rec.updated_at = datetime.utcnow()
        self.uow.flush()
        log.info("[placement] absence %s approved (policy=%s, cancelled=%s)", rec.id, policy, cancelled)
        return {"id": rec.id, "status": rec.status, "cancelled_assignment_ids": sorted(cancelled)}
