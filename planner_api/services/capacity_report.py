# planner_api/services/capacity_report.py
"""
Workload and utilization aggregation.

Every task counts as one equal-weight unit of a slot; an employee's daily
capacity is 2 slots x 4 tasks = 8 units. Pure reads, no validation beyond the
date range.
"""
from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional

from planner_api.common.dates import business_days, parse_date
from planner_api.common.errors import InvalidDate
from planner_api.models.assignment import Assignment, SLOTS
from planner_api.models.task import ProjectTask, TASK_DONE
from planner_api.services.absence_index import AbsenceIndex, DISPLAY_BLOCKING
from planner_api.services.availability import DEFAULT_MAX_RANGE_DAYS, resolve_range
from planner_api.services.role_scope import RoleScope
from planner_api.services.slot_occupancy import MAX_TASKS_PER_SLOT, MAX_UNITS_PER_DAY, check_slot_value
from planner_api.services.store import AbsenceStore, AssignmentStore, Directory


def _pct(used: int, capacity: int) -> float:
    if capacity <= 0:
        return 0.0
    return round(used * 100.0 / capacity, 2)


def assignment_row(a: Assignment) -> dict:
    task = a.task
    return {
        "assignment_id": a.id,
        "employee_id": a.employee_id,
        "task_id": a.task_id,
        "task_title": task.title if task else None,
        "project_code": task.project_code if task else None,
        "task_status": task.status if task else None,
        "due_date": task.due_date.isoformat() if task and task.due_date else None,
        "date": a.assigned_date.isoformat(),
        "slot": a.slot,
    }


class CapacityReport:

    def __init__(self, directory: Optional[Directory] = None, assignments: Optional[AssignmentStore] = None,
                 absences: Optional[AbsenceStore] = None, max_range_days: int = DEFAULT_MAX_RANGE_DAYS):
        self.directory = directory or Directory()
        self.assignments = assignments or AssignmentStore()
        self.absences = absences or AbsenceStore()
        self.max_range_days = max_range_days

    # ---------- scope ----------
    def _employees(self, scope: Optional[RoleScope]):
        if scope is None or scope.is_admin:
            return self.directory.list_employees()
        if scope.is_empty:
            return []
        return self.directory.list_employees(employee_ids=scope.employee_ids)

    def _counts(self, start: date, end: date, employee_ids) -> Counter:
        if not employee_ids:
            return Counter()
        return Counter(
            (a.employee_id, a.assigned_date)
            for a in self.assignments.in_range(start, end, employee_ids)
        )

    # ---------- aggregates ----------
    def daily_workload(self, start, end, scope: Optional[RoleScope] = None) -> Dict[int, Dict[date, int]]:
        """{employee_id: {business_date: assigned units}}, zero-filled."""
        s, e = resolve_range(start, end, self.max_range_days)
        emp_ids = [emp.id for emp in self._employees(scope)]
        counts = self._counts(s, e, emp_ids)
        days = list(business_days(s, e))
        return {eid: {d: counts.get((eid, d), 0) for d in days} for eid in emp_ids}

    def utilization(self, start, end, scope: Optional[RoleScope] = None) -> Dict[date, float]:
        """{business_date: percent of (employees in scope x 8) used}."""
        s, e = resolve_range(start, end, self.max_range_days)
        emp_ids = [emp.id for emp in self._employees(scope)]
        counts = self._counts(s, e, emp_ids)
        per_day = Counter()
        for (_, d), n in counts.items():
            per_day[d] += n
        capacity = len(emp_ids) * MAX_UNITS_PER_DAY
        return {d: _pct(per_day.get(d, 0), capacity) for d in business_days(s, e)}

    def employee_totals(self, start, end, scope: Optional[RoleScope] = None) -> List[dict]:
        s, e = resolve_range(start, end, self.max_range_days)
        employees = self._employees(scope)
        counts = self._counts(s, e, [emp.id for emp in employees])
        totals = Counter()
        for (eid, _), n in counts.items():
            totals[eid] += n
        n_days = sum(1 for _ in business_days(s, e))

        out = []
        for emp in employees:
            capacity = n_days * MAX_UNITS_PER_DAY
            out.append({
                "employee_id": emp.id,
                "name": emp.full_name,
                "team_id": emp.team_id,
                "assigned_units": totals.get(emp.id, 0),
                "capacity_units": capacity,
                "utilization": _pct(totals.get(emp.id, 0), capacity),
            })
        return out

    # ---------- per slot ----------
    def check_capacity(self, employee_id: int, day, slot: str) -> dict:
        d = parse_date(day)
        if d is None:
            raise InvalidDate(f"Invalid date '{day}'", employee_id=employee_id)
        check_slot_value(slot)
        rows = self.assignments.in_slot(employee_id, d, slot)
        index = AbsenceIndex.load([employee_id], d, d, DISPLAY_BLOCKING, store=self.absences)
        return self._capacity_row(employee_id, d, slot, rows, index)

    def capacity_for_range(self, employee_id: int, start, end) -> List[dict]:
        s, e = resolve_range(start, end, self.max_range_days)
        index = AbsenceIndex.load([employee_id], s, e, DISPLAY_BLOCKING, store=self.absences)
        by_slot = defaultdict(list)
        for a in self.assignments.in_range(s, e, [employee_id]):
            by_slot[(a.assigned_date, a.slot)].append(a)
        return [
            self._capacity_row(employee_id, d, slot, by_slot.get((d, slot), []), index)
            for d in business_days(s, e)
            for slot in SLOTS
        ]

    @staticmethod
    def _capacity_row(employee_id, d, slot, rows, index: AbsenceIndex) -> dict:
        count = len(rows)
        blocked = index.is_blocked(employee_id, d, slot)
        return {
            "employee_id": employee_id,
            "date": d.isoformat(),
            "slot": slot,
            "current_count": count,
            "max_capacity": MAX_TASKS_PER_SLOT,
            "available_capacity": max(MAX_TASKS_PER_SLOT - count, 0),
            "is_available": (not blocked) and count < MAX_TASKS_PER_SLOT and d.weekday() < 5,
            "is_overbooked": count > MAX_TASKS_PER_SLOT,
            "is_blocked": blocked,
            "existing_task_ids": [a.task_id for a in rows],
        }

    # ---------- deadlines ----------
    def _deadline_query(self, scope: Optional[RoleScope]):
        q = (
            self.assignments.active()
            .join(ProjectTask, ProjectTask.id == Assignment.task_id)
            .filter(ProjectTask.due_date.isnot(None))
            .filter(ProjectTask.status != TASK_DONE)
        )
        if scope is not None and not scope.is_admin:
            q = q.filter(Assignment.employee_id.in_(list(scope.employee_ids or ())))
        return q

    def overdue(self, scope: Optional[RoleScope] = None, today: Optional[date] = None) -> List[dict]:
        today = today or date.today()
        rows = (
            self._deadline_query(scope)
            .filter(ProjectTask.due_date < today)
            .order_by(ProjectTask.due_date.asc(), Assignment.assigned_date.asc(), Assignment.id.asc())
            .all()
        )
        return [assignment_row(a) for a in rows]

    def upcoming_deadlines(self, scope: Optional[RoleScope] = None, today: Optional[date] = None,
                           days: int = 7) -> List[dict]:
        today = today or date.today()
        rows = (
            self._deadline_query(scope)
            .filter(ProjectTask.due_date >= today, ProjectTask.due_date <= today + timedelta(days=days))
            .order_by(ProjectTask.due_date.asc(), Assignment.assigned_date.asc(), Assignment.id.asc())
            .all()
        )
        return [assignment_row(a) for a in rows]
