# planner_api/services/calendar_view.py
"""
Role-scoped calendar view.

One request walks a fixed sequence of steps:

    ResolveScope -> ResolveDateRange -> FetchAssignments -> FetchAbsences
    -> Assemble -> Redact

An empty scope stops after the date range with an empty view. Redaction is
always the last step so the earlier steps work on complete data.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple
import logging

from sqlalchemy.exc import SQLAlchemyError

from planner_api.common.dates import business_days, month_business_bounds, next_business_day, parse_date, week_start
from planner_api.common.errors import EngineUnavailable, Forbidden, InvalidDate, InvalidRequest
from planner_api.models.assignment import Assignment, SLOTS
from planner_api.services.absence_index import AbsenceIndex, PREVIEW_BLOCKING
from planner_api.services.role_scope import RoleScope
from planner_api.services.slot_occupancy import MAX_TASKS_PER_SLOT
from planner_api.services.store import AbsenceStore, AssignmentStore, Directory

log = logging.getLogger(__name__)

DAILY = "daily"
WEEKLY = "weekly"
BIWEEKLY = "biweekly"
MONTHLY = "monthly"
GRANULARITIES = (DAILY, WEEKLY, BIWEEKLY, MONTHLY)


def resolve_date_range(anchor, granularity: str) -> Tuple[date, date]:
    d = parse_date(anchor)
    if d is None:
        raise InvalidDate(f"Invalid anchor date '{anchor}'")
    if granularity == DAILY:
        d = next_business_day(d)
        return d, d
    if granularity == WEEKLY:
        start = week_start(d)
        return start, start + timedelta(days=4)
    if granularity == BIWEEKLY:
        start = week_start(d)
        return start, start + timedelta(days=11)
    if granularity == MONTHLY:
        return month_business_bounds(d)
    raise InvalidRequest(f"Unknown granularity '{granularity}'")


def _task_row(a: Assignment) -> dict:
    task = a.task
    return {
        "assignment_id": a.id,
        "task_id": a.task_id,
        "title": task.title if task else None,
        "project_code": task.project_code if task else None,
        "task_type": task.task_type if task else None,
        "priority": task.priority if task else None,
        "status": task.status if task else None,
        "due_date": task.due_date.isoformat() if task and task.due_date else None,
        "notes": a.notes,
        "slot_order": a.slot_order,
    }


class CalendarViewBuilder:

    def __init__(self, directory: Optional[Directory] = None, assignments: Optional[AssignmentStore] = None,
                 absences: Optional[AbsenceStore] = None):
        self.directory = directory or Directory()
        self.assignments = assignments or AssignmentStore()
        self.absences = absences or AbsenceStore()

    def build(self, scope: RoleScope, anchor, granularity: str,
              employee_id: Optional[int] = None, team_id: Optional[int] = None) -> dict:
        try:
            employees = self._resolve_scope(scope, employee_id, team_id)
            start, end = resolve_date_range(anchor, granularity)
            days = list(business_days(start, end))
            view = {
                "granularity": granularity,
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "dates": [d.isoformat() for d in days],
                "employees": [],
            }
            if not employees:
                return view

            emp_ids = [e.id for e in employees]
            by_slot = self._fetch_assignments(start, end, emp_ids)
            index = self._fetch_absences(start, end, emp_ids)
            self._assemble(view, scope, employees, days, by_slot, index)
        except SQLAlchemyError as e:
            log.exception("[calendar] store failure while building view")
            raise EngineUnavailable("Scheduling store unavailable") from e

        return self._redact(view, scope)

    # ---------- steps ----------
    def _resolve_scope(self, scope: RoleScope, employee_id: Optional[int], team_id: Optional[int]):
        if scope.is_empty:
            return []

        if employee_id is not None:
            scope.require_visible(employee_id)
        if team_id is not None and not scope.is_admin:
            if scope.is_manager and team_id not in (scope.team_ids or ()):
                raise Forbidden("Team is outside the caller's scope", team_id=team_id)
            if scope.is_team_member:
                own = self.directory.get_employee(scope.caller_employee_id)
                if not own or own.team_id != team_id:
                    raise Forbidden("Team is outside the caller's scope", team_id=team_id)

        employee_ids = None if scope.is_admin else set(scope.employee_ids)
        if employee_id is not None:
            employee_ids = {employee_id}
        return self.directory.list_employees(
            team_ids=[team_id] if team_id is not None else None,
            employee_ids=employee_ids,
        )

    def _fetch_assignments(self, start: date, end: date, emp_ids: List[int]) -> Dict[tuple, List[Assignment]]:
        by_slot = defaultdict(list)
        # in_range already returns slot_order, created_at order
        for a in self.assignments.in_range(start, end, emp_ids):
            by_slot[a.slot_key].append(a)
        return by_slot

    def _fetch_absences(self, start: date, end: date, emp_ids: List[int]) -> AbsenceIndex:
        index = AbsenceIndex.load(emp_ids, start, end, PREVIEW_BLOCKING, store=self.absences)
        if index.degraded:
            raise EngineUnavailable("Absence data unavailable")
        return index

    def _assemble(self, view: dict, scope: RoleScope, employees, days, by_slot, index: AbsenceIndex):
        show_teams = scope.is_admin or scope.is_manager
        teams = {}
        for emp in employees:
            row = {
                "employee_id": emp.id,
                "name": emp.full_name,
                "position": emp.position,
                "days": [],
            }
            if show_teams and emp.team is not None:
                row["team"] = {"id": emp.team.id, "name": emp.team.name, "code": emp.team.code}
                teams[emp.team.id] = row["team"]

            for d in days:
                day = {"date": d.isoformat(), "slots": {}, "total_tasks": 0, "has_conflict": False}
                for slot in SLOTS:
                    rows = by_slot.get((emp.id, d, slot), [])
                    absence = index.absence_for(emp.id, d, slot)
                    count = len(rows)
                    cell = {
                        "tasks": [_task_row(a) for a in rows],
                        "count": count,
                        "available": max(MAX_TASKS_PER_SLOT - count, 0),
                        "is_overbooked": count > MAX_TASKS_PER_SLOT,
                        "absence": None,
                    }
                    if absence is not None:
                        cell["absence"] = {
                            "id": absence.id,
                            "type": absence.absence_type,
                            "status": absence.status,
                            "is_half_day": absence.is_half_day,
                        }
                    day["slots"][slot] = cell
                    day["total_tasks"] += count
                    if cell["is_overbooked"] or (absence is not None and count > 0):
                        day["has_conflict"] = True
                row["days"].append(day)
            view["employees"].append(row)

        if show_teams:
            view["teams"] = sorted(teams.values(), key=lambda t: (t["name"] or "", t["id"]))

    def _redact(self, view: dict, scope: RoleScope) -> dict:
        if not scope.is_team_member:
            return view
        view.pop("teams", None)
        for row in view["employees"]:
            row.pop("team", None)
            if row["employee_id"] == scope.caller_employee_id:
                continue
            for day in row["days"]:
                for cell in day["slots"].values():
                    for t in cell["tasks"]:
                        t.pop("notes", None)
        return view
