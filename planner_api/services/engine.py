# planner_api/services/engine.py
"""
Caller-facing entry point of the scheduling engine.

Every public method returns a `Result`. Engine errors, store failures and
malformed input are converted here and never propagate to the caller.
Writes run in their own `UnitOfWork`.

The caller is identified by a `RoleScope`, a `CallerContext`, or a scope token
(JWT string). Reads need the target employee to be visible; writes need
`can_modify`.
"""
from __future__ import annotations

from datetime import date
from typing import Any, Callable, List, Optional
import logging

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from planner_api.common.dates import parse_date
from planner_api.common.errors import (
    EngineError, EngineUnavailable, Forbidden, InvalidDate, InvalidRequest, NotFound,
)
from planner_api.common.result import Result
from planner_api.extensions import db
from planner_api.models.assignment import Assignment
from planner_api.services.absence_index import check_allocation
from planner_api.services.availability import AvailabilityMatrix, as_json
from planner_api.services.calendar_view import CalendarViewBuilder, WEEKLY
from planner_api.services.capacity_report import CapacityReport
from planner_api.services.placement import AssignmentPlacement, Placement
from planner_api.services.role_scope import CallerContext, RoleScope, resolve_scope, scope_from_token
from planner_api.services.store import AbsenceStore, AssignmentStore, UnitOfWork

log = logging.getLogger(__name__)


def _row(a: Assignment) -> dict:
    return {
        "id": a.id,
        "employee_id": a.employee_id,
        "task_id": a.task_id,
        "date": a.assigned_date.isoformat(),
        "slot": a.slot,
        "slot_order": a.slot_order,
        "notes": a.notes,
        "is_active": bool(a.is_active),
    }


def _iso_keys(d: dict) -> dict:
    return {k.isoformat() if isinstance(k, date) else k: v for k, v in d.items()}


class SchedulingEngine:

    def __init__(self, config: Optional[dict] = None):
        cfg = config if config is not None else current_app.config
        self.pending_absence_blocks = bool(cfg.get("PLANNER_PENDING_ABSENCE_BLOCKS", True))
        self.approval_policy = cfg.get("PLANNER_ABSENCE_APPROVAL_POLICY", "reject")
        self.max_range_days = int(cfg.get("PLANNER_MAX_RANGE_DAYS", 366))

    # ---------- plumbing ----------
    def _run(self, op: str, fn: Callable[[], Any]) -> Result:
        try:
            return Result.success(fn())
        except EngineError as e:
            log.info("[engine] %s failed: %s %s", op, e.kind, e.message)
            return Result.failure(e)
        except SQLAlchemyError:
            log.exception("[engine] %s: store failure", op)
            db.session.rollback()
            return Result.failure(EngineUnavailable("Scheduling store unavailable"))
        except (TypeError, ValueError) as e:
            # malformed caller input that slipped past the explicit checks
            log.warning("[engine] %s: bad input: %s", op, e, exc_info=True)
            return Result.failure(InvalidRequest(f"Invalid input: {e}"))

    @staticmethod
    def _scope(caller) -> RoleScope:
        if isinstance(caller, RoleScope):
            return caller
        if isinstance(caller, CallerContext):
            return resolve_scope(caller)
        if isinstance(caller, str) and caller:
            return scope_from_token(caller)
        raise Forbidden("Missing caller scope")

    def _reader(self) -> AssignmentPlacement:
        # validation only; no transaction is opened or committed
        return AssignmentPlacement(UnitOfWork(), pending_absence_blocks=self.pending_absence_blocks)

    def _write(self, fn: Callable[[AssignmentPlacement], Any]):
        with UnitOfWork() as uow:
            return fn(AssignmentPlacement(uow, pending_absence_blocks=self.pending_absence_blocks))

    # ---------- reads ----------
    def get_calendar_view(self, caller, anchor, granularity: str = WEEKLY,
                          employee_id: Optional[int] = None, team_id: Optional[int] = None) -> Result:
        def op():
            scope = self._scope(caller)
            return CalendarViewBuilder().build(scope, anchor, granularity, employee_id=employee_id, team_id=team_id)
        return self._run("get_calendar_view", op)

    def validate_placement(self, caller, employee_id: int, day, slot: str, task_id: Optional[int] = None) -> Result:
        def op():
            self._scope(caller).require_modify(employee_id)
            occ = self._reader().validate(employee_id, day, slot, task_id=task_id)
            return {"ok": True, "occupancy": occ.as_dict()}
        return self._run("validate_placement", op)

    def placement_conflicts(self, caller, employee_id: int, task_id: Optional[int], day, slot: str) -> Result:
        def op():
            self._scope(caller).require_visible(employee_id)
            errors = self._reader().conflicts(employee_id, task_id, day, slot)
            return {"has_conflicts": bool(errors), "conflicts": [e.to_dict() for e in errors]}
        return self._run("placement_conflicts", op)

    def get_availability_matrix(self, caller, employee_id: int, start, end, intent: str) -> Result:
        def op():
            self._scope(caller).require_visible(employee_id)
            matrix = AvailabilityMatrix(self.pending_absence_blocks, self.max_range_days)
            return as_json(matrix.build(employee_id, start, end, intent))
        return self._run("get_availability_matrix", op)

    def get_capacity_report(self, caller, start, end) -> Result:
        def op():
            scope = self._scope(caller)
            report = CapacityReport(max_range_days=self.max_range_days)
            workload = report.daily_workload(start, end, scope)
            return {
                "daily_workload": {eid: _iso_keys(days) for eid, days in workload.items()},
                "utilization": _iso_keys(report.utilization(start, end, scope)),
                "employees": report.employee_totals(start, end, scope),
            }
        return self._run("get_capacity_report", op)

    def check_capacity(self, caller, employee_id: int, day, slot: str) -> Result:
        def op():
            self._scope(caller).require_visible(employee_id)
            return CapacityReport(max_range_days=self.max_range_days).check_capacity(employee_id, day, slot)
        return self._run("check_capacity", op)

    def get_deadlines(self, caller, today=None, days: int = 7) -> Result:
        def op():
            scope = self._scope(caller)
            report = CapacityReport(max_range_days=self.max_range_days)
            t = parse_date(today) if today is not None else date.today()
            if t is None:
                raise InvalidDate(f"Invalid date '{today}'")
            try:
                window = int(days)
            except (TypeError, ValueError):
                raise InvalidRequest(f"days must be an integer, got '{days}'")
            if window < 0:
                raise InvalidRequest("days cannot be negative")
            return {
                "overdue": report.overdue(scope, t),
                "upcoming": report.upcoming_deadlines(scope, t, days=window),
            }
        return self._run("get_deadlines", op)

    def validate_absence_request(self, caller, employee_id: int, absence_type: str, start, end,
                                 slot: Optional[str] = None) -> Result:
        def op():
            self._scope(caller).require_visible(employee_id)
            s, e = parse_date(start), parse_date(end)
            if s is None or e is None:
                raise InvalidDate(f"Invalid absence dates '{start}'..'{end}'", employee_id=employee_id)
            return check_allocation(employee_id, absence_type, s, e, slot)
        return self._run("validate_absence_request", op)

    # ---------- writes ----------
    def create_assignment(self, caller, employee_id: int, task_id: int, day, slot: str,
                          notes: Optional[str] = None) -> Result:
        def op():
            self._scope(caller).require_modify(employee_id)
            return self._write(lambda p: _row(p.create(employee_id, task_id, day, slot, notes=notes)))
        return self._run("create_assignment", op)

    def move_assignment(self, caller, assignment_id: int, new_employee_id: int, new_day, new_slot: str) -> Result:
        def op():
            scope = self._scope(caller)
            current = AssignmentStore().get_active(assignment_id)
            if current is None:
                raise NotFound("Assignment not found", assignment_id=assignment_id)
            scope.require_modify(current.employee_id)
            scope.require_modify(new_employee_id)
            return self._write(lambda p: _row(p.move(assignment_id, new_employee_id, new_day, new_slot)))
        return self._run("move_assignment", op)

    def bulk_create(self, caller, placements: list) -> Result:
        def op():
            scope = self._scope(caller)
            if not isinstance(placements, (list, tuple)):
                raise InvalidRequest("placements must be a list")
            items: List[Placement] = []
            for i, raw in enumerate(placements):
                try:
                    p = raw if isinstance(raw, Placement) else Placement.from_dict(raw)
                    scope.require_modify(p.employee_id)
                except EngineError as e:
                    raise e.at_index(i)
                items.append(p)
            created = self._write(lambda pl: [_row(a) for a in pl.bulk_create(items)])
            return {"count": len(created), "items": created}
        return self._run("bulk_create", op)

    def remove_assignment(self, caller, assignment_id: int) -> Result:
        def op():
            scope = self._scope(caller)
            current = AssignmentStore().get_active(assignment_id)
            if current is None:
                raise NotFound("Assignment not found", assignment_id=assignment_id)
            scope.require_modify(current.employee_id)
            return self._write(lambda p: _row(p.remove(assignment_id)))
        return self._run("remove_assignment", op)

    def approve_absence(self, caller, record_id: int, policy: Optional[str] = None) -> Result:
        def op():
            scope = self._scope(caller)
            rec = AbsenceStore().get(record_id)
            if rec is None:
                raise NotFound("Absence record not found", absence_id=record_id)
            scope.require_modify(rec.employee_id)
            return self._write(lambda p: p.approve_absence(
                record_id, policy or self.approval_policy, approved_by_user_id=scope.user_id))
        return self._run("approve_absence", op)
