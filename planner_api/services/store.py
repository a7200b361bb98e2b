# planner_api/services/store.py
"""
Repository layer over the relational store.

Every engine component reads through these accessors so the soft-delete rule
(`Assignment.is_active`) lives in exactly one place: `AssignmentStore.active()`.
Writes go through a `UnitOfWork` handed in by the caller.
"""
from __future__ import annotations

from datetime import date
from typing import Iterable, List, Optional
import logging

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from planner_api.common.errors import EngineUnavailable
from planner_api.extensions import db
from planner_api.models.absence import AbsenceRecord, AbsenceAllocation
from planner_api.models.assignment import Assignment, SlotLock
from planner_api.models.employee import Employee, Team
from planner_api.models.task import ProjectTask
from planner_api.models.user import User, TeamManager

log = logging.getLogger(__name__)


class UnitOfWork:
    """
    Explicit transaction handle for write operations.

        with UnitOfWork() as uow:
            placement = AssignmentPlacement(uow)
            placement.create(...)

    Commits when the block exits cleanly, rolls back on any exception
    (including KeyboardInterrupt / cancellation). Store errors surface as
    `EngineUnavailable`.
    """

    def __init__(self, session: Optional[Session] = None):
        self.session = session or db.session
        self.committed = False

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            try:
                self.session.commit()
                self.committed = True
            except SQLAlchemyError as e:
                self.session.rollback()
                log.exception("[uow] commit failed")
                raise EngineUnavailable("Scheduling store unavailable") from e
            return False

        self.session.rollback()
        if isinstance(exc, SQLAlchemyError):
            log.warning("[uow] rolled back after store error: %s", exc)
            raise EngineUnavailable("Scheduling store unavailable") from exc
        return False

    def flush(self):
        self.session.flush()


class Directory:
    """Employee / team directory. Read-only."""

    def __init__(self, session: Optional[Session] = None):
        self.session = session or db.session

    def get_user(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_employee(self, employee_id: int) -> Optional[Employee]:
        return self.session.get(Employee, employee_id)

    def get_employee_for_user(self, user_id: int) -> Optional[Employee]:
        return self.session.query(Employee).filter(Employee.user_id == user_id).first()

    def get_managed_teams(self, user_id: int) -> List[int]:
        rows = (
            self.session.query(TeamManager.team_id)
            .join(Team, Team.id == TeamManager.team_id)
            .filter(TeamManager.user_id == user_id, Team.is_active.is_(True))
            .order_by(TeamManager.team_id.asc())
            .all()
        )
        return [r[0] for r in rows]

    def list_team_members(self, team_id: int, include_inactive: bool = False) -> List[Employee]:
        return self.list_employees(team_ids=[team_id], include_inactive=include_inactive)

    def list_teams(self, team_ids: Optional[Iterable[int]] = None) -> List[Team]:
        q = self.session.query(Team)
        if team_ids is not None:
            q = q.filter(Team.id.in_(list(team_ids)))
        return q.order_by(Team.name.asc()).all()

    def list_employees(self, team_ids: Optional[Iterable[int]] = None,
                       employee_ids: Optional[Iterable[int]] = None,
                       include_inactive: bool = False) -> List[Employee]:
        q = self.session.query(Employee)
        if team_ids is not None:
            q = q.filter(Employee.team_id.in_(list(team_ids)))
        if employee_ids is not None:
            q = q.filter(Employee.id.in_(list(employee_ids)))
        if not include_inactive:
            q = q.filter(Employee.is_active.is_(True))
        return q.order_by(Employee.first_name.asc(), Employee.last_name.asc(), Employee.id.asc()).all()

    def get_task(self, task_id: int) -> Optional[ProjectTask]:
        return self.session.get(ProjectTask, task_id)


class AbsenceStore:
    """Absence records and allocations. Read-only from the engine's perspective."""

    def __init__(self, session: Optional[Session] = None):
        self.session = session or db.session

    def list_absences(self, employee_ids: Optional[Iterable[int]], start: date, end: date,
                      statuses: Optional[Iterable[str]] = None) -> List[AbsenceRecord]:
        q = (
            self.session.query(AbsenceRecord)
            .filter(AbsenceRecord.start_date <= end)
            .filter(AbsenceRecord.end_date >= start)
        )
        if employee_ids is not None:
            q = q.filter(AbsenceRecord.employee_id.in_(list(employee_ids)))
        if statuses is not None:
            q = q.filter(AbsenceRecord.status.in_(list(statuses)))
        return q.order_by(AbsenceRecord.start_date.asc(), AbsenceRecord.id.asc()).all()

    def get(self, record_id: int) -> Optional[AbsenceRecord]:
        return self.session.get(AbsenceRecord, record_id)

    def allocation_for(self, employee_id: int, year: int) -> Optional[AbsenceAllocation]:
        return (
            self.session.query(AbsenceAllocation)
            .filter_by(employee_id=employee_id, year=year)
            .first()
        )


class AssignmentStore:
    """Assignment repository with the single active-assignment accessor."""

    def __init__(self, session: Optional[Session] = None):
        self.session = session or db.session

    def active(self):
        return self.session.query(Assignment).filter(Assignment.is_active.is_(True))

    def get_active(self, assignment_id: int) -> Optional[Assignment]:
        return self.active().filter(Assignment.id == assignment_id).first()

    def in_slot(self, employee_id: int, d: date, slot: str) -> List[Assignment]:
        return (
            self.active()
            .filter(Assignment.employee_id == employee_id,
                    Assignment.assigned_date == d,
                    Assignment.slot == slot)
            .order_by(Assignment.slot_order.asc(), Assignment.created_at.asc(), Assignment.id.asc())
            .all()
        )

    def in_range(self, start: date, end: date,
                 employee_ids: Optional[Iterable[int]] = None) -> List[Assignment]:
        q = self.active().filter(Assignment.assigned_date >= start, Assignment.assigned_date <= end)
        if employee_ids is not None:
            q = q.filter(Assignment.employee_id.in_(list(employee_ids)))
        # placement order first (leftmost first), then chronological
        return q.order_by(Assignment.slot_order.asc(), Assignment.created_at.asc(), Assignment.id.asc()).all()

    def find_existing(self, employee_id: int, task_id: int, d: date, slot: str) -> Optional[Assignment]:
        return (
            self.active()
            .filter(Assignment.employee_id == employee_id,
                    Assignment.task_id == task_id,
                    Assignment.assigned_date == d,
                    Assignment.slot == slot)
            .first()
        )

    def add(self, a: Assignment) -> Assignment:
        self.session.add(a)
        self.session.flush()
        return a

    def lock_slot(self, employee_id: int, d: date, slot: str) -> None:
        """
        Take the write lock for one (employee, date, slot) key.

        Insert-if-missing followed by an UPDATE on the lock row; the UPDATE
        holds the row lock until the surrounding transaction ends.
        """
        values = {"employee_id": employee_id, "assigned_date": d, "slot": slot, "version": 0}
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as _insert
            self.session.execute(_insert(SlotLock).values(**values).on_conflict_do_nothing())
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as _insert
            self.session.execute(_insert(SlotLock).values(**values).on_conflict_do_nothing())
        elif self.session.get(SlotLock, (employee_id, d, slot)) is None:
            self.session.add(SlotLock(**values))
            self.session.flush()

        self.session.execute(
            update(SlotLock)
            .where(SlotLock.employee_id == employee_id,
                   SlotLock.assigned_date == d,
                   SlotLock.slot == slot)
            .values(version=SlotLock.version + 1)
            .execution_options(synchronize_session=False)
        )

    def lock_slots(self, keys: Iterable[tuple]) -> None:
        # fixed ordering so two writers touching the same keys cannot deadlock
        for employee_id, d, slot in sorted(set(keys)):
            self.lock_slot(employee_id, d, slot)

    def prune_locks(self, before: date) -> int:
        """Delete lock rows dated before `before`. A later writer on such a slot recreates its row."""
        res = self.session.execute(
            delete(SlotLock)
            .where(SlotLock.assigned_date < before)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount or 0

    def redensify(self, employee_id: int, d: date, slot: str) -> None:
        """Rewrite slot_order of one slot as 0..N-1 keeping the current order."""
        for i, a in enumerate(self.in_slot(employee_id, d, slot)):
            if a.slot_order != i:
                a.slot_order = i
        self.session.flush()
