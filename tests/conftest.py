import os
from datetime import date

import pytest

from planner_api import create_app
from planner_api.extensions import db
from planner_api.models.absence import AbsenceRecord, AbsenceAllocation, STATUS_APPROVED, TYPE_ANNUAL_LEAVE
from planner_api.models.assignment import Assignment
from planner_api.models.employee import Employee, Team
from planner_api.models.task import ProjectTask
from planner_api.models.user import User, TeamManager, ROLE_ADMIN, ROLE_MANAGER, ROLE_TEAM_MEMBER
from planner_api.services.role_scope import CallerContext, RoleScope, resolve_scope

# 2025-09-22 is a Monday
MON = date(2025, 9, 22)
TUE = date(2025, 9, 23)
FRI = date(2025, 9, 26)
SAT = date(2025, 9, 27)
SUN = date(2025, 9, 28)


@pytest.fixture(scope="function")
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app()
    app.config["TESTING"] = True
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope="function")
def session(app):
    with app.app_context():
        yield db.session


class Seed:
    """Small factory for planner rows; every helper commits."""

    def __init__(self, session):
        self.session = session
        self._n = 0

    def _next(self) -> int:
        self._n += 1
        return self._n

    def _save(self, obj):
        self.session.add(obj)
        self.session.commit()
        return obj

    def team(self, name=None, code=None, is_active=True):
        n = self._next()
        return self._save(Team(name=name or f"Team {n}", code=code or f"T{n:03d}", is_active=is_active))

    def user(self, role=ROLE_TEAM_MEMBER, email=None, status="active"):
        n = self._next()
        return self._save(User(email=email or f"user{n}@planner.local", full_name=f"User {n}",
                               role=role, status=status))

    def employee(self, team=None, role=ROLE_TEAM_MEMBER, user=None, is_active=True,
                 first_name=None, id=None):
        n = self._next()
        user = user or self.user(role=role)
        return self._save(Employee(
            id=id, user_id=user.id, team_id=team.id if team else None, code=f"EMP{n:03d}",
            first_name=first_name or f"Emp{n:03d}", last_name="Test", position="Designer",
            is_active=is_active,
        ))

    def manager_of(self, *teams):
        u = self.user(role=ROLE_MANAGER)
        for t in teams:
            self.session.add(TeamManager(user_id=u.id, team_id=t.id))
        self.session.commit()
        return u

    def task(self, title=None, due_date=None, status="not_started", is_active=True):
        n = self._next()
        return self._save(ProjectTask(title=title or f"Task {n}", project_code="PRJ", task_type="design",
                                      due_date=due_date, status=status, is_active=is_active))

    def assignment(self, employee, task, d, slot, slot_order=0, is_active=True, notes=None):
        return self._save(Assignment(employee_id=employee.id, task_id=task.id, assigned_date=d, slot=slot,
                                     slot_order=slot_order, is_active=is_active, notes=notes))

    def absence(self, employee, start, end=None, slot=None, status=STATUS_APPROVED,
                absence_type=TYPE_ANNUAL_LEAVE):
        return self._save(AbsenceRecord(employee_id=employee.id, absence_type=absence_type,
                                        start_date=start, end_date=end or start, slot=slot, status=status))

    def allocation(self, employee, year, annual_leave_days=25):
        return self._save(AbsenceAllocation(employee_id=employee.id, year=year,
                                            annual_leave_days=annual_leave_days))


@pytest.fixture
def seed(session):
    return Seed(session)


@pytest.fixture
def admin_scope():
    return RoleScope(role=ROLE_ADMIN, user_id=1)


def scope_for(user, employee=None):
    return resolve_scope(CallerContext(user_id=user.id, role=user.role,
                                       employee_id=employee.id if employee else None))
