# planner_api/services/role_scope.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Optional
import logging

from flask_jwt_extended import create_access_token, decode_token

from planner_api.common.errors import Forbidden
from planner_api.models.user import ROLE_ADMIN, ROLE_MANAGER, ROLE_TEAM_MEMBER, ROLES
from planner_api.services.store import Directory

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallerContext:
    user_id: int
    role: str
    employee_id: Optional[int] = None
    managed_team_ids: Optional[FrozenSet[int]] = None   # None = not resolved yet


@dataclass(frozen=True)
class RoleScope:
    """
    Data-visibility filter for one request.

    `employee_ids` / `team_ids` of None mean "unrestricted" (admin).
    A manager with no managed teams gets an empty team set and sees nobody.
    """
    role: str
    user_id: Optional[int] = None
    caller_employee_id: Optional[int] = None
    team_ids: Optional[FrozenSet[int]] = None
    employee_ids: Optional[FrozenSet[int]] = None
    member_team: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_manager(self) -> bool:
        return self.role == ROLE_MANAGER

    @property
    def is_team_member(self) -> bool:
        return self.role == ROLE_TEAM_MEMBER

    @property
    def is_empty(self) -> bool:
        if self.is_admin:
            return False
        return not self.employee_ids

    def visible(self, employee_id: int) -> bool:
        if self.is_admin:
            return True
        return employee_id in (self.employee_ids or ())

    def can_modify(self, employee_id: int) -> bool:
        # team members never schedule; managers only inside their teams
        if self.is_admin:
            return True
        if self.is_manager:
            return self.visible(employee_id)
        return False

    def require_visible(self, employee_id: int):
        if not self.visible(employee_id):
            raise Forbidden("Employee is outside the caller's scope", employee_id=employee_id)

    def require_modify(self, employee_id: int):
        if not self.can_modify(employee_id):
            raise Forbidden("Caller may not schedule this employee", employee_id=employee_id)


def resolve_scope(caller: CallerContext, directory: Optional[Directory] = None) -> RoleScope:
    """Pure function of the caller context plus team-membership lookups."""
    if caller.role not in ROLES:
        raise Forbidden(f"Unknown role '{caller.role}'")

    if caller.role == ROLE_ADMIN:
        return RoleScope(role=ROLE_ADMIN, user_id=caller.user_id, caller_employee_id=caller.employee_id)

    directory = directory or Directory()

    if caller.role == ROLE_TEAM_MEMBER:
        own = frozenset([caller.employee_id]) if caller.employee_id is not None else frozenset()
        return RoleScope(role=ROLE_TEAM_MEMBER, user_id=caller.user_id,
                         caller_employee_id=caller.employee_id,
                         team_ids=frozenset(), employee_ids=own)

    team_ids = caller.managed_team_ids
    if team_ids is None:
        team_ids = frozenset(directory.get_managed_teams(caller.user_id))
    if not team_ids:
        log.info("[scope] manager %s has no managed teams; empty scope", caller.user_id)
        return RoleScope(role=ROLE_MANAGER, user_id=caller.user_id,
                         caller_employee_id=caller.employee_id,
                         team_ids=frozenset(), employee_ids=frozenset())

    members = directory.list_employees(team_ids=team_ids, include_inactive=True)
    return RoleScope(
        role=ROLE_MANAGER,
        user_id=caller.user_id,
        caller_employee_id=caller.employee_id,
        team_ids=frozenset(team_ids),
        employee_ids=frozenset(e.id for e in members),
        member_team={e.id: e.team_id for e in members},
    )


def caller_for_user(user_id: int, directory: Optional[Directory] = None) -> CallerContext:
    directory = directory or Directory()
    user = directory.get_user(user_id)
    if not user or user.status != "active":
        raise Forbidden("Unknown or inactive user")
    emp = directory.get_employee_for_user(user.id)
    return CallerContext(user_id=user.id, role=user.role, employee_id=emp.id if emp else None)


def scope_claims(user) -> dict:
    """Additional JWT claims for a scope token (role + own employee id)."""
    emp = Directory().get_employee_for_user(user.id)
    return {"role": user.role, "employee_id": emp.id if emp else None}


def issue_scope_token(user) -> str:
    return create_access_token(identity=str(user.id), additional_claims=scope_claims(user))


def scope_from_token(token: str, directory: Optional[Directory] = None) -> RoleScope:
    """
    Decode a scope token and resolve it to a RoleScope.

    The role claim is re-checked against the live user row, so a demoted
    user's old token cannot widen their visibility.
    """
    try:
        claims = decode_token(token)
    except Exception as e:
        log.info("[scope] token rejected: %s", e)
        raise Forbidden("Invalid scope token") from e

    sub = claims.get("sub")
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise Forbidden("Invalid scope token subject")

    directory = directory or Directory()
    caller = caller_for_user(user_id, directory)
    claim_role = claims.get("role")
    if claim_role and claim_role != caller.role:
        log.info("[scope] stale role claim for user %s (%s != %s)", user_id, claim_role, caller.role)
    return resolve_scope(caller, directory)
