from datetime import date
from unittest import mock

from sqlalchemy.exc import OperationalError

from planner_api.common.errors import CapacityExceeded
from planner_api.extensions import db
from planner_api.models.absence import STATUS_APPROVED, STATUS_PENDING
from planner_api.models.assignment import SlotLock
from planner_api.models.user import ROLE_ADMIN
from planner_api.services import engine as engine_mod
from planner_api.services.availability import INTENT_CAN_PLACE_NEW
from planner_api.services.engine import SchedulingEngine
from planner_api.services.role_scope import issue_scope_token

from conftest import MON, TUE, FRI, scope_for


def _team_with_manager(seed):
    t = seed.team()
    e = seed.employee(team=t)
    mgr = seed.manager_of(t)
    return t, e, mgr


def test_create_and_capacity_error_envelope(seed):
    _, e, mgr = _team_with_manager(seed)
    eng = SchedulingEngine()
    scope = scope_for(mgr)

    for _ in range(4):
        res = eng.create_assignment(scope, e.id, seed.task().id, "2025-09-22", "morning")
        assert res.ok, res.error
    res = eng.create_assignment(scope, e.id, seed.task().id, "2025-09-22", "morning")
    assert not res.ok
    assert isinstance(res.error, CapacityExceeded)
    assert res.to_dict() == {
        "success": False,
        "error": {
            "kind": "CapacityExceeded",
            "message": res.error.message,
            "employee_id": e.id,
            "date": "2025-09-22",
            "slot": "morning",
            "count": 4,
            "max_capacity": 4,
        },
    }


def test_team_member_cannot_schedule(seed):
    t = seed.team()
    me = seed.employee(team=t)
    res = SchedulingEngine().create_assignment(scope_for(me.user, me), me.id, seed.task().id, MON, "morning")
    assert res.kind == "Forbidden"


def test_manager_cannot_touch_other_teams(seed):
    _, _, mgr = _team_with_manager(seed)
    outsider = seed.employee(team=seed.team())
    a = seed.assignment(outsider, seed.task(), MON, "morning")
    eng = SchedulingEngine()
    scope = scope_for(mgr)
    assert eng.remove_assignment(scope, a.id).kind == "Forbidden"
    assert eng.move_assignment(scope, a.id, outsider.id, TUE, "morning").kind == "Forbidden"
    assert eng.get_availability_matrix(scope, outsider.id, MON, FRI, INTENT_CAN_PLACE_NEW).kind == "Forbidden"


def test_scope_token_drives_calendar_view(seed):
    _, e, mgr = _team_with_manager(seed)
    seed.employee(team=seed.team())
    res = SchedulingEngine().get_calendar_view(issue_scope_token(mgr), "2025-09-24", "weekly")
    assert res.ok
    assert [row["employee_id"] for row in res.data["employees"]] == [e.id]


def test_bad_token_is_forbidden(app):
    assert SchedulingEngine().get_calendar_view("garbage", MON, "weekly").kind == "Forbidden"
    assert SchedulingEngine().get_calendar_view(None, MON, "weekly").kind == "Forbidden"


def test_move_bulk_remove_through_engine(seed, admin_scope):
    e = seed.employee()
    eng = SchedulingEngine()
    batch = [
        {"employee_id": e.id, "task_id": seed.task().id, "date": "2025-09-22", "slot": "morning"},
        {"employee_id": e.id, "task_id": seed.task().id, "date": "2025-09-22", "slot": "afternoon"},
    ]
    res = eng.bulk_create(admin_scope, batch)
    assert res.ok and res.data["count"] == 2

    first = res.data["items"][0]["id"]
    moved = eng.move_assignment(admin_scope, first, e.id, "2025-09-23", "morning")
    assert moved.ok and moved.data["date"] == "2025-09-23"

    removed = eng.remove_assignment(admin_scope, first)
    assert removed.ok and removed.data["is_active"] is False
    assert eng.remove_assignment(admin_scope, first).kind == "NotFound"


def test_bulk_failure_reports_index(seed, admin_scope):
    e = seed.employee()
    seed.absence(e, TUE)
    batch = [
        {"employee_id": e.id, "task_id": seed.task().id, "date": "2025-09-22", "slot": "morning"},
        {"employee_id": e.id, "task_id": seed.task().id, "date": "2025-09-23", "slot": "morning"},
    ]
    res = SchedulingEngine().bulk_create(admin_scope, batch)
    assert res.kind == "AbsenceConflict"
    assert res.to_dict()["error"]["index"] == 1


def test_validate_and_conflicts(seed, admin_scope):
    e = seed.employee()
    eng = SchedulingEngine()
    ok = eng.validate_placement(admin_scope, e.id, MON, "morning")
    assert ok.ok and ok.data["occupancy"]["count"] == 0
    assert eng.validate_placement(admin_scope, e.id, "2025-09-27", "morning").kind == "InvalidDate"

    res = eng.placement_conflicts(admin_scope, e.id, 999, "2025-09-27", "morning")
    assert res.ok
    assert [c["kind"] for c in res.data["conflicts"]] == ["NotFound", "InvalidDate"]


def test_availability_and_capacity(seed, admin_scope):
    e = seed.employee(id=9)
    seed.absence(e, MON)
    eng = SchedulingEngine()
    res = eng.get_availability_matrix(admin_scope, 9, "2025-09-22", "2025-09-22", INTENT_CAN_PLACE_NEW)
    assert res.data == {"2025-09-22": {"morning": False, "afternoon": False}}
    assert eng.get_availability_matrix(admin_scope, 9, MON, FRI, "whatever").kind == "InvalidRequest"

    report = eng.get_capacity_report(admin_scope, "2025-09-22", "2025-09-23")
    assert report.data["daily_workload"] == {9: {"2025-09-22": 0, "2025-09-23": 0}}
    assert report.data["utilization"] == {"2025-09-22": 0.0, "2025-09-23": 0.0}

    cap = eng.check_capacity(admin_scope, 9, MON, "morning")
    assert cap.ok and cap.data["is_blocked"] is True


def test_approve_absence_uses_configured_policy(app, seed):
    _, e, mgr = _team_with_manager(seed)
    a = seed.assignment(e, seed.task(), MON, "morning")
    rec = seed.absence(e, MON, status=STATUS_PENDING)
    scope = scope_for(mgr)

    res = SchedulingEngine().approve_absence(scope, rec.id)
    assert res.kind == "AbsenceConflict"
    assert res.error.extra["assignment_ids"] == [a.id]

    app.config["PLANNER_ABSENCE_APPROVAL_POLICY"] = "cancel"
    res = SchedulingEngine().approve_absence(scope, rec.id)
    assert res.ok
    assert res.data == {"id": rec.id, "status": STATUS_APPROVED, "cancelled_assignment_ids": [a.id]}


def test_validate_absence_request(seed):
    t = seed.team()
    me = seed.employee(team=t)
    seed.allocation(me, 2025, annual_leave_days=1)
    eng = SchedulingEngine()
    scope = scope_for(me.user, me)
    assert eng.validate_absence_request(scope, me.id, "annual_leave", MON, MON).ok
    assert eng.validate_absence_request(scope, me.id, "annual_leave", MON, TUE).kind == "InsufficientAllocation"


def test_store_failure_becomes_engine_unavailable(seed, admin_scope):
    e = seed.employee()
    boom = OperationalError("SELECT", {}, Exception("db down"))
    with mock.patch.object(engine_mod.AssignmentPlacement, "create", side_effect=boom):
        res = SchedulingEngine().create_assignment(admin_scope, e.id, seed.task().id, MON, "morning")
    assert res.kind == "EngineUnavailable"


def test_deadlines(seed, admin_scope):
    e = seed.employee()
    seed.assignment(e, seed.task(due_date=date(2025, 9, 1)), MON, "morning")
    res = SchedulingEngine().get_deadlines(admin_scope, today="2025-09-22")
    assert len(res.data["overdue"]) == 1
    assert res.data["upcoming"] == []


def test_error_handler_renders_envelope(app):
    @app.get("/_boom")
    def _boom():
        raise CapacityExceeded("full", employee_id=3, slot="morning")

    resp = app.test_client().get("/_boom")
    assert resp.status_code == 409
    body = resp.get_json()
    assert body["success"] is False
    assert body["error"]["code"] == "CapacityExceeded"
    assert body["error"]["detail"] == {"employee_id": 3, "slot": "morning"}


def test_cli_issue_token(app, seed):
    seed.user(role=ROLE_ADMIN, email="boss@planner.local")
    result = app.test_cli_runner().invoke(args=["issue-token", "--email", "boss@planner.local"])
    assert result.exit_code == 0
    assert result.output.strip().count(".") == 2


def test_cli_seed_demo_and_capacity_report(app):
    runner = app.test_cli_runner()
    seeded = runner.invoke(args=["seed-demo"])
    assert seeded.exit_code == 0, seeded.output
    assert "team DESIGN" in seeded.output

    again = runner.invoke(args=["seed-demo"])
    assert "(existing)" in again.output

    report = runner.invoke(args=["capacity-report", "--start", "2025-09-22", "--end", "2025-09-23"])
    assert report.exit_code == 0, report.output
    assert "2025-09-22" in report.output
    assert "Alice Demo" in report.output

    missing = runner.invoke(args=["capacity-report", "--start", "2025-09-22", "--end", "2025-09-23",
                                  "--user-id", "999"])
    assert missing.exit_code != 0
    assert "Forbidden" in missing.output


def test_result_response_uses_error_status(app, seed, admin_scope):
    from planner_api.common.http import result_response

    e = seed.employee()
    seed.absence(e, MON)
    emp_id, task_id = e.id, seed.task().id

    @app.post("/_place/<day>")
    def _place(day):
        return result_response(SchedulingEngine().create_assignment(admin_scope, emp_id, task_id, day, "morning"),
                               status=201)

    client = app.test_client()
    blocked = client.post("/_place/2025-09-22")
    assert blocked.status_code == 409
    assert blocked.get_json()["error"]["code"] == "AbsenceConflict"

    created = client.post("/_place/2025-09-23")
    assert created.status_code == 201
    assert created.get_json()["data"]["slot"] == "morning"


def test_malformed_input_comes_back_as_invalid_request(seed, admin_scope):
    e = seed.employee()
    seed.assignment(e, seed.task(due_date=date(2025, 9, 25)), MON, "morning")
    eng = SchedulingEngine()

    assert eng.bulk_create(admin_scope, None).kind == "InvalidRequest"
    assert eng.bulk_create(admin_scope, {"employee_id": e.id}).kind == "InvalidRequest"
    assert eng.get_deadlines(admin_scope, today="2025-09-22", days="soon").kind == "InvalidRequest"
    assert eng.get_deadlines(admin_scope, today="2025-09-22", days=-1).kind == "InvalidRequest"

    res = eng.get_deadlines(admin_scope, today="2025-09-22", days="7")
    assert res.ok
    assert len(res.data["upcoming"]) == 1


def test_cli_prune_slot_locks(app, seed, admin_scope):
    e = seed.employee()
    eng = SchedulingEngine()
    assert eng.create_assignment(admin_scope, e.id, seed.task().id, MON, "morning").ok
    assert eng.create_assignment(admin_scope, e.id, seed.task().id, TUE, "afternoon").ok
    assert db.session.query(SlotLock).count() == 2

    runner = app.test_cli_runner()
    result = runner.invoke(args=["prune-slot-locks", "--before", "2025-09-23"])
    assert result.exit_code == 0, result.output
    assert "Removed 1 slot lock(s) before 2025-09-23." in result.output
    assert [(row.assigned_date, row.slot) for row in db.session.query(SlotLock).all()] == [(TUE, "afternoon")]

    bad = runner.invoke(args=["prune-slot-locks", "--before", "someday"])
    assert bad.exit_code != 0
