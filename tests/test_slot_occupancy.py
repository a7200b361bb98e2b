import pytest

from planner_api.common.errors import AbsenceConflict, CapacityExceeded, InvalidDate, InvalidRequest
from planner_api.services.absence_index import AbsenceIndex, PREVIEW_BLOCKING
from planner_api.services.slot_occupancy import MAX_TASKS_PER_SLOT, SlotOccupancy

from conftest import MON, SAT


def _occ(emp_ids, d):
    return SlotOccupancy(AbsenceIndex.load(emp_ids, d, d, PREVIEW_BLOCKING))


def test_occupancy_counts_active_only_in_order(seed):
    e = seed.employee()
    t1, t2, t3 = seed.task(), seed.task(), seed.task()
    seed.assignment(e, t2, MON, "morning", slot_order=1)
    seed.assignment(e, t1, MON, "morning", slot_order=0)
    seed.assignment(e, t3, MON, "morning", slot_order=2, is_active=False)

    occ = _occ([e.id], MON).occupancy(e.id, MON, "morning")
    assert occ.count == 2
    assert occ.task_ids == [t1.id, t2.id]
    assert occ.available == MAX_TASKS_PER_SLOT - 2


def test_can_accept_and_check_at_cap(seed):
    e = seed.employee()
    for i in range(MAX_TASKS_PER_SLOT):
        seed.assignment(e, seed.task(), MON, "afternoon", slot_order=i)

    so = _occ([e.id], MON)
    assert not so.can_accept(e.id, MON, "afternoon")
    assert so.can_accept(e.id, MON, "morning")
    with pytest.raises(CapacityExceeded) as exc:
        so.check(e.id, MON, "afternoon")
    assert exc.value.to_dict()["slot"] == "afternoon"
    assert exc.value.extra["max_capacity"] == MAX_TASKS_PER_SLOT


def test_exclude_assignment_frees_one_unit(seed):
    e = seed.employee()
    rows = [seed.assignment(e, seed.task(), MON, "morning", slot_order=i) for i in range(MAX_TASKS_PER_SLOT)]
    so = _occ([e.id], MON)
    assert so.can_accept(e.id, MON, "morning", exclude_assignment_id=rows[0].id)


def test_pending_counts_toward_cap(seed):
    e = seed.employee()
    seed.assignment(e, seed.task(), MON, "morning")
    so = _occ([e.id], MON)
    assert so.can_accept(e.id, MON, "morning", pending=2)
    assert not so.can_accept(e.id, MON, "morning", pending=3)


def test_weekend_absence_and_bad_slot(seed):
    e = seed.employee()
    seed.absence(e, MON, slot="morning")
    so = _occ([e.id], MON)
    with pytest.raises(AbsenceConflict):
        so.check(e.id, MON, "morning")
    with pytest.raises(InvalidDate):
        so.check(e.id, SAT, "morning")
    with pytest.raises(InvalidRequest):
        so.check(e.id, MON, "evening")
