from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from planner_api.common.errors import InsufficientAllocation, InvalidDate
from planner_api.models.absence import (
    DEFAULT_ANNUAL_LEAVE_DAYS, STATUS_PENDING, STATUS_REJECTED, TYPE_SICK_DAY,
)
from planner_api.services.absence_index import (
    AbsenceIndex, DISPLAY_BLOCKING, PREVIEW_BLOCKING, absence_days, check_allocation,
)

from conftest import MON, TUE, FRI


def test_full_day_blocks_both_slots_half_day_one(seed):
    a, b = seed.employee(), seed.employee()
    seed.absence(a, MON)
    seed.absence(b, MON, slot="afternoon")

    idx = AbsenceIndex.load([a.id, b.id], MON, FRI)
    assert idx.is_blocked(a.id, MON, "morning")
    assert idx.is_blocked(a.id, MON, "afternoon")
    assert not idx.is_blocked(b.id, MON, "morning")
    assert idx.is_blocked(b.id, MON, "afternoon")
    assert not idx.is_blocked(a.id, TUE, "morning")


def test_pending_blocks_only_in_preview(seed):
    e = seed.employee()
    seed.absence(e, MON, status=STATUS_PENDING)
    assert not AbsenceIndex.load([e.id], MON, MON, DISPLAY_BLOCKING).is_blocked(e.id, MON, "morning")
    assert AbsenceIndex.load([e.id], MON, MON, PREVIEW_BLOCKING).is_blocked(e.id, MON, "morning")


def test_rejected_never_blocks(seed):
    e = seed.employee()
    seed.absence(e, MON, status=STATUS_REJECTED)
    assert not AbsenceIndex.load([e.id], MON, MON, PREVIEW_BLOCKING).is_blocked(e.id, MON, "morning")


def test_absence_for_prefers_approved(seed):
    e = seed.employee()
    seed.absence(e, MON, status=STATUS_PENDING)
    approved = seed.absence(e, MON, FRI)
    idx = AbsenceIndex.load([e.id], MON, FRI, PREVIEW_BLOCKING)
    assert idx.absence_for(e.id, MON, "morning").id == approved.id


def test_degraded_index_fails_closed(seed):
    class BrokenStore:
        def list_absences(self, *a, **kw):
            raise OperationalError("SELECT", {}, Exception("db down"))

    idx = AbsenceIndex.load([1], MON, MON, store=BrokenStore())
    assert idx.degraded
    assert idx.is_blocked(1, MON, "morning")
    assert idx.blocked_slots(1, MON) == {"morning", "afternoon"}


def test_absence_days_counts_business_days_and_half_days():
    assert absence_days(MON, FRI, None) == 5.0
    assert absence_days(date(2025, 9, 26), date(2025, 9, 29), None) == 2.0
    assert absence_days(MON, MON, "morning") == 0.5


def test_check_allocation_counts_pending_and_approved(seed):
    e = seed.employee()
    seed.allocation(e, 2025, annual_leave_days=5)
    seed.absence(e, date(2025, 3, 3), date(2025, 3, 5))                          # 3 days approved
    seed.absence(e, date(2025, 4, 7), slot="morning", status=STATUS_PENDING)    # 0.5 pending
    seed.absence(e, date(2025, 5, 5), status=STATUS_REJECTED)                   # ignored

    ok = check_allocation(e.id, "annual_leave", MON, MON, slot="afternoon")
    assert ok["used_days"] == 3.5
    assert ok["remaining_after"] == 1.0

    with pytest.raises(InsufficientAllocation) as exc:
        check_allocation(e.id, "annual_leave", MON, TUE)
    assert exc.value.extra["remaining_days"] == 1.5


def test_check_allocation_other_types_unlimited(seed):
    e = seed.employee()
    out = check_allocation(e.id, TYPE_SICK_DAY, MON, FRI)
    assert out["limited"] is False
    assert out["requested_days"] == 5.0


def test_check_allocation_shape_errors(seed):
    e = seed.employee()
    with pytest.raises(InvalidDate):
        check_allocation(e.id, "annual_leave", TUE, MON)
    with pytest.raises(InvalidDate):
        check_allocation(e.id, "annual_leave", MON, TUE, slot="morning")


def test_check_allocation_without_row_uses_default_allowance(seed):
    e = seed.employee()
    seed.absence(e, date(2025, 3, 3), date(2025, 3, 7))    # 5 days approved

    out = check_allocation(e.id, "annual_leave", MON, MON)
    assert out["allowed_days"] == float(DEFAULT_ANNUAL_LEAVE_DAYS)
    assert out["remaining_after"] == DEFAULT_ANNUAL_LEAVE_DAYS - 5 - 1
