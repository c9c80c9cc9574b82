from datetime import datetime, date
from decimal import Decimal

import pytest

from hrpay_api.common.errors import (
    ValidationError,
    DuplicateActiveRequest,
    InvalidTransition,
    AlreadySettled,
)
from hrpay_api.models.leave import LeaveCredit, DEFAULT_ENTITLEMENTS
from hrpay_api.services import leave_service as lv_svc
from hrpay_api.services import attendance_ledger as ledger
from hrpay_api.services.settlement_events import SETTLED, NOOP, NEEDS_REVIEW


def _open_leave(emp, start=date(2025, 3, 3), leave_type="SICK"):
    lv = lv_svc.file_leave(emp.id, leave_type, start, "flu")
    return lv_svc.approve_leave(lv.id, reviewer_id=5)


def test_open_leave_settles_on_next_clock_in(app, make_employee):
    e = make_employee()
    lv = _open_leave(e)
    assert lv.is_active is True and lv.end_date is None

    res = ledger.clock_in(e.id, datetime(2025, 3, 6, 8, 0))
    assert res.event.outcome["result"] == SETTLED

    lv = lv_svc.get_leave(lv.id)
    assert lv.end_date == date(2025, 3, 5)
    assert lv.total_days == Decimal("3")
    assert lv.is_active is False
    assert lv.settlement_source == "auto"


def test_settlement_is_idempotent(app, make_employee):
    e = make_employee()
    lv = _open_leave(e)
    assert lv_svc.on_clock_in(e.id, datetime(2025, 3, 6, 8, 0)).result == SETTLED
    assert lv_svc.on_clock_in(e.id, datetime(2025, 3, 7, 8, 0)).result == NOOP
    assert lv_svc.get_leave(lv.id).end_date == date(2025, 3, 5)


def test_clock_in_on_start_date_is_flagged(app, make_employee):
    e = make_employee()
    lv = _open_leave(e)
    res = ledger.clock_in(e.id, datetime(2025, 3, 3, 8, 0))
    assert res.event.outcome["result"] == NEEDS_REVIEW

    lv = lv_svc.get_leave(lv.id)
    assert lv.end_date is None and lv.total_days is None
    assert lv.needs_review is True
    assert lv in lv_svc.action_required()


def test_clock_in_before_future_leave_is_untouched(app, make_employee):
    e = make_employee()
    lv = _open_leave(e, start=date(2025, 3, 10))
    assert lv_svc.on_clock_in(e.id, datetime(2025, 3, 6, 8, 0)).result == NOOP
    assert lv_svc.get_leave(lv.id).needs_review is False


def test_backdated_approval_settles_immediately(app, make_employee):
    e = make_employee()
    lv = lv_svc.file_leave(e.id, "VACATION", date(2025, 3, 3), "trip")
    ledger.clock_in(e.id, datetime(2025, 3, 7, 8, 0))
    lv = lv_svc.approve_leave(lv.id, reviewer_id=5)
    assert lv.end_date == date(2025, 3, 6)
    assert lv.total_days == Decimal("4")


def test_one_open_leave_per_employee(app, make_employee):
    e = make_employee()
    _open_leave(e)
    with pytest.raises(DuplicateActiveRequest):
        lv_svc.file_leave(e.id, "SICK", date(2025, 3, 4), "still sick")
    # bounded leaves are not blocked
    bounded = lv_svc.file_leave(e.id, "VACATION", date(2025, 4, 1), "trip", end_date=date(2025, 4, 3))
    assert bounded.total_days == Decimal("3")


def test_transitions_and_validation(app, make_employee):
    e = make_employee()
    with pytest.raises(ValidationError):
        lv_svc.file_leave(e.id, "SABBATICAL", date(2025, 3, 3), "x")
    with pytest.raises(ValidationError):
        lv_svc.file_leave(e.id, "SICK", date(2025, 3, 3), "x", end_date=date(2025, 3, 1))

    lv = lv_svc.file_leave(e.id, "SICK", date(2025, 3, 3), "x")
    with pytest.raises(ValidationError):
        lv_svc.reject_leave(lv.id, reviewer_id=1, notes="")
    lv_svc.reject_leave(lv.id, reviewer_id=1, notes="no cover")
    with pytest.raises(InvalidTransition):
        lv_svc.approve_leave(lv.id, reviewer_id=1)
    with pytest.raises(InvalidTransition):
        lv_svc.cancel_leave(lv.id)


def test_manual_complete(app, make_employee):
    e = make_employee()
    lv = _open_leave(e)
    with pytest.raises(ValidationError):
        lv_svc.manual_complete(lv.id, date(2025, 3, 1), settled_by=3)
    done = lv_svc.manual_complete(lv.id, date(2025, 3, 4), settled_by=3)
    assert done.total_days == Decimal("2")
    assert done.settled_by == 3 and done.settlement_source == "manual"
    with pytest.raises(AlreadySettled):
        lv_svc.manual_complete(lv.id, date(2025, 3, 5), settled_by=3)


def test_credits_defaults_and_adjustment(app, make_employee):
    e = make_employee()
    rows = {c["leave_type"]: c for c in lv_svc.get_credits(e.id)}
    assert rows["VACATION"]["credits"] == DEFAULT_ENTITLEMENTS["VACATION"]
    assert rows["VACATION"]["is_custom"] is False

    with pytest.raises(ValidationError):
        lv_svc.adjust_credit(e.id, "VACATION", 20, "", actor_id=1)
    with pytest.raises(ValidationError):
        lv_svc.adjust_credit(e.id, "VACATION", -1, "typo", actor_id=1)

    lv_svc.adjust_credit(e.id, "vacation", 20, "tenure bonus", actor_id=1)
    rows = {c["leave_type"]: c for c in lv_svc.get_credits(e.id)}
    assert rows["VACATION"]["credits"] == 20.0
    assert rows["VACATION"]["is_custom"] is True


def test_bulk_adjust_is_all_or_nothing(app, make_employee):
    e = make_employee()
    with pytest.raises(ValidationError):
        lv_svc.bulk_adjust_credits(
            e.id,
            [{"leave_type": "VACATION", "credits": 18}, {"leave_type": "SICK", "credits": "lots"}],
            "annual review", actor_id=1,
        )
    assert LeaveCredit.query.filter_by(employee_id=e.id).count() == 0

    lv_svc.bulk_adjust_credits(
        e.id,
        [{"leave_type": "VACATION", "credits": 18}, {"leave_type": "SICK", "credits": 12}],
        "annual review", actor_id=1,
    )
    assert LeaveCredit.query.filter_by(employee_id=e.id).count() == 2
    assert lv_svc.reset_credits(e.id, actor_id=1) == 2
    assert LeaveCredit.query.filter_by(employee_id=e.id).count() == 0


def test_balance_counts_settled_days(app, make_employee):
    e = make_employee()
    _open_leave(e, leave_type="SICK")
    lv_svc.on_clock_in(e.id, datetime(2025, 3, 6, 8, 0))
    bal = {b["leave_type"]: b for b in lv_svc.balance(e.id, 2025)}
    assert bal["SICK"]["used"] == 3
    assert bal["SICK"]["remaining"] == DEFAULT_ENTITLEMENTS["SICK"] - 3
    assert bal["VACATION"]["used"] == 0
