from datetime import datetime, date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from hrpay_api.extensions import db
from hrpay_api.common.errors import (
    ValidationError,
    DuplicateActiveRequest,
    InvalidTransition,
    AlreadySettled,
)
from hrpay_api.models.overtime import OvertimeRequest, APPROVED, REJECTED, CANCELLED
from hrpay_api.services import overtime_service as ot_svc
from hrpay_api.services import attendance_ledger as ledger
from hrpay_api.services.settings_store import PayrollSettings, OvertimeMultipliers
from hrpay_api.services.settlement_events import SETTLED, NOOP, NEEDS_REVIEW

MON = date(2025, 3, 3)
SAT = date(2025, 3, 8)


def _approved(emp, day=MON, hour=18):
    ot = ot_svc.file_overtime(emp.id, day, datetime(day.year, day.month, day.day, hour, 0), "deploy window")
    return ot_svc.approve_overtime(ot.id, reviewer_id=99, notes="ok")


def test_clock_out_settles_approved_overtime(app, make_employee):
    e = make_employee(salary=20000)
    ot = _approved(e)
    assert ot.is_active is True and ot.total_hours is None

    ledger.clock_in(e.id, datetime(2025, 3, 3, 8, 0))
    res = ledger.clock_out(e.id, datetime(2025, 3, 3, 21, 30))
    assert res.event.outcome["result"] == SETTLED

    ot = ot_svc.get_overtime(ot.id)
    assert ot.total_hours == Decimal("3.50")
    assert ot.overtime_pay == Decimal("546.88")
    assert ot.end_time == datetime(2025, 3, 3, 21, 30)
    assert ot.is_active is False
    assert ot.completion_source == "auto" and ot.completed_by is None


def test_settlement_is_idempotent(app, make_employee):
    e = make_employee()
    ot = _approved(e)
    first = ot_svc.on_clock_out(e.id, datetime(2025, 3, 3, 21, 30))
    second = ot_svc.on_clock_out(e.id, datetime(2025, 3, 3, 23, 0))
    assert first.result == SETTLED
    assert second.result == NOOP
    assert ot_svc.get_overtime(ot.id).total_hours == Decimal("3.50")


def test_clock_out_before_start_needs_review(app, make_employee):
    e = make_employee()
    ot = _approved(e)
    ledger.clock_in(e.id, datetime(2025, 3, 3, 8, 0))
    res = ledger.clock_out(e.id, datetime(2025, 3, 3, 17, 0))
    assert res.event.outcome["result"] == NEEDS_REVIEW
    assert res.event.status == "needs_review"

    ot = ot_svc.get_overtime(ot.id)
    assert ot.total_hours is None
    assert ot.needs_review is True
    assert ot.is_active is True
    assert ot in ot_svc.action_required()


def test_clock_out_without_overtime_is_noop(app, make_employee):
    e = make_employee()
    assert ot_svc.on_clock_out(e.id, datetime(2025, 3, 3, 21, 0)).result == NOOP

    pending = ot_svc.file_overtime(e.id, MON, datetime(2025, 3, 3, 18, 0), "not yet approved")
    assert ot_svc.on_clock_out(e.id, datetime(2025, 3, 3, 21, 0)).result == NOOP
    assert ot_svc.get_overtime(pending.id).total_hours is None


def test_second_active_overtime_same_day_rejected(app, make_employee):
    e = make_employee()
    _approved(e)
    with pytest.raises(DuplicateActiveRequest):
        ot_svc.file_overtime(e.id, MON, datetime(2025, 3, 3, 19, 0), "again")


def test_approving_two_pending_for_same_day(app, make_employee):
    e = make_employee()
    a = ot_svc.file_overtime(e.id, MON, datetime(2025, 3, 3, 18, 0), "first")
    b = ot_svc.file_overtime(e.id, MON, datetime(2025, 3, 3, 19, 0), "second")
    ot_svc.approve_overtime(a.id, reviewer_id=1)
    with pytest.raises(DuplicateActiveRequest):
        ot_svc.approve_overtime(b.id, reviewer_id=1)
    assert ot_svc.get_overtime(b.id).status == "PENDING"


def test_active_index_is_final_arbiter(app, make_employee):
    e = make_employee()
    _approved(e)
    db.session.add(OvertimeRequest(
        employee_id=e.id, work_date=MON, start_time=datetime(2025, 3, 3, 20, 0),
        reason="bypass", status=APPROVED, is_active=True,
    ))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_backdated_approval_settles_against_closed_day(app, make_employee):
    e = make_employee(salary=20000)
    ot = ot_svc.file_overtime(e.id, MON, datetime(2025, 3, 3, 18, 0), "late approval")
    ledger.clock_in(e.id, datetime(2025, 3, 3, 8, 0))
    ledger.clock_out(e.id, datetime(2025, 3, 3, 20, 0))
    assert ot_svc.get_overtime(ot.id).total_hours is None

    ot = ot_svc.approve_overtime(ot.id, reviewer_id=1)
    assert ot.total_hours == Decimal("2.00")
    assert ot.overtime_pay == Decimal("312.50")  # 125/h * 2 * 1.25


def test_reject_and_cancel_transitions(app, make_employee):
    e = make_employee()
    ot = ot_svc.file_overtime(e.id, MON, datetime(2025, 3, 3, 18, 0), "maybe")
    with pytest.raises(ValidationError):
        ot_svc.reject_overtime(ot.id, reviewer_id=1, notes="  ")
    ot = ot_svc.reject_overtime(ot.id, reviewer_id=1, notes="not needed")
    assert ot.status == REJECTED and ot.is_active is False

    with pytest.raises(InvalidTransition):
        ot_svc.cancel_overtime(ot.id)
    with pytest.raises(InvalidTransition):
        ot_svc.approve_overtime(ot.id, reviewer_id=1)

    other = ot_svc.file_overtime(e.id, date(2025, 3, 4), datetime(2025, 3, 4, 18, 0), "tuesday")
    assert ot_svc.cancel_overtime(other.id).status == CANCELLED


def test_manual_complete(app, make_employee):
    e = make_employee(salary=20000)
    ot = _approved(e)
    with pytest.raises(ValidationError):
        ot_svc.manual_complete(ot.id, datetime(2025, 3, 3, 17, 0), completed_by=7)

    done = ot_svc.manual_complete(ot.id, datetime(2025, 3, 3, 20, 0), completed_by=7)
    assert done.total_hours == Decimal("2.00")
    assert done.completed_by == 7 and done.completion_source == "manual"
    assert done.is_active is False

    with pytest.raises(AlreadySettled):
        ot_svc.manual_complete(ot.id, datetime(2025, 3, 3, 21, 0), completed_by=7)


def test_start_time_must_fall_on_work_date(app, make_employee):
    e = make_employee()
    with pytest.raises(ValidationError):
        ot_svc.file_overtime(e.id, MON, datetime(2025, 3, 4, 18, 0), "wrong day")


def test_rest_day_and_holiday_multipliers(app, make_employee):
    e = make_employee(salary=20000)
    sat = ot_svc.file_overtime(e.id, SAT, datetime(2025, 3, 8, 9, 0), "weekend")
    assert sat.day_type == "rest_day" and float(sat.overtime_rate) == 1.5

    settings = PayrollSettings(overtime=OvertimeMultipliers(weekday=1.25, rest_day=1.5, holiday=2.0))
    rule = ot_svc.holiday_calendar_rule({date(2025, 3, 4)})
    hol = ot_svc.file_overtime(e.id, date(2025, 3, 4), datetime(2025, 3, 4, 9, 0), "holiday",
                               settings=settings, day_type_rule=rule)
    assert hol.day_type == "holiday" and float(hol.overtime_rate) == 2.0


def test_cross_midnight_policy(app, make_employee):
    e = make_employee(salary=20000)
    _approved(e, hour=22)
    review = ot_svc.on_clock_out(e.id, datetime(2025, 3, 3, 1, 0), settings=PayrollSettings())
    assert review.result == NEEDS_REVIEW

    next_day = PayrollSettings(overtime_cross_midnight="next_day")
    out = ot_svc.on_clock_out(e.id, datetime(2025, 3, 3, 1, 0), settings=next_day)
    assert out.result == SETTLED
    assert out.detail["total_hours"] == 3.0


def test_monthly_summary(app, make_employee):
    e = make_employee(salary=20000)
    _approved(e)
    ot_svc.on_clock_out(e.id, datetime(2025, 3, 3, 21, 30))
    s = ot_svc.monthly_summary(e.id, 2025, 3)
    assert s["count"] == 1
    assert s["total_hours"] == 3.5
    assert s["total_pay"] == 546.88
