from datetime import datetime, date, timedelta, timezone

import pytest

from hrpay_api.extensions import db
from hrpay_api.common.errors import DuplicateClockIn, NoOpenRecord, NotFoundError, ValidationError
from hrpay_api.common.parsing import parse_ts
from hrpay_api.models.attendance import AttendanceRecord, STATUS_PRESENT, STATUS_LATE, STATUS_INCOMPLETE
from hrpay_api.models.settlement_event import (
    SettlementEvent, DAY_CLOSED, DAY_OPENED, EVENT_FAILED, EVENT_PROCESSED,
)
from hrpay_api.models.leave import LeaveRequest, APPROVED as LV_APPROVED
from hrpay_api.services import attendance_ledger as ledger
from hrpay_api.services import overtime_service
from hrpay_api.services.settlement_events import retry_pending_events, new_event, SettlementOutcome, NOOP

D = date(2025, 3, 3)  # Monday


def test_clock_in_on_time_and_late(app, make_employee):
    a, b = make_employee(), make_employee()
    r1 = ledger.clock_in(a.id, datetime(2025, 3, 3, 8, 10)).record
    assert r1.status == STATUS_PRESENT and r1.late_minutes == 0

    r2 = ledger.clock_in(b.id, datetime(2025, 3, 3, 8, 20)).record
    assert r2.status == STATUS_LATE and r2.late_minutes == 20


def test_duplicate_clock_in(app, make_employee):
    e = make_employee()
    ledger.clock_in(e.id, datetime(2025, 3, 3, 8, 0))
    with pytest.raises(DuplicateClockIn) as ei:
        ledger.clock_in(e.id, datetime(2025, 3, 3, 9, 0))
    assert ei.value.payload["employee_id"] == e.id
    assert AttendanceRecord.query.filter_by(employee_id=e.id).count() == 1


def test_clock_out_computes_hours_and_emits_event(app, make_employee):
    e = make_employee()
    ledger.clock_in(e.id, datetime(2025, 3, 3, 8, 0))
    res = ledger.clock_out(e.id, datetime(2025, 3, 3, 17, 30))
    assert res.record.hours_worked == pytest.approx(9.5)
    assert res.event.kind == DAY_CLOSED
    assert res.event.status == EVENT_PROCESSED
    assert res.event.outcome["result"] == NOOP

    kinds = [ev.kind for ev in SettlementEvent.query.order_by(SettlementEvent.id).all()]
    assert kinds == [DAY_OPENED, DAY_CLOSED]


def test_offset_timestamps_are_rejected_by_the_ledger(app, make_employee):
    e = make_employee()
    aware = datetime(2025, 3, 3, 8, 5, tzinfo=timezone(timedelta(hours=8)))
    with pytest.raises(ValidationError):
        ledger.clock_in(e.id, aware)
    assert AttendanceRecord.query.filter_by(employee_id=e.id).count() == 0

    ledger.clock_in(e.id, datetime(2025, 3, 3, 8, 0))
    with pytest.raises(ValidationError):
        ledger.clock_out(e.id, aware.replace(hour=17))
    with pytest.raises(ValidationError):
        overtime_service.file_overtime(e.id, D, aware.replace(hour=18), "release")


def test_parse_ts_converts_offsets_to_local_time(app):
    assert parse_ts("2025-03-03T08:05:00+08:00") == datetime(2025, 3, 3, 8, 5)
    assert parse_ts("2025-03-03T00:05:00Z") == datetime(2025, 3, 3, 8, 5)
    assert parse_ts("2025-03-02T23:30:00-01:00") == datetime(2025, 3, 3, 8, 30)
    assert parse_ts("2025-03-03 08:05") == datetime(2025, 3, 3, 8, 5)
    assert parse_ts("yesterday") is None


def test_clock_out_without_open_record(app, make_employee):
    e = make_employee()
    with pytest.raises(NoOpenRecord):
        ledger.clock_out(e.id, datetime(2025, 3, 3, 17, 0))

    ledger.clock_in(e.id, datetime(2025, 3, 3, 8, 0))
    ledger.clock_out(e.id, datetime(2025, 3, 3, 17, 0))
    with pytest.raises(NoOpenRecord):
        ledger.clock_out(e.id, datetime(2025, 3, 3, 18, 0))
    assert SettlementEvent.query.filter_by(kind=DAY_CLOSED).count() == 1


def test_unknown_employee(app):
    with pytest.raises(NotFoundError):
        ledger.clock_in(999, datetime(2025, 3, 3, 8, 0))


def test_manual_entry_cross_boundary(app, make_employee):
    e = make_employee()
    rec = ledger.record_manual_attendance(e.id, D, datetime(2025, 3, 3, 22, 0), datetime(2025, 3, 3, 6, 0))
    assert rec.cross_boundary is True
    assert rec.status == STATUS_INCOMPLETE
    assert rec.hours_worked is None
    assert rec.source == "manual"


def test_missing_logs(app, make_employee):
    e = make_employee()
    ledger.clock_in(e.id, datetime(2025, 3, 3, 8, 0))
    ledger.clock_in(e.id, datetime(2025, 3, 4, 8, 0))
    ledger.clock_out(e.id, datetime(2025, 3, 4, 17, 0))
    rows = ledger.missing_logs(date(2025, 3, 5))
    assert [r.work_date for r in rows] == [D]


def test_attendance_summary(app, make_employee):
    e = make_employee()
    # Mon on time, Tue late 30, Wed..Fri missing; Thu covered by an approved leave
    ledger.clock_in(e.id, datetime(2025, 3, 3, 8, 0))
    ledger.clock_out(e.id, datetime(2025, 3, 3, 17, 0))
    ledger.clock_in(e.id, datetime(2025, 3, 4, 8, 30))
    ledger.clock_out(e.id, datetime(2025, 3, 4, 17, 0))
    db.session.add(LeaveRequest(employee_id=e.id, leave_type="SICK", start_date=date(2025, 3, 6),
                                end_date=date(2025, 3, 6), total_days=1, reason="flu", status=LV_APPROVED))
    db.session.commit()

    s = ledger.attendance_summary(e.id, date(2025, 3, 3), date(2025, 3, 9))
    assert s.working_days == 5
    assert s.days_present == 2
    assert s.days_on_leave == 1
    assert s.days_absent == 2
    assert s.total_late_minutes == 30
    assert s.total_hours == pytest.approx(9 + 8.5)


def test_failed_settlement_is_retried(app, make_employee):
    e = make_employee(salary=20000)
    ot = overtime_service.file_overtime(e.id, D, datetime(2025, 3, 3, 18, 0), "release")
    overtime_service.approve_overtime(ot.id, reviewer_id=1)

    def boom(employee_id, ts):
        raise RuntimeError("settlement store unavailable")

    def noop(employee_id, ts):
        return SettlementOutcome(NOOP)

    subs = {DAY_CLOSED: boom, DAY_OPENED: noop}
    ledger.clock_in(e.id, datetime(2025, 3, 3, 8, 0), subscribers=subs)
    res = ledger.clock_out(e.id, datetime(2025, 3, 3, 21, 30), subscribers=subs)

    # attendance is durable even though settlement failed
    assert res.record.time_out == datetime(2025, 3, 3, 21, 30)
    assert res.event.status == EVENT_FAILED
    assert res.event.attempts == 1
    assert "unavailable" in res.event.last_error
    assert overtime_service.get_overtime(ot.id).total_hours is None

    counts = retry_pending_events()
    assert counts[EVENT_PROCESSED] == 1
    done = overtime_service.get_overtime(ot.id)
    assert float(done.total_hours) == 3.5
    assert float(done.overtime_pay) == 546.88

    # a second retry finds nothing left to deliver
    assert retry_pending_events()[EVENT_PROCESSED] == 0


def test_unknown_event_kind_is_rejected(app, make_employee):
    e = make_employee()
    rec = ledger.clock_in(e.id, datetime(2025, 3, 3, 8, 0)).record
    with pytest.raises(ValidationError):
        new_event("day_skipped", rec, datetime(2025, 3, 3, 8, 0))
