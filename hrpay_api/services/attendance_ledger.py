# hrpay_api/services/attendance_ledger.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, date, timedelta
from typing import Optional, List, Dict, Any
import logging

from sqlalchemy.exc import IntegrityError

from hrpay_api.extensions import db
from hrpay_api.common.errors import (
    ValidationError,
    NotFoundError,
    DuplicateClockIn,
    NoOpenRecord,
)
from hrpay_api.common.parsing import ensure_naive
from hrpay_api.models.employee import Employee
from hrpay_api.models.attendance import (
    AttendanceRecord,
    STATUS_PRESENT,
    STATUS_LATE,
    STATUS_ABSENT,
    STATUS_INCOMPLETE,
)
from hrpay_api.models.overtime import OvertimeRequest, APPROVED as OT_APPROVED
from hrpay_api.models.leave import LeaveRequest, APPROVED as LV_APPROVED
from hrpay_api.models.settlement_event import SettlementEvent, DAY_CLOSED, DAY_OPENED
from hrpay_api.services.settings_store import PayrollSettings, AttendancePolicy, load_settings
from hrpay_api.services import settlement_events

log = logging.getLogger(__name__)


@dataclass
class PunchResult:
    record: AttendanceRecord
    event: SettlementEvent

    def to_dict(self):
        return {"attendance": self.record.to_dict(), "settlement": self.event.to_dict()}


@dataclass
class AttendanceSummary:
    employee_id: int
    period_start: date
    period_end: date
    working_days: int
    days_present: int
    days_on_leave: int
    days_absent: int
    total_hours: float
    total_late_minutes: int
    total_overtime_hours: float
    overtime_pay: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "working_days": self.working_days,
            "days_present": self.days_present,
            "days_on_leave": self.days_on_leave,
            "days_absent": self.days_absent,
            "total_hours": round(self.total_hours, 2),
            "total_late_minutes": self.total_late_minutes,
            "total_overtime_hours": round(self.total_overtime_hours, 2),
            "overtime_pay": round(self.overtime_pay, 2),
        }


# ---------- helpers ----------

def _employee(employee_id: int) -> Employee:
    emp = db.session.get(Employee, employee_id)
    if not emp:
        raise NotFoundError("Employee not found", payload={"employee_id": employee_id})
    return emp


def classify_arrival(time_in: datetime, policy: AttendancePolicy):
    """(status, late_minutes). Minutes count from work start once grace is exceeded."""
    start = datetime.combine(time_in.date(), policy.work_start)
    minutes = (time_in - start).total_seconds() / 60.0
    if minutes > policy.grace_period_minutes:
        return STATUS_LATE, int(minutes)
    return STATUS_PRESENT, 0


def _close(rec: AttendanceRecord, time_out: datetime) -> None:
    rec.time_out = time_out
    if rec.time_in is not None and time_out < rec.time_in:
        rec.cross_boundary = True
        rec.status = STATUS_INCOMPLETE
        rec.hours_worked = None
        log.warning(
            "attendance %s: time_out %s precedes time_in %s (cross-boundary)",
            rec.id, time_out.isoformat(), rec.time_in.isoformat(),
        )
    elif rec.time_in is not None:
        rec.cross_boundary = False
        rec.hours_worked = (time_out - rec.time_in).total_seconds() / 3600.0


def _locked_day(employee_id: int, work_date: date) -> Optional[AttendanceRecord]:
    return (
        AttendanceRecord.query
        .filter_by(employee_id=employee_id, work_date=work_date)
        .with_for_update()
        .first()
    )


# ---------- punches ----------

def clock_in(employee_id: int, ts: datetime, settings: Optional[PayrollSettings] = None,
             subscribers=None) -> PunchResult:
    if not isinstance(ts, datetime):
        raise ValidationError("timestamp is required", payload={"employee_id": employee_id})
    ensure_naive(ts, "timestamp")
    _employee(employee_id)
    settings = settings or load_settings()
    day = ts.date()

    existing = _locked_day(employee_id, day)
    if existing is not None:
        db.session.rollback()
        msg = "Already clocked in" if existing.is_open else "Attendance for this day is already closed"
        raise DuplicateClockIn(msg, payload={"employee_id": employee_id, "date": day.isoformat(),
                                             "attendance_id": existing.id})

    status, late = classify_arrival(ts, settings.attendance)
    rec = AttendanceRecord(
        employee_id=employee_id,
        work_date=day,
        time_in=ts,
        status=status,
        late_minutes=late,
        source="clock",
    )
    db.session.add(rec)
    try:
        db.session.flush()
        ev = settlement_events.new_event(DAY_OPENED, rec, ts)
        db.session.commit()
    except IntegrityError:
        # concurrent clock-in won the (employee_id, work_date) key
        db.session.rollback()
        raise DuplicateClockIn("Already clocked in", payload={"employee_id": employee_id, "date": day.isoformat()})

    log.info("clock-in employee=%s date=%s status=%s late=%s", employee_id, day, status, late)
    ev = settlement_events.deliver(ev, subscribers)
    return PunchResult(record=rec, event=ev)


def clock_out(employee_id: int, ts: datetime, subscribers=None) -> PunchResult:
    if not isinstance(ts, datetime):
        raise ValidationError("timestamp is required", payload={"employee_id": employee_id})
    ensure_naive(ts, "timestamp")
    _employee(employee_id)
    day = ts.date()

    rec = _locked_day(employee_id, day)
    if rec is None or not rec.is_open:
        db.session.rollback()
        raise NoOpenRecord(
            "No open attendance record for this day",
            payload={"employee_id": employee_id, "date": day.isoformat(),
                     "attendance_id": rec.id if rec else None},
        )

    _close(rec, ts)
    ev = settlement_events.new_event(DAY_CLOSED, rec, ts)
    db.session.commit()

    log.info("clock-out employee=%s date=%s hours=%s", employee_id, day, rec.hours_worked)
    ev = settlement_events.deliver(ev, subscribers)
    return PunchResult(record=rec, event=ev)


def record_manual_attendance(employee_id: int, work_date: date, time_in: Optional[datetime],
                             time_out: Optional[datetime], status: Optional[str] = None,
                             settings: Optional[PayrollSettings] = None) -> AttendanceRecord:
    """
    Administrative upsert. Status is recomputed from time_in unless the caller
    marks the day ABSENT. No settlement event is written; open requests are
    closed through the manual-complete operations instead.
    """
    ensure_naive(time_in, "time_in")
    ensure_naive(time_out, "time_out")
    _employee(employee_id)
    settings = settings or load_settings()
    if status not in (None, STATUS_ABSENT):
        raise ValidationError("Only ABSENT may be set explicitly", payload={"status": status})
    if status != STATUS_ABSENT and time_in is None:
        raise ValidationError("time_in is required unless the day is ABSENT",
                              payload={"employee_id": employee_id, "date": work_date.isoformat()})
    if time_out is not None and time_in is None:
        raise ValidationError("time_out requires time_in", payload={"employee_id": employee_id})

    rec = _locked_day(employee_id, work_date)
    if rec is None:
        rec = AttendanceRecord(employee_id=employee_id, work_date=work_date)
        db.session.add(rec)

    rec.source = "manual"
    rec.time_in = time_in
    rec.time_out = None
    rec.hours_worked = None
    rec.cross_boundary = False
    if status == STATUS_ABSENT:
        rec.status, rec.late_minutes = STATUS_ABSENT, 0
        rec.time_in = None
    else:
        rec.status, rec.late_minutes = classify_arrival(time_in, settings.attendance)
        if time_out is not None:
            _close(rec, time_out)
    db.session.commit()
    log.info("manual attendance employee=%s date=%s status=%s", employee_id, work_date, rec.status)
    return rec


# ---------- queries ----------

def list_records(employee_id: Optional[int] = None, start: Optional[date] = None,
                 end: Optional[date] = None) -> List[AttendanceRecord]:
    q = AttendanceRecord.query
    if employee_id:
        q = q.filter(AttendanceRecord.employee_id == employee_id)
    if start:
        q = q.filter(AttendanceRecord.work_date >= start)
    if end:
        q = q.filter(AttendanceRecord.work_date <= end)
    return q.order_by(AttendanceRecord.work_date.desc(), AttendanceRecord.employee_id.asc()).all()


def open_record(employee_id: int, work_date: date) -> Optional[AttendanceRecord]:
    rec = AttendanceRecord.query.filter_by(employee_id=employee_id, work_date=work_date).first()
    return rec if rec is not None and rec.is_open else None


def missing_logs(as_of: date) -> List[AttendanceRecord]:
    """Past days that were clocked in but never clocked out."""
    return (
        AttendanceRecord.query
        .filter(
            AttendanceRecord.work_date < as_of,
            AttendanceRecord.time_in.isnot(None),
            AttendanceRecord.time_out.is_(None),
        )
        .order_by(AttendanceRecord.work_date.asc())
        .all()
    )


def _working_days(start: date, end: date, weekend_days) -> List[date]:
    out, d = [], start
    while d <= end:
        if d.weekday() not in weekend_days:
            out.append(d)
        d += timedelta(days=1)
    return out


def _leave_days(employee_id: int, days: List[date]) -> int:
    if not days:
        return 0
    leaves = (
        LeaveRequest.query
        .filter(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status == LV_APPROVED,
            LeaveRequest.leave_type != "UNPAID",
            LeaveRequest.start_date <= days[-1],
        )
        .all()
    )
    covered = set()
    for lv in leaves:
        # an unsettled open leave covers the window through its end
        last = lv.end_date or days[-1]
        covered.update(d for d in days if lv.start_date <= d <= last)
    return len(covered)


def attendance_summary(employee_id: int, start: date, end: date,
                       settings: Optional[PayrollSettings] = None) -> AttendanceSummary:
    if end < start:
        raise ValidationError("end precedes start", payload={"start": start.isoformat(), "end": end.isoformat()})
    _employee(employee_id)
    settings = settings or load_settings()

    records = list_records(employee_id, start, end)
    present = [r for r in records if r.time_in is not None and r.status != STATUS_ABSENT]
    present_days = {r.work_date for r in present}

    workdays = _working_days(start, end, settings.attendance.weekend_days)
    absent_candidates = [d for d in workdays if d not in present_days]
    on_leave = _leave_days(employee_id, absent_candidates)

    ot = (
        OvertimeRequest.query
        .filter(
            OvertimeRequest.employee_id == employee_id,
            OvertimeRequest.status == OT_APPROVED,
            OvertimeRequest.total_hours.isnot(None),
            OvertimeRequest.work_date >= start,
            OvertimeRequest.work_date <= end,
        )
        .all()
    )

    return AttendanceSummary(
        employee_id=employee_id,
        period_start=start,
        period_end=end,
        working_days=len(workdays),
        days_present=len(present_days),
        days_on_leave=on_leave,
        days_absent=max(0, len(absent_candidates) - on_leave),
        total_hours=sum(r.hours_worked or 0 for r in present),
        total_late_minutes=sum(r.late_minutes or 0 for r in present),
        total_overtime_hours=sum(float(o.total_hours) for o in ot),
        overtime_pay=sum(float(o.overtime_pay or 0) for o in ot),
    )
