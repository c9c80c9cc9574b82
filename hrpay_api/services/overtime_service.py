# hrpay_api/services/overtime_service.py
from __future__ import annotations

from datetime import datetime, date, timedelta
from decimal import Decimal
from typing import Callable, Optional, Tuple, List, Dict, Any
import logging

from sqlalchemy import extract
from sqlalchemy.exc import IntegrityError

from hrpay_api.extensions import db
from hrpay_api.common.errors import (
    ValidationError,
    NotFoundError,
    DuplicateActiveRequest,
    InvalidTransition,
    AlreadySettled,
)
from hrpay_api.common.parsing import ensure_naive
from hrpay_api.models.employee import Employee
from hrpay_api.models.attendance import AttendanceRecord
from hrpay_api.models.overtime import OvertimeRequest, PENDING, APPROVED, REJECTED, CANCELLED
from hrpay_api.services.settings_store import PayrollSettings, load_settings
from hrpay_api.services.payroll_calc import to_money
from hrpay_api.services.settlement_events import SettlementOutcome, SETTLED, NOOP, NEEDS_REVIEW

log = logging.getLogger(__name__)

# (work_date, settings) -> (day_type, multiplier)
DayTypeRule = Callable[[date, PayrollSettings], Tuple[str, float]]


def default_day_type_rule(work_date: date, settings: PayrollSettings) -> Tuple[str, float]:
    """Weekday vs. rest day only. Holidays need a calendar-aware rule."""
    if work_date.weekday() in settings.attendance.weekend_days:
        return "rest_day", settings.overtime.rest_day
    return "weekday", settings.overtime.weekday


def holiday_calendar_rule(holidays) -> DayTypeRule:
    """Rule factory for callers that own a holiday calendar (set of dates)."""
    holidays = frozenset(holidays)

    def rule(work_date: date, settings: PayrollSettings) -> Tuple[str, float]:
        if work_date in holidays and settings.overtime.holiday is not None:
            return "holiday", settings.overtime.holiday
        return default_day_type_rule(work_date, settings)

    return rule


# ---------- helpers ----------

def _get(request_id: int, lock: bool = False) -> OvertimeRequest:
    q = OvertimeRequest.query.filter_by(id=request_id)
    if lock:
        q = q.with_for_update()
    ot = q.first()
    if not ot:
        raise NotFoundError("Overtime request not found", payload={"request_id": request_id})
    return ot


def _active_for_day(employee_id: int, work_date: date, exclude_id: Optional[int] = None):
    q = OvertimeRequest.query.filter_by(employee_id=employee_id, work_date=work_date, is_active=True)
    if exclude_id is not None:
        q = q.filter(OvertimeRequest.id != exclude_id)
    return q.first()


def _require_status(ot: OvertimeRequest, *allowed: str, action: str):
    if ot.status not in allowed:
        db.session.rollback()
        raise InvalidTransition(
            f"Cannot {action} an overtime request in status {ot.status}",
            payload={"request_id": ot.id, "status": ot.status},
        )


def _duration_hours(start: datetime, end: datetime, policy: str) -> float:
    hours = (end - start).total_seconds() / 3600.0
    if hours <= 0 and policy == "next_day":
        hours += 24.0
    return round(hours, 2)


def _apply_settlement(ot: OvertimeRequest, end_time: datetime, hours: float, settings: PayrollSettings,
                      completed_by: Optional[int], source: str) -> None:
    hourly = settings.hourly_rate(ot.employee.basic_salary)
    ot.end_time = end_time
    ot.total_hours = Decimal(str(hours))
    ot.overtime_pay = to_money(hours * hourly * float(ot.overtime_rate))
    ot.is_active = False
    ot.needs_review = False
    ot.review_flag_reason = None
    ot.completed_by = completed_by
    ot.completed_at = datetime.utcnow()
    ot.completion_source = source


# ---------- lifecycle ----------

def file_overtime(employee_id: int, work_date: date, start_time: datetime, reason: str,
                  project_task: Optional[str] = None, settings: Optional[PayrollSettings] = None,
                  day_type_rule: DayTypeRule = default_day_type_rule) -> OvertimeRequest:
    ensure_naive(start_time, "start_time")
    if not (reason or "").strip():
        raise ValidationError("reason is required", payload={"employee_id": employee_id})
    if start_time.date() != work_date:
        raise ValidationError(
            "start_time must fall on the overtime date",
            payload={"employee_id": employee_id, "date": work_date.isoformat(), "start_time": start_time.isoformat()},
        )
    if not db.session.get(Employee, employee_id):
        raise NotFoundError("Employee not found", payload={"employee_id": employee_id})
    if _active_for_day(employee_id, work_date):
        raise DuplicateActiveRequest(
            "An active overtime already exists for this day",
            payload={"employee_id": employee_id, "date": work_date.isoformat()},
        )

    settings = settings or load_settings()
    day_type, multiplier = day_type_rule(work_date, settings)
    ot = OvertimeRequest(
        employee_id=employee_id,
        work_date=work_date,
        start_time=start_time,
        reason=reason.strip(),
        project_task=project_task,
        day_type=day_type,
        overtime_rate=Decimal(str(multiplier)),
        status=PENDING,
        is_active=False,
    )
    db.session.add(ot)
    db.session.commit()
    log.info("overtime filed id=%s employee=%s date=%s rate=%s", ot.id, employee_id, work_date, multiplier)
    return ot


def update_overtime(request_id: int, data: Dict[str, Any], settings: Optional[PayrollSettings] = None,
                    day_type_rule: DayTypeRule = default_day_type_rule) -> OvertimeRequest:
    ot = _get(request_id, lock=True)
    _require_status(ot, PENDING, action="edit")

    if "reason" in data:
        if not (data["reason"] or "").strip():
            raise ValidationError("reason is required", payload={"request_id": request_id})
        ot.reason = data["reason"].strip()
    if "project_task" in data:
        ot.project_task = data["project_task"]
    if "start_time" in data:
        start = data["start_time"]
        ensure_naive(start, "start_time")
        new_date = data.get("date") or start.date()
        if start.date() != new_date:
            raise ValidationError("start_time must fall on the overtime date", payload={"request_id": request_id})
        if new_date != ot.work_date:
            settings = settings or load_settings()
            ot.day_type, mult = day_type_rule(new_date, settings)
            ot.overtime_rate = Decimal(str(mult))
            ot.work_date = new_date
        ot.start_time = start
    db.session.commit()
    return ot


def approve_overtime(request_id: int, reviewer_id: Optional[int], notes: Optional[str] = None) -> OvertimeRequest:
    ot = _get(request_id, lock=True)
    _require_status(ot, PENDING, action="approve")

    other = _active_for_day(ot.employee_id, ot.work_date, exclude_id=ot.id)
    if other:
        db.session.rollback()
        raise DuplicateActiveRequest(
            "Another overtime is already active for this day",
            payload={"employee_id": ot.employee_id, "date": ot.work_date.isoformat(),
                     "request_id": request_id, "active_request_id": other.id},
        )

    ot.status = APPROVED
    ot.is_active = True
    ot.reviewed_by = reviewer_id
    ot.reviewed_at = datetime.utcnow()
    ot.review_notes = notes
    try:
        db.session.commit()
    except IntegrityError:
        # lost the race on uq_overtime_active_day
        db.session.rollback()
        raise DuplicateActiveRequest(
            "Another overtime is already active for this day",
            payload={"employee_id": ot.employee_id, "date": ot.work_date.isoformat(), "request_id": request_id},
        )
    log.info("overtime approved id=%s by=%s", request_id, reviewer_id)

    # backdated approval: the day may already be closed, so settle against it now
    rec = AttendanceRecord.query.filter_by(employee_id=ot.employee_id, work_date=ot.work_date).first()
    if rec is not None and rec.time_out is not None:
        on_clock_out(ot.employee_id, rec.time_out)
        db.session.refresh(ot)
    return ot


def reject_overtime(request_id: int, reviewer_id: Optional[int], notes: Optional[str]) -> OvertimeRequest:
    if not (notes or "").strip():
        raise ValidationError("Rejection notes are required", payload={"request_id": request_id})
    ot = _get(request_id, lock=True)
    _require_status(ot, PENDING, action="reject")
    ot.status = REJECTED
    ot.is_active = False
    ot.reviewed_by = reviewer_id
    ot.reviewed_at = datetime.utcnow()
    ot.review_notes = notes.strip()
    db.session.commit()
    log.info("overtime rejected id=%s by=%s", request_id, reviewer_id)
    return ot


def cancel_overtime(request_id: int, actor_id: Optional[int] = None) -> OvertimeRequest:
    ot = _get(request_id, lock=True)
    _require_status(ot, PENDING, action="cancel")
    ot.status = CANCELLED
    ot.is_active = False
    db.session.commit()
    log.info("overtime cancelled id=%s by=%s", request_id, actor_id)
    return ot


# ---------- settlement ----------

def on_clock_out(employee_id: int, ts: datetime, settings: Optional[PayrollSettings] = None) -> SettlementOutcome:
    """
    Settle the active overtime for (employee, date of ts). Re-running against a
    completed request is a no-op. Non-positive durations are routed to review.
    """
    ensure_naive(ts, "timestamp")
    ot = (
        OvertimeRequest.query
        .filter_by(employee_id=employee_id, work_date=ts.date(), is_active=True)
        .with_for_update()
        .first()
    )
    if ot is None or ot.is_completed:
        db.session.rollback()
        return SettlementOutcome(NOOP, detail={"employee_id": employee_id, "date": ts.date().isoformat()})

    settings = settings or load_settings()
    hours = _duration_hours(ot.start_time, ts, settings.overtime_cross_midnight)
    if hours <= 0:
        ot.needs_review = True
        ot.review_flag_reason = (
            f"clock-out {ts.isoformat()} is not after overtime start {ot.start_time.isoformat()}"
        )
        db.session.commit()
        log.warning("overtime %s flagged for review: %s", ot.id, ot.review_flag_reason)
        return SettlementOutcome(NEEDS_REVIEW, ot.id, {"reason": ot.review_flag_reason, "hours": hours})

    _apply_settlement(ot, ts, hours, settings, completed_by=None, source="auto")
    db.session.commit()
    log.info("overtime settled id=%s hours=%s pay=%s", ot.id, ot.total_hours, ot.overtime_pay)
    return SettlementOutcome(SETTLED, ot.id, {"total_hours": hours, "overtime_pay": float(ot.overtime_pay)})


def manual_complete(request_id: int, end_time: datetime, completed_by: Optional[int],
                    settings: Optional[PayrollSettings] = None) -> OvertimeRequest:
    ensure_naive(end_time, "end_time")
    ot = _get(request_id, lock=True)
    if ot.is_completed:
        db.session.rollback()
        raise AlreadySettled("Overtime already completed", payload={"request_id": request_id})
    _require_status(ot, APPROVED, action="complete")

    settings = settings or load_settings()
    hours = _duration_hours(ot.start_time, end_time, settings.overtime_cross_midnight)
    if hours <= 0:
        db.session.rollback()
        raise ValidationError(
            "end_time must be after the overtime start",
            payload={"request_id": request_id, "start_time": ot.start_time.isoformat(),
                     "end_time": end_time.isoformat()},
        )
    _apply_settlement(ot, end_time, hours, settings, completed_by=completed_by, source="manual")
    db.session.commit()
    log.info("overtime manually completed id=%s by=%s hours=%s", request_id, completed_by, hours)
    return ot


# ---------- queries ----------

def get_overtime(request_id: int) -> OvertimeRequest:
    return _get(request_id)


def list_overtime(employee_id: Optional[int] = None, status: Optional[str] = None,
                  start: Optional[date] = None, end: Optional[date] = None) -> List[OvertimeRequest]:
    q = OvertimeRequest.query
    if employee_id:
        q = q.filter(OvertimeRequest.employee_id == employee_id)
    if status:
        q = q.filter(OvertimeRequest.status == status.upper())
    if start:
        q = q.filter(OvertimeRequest.work_date >= start)
    if end:
        q = q.filter(OvertimeRequest.work_date <= end)
    return q.order_by(OvertimeRequest.work_date.desc(), OvertimeRequest.id.desc()).all()


def monthly_summary(employee_id: int, year: int, month: int) -> Dict[str, Any]:
    rows = (
        OvertimeRequest.query
        .filter(
            OvertimeRequest.employee_id == employee_id,
            OvertimeRequest.status == APPROVED,
            OvertimeRequest.total_hours.isnot(None),
            extract("year", OvertimeRequest.work_date) == year,
            extract("month", OvertimeRequest.work_date) == month,
        )
        .order_by(OvertimeRequest.work_date.asc())
        .all()
    )
    return {
        "employee_id": employee_id,
        "year": year,
        "month": month,
        "count": len(rows),
        "total_hours": round(sum(float(r.total_hours) for r in rows), 2),
        "total_pay": round(sum(float(r.overtime_pay or 0) for r in rows), 2),
        "requests": [r.to_dict() for r in rows],
    }


def action_required() -> List[OvertimeRequest]:
    """Approved overtime still waiting on a clock-out, plus anything flagged for review."""
    return (
        OvertimeRequest.query
        .filter(
            OvertimeRequest.status == APPROVED,
            OvertimeRequest.total_hours.is_(None),
        )
        .order_by(OvertimeRequest.needs_review.desc(), OvertimeRequest.work_date.asc())
        .all()
    )
