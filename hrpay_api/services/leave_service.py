# hrpay_api/services/leave_service.py
from __future__ import annotations

from datetime import datetime, date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any
import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from hrpay_api.extensions import db
from hrpay_api.common.errors import (
    ValidationError,
    NotFoundError,
    DuplicateActiveRequest,
    InvalidTransition,
    AlreadySettled,
)
from hrpay_api.models.employee import Employee
from hrpay_api.models.attendance import AttendanceRecord
from hrpay_api.models.leave import (
    LeaveRequest,
    LeaveCredit,
    LEAVE_TYPES,
    DEFAULT_ENTITLEMENTS,
    PENDING,
    APPROVED,
    REJECTED,
    CANCELLED,
)
from hrpay_api.services.settlement_events import SettlementOutcome, SETTLED, NOOP, NEEDS_REVIEW

log = logging.getLogger(__name__)


def inclusive_days(start: date, end: date) -> int:
    return (end - start).days + 1


# ---------- helpers ----------

def _employee(employee_id: int) -> Employee:
    emp = db.session.get(Employee, employee_id)
    if not emp:
        raise NotFoundError("Employee not found", payload={"employee_id": employee_id})
    return emp


def _get(request_id: int, lock: bool = False) -> LeaveRequest:
    q = LeaveRequest.query.filter_by(id=request_id)
    if lock:
        q = q.with_for_update()
    lv = q.first()
    if not lv:
        raise NotFoundError("Leave request not found", payload={"request_id": request_id})
    return lv


def _leave_type(value) -> str:
    lt = (value or "").strip().upper()
    if lt not in LEAVE_TYPES:
        raise ValidationError("Unknown leave type", payload={"leave_type": value, "allowed": list(LEAVE_TYPES)})
    return lt


def _require_status(lv: LeaveRequest, *allowed: str, action: str):
    if lv.status not in allowed:
        db.session.rollback()
        raise InvalidTransition(
            f"Cannot {action} a leave request in status {lv.status}",
            payload={"request_id": lv.id, "status": lv.status},
        )


def _open_leave(employee_id: int, exclude_id: Optional[int] = None):
    """A pending or active leave with no end date blocks another open filing."""
    q = LeaveRequest.query.filter(
        LeaveRequest.employee_id == employee_id,
        LeaveRequest.end_date.is_(None),
        or_(LeaveRequest.status == PENDING, LeaveRequest.is_active.is_(True)),
    )
    if exclude_id is not None:
        q = q.filter(LeaveRequest.id != exclude_id)
    return q.first()


def _settle(lv: LeaveRequest, end_date: date, settled_by: Optional[int], source: str) -> None:
    lv.end_date = end_date
    lv.total_days = Decimal(inclusive_days(lv.start_date, end_date))
    lv.is_active = False
    lv.needs_review = False
    lv.review_flag_reason = None
    lv.settled_by = settled_by
    lv.settled_at = datetime.utcnow()
    lv.settlement_source = source


# ---------- lifecycle ----------

def file_leave(employee_id: int, leave_type: str, start_date: date, reason: str,
               end_date: Optional[date] = None, attachment_url: Optional[str] = None) -> LeaveRequest:
    lt = _leave_type(leave_type)
    if not (reason or "").strip():
        raise ValidationError("reason is required", payload={"employee_id": employee_id})
    if end_date is not None and end_date < start_date:
        raise ValidationError(
            "end_date precedes start_date",
            payload={"employee_id": employee_id, "start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
    _employee(employee_id)
    if end_date is None:
        other = _open_leave(employee_id)
        if other:
            raise DuplicateActiveRequest(
                "An open leave is already pending or active",
                payload={"employee_id": employee_id, "request_id": other.id},
            )

    lv = LeaveRequest(
        employee_id=employee_id,
        leave_type=lt,
        start_date=start_date,
        end_date=end_date,
        total_days=Decimal(inclusive_days(start_date, end_date)) if end_date else None,
        reason=reason.strip(),
        attachment_url=attachment_url,
        status=PENDING,
        is_active=False,
    )
    db.session.add(lv)
    db.session.commit()
    log.info("leave filed id=%s employee=%s type=%s start=%s open=%s", lv.id, employee_id, lt, start_date, end_date is None)
    return lv


def approve_leave(request_id: int, reviewer_id: Optional[int], notes: Optional[str] = None) -> LeaveRequest:
    lv = _get(request_id, lock=True)
    _require_status(lv, PENDING, action="approve")

    is_open = lv.end_date is None
    if is_open:
        other = (
            LeaveRequest.query
            .filter(LeaveRequest.employee_id == lv.employee_id,
                    LeaveRequest.is_active.is_(True),
                    LeaveRequest.id != lv.id)
            .first()
        )
        if other:
            db.session.rollback()
            raise DuplicateActiveRequest(
                "Another leave is already active for this employee",
                payload={"employee_id": lv.employee_id, "request_id": request_id, "active_request_id": other.id},
            )

    lv.status = APPROVED
    lv.is_active = is_open
    lv.reviewed_by = reviewer_id
    lv.reviewed_at = datetime.utcnow()
    lv.review_notes = notes
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateActiveRequest(
            "Another leave is already active for this employee",
            payload={"employee_id": lv.employee_id, "request_id": request_id},
        )
    log.info("leave approved id=%s by=%s open=%s", request_id, reviewer_id, is_open)

    if is_open:
        # backdated approval: the employee may already be back at work
        back = (
            AttendanceRecord.query
            .filter(AttendanceRecord.employee_id == lv.employee_id,
                    AttendanceRecord.work_date > lv.start_date,
                    AttendanceRecord.time_in.isnot(None))
            .order_by(AttendanceRecord.work_date.asc())
            .first()
        )
        if back is not None:
            on_clock_in(lv.employee_id, back.time_in)
            db.session.refresh(lv)
    return lv


def reject_leave(request_id: int, reviewer_id: Optional[int], notes: Optional[str]) -> LeaveRequest:
    if not (notes or "").strip():
        raise ValidationError("Rejection notes are required", payload={"request_id": request_id})
    lv = _get(request_id, lock=True)
    _require_status(lv, PENDING, action="reject")
    lv.status = REJECTED
    lv.is_active = False
    lv.reviewed_by = reviewer_id
    lv.reviewed_at = datetime.utcnow()
    lv.review_notes = notes.strip()
    db.session.commit()
    log.info("leave rejected id=%s by=%s", request_id, reviewer_id)
    return lv


def cancel_leave(request_id: int, actor_id: Optional[int] = None) -> LeaveRequest:
    lv = _get(request_id, lock=True)
    _require_status(lv, PENDING, action="cancel")
    lv.status = CANCELLED
    lv.is_active = False
    db.session.commit()
    log.info("leave cancelled id=%s by=%s", request_id, actor_id)
    return lv


# ---------- settlement ----------

def on_clock_in(employee_id: int, ts: datetime) -> SettlementOutcome:
    """
    Close the employee's active open leave: end_date is the day before the
    clock-in. A clock-in on the leave's own start date is an anomaly and is
    flagged for review instead.
    """
    day = ts.date()
    lv = (
        LeaveRequest.query
        .filter(LeaveRequest.employee_id == employee_id,
                LeaveRequest.is_active.is_(True),
                LeaveRequest.start_date <= day)
        .with_for_update()
        .first()
    )
    if lv is None or lv.is_settled:
        db.session.rollback()
        return SettlementOutcome(NOOP, detail={"employee_id": employee_id, "date": day.isoformat()})

    if day <= lv.start_date:
        lv.needs_review = True
        lv.review_flag_reason = f"clock-in on {day.isoformat()} is not after leave start {lv.start_date.isoformat()}"
        db.session.commit()
        log.warning("leave %s flagged for review: %s", lv.id, lv.review_flag_reason)
        return SettlementOutcome(NEEDS_REVIEW, lv.id, {"reason": lv.review_flag_reason})

    _settle(lv, day - timedelta(days=1), settled_by=None, source="auto")
    db.session.commit()
    log.info("leave settled id=%s end=%s days=%s", lv.id, lv.end_date, lv.total_days)
    return SettlementOutcome(SETTLED, lv.id, {"end_date": lv.end_date.isoformat(), "total_days": float(lv.total_days)})


def manual_complete(request_id: int, end_date: date, settled_by: Optional[int]) -> LeaveRequest:
    lv = _get(request_id, lock=True)
    if lv.is_settled:
        db.session.rollback()
        raise AlreadySettled("Leave already settled", payload={"request_id": request_id})
    _require_status(lv, APPROVED, action="complete")
    if end_date < lv.start_date:
        db.session.rollback()
        raise ValidationError(
            "end_date precedes the leave start",
            payload={"request_id": request_id, "start_date": lv.start_date.isoformat(), "end_date": end_date.isoformat()},
        )
    _settle(lv, end_date, settled_by=settled_by, source="manual")
    db.session.commit()
    log.info("leave manually completed id=%s by=%s end=%s", request_id, settled_by, end_date)
    return lv


# ---------- queries ----------

def get_leave(request_id: int) -> LeaveRequest:
    return _get(request_id)


def list_leaves(employee_id: Optional[int] = None, status: Optional[str] = None,
                leave_type: Optional[str] = None) -> List[LeaveRequest]:
    q = LeaveRequest.query
    if employee_id:
        q = q.filter(LeaveRequest.employee_id == employee_id)
    if status:
        q = q.filter(LeaveRequest.status == status.upper())
    if leave_type:
        q = q.filter(LeaveRequest.leave_type == _leave_type(leave_type))
    return q.order_by(LeaveRequest.start_date.desc(), LeaveRequest.id.desc()).all()


def action_required() -> List[LeaveRequest]:
    return (
        LeaveRequest.query
        .filter(LeaveRequest.status == APPROVED, LeaveRequest.end_date.is_(None))
        .order_by(LeaveRequest.needs_review.desc(), LeaveRequest.start_date.asc())
        .all()
    )


# ---------- credits ----------

def get_credits(employee_id: int) -> List[Dict[str, Any]]:
    """Defaults merged with per-employee overrides."""
    _employee(employee_id)
    overrides = {c.leave_type: c for c in LeaveCredit.query.filter_by(employee_id=employee_id).all()}
    out = []
    for lt in LEAVE_TYPES:
        c = overrides.get(lt)
        out.append({
            "leave_type": lt,
            "credits": float(c.credits) if c else float(DEFAULT_ENTITLEMENTS[lt]),
            "default": float(DEFAULT_ENTITLEMENTS[lt]),
            "is_custom": c is not None,
            "reason": c.reason if c else None,
            "adjusted_by": c.adjusted_by if c else None,
            "adjusted_at": c.adjusted_at.isoformat() if c and c.adjusted_at else None,
        })
    return out


def _upsert_credit(employee_id: int, leave_type: str, credits, reason: str, actor_id: Optional[int]) -> LeaveCredit:
    lt = _leave_type(leave_type)
    try:
        amount = Decimal(str(credits))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError("credits must be a number", payload={"leave_type": lt, "credits": credits})
    if amount < 0:
        raise ValidationError("credits cannot be negative", payload={"leave_type": lt, "credits": credits})

    row = LeaveCredit.query.filter_by(employee_id=employee_id, leave_type=lt).first()
    if row is None:
        row = LeaveCredit(employee_id=employee_id, leave_type=lt)
        db.session.add(row)
    row.credits = amount
    row.reason = reason
    row.adjusted_by = actor_id
    row.adjusted_at = datetime.utcnow()
    return row


def adjust_credit(employee_id: int, leave_type: str, credits, reason: str, actor_id: Optional[int]) -> LeaveCredit:
    if not (reason or "").strip():
        raise ValidationError("An adjustment reason is required", payload={"employee_id": employee_id})
    _employee(employee_id)
    row = _upsert_credit(employee_id, leave_type, credits, reason.strip(), actor_id)
    db.session.commit()
    log.info("leave credit employee=%s type=%s -> %s by=%s", employee_id, row.leave_type, row.credits, actor_id)
    return row


def bulk_adjust_credits(employee_id: int, adjustments: List[Dict[str, Any]], reason: str,
                        actor_id: Optional[int]) -> List[LeaveCredit]:
    """All or nothing: one bad entry rejects the whole set."""
    if not (reason or "").strip():
        raise ValidationError("An adjustment reason is required", payload={"employee_id": employee_id})
    if not adjustments:
        raise ValidationError("adjustments cannot be empty", payload={"employee_id": employee_id})
    _employee(employee_id)
    rows = []
    try:
        for adj in adjustments:
            rows.append(_upsert_credit(employee_id, adj.get("leave_type"), adj.get("credits"), reason.strip(), actor_id))
    except ValidationError:
        db.session.rollback()
        raise
    db.session.commit()
    log.info("leave credits bulk-adjusted employee=%s count=%s by=%s", employee_id, len(rows), actor_id)
    return rows


def reset_credits(employee_id: int, actor_id: Optional[int] = None) -> int:
    _employee(employee_id)
    n = LeaveCredit.query.filter_by(employee_id=employee_id).delete()
    db.session.commit()
    log.info("leave credits reset employee=%s removed=%s by=%s", employee_id, n, actor_id)
    return n


def balance(employee_id: int, year: int) -> List[Dict[str, Any]]:
    """Entitlement minus approved days that fall in the given year."""
    y0, y1 = date(year, 1, 1), date(year, 12, 31)
    used: Dict[str, float] = {}
    for lv in LeaveRequest.query.filter(
        LeaveRequest.employee_id == employee_id,
        LeaveRequest.status == APPROVED,
        LeaveRequest.start_date <= y1,
    ).all():
        if lv.end_date is None or lv.end_date < y0:
            continue
        days = inclusive_days(max(lv.start_date, y0), min(lv.end_date, y1))
        used[lv.leave_type] = used.get(lv.leave_type, 0) + days

    out = []
    for c in get_credits(employee_id):
        u = used.get(c["leave_type"], 0)
        out.append({
            "leave_type": c["leave_type"],
            "entitlement": c["credits"],
            "used": u,
            "remaining": c["credits"] - u,
            "is_custom": c["is_custom"],
        })
    return out
