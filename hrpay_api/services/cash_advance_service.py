# hrpay_api/services/cash_advance_service.py
from __future__ import annotations

from datetime import datetime, date, time
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any
import logging

from hrpay_api.extensions import db
from hrpay_api.common.errors import ValidationError, NotFoundError, InvalidTransition, StateConflict
from hrpay_api.common.parsing import ensure_naive
from hrpay_api.models.employee import Employee
from hrpay_api.models.cash_advance import CashAdvanceRequest
from hrpay_api.services.settings_store import PayrollSettings, load_settings

log = logging.getLogger(__name__)

PENDING = "PENDING"
APPROVED = "APPROVED"
REJECTED = "REJECTED"
CANCELLED = "CANCELLED"

GATES = ("manager", "admin")


def _get(request_id: int, lock: bool = False) -> CashAdvanceRequest:
    q = CashAdvanceRequest.query.filter_by(id=request_id)
    if lock:
        q = q.with_for_update()
    ca = q.first()
    if not ca:
        raise NotFoundError("Cash advance request not found", payload={"request_id": request_id})
    return ca


def _pending(ca: CashAdvanceRequest, action: str):
    if ca.status != PENDING:
        db.session.rollback()
        raise InvalidTransition(f"Cannot {action} a cash advance in status {ca.status}",
                                payload={"request_id": ca.id, "status": ca.status})


def file_advance(employee_id: int, amount, reason: str, repayment_plan: str,
                 settings: Optional[PayrollSettings] = None) -> CashAdvanceRequest:
    if not (reason or "").strip() or not (repayment_plan or "").strip():
        raise ValidationError("reason and repayment_plan are required", payload={"employee_id": employee_id})
    try:
        amt = Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError("amount must be a number", payload={"employee_id": employee_id, "amount": amount})
    if amt <= 0:
        raise ValidationError("Amount must be greater than 0", payload={"employee_id": employee_id, "amount": amount})

    emp = db.session.get(Employee, employee_id)
    if not emp:
        raise NotFoundError("Employee not found", payload={"employee_id": employee_id})

    settings = settings or load_settings()
    cap = Decimal(str(emp.basic_salary or 0)) * Decimal(str(settings.cash_advance_max_ratio))
    if amt > cap:
        raise ValidationError(
            f"Amount exceeds maximum allowed ({cap:.2f})",
            payload={"employee_id": employee_id, "amount": float(amt), "max_allowed": float(cap)},
        )

    outstanding = (
        CashAdvanceRequest.query
        .filter_by(employee_id=employee_id, status=APPROVED, is_fully_repaid=False)
        .first()
    )
    if outstanding:
        raise StateConflict(
            "Employee has an outstanding cash advance",
            code="OUTSTANDING_ADVANCE",
            payload={"employee_id": employee_id, "request_id": outstanding.id,
                     "remaining_balance": float(outstanding.remaining_balance or 0)},
        )

    ca = CashAdvanceRequest(
        employee_id=employee_id,
        amount=amt,
        reason=reason.strip(),
        repayment_plan=repayment_plan.strip(),
        status=PENDING,
        manager_approval=PENDING,
        admin_approval=PENDING,
        remaining_balance=0,
    )
    db.session.add(ca)
    db.session.commit()
    log.info("cash advance filed id=%s employee=%s amount=%s", ca.id, employee_id, amt)
    return ca


def review(request_id: int, gate: str, approve: bool, reviewer_id: Optional[int],
           notes: Optional[str] = None) -> CashAdvanceRequest:
    """
    One gate decision. Admin approval needs the manager gate approved first;
    either gate rejecting rejects the request.
    """
    if gate not in GATES:
        raise ValidationError("gate must be 'manager' or 'admin'", payload={"gate": gate})
    if not approve and not (notes or "").strip():
        raise ValidationError("Review notes are required for rejection", payload={"request_id": request_id})

    ca = _get(request_id, lock=True)
    _pending(ca, "review")
    current = ca.manager_approval if gate == "manager" else ca.admin_approval
    if current != PENDING:
        db.session.rollback()
        raise InvalidTransition(f"{gate} approval already processed",
                                payload={"request_id": request_id, "gate": gate, "decision": current})
    if gate == "admin" and approve and ca.manager_approval != APPROVED:
        db.session.rollback()
        raise InvalidTransition("Manager approval required first", payload={"request_id": request_id})

    decision = APPROVED if approve else REJECTED
    now = datetime.utcnow()
    if gate == "manager":
        ca.manager_approval, ca.manager_id, ca.manager_at, ca.manager_notes = decision, reviewer_id, now, notes
    else:
        ca.admin_approval, ca.admin_id, ca.admin_at, ca.admin_notes = decision, reviewer_id, now, notes

    if decision == REJECTED:
        ca.status = REJECTED
    elif ca.manager_approval == APPROVED and ca.admin_approval == APPROVED:
        ca.status = APPROVED
        ca.remaining_balance = ca.amount
    db.session.commit()
    log.info("cash advance %s %s by %s (%s)", request_id, decision.lower(), gate, reviewer_id)
    return ca


def cancel_advance(request_id: int, actor_id: Optional[int] = None) -> CashAdvanceRequest:
    ca = _get(request_id, lock=True)
    _pending(ca, "cancel")
    ca.status = CANCELLED
    db.session.commit()
    log.info("cash advance cancelled id=%s by=%s", request_id, actor_id)
    return ca


def disburse(request_id: int, actor_id: Optional[int], when: Optional[datetime] = None) -> CashAdvanceRequest:
    ensure_naive(when, "disbursed_at")
    ca = _get(request_id, lock=True)
    if ca.status != APPROVED:
        db.session.rollback()
        raise InvalidTransition("Request must be approved first", payload={"request_id": request_id, "status": ca.status})
    if ca.is_disbursed:
        db.session.rollback()
        raise InvalidTransition("Cash advance already disbursed", payload={"request_id": request_id})
    ca.is_disbursed = True
    ca.disbursed_at = when or datetime.utcnow()
    ca.disbursed_by = actor_id
    db.session.commit()
    log.info("cash advance disbursed id=%s by=%s", request_id, actor_id)
    return ca


def eligible_advances(employee_id: int, start: date, end: date) -> List[CashAdvanceRequest]:
    """Approved at both gates, disbursed, disbursed inside [start, end], not yet repaid."""
    lo = datetime.combine(start, time.min)
    hi = datetime.combine(end, time.max)
    return (
        CashAdvanceRequest.query
        .filter(
            CashAdvanceRequest.employee_id == employee_id,
            CashAdvanceRequest.status == APPROVED,
            CashAdvanceRequest.manager_approval == APPROVED,
            CashAdvanceRequest.admin_approval == APPROVED,
            CashAdvanceRequest.is_disbursed.is_(True),
            CashAdvanceRequest.is_fully_repaid.is_(False),
            CashAdvanceRequest.disbursed_at >= lo,
            CashAdvanceRequest.disbursed_at <= hi,
        )
        .order_by(CashAdvanceRequest.id.asc())
        .all()
    )


def eligible_total(employee_id: int, start: date, end: date) -> float:
    return float(sum(Decimal(str(a.remaining_balance)) for a in eligible_advances(employee_id, start, end)))


def apply_repayments(recovered: List[List[Any]]) -> None:
    """
    Reduce remaining balances by [[advance_id, amount], ...] recovered in a
    payroll run. Called inside the finalize transaction; does not commit.
    """
    if not recovered:
        return
    by_id: Dict[int, Decimal] = {}
    for aid, amt in recovered:
        by_id[aid] = by_id.get(aid, Decimal("0")) + Decimal(str(amt))
    for ca in CashAdvanceRequest.query.filter(CashAdvanceRequest.id.in_(list(by_id))).all():
        left = Decimal(str(ca.remaining_balance or 0)) - by_id[ca.id]
        ca.remaining_balance = max(left, Decimal("0"))
        ca.is_fully_repaid = ca.remaining_balance == 0
        if not ca.is_fully_repaid:
            log.warning("cash advance %s partly recovered, %s outstanding", ca.id, ca.remaining_balance)


def outstanding_balance(employee_id: int) -> Dict[str, Any]:
    rows = CashAdvanceRequest.query.filter_by(employee_id=employee_id, status=APPROVED, is_fully_repaid=False).all()
    return {
        "employee_id": employee_id,
        "total_outstanding": float(sum(Decimal(str(r.remaining_balance or 0)) for r in rows)),
        "active_advances": len(rows),
        "advances": [r.to_dict() for r in rows],
    }


def list_advances(employee_id: Optional[int] = None, status: Optional[str] = None,
                  manager_approval: Optional[str] = None, admin_approval: Optional[str] = None):
    q = CashAdvanceRequest.query
    if employee_id:
        q = q.filter(CashAdvanceRequest.employee_id == employee_id)
    if status:
        q = q.filter(CashAdvanceRequest.status == status.upper())
    if manager_approval:
        q = q.filter(CashAdvanceRequest.manager_approval == manager_approval.upper())
    if admin_approval:
        q = q.filter(CashAdvanceRequest.admin_approval == admin_approval.upper())
    return q.order_by(CashAdvanceRequest.created_at.desc(), CashAdvanceRequest.id.desc()).all()


def get_advance(request_id: int) -> CashAdvanceRequest:
    return _get(request_id)
