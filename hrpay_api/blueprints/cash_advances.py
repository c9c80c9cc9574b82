# hrpay_api/blueprints/cash_advances.py
from __future__ import annotations

from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from hrpay_api.common.http import ok, fail
from hrpay_api.common.auth import current_actor_id
from hrpay_api.common.parsing import require, require_date, require_int, parse_ts
from hrpay_api.services import cash_advance_service

bp = Blueprint("cash_advances", __name__, url_prefix="/api/v1/cash-advances")


@bp.post("")
@jwt_required()
def file_advance():
    d = request.get_json(silent=True) or {}
    require(d, "employee_id", "amount", "reason", "repayment_plan")
    ca = cash_advance_service.file_advance(require_int(d, "employee_id"), d["amount"], d["reason"], d["repayment_plan"])
    return ok(ca.to_dict(), status=201)


@bp.get("")
@jwt_required()
def list_advances():
    a = request.args
    rows = cash_advance_service.list_advances(
        employee_id=a.get("employee_id", type=int),
        status=a.get("status"),
        manager_approval=a.get("manager_approval"),
        admin_approval=a.get("admin_approval"),
    )
    return ok([r.to_dict() for r in rows], total=len(rows))


@bp.get("/<int:request_id>")
@jwt_required()
def get_advance(request_id: int):
    return ok(cash_advance_service.get_advance(request_id).to_dict())


@bp.post("/<int:request_id>/<gate>/<decision>")
@jwt_required()
def review(request_id: int, gate: str, decision: str):
    """gate: manager|admin, decision: approve|reject"""
    d = request.get_json(silent=True) or {}
    approve = decision == "approve"
    if decision not in ("approve", "reject"):
        return fail("Unknown decision", status=404)
    ca = cash_advance_service.review(request_id, gate, approve, current_actor_id(), d.get("notes"))
    return ok(ca.to_dict())


@bp.post("/<int:request_id>/cancel")
@jwt_required()
def cancel(request_id: int):
    return ok(cash_advance_service.cancel_advance(request_id, current_actor_id()).to_dict())


@bp.post("/<int:request_id>/disburse")
@jwt_required()
def disburse(request_id: int):
    d = request.get_json(silent=True) or {}
    ca = cash_advance_service.disburse(request_id, current_actor_id(), when=parse_ts(d.get("disbursed_at")))
    return ok(ca.to_dict())


@bp.get("/outstanding/<int:employee_id>")
@jwt_required()
def outstanding(employee_id: int):
    return ok(cash_advance_service.outstanding_balance(employee_id))


@bp.get("/eligible")
@jwt_required()
def eligible():
    a = request.args
    require(a, "employee_id", "from", "to")
    eid = a.get("employee_id", type=int)
    start, end = require_date(a, "from"), require_date(a, "to")
    return ok({
        "employee_id": eid,
        "period_start": start.isoformat(),
        "period_end": end.isoformat(),
        "eligible_total": cash_advance_service.eligible_total(eid, start, end),
    })
