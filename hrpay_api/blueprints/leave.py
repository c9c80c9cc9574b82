# hrpay_api/blueprints/leave.py
from __future__ import annotations

from datetime import date

from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from hrpay_api.common.http import ok
from hrpay_api.common.auth import current_actor_id
from hrpay_api.common.errors import ValidationError
from hrpay_api.common.parsing import require, require_date, require_int, parse_date
from hrpay_api.services import leave_service

bp = Blueprint("leave", __name__, url_prefix="/api/v1/leave")


@bp.post("")
@jwt_required()
def file_leave():
    d = request.get_json(silent=True) or {}
    require(d, "employee_id", "leave_type", "start_date", "reason")
    lv = leave_service.file_leave(
        require_int(d, "employee_id"),
        d.get("leave_type"),
        require_date(d, "start_date"),
        d.get("reason"),
        end_date=require_date(d, "end_date") if d.get("end_date") else None,
        attachment_url=d.get("attachment_url"),
    )
    return ok(lv.to_dict(), status=201)


@bp.get("")
@jwt_required()
def list_leaves():
    a = request.args
    rows = leave_service.list_leaves(
        employee_id=a.get("employee_id", type=int),
        status=a.get("status"),
        leave_type=a.get("leave_type"),
    )
    return ok([r.to_dict() for r in rows], total=len(rows))


@bp.get("/<int:request_id>")
@jwt_required()
def get_leave(request_id: int):
    return ok(leave_service.get_leave(request_id).to_dict())


@bp.post("/<int:request_id>/approve")
@jwt_required()
def approve(request_id: int):
    d = request.get_json(silent=True) or {}
    return ok(leave_service.approve_leave(request_id, current_actor_id(), d.get("notes")).to_dict())


@bp.post("/<int:request_id>/reject")
@jwt_required()
def reject(request_id: int):
    d = request.get_json(silent=True) or {}
    return ok(leave_service.reject_leave(request_id, current_actor_id(), d.get("notes")).to_dict())


@bp.post("/<int:request_id>/cancel")
@jwt_required()
def cancel(request_id: int):
    return ok(leave_service.cancel_leave(request_id, current_actor_id()).to_dict())


@bp.post("/<int:request_id>/complete")
@jwt_required()
def complete(request_id: int):
    d = request.get_json(silent=True) or {}
    require(d, "end_date")
    lv = leave_service.manual_complete(request_id, require_date(d, "end_date"), current_actor_id())
    return ok(lv.to_dict())


@bp.get("/action-required")
@jwt_required()
def action_required():
    rows = leave_service.action_required()
    return ok([r.to_dict() for r in rows], total=len(rows))


@bp.get("/balance/<int:employee_id>")
@jwt_required()
def balance(employee_id: int):
    year = request.args.get("year", type=int) or date.today().year
    return ok(leave_service.balance(employee_id, year), year=year)


# ---------- credits ----------

@bp.get("/credits/<int:employee_id>")
@jwt_required()
def get_credits(employee_id: int):
    return ok(leave_service.get_credits(employee_id))


@bp.put("/credits/<int:employee_id>")
@jwt_required()
def adjust_credit(employee_id: int):
    d = request.get_json(silent=True) or {}
    require(d, "leave_type", "credits", "reason")
    row = leave_service.adjust_credit(employee_id, d["leave_type"], d["credits"], d["reason"], current_actor_id())
    return ok(row.to_dict())


@bp.put("/credits/<int:employee_id>/bulk")
@jwt_required()
def bulk_adjust(employee_id: int):
    d = request.get_json(silent=True) or {}
    require(d, "adjustments", "reason")
    adjustments = d.get("adjustments")
    if not isinstance(adjustments, list) or not all(isinstance(x, dict) for x in adjustments):
        raise ValidationError("adjustments must be a list of {leave_type, credits}")
    rows = leave_service.bulk_adjust_credits(employee_id, adjustments, d["reason"], current_actor_id())
    return ok([r.to_dict() for r in rows])


@bp.delete("/credits/<int:employee_id>")
@jwt_required()
def reset_credits(employee_id: int):
    n = leave_service.reset_credits(employee_id, current_actor_id())
    return ok({"removed": n})
