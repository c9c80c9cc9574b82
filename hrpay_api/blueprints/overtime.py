# hrpay_api/blueprints/overtime.py
from __future__ import annotations

from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from hrpay_api.common.http import ok
from hrpay_api.common.auth import current_actor_id
from hrpay_api.common.parsing import require, require_date, require_int, require_ts, parse_date, parse_ts
from hrpay_api.services import overtime_service

bp = Blueprint("overtime", __name__, url_prefix="/api/v1/overtime")


@bp.post("")
@jwt_required()
def file_overtime():
    d = request.get_json(silent=True) or {}
    require(d, "employee_id", "date", "start_time", "reason")
    ot = overtime_service.file_overtime(
        require_int(d, "employee_id"),
        require_date(d, "date"),
        require_ts(d, "start_time"),
        d.get("reason"),
        project_task=d.get("project_task"),
    )
    return ok(ot.to_dict(), status=201)


@bp.get("")
@jwt_required()
def list_overtime():
    a = request.args
    rows = overtime_service.list_overtime(
        employee_id=a.get("employee_id", type=int),
        status=a.get("status"),
        start=parse_date(a.get("from")),
        end=parse_date(a.get("to")),
    )
    return ok([r.to_dict() for r in rows], total=len(rows))


@bp.get("/<int:request_id>")
@jwt_required()
def get_overtime(request_id: int):
    return ok(overtime_service.get_overtime(request_id).to_dict())


@bp.patch("/<int:request_id>")
@jwt_required()
def update_overtime(request_id: int):
    d = request.get_json(silent=True) or {}
    data = {k: d[k] for k in ("reason", "project_task") if k in d}
    if d.get("start_time"):
        data["start_time"] = require_ts(d, "start_time")
    if d.get("date"):
        data["date"] = require_date(d, "date")
    return ok(overtime_service.update_overtime(request_id, data).to_dict())


@bp.post("/<int:request_id>/approve")
@jwt_required()
def approve(request_id: int):
    d = request.get_json(silent=True) or {}
    ot = overtime_service.approve_overtime(request_id, current_actor_id(), d.get("notes"))
    return ok(ot.to_dict())


@bp.post("/<int:request_id>/reject")
@jwt_required()
def reject(request_id: int):
    d = request.get_json(silent=True) or {}
    ot = overtime_service.reject_overtime(request_id, current_actor_id(), d.get("notes"))
    return ok(ot.to_dict())


@bp.post("/<int:request_id>/cancel")
@jwt_required()
def cancel(request_id: int):
    return ok(overtime_service.cancel_overtime(request_id, current_actor_id()).to_dict())


@bp.post("/<int:request_id>/complete")
@jwt_required()
def complete(request_id: int):
    d = request.get_json(silent=True) or {}
    require(d, "end_time")
    ot = overtime_service.manual_complete(request_id, require_ts(d, "end_time"), current_actor_id())
    return ok(ot.to_dict())


@bp.get("/action-required")
@jwt_required()
def action_required():
    rows = overtime_service.action_required()
    return ok([r.to_dict() for r in rows], total=len(rows))


@bp.get("/summary")
@jwt_required()
def monthly_summary():
    a = request.args
    require(a, "employee_id", "year", "month")
    return ok(overtime_service.monthly_summary(
        a.get("employee_id", type=int), a.get("year", type=int), a.get("month", type=int)
    ))
