# hrpay_api/blueprints/attendance.py
from __future__ import annotations

from datetime import date, datetime

from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from hrpay_api.common.http import ok
from hrpay_api.common.parsing import require, require_int, require_ts, require_date, parse_date, parse_ts
from hrpay_api.services import attendance_ledger

bp = Blueprint("attendance", __name__, url_prefix="/api/v1/attendance")


@bp.post("/clock-in")
@jwt_required()
def clock_in():
    d = request.get_json(silent=True) or {}
    require(d, "employee_id")
    ts = require_ts(d, "timestamp") if d.get("timestamp") else datetime.now()
    res = attendance_ledger.clock_in(require_int(d, "employee_id"), ts)
    return ok(res.to_dict(), status=201)


@bp.post("/clock-out")
@jwt_required()
def clock_out():
    d = request.get_json(silent=True) or {}
    require(d, "employee_id")
    ts = require_ts(d, "timestamp") if d.get("timestamp") else datetime.now()
    res = attendance_ledger.clock_out(require_int(d, "employee_id"), ts)
    return ok(res.to_dict())


@bp.post("/manual")
@jwt_required()
def manual_entry():
    d = request.get_json(silent=True) or {}
    require(d, "employee_id", "date")
    rec = attendance_ledger.record_manual_attendance(
        require_int(d, "employee_id"),
        require_date(d, "date"),
        parse_ts(d.get("time_in")),
        parse_ts(d.get("time_out")),
        status=(d.get("status") or None),
    )
    return ok(rec.to_dict())


@bp.get("")
@jwt_required()
def list_records():
    a = request.args
    rows = attendance_ledger.list_records(
        employee_id=a.get("employee_id", type=int),
        start=parse_date(a.get("from")),
        end=parse_date(a.get("to")),
    )
    return ok([r.to_dict() for r in rows], total=len(rows))


@bp.get("/summary")
@jwt_required()
def summary():
    a = request.args
    require(a, "employee_id", "from", "to")
    s = attendance_ledger.attendance_summary(
        a.get("employee_id", type=int), require_date(a, "from"), require_date(a, "to")
    )
    return ok(s.to_dict())


@bp.get("/missing-logs")
@jwt_required()
def missing_logs():
    as_of = parse_date(request.args.get("as_of")) or date.today()
    rows = attendance_ledger.missing_logs(as_of)
    return ok([r.to_dict() for r in rows], as_of=as_of.isoformat(), total=len(rows))
