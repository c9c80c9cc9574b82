# hrpay_api/blueprints/payroll.py
from __future__ import annotations

from datetime import date

from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from hrpay_api.common.http import ok
from hrpay_api.common.auth import current_actor_id
from hrpay_api.common.errors import ValidationError
from hrpay_api.common.parsing import require, require_date, parse_date
from hrpay_api.services import payroll_batch

bp = Blueprint("payroll", __name__, url_prefix="/api/v1/payroll")


def _employee_ids(d: dict):
    ids = d.get("employee_ids")
    if ids is None:
        return None
    if not isinstance(ids, list):
        raise ValidationError("employee_ids must be a list", payload={"employee_ids": ids})
    try:
        return [int(x) for x in ids]
    except (TypeError, ValueError):
        raise ValidationError("employee_ids must be integers", payload={"employee_ids": ids})


@bp.post("/draft")
@jwt_required()
def draft():
    d = request.get_json(silent=True) or {}
    require(d, "period_start", "period_end")
    reg = payroll_batch.run_draft(require_date(d, "period_start"), require_date(d, "period_end"), _employee_ids(d))
    return ok(reg.to_dict())


@bp.post("/finalize")
@jwt_required()
def finalize():
    """Recomputes the draft server-side, then commits it atomically."""
    d = request.get_json(silent=True) or {}
    require(d, "period_start", "period_end")
    reg = payroll_batch.run_draft(require_date(d, "period_start"), require_date(d, "period_end"), _employee_ids(d))
    batch = payroll_batch.finalize(
        reg,
        finalized_by=current_actor_id(),
        payout_date=parse_date(d.get("payout_date")),
    )
    return ok(batch.to_dict(with_lines=True), status=201)


@bp.get("/batches")
@jwt_required()
def list_batches():
    a = request.args
    rows = payroll_batch.list_batches(parse_date(a.get("from")), parse_date(a.get("to")))
    return ok([b.to_dict() for b in rows], total=len(rows))


@bp.get("/batches/<int:batch_id>")
@jwt_required()
def get_batch(batch_id: int):
    b = payroll_batch.get_batch(batch_id)
    out = b.to_dict(with_lines=True)
    out["register"] = payroll_batch.register_totals(b.lines)
    return ok(out)


@bp.get("/lines")
@jwt_required()
def list_lines():
    a = request.args
    rows = payroll_batch.list_lines(
        parse_date(a.get("from")), parse_date(a.get("to")), a.get("employee_id", type=int)
    )
    return ok([r.to_dict() for r in rows], total=len(rows), totals=payroll_batch.register_totals(rows))


@bp.get("/thirteenth-month/<int:employee_id>")
@jwt_required()
def thirteenth_month(employee_id: int):
    year = request.args.get("year", type=int) or date.today().year
    return ok(payroll_batch.thirteenth_month_for(employee_id, year))
