# hrpay_api/blueprints/settlement.py
from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from hrpay_api.common.http import ok
from hrpay_api.services import settlement_events

bp = Blueprint("settlement", __name__, url_prefix="/api/v1/settlement-events")


@bp.get("")
@jwt_required()
def list_events():
    a = request.args
    rows = settlement_events.list_events(status=a.get("status"), employee_id=a.get("employee_id", type=int))
    return ok([r.to_dict() for r in rows], total=len(rows))


@bp.post("/retry")
@jwt_required()
def retry():
    limit = request.args.get("limit", type=int) or 100
    return ok(settlement_events.retry_pending_events(limit=limit))
