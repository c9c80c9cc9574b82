# hrpay_api/blueprints/settings.py
from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from hrpay_api.common.http import ok
from hrpay_api.common.auth import current_actor_id
from hrpay_api.common.errors import NotFoundError
from hrpay_api.services import settings_store

bp = Blueprint("settings", __name__, url_prefix="/api/v1/settings")


@bp.get("")
@jwt_required()
def get_all():
    return ok(settings_store.get_documents())


@bp.get("/<category>")
@jwt_required()
def get_category(category):
    docs = settings_store.get_documents()
    if category not in docs:
        raise NotFoundError(f"Unknown settings category '{category}'", payload={"category": category})
    return ok(docs[category])


@bp.put("/<category>")
@jwt_required()
def update_category(category):
    d = request.get_json(silent=True)
    row = settings_store.update_category(category, d, current_actor_id())
    return ok(row.to_dict())


@bp.get("/effective")
@jwt_required()
def effective():
    """The parsed settings object the calculators will receive on the next call."""
    return ok(settings_store.load_settings().snapshot())
