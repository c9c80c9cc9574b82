# hrpay_api/common/auth.py
from __future__ import annotations

from typing import Optional

from flask_jwt_extended import get_jwt_identity


def current_actor_id() -> Optional[int]:
    """JWT identity as an int; stamped on reviews, adjustments and finalizes."""
    ident = get_jwt_identity()
    if ident in (None, ""):
        return None
    try:
        return int(ident)
    except (TypeError, ValueError):
        return None
