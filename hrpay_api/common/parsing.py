# hrpay_api/common/parsing.py
from __future__ import annotations

from datetime import datetime, date
from typing import Optional
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context

from hrpay_api.common.errors import ValidationError

DEFAULT_TIMEZONE = "Asia/Manila"

_DT_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
)


def business_tz() -> ZoneInfo:
    name = current_app.config.get("APP_TIMEZONE") if has_app_context() else None
    return ZoneInfo(name or DEFAULT_TIMEZONE)


def to_local(ts: datetime) -> datetime:
    """Aware timestamps become naive wall-clock time in the business zone."""
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(business_tz()).replace(tzinfo=None)


def ensure_naive(ts: Optional[datetime], field: str) -> Optional[datetime]:
    # the ledger stores naive local wall-clock times
    if ts is not None and ts.tzinfo is not None:
        raise ValidationError(
            f"'{field}' must be a local timestamp without a UTC offset",
            payload={"field": field, "value": ts.isoformat()},
        )
    return ts


def parse_date(s) -> Optional[date]:
    if not s:
        return None
    if isinstance(s, date) and not isinstance(s, datetime):
        return s
    for fmt in ("%Y-%m-%d", "%d-%m-%Y"):
        try:
            return datetime.strptime(str(s), fmt).date()
        except ValueError:
            pass
    return None


def parse_ts(s) -> Optional[datetime]:
    if not s:
        return None
    if isinstance(s, datetime):
        return to_local(s)
    s = str(s).strip()
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    try:
        return to_local(datetime.fromisoformat(s.replace(" ", "T")))
    except ValueError:
        pass
    for fmt in _DT_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            pass
    return None


def require(d: dict, *fields: str) -> None:
    """422 listing every missing field, never a partial apply."""
    missing = [f for f in fields if d.get(f) in (None, "")]
    if missing:
        raise ValidationError("Missing required fields", payload={"missing": missing})


def require_date(d: dict, field: str) -> date:
    v = parse_date(d.get(field))
    if v is None:
        raise ValidationError(f"Invalid date for '{field}'", payload={"field": field, "value": d.get(field)})
    return v


def require_ts(d: dict, field: str) -> datetime:
    v = parse_ts(d.get(field))
    if v is None:
        raise ValidationError(f"Invalid timestamp for '{field}'", payload={"field": field, "value": d.get(field)})
    return v


def require_int(d: dict, field: str) -> int:
    try:
        return int(d.get(field))
    except (TypeError, ValueError):
        raise ValidationError(f"'{field}' must be an integer", payload={"field": field, "value": d.get(field)})
