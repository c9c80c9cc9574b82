# hrpay_api/services/settings_store.py
"""
Engine configuration. Calculators take a PayrollSettings argument and never
read module state; load_settings() builds a fresh frozen object from the
system_settings table on every call, so edits are picked up immediately.

Stored documents (one per category):

  payroll:
    {"standard_monthly_hours":160, "working_days_per_half":11,
     "overtime_multipliers":{"weekday":1.25,"rest_day":1.5,"holiday":null},
     "overtime_cross_midnight":"review", "cash_advance_max_ratio":0.5}
  attendance:
    {"work_start":"08:00","work_end":"17:00","grace_period_minutes":15,
     "weekend_days":[5,6]}
  contributions:
    {"social_insurance":{...}, "health_insurance":{...}, "housing_fund":{...}}
  tax:
    {"brackets":[{"lower":0,"base_tax":0,"rate":0}, ...]}
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import time as _time
from typing import Tuple, Dict, Any, Optional
import copy
import logging

from hrpay_api.extensions import db
from hrpay_api.common.errors import ValidationError

log = logging.getLogger(__name__)

CATEGORIES = ("payroll", "attendance", "contributions", "tax")
CROSS_MIDNIGHT_POLICIES = ("review", "next_day")


@dataclass(frozen=True)
class TaxBracket:
    lower: float
    base_tax: float
    rate: float


@dataclass(frozen=True)
class SocialInsuranceTable:
    min_creditable: float = 5000.0
    max_creditable: float = 30000.0
    employee_rate: float = 0.045
    employer_rate: float = 0.095
    # flat employer-only supplementary contribution, two tiers
    ec_threshold: float = 15000.0
    ec_below: float = 10.0
    ec_at_or_above: float = 30.0


@dataclass(frozen=True)
class HealthInsuranceTable:
    floor: float = 10000.0
    ceiling: float = 100000.0
    total_rate: float = 0.05
    employee_share: float = 0.5


@dataclass(frozen=True)
class HousingFundTable:
    max_fund_base: float = 10000.0
    low_salary_threshold: float = 1500.0
    employee_rate_low: float = 0.01
    employee_rate: float = 0.02
    employer_rate: float = 0.02


@dataclass(frozen=True)
class OvertimeMultipliers:
    weekday: float = 1.25
    rest_day: float = 1.5
    holiday: Optional[float] = None  # reserved; only a custom day-type rule uses it


@dataclass(frozen=True)
class AttendancePolicy:
    work_start: _time = _time(8, 0)
    work_end: _time = _time(17, 0)
    grace_period_minutes: int = 15
    weekend_days: Tuple[int, ...] = (5, 6)  # date.weekday(): Sat, Sun


DEFAULT_TAX_BRACKETS: Tuple[TaxBracket, ...] = (
    TaxBracket(0.0, 0.0, 0.0),
    TaxBracket(20833.0, 0.0, 0.15),
    TaxBracket(33333.0, 1875.0, 0.20),
    TaxBracket(66667.0, 8541.80, 0.25),
    TaxBracket(166667.0, 33541.80, 0.30),
    TaxBracket(666667.0, 183541.80, 0.35),
)


@dataclass(frozen=True)
class PayrollSettings:
    social_insurance: SocialInsuranceTable = field(default_factory=SocialInsuranceTable)
    health_insurance: HealthInsuranceTable = field(default_factory=HealthInsuranceTable)
    housing_fund: HousingFundTable = field(default_factory=HousingFundTable)
    tax_brackets: Tuple[TaxBracket, ...] = DEFAULT_TAX_BRACKETS
    overtime: OvertimeMultipliers = field(default_factory=OvertimeMultipliers)
    attendance: AttendancePolicy = field(default_factory=AttendancePolicy)
    standard_monthly_hours: float = 160.0
    working_days_per_half: float = 11.0
    overtime_cross_midnight: str = "review"
    cash_advance_max_ratio: float = 0.5

    def hourly_rate(self, basic_salary) -> float:
        return float(basic_salary or 0) / self.standard_monthly_hours

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe copy stored with finalized lines for audit."""
        out = asdict(self)
        out["attendance"]["work_start"] = self.attendance.work_start.strftime("%H:%M")
        out["attendance"]["work_end"] = self.attendance.work_end.strftime("%H:%M")
        out["attendance"]["weekend_days"] = list(self.attendance.weekend_days)
        out["tax_brackets"] = [asdict(b) for b in self.tax_brackets]
        return out


DEFAULT_DOCUMENTS: Dict[str, Dict[str, Any]] = {
    "payroll": {
        "standard_monthly_hours": 160,
        "working_days_per_half": 11,
        "overtime_multipliers": {"weekday": 1.25, "rest_day": 1.5, "holiday": None},
        "overtime_cross_midnight": "review",
        "cash_advance_max_ratio": 0.5,
    },
    "attendance": {
        "work_start": "08:00",
        "work_end": "17:00",
        "grace_period_minutes": 15,
        "weekend_days": [5, 6],
    },
    "contributions": {
        "social_insurance": asdict(SocialInsuranceTable()),
        "health_insurance": asdict(HealthInsuranceTable()),
        "housing_fund": asdict(HousingFundTable()),
    },
    "tax": {
        "brackets": [asdict(b) for b in DEFAULT_TAX_BRACKETS],
    },
}


# ---------- parsing ----------

def _hhmm(s, fallback: _time) -> _time:
    if not s:
        return fallback
    try:
        hh, mm = str(s).strip().split(":")[:2]
        return _time(int(hh), int(mm))
    except (ValueError, TypeError):
        raise ValidationError("Time must be HH:MM", payload={"value": s})


def _pick(cls, doc: Optional[Dict[str, Any]]):
    """Build a table dataclass from a partial document; unknown keys are ignored."""
    doc = doc or {}
    names = cls.__dataclass_fields__.keys()
    kw = {k: doc[k] for k in names if k in doc and doc[k] is not None}
    try:
        return cls(**{k: float(v) for k, v in kw.items()})
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid numeric value in {cls.__name__}", payload={"document": doc})


def _brackets(raw) -> Tuple[TaxBracket, ...]:
    if not raw:
        return DEFAULT_TAX_BRACKETS
    try:
        out = tuple(
            TaxBracket(float(b["lower"]), float(b["base_tax"]), float(b["rate"])) for b in raw
        )
    except (KeyError, TypeError, ValueError):
        raise ValidationError("Tax brackets need lower, base_tax and rate", payload={"brackets": raw})
    return out


def settings_from_documents(docs: Dict[str, Dict[str, Any]]) -> PayrollSettings:
    """Pure: category documents -> PayrollSettings. Missing pieces fall back to defaults."""
    payroll = docs.get("payroll") or {}
    att = docs.get("attendance") or {}
    contrib = docs.get("contributions") or {}
    tax = docs.get("tax") or {}

    mult = payroll.get("overtime_multipliers") or {}
    defaults = OvertimeMultipliers()
    overtime = OvertimeMultipliers(
        weekday=float(mult.get("weekday") or defaults.weekday),
        rest_day=float(mult.get("rest_day") or defaults.rest_day),
        holiday=float(mult["holiday"]) if mult.get("holiday") is not None else None,
    )

    ap = AttendancePolicy()
    attendance = AttendancePolicy(
        work_start=_hhmm(att.get("work_start"), ap.work_start),
        work_end=_hhmm(att.get("work_end"), ap.work_end),
        grace_period_minutes=int(att.get("grace_period_minutes", ap.grace_period_minutes)),
        weekend_days=tuple(int(x) for x in att.get("weekend_days", ap.weekend_days)),
    )

    base = PayrollSettings()
    return PayrollSettings(
        social_insurance=_pick(SocialInsuranceTable, contrib.get("social_insurance")),
        health_insurance=_pick(HealthInsuranceTable, contrib.get("health_insurance")),
        housing_fund=_pick(HousingFundTable, contrib.get("housing_fund")),
        tax_brackets=_brackets(tax.get("brackets")),
        overtime=overtime,
        attendance=attendance,
        standard_monthly_hours=float(payroll.get("standard_monthly_hours") or base.standard_monthly_hours),
        working_days_per_half=float(payroll.get("working_days_per_half") or base.working_days_per_half),
        overtime_cross_midnight=payroll.get("overtime_cross_midnight") or base.overtime_cross_midnight,
        cash_advance_max_ratio=float(payroll.get("cash_advance_max_ratio") or base.cash_advance_max_ratio),
    )


# ---------- validation ----------

def validate_settings(s: PayrollSettings) -> PayrollSettings:
    errors = []

    si, hi, hf = s.social_insurance, s.health_insurance, s.housing_fund
    if si.min_creditable > si.max_creditable:
        errors.append("social_insurance.min_creditable exceeds max_creditable")
    if hi.floor > hi.ceiling:
        errors.append("health_insurance.floor exceeds ceiling")
    for name, rate in (
        ("social_insurance.employee_rate", si.employee_rate),
        ("social_insurance.employer_rate", si.employer_rate),
        ("health_insurance.total_rate", hi.total_rate),
        ("health_insurance.employee_share", hi.employee_share),
        ("housing_fund.employee_rate_low", hf.employee_rate_low),
        ("housing_fund.employee_rate", hf.employee_rate),
        ("housing_fund.employer_rate", hf.employer_rate),
    ):
        if not 0 <= rate <= 1:
            errors.append(f"{name} must be within [0, 1]")
    if hf.employee_rate_low > hf.employee_rate:
        errors.append("housing_fund.employee_rate_low exceeds employee_rate")

    br = s.tax_brackets
    if not br or br[0].lower != 0:
        errors.append("tax brackets must start at 0")
    for prev, cur in zip(br, br[1:]):
        if cur.lower <= prev.lower:
            errors.append(f"tax bracket at {cur.lower} is not sorted")
            continue
        if not 0 <= cur.rate <= 1:
            errors.append(f"tax bracket at {cur.lower} has rate outside [0, 1]")
        # continuous at the boundary, to the cent
        reached = prev.base_tax + (cur.lower - prev.lower) * prev.rate
        if abs(reached - cur.base_tax) > 0.01:
            errors.append(
                f"tax bracket at {cur.lower} is discontinuous: expected base {reached:.2f}, got {cur.base_tax:.2f}"
            )
        if cur.base_tax < prev.base_tax:
            errors.append(f"tax bracket at {cur.lower} decreases the base tax")

    if s.standard_monthly_hours <= 0:
        errors.append("standard_monthly_hours must be positive")
    if s.working_days_per_half <= 0:
        errors.append("working_days_per_half must be positive")
    if s.overtime_cross_midnight not in CROSS_MIDNIGHT_POLICIES:
        errors.append(f"overtime_cross_midnight must be one of {CROSS_MIDNIGHT_POLICIES}")
    if s.attendance.grace_period_minutes < 0:
        errors.append("grace_period_minutes cannot be negative")
    if any(d not in range(7) for d in s.attendance.weekend_days):
        errors.append("weekend_days must be weekday numbers 0..6")

    if errors:
        raise ValidationError("Invalid payroll settings", payload={"errors": errors})
    return s


# ---------- store ----------

def _documents() -> Dict[str, Dict[str, Any]]:
    from hrpay_api.models.settings import SystemSetting
    rows = SystemSetting.query.filter(SystemSetting.category.in_(CATEGORIES)).all()
    return {r.category: r.value_json or {} for r in rows}


def load_settings() -> PayrollSettings:
    return settings_from_documents(_documents())


def get_documents() -> Dict[str, Dict[str, Any]]:
    """Effective documents: stored values layered over defaults."""
    stored = _documents()
    out = copy.deepcopy(DEFAULT_DOCUMENTS)
    for cat, doc in stored.items():
        out[cat].update(doc)
    return out


def update_category(category: str, doc: Dict[str, Any], actor_id: Optional[int] = None):
    from hrpay_api.models.settings import SystemSetting

    if category not in CATEGORIES:
        raise ValidationError(f"Unknown settings category '{category}'", payload={"allowed": list(CATEGORIES)})
    if not isinstance(doc, dict):
        raise ValidationError("Settings document must be an object", payload={"category": category})

    merged = get_documents()
    merged[category] = {**merged[category], **doc}
    validate_settings(settings_from_documents(merged))

    row = SystemSetting.query.filter_by(category=category).first()
    if not row:
        row = SystemSetting(category=category, value_json=merged[category], updated_by=actor_id)
        db.session.add(row)
    else:
        row.value_json = merged[category]
        row.updated_by = actor_id
    db.session.commit()
    log.info("settings category %s updated by %s", category, actor_id)
    return row


def seed_defaults(overwrite: bool = False) -> int:
    from hrpay_api.models.settings import SystemSetting

    n = 0
    for cat, doc in DEFAULT_DOCUMENTS.items():
        row = SystemSetting.query.filter_by(category=cat).first()
        if row and not overwrite:
            continue
        if row:
            row.value_json = copy.deepcopy(doc)
        else:
            db.session.add(SystemSetting(category=cat, value_json=copy.deepcopy(doc)))
        n += 1
    db.session.commit()
    return n
