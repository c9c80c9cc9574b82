# hrpay_api/services/payroll_calc.py
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import date
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Optional, Dict, Any

from hrpay_api.common.errors import ValidationError
from hrpay_api.services.settings_store import PayrollSettings
from hrpay_api.services import statutory

FIRST_HALF = "FIRST"
SECOND_HALF = "SECOND"

CENT = Decimal("0.01")


def to_money(v) -> Decimal:
    """Round half-to-even to the cent. Only called while building a line."""
    return Decimal(str(v or 0)).quantize(CENT, rounding=ROUND_HALF_EVEN)


def period_half(period_start: date) -> str:
    return FIRST_HALF if period_start.day <= 15 else SECOND_HALF


@dataclass(frozen=True)
class PeriodInputs:
    """Period-scoped figures gathered for one employee."""
    days_absent: float = 0
    total_overtime_hours: float = 0
    overtime_pay: Optional[float] = None   # pre-multiplied; wins over hours when given
    overtime_multiplier: float = 1.25      # used only when overtime_pay is None
    total_late_minutes: float = 0
    cash_advance: float = 0


@dataclass
class Deductions:
    social_insurance: Decimal
    health_insurance: Decimal
    housing_fund: Decimal
    tax: Decimal
    late: Decimal
    total: Decimal


@dataclass
class EmployerContributions:
    social_insurance: Decimal
    social_insurance_ec: Decimal
    health_insurance: Decimal
    housing_fund: Decimal
    total: Decimal


@dataclass
class PayrollBreakdown:
    employee_id: int
    period_start: date
    period_end: date
    period_half: str
    basic_pay: Decimal
    overtime_pay: Decimal
    gross_pay: Decimal
    deductions: Deductions
    net_pay: Decimal
    cash_advance: Decimal
    take_home: Decimal
    absence_deduction: Decimal
    employer: EmployerContributions
    status: str = "DRAFT"
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        f = float
        d = self.deductions
        e = self.employer
        return {
            "employee_id": self.employee_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "period_half": self.period_half,
            "basic_pay": f(self.basic_pay),
            "overtime_pay": f(self.overtime_pay),
            "gross_pay": f(self.gross_pay),
            "deductions": {k: f(v) for k, v in asdict(d).items()},
            "net_pay": f(self.net_pay),
            "cash_advance": f(self.cash_advance),
            "take_home": f(self.take_home),
            "absence_deduction": f(self.absence_deduction),
            "employer_contributions": {k: f(v) for k, v in asdict(e).items()},
            "status": self.status,
            "meta": self.meta,
        }


def _non_negative(name: str, v, employee_id) -> float:
    try:
        x = float(v or 0)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number", payload={"employee_id": employee_id, name: v})
    if x < 0:
        raise ValidationError(f"{name} cannot be negative", payload={"employee_id": employee_id, name: v})
    return x


def compute_payroll_line(
    employee_id: int,
    basic_salary,
    period_start: date,
    period_end: date,
    inputs: PeriodInputs,
    settings: PayrollSettings,
) -> PayrollBreakdown:
    """
    Semi-monthly gross-to-net for one employee.

    Statutory lines (social insurance, health insurance, housing fund, tax)
    are levied once a month on the second-half payslip at half the monthly
    amount; the first half carries zero for all four. Late deduction applies
    to every period. Employer shares are always accrued at monthly / 2.
    Absence deduction is reported but not part of deductions.total.

    A disbursed cash advance is recovered from net pay after statutory
    deductions: cash_advance is the amount recovered this period, capped so
    the advance never pushes take_home below zero, and the rest is left in
    meta["cash_advance_unrecovered"].
    """
    if period_end < period_start:
        raise ValidationError(
            "period_end precedes period_start",
            payload={"employee_id": employee_id, "period": [period_start.isoformat(), period_end.isoformat()]},
        )
    salary = _non_negative("basic_salary", basic_salary, employee_id)
    days_absent = _non_negative("days_absent", inputs.days_absent, employee_id)
    ot_hours = _non_negative("total_overtime_hours", inputs.total_overtime_hours, employee_id)
    late_minutes = _non_negative("total_late_minutes", inputs.total_late_minutes, employee_id)
    advance = _non_negative("cash_advance", inputs.cash_advance, employee_id)

    hourly = settings.hourly_rate(salary)
    semi_basic = salary / 2

    if inputs.overtime_pay is not None:
        ot_pay = _non_negative("overtime_pay", inputs.overtime_pay, employee_id)
    else:
        ot_pay = hourly * ot_hours * float(inputs.overtime_multiplier)

    late = (hourly / 60) * late_minutes
    absence = (semi_basic / settings.working_days_per_half) * days_absent

    si = statutory.social_insurance(salary, settings.social_insurance)
    hi = statutory.health_insurance(salary, settings.health_insurance)
    hf = statutory.housing_fund(salary, settings.housing_fund)

    half = period_half(period_start)
    if half == SECOND_HALF:
        taxable = salary - (si.employee + hi.employee + hf.employee)
        tax = statutory.withholding_tax(taxable, settings.tax_brackets)
        ee = (si.employee / 2, hi.employee / 2, hf.employee / 2, tax / 2)
    else:
        taxable = None
        ee = (0, 0, 0, 0)

    # round each component once, then sum the rounded values
    basic_pay = to_money(semi_basic)
    overtime_pay = to_money(ot_pay)
    gross = basic_pay + overtime_pay

    d_si, d_hi, d_hf, d_tax = (to_money(x) for x in ee)
    d_late = to_money(late)
    d_total = d_si + d_hi + d_hf + d_tax + d_late
    net = gross - d_total

    owed = to_money(advance)
    recovered = min(owed, max(net, Decimal("0.00")))

    er_si = to_money(si.employer_breakdown["regular"] / 2)
    er_ec = to_money(si.employer_breakdown["ec"] / 2)
    er_hi = to_money(hi.employer / 2)
    er_hf = to_money(hf.employer / 2)

    return PayrollBreakdown(
        employee_id=employee_id,
        period_start=period_start,
        period_end=period_end,
        period_half=half,
        basic_pay=basic_pay,
        overtime_pay=overtime_pay,
        gross_pay=gross,
        deductions=Deductions(
            social_insurance=d_si,
            health_insurance=d_hi,
            housing_fund=d_hf,
            tax=d_tax,
            late=d_late,
            total=d_total,
        ),
        net_pay=net,
        cash_advance=recovered,
        take_home=net - recovered,
        absence_deduction=to_money(absence),
        employer=EmployerContributions(
            social_insurance=er_si,
            social_insurance_ec=er_ec,
            health_insurance=er_hi,
            housing_fund=er_hf,
            total=er_si + er_ec + er_hi + er_hf,
        ),
        meta={
            "basic_salary": salary,
            "hourly_rate": hourly,
            "days_absent": days_absent,
            "total_overtime_hours": ot_hours,
            "total_late_minutes": late_minutes,
            "monthly_taxable_income": taxable,
            "cash_advance_unrecovered": float(owed - recovered),
        },
    )
