# hrpay_api/services/statutory.py
"""
Statutory contribution and withholding-tax calculators.

Pure functions of a monthly figure plus the table they apply. No rounding
happens here; amounts are rounded once when a payroll line is built.
"""
from dataclasses import dataclass, field
from typing import Dict, Sequence

from hrpay_api.common.errors import ValidationError
from hrpay_api.services.settings_store import (
    SocialInsuranceTable,
    HealthInsuranceTable,
    HousingFundTable,
    TaxBracket,
)


@dataclass(frozen=True)
class Contribution:
    employee: float
    employer: float
    employer_breakdown: Dict[str, float] = field(default_factory=dict)


def _salary(value, name="monthly_salary") -> float:
    try:
        s = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number", payload={name: value})
    if s != s or s < 0:  # NaN or negative
        raise ValidationError(f"{name} cannot be negative", payload={name: value})
    return s


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(v, hi))


def social_insurance(monthly_salary, table: SocialInsuranceTable) -> Contribution:
    credit = _clamp(_salary(monthly_salary), table.min_creditable, table.max_creditable)
    regular = credit * table.employer_rate
    ec = table.ec_below if credit < table.ec_threshold else table.ec_at_or_above
    return Contribution(
        employee=credit * table.employee_rate,
        employer=regular + ec,
        employer_breakdown={"regular": regular, "ec": ec},
    )


def health_insurance(monthly_salary, table: HealthInsuranceTable) -> Contribution:
    base = _clamp(_salary(monthly_salary), table.floor, table.ceiling)
    total = base * table.total_rate
    employee = total * table.employee_share
    return Contribution(employee=employee, employer=total - employee)


def housing_fund(monthly_salary, table: HousingFundTable) -> Contribution:
    salary = _salary(monthly_salary)
    base = min(salary, table.max_fund_base)
    # tier is chosen on the actual salary, not the capped base
    rate = table.employee_rate_low if salary <= table.low_salary_threshold else table.employee_rate
    return Contribution(employee=base * rate, employer=base * table.employer_rate)


def withholding_tax(taxable_monthly_income, brackets: Sequence[TaxBracket]) -> float:
    """
    Piecewise-linear progressive schedule:
        tax = base_tax + (income - lower) * rate
    for the highest bracket whose lower bound does not exceed income.
    Zero or negative taxable income owes nothing.
    """
    try:
        income = float(taxable_monthly_income)
    except (TypeError, ValueError):
        raise ValidationError("taxable income must be a number", payload={"taxable_income": taxable_monthly_income})
    if income <= 0 or not brackets:
        return 0.0

    chosen = brackets[0]
    for b in brackets:
        if b.lower <= income:
            chosen = b
        else:
            break
    return chosen.base_tax + (income - chosen.lower) * chosen.rate


def monthly_taxable_income(monthly_salary, settings) -> float:
    """Basic salary less the full-month employee shares of the three programs."""
    s = _salary(monthly_salary)
    si = social_insurance(s, settings.social_insurance)
    hi = health_insurance(s, settings.health_insurance)
    hf = housing_fund(s, settings.housing_fund)
    return s - (si.employee + hi.employee + hf.employee)


def thirteenth_month(basic_salary, months_worked=12) -> float:
    months = float(months_worked)
    if not 0 <= months <= 12:
        raise ValidationError("months_worked must be between 0 and 12", payload={"months_worked": months_worked})
    return _salary(basic_salary, "basic_salary") * months / 12
