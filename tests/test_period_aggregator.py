from datetime import date
from decimal import Decimal

import pytest

from hrpay_api.common.errors import ValidationError
from hrpay_api.services.settings_store import PayrollSettings
from hrpay_api.services.payroll_calc import (
    PeriodInputs,
    compute_payroll_line,
    period_half,
    FIRST_HALF,
    SECOND_HALF,
)

S = PayrollSettings()
FIRST = (date(2025, 3, 1), date(2025, 3, 15))
SECOND = (date(2025, 3, 16), date(2025, 3, 31))


def _line(salary, period, **inputs):
    return compute_payroll_line(1, salary, period[0], period[1], PeriodInputs(**inputs), S)


def test_period_half_boundary():
    assert period_half(date(2025, 3, 15)) == FIRST_HALF
    assert period_half(date(2025, 3, 16)) == SECOND_HALF


def test_first_half_no_deductions():
    ln = _line(20000, FIRST)
    assert ln.gross_pay == Decimal("10000.00")
    assert ln.deductions.total == Decimal("0.00")
    assert ln.net_pay == Decimal("10000.00")
    d = ln.deductions
    assert d.social_insurance == d.health_insurance == d.housing_fund == d.tax == 0


def test_second_half_with_late_minutes():
    ln = _line(20000, SECOND, total_late_minutes=30)
    d = ln.deductions
    assert d.late == Decimal("62.50")
    assert d.social_insurance == Decimal("450.00")
    assert d.health_insurance == Decimal("250.00")
    assert d.housing_fund == Decimal("100.00")
    assert d.tax == Decimal("0.00")  # taxable 18,400 is below the first taxed bracket
    assert d.total == Decimal("862.50")
    assert ln.net_pay == ln.gross_pay - d.total == Decimal("9137.50")


def test_statutory_lines_only_on_second_half():
    first = _line(50000, FIRST)
    second = _line(50000, SECOND)
    f, s = first.deductions, second.deductions
    assert f.social_insurance == f.health_insurance == f.housing_fund == f.tax == 0
    assert s.social_insurance > 0 and s.health_insurance > 0 and s.housing_fund > 0 and s.tax > 0
    assert s.social_insurance == Decimal("675.00")
    assert s.health_insurance == Decimal("625.00")
    assert s.tax == Decimal("2324.20")


def test_late_deduction_applies_every_period():
    assert _line(20000, FIRST, total_late_minutes=30).deductions.late == Decimal("62.50")


def test_employer_contributions_always_accrued():
    for period in (FIRST, SECOND):
        e = _line(20000, period).employer
        assert e.social_insurance == Decimal("950.00")
        assert e.social_insurance_ec == Decimal("15.00")
        assert e.health_insurance == Decimal("250.00")
        assert e.housing_fund == Decimal("100.00")
        assert e.total == Decimal("1315.00")


def test_overtime_pay_from_hours_or_supplied():
    from_hours = _line(20000, FIRST, total_overtime_hours=3.5, overtime_multiplier=1.25)
    assert from_hours.overtime_pay == Decimal("546.88")
    assert from_hours.gross_pay == Decimal("10546.88")

    supplied = _line(20000, FIRST, total_overtime_hours=99, overtime_pay=100)
    assert supplied.overtime_pay == Decimal("100.00")


def test_absence_is_informational():
    ln = _line(22000, FIRST, days_absent=2)
    assert ln.absence_deduction == Decimal("2000.00")  # 11000 / 11 * 2
    assert ln.deductions.total == 0
    assert ln.net_pay == ln.gross_pay


def test_cash_advance_is_recovered_after_net():
    ln = _line(20000, SECOND, total_late_minutes=30, cash_advance=1500)
    assert ln.deductions.total == Decimal("862.50")
    assert ln.net_pay == Decimal("9137.50")
    assert ln.cash_advance == Decimal("1500.00")
    assert ln.take_home == Decimal("7637.50")
    assert "cash_advance" not in ln.to_dict()["deductions"]


def test_cash_advance_never_pushes_take_home_negative():
    ln = _line(20000, SECOND, total_late_minutes=30, cash_advance=10000)
    assert ln.net_pay == Decimal("9137.50")
    assert ln.cash_advance == Decimal("9137.50")
    assert ln.take_home == Decimal("0.00")
    assert ln.meta["cash_advance_unrecovered"] == 862.5


@pytest.mark.parametrize("salary", [0, 1234.56, 9999.99, 20000, 33333.33, 77777.77, 250000])
@pytest.mark.parametrize("period", [FIRST, SECOND])
def test_net_equals_gross_minus_total(salary, period):
    ln = _line(salary, period, total_late_minutes=17, total_overtime_hours=2.33, days_absent=1)
    assert ln.net_pay == ln.gross_pay - ln.deductions.total
    assert ln.net_pay.as_tuple().exponent == -2


def test_invalid_inputs():
    with pytest.raises(ValidationError):
        _line(-1, FIRST)
    with pytest.raises(ValidationError):
        _line(20000, FIRST, total_late_minutes=-5)
    with pytest.raises(ValidationError):
        compute_payroll_line(1, 20000, date(2025, 3, 15), date(2025, 3, 1), PeriodInputs(), S)


def test_settings_are_injected():
    custom = PayrollSettings(standard_monthly_hours=200)
    ln = compute_payroll_line(1, 20000, *FIRST, PeriodInputs(total_late_minutes=60), custom)
    assert ln.deductions.late == Decimal("100.00")
