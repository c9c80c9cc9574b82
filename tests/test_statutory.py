import pytest

from hrpay_api.common.errors import ValidationError
from hrpay_api.services.settings_store import PayrollSettings
from hrpay_api.services import statutory

S = PayrollSettings()
SALARIES = [x * 250 for x in range(0, 801)]  # 0 .. 200,000


def test_social_insurance_sample():
    c = statutory.social_insurance(20000, S.social_insurance)
    assert round(c.employee, 2) == 900.00
    assert round(c.employer_breakdown["regular"], 2) == 1900.00
    assert c.employer_breakdown["ec"] == 30
    assert round(c.employer, 2) == 1930.00

    low = statutory.social_insurance(12000, S.social_insurance)
    assert low.employer_breakdown["ec"] == 10


def test_social_insurance_clamps_to_credit_range():
    t = S.social_insurance
    assert statutory.social_insurance(0, t).employee == pytest.approx(t.min_creditable * t.employee_rate)
    assert statutory.social_insurance(10 ** 6, t).employee == pytest.approx(t.max_creditable * t.employee_rate)


def test_health_insurance_split():
    c = statutory.health_insurance(40000, S.health_insurance)
    assert round(c.employee, 2) == 1000.00
    assert round(c.employer, 2) == 1000.00
    # floor
    assert round(statutory.health_insurance(5000, S.health_insurance).employee, 2) == 250.00
    # ceiling
    assert round(statutory.health_insurance(250000, S.health_insurance).employee, 2) == 2500.00


def test_housing_fund_tiers():
    t = S.housing_fund
    assert round(statutory.housing_fund(1500, t).employee, 2) == 15.00   # 1% at threshold
    assert round(statutory.housing_fund(1501, t).employee, 2) == 30.02   # 2% above
    assert round(statutory.housing_fund(50000, t).employee, 2) == 200.00  # capped base
    assert round(statutory.housing_fund(50000, t).employer, 2) == 200.00


@pytest.mark.parametrize("fn,table,ceiling", [
    (statutory.social_insurance, S.social_insurance, S.social_insurance.max_creditable),
    (statutory.health_insurance, S.health_insurance, S.health_insurance.ceiling),
    (statutory.housing_fund, S.housing_fund, S.housing_fund.max_fund_base),
])
def test_employee_share_monotonic_then_constant(fn, table, ceiling):
    prev = -1.0
    for s in SALARIES:
        cur = fn(s, table).employee
        assert cur >= prev, f"decreased at salary {s}"
        prev = cur
    top = fn(ceiling, table).employee
    for s in (ceiling + 1, ceiling * 2, ceiling * 10):
        assert fn(s, table).employee == pytest.approx(top)


def test_negative_salary_rejected():
    with pytest.raises(ValidationError):
        statutory.social_insurance(-1, S.social_insurance)
    with pytest.raises(ValidationError):
        statutory.housing_fund("abc", S.housing_fund)


def test_withholding_tax_values():
    br = S.tax_brackets
    assert statutory.withholding_tax(0, br) == 0
    assert statutory.withholding_tax(-500, br) == 0
    assert statutory.withholding_tax(20833, br) == 0
    assert round(statutory.withholding_tax(30000, br), 2) == 1375.05
    assert round(statutory.withholding_tax(47200, br), 2) == 4648.40
    assert round(statutory.withholding_tax(1000000, br), 2) == 300208.35


def test_withholding_tax_continuous_at_boundaries():
    br = S.tax_brackets
    for b in br[1:]:
        just_below = statutory.withholding_tax(b.lower - 1e-7, br)
        assert abs(just_below - b.base_tax) < 0.01, f"jump at {b.lower}"
        assert statutory.withholding_tax(b.lower, br) == pytest.approx(b.base_tax)


def test_withholding_tax_monotonic():
    br = S.tax_brackets
    prev = -1.0
    for x in range(0, 900001, 500):
        cur = statutory.withholding_tax(x, br)
        assert cur >= prev
        prev = cur


def test_thirteenth_month():
    assert statutory.thirteenth_month(24000) == 24000
    assert statutory.thirteenth_month(24000, 6) == 12000
    with pytest.raises(ValidationError):
        statutory.thirteenth_month(24000, 13)
