from datetime import datetime, time

import pytest

from hrpay_api.common.errors import ValidationError
from hrpay_api.models.settings import SystemSetting
from hrpay_api.services import settings_store
from hrpay_api.services.settings_store import PayrollSettings, DEFAULT_DOCUMENTS
from hrpay_api.services import attendance_ledger as ledger


def test_defaults_round_trip_through_documents():
    assert settings_store.settings_from_documents(DEFAULT_DOCUMENTS) == PayrollSettings()
    assert settings_store.settings_from_documents({}) == PayrollSettings()
    settings_store.validate_settings(PayrollSettings())


def test_discontinuous_brackets_rejected():
    brackets = [dict(b) for b in DEFAULT_DOCUMENTS["tax"]["brackets"]]
    brackets[2]["base_tax"] = 2000.0
    s = settings_store.settings_from_documents({"tax": {"brackets": brackets}})
    with pytest.raises(ValidationError) as ei:
        settings_store.validate_settings(s)
    assert any("discontinuous" in m for m in ei.value.payload["errors"])


def test_bad_policy_and_ranges_rejected():
    s = settings_store.settings_from_documents({
        "payroll": {"overtime_cross_midnight": "ignore"},
        "contributions": {"social_insurance": {"min_creditable": 40000}},
    })
    with pytest.raises(ValidationError) as ei:
        settings_store.validate_settings(s)
    errors = ei.value.payload["errors"]
    assert any("overtime_cross_midnight" in m for m in errors)
    assert any("min_creditable" in m for m in errors)


def test_seed_defaults(app):
    assert settings_store.seed_defaults() == 4
    assert settings_store.seed_defaults() == 0
    assert settings_store.seed_defaults(overwrite=True) == 4
    assert settings_store.load_settings() == PayrollSettings()


def test_update_is_picked_up_on_next_call(app, make_employee):
    e = make_employee()
    settings_store.update_category("attendance", {"grace_period_minutes": 30}, actor_id=1)
    assert settings_store.load_settings().attendance.grace_period_minutes == 30

    rec = ledger.clock_in(e.id, datetime(2025, 3, 3, 8, 20)).record
    assert rec.status == "PRESENT"

    settings_store.update_category("attendance", {"work_start": "09:00"}, actor_id=1)
    s = settings_store.load_settings()
    assert s.attendance.work_start == time(9, 0)
    assert s.attendance.grace_period_minutes == 30


def test_invalid_update_leaves_store_untouched(app):
    settings_store.update_category("payroll", {"standard_monthly_hours": 200}, actor_id=1)
    with pytest.raises(ValidationError):
        settings_store.update_category("payroll", {"standard_monthly_hours": -5}, actor_id=1)
    with pytest.raises(ValidationError):
        settings_store.update_category("nonsense", {}, actor_id=1)

    row = SystemSetting.query.filter_by(category="payroll").one()
    assert row.value_json["standard_monthly_hours"] == 200
    assert settings_store.load_settings().standard_monthly_hours == 200.0


def test_effective_documents_layer_over_defaults(app):
    settings_store.update_category("payroll", {"cash_advance_max_ratio": 0.3}, actor_id=1)
    docs = settings_store.get_documents()
    assert docs["payroll"]["cash_advance_max_ratio"] == 0.3
    assert docs["payroll"]["standard_monthly_hours"] == DEFAULT_DOCUMENTS["payroll"]["standard_monthly_hours"]
    assert docs["tax"] == DEFAULT_DOCUMENTS["tax"]
