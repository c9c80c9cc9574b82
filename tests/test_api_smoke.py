import pytest
from flask_jwt_extended import create_access_token


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth(app):
    token = create_access_token(identity="7")
    return {"Authorization": f"Bearer {token}"}


def _data(resp, status=200):
    assert resp.status_code == status, resp.get_json()
    body = resp.get_json()
    assert body["success"] is True
    return body["data"]


def test_requires_token(client):
    r = client.get("/api/v1/employees")
    assert r.status_code == 401


def test_end_to_end_cutoff(client, auth):
    emp = _data(client.post("/api/v1/employees", headers=auth, json={
        "code": "E-100", "email": "ana@test.local", "first_name": "Ana",
        "basic_salary": 20000, "hire_date": "2024-01-01",
    }), 201)
    eid = emp["id"]

    dup = client.post("/api/v1/employees", headers=auth, json={
        "code": "E-100", "email": "other@test.local", "first_name": "X", "basic_salary": 1,
    })
    assert dup.status_code == 409
    assert dup.get_json()["error"]["code"] == "DUPLICATE_EMPLOYEE"

    ot = _data(client.post("/api/v1/overtime", headers=auth, json={
        "employee_id": eid, "date": "2025-03-03", "start_time": "2025-03-03T18:00:00", "reason": "release",
    }), 201)
    approved = _data(client.post(f"/api/v1/overtime/{ot['id']}/approve", headers=auth, json={}))
    assert approved["reviewed_by"] == 7

    _data(client.post("/api/v1/attendance/clock-in", headers=auth,
                      json={"employee_id": eid, "timestamp": "2025-03-03T08:00:00"}), 201)
    again = client.post("/api/v1/attendance/clock-in", headers=auth,
                        json={"employee_id": eid, "timestamp": "2025-03-03T08:05:00"})
    assert again.status_code == 409
    assert again.get_json()["error"]["code"] == "DUPLICATE_CLOCK_IN"

    out = _data(client.post("/api/v1/attendance/clock-out", headers=auth,
                            json={"employee_id": eid, "timestamp": "2025-03-03T21:30:00"}))
    assert out["settlement"]["outcome"]["result"] == "settled"

    settled = _data(client.get(f"/api/v1/overtime/{ot['id']}", headers=auth))
    assert settled["total_hours"] == 3.5
    assert settled["overtime_pay"] == 546.88

    period = {"period_start": "2025-03-01", "period_end": "2025-03-15"}
    draft = _data(client.post("/api/v1/payroll/draft", headers=auth, json=period))
    assert draft["status"] == "DRAFT"
    assert draft["lines"][0]["overtime_pay"] == 546.88

    batch = _data(client.post("/api/v1/payroll/finalize", headers=auth, json=period), 201)
    assert batch["finalized_by"] == 7
    assert len(batch["lines"]) == 1

    again = client.post("/api/v1/payroll/finalize", headers=auth, json=period)
    assert again.status_code == 409
    assert again.get_json()["error"]["code"] == "DUPLICATE_PERIOD"


def test_clock_in_with_utc_offset(client, auth):
    eid = _data(client.post("/api/v1/employees", headers=auth, json={
        "code": "E-200", "email": "tz@test.local", "first_name": "Tz", "basic_salary": 20000,
    }), 201)["id"]

    inn = _data(client.post("/api/v1/attendance/clock-in", headers=auth,
                            json={"employee_id": eid, "timestamp": "2025-03-03T08:05:00+08:00"}), 201)
    assert inn["attendance"]["time_in"] == "2025-03-03T08:05:00"
    assert inn["attendance"]["status"] == "PRESENT"

    out = _data(client.post("/api/v1/attendance/clock-out", headers=auth,
                            json={"employee_id": eid, "timestamp": "2025-03-03T09:00:00Z"}))
    assert out["attendance"]["time_out"] == "2025-03-03T17:00:00"


def test_settings_endpoints(client, auth):
    docs = _data(client.get("/api/v1/settings", headers=auth))
    assert set(docs) == {"payroll", "attendance", "contributions", "tax"}

    bad = client.put("/api/v1/settings/payroll", headers=auth, json={"overtime_cross_midnight": "ignore"})
    assert bad.status_code == 422
    assert bad.get_json()["error"]["detail"]["errors"]

    _data(client.put("/api/v1/settings/attendance", headers=auth, json={"grace_period_minutes": 5}))
    eff = _data(client.get("/api/v1/settings/effective", headers=auth))
    assert eff["attendance"]["grace_period_minutes"] == 5

    assert client.get("/api/v1/settings/nope", headers=auth).status_code == 404


def test_validation_envelope(client, auth):
    r = client.post("/api/v1/payroll/draft", headers=auth, json={"period_start": "2025-03-01"})
    assert r.status_code == 422
    err = r.get_json()["error"]
    assert err["code"] == "VALIDATION_ERROR"
    assert err["detail"]["missing"] == ["period_end"]


def test_error_envelope_without_errors_blueprint(app, client, auth):
    assert "errors" not in app.blueprints
    r = client.get("/api/v1/nowhere", headers=auth)
    assert r.status_code == 404
    assert r.get_json()["success"] is False
