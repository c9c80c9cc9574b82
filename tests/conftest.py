import os
from datetime import date
from decimal import Decimal

import pytest

from hrpay_api import create_app
from hrpay_api.extensions import db
from hrpay_api.models.employee import Employee


def _mk_app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
    os.environ["APP_TIMEZONE"] = "Asia/Manila"
    app = create_app()
    app.config["TESTING"] = True
    return app


@pytest.fixture
def app():
    app = _mk_app()
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def make_employee(app):
    seq = {"n": 0}

    def _make(salary=20000, **kw):
        seq["n"] += 1
        n = seq["n"]
        e = Employee(
            code=f"E{n:03d}",
            email=f"e{n}@test.local",
            first_name="Test",
            last_name=f"Emp{n}",
            basic_salary=Decimal(str(salary)),
            doj=kw.pop("doj", date(2024, 1, 1)),
            **kw,
        )
        db.session.add(e); db.session.commit()
        return e

    return _make
