# hrpay_api/blueprints/employees.py
from __future__ import annotations

from decimal import Decimal, InvalidOperation

from flask import Blueprint, request
from flask_jwt_extended import jwt_required
from sqlalchemy import or_

from hrpay_api.extensions import db
from hrpay_api.models.employee import Employee
from hrpay_api.common.http import ok
from hrpay_api.common.errors import ValidationError, NotFoundError, StateConflict
from hrpay_api.common.paging import page_limit, apply_q_search
from hrpay_api.common.parsing import require, parse_date

bp = Blueprint("employees", __name__, url_prefix="/api/v1/employees")


def _salary(v):
    try:
        s = Decimal(str(v))
    except (InvalidOperation, ValueError):
        raise ValidationError("basic_salary must be a number", payload={"basic_salary": v})
    if s < 0:
        raise ValidationError("basic_salary cannot be negative", payload={"basic_salary": v})
    return s


@bp.post("")
@jwt_required()
def create_employee():
    d = request.get_json(silent=True) or {}
    require(d, "code", "email", "first_name", "basic_salary")

    code = d["code"].strip()
    email = d["email"].strip().lower()
    dupe = Employee.query.filter(or_(Employee.code == code, Employee.email == email)).first()
    if dupe:
        raise StateConflict("Employee code or email already exists", code="DUPLICATE_EMPLOYEE",
                            payload={"employee_id": dupe.id, "code": code, "email": email})

    emp = Employee(
        code=code,
        email=email,
        first_name=d["first_name"].strip(),
        last_name=(d.get("last_name") or "").strip() or None,
        department=d.get("department"),
        position=d.get("position"),
        basic_salary=_salary(d["basic_salary"]),
        doj=parse_date(d.get("hire_date")),
        status=d.get("status") or "active",
    )
    db.session.add(emp)
    db.session.commit()
    return ok(emp.to_dict(), status=201)


@bp.get("")
@jwt_required()
def list_employees():
    page, size = page_limit()
    q = Employee.query
    if request.args.get("department"):
        q = q.filter(Employee.department == request.args["department"])
    if request.args.get("status"):
        q = q.filter(Employee.status == request.args["status"])
    q = apply_q_search(q, Employee.first_name, Employee.last_name, Employee.code, Employee.email)
    total = q.count()
    rows = q.order_by(Employee.id.asc()).offset((page - 1) * size).limit(size).all()
    return ok([e.to_dict() for e in rows], page=page, size=size, total=total)


@bp.get("/<int:employee_id>")
@jwt_required()
def get_employee(employee_id: int):
    emp = db.session.get(Employee, employee_id)
    if not emp:
        raise NotFoundError("Employee not found", payload={"employee_id": employee_id})
    return ok(emp.to_dict())


@bp.patch("/<int:employee_id>")
@jwt_required()
def update_employee(employee_id: int):
    """Salary edits affect only periods computed afterwards."""
    emp = db.session.get(Employee, employee_id)
    if not emp:
        raise NotFoundError("Employee not found", payload={"employee_id": employee_id})
    d = request.get_json(silent=True) or {}
    for f in ("first_name", "last_name", "department", "position", "status"):
        if f in d:
            setattr(emp, f, d[f])
    if "basic_salary" in d:
        emp.basic_salary = _salary(d["basic_salary"])
    if "hire_date" in d:
        emp.doj = parse_date(d["hire_date"])
    db.session.commit()
    return ok(emp.to_dict())
