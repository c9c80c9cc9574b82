from datetime import datetime
from hrpay_api.extensions import db

class Employee(db.Model):
    """
    Directory entry the payroll engine reads salary and hire date from.
    Salary edits only affect periods computed after the edit; finalized
    payroll lines keep the salary they were computed with in calc_meta.
    """
    __tablename__ = "employees"

    id = db.Column(db.Integer, primary_key=True)
    code  = db.Column(db.String(32), unique=True, nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    first_name = db.Column(db.String(80), nullable=False)
    last_name  = db.Column(db.String(80), nullable=True)

    department = db.Column(db.String(80), nullable=True)
    position   = db.Column(db.String(120), nullable=True)

    basic_salary = db.Column(db.Numeric(14, 2), nullable=False, default=0)   # monthly
    doj = db.Column(db.Date, nullable=True)   # hire date
    status = db.Column(db.String(16), default="active", nullable=False)     # active/inactive/on_leave

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_emp_department", "department"),
    )

    @property
    def full_name(self):
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "department": self.department,
            "position": self.position,
            "basic_salary": float(self.basic_salary or 0),
            "hire_date": self.doj.isoformat() if self.doj else None,
            "status": self.status,
        }
