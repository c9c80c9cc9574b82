from datetime import datetime
from sqlalchemy import event, inspect

from hrpay_api.extensions import db
from hrpay_api.common.errors import FinalizedRecordError

DRAFT = "DRAFT"
FINALIZED = "FINALIZED"


class PayrollBatch(db.Model):
    __tablename__ = "payroll_batches"

    id = db.Column(db.Integer, primary_key=True)
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=FINALIZED)
    payout_date = db.Column(db.Date, nullable=False)
    employee_count = db.Column(db.Integer, nullable=False, default=0)
    totals = db.Column(db.JSON)

    finalized_by = db.Column(db.Integer)
    finalized_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    lines = db.relationship("PayrollLine", back_populates="batch", lazy="selectin")

    def to_dict(self, with_lines=False):
        out = {
            "id": self.id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "status": self.status,
            "payout_date": self.payout_date.isoformat(),
            "employee_count": self.employee_count,
            "totals": self.totals,
            "finalized_by": self.finalized_by,
            "finalized_at": self.finalized_at.isoformat() if self.finalized_at else None,
        }
        if with_lines:
            out["lines"] = [ln.to_dict() for ln in self.lines]
        return out


class PayrollLine(db.Model):
    """Only finalized lines are persisted; drafts live in memory."""
    __tablename__ = "payroll_lines"

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("payroll_batches.id"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)
    period_half = db.Column(db.String(8), nullable=False)  # FIRST | SECOND

    basic_pay = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    overtime_pay = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    gross_pay = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    social_insurance = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    health_insurance = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    housing_fund = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    late_deduction = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_deductions = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    net_pay = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    cash_advance = db.Column(db.Numeric(14, 2), nullable=False, default=0)  # recovered from net_pay
    take_home = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    absence_deduction = db.Column(db.Numeric(14, 2), nullable=False, default=0)  # informational

    er_social_insurance = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    er_social_insurance_ec = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    er_health_insurance = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    er_housing_fund = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    er_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=FINALIZED)
    payout_date = db.Column(db.Date)
    calc_meta = db.Column(db.JSON)  # inputs used: salary, attendance summary, settings snapshot
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    batch = db.relationship("PayrollBatch", back_populates="lines")
    employee = db.relationship("Employee", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("employee_id", "period_start", "period_end", name="uq_payroll_line_period"),
        db.Index("ix_payroll_line_period", "period_start", "period_end"),
    )

    def to_dict(self):
        m = lambda v: float(v) if v is not None else 0.0
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "employee_id": self.employee_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "period_half": self.period_half,
            "basic_pay": m(self.basic_pay),
            "overtime_pay": m(self.overtime_pay),
            "gross_pay": m(self.gross_pay),
            "deductions": {
                "social_insurance": m(self.social_insurance),
                "health_insurance": m(self.health_insurance),
                "housing_fund": m(self.housing_fund),
                "tax": m(self.tax),
                "late": m(self.late_deduction),
                "total": m(self.total_deductions),
            },
            "net_pay": m(self.net_pay),
            "cash_advance": m(self.cash_advance),
            "take_home": m(self.take_home),
            "absence_deduction": m(self.absence_deduction),
            "employer_contributions": {
                "social_insurance": m(self.er_social_insurance),
                "social_insurance_ec": m(self.er_social_insurance_ec),
                "health_insurance": m(self.er_health_insurance),
                "housing_fund": m(self.er_housing_fund),
                "total": m(self.er_total),
            },
            "status": self.status,
            "payout_date": self.payout_date.isoformat() if self.payout_date else None,
        }


def _was_finalized(target) -> bool:
    # status as loaded, so flipping it back to DRAFT does not unlock the row
    hist = inspect(target).attrs.status.history
    prior = hist.deleted[0] if hist.deleted else target.status
    return prior == FINALIZED


@event.listens_for(PayrollLine, "before_update")
def _block_finalized_update(mapper, connection, target):
    if not _was_finalized(target):
        return
    raise FinalizedRecordError(
        "Finalized payroll lines are immutable",
        payload={"line_id": target.id, "employee_id": target.employee_id},
    )


@event.listens_for(PayrollLine, "before_delete")
def _block_finalized_delete(mapper, connection, target):
    if not _was_finalized(target):
        return
    raise FinalizedRecordError(
        "Finalized payroll lines cannot be deleted",
        payload={"line_id": target.id, "employee_id": target.employee_id},
    )
