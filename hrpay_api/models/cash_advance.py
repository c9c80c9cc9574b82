from datetime import datetime
from hrpay_api.extensions import db


class CashAdvanceRequest(db.Model):
    """
    Two independent approval gates (manager, admin). Only a request approved at
    both gates, disbursed, and disbursed inside a pay period is deducted there.
    """
    __tablename__ = "cash_advance_requests"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    repayment_plan = db.Column(db.String(120), nullable=False)

    status = db.Column(db.String(20), nullable=False, default="PENDING")          # PENDING|APPROVED|REJECTED|CANCELLED
    manager_approval = db.Column(db.String(20), nullable=False, default="PENDING")  # PENDING|APPROVED|REJECTED
    admin_approval = db.Column(db.String(20), nullable=False, default="PENDING")

    manager_id = db.Column(db.Integer)
    manager_at = db.Column(db.DateTime)
    manager_notes = db.Column(db.Text)
    admin_id = db.Column(db.Integer)
    admin_at = db.Column(db.DateTime)
    admin_notes = db.Column(db.Text)

    is_disbursed = db.Column(db.Boolean, nullable=False, default=False)
    disbursed_at = db.Column(db.DateTime)
    disbursed_by = db.Column(db.Integer)

    remaining_balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    is_fully_repaid = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    employee = db.relationship("Employee", lazy="joined")

    __table_args__ = (
        db.Index("ix_cash_advance_disbursed", "employee_id", "is_disbursed", "disbursed_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "amount": float(self.amount),
            "reason": self.reason,
            "repayment_plan": self.repayment_plan,
            "status": self.status,
            "manager_approval": self.manager_approval,
            "admin_approval": self.admin_approval,
            "manager_notes": self.manager_notes,
            "admin_notes": self.admin_notes,
            "is_disbursed": self.is_disbursed,
            "disbursed_at": self.disbursed_at.isoformat() if self.disbursed_at else None,
            "remaining_balance": float(self.remaining_balance or 0),
            "is_fully_repaid": self.is_fully_repaid,
        }
