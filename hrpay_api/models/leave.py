from datetime import datetime
from hrpay_api.extensions import db

PENDING = "PENDING"
APPROVED = "APPROVED"
REJECTED = "REJECTED"
CANCELLED = "CANCELLED"

LEAVE_TYPES = (
    "VACATION",
    "SICK",
    "EMERGENCY",
    "MATERNITY",
    "PATERNITY",
    "BEREAVEMENT",
    "UNPAID",
    "OTHER",
)

# annual entitlement used when an employee has no LeaveCredit override
DEFAULT_ENTITLEMENTS = {
    "VACATION": 15,
    "SICK": 10,
    "EMERGENCY": 3,
    "MATERNITY": 60,
    "PATERNITY": 7,
    "BEREAVEMENT": 3,
    "UNPAID": 999,
    "OTHER": 5,
}


class LeaveRequest(db.Model):
    __tablename__ = "leave_requests"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    leave_type = db.Column(db.String(20), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)       # null => open leave, closed by next clock-in
    total_days = db.Column(db.Numeric(6, 2), nullable=True)
    reason = db.Column(db.Text, nullable=False)
    attachment_url = db.Column(db.String(512))
    status = db.Column(db.String(20), nullable=False, default=PENDING)  # PENDING|APPROVED|REJECTED|CANCELLED
    is_active = db.Column(db.Boolean, nullable=False, default=False)

    reviewed_by = db.Column(db.Integer)
    reviewed_at = db.Column(db.DateTime)
    review_notes = db.Column(db.Text)

    needs_review = db.Column(db.Boolean, nullable=False, default=False)
    review_flag_reason = db.Column(db.String(255))

    settled_by = db.Column(db.Integer)
    settled_at = db.Column(db.DateTime)
    settlement_source = db.Column(db.String(16))  # auto | manual

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    employee = db.relationship("Employee", lazy="joined")

    __table_args__ = (
        # an open leave runs until the next clock-in, so one per employee
        db.Index(
            "uq_leave_active_employee", "employee_id",
            unique=True,
            postgresql_where=db.text("is_active"),
            sqlite_where=db.text("is_active = 1"),
        ),
        db.CheckConstraint(
            "status in ('PENDING','APPROVED','REJECTED','CANCELLED')", name="ck_leave_status"
        ),
    )

    @property
    def is_settled(self) -> bool:
        return self.end_date is not None and self.total_days is not None

    def to_dict(self):
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "leave_type": self.leave_type,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "total_days": float(self.total_days) if self.total_days is not None else None,
            "reason": self.reason,
            "attachment_url": self.attachment_url,
            "status": self.status,
            "is_active": self.is_active,
            "is_settled": self.is_settled,
            "needs_review": self.needs_review,
            "review_flag_reason": self.review_flag_reason,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "review_notes": self.review_notes,
            "settled_by": self.settled_by,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
            "settlement_source": self.settlement_source,
        }


class LeaveCredit(db.Model):
    """Per-type override of the default annual entitlement. No row => default."""
    __tablename__ = "leave_credits"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    leave_type = db.Column(db.String(20), nullable=False)
    credits = db.Column(db.Numeric(6, 2), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    adjusted_by = db.Column(db.Integer)
    adjusted_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("employee_id", "leave_type", name="uq_leave_credit_employee_type"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "leave_type": self.leave_type,
            "credits": float(self.credits),
            "reason": self.reason,
            "adjusted_by": self.adjusted_by,
            "adjusted_at": self.adjusted_at.isoformat() if self.adjusted_at else None,
        }
