from datetime import datetime
from hrpay_api.extensions import db

PENDING = "PENDING"
APPROVED = "APPROVED"
REJECTED = "REJECTED"
CANCELLED = "CANCELLED"


class OvertimeRequest(db.Model):
    """
    Filed with only a start boundary. end_time / total_hours / overtime_pay stay
    null until settlement; a non-null total_hours is the completion signal.
    is_active is true only while APPROVED and unsettled.
    """
    __tablename__ = "overtime_requests"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    work_date = db.Column(db.Date, nullable=False)

    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=True)
    total_hours = db.Column(db.Numeric(6, 2), nullable=True)
    overtime_rate = db.Column(db.Numeric(4, 2), nullable=False, default=1.25)  # multiplier fixed at filing
    day_type = db.Column(db.String(16), nullable=False, default="weekday")    # weekday | rest_day | holiday
    overtime_pay = db.Column(db.Numeric(14, 2), nullable=True)

    reason = db.Column(db.Text, nullable=False)
    project_task = db.Column(db.String(255))
    status = db.Column(db.String(20), nullable=False, default=PENDING)  # PENDING|APPROVED|REJECTED|CANCELLED
    is_active = db.Column(db.Boolean, nullable=False, default=False)

    reviewed_by = db.Column(db.Integer)
    reviewed_at = db.Column(db.DateTime)
    review_notes = db.Column(db.Text)

    # anomaly routing: settlement declined to auto-complete
    needs_review = db.Column(db.Boolean, nullable=False, default=False)
    review_flag_reason = db.Column(db.String(255))

    completed_by = db.Column(db.Integer)        # null when settled by a clock-out
    completed_at = db.Column(db.DateTime)
    completion_source = db.Column(db.String(16))  # auto | manual

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    employee = db.relationship("Employee", lazy="joined")

    __table_args__ = (
        # at most one active overtime per employee per day
        db.Index(
            "uq_overtime_active_day", "employee_id", "work_date",
            unique=True,
            postgresql_where=db.text("is_active"),
            sqlite_where=db.text("is_active = 1"),
        ),
        db.CheckConstraint(
            "status in ('PENDING','APPROVED','REJECTED','CANCELLED')", name="ck_overtime_status"
        ),
        db.Index("ix_overtime_employee_day", "employee_id", "work_date"),
    )

    @property
    def is_completed(self) -> bool:
        return self.total_hours is not None

    def to_dict(self):
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "date": self.work_date.isoformat(),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "total_hours": float(self.total_hours) if self.total_hours is not None else None,
            "overtime_rate": float(self.overtime_rate),
            "day_type": self.day_type,
            "overtime_pay": float(self.overtime_pay) if self.overtime_pay is not None else None,
            "reason": self.reason,
            "project_task": self.project_task,
            "status": self.status,
            "is_active": self.is_active,
            "is_completed": self.is_completed,
            "needs_review": self.needs_review,
            "review_flag_reason": self.review_flag_reason,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "review_notes": self.review_notes,
            "completed_by": self.completed_by,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completion_source": self.completion_source,
        }
