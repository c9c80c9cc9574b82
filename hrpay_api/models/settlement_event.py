from datetime import datetime
from hrpay_api.extensions import db

DAY_CLOSED = "day_closed"   # clock-out -> overtime settlement
DAY_OPENED = "day_opened"   # clock-in  -> leave settlement

EVENT_PENDING = "pending"
EVENT_PROCESSED = "processed"
EVENT_NEEDS_REVIEW = "needs_review"
EVENT_FAILED = "failed"


class SettlementEvent(db.Model):
    """
    Outbox row written in the same transaction as the attendance punch that
    caused it. Delivered after commit; failed deliveries stay retryable.
    """
    __tablename__ = "settlement_events"

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(20), nullable=False)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    attendance_id = db.Column(db.Integer, db.ForeignKey("attendance_records.id", ondelete="CASCADE"), nullable=False)
    work_date = db.Column(db.Date, nullable=False)
    occurred_at = db.Column(db.DateTime, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=EVENT_PENDING)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text)
    outcome = db.Column(db.JSON)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    processed_at = db.Column(db.DateTime)

    __table_args__ = (
        db.CheckConstraint("kind in ('day_closed','day_opened')", name="ck_settlement_event_kind"),
        db.Index("ix_settlement_event_status", "status", "created_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "kind": self.kind,
            "employee_id": self.employee_id,
            "attendance_id": self.attendance_id,
            "date": self.work_date.isoformat(),
            "occurred_at": self.occurred_at.isoformat(),
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "outcome": self.outcome,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }
