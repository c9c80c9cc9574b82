# hrpay_api/models/attendance.py
from __future__ import annotations

from datetime import datetime

from hrpay_api.extensions import db

STATUS_PRESENT = "PRESENT"
STATUS_LATE = "LATE"
STATUS_ABSENT = "ABSENT"
STATUS_INCOMPLETE = "INCOMPLETE"


class AttendanceRecord(db.Model):
    """
    One row per employee per calendar day.

      time_in      -> set by clock-in (nullable for admin-entered absences)
      time_out     -> set once by clock-out
      hours_worked -> derived on clock-out, null while the day is open
      late_minutes -> minutes past work start, counted only once grace is exceeded
      cross_boundary -> time_out earlier than time_in (mis-entry / cross-midnight)
    """
    __tablename__ = "attendance_records"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    work_date = db.Column(db.Date, nullable=False)

    time_in = db.Column(db.DateTime, nullable=True)
    time_out = db.Column(db.DateTime, nullable=True)
    hours_worked = db.Column(db.Float, nullable=True)
    late_minutes = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=STATUS_PRESENT)
    cross_boundary = db.Column(db.Boolean, nullable=False, default=False)
    source = db.Column(db.String(16), nullable=False, default="clock")  # clock | manual

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    employee = db.relationship("Employee", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("employee_id", "work_date", name="uq_attendance_employee_day"),
        db.CheckConstraint(
            "status in ('PRESENT','LATE','ABSENT','INCOMPLETE')", name="ck_attendance_status"
        ),
        db.Index("ix_attendance_day", "work_date"),
    )

    @property
    def is_open(self) -> bool:
        return self.time_in is not None and self.time_out is None

    def to_dict(self):
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "date": self.work_date.isoformat(),
            "time_in": self.time_in.isoformat() if self.time_in else None,
            "time_out": self.time_out.isoformat() if self.time_out else None,
            "hours_worked": round(self.hours_worked, 2) if self.hours_worked is not None else None,
            "late_minutes": self.late_minutes,
            "status": self.status,
            "cross_boundary": self.cross_boundary,
            "source": self.source,
        }
