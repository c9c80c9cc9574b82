from datetime import datetime
from hrpay_api.extensions import db


class SystemSetting(db.Model):
    """
    One JSON document per category (payroll, attendance, contributions, tax).
    Read on every engine call, so an update takes effect without a redeploy.
    """
    __tablename__ = "system_settings"

    id = db.Column(db.Integer, primary_key=True)
    category = db.Column(db.String(40), unique=True, nullable=False)
    value_json = db.Column(db.JSON, nullable=False)
    updated_by = db.Column(db.Integer)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "category": self.category,
            "settings": self.value_json,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
