from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z


class Setting(db.Model):
    """
    Key-value store settings edited from the admin console.

    Values are stored as text; `value_type` tells settings_service how to
    decode them (string, int, decimal, bool, json).
    """
    __tablename__ = "settings"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_settings_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False)
    value = db.Column(db.Text, nullable=True)
    value_type = db.Column(db.String(16), nullable=False, default="string")
    description = db.Column(db.String(255), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "value_type": self.value_type,
            "description": self.description,
            "updated_at": to_utc_z(self.updated_at),
        }
