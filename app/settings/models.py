"""
app/settings/models.py
----------------------
Key/value system settings editable by admins.

Known keys:
  sale_undo_time_limit → minutes (1–60) a cashier may undo their last sale
"""
from datetime import datetime
from flask import current_app
from app import db


SALE_UNDO_TIME_LIMIT = 'sale_undo_time_limit'
UNDO_LIMIT_MIN = 1
UNDO_LIMIT_MAX = 60


class SystemSetting(db.Model):
    __tablename__ = 'system_settings'

    key         = db.Column(db.String(64), primary_key=True)
    value       = db.Column(db.String(255), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    updated_at  = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                            onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            'key':         self.key,
            'value':       self.value,
            'description': self.description,
            'updated_at':  self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<SystemSetting {self.key}={self.value!r}>"


def get_setting(key: str):
    return db.session.get(SystemSetting, key)


def set_setting(key: str, value, description: str = None) -> SystemSetting:
    """Create or update a setting. Caller commits."""
    row = get_setting(key)
    if row is None:
        row = SystemSetting(key=key, value=str(value), description=description)
        db.session.add(row)
    else:
        row.value = str(value)
        if description is not None:
            row.description = description
        row.updated_at = datetime.utcnow()
    return row


def clamp_undo_limit(minutes: int) -> int:
    return min(max(minutes, UNDO_LIMIT_MIN), UNDO_LIMIT_MAX)


def get_sale_undo_time_limit() -> int:
    """
    Minutes a sale stays undoable, clamped to [1, 60].
    Falls back to SALE_UNDO_TIME_LIMIT_DEFAULT when unset or unparsable.
    """
    default = clamp_undo_limit(current_app.config['SALE_UNDO_TIME_LIMIT_DEFAULT'])
    row = get_setting(SALE_UNDO_TIME_LIMIT)
    if row is None:
        return default
    try:
        return clamp_undo_limit(int(row.value))
    except ValueError:
        current_app.logger.warning(
            f"Invalid {SALE_UNDO_TIME_LIMIT} value {row.value!r}, using {default}"
        )
        return default
