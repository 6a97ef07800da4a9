"""
app/notifications/models.py
---------------------------
Notification events shown to staff.

Notification.data is a JSON-encoded dict whose shape depends on type, e.g.
  order      → {"invoice_number": "INV-2026-0007", "grand_total": "1500.00", "event": "sale_created"}
  inventory  → {"batch_id": 4, "product_id": 2, "quantity": 20}
"""
import enum
import json
from datetime import datetime
from app import db


class NotificationType(enum.Enum):
    order     = "order"
    inventory = "inventory"
    repair    = "repair"
    customer  = "customer"
    payment   = "payment"
    system    = "system"


NOTIFICATION_TYPE_CHOICES = [t.value for t in NotificationType]


class Notification(db.Model):
    __tablename__ = 'notifications'

    id             = db.Column(db.Integer, primary_key=True)
    user_id        = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)  # None = everyone
    type           = db.Column(db.String(20), nullable=False, default='system', index=True)
    title          = db.Column(db.String(200), nullable=False)
    message        = db.Column(db.Text, nullable=False)
    data           = db.Column(db.Text, nullable=True)     # JSON string
    is_read        = db.Column(db.Boolean, nullable=False, default=False, index=True)
    reference_id   = db.Column(db.String(64), nullable=True)
    reference_type = db.Column(db.String(30), nullable=True)
    created_at     = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at     = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                               onupdate=datetime.utcnow)

    @property
    def data_dict(self) -> dict:
        try:
            return json.loads(self.data) if self.data else {}
        except (ValueError, TypeError):
            return {}

    @data_dict.setter
    def data_dict(self, value: dict):
        self.data = json.dumps(value) if value else None

    def to_dict(self) -> dict:
        return {
            'id':             self.id,
            'type':           self.type,
            'title':          self.title,
            'message':        self.message,
            'data':           self.data_dict,
            'is_read':        self.is_read,
            'reference_id':   self.reference_id,
            'reference_type': self.reference_type,
            'created_at':     self.created_at.isoformat(),
        }

    def __repr__(self):
        return f"<Notification {self.id} {self.type} {self.title!r} read={self.is_read}>"
