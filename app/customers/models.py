from datetime import datetime
from app import db

WALK_IN_NAME = 'Walk-in Customer'


class Customer(db.Model):
    __tablename__ = 'customers'

    id         = db.Column(db.Integer, primary_key=True)
    name       = db.Column(db.String(100), nullable=False, default=WALK_IN_NAME)
    phone      = db.Column(db.String(20), unique=True, nullable=False, index=True)
    email      = db.Column(db.String(120), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {'id': self.id, 'name': self.name, 'phone': self.phone, 'email': self.email}

    def __repr__(self):
        return f"<Customer {self.name} ({self.phone})>"


def find_or_create_customer(phone: str, name: str = None, email: str = None) -> Customer:
    """Look a customer up by phone, creating one on first purchase. Caller commits."""
    customer = Customer.query.filter_by(phone=phone).first()
    if customer is None:
        customer = Customer(name=name or WALK_IN_NAME, phone=phone, email=email)
        db.session.add(customer)
        db.session.flush()
    return customer
