import json
from datetime import datetime
from decimal import Decimal
from app import db


class InvoiceSequence(db.Model):
    """
    One row per calendar year holding the last-used invoice sequence number.

    COUNT(sales) is not safe under concurrent commits (two transactions read
    the same count and both mint the same number). Locking this row with
    SELECT … FOR UPDATE serialises invoice numbering instead; see
    app/billing/invoice.py.
    """
    __tablename__ = 'invoice_sequences'

    year     = db.Column(db.Integer, primary_key=True)
    last_seq = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<InvoiceSequence year={self.year} last_seq={self.last_seq}>"


class Sale(db.Model):
    """
    One committed sale (one invoice). Immutable after commit except for a
    single reversal, which sets reversed_at/reversed_by; the row is never
    deleted.
    """
    __tablename__ = 'sales'

    id                 = db.Column(db.Integer, primary_key=True)
    invoice_number     = db.Column(db.String(20), unique=True, nullable=False, index=True)
    cashier_id         = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    customer_id        = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=True)
    customer_name      = db.Column(db.String(100), nullable=False)
    customer_phone     = db.Column(db.String(20), nullable=True)
    payment_method     = db.Column(db.String(20), nullable=False, default='cash')
    subtotal           = db.Column(db.Numeric(12, 2), nullable=False)   # before line discounts
    discount_total     = db.Column(db.Numeric(12, 2), nullable=False)
    grand_total        = db.Column(db.Numeric(12, 2), nullable=False)
    amount_tendered    = db.Column(db.Numeric(12, 2), nullable=False)
    change_due         = db.Column(db.Numeric(12, 2), nullable=False)
    undo_limit_minutes = db.Column(db.Integer, nullable=False)          # limit in force at commit
    created_at         = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    reversed_at        = db.Column(db.DateTime, nullable=True)
    reversed_by        = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    cashier  = db.relationship('User', foreign_keys=[cashier_id], lazy='select')
    customer = db.relationship('Customer', lazy='select')
    items    = db.relationship('SaleItem', backref='sale', lazy='select',
                               cascade='all, delete-orphan', order_by='SaleItem.id')

    __table_args__ = (
        db.CheckConstraint('amount_tendered >= grand_total', name='check_sale_fully_paid'),
    )

    @property
    def is_reversed(self) -> bool:
        return self.reversed_at is not None

    def to_dict(self) -> dict:
        return {
            'invoice_number':     self.invoice_number,
            'cashier_id':         self.cashier_id,
            'customer':           {'id': self.customer_id, 'name': self.customer_name,
                                   'phone': self.customer_phone},
            'payment_method':     self.payment_method,
            'subtotal':           str(self.subtotal),
            'discount_total':     str(self.discount_total),
            'grand_total':        str(self.grand_total),
            'amount_tendered':    str(self.amount_tendered),
            'change_due':         str(self.change_due),
            'undo_limit_minutes': self.undo_limit_minutes,
            'created_at':         self.created_at.isoformat(),
            'reversed_at':        self.reversed_at.isoformat() if self.reversed_at else None,
            'items':              [i.to_dict() for i in self.items],
        }

    def __repr__(self):
        return f"<Sale {self.invoice_number!r} {self.grand_total}>"


class SaleItem(db.Model):
    """
    One line of a Sale. A snapshot of name, price, discount, warranty and
    serials at the time of sale; later batch or product edits do not
    alter historical invoices. batch_id is kept so an undo can restock.
    """
    __tablename__ = 'sale_items'

    id               = db.Column(db.Integer, primary_key=True)
    sale_id          = db.Column(db.Integer, db.ForeignKey('sales.id'), nullable=False, index=True)
    product_id       = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False)
    batch_id         = db.Column(db.Integer, db.ForeignKey('stock_batches.id'), nullable=False)
    product_name     = db.Column(db.String(200), nullable=False)
    unit_price       = db.Column(db.Numeric(10, 2), nullable=False)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    warranty_months  = db.Column(db.Integer, nullable=False, default=0)
    quantity         = db.Column(db.Integer, nullable=False)
    subtotal         = db.Column(db.Numeric(12, 2), nullable=False)   # after discount
    serials          = db.Column(db.Text, nullable=False, default='[]')   # JSON list

    __table_args__ = (
        db.CheckConstraint('quantity > 0', name='check_sale_item_qty_positive'),
    )

    @property
    def serials_list(self) -> list:
        try:
            return json.loads(self.serials or '[]')
        except ValueError:
            return []

    @property
    def gross(self) -> Decimal:
        return (Decimal(str(self.unit_price)) * self.quantity).quantize(Decimal('0.01'))

    def to_dict(self) -> dict:
        return {
            'product_id':       self.product_id,
            'batch_id':         self.batch_id,
            'product_name':     self.product_name,
            'unit_price':       str(self.unit_price),
            'discount_percent': str(self.discount_percent),
            'warranty_months':  self.warranty_months,
            'quantity':         self.quantity,
            'subtotal':         str(self.subtotal),
            'serials':          self.serials_list,
        }

    def __repr__(self):
        return f"<SaleItem sale={self.sale_id} batch={self.batch_id} qty={self.quantity}>"


class SaleUndoLog(db.Model):
    """Append-only record of an executed sale reversal."""
    __tablename__ = 'sale_undo_logs'

    id             = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(20), nullable=False, index=True)
    user_id        = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    reason_type    = db.Column(db.String(50), nullable=False, index=True)
    reason_details = db.Column(db.Text, nullable=True)
    sale_data      = db.Column(db.Text, nullable=False)   # JSON snapshot of Sale.to_dict()
    undone_at      = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    user = db.relationship('User', lazy='select')

    @property
    def sale_dict(self) -> dict:
        return json.loads(self.sale_data)

    def to_dict(self) -> dict:
        return {
            'id':             self.id,
            'invoice_number': self.invoice_number,
            'user_id':        self.user_id,
            'user_name':      self.user.username if self.user else None,
            'reason_type':    self.reason_type,
            'reason_details': self.reason_details,
            'undone_at':      self.undone_at.isoformat(),
            'sale_data':      self.sale_dict,
        }

    def __repr__(self):
        return f"<SaleUndoLog {self.invoice_number} by {self.user_id} ({self.reason_type})>"
