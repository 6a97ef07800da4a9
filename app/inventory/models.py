from decimal import Decimal
from datetime import datetime, date
from app import db


class Product(db.Model):
    """A sellable catalogue item. Stock lives on its batches."""
    __tablename__ = 'products'

    id          = db.Column(db.Integer, primary_key=True)
    name        = db.Column(db.String(200), nullable=False, index=True)
    category    = db.Column(db.String(100), nullable=True)
    is_active   = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at  = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    batches = db.relationship('StockBatch', backref='product', lazy='dynamic',
                              cascade='all, delete-orphan')

    @property
    def total_remaining(self) -> int:
        """Units still on hand across every batch."""
        return sum(b.remaining_quantity for b in self.batches)

    def __repr__(self):
        return f"<Product {self.id} {self.name!r}>"


class StockBatch(db.Model):
    """
    One purchase lot of a product: a received quantity at one cost, price
    and warranty. remaining_quantity is only changed by a sale commit
    (decrement) or a sale undo (increment).
    """
    __tablename__ = 'stock_batches'

    id                 = db.Column(db.Integer, primary_key=True)
    product_id         = db.Column(db.Integer, db.ForeignKey('products.id', ondelete='CASCADE'),
                                   nullable=False, index=True)
    intake_date        = db.Column(db.Date, nullable=False, default=date.today, index=True)
    unit_cost          = db.Column(db.Numeric(10, 2), nullable=False)
    unit_price         = db.Column(db.Numeric(10, 2), nullable=False)
    warranty_months    = db.Column(db.Integer, nullable=False, default=0)
    quantity           = db.Column(db.Integer, nullable=False)
    remaining_quantity = db.Column(db.Integer, nullable=False)
    created_at         = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('remaining_quantity >= 0', name='check_batch_remaining_non_negative'),
        db.CheckConstraint('remaining_quantity <= quantity', name='check_batch_remaining_le_total'),
        db.CheckConstraint('unit_price >= 0', name='check_batch_price_non_negative'),
    )

    @property
    def margin(self) -> Decimal:
        return Decimal(str(self.unit_price)) - Decimal(str(self.unit_cost))

    def to_dict(self) -> dict:
        return {
            'batch_id':           self.id,
            'product_id':         self.product_id,
            'remaining_quantity': self.remaining_quantity,
            'quantity':           self.quantity,
            'unit_sale_price':    str(self.unit_price),
            'warranty_months':    self.warranty_months,
            'intake_date':        self.intake_date.isoformat(),
        }

    def __repr__(self):
        return (f"<StockBatch {self.id} P:{self.product_id} "
                f"{self.remaining_quantity}/{self.quantity} @{self.unit_price}>")


class InventoryLog(db.Model):
    """
    Audit trail for batch stock changes.
    Tracks old vs new remaining quantity, who changed it, and why.
    """
    __tablename__ = 'inventory_logs'

    id          = db.Column(db.Integer, primary_key=True)
    batch_id    = db.Column(db.Integer, db.ForeignKey('stock_batches.id'), nullable=False, index=True)
    old_stock   = db.Column(db.Integer, nullable=False)
    new_stock   = db.Column(db.Integer, nullable=False)
    changed_by  = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    reason      = db.Column(db.String(255), nullable=False)
    timestamp   = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    batch = db.relationship('StockBatch', backref=db.backref('logs', lazy='select'))

    def __repr__(self):
        return f"<Log Batch:{self.batch_id} {self.old_stock}->{self.new_stock} ({self.reason})>"
