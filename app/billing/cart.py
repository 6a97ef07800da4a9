"""
app/billing/cart.py
--------------------
The draft sale (cart) as an immutable state plus a reducer.

    state = reduce_cart(state, AddLine(batch=snapshot, quantity=2, discount=5))
    state = reduce_cart(state, RemoveLine('L1'))

reduce_cart() never mutates its input; a rejected event raises
ValidationError and the caller still holds the previous state, so a
failed add can never leave the cart half-updated.

Between requests the state lives in the Flask session under 'cart':
{
    "next_seq": 3,
    "lines": [
        {"line_id": "L1", "product_id": 4, "product_name": "USB Cable",
         "batch_id": 9, "unit_price": "250.00", "warranty_months": 6,
         "quantity": 2, "discount": "5", "serials": ["SN1", null]},
        ...
    ]
}
Money is stored as strings to survive JSON serialisation.
"""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Optional, Tuple

from flask import session

from app.billing.payment import clamp_discount, line_subtotal, money
from app.errors import ValidationError
from app.inventory.allocator import BatchSnapshot


CART_KEY = 'cart'


@dataclass(frozen=True)
class CartLine:
    line_id:         str
    product_id:      int
    product_name:    str
    batch_id:        int
    unit_price:      Decimal
    warranty_months: int
    quantity:        int
    discount:        Decimal
    serials:         Tuple[Optional[str], ...] = ()

    @property
    def gross(self) -> Decimal:
        return money(self.unit_price * self.quantity)

    @property
    def subtotal(self) -> Decimal:
        return line_subtotal(self.unit_price, self.quantity, self.discount)

    def to_dict(self) -> dict:
        return {
            'line_id':         self.line_id,
            'product_id':      self.product_id,
            'product_name':    self.product_name,
            'batch_id':        self.batch_id,
            'unit_price':      str(self.unit_price),
            'warranty_months': self.warranty_months,
            'quantity':        self.quantity,
            'discount':        str(self.discount),
            'serials':         list(self.serials),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CartLine':
        return cls(
            line_id         = data['line_id'],
            product_id      = int(data['product_id']),
            product_name    = data['product_name'],
            batch_id        = int(data['batch_id']),
            unit_price      = Decimal(data['unit_price']),
            warranty_months = int(data.get('warranty_months', 0)),
            quantity        = int(data['quantity']),
            discount        = Decimal(data.get('discount', '0')),
            serials         = tuple(data.get('serials') or ()),
        )


@dataclass(frozen=True)
class CartState:
    lines:    Tuple[CartLine, ...] = ()
    next_seq: int = 1

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def line(self, line_id: str) -> Optional[CartLine]:
        for ln in self.lines:
            if ln.line_id == line_id:
                return ln
        return None

    def quantity_for_batch(self, batch_id: int) -> int:
        return sum(ln.quantity for ln in self.lines if ln.batch_id == batch_id)

    def to_dict(self) -> dict:
        return {'next_seq': self.next_seq, 'lines': [ln.to_dict() for ln in self.lines]}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'CartState':
        if not data:
            return cls()
        return cls(
            lines    = tuple(CartLine.from_dict(d) for d in data.get('lines', [])),
            next_seq = int(data.get('next_seq', 1)),
        )


# ── Events ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AddLine:
    batch:    BatchSnapshot
    quantity: int
    discount: Decimal = Decimal('0')
    serials:  Tuple[Optional[str], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RemoveLine:
    line_id: str


@dataclass(frozen=True)
class ClearCart:
    pass


# ── Reducer ───────────────────────────────────────────────────────

def _normalise_serials(serials) -> Tuple[Optional[str], ...]:
    """Keep positions; blank entries become None (serial capture is optional)."""
    out = []
    for s in serials or ():
        text = str(s).strip() if s is not None else ''
        out.append(text or None)
    return tuple(out)


def _add_line(state: CartState, event: AddLine) -> CartState:
    batch = event.batch
    qty = event.quantity
    if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
        raise ValidationError('Quantity must be a whole number of at least 1.',
                              {'field': 'quantity'})

    # Checked against the allocator's snapshot; commit re-checks for real.
    already = state.quantity_for_batch(batch.batch_id)
    if qty + already > batch.remaining_quantity:
        raise ValidationError(
            f'Only {batch.remaining_quantity - already} unit(s) of "{batch.product_name}" '
            f'left in batch {batch.batch_id}.',
            {'field': 'quantity', 'available': batch.remaining_quantity - already},
        )

    serials = _normalise_serials(event.serials)
    if len(serials) > qty:
        raise ValidationError(
            f'{len(serials)} serial numbers given for a quantity of {qty}.',
            {'field': 'serials'},
        )

    line = CartLine(
        line_id         = f'L{state.next_seq}',
        product_id      = batch.product_id,
        product_name    = batch.product_name,
        batch_id        = batch.batch_id,
        unit_price      = batch.unit_price,
        warranty_months = batch.warranty_months,
        quantity        = qty,
        discount        = clamp_discount(event.discount),
        serials         = serials,
    )
    return replace(state, lines=state.lines + (line,), next_seq=state.next_seq + 1)


def _remove_line(state: CartState, event: RemoveLine) -> CartState:
    if state.line(event.line_id) is None:
        raise ValidationError(f'No cart line "{event.line_id}".', {'field': 'line_id'})
    return replace(state, lines=tuple(ln for ln in state.lines if ln.line_id != event.line_id))


def reduce_cart(state: CartState, event) -> CartState:
    if isinstance(event, AddLine):
        return _add_line(state, event)
    if isinstance(event, RemoveLine):
        return _remove_line(state, event)
    if isinstance(event, ClearCart):
        return CartState(next_seq=state.next_seq)
    raise TypeError(f'Unknown cart event {event!r}')


# ── Totals ────────────────────────────────────────────────────────

def cart_subtotal(state: CartState) -> Decimal:
    """Σ line subtotals (after line discounts), the amount due."""
    return sum((ln.subtotal for ln in state.lines), Decimal('0.00'))


def cart_totals(state: CartState) -> dict:
    """
    Returns:
        {
            'gross':          Decimal,   ← Σ unit_price × qty
            'discount_total': Decimal,   ← gross − subtotal
            'subtotal':       Decimal,   ← Σ line subtotals (amount due)
        }
    """
    gross    = sum((ln.gross for ln in state.lines), Decimal('0.00'))
    subtotal = cart_subtotal(state)
    return {'gross': gross, 'discount_total': gross - subtotal, 'subtotal': subtotal}


# ── Session storage ───────────────────────────────────────────────

def get_cart() -> CartState:
    return CartState.from_dict(session.get(CART_KEY))


def save_cart(state: CartState) -> None:
    session[CART_KEY] = state.to_dict()
    session.modified  = True


def clear_cart() -> None:
    """Drop the draft. Nothing was persisted server-side, so nothing to undo."""
    session.pop(CART_KEY, None)
    session.modified = True
