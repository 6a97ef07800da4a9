"""
app/billing/payment.py
----------------------
Money arithmetic for a sale: line discounts, totals and change.

All values are Decimal quantized to 0.01, never float.
"""
from __future__ import annotations
import enum
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP


Q = Decimal('0.01')
HUNDRED = Decimal('100')


class PaymentMethod(enum.Enum):
    cash          = "cash"
    card          = "card"
    bank_transfer = "bank_transfer"


PAYMENT_METHOD_CHOICES = [m.value for m in PaymentMethod]


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(Q, rounding=ROUND_HALF_UP)


def clamp_discount(discount) -> Decimal:
    """Discount percentage forced into [0, 100]."""
    d = Decimal(str(discount))
    return min(max(d, Decimal('0')), HUNDRED)


def discounted_price(price, discount) -> Decimal:
    """price × (1 − discount/100); 0% leaves the price unchanged."""
    p = Decimal(str(price))
    d = clamp_discount(discount)
    return money(p * (HUNDRED - d) / HUNDRED)


def line_subtotal(unit_price, quantity: int, discount) -> Decimal:
    return discounted_price(Decimal(str(unit_price)) * quantity, discount)


@dataclass(frozen=True)
class Reconciliation:
    total:           Decimal
    amount_tendered: Decimal
    change_due:      Decimal

    @property
    def is_sufficient(self) -> bool:
        """False is a legal draft state; commit refuses it."""
        return self.amount_tendered >= self.total

    @property
    def balance_due(self) -> Decimal:
        return max(Decimal('0.00'), self.total - self.amount_tendered)

    def to_dict(self) -> dict:
        return {
            'total':           str(self.total),
            'amount_tendered': str(self.amount_tendered),
            'change_due':      str(self.change_due),
            'balance_due':     str(self.balance_due),
            'is_sufficient':   self.is_sufficient,
        }


def reconcile(total, amount_tendered) -> Reconciliation:
    """change_due = max(0, tendered − total)."""
    total    = money(total)
    tendered = money(amount_tendered)
    return Reconciliation(
        total           = total,
        amount_tendered = tendered,
        change_due      = max(Decimal('0.00'), tendered - total),
    )
