"""
app/billing/validators.py
-------------------------
Request payload checks for the billing endpoints.

validate_* return {field: error_message} (empty = valid);
parse_* convert a validated payload into typed values.

Payload shapes:
  add line  → {"batch_id": 9, "quantity": 2, "discount": 5, "serials": ["SN1"]}
  checkout  → {"customer": {"phone": "0771234567", "name": "Ann"} | {"walk_in": true},
               "payment_method": "cash", "amount_tendered": "1500.00"}
  undo      → {"reason_type": "Wrong quantity", "reason_details": "..."}
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from app.billing.payment import PaymentMethod, PAYMENT_METHOD_CHOICES, money


UNDO_REASONS = [
    'Incorrect item',
    'Wrong quantity',
    'Customer changed mind',
    'Pricing error',
    'Other',
]


@dataclass(frozen=True)
class CustomerInfo:
    phone:   Optional[str]
    name:    Optional[str] = None
    email:   Optional[str] = None
    walk_in: bool = False


WALK_IN = CustomerInfo(phone=None, walk_in=True)


def _int(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def to_decimal(value) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        d = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return d if d.is_finite() else None


# Largest value a Numeric(12, 2) money column holds
MAX_AMOUNT = Decimal('9999999999.99')


def to_amount(value) -> Optional[Decimal]:
    """to_decimal, but None when the value would not fit a money column."""
    d = to_decimal(value)
    if d is None or abs(d) > MAX_AMOUNT:
        return None
    return d


# ── Add line ──────────────────────────────────────────────────────

def validate_line_payload(data: dict) -> dict:
    errors = {}
    if _int(data.get('batch_id')) is None:
        errors['batch_id'] = 'A batch must be selected.'
    if _int(data.get('quantity')) is None:
        errors['quantity'] = 'Quantity must be a whole number.'
    if data.get('discount') not in (None, '') and to_amount(data.get('discount')) is None:
        errors['discount'] = 'Discount must be a number.'
    serials = data.get('serials')
    if serials is not None and not isinstance(serials, list):
        errors['serials'] = 'Serials must be a list.'
    return errors


def parse_line_payload(data: dict) -> dict:
    discount_raw = data.get('discount')
    return {
        'batch_id': _int(data['batch_id']),
        'quantity': _int(data['quantity']),
        'discount': to_amount(discount_raw) if discount_raw not in (None, '') else Decimal('0'),
        'serials':  tuple(data.get('serials') or ()),
    }


# ── Checkout ──────────────────────────────────────────────────────

def validate_checkout_payload(data: dict) -> dict:
    errors = {}

    customer = data.get('customer')
    if not isinstance(customer, dict):
        errors['customer'] = 'Customer phone or walk-in is required.'
    elif any(customer.get(k) is not None and not isinstance(customer.get(k), str)
             for k in ('phone', 'name', 'email')):
        errors['customer'] = 'Customer phone, name and email must be text.'
    elif not customer.get('walk_in') and not (customer.get('phone') or '').strip():
        errors['customer'] = 'Customer phone number is required.'

    method = data.get('payment_method', PaymentMethod.cash.value)
    if method not in PAYMENT_METHOD_CHOICES:
        errors['payment_method'] = f'Payment method must be one of {", ".join(PAYMENT_METHOD_CHOICES)}.'

    tendered = to_amount(data.get('amount_tendered'))
    if tendered is None:
        errors['amount_tendered'] = f'Amount tendered must be a number up to {MAX_AMOUNT}.'
    elif tendered < 0:
        errors['amount_tendered'] = 'Amount tendered cannot be negative.'

    return errors


def parse_customer(customer: dict) -> CustomerInfo:
    phone = str(customer.get('phone') or '').strip()
    if customer.get('walk_in') and not phone:
        return WALK_IN
    return CustomerInfo(
        phone = phone,
        name  = (customer.get('name') or '').strip() or None,
        email = (customer.get('email') or '').strip() or None,
    )


def parse_checkout_payload(data: dict) -> dict:
    return {
        'customer':        parse_customer(data['customer']),
        'payment_method':  PaymentMethod(data.get('payment_method', PaymentMethod.cash.value)),
        'amount_tendered': money(to_amount(data['amount_tendered'])),
    }


# ── Undo ──────────────────────────────────────────────────────────

def validate_undo_payload(data: dict) -> dict:
    errors = {}
    reason = data.get('reason_type')
    if reason not in UNDO_REASONS:
        errors['reason_type'] = 'Please select a reason.'
    elif reason == 'Other' and not str(data.get('reason_details') or '').strip():
        errors['reason_details'] = 'Please provide details for "Other" reason.'
    return errors


def parse_undo_payload(data: dict) -> dict:
    return {
        'reason_type':    data['reason_type'],
        'reason_details': str(data.get('reason_details') or '').strip() or None,
    }
