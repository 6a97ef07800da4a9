"""
app/inventory/validators.py
----------------------------
Validation for stock intake (receiving a new batch).
Returns a dict of field -> error_message; empty means valid.
"""
from datetime import date
from decimal import Decimal, InvalidOperation

# Numeric(10, 2) batch cost and price columns
MAX_UNIT_AMOUNT = Decimal('99999999.99')


def _as_text(form_data: dict, key: str, default: str = '') -> str:
    value = form_data.get(key, default)
    if value is None:
        return default
    return str(value).strip()


def validate_batch_form(form_data: dict) -> dict:
    """
    Validate raw form/JSON data for receiving stock.

    Fields: quantity, unit_cost, unit_price, warranty_months, intake_date
    (ISO date, optional, defaults to today).
    """
    errors = {}

    # ── quantity ─────────────────────────────────────────────────
    qty_raw = _as_text(form_data, 'quantity')
    try:
        if int(qty_raw) < 1:
            errors['quantity'] = 'Quantity must be at least 1.'
    except ValueError:
        errors['quantity'] = 'Quantity must be a whole number.'

    # ── unit_cost / unit_price ───────────────────────────────────
    for field, label in (('unit_cost', 'Unit cost'), ('unit_price', 'Unit price')):
        raw = _as_text(form_data, field)
        if not raw:
            errors[field] = f'{label} is required.'
            continue
        try:
            value = Decimal(raw)
            if not value.is_finite():
                errors[field] = f'{label} must be a valid number.'
            elif value < 0:
                errors[field] = f'{label} cannot be negative.'
            elif value > MAX_UNIT_AMOUNT:
                errors[field] = f'{label} cannot exceed {MAX_UNIT_AMOUNT}.'
        except InvalidOperation:
            errors[field] = f'{label} must be a valid number.'

    # ── warranty_months ──────────────────────────────────────────
    warranty_raw = _as_text(form_data, 'warranty_months', '0') or '0'
    try:
        if int(warranty_raw) < 0:
            errors['warranty_months'] = 'Warranty cannot be negative.'
    except ValueError:
        errors['warranty_months'] = 'Warranty must be a whole number of months.'

    # ── intake_date ──────────────────────────────────────────────
    intake_raw = _as_text(form_data, 'intake_date')
    if intake_raw:
        try:
            date.fromisoformat(intake_raw)
        except ValueError:
            errors['intake_date'] = 'Intake date must be YYYY-MM-DD.'

    return errors


def parse_batch_form(form_data: dict) -> dict:
    """
    Convert validated raw values to Python types.
    Call only after validate_batch_form returns no errors.
    """
    intake_raw = _as_text(form_data, 'intake_date')
    return {
        'quantity':        int(_as_text(form_data, 'quantity')),
        'unit_cost':       Decimal(_as_text(form_data, 'unit_cost')),
        'unit_price':      Decimal(_as_text(form_data, 'unit_price')),
        'warranty_months': int(_as_text(form_data, 'warranty_months', '0') or '0'),
        'intake_date':     date.fromisoformat(intake_raw) if intake_raw else date.today(),
    }
