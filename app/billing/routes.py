from datetime import datetime
from flask import request, jsonify

from app import db
from app.billing import billing
from app.billing.models import Sale, SaleUndoLog
from app.billing.cart import (
    get_cart, save_cart, clear_cart, reduce_cart,
    AddLine, RemoveLine, cart_totals, cart_subtotal,
)
from app.billing.payment import reconcile
from app.billing.committer import commit_sale
from app.billing.undo import undo_status, reverse_sale
from app.billing.validators import (
    validate_line_payload, parse_line_payload,
    validate_checkout_payload, parse_checkout_payload,
    validate_undo_payload, parse_undo_payload, to_amount, MAX_AMOUNT,
)
from app.inventory.models import StockBatch
from app.inventory.allocator import batch_snapshot
from app.auth.decorators import login_required, admin_required, current_user_id
from app.errors import ValidationError, NotFound


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _cart_response(state, status=200, **extra):
    totals = cart_totals(state)
    body = {
        'lines':  [ln.to_dict() for ln in state.lines],
        'totals': {k: str(v) for k, v in totals.items()},
    }
    body.update(extra)
    return jsonify({'status': 'success', 'data': body}), status


# ── CART ──────────────────────────────────────────────────────────

@billing.route('/cart', methods=['GET'])
@login_required
def cart():
    return _cart_response(get_cart())


@billing.route('/cart/lines', methods=['POST'])
@login_required
def add_line():
    """Add one batch-bound line to the draft."""
    data = _payload()
    errors = validate_line_payload(data)
    if errors:
        raise ValidationError('Invalid cart line.', {'fields': errors})
    fields = parse_line_payload(data)

    batch = db.session.get(StockBatch, fields['batch_id'])
    if batch is None or not batch.product.is_active:
        raise NotFound(f"Batch {fields['batch_id']} not found.")

    state = reduce_cart(get_cart(), AddLine(
        batch    = batch_snapshot(batch),
        quantity = fields['quantity'],
        discount = fields['discount'],
        serials  = fields['serials'],
    ))
    save_cart(state)
    return _cart_response(state, 201, line=state.lines[-1].to_dict())


@billing.route('/cart/lines/<line_id>', methods=['DELETE'])
@login_required
def remove_line(line_id):
    state = reduce_cart(get_cart(), RemoveLine(line_id))
    save_cart(state)
    return _cart_response(state)


@billing.route('/cart', methods=['DELETE'])
@login_required
def discard_cart():
    """Cancel the draft sale. Nothing server-side to roll back."""
    clear_cart()
    return _cart_response(get_cart())


@billing.route('/cart/reconcile', methods=['POST'])
@login_required
def reconcile_cart():
    """Change due for a tendered amount; an underpaid draft is allowed here."""
    tendered = to_amount(_payload().get('amount_tendered'))
    if tendered is None or tendered < 0:
        raise ValidationError(f'Amount tendered must be a non-negative number up to {MAX_AMOUNT}.',
                              {'field': 'amount_tendered'})
    rec = reconcile(cart_subtotal(get_cart()), tendered)
    return jsonify({'status': 'success', 'data': rec.to_dict()})


# ── COMMIT ────────────────────────────────────────────────────────

@billing.route('/sales', methods=['POST'])
@login_required
def commit():
    """
    Commit the session cart as a sale. On success the cart is cleared and
    the committed sale comes back in the response for receipt printing.
    """
    data = _payload()
    errors = validate_checkout_payload(data)
    if errors:
        raise ValidationError('Invalid checkout details.', {'fields': errors})
    fields = parse_checkout_payload(data)

    result = commit_sale(
        cart            = get_cart(),
        customer        = fields['customer'],
        payment_method  = fields['payment_method'],
        amount_tendered = fields['amount_tendered'],
        cashier_id      = current_user_id(),
    )
    clear_cart()
    return jsonify({'status': 'success', 'data': {
        'sale':           result.sale.to_dict(),
        'reconciliation': result.reconciliation.to_dict(),
    }}), 201


# ── LAST SALE / UNDO ──────────────────────────────────────────────

@billing.route('/sales/last', methods=['GET'])
@login_required
def last_sale():
    """The acting user's latest sale and whether it can still be undone."""
    status = undo_status(current_user_id())
    sale = status['sale']
    return jsonify({'status': 'success', 'data': {
        'sale':                     sale.to_dict() if sale else None,
        'can_undo':                 status['can_undo'],
        'remaining_seconds':        status['remaining_seconds'],
        'configured_limit_minutes': status['configured_limit_minutes'],
    }})


@billing.route('/sales/<invoice_number>', methods=['GET'])
@login_required
def sale_detail(invoice_number):
    sale = Sale.query.filter_by(invoice_number=invoice_number).first()
    if sale is None:
        raise NotFound(f'Sale {invoice_number} not found.')
    return jsonify({'status': 'success', 'data': {'sale': sale.to_dict()}})


@billing.route('/sales/<invoice_number>/undo', methods=['POST'])
@login_required
def undo(invoice_number):
    data = _payload()
    errors = validate_undo_payload(data)
    if errors:
        raise ValidationError('Invalid undo reason.', {'fields': errors})
    fields = parse_undo_payload(data)

    entry = reverse_sale(invoice_number, current_user_id(), **fields)
    return jsonify({'status': 'success', 'data': {'undo_log': entry.to_dict()}})


# ── UNDO LOG (admin) ──────────────────────────────────────────────

@billing.route('/undo-logs', methods=['GET'])
@admin_required
def undo_logs():
    try:
        page  = max(int(request.args.get('page', 1)), 1)
        limit = min(max(int(request.args.get('limit', 50)), 1), 200)
        user_id = request.args.get('user_id', type=int)
        start = request.args.get('start_date')
        end   = request.args.get('end_date')
        start = datetime.fromisoformat(start) if start else None
        end   = datetime.fromisoformat(end) if end else None
    except ValueError:
        raise ValidationError('Invalid filter values.')

    query = SaleUndoLog.query
    if user_id:
        query = query.filter(SaleUndoLog.user_id == user_id)
    if request.args.get('reason_type'):
        query = query.filter(SaleUndoLog.reason_type == request.args['reason_type'])
    if start:
        query = query.filter(SaleUndoLog.undone_at >= start)
    if end:
        query = query.filter(SaleUndoLog.undone_at <= end)

    total = query.count()
    rows = (query.order_by(SaleUndoLog.undone_at.desc(), SaleUndoLog.id.desc())
                 .limit(limit).offset((page - 1) * limit).all())
    return jsonify({
        'status':     'success',
        'results':    len(rows),
        'pagination': {'total_count': total, 'total_pages': -(-total // limit),
                       'current_page': page, 'limit': limit},
        'data':       {'logs': [r.to_dict() for r in rows]},
    })


@billing.route('/undo-logs/<int:log_id>', methods=['GET'])
@admin_required
def undo_log_detail(log_id):
    entry = db.session.get(SaleUndoLog, log_id)
    if entry is None:
        raise NotFound('No undo log found with that ID.')
    return jsonify({'status': 'success', 'data': {'log': entry.to_dict()}})
