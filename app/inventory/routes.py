from flask import request, jsonify, current_app, session

from app import db
from app.inventory import inventory
from app.inventory.models import Product, StockBatch, InventoryLog
from app.inventory.allocator import list_available_batches, auto_select_batch, get_product
from app.inventory.validators import validate_batch_form, parse_batch_form
from app.notifications.models import NotificationType
from app.notifications.service import notify, publish_pending, discard_pending
from app.auth.decorators import login_required, admin_required
from app.errors import ValidationError, NotFound


@inventory.route('/products')
@login_required
def products():
    """Active products with units on hand across all batches."""
    rows = Product.query.filter_by(is_active=True).order_by(Product.name.asc()).all()
    return jsonify({'status': 'success', 'data': {'products': [{
        'id':                 p.id,
        'name':               p.name,
        'category':           p.category,
        'remaining_quantity': p.total_remaining,
    } for p in rows]}})


@inventory.route('/products/<int:product_id>/batches', methods=['GET'])
@login_required
def batches(product_id):
    """
    Purchasable batches, oldest intake first.
    can_sell=False tells the client to disable quantity and serial entry.
    """
    product = get_product(product_id)
    if product is None or not product.is_active:
        raise NotFound(f'Product {product_id} not found.')

    available = list_available_batches(product_id)
    chosen    = auto_select_batch(available)
    return jsonify({'status': 'success', 'data': {
        'product':                {'id': product.id, 'name': product.name,
                                   'category': product.category},
        'batches':                [b.to_dict() for b in available],
        'auto_selected_batch_id': chosen.id if chosen else None,
        'can_sell':               bool(available),
    }})


@inventory.route('/products/<int:product_id>/batches', methods=['POST'])
@admin_required
def receive_batch(product_id):
    """Receive stock as a new batch."""
    product = get_product(product_id)
    if product is None:
        raise NotFound(f'Product {product_id} not found.')

    form = request.get_json(silent=True) or request.form.to_dict()
    errors = validate_batch_form(form)
    if errors:
        raise ValidationError('Invalid batch details.', {'fields': errors})
    fields = parse_batch_form(form)

    try:
        batch = StockBatch(product_id=product.id, remaining_quantity=fields['quantity'], **fields)
        db.session.add(batch)
        db.session.flush()
        db.session.add(InventoryLog(
            batch_id   = batch.id,
            old_stock  = 0,
            new_stock  = batch.remaining_quantity,
            changed_by = session['user_id'],
            reason     = 'Stock Intake',
        ))
        notify(
            NotificationType.inventory,
            'Stock received',
            f'{batch.quantity} x {product.name} received.',
            data={'batch_id': batch.id, 'product_id': product.id, 'quantity': batch.quantity},
            reference_id=batch.id, reference_type='batch',
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        discard_pending()
        raise
    publish_pending()

    current_app.logger.info(
        f"Batch {batch.id} received for product {product.id}: qty {batch.quantity} @ {batch.unit_price}"
    )
    return jsonify({'status': 'success', 'data': {'batch': batch.to_dict()}}), 201
