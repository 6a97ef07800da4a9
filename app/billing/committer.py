"""
app/billing/committer.py
------------------------
Turn a cart into a committed Sale, all-or-nothing.

Steps, inside one transaction:
  1. Validate: cart non-empty, customer phone or explicit walk-in,
     tendered ≥ total.
  2. Lock every referenced batch with SELECT … FOR UPDATE, in ascending id
     order so two commits touching the same batches cannot deadlock.
  3. Re-check and decrement each batch with a guarded UPDATE
     (… WHERE remaining_quantity >= :qty). Zero rows matched means another
     sale got there first → InsufficientStock and the whole sale rolls back.
     The guard keeps stock non-negative even on engines that ignore FOR UPDATE.
  4. Snapshot each line into a SaleItem.
  5. Mint the invoice number and persist the Sale.
  6. Commit, then push the sale notification to live streams.

Nothing is visible to other readers until step 6.
"""
from __future__ import annotations
import json
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app import db
from app.billing.cart import CartState, cart_totals
from app.billing.invoice import generate_invoice_number
from app.billing.models import Sale, SaleItem
from app.billing.payment import PaymentMethod, Reconciliation, reconcile
from app.billing.validators import CustomerInfo
from app.customers.models import WALK_IN_NAME, find_or_create_customer
from app.errors import ValidationError, InvalidPayment, InsufficientStock, StoreError
from app.inventory.models import StockBatch, InventoryLog
from app.notifications.models import NotificationType
from app.notifications.service import notify, publish_pending, discard_pending
from app.settings.models import get_sale_undo_time_limit


@dataclass(frozen=True)
class CommitResult:
    """Handed back to the caller, who keeps it for receipt rendering."""
    sale:           Sale
    reconciliation: Reconciliation


def _validate(cart: CartState, customer: CustomerInfo, amount_tendered) -> Reconciliation:
    if cart.is_empty:
        raise ValidationError('Cart is empty. Add products before completing a sale.')
    if customer is None or (not customer.walk_in and not customer.phone):
        raise ValidationError('Customer phone number is required.', {'field': 'customer'})

    rec = reconcile(cart_totals(cart)['subtotal'], amount_tendered)
    if not rec.is_sufficient:
        raise InvalidPayment(
            f'Amount tendered {rec.amount_tendered} is less than the total {rec.total}.',
            {'total': str(rec.total), 'amount_tendered': str(rec.amount_tendered),
             'balance_due': str(rec.balance_due)},
        )
    return rec


def _quantities_by_batch(cart: CartState) -> "OrderedDict[int, int]":
    needed = OrderedDict()
    for batch_id in sorted({ln.batch_id for ln in cart.lines}):
        needed[batch_id] = cart.quantity_for_batch(batch_id)
    return needed


def _lock_batches(batch_ids) -> dict:
    locked = {}
    for bid in batch_ids:
        batch = (
            db.session.query(StockBatch)
            .filter(StockBatch.id == bid)
            .with_for_update()
            .first()
        )
        if batch is None:
            raise InsufficientStock(f'Batch {bid} no longer exists.', {'batch_id': bid})
        locked[bid] = batch
    return locked


def _decrement(batch: StockBatch, qty: int, cashier_id: int, product_name: str) -> None:
    available = batch.remaining_quantity
    if available < qty:
        raise InsufficientStock(
            f'Insufficient stock for "{product_name}". Available: {available}, requested: {qty}.',
            {'batch_id': batch.id, 'available': available, 'requested': qty},
        )

    result = db.session.execute(
        update(StockBatch)
        .where(StockBatch.id == batch.id, StockBatch.remaining_quantity >= qty)
        .values(remaining_quantity=StockBatch.remaining_quantity - qty)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientStock(
            f'Insufficient stock for "{product_name}". It was sold while this sale was open.',
            {'batch_id': batch.id, 'requested': qty},
        )

    db.session.add(InventoryLog(
        batch_id   = batch.id,
        old_stock  = available,
        new_stock  = available - qty,
        changed_by = cashier_id,
        reason     = 'Sale Deduction',
    ))


def commit_sale(cart: CartState, customer: CustomerInfo, payment_method: PaymentMethod,
                amount_tendered, cashier_id: int, now: datetime = None) -> CommitResult:
    """
    Raises ValidationError, InvalidPayment, InsufficientStock or StoreError;
    on any failure nothing is written.
    """
    now    = now or datetime.utcnow()
    rec    = _validate(cart, customer, amount_tendered)
    totals = cart_totals(cart)
    logger = current_app.logger

    try:
        needed = _quantities_by_batch(cart)
        locked = _lock_batches(needed.keys())

        for line in cart.lines:
            if locked[line.batch_id].product_id != line.product_id:
                raise ValidationError(
                    f'Batch {line.batch_id} does not belong to "{line.product_name}".',
                    {'line_id': line.line_id},
                )

        names = {ln.batch_id: ln.product_name for ln in cart.lines}
        for bid, qty in needed.items():
            _decrement(locked[bid], qty, cashier_id, names[bid])

        if customer.walk_in:
            customer_row = None
        else:
            customer_row = find_or_create_customer(customer.phone, customer.name, customer.email)

        invoice_number = generate_invoice_number(db.session, now)

        sale = Sale(
            invoice_number     = invoice_number,
            cashier_id         = cashier_id,
            customer_id        = customer_row.id if customer_row else None,
            customer_name      = customer_row.name if customer_row else WALK_IN_NAME,
            customer_phone     = customer_row.phone if customer_row else None,
            payment_method     = payment_method.value,
            subtotal           = totals['gross'],
            discount_total     = totals['discount_total'],
            grand_total        = rec.total,
            amount_tendered    = rec.amount_tendered,
            change_due         = rec.change_due,
            undo_limit_minutes = get_sale_undo_time_limit(),
            created_at         = now,
        )
        for line in cart.lines:
            sale.items.append(SaleItem(
                product_id       = line.product_id,
                batch_id         = line.batch_id,
                product_name     = line.product_name,
                unit_price       = line.unit_price,
                discount_percent = line.discount,
                warranty_months  = line.warranty_months,
                quantity         = line.quantity,
                subtotal         = line.subtotal,
                serials          = json.dumps([s for s in line.serials if s]),
            ))
        db.session.add(sale)
        db.session.flush()

        notify(
            NotificationType.order,
            'Sale completed',
            f'Invoice {invoice_number} for {sale.customer_name}: {rec.total}',
            data={'event': 'sale_created', 'invoice_number': invoice_number,
                  'grand_total': str(rec.total), 'cashier_id': cashier_id},
            reference_id=invoice_number, reference_type='sale',
        )
        db.session.commit()

    except (ValidationError, InsufficientStock) as exc:
        db.session.rollback()
        discard_pending()
        logger.warning(f"Sale rollback ({exc.code}) for user {cashier_id}: {exc.message}")
        raise

    except IntegrityError as exc:
        db.session.rollback()
        discard_pending()
        logger.error(f"Sale rollback (IntegrityError) for user {cashier_id}: {exc}")
        raise StoreError('A database error occurred. Please try again.')

    except SQLAlchemyError as exc:
        db.session.rollback()
        discard_pending()
        logger.error(f"Sale rollback ({exc.__class__.__name__}) for user {cashier_id}: {exc}")
        raise StoreError('The sale could not be saved. Please try again.')

    except Exception:
        db.session.rollback()
        discard_pending()
        raise

    publish_pending()
    logger.info(f"Sale completed by User ID {cashier_id}: {invoice_number} | Total: {rec.total}")
    return CommitResult(sale=sale, reconciliation=rec)
