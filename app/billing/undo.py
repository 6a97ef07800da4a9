"""
app/billing/undo.py
-------------------
Time-boxed reversal of a cashier's most recent sale.

Each committed sale opens an UndoWindow for its cashier:

    Active ──Reverse──▶ Used
       └────deadline──▶ Expired

Whether a window is still Active is purely a function of the current time
against the deadline (commit time + the undo limit in force at commit).
A UI countdown may poll for display; it is never the source of truth:
reverse_sale() re-checks the window itself at call time.

Only the cashier's latest sale is reachable; there is no multi-level undo.
"""
from __future__ import annotations
import enum
import json
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from app import db
from app.billing.models import Sale, SaleUndoLog
from app.errors import NotFound, UndoNotAllowed, WindowExpired, WindowAlreadyUsed, StoreError
from app.inventory.models import StockBatch, InventoryLog
from app.notifications.models import NotificationType
from app.notifications.service import notify, publish_pending, discard_pending
from app.settings.models import get_sale_undo_time_limit


class UndoState(enum.Enum):
    active  = "active"
    used    = "used"
    expired = "expired"


@dataclass(frozen=True)
class UndoWindow:
    invoice_number: str
    user_id:        int
    started_at:     datetime
    deadline:       datetime
    state:          UndoState = UndoState.active

    @property
    def limit_minutes(self) -> int:
        return int((self.deadline - self.started_at).total_seconds() // 60)


# ── Events ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Tick:
    """Clock advanced (countdown refresh)."""
    now: datetime


@dataclass(frozen=True)
class Reverse:
    now: datetime


# ── Pure window logic ─────────────────────────────────────────────

def open_window(invoice_number: str, user_id: int, started_at: datetime,
                limit_minutes: int) -> UndoWindow:
    return UndoWindow(
        invoice_number = invoice_number,
        user_id        = user_id,
        started_at     = started_at,
        deadline       = started_at + timedelta(minutes=limit_minutes),
    )


def window_for_sale(sale: Sale) -> UndoWindow:
    window = open_window(sale.invoice_number, sale.cashier_id, sale.created_at,
                         sale.undo_limit_minutes)
    if sale.is_reversed:
        window = replace(window, state=UndoState.used)
    return window


def window_state(window: UndoWindow, now: datetime) -> UndoState:
    if window.state is not UndoState.active:
        return window.state
    if now >= window.deadline:
        return UndoState.expired
    return UndoState.active


def can_undo(window: Optional[UndoWindow], now: datetime) -> bool:
    return window is not None and window_state(window, now) is UndoState.active


def remaining_seconds(window: Optional[UndoWindow], now: datetime) -> int:
    if not can_undo(window, now):
        return 0
    return math.ceil((window.deadline - now).total_seconds())


def reduce_window(window: UndoWindow, event) -> UndoWindow:
    """
    Tick moves an Active window past its deadline to Expired.
    Reverse moves Active to Used, or raises if the window is spent.
    Used and Expired are terminal.
    """
    if isinstance(event, Tick):
        state = window_state(window, event.now)
        return window if state is window.state else replace(window, state=state)
    if isinstance(event, Reverse):
        state = window_state(window, event.now)
        if state is UndoState.used:
            raise WindowAlreadyUsed(f'Sale {window.invoice_number} has already been undone.')
        if state is UndoState.expired:
            raise WindowExpired(
                f'The {window.limit_minutes} minute undo window for sale '
                f'{window.invoice_number} has expired.'
            )
        return replace(window, state=UndoState.used)
    raise TypeError(f'Unknown undo event {event!r}')


# ── Store-backed operations ───────────────────────────────────────

def last_sale_for(user_id: int) -> Optional[Sale]:
    return (
        Sale.query
        .filter(Sale.cashier_id == user_id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .first()
    )


def undo_status(user_id: int, now: datetime = None) -> dict:
    """What the sale screen needs to show (or hide) the undo button."""
    now  = now or datetime.utcnow()
    sale = last_sale_for(user_id)
    if sale is None:
        return {'sale': None, 'can_undo': False, 'remaining_seconds': 0,
                'configured_limit_minutes': get_sale_undo_time_limit()}

    window = window_for_sale(sale)
    return {
        'sale':                     sale,
        'can_undo':                 can_undo(window, now),
        'remaining_seconds':        remaining_seconds(window, now),
        'configured_limit_minutes': sale.undo_limit_minutes,
    }


def _restock(item, user_id: int) -> None:
    batch = (
        db.session.query(StockBatch)
        .filter(StockBatch.id == item.batch_id)
        .with_for_update()
        .first()
    )
    if batch is None:
        raise StoreError(f'Batch {item.batch_id} no longer exists; cannot restock {item.product_name}.')
    old = batch.remaining_quantity
    result = db.session.execute(
        update(StockBatch)
        .where(StockBatch.id == item.batch_id,
               StockBatch.remaining_quantity + item.quantity <= StockBatch.quantity)
        .values(remaining_quantity=StockBatch.remaining_quantity + item.quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StoreError(f'Batch {item.batch_id} cannot take back {item.quantity} unit(s).')
    db.session.add(InventoryLog(
        batch_id   = item.batch_id,
        old_stock  = old,
        new_stock  = old + item.quantity,
        changed_by = user_id,
        reason     = 'Sale Undo',
    ))


def reverse_sale(invoice_number: str, user_id: int, reason_type: str,
                 reason_details: str = None, now: datetime = None) -> SaleUndoLog:
    """
    Restock every line, mark the sale reversed, write one SaleUndoLog and
    notify, all in one transaction.

    Raises NotFound, UndoNotAllowed, WindowExpired, WindowAlreadyUsed or
    StoreError.
    """
    now    = now or datetime.utcnow()
    logger = current_app.logger

    try:
        sale = (
            db.session.query(Sale)
            .filter(Sale.invoice_number == invoice_number)
            .with_for_update()
            .first()
        )
        if sale is None:
            raise NotFound(f'Sale {invoice_number} not found.')
        if sale.cashier_id != user_id:
            raise UndoNotAllowed('Only the cashier who made a sale can undo it.')

        latest = last_sale_for(user_id)
        if latest.id != sale.id and not sale.is_reversed:
            raise WindowExpired(
                f'Sale {invoice_number} is no longer your most recent sale and cannot be undone.'
            )

        reduce_window(window_for_sale(sale), Reverse(now))

        # Claim the reversal first so a concurrent second undo matches no row
        claimed = db.session.execute(
            update(Sale)
            .where(Sale.id == sale.id, Sale.reversed_at.is_(None))
            .values(reversed_at=now, reversed_by=user_id)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise WindowAlreadyUsed(f'Sale {invoice_number} has already been undone.')

        snapshot = sale.to_dict()
        snapshot['reversed_at'] = now.isoformat()

        for item in sorted(sale.items, key=lambda i: i.batch_id):
            _restock(item, user_id)

        entry = SaleUndoLog(
            invoice_number = invoice_number,
            user_id        = user_id,
            reason_type    = reason_type,
            reason_details = reason_details,
            sale_data      = json.dumps(snapshot),
            undone_at      = now,
        )
        db.session.add(entry)

        notify(
            NotificationType.order,
            'Sale undone',
            f'Invoice {invoice_number} was reversed ({reason_type}).',
            data={'event': 'sale_reversed', 'invoice_number': invoice_number,
                  'grand_total': snapshot['grand_total'], 'reason_type': reason_type},
            reference_id=invoice_number, reference_type='sale',
        )
        db.session.commit()

    except (NotFound, UndoNotAllowed, StoreError) as exc:
        db.session.rollback()
        discard_pending()
        logger.warning(f"Undo rejected ({exc.code}) for user {user_id} on {invoice_number}: {exc.message}")
        raise

    except SQLAlchemyError as exc:
        db.session.rollback()
        discard_pending()
        logger.error(f"Undo rollback ({exc.__class__.__name__}) for user {user_id} on {invoice_number}: {exc}")
        raise StoreError('The sale could not be undone. Please try again.')

    except Exception:
        db.session.rollback()
        discard_pending()
        raise

    publish_pending()
    logger.info(f"Sale {invoice_number} undone by User ID {user_id}: {reason_type}")
    return entry
