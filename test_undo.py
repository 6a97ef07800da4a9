"""
test_undo.py: the time-boxed undo window and sale reversal.

Run: pytest test_undo.py -v
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import delete
from sqlalchemy.exc import OperationalError

from app import create_app, db
from app.auth.models import User, RoleEnum
from app.billing.cart import CartState, AddLine, reduce_cart
from app.billing.committer import commit_sale
from app.billing.models import Sale, SaleUndoLog
from app.billing.payment import PaymentMethod
import app.billing.undo as undo
from app.billing.undo import (
    UndoState, Tick, Reverse, open_window, can_undo, remaining_seconds,
    reduce_window, reverse_sale, undo_status,
)
from app.billing.validators import CustomerInfo
from app.errors import NotFound, UndoNotAllowed, WindowExpired, WindowAlreadyUsed, StoreError
from app.inventory.allocator import batch_snapshot
from app.inventory.models import Product, StockBatch, InventoryLog
from app.notifications.models import Notification
from app.settings.models import SALE_UNDO_TIME_LIMIT, set_setting

T = datetime(2026, 5, 2, 15, 0, 0)
ANN = CustomerInfo(phone='0771234567', name='Ann')


# ── Window (pure) ─────────────────────────────────────────────────

def test_window_open_until_deadline():
    w = open_window('INV-2026-0001', 1, T, 10)
    assert can_undo(w, T + timedelta(minutes=9, seconds=59))
    assert not can_undo(w, T + timedelta(minutes=10, seconds=1))
    assert not can_undo(w, T + timedelta(minutes=10))
    assert not can_undo(None, T)


def test_remaining_seconds():
    w = open_window('INV-2026-0001', 1, T, 10)
    assert remaining_seconds(w, T) == 600
    assert remaining_seconds(w, T + timedelta(minutes=9, seconds=59, milliseconds=500)) == 1
    assert remaining_seconds(w, T + timedelta(minutes=11)) == 0


def test_tick_expires_and_expiry_is_final():
    w = open_window('INV-2026-0001', 1, T, 10)
    w = reduce_window(w, Tick(T + timedelta(minutes=5)))
    assert w.state is UndoState.active
    w = reduce_window(w, Tick(T + timedelta(minutes=11)))
    assert w.state is UndoState.expired
    # A clock that steps backwards does not reopen it
    w = reduce_window(w, Tick(T + timedelta(minutes=1)))
    assert w.state is UndoState.expired


def test_reverse_transitions():
    w = open_window('INV-2026-0001', 1, T, 10)
    used = reduce_window(w, Reverse(T + timedelta(minutes=1)))
    assert used.state is UndoState.used
    with pytest.raises(WindowAlreadyUsed):
        reduce_window(used, Reverse(T + timedelta(minutes=2)))
    with pytest.raises(WindowExpired):
        reduce_window(w, Reverse(T + timedelta(minutes=10, seconds=1)))


# ── Reversal (store) ──────────────────────────────────────────────

@pytest.fixture(scope='function')
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        for username in ('cashier1', 'cashier2'):
            user = User(username=username, name=username.title(), role=RoleEnum.cashier)
            user.set_password('pass123')
            db.session.add(user)
        db.session.commit()
        yield app
        db.session.remove()
        db.drop_all()


def user_id(username='cashier1'):
    return User.query.filter_by(username=username).one().id


def make_batch(quantity=3, remaining=None):
    p = Product(name='Headphones', category='Audio')
    db.session.add(p)
    db.session.flush()
    b = StockBatch(product_id=p.id, unit_cost=Decimal('40'), unit_price=Decimal('50.00'),
                   warranty_months=12, quantity=quantity,
                   remaining_quantity=quantity if remaining is None else remaining)
    db.session.add(b)
    db.session.commit()
    return b


def sell(batch, qty, cashier, now):
    cart = reduce_cart(CartState(), AddLine(batch=batch_snapshot(batch), quantity=qty))
    return commit_sale(cart, ANN, PaymentMethod.cash, Decimal('1000'), cashier, now=now).sale


def test_reverse_restores_stock(app):
    batch = make_batch(quantity=3)
    batch_id = batch.id
    cashier = user_id()
    sale = sell(batch, 2, cashier, T)
    invoice = sale.invoice_number
    assert db.session.get(StockBatch, batch_id).remaining_quantity == 1

    entry = reverse_sale(invoice, cashier, 'Wrong quantity', now=T + timedelta(minutes=3))

    assert db.session.get(StockBatch, batch_id).remaining_quantity == 3
    assert SaleUndoLog.query.count() == 1
    assert entry.sale_dict['invoice_number'] == invoice
    assert entry.sale_dict['items'][0]['quantity'] == 2
    reversed_sale = Sale.query.filter_by(invoice_number=invoice).one()
    assert reversed_sale.is_reversed
    assert reversed_sale.reversed_by == cashier
    log = InventoryLog.query.filter_by(reason='Sale Undo').one()
    assert (log.old_stock, log.new_stock) == (1, 3)
    assert Notification.query.filter_by(reference_id=invoice).count() == 2


def test_reverse_twice_rejected(app):
    batch = make_batch()
    batch_id = batch.id
    cashier = user_id()
    invoice = sell(batch, 1, cashier, T).invoice_number
    reverse_sale(invoice, cashier, 'Incorrect item', now=T + timedelta(minutes=1))

    with pytest.raises(WindowAlreadyUsed):
        reverse_sale(invoice, cashier, 'Incorrect item', now=T + timedelta(minutes=2))
    assert db.session.get(StockBatch, batch_id).remaining_quantity == 3
    assert SaleUndoLog.query.count() == 1


def test_reverse_after_deadline_rejected(app):
    batch = make_batch()
    batch_id = batch.id
    cashier = user_id()
    invoice = sell(batch, 1, cashier, T).invoice_number

    with pytest.raises(WindowExpired):
        reverse_sale(invoice, cashier, 'Pricing error', now=T + timedelta(minutes=10, seconds=1))
    assert db.session.get(StockBatch, batch_id).remaining_quantity == 2
    assert SaleUndoLog.query.count() == 0
    assert not Sale.query.filter_by(invoice_number=invoice).one().is_reversed


def test_only_latest_sale_is_reachable(app):
    batch = make_batch(quantity=5)
    cashier = user_id()
    first = sell(batch, 1, cashier, T).invoice_number
    sell(batch, 1, cashier, T + timedelta(minutes=1))

    with pytest.raises(WindowExpired):
        reverse_sale(first, cashier, 'Incorrect item', now=T + timedelta(minutes=2))


def test_other_cashiers_sale_rejected(app):
    batch = make_batch()
    invoice = sell(batch, 1, user_id('cashier1'), T).invoice_number
    with pytest.raises(UndoNotAllowed):
        reverse_sale(invoice, user_id('cashier2'), 'Incorrect item', now=T + timedelta(minutes=1))


def test_unknown_invoice(app):
    with pytest.raises(NotFound):
        reverse_sale('INV-2026-9999', user_id(), 'Incorrect item', now=T)


def test_limit_in_force_at_commit_applies(app):
    set_setting(SALE_UNDO_TIME_LIMIT, 1)
    db.session.commit()
    batch = make_batch()
    cashier = user_id()
    invoice = sell(batch, 1, cashier, T).invoice_number

    set_setting(SALE_UNDO_TIME_LIMIT, 30)
    db.session.commit()
    with pytest.raises(WindowExpired):
        reverse_sale(invoice, cashier, 'Incorrect item', now=T + timedelta(minutes=2))


def test_undo_status(app):
    cashier = user_id()
    assert undo_status(cashier, now=T)['sale'] is None

    batch = make_batch()
    sell(batch, 1, cashier, T)
    status = undo_status(cashier, now=T + timedelta(minutes=4))
    assert status['can_undo'] is True
    assert status['remaining_seconds'] == 360
    assert status['configured_limit_minutes'] == 10

    status = undo_status(cashier, now=T + timedelta(minutes=12))
    assert status['can_undo'] is False
    assert status['remaining_seconds'] == 0


def test_reverse_fails_cleanly_when_batch_is_gone(app):
    batch = make_batch(quantity=3)
    batch_id = batch.id
    cashier = user_id()
    invoice = sell(batch, 2, cashier, T).invoice_number

    db.session.execute(delete(InventoryLog).where(InventoryLog.batch_id == batch_id))
    db.session.execute(delete(StockBatch).where(StockBatch.id == batch_id))
    db.session.commit()

    with pytest.raises(StoreError) as exc:
        reverse_sale(invoice, cashier, 'Wrong quantity', now=T + timedelta(minutes=1))
    assert str(batch_id) in exc.value.message
    assert not Sale.query.filter_by(invoice_number=invoice).one().is_reversed
    assert SaleUndoLog.query.count() == 0


def test_database_error_during_reverse_rolls_back(app, monkeypatch):
    batch = make_batch(quantity=3)
    batch_id = batch.id
    cashier = user_id()
    invoice = sell(batch, 2, cashier, T).invoice_number

    def failing_notify(*args, **kwargs):
        raise OperationalError('INSERT INTO notifications', {}, Exception('disk I/O error'))

    monkeypatch.setattr(undo, 'notify', failing_notify)
    with pytest.raises(StoreError):
        reverse_sale(invoice, cashier, 'Wrong quantity', now=T + timedelta(minutes=1))

    assert db.session.get(StockBatch, batch_id).remaining_quantity == 1
    assert not Sale.query.filter_by(invoice_number=invoice).one().is_reversed
    assert SaleUndoLog.query.count() == 0
    assert InventoryLog.query.filter_by(reason='Sale Undo').count() == 0

    # The window is still usable once the store recovers
    monkeypatch.undo()
    reverse_sale(invoice, cashier, 'Wrong quantity', now=T + timedelta(minutes=2))
    assert db.session.get(StockBatch, batch_id).remaining_quantity == 3


# ── HTTP ──────────────────────────────────────────────────────────

def login(client, username='cashier1'):
    resp = client.post('/auth/login', json={'username': username, 'password': 'pass123'})
    assert resp.status_code == 200, "Login failed"


def checkout(client, batch_id):
    client.post('/billing/cart/lines', json={'batch_id': batch_id, 'quantity': 1})
    resp = client.post('/billing/sales', json={'customer': {'walk_in': True},
                                               'amount_tendered': '100'})
    assert resp.status_code == 201
    return resp.get_json()['data']['sale']['invoice_number']


def test_undo_endpoint(app):
    client = app.test_client()
    login(client)
    batch_id = make_batch().id
    invoice = checkout(client, batch_id)

    last = client.get('/billing/sales/last').get_json()['data']
    assert last['sale']['invoice_number'] == invoice
    assert last['can_undo'] is True

    resp = client.post(f'/billing/sales/{invoice}/undo', json={'reason_type': 'Other'})
    assert resp.status_code == 400

    resp = client.post(f'/billing/sales/{invoice}/undo',
                       json={'reason_type': 'Other', 'reason_details': 'Customer left'})
    assert resp.status_code == 200
    assert resp.get_json()['data']['undo_log']['reason_details'] == 'Customer left'
    assert db.session.get(StockBatch, batch_id).remaining_quantity == 3

    resp = client.post(f'/billing/sales/{invoice}/undo', json={'reason_type': 'Incorrect item'})
    assert resp.status_code == 409
    assert resp.get_json()['code'] == 'window_already_used'
    assert client.get('/billing/sales/last').get_json()['data']['can_undo'] is False


def test_undo_logs_admin_only(app):
    admin = User(username='admin', name='Admin', role=RoleEnum.admin)
    admin.set_password('pass123')
    db.session.add(admin)
    db.session.commit()

    client = app.test_client()
    login(client)
    invoice = checkout(client, make_batch().id)
    client.post(f'/billing/sales/{invoice}/undo', json={'reason_type': 'Pricing error'})
    assert client.get('/billing/undo-logs').status_code == 403

    login(client, 'admin')
    data = client.get('/billing/undo-logs?reason_type=Pricing%20error').get_json()
    assert data['results'] == 1
    assert data['data']['logs'][0]['invoice_number'] == invoice
    log_id = data['data']['logs'][0]['id']
    assert client.get(f'/billing/undo-logs/{log_id}').status_code == 200
    assert client.get('/billing/undo-logs/999').status_code == 404
