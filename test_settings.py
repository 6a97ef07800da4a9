"""
test_settings.py: the sale undo time limit setting.
"""
import pytest

from app import create_app, db
from app.auth.models import User, RoleEnum
from app.settings.models import (
    SALE_UNDO_TIME_LIMIT, SystemSetting, set_setting, get_sale_undo_time_limit,
)


@pytest.fixture(scope='function')
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        for username, role in (('admin', RoleEnum.admin), ('cashier', RoleEnum.cashier)):
            user = User(username=username, name=username.title(), role=role)
            user.set_password('pass123')
            db.session.add(user)
        db.session.commit()
        yield app
        db.session.remove()
        db.drop_all()


def login(client, username):
    resp = client.post('/auth/login', json={'username': username, 'password': 'pass123'})
    assert resp.status_code == 200, "Login failed"


def test_default_when_unset(app):
    assert get_sale_undo_time_limit() == 10


@pytest.mark.parametrize('stored,expected', [
    ('30', 30),
    ('0', 1),
    ('-4', 1),
    ('120', 60),
    ('ten', 10),
])
def test_stored_value_is_clamped(app, stored, expected):
    db.session.add(SystemSetting(key=SALE_UNDO_TIME_LIMIT, value=stored))
    db.session.commit()
    assert get_sale_undo_time_limit() == expected


def test_config_default_is_used(app):
    app.config['SALE_UNDO_TIME_LIMIT_DEFAULT'] = 5
    assert get_sale_undo_time_limit() == 5


def test_set_setting_updates_in_place(app):
    set_setting(SALE_UNDO_TIME_LIMIT, 15, 'Undo window')
    db.session.commit()
    set_setting(SALE_UNDO_TIME_LIMIT, 20)
    db.session.commit()
    row = SystemSetting.query.one()
    assert (row.value, row.description) == ('20', 'Undo window')


def test_admin_updates_limit(app):
    client = app.test_client()
    login(client, 'admin')
    resp = client.put(f'/settings/{SALE_UNDO_TIME_LIMIT}', json={'value': 15})
    assert resp.status_code == 200
    assert resp.get_json()['data']['setting']['value'] == '15'

    listing = client.get('/settings/').get_json()['data']['settings']
    assert listing[SALE_UNDO_TIME_LIMIT]['value'] == '15'


@pytest.mark.parametrize('value', [0, 61, 'abc', None])
def test_admin_update_rejects_out_of_range(app, value):
    client = app.test_client()
    login(client, 'admin')
    resp = client.put(f'/settings/{SALE_UNDO_TIME_LIMIT}', json={'value': value})
    assert resp.status_code == 400
    assert SystemSetting.query.count() == 0


def test_cashier_reads_but_cannot_write(app):
    client = app.test_client()
    login(client, 'cashier')
    assert client.put(f'/settings/{SALE_UNDO_TIME_LIMIT}', json={'value': 5}).status_code == 403
    resp = client.get('/settings/sale-undo-time-limit')
    assert resp.get_json()['data']['time_limit_minutes'] == 10
