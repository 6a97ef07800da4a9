from flask import request, jsonify, current_app, session

from app import db
from app.settings import settings
from app.settings.models import (
    SystemSetting, SALE_UNDO_TIME_LIMIT, UNDO_LIMIT_MIN, UNDO_LIMIT_MAX,
    set_setting, get_sale_undo_time_limit,
)
from app.auth.decorators import login_required, admin_required
from app.errors import ValidationError


@settings.route('/', methods=['GET'])
@admin_required
def index():
    rows = SystemSetting.query.order_by(SystemSetting.key).all()
    return jsonify({'status': 'success',
                    'data': {'settings': {r.key: r.to_dict() for r in rows}}})


@settings.route('/<key>', methods=['PUT'])
@admin_required
def update(key):
    data = request.get_json(silent=True) or {}
    if 'value' not in data:
        raise ValidationError('A value is required.')
    value = data['value']

    if key == SALE_UNDO_TIME_LIMIT:
        try:
            minutes = int(value)
        except (TypeError, ValueError):
            raise ValidationError('Undo time limit must be a whole number of minutes.')
        if not UNDO_LIMIT_MIN <= minutes <= UNDO_LIMIT_MAX:
            raise ValidationError(
                f'Undo time limit must be between {UNDO_LIMIT_MIN} and {UNDO_LIMIT_MAX} minutes.'
            )
        value = minutes

    row = set_setting(key, value, data.get('description'))
    db.session.commit()
    current_app.logger.info(f"Setting {key} set to {row.value!r} by user {session['user_id']}")
    return jsonify({'status': 'success', 'data': {'setting': row.to_dict()}})


@settings.route('/sale-undo-time-limit', methods=['GET'])
@login_required
def sale_undo_time_limit():
    return jsonify({'status': 'success',
                    'data': {'time_limit_minutes': get_sale_undo_time_limit()}})
