from flask import request, jsonify, current_app, Response, stream_with_context

from app.notifications import notifications
from app.notifications.models import NOTIFICATION_TYPE_CHOICES
from app.notifications.broker import get_broker, iter_stream
from app.notifications import service
from app.auth.decorators import login_required, current_user_id
from app.errors import ValidationError, NotFound


def _parse_bool(raw):
    if raw is None:
        return None
    return raw.strip().lower() in ('1', 'true', 'yes')


@notifications.route('/', methods=['GET'])
@login_required
def index():
    """Full fetch: authoritative state after any stream gap."""
    try:
        limit  = int(request.args.get('limit', current_app.config['NOTIFICATION_FETCH_LIMIT']))
        offset = int(request.args.get('offset', 0))
    except ValueError:
        raise ValidationError('limit and offset must be whole numbers.')
    if limit < 1 or offset < 0:
        raise ValidationError('limit must be positive and offset non-negative.')

    ntype = request.args.get('type') or None
    if ntype and ntype not in NOTIFICATION_TYPE_CHOICES:
        raise ValidationError(f'Unknown notification type "{ntype}".',
                              {'allowed': NOTIFICATION_TYPE_CHOICES})

    rows = service.list_notifications(
        current_user_id(), limit=limit, offset=offset,
        is_read=_parse_bool(request.args.get('is_read')), ntype=ntype,
    )
    return jsonify({
        'status':  'success',
        'results': len(rows),
        'data':    {'notifications': [n.to_dict() for n in rows]},
    })


@notifications.route('/unread-count', methods=['GET'])
@login_required
def unread_count():
    return jsonify({'status': 'success',
                    'data': {'count': service.unread_count(current_user_id())}})


@notifications.route('/<int:notification_id>/read', methods=['PATCH'])
@login_required
def mark_read(notification_id):
    if not service.mark_read(notification_id, current_user_id()):
        raise NotFound('Notification not found or not accessible.')
    return jsonify({'status': 'success', 'data': {'id': notification_id, 'is_read': True}})


@notifications.route('/read-all', methods=['POST'])
@login_required
def mark_all_read():
    changed = service.mark_all_read(current_user_id())
    return jsonify({'status': 'success', 'data': {'updated': changed}})


@notifications.route('/<int:notification_id>', methods=['DELETE'])
@login_required
def delete(notification_id):
    if not service.delete_notification(notification_id, current_user_id()):
        raise NotFound('Notification not found or not accessible.')
    return jsonify({'status': 'success', 'data': {'id': notification_id}})


@notifications.route('/', methods=['DELETE'])
@login_required
def delete_all():
    removed = service.delete_all(current_user_id())
    return jsonify({'status': 'success', 'data': {'deleted': removed}})


@notifications.route('/stream')
@login_required
def stream():
    """Server-Sent Events: `notification` and `notification_update` messages."""
    user_id   = current_user_id()
    heartbeat = current_app.config['NOTIFICATION_STREAM_HEARTBEAT']
    broker    = get_broker()
    sub       = broker.subscribe(user_id)
    logger    = current_app.logger
    logger.info(f"Notification stream opened for user {user_id}")

    def generate():
        try:
            yield from iter_stream(sub, heartbeat)
        finally:
            broker.unsubscribe(sub)
            logger.info(f"Notification stream closed for user {user_id}")

    return Response(
        stream_with_context(generate()),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )
