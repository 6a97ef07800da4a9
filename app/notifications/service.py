"""
app/notifications/service.py
----------------------------
Creating notifications and applying read/delete transitions.

Notifications are written inside the caller's transaction and only pushed
to live streams after that transaction commits:

    notify(NotificationType.order, 'Sale completed', ...)
    db.session.commit()
    publish_pending()

A rolled-back transaction must call discard_pending() so nothing that
never happened reaches a client.
"""
from datetime import datetime
from app import db
from app.notifications.models import Notification, NotificationType
from app.notifications.broker import get_broker

_PENDING_KEY = 'pending_notifications'


def _pending() -> list:
    return db.session.info.setdefault(_PENDING_KEY, [])


def notify(ntype: NotificationType, title: str, message: str, data: dict = None,
           user_id: int = None, reference_id=None, reference_type: str = None) -> Notification:
    """Add a notification row (flushed, not committed) and queue it for publishing."""
    note = Notification(
        user_id        = user_id,
        type           = ntype.value,
        title          = title,
        message        = message,
        reference_id   = str(reference_id) if reference_id is not None else None,
        reference_type = reference_type,
    )
    note.data_dict = data or {}
    db.session.add(note)
    db.session.flush()
    _pending().append(note.id)
    return note


def publish_pending() -> int:
    """Push every notification created in the just-committed transaction."""
    ids = db.session.info.pop(_PENDING_KEY, [])
    if not ids:
        return 0
    broker = get_broker()
    sent = 0
    for note in Notification.query.filter(Notification.id.in_(ids)).order_by(Notification.id).all():
        broker.publish('notification', note.to_dict(), user_id=note.user_id)
        sent += 1
    return sent


def discard_pending() -> None:
    db.session.info.pop(_PENDING_KEY, None)


# ── Queries ───────────────────────────────────────────────────────

def visible_to(user_id: int):
    """Broadcast notifications plus those addressed to this user."""
    return Notification.query.filter(
        (Notification.user_id.is_(None)) | (Notification.user_id == user_id)
    )


def list_notifications(user_id: int, limit: int = 50, offset: int = 0,
                       is_read: bool = None, ntype: str = None) -> list:
    query = visible_to(user_id)
    if is_read is not None:
        query = query.filter(Notification.is_read == is_read)
    if ntype:
        query = query.filter(Notification.type == ntype)
    return (query.order_by(Notification.created_at.desc(), Notification.id.desc())
                 .limit(limit).offset(offset).all())


def unread_count(user_id: int) -> int:
    return visible_to(user_id).filter(Notification.is_read.is_(False)).count()


# ── Transitions (each publishes a notification_update) ────────────

def mark_read(notification_id: int, user_id: int) -> bool:
    note = visible_to(user_id).filter(Notification.id == notification_id).first()
    if note is None:
        return False
    note.is_read = True
    note.updated_at = datetime.utcnow()
    db.session.commit()
    get_broker().publish('notification_update', {'type': 'read', 'id': notification_id},
                         user_id=note.user_id)
    return True


def mark_all_read(user_id: int) -> int:
    changed = (visible_to(user_id)
               .filter(Notification.is_read.is_(False))
               .update({'is_read': True, 'updated_at': datetime.utcnow()},
                       synchronize_session=False))
    db.session.commit()
    get_broker().publish('notification_update', {'type': 'read_all'}, user_id=user_id)
    return changed


def delete_notification(notification_id: int, user_id: int) -> bool:
    note = visible_to(user_id).filter(Notification.id == notification_id).first()
    if note is None:
        return False
    target = note.user_id
    db.session.delete(note)
    db.session.commit()
    get_broker().publish('notification_update', {'type': 'delete', 'id': notification_id},
                         user_id=target)
    return True


def delete_all(user_id: int) -> int:
    removed = visible_to(user_id).delete(synchronize_session=False)
    db.session.commit()
    get_broker().publish('notification_update', {'type': 'delete_all'}, user_id=user_id)
    return removed
