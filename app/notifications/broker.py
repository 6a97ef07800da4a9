"""
app/notifications/broker.py
---------------------------
In-process fan-out of notification messages to open event streams.

One broker per Flask app, created in create_app() and kept at
app.extensions['notification_broker']. Each open /notifications/stream
request holds a Subscription; publish() puts a message on every matching
subscription's queue. Delivery is best-effort: a client that was not
subscribed when a message went out catches up with a full fetch of
GET /notifications.

Message format:
    {"event": "notification",        "data": {...Notification.to_dict()}}
    {"event": "notification_update", "data": {"type": "read", "id": 7}}
"""
import json
import queue
import threading
from flask import current_app


_STOP = object()


class Subscription:
    """One listener. user_id=None receives broadcasts only."""

    def __init__(self, user_id, maxsize: int = 256):
        self.user_id = user_id
        self._queue  = queue.Queue(maxsize=maxsize)

    def put(self, message) -> bool:
        try:
            self._queue.put_nowait(message)
            return True
        except queue.Full:
            return False

    def get(self, timeout: float = None):
        """Next message, None on timeout, _STOP when the broker closed it."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None


class NotificationBroker:

    def __init__(self, logger=None):
        self._lock = threading.Lock()
        self._subscriptions = set()
        self._logger = logger

    def subscribe(self, user_id) -> Subscription:
        sub = Subscription(user_id)
        with self._lock:
            self._subscriptions.add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            self._subscriptions.discard(sub)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, event: str, data: dict, user_id=None) -> int:
        """
        Queue a message for every subscriber it is addressed to.
        user_id=None means every subscriber. Returns the number reached.
        """
        message = {'event': event, 'data': data}
        with self._lock:
            targets = [s for s in self._subscriptions
                       if user_id is None or s.user_id == user_id]
        delivered = 0
        for sub in targets:
            if sub.put(message):
                delivered += 1
            elif self._logger:
                self._logger.warning(f"Dropped {event} for slow subscriber (user {sub.user_id})")
        return delivered

    def close(self) -> None:
        """End every open stream (app shutdown)."""
        with self._lock:
            subs, self._subscriptions = list(self._subscriptions), set()
        for sub in subs:
            sub.put(_STOP)


def get_broker() -> NotificationBroker:
    return current_app.extensions['notification_broker']


def format_sse(message: dict) -> str:
    """Encode one message as a Server-Sent Events frame."""
    payload = json.dumps(message['data'], separators=(',', ':'))
    return f"event: {message['event']}\ndata: {payload}\n\n"


def iter_stream(sub: Subscription, heartbeat: float, retry_ms: int = 3000):
    """
    Yield SSE frames for a subscription until the broker closes it.
    A comment line goes out every `heartbeat` seconds of silence so proxies
    keep the connection open and dead clients are noticed on write.
    """
    yield f"retry: {retry_ms}\n\n"
    while True:
        message = sub.get(timeout=heartbeat)
        if message is _STOP:
            return
        if message is None:
            yield ": keep-alive\n\n"
            continue
        yield format_sse(message)
