"""
app/notifications/channel.py
----------------------------
Client side of the notification stream: keeps one connection to
GET /notifications/stream open, reconnects a bounded number of times and
reconciles with a full fetch of GET /notifications after every connect.

The connection bookkeeping and the notification list are a pure reducer
(reduce_channel) so they can be checked without a network. The
NotificationChannel class drives it with an httpx.AsyncClient; create one
per logged-in session and close() it on logout.

    Disconnected ──ConnectStarted──▶ Connecting ──ConnectSucceeded──▶ Connected
         ▲                               │                               │
         └──────────ConnectFailed────────┴───────────ConnectFailed───────┘

After max_attempts consecutive failures the state is marked gave_up and
only ReconnectRequested (a user action) starts a new round. ChannelClosed
(logout) resets the counters without counting as a failure.
"""
from __future__ import annotations
import asyncio
import enum
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Optional

import httpx

from app.errors import ChannelDisconnected

logger = logging.getLogger(__name__)

UPDATE_TYPES = ('read', 'read_all', 'delete', 'delete_all')


class ConnectionStatus(enum.Enum):
    disconnected = "disconnected"
    connecting   = "connecting"
    connected    = "connected"


@dataclass(frozen=True)
class ChannelState:
    status:        ConnectionStatus = ConnectionStatus.disconnected
    attempts:      int = 0
    max_attempts:  int = 5
    gave_up:       bool = False
    last_error:    Optional[str] = None
    notifications: tuple = ()   # newest first, unique by id

    @property
    def ids(self) -> list:
        return [n['id'] for n in self.notifications]

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.get('is_read'))

    def get(self, notification_id):
        for n in self.notifications:
            if n['id'] == notification_id:
                return n
        return None


# ── Events ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ConnectStarted:
    pass


@dataclass(frozen=True)
class ConnectSucceeded:
    pass


@dataclass(frozen=True)
class ConnectFailed:
    error: str


@dataclass(frozen=True)
class ReconnectRequested:
    pass


@dataclass(frozen=True)
class ChannelClosed:
    """Logout teardown; not a failure."""


@dataclass(frozen=True)
class NotificationPushed:
    notification: dict


@dataclass(frozen=True)
class NotificationUpdated:
    type: str
    id:   Optional[int] = None


@dataclass(frozen=True)
class FullFetchLoaded:
    notifications: tuple = field(default_factory=tuple)


# ── Reducer ───────────────────────────────────────────────────────

def _apply_update(notifications: tuple, event: NotificationUpdated) -> tuple:
    if event.type == 'read':
        return tuple(dict(n, is_read=True) if n['id'] == event.id else n
                     for n in notifications)
    if event.type == 'read_all':
        return tuple(dict(n, is_read=True) for n in notifications)
    if event.type == 'delete':
        return tuple(n for n in notifications if n['id'] != event.id)
    if event.type == 'delete_all':
        return ()
    raise ValueError(f'Unknown notification update type "{event.type}"')


def reduce_channel(state: ChannelState, event) -> ChannelState:
    if isinstance(event, ConnectStarted):
        if state.gave_up:
            return state
        return replace(state, status=ConnectionStatus.connecting,
                       attempts=state.attempts + 1)

    if isinstance(event, ConnectSucceeded):
        return replace(state, status=ConnectionStatus.connected,
                       attempts=0, last_error=None)

    if isinstance(event, ConnectFailed):
        return replace(state, status=ConnectionStatus.disconnected,
                       last_error=event.error,
                       gave_up=state.attempts >= state.max_attempts)

    if isinstance(event, ReconnectRequested):
        return replace(state, status=ConnectionStatus.disconnected,
                       attempts=0, gave_up=False)

    if isinstance(event, ChannelClosed):
        return replace(state, status=ConnectionStatus.disconnected,
                       attempts=0, gave_up=False, last_error=None)

    if isinstance(event, NotificationPushed):
        note = event.notification
        if note['id'] in state.ids:
            return state
        return replace(state, notifications=(note,) + state.notifications)

    if isinstance(event, NotificationUpdated):
        return replace(state, notifications=_apply_update(state.notifications, event))

    if isinstance(event, FullFetchLoaded):
        seen, unique = set(), []
        for n in event.notifications:
            if n['id'] not in seen:
                seen.add(n['id'])
                unique.append(n)
        return replace(state, notifications=tuple(unique))

    raise TypeError(f'Unknown channel event {event!r}')


# ── Payload normalisation ─────────────────────────────────────────

def parse_notification(payload) -> Optional[dict]:
    """
    Accepts {"notification": {...}}, {"data": {"notification": {...}}} or
    the notification itself. Returns None when no usable id is present.
    """
    if not isinstance(payload, dict):
        return None
    if isinstance(payload.get('notification'), dict):
        payload = payload['notification']
    elif isinstance(payload.get('data'), dict) and isinstance(payload['data'].get('notification'), dict):
        payload = payload['data']['notification']
    if payload.get('id') is None:
        return None
    note = dict(payload)
    note['is_read'] = bool(note.get('is_read', False))
    return note


def parse_notifications(payload) -> tuple:
    """Full fetch body: {"data": {"notifications": [...]}}, {"notifications": [...]} or a list."""
    if isinstance(payload, dict):
        if isinstance(payload.get('data'), dict):
            payload = payload['data']
        payload = payload.get('notifications', [])
    if not isinstance(payload, list):
        return ()
    notes = (parse_notification(item) for item in payload)
    return tuple(n for n in notes if n is not None)


def parse_update(payload) -> Optional[NotificationUpdated]:
    if not isinstance(payload, dict):
        return None
    if isinstance(payload.get('data'), dict):
        payload = payload['data']
    kind = payload.get('type')
    if kind not in UPDATE_TYPES:
        return None
    if kind in ('read', 'delete') and payload.get('id') is None:
        return None
    return NotificationUpdated(type=kind, id=payload.get('id'))


class SSEDecoder:
    """Turns text/event-stream lines into (event, data) frames."""

    def __init__(self):
        self._event = None
        self._data  = []

    def feed(self, line: str):
        if line == '':
            if not self._data:
                self._event = None
                return None
            frame = (self._event or 'message', '\n'.join(self._data))
            self._event, self._data = None, []
            return frame
        if line.startswith(':'):
            return None
        name, _, value = line.partition(':')
        if value.startswith(' '):
            value = value[1:]
        if name == 'event':
            self._event = value
        elif name == 'data':
            self._data.append(value)
        return None


# ── Connection manager ────────────────────────────────────────────

class NotificationChannel:

    STREAM_PATH = '/notifications/stream'
    FETCH_PATH  = '/notifications/'

    def __init__(self, base_url: str = '', client: httpx.AsyncClient = None,
                 max_attempts: int = 5, retry_delay: float = 3.0,
                 fetch_limit: int = 50, on_change=None):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(10.0, read=None),
        )
        self.retry_delay  = retry_delay
        self.fetch_limit  = fetch_limit
        self._on_change   = on_change
        self._closed      = False
        self.state = ChannelState(max_attempts=max_attempts)

    def dispatch(self, event) -> ChannelState:
        self.state = reduce_channel(self.state, event)
        if self._on_change:
            self._on_change(self.state)
        return self.state

    async def fetch_all(self) -> tuple:
        """Replace the local list with the server's. Authoritative after any gap."""
        resp = await self._client.get(self.FETCH_PATH, params={'limit': self.fetch_limit})
        resp.raise_for_status()
        try:
            payload = resp.json()
        except ValueError as exc:
            raise httpx.DecodingError(f'Full fetch returned a non-JSON body: {exc}',
                                      request=resp.request) from exc
        self.dispatch(FullFetchLoaded(parse_notifications(payload)))
        return self.state.notifications

    def _handle_frame(self, event: str, data: str) -> None:
        try:
            payload = json.loads(data)
        except ValueError:
            logger.warning(f"Ignoring malformed {event} frame: {data[:80]!r}")
            return
        if event == 'notification':
            note = parse_notification(payload)
            if note is not None:
                self.dispatch(NotificationPushed(note))
        elif event == 'notification_update':
            update = parse_update(payload)
            if update is not None:
                self.dispatch(update)
        else:
            logger.debug(f"Ignoring stream event {event!r}")

    async def _stream_once(self) -> None:
        async with self._client.stream('GET', self.STREAM_PATH) as resp:
            resp.raise_for_status()
            await self.fetch_all()
            self.dispatch(ConnectSucceeded())
            logger.info("Notification stream connected")

            decoder = SSEDecoder()
            async for line in resp.aiter_lines():
                frame = decoder.feed(line.rstrip('\r\n'))
                if frame:
                    self._handle_frame(*frame)
                if self._closed:
                    return

    async def connect(self) -> None:
        """
        Stay connected until close() or until max_attempts consecutive
        connects fail, in which case ChannelDisconnected is raised and the
        state is left gave_up. Run it as a task; cancel the task to stop.
        """
        while not self._closed:
            self.dispatch(ConnectStarted())
            try:
                await self._stream_once()
                error = 'stream closed by server'
            except httpx.HTTPError as exc:
                error = str(exc) or exc.__class__.__name__
            if self._closed:
                break

            self.dispatch(ConnectFailed(error))
            if self.state.gave_up:
                logger.warning(
                    f"Notification stream gave up after {self.state.max_attempts} attempts: {error}"
                )
                raise ChannelDisconnected(
                    'Live notifications are unavailable. Use reconnect to try again.',
                    {'attempts': self.state.max_attempts, 'last_error': error},
                )
            logger.info(
                f"Notification stream lost ({error}); retry {self.state.attempts}"
                f"/{self.state.max_attempts} in {self.retry_delay}s"
            )
            await asyncio.sleep(self.retry_delay)

    async def reconnect(self) -> None:
        """User-triggered recovery after the channel gave up."""
        self._closed = False
        self.dispatch(ReconnectRequested())
        await self.connect()

    async def close(self) -> None:
        self._closed = True
        self.dispatch(ChannelClosed())
        if self._owns_client:
            await self._client.aclose()
