"""
test_channel.py: client-side notification channel.

The connection manager is driven against httpx.MockTransport, so no
server is needed.
"""
import asyncio
import pytest
import httpx

from app.errors import ChannelDisconnected
from app.notifications.channel import (
    ChannelState, ConnectionStatus, NotificationChannel, SSEDecoder,
    ConnectStarted, ConnectSucceeded, ConnectFailed, ReconnectRequested, ChannelClosed,
    NotificationPushed, NotificationUpdated, FullFetchLoaded,
    reduce_channel, parse_notification, parse_notifications, parse_update,
)


def note(id, is_read=False, title='Sale completed'):
    return {'id': id, 'title': title, 'is_read': is_read}


# ── Reducer ───────────────────────────────────────────────────────

def test_connect_cycle():
    state = reduce_channel(ChannelState(), ConnectStarted())
    assert (state.status, state.attempts) == (ConnectionStatus.connecting, 1)
    state = reduce_channel(state, ConnectSucceeded())
    assert (state.status, state.attempts) == (ConnectionStatus.connected, 0)


def test_gives_up_after_max_attempts():
    state = ChannelState(max_attempts=2)
    for _ in range(2):
        state = reduce_channel(state, ConnectStarted())
        state = reduce_channel(state, ConnectFailed('refused'))
    assert state.gave_up
    assert state.last_error == 'refused'
    # No further automatic attempts
    assert reduce_channel(state, ConnectStarted()) == state

    state = reduce_channel(state, ReconnectRequested())
    assert not state.gave_up
    assert state.attempts == 0


def test_push_deduplicates_by_id():
    state = reduce_channel(ChannelState(), NotificationPushed(note(1)))
    state = reduce_channel(state, NotificationPushed(note(2)))
    state = reduce_channel(state, NotificationPushed(note(1, title='again')))
    assert state.ids == [2, 1]
    assert state.get(1)['title'] == 'Sale completed'


def test_updates():
    state = reduce_channel(ChannelState(), FullFetchLoaded((note(3), note(2), note(1))))
    state = reduce_channel(state, NotificationUpdated('read', 2))
    assert state.get(2)['is_read'] and state.unread_count == 2

    state = reduce_channel(state, NotificationUpdated('delete', 3))
    assert state.ids == [2, 1]

    state = reduce_channel(state, NotificationUpdated('read_all'))
    assert state.unread_count == 0

    state = reduce_channel(state, NotificationUpdated('delete_all'))
    assert state.notifications == ()


def test_full_fetch_replaces_local_list():
    state = reduce_channel(ChannelState(), NotificationPushed(note(9)))
    state = reduce_channel(state, FullFetchLoaded((note(2), note(1), note(2))))
    assert state.ids == [2, 1]


# ── Payload shapes ────────────────────────────────────────────────

def test_parse_notification_shapes():
    assert parse_notification({'notification': note(1)})['id'] == 1
    assert parse_notification({'data': {'notification': note(2)}})['id'] == 2
    assert parse_notification(note(3))['id'] == 3
    assert parse_notification({'title': 'no id'}) is None
    assert parse_notification('junk') is None
    assert parse_notification({'id': 4})['is_read'] is False


def test_parse_notifications_shapes():
    assert len(parse_notifications({'data': {'notifications': [note(1), note(2)]}})) == 2
    assert len(parse_notifications({'notifications': [note(1)]})) == 1
    assert len(parse_notifications([note(1), {'bad': True}])) == 1
    assert parse_notifications(None) == ()


def test_parse_update():
    assert parse_update({'type': 'read', 'id': 4}) == NotificationUpdated('read', 4)
    assert parse_update({'data': {'type': 'read_all'}}) == NotificationUpdated('read_all')
    assert parse_update({'type': 'read'}) is None
    assert parse_update({'type': 'archive', 'id': 1}) is None


def test_sse_decoder():
    decoder = SSEDecoder()
    frames = [decoder.feed(line) for line in
              ['retry: 3000', '', ': keep-alive', '', 'event: notification', 'data: {"id":1}', '']]
    assert [f for f in frames if f] == [('notification', '{"id":1}')]


# ── Connection manager ────────────────────────────────────────────

STREAM_BODY = (
    'retry: 3000\n\n'
    ': keep-alive\n\n'
    'event: notification\ndata: {"id": 2, "title": "Stock received"}\n\n'
    'event: notification\ndata: {"id": 2, "title": "Stock received"}\n\n'
    'event: notification_update\ndata: {"type": "read", "id": 1}\n\n'
    'event: notification\ndata: not-json\n\n'
)


class FakeServer:
    """Serves the full fetch and a scripted list of stream outcomes."""

    def __init__(self, streams, fetch_body=None):
        self.streams = list(streams)
        self.fetch_body = fetch_body
        self.stream_calls = 0
        self.fetch_calls = 0

    def __call__(self, request):
        if request.url.path == '/notifications/':
            self.fetch_calls += 1
            if self.fetch_body is not None:
                return httpx.Response(200, text=self.fetch_body)
            return httpx.Response(200, json={
                'status': 'success', 'results': 1,
                'data': {'notifications': [note(1)]},
            })
        if request.url.path == '/notifications/stream':
            self.stream_calls += 1
            outcome = self.streams.pop(0) if self.streams else 503
            if outcome == 'ok':
                return httpx.Response(200, text=STREAM_BODY,
                                      headers={'content-type': 'text/event-stream'})
            return httpx.Response(outcome)
        return httpx.Response(404)


def make_channel(server, **kwargs):
    client = httpx.AsyncClient(base_url='http://pos.test', transport=httpx.MockTransport(server))
    return NotificationChannel(client=client, retry_delay=0, **kwargs)


def test_connect_fetches_then_applies_stream():
    server = FakeServer(['ok'])
    channel = make_channel(server, max_attempts=2)

    with pytest.raises(ChannelDisconnected) as exc:
        asyncio.run(channel.connect())

    state = channel.state
    assert state.ids == [2, 1]
    assert state.get(1)['is_read'] is True
    assert state.gave_up
    assert state.status is ConnectionStatus.disconnected
    # One good stream, then two failed attempts before giving up
    assert server.stream_calls == 3
    assert server.fetch_calls == 1
    assert exc.value.details['attempts'] == 2


def test_retries_are_bounded_and_reconnect_starts_over():
    server = FakeServer([503, 503, 503])
    channel = make_channel(server, max_attempts=3)

    with pytest.raises(ChannelDisconnected):
        asyncio.run(channel.connect())
    assert server.stream_calls == 3
    assert channel.state.gave_up

    server.streams = [500, 'ok']
    with pytest.raises(ChannelDisconnected):
        asyncio.run(channel.reconnect())
    # 500, ok, then three more failures
    assert server.stream_calls == 3 + 5
    assert server.fetch_calls == 1


def test_fetch_all_is_authoritative():
    server = FakeServer([])
    channel = make_channel(server)
    channel.dispatch(NotificationPushed(note(7)))

    notes = asyncio.run(channel.fetch_all())
    assert [n['id'] for n in notes] == [1]


def test_on_change_sees_every_state():
    seen = []
    server = FakeServer([])
    client = httpx.AsyncClient(base_url='http://pos.test', transport=httpx.MockTransport(server))
    channel = NotificationChannel(client=client, on_change=seen.append)
    channel.dispatch(ConnectStarted())
    channel.dispatch(ConnectSucceeded())
    assert [s.status for s in seen] == [ConnectionStatus.connecting, ConnectionStatus.connected]


def test_malformed_full_fetch_counts_as_failed_connect():
    server = FakeServer(['ok', 'ok'], fetch_body='<html>proxy error</html>')
    channel = make_channel(server, max_attempts=2)

    with pytest.raises(ChannelDisconnected) as exc:
        asyncio.run(channel.connect())

    state = channel.state
    assert state.status is ConnectionStatus.disconnected
    assert state.gave_up
    assert state.notifications == ()
    assert server.stream_calls == 2
    assert server.fetch_calls == 2
    assert 'non-JSON' in exc.value.details['last_error']


def test_close_is_not_a_failed_attempt():
    state = ChannelState(max_attempts=1)
    state = reduce_channel(state, ConnectStarted())
    state = reduce_channel(state, ChannelClosed())
    assert not state.gave_up
    assert state.attempts == 0
    assert state.status is ConnectionStatus.disconnected


def test_close_after_giving_up_allows_a_fresh_start():
    server = FakeServer([503])
    channel = make_channel(server, max_attempts=1)
    with pytest.raises(ChannelDisconnected):
        asyncio.run(channel.connect())
    assert channel.state.gave_up

    asyncio.run(channel.close())
    assert not channel.state.gave_up
    assert channel.state.attempts == 0
    assert channel.state.last_error is None
