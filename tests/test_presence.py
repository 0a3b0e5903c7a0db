# tests/test_presence.py

import pytest
from channels.db import database_sync_to_async
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser

from apps.board.broadcast import Broadcaster
from apps.board.presence import PresenceTracker, Viewer
from apps.board.routing import websocket_urlpatterns
from tests.conftest import RecordingSubscriber, make_tasks


def _viewer(user_id, name=None):
    return Viewer(user_id=str(user_id), display_name=name or f'user-{user_id}')


def _connect(broadcaster, board_id, user_id):
    subscriber = RecordingSubscriber(user_id=user_id)
    broadcaster.subscribe(board_id, subscriber)
    return subscriber


@pytest.fixture
def tracker():
    return PresenceTracker(Broadcaster())


async def test_join_sends_snapshot_to_newcomer_and_notifies_others(tracker):
    ana = _connect(tracker.broadcaster, 1, 1)
    await tracker.join(1, _viewer(1, 'Ana'), ana)

    assert ana.types() == ['board_presence_updated']
    assert [u['id'] for u in ana.messages()[0]['payload']['users']] == ['1']

    bruno = _connect(tracker.broadcaster, 1, 2)
    await tracker.join(1, _viewer(2, 'Bruno'), bruno)

    assert ana.types() == ['board_presence_updated', 'user_joined']
    assert ana.messages()[1]['payload']['user']['name'] == 'Bruno'
    # quem entrou não recebe o próprio user_joined
    assert bruno.types() == ['board_presence_updated']
    assert [u['id'] for u in bruno.messages()[0]['payload']['users']] == ['1', '2']


async def test_second_connection_of_same_user_is_deduplicated(tracker):
    first_tab = _connect(tracker.broadcaster, 1, 1)
    await tracker.join(1, _viewer(1), first_tab)
    other = _connect(tracker.broadcaster, 1, 2)
    await tracker.join(1, _viewer(2), other)

    second_tab = _connect(tracker.broadcaster, 1, 1)
    await tracker.join(1, _viewer(1), second_tab)

    assert other.types() == ['board_presence_updated']
    assert len(second_tab.messages()[0]['payload']['users']) == 2
    assert [v.user_id for v in tracker.snapshot(1)] == ['1', '2']

    # fechar uma aba não tira o usuário da presença
    await tracker.leave(1, second_tab)
    assert 'user_left' not in other.types()
    assert tracker.is_present(1, 1)


async def test_leave_is_symmetric_with_join(tracker):
    ana = _connect(tracker.broadcaster, 1, 1)
    bruno = _connect(tracker.broadcaster, 1, 2)
    await tracker.join(1, _viewer(1), ana)
    await tracker.join(1, _viewer(2), bruno)

    tracker.broadcaster.unsubscribe(1, bruno)
    assert await tracker.leave(1, bruno) is True

    assert ana.types()[-1] == 'user_left'
    assert ana.messages()[-1]['payload']['userId'] == '2'
    assert not tracker.is_present(1, 2)

    tracker.broadcaster.unsubscribe(1, ana)
    await tracker.leave(1, ana)
    assert tracker.snapshot(1) == []
    assert await tracker.leave(1, ana) is False


async def test_presence_is_isolated_per_board(tracker):
    on_one = _connect(tracker.broadcaster, 1, 1)
    on_two = _connect(tracker.broadcaster, 2, 2)
    await tracker.join(1, _viewer(1), on_one)
    await tracker.join(2, _viewer(2), on_two)

    assert on_one.types() == ['board_presence_updated']
    assert [v.user_id for v in tracker.snapshot(2)] == ['2']


# === WebSocket (canal primário) ===

def _communicator(board_id, user):
    application = URLRouter(websocket_urlpatterns)
    communicator = WebsocketCommunicator(application, f'/ws/boards/{board_id}/')
    communicator.scope['user'] = user
    return communicator


@pytest.mark.django_db(transaction=True)
async def test_websocket_rejects_anonymous_and_outsiders(board, outsider, board_app):
    communicator = _communicator(board.pk, AnonymousUser())
    connected, code = await communicator.connect()
    assert (connected, code) == (False, 4401)

    communicator = _communicator(board.pk, outsider)
    connected, code = await communicator.connect()
    assert (connected, code) == (False, 4403)

    communicator = _communicator(999999, outsider)
    connected, code = await communicator.connect()
    assert (connected, code) == (False, 4404)


@pytest.mark.django_db(transaction=True)
async def test_websocket_presence_and_heartbeat(board, owner, editor, board_app):
    ana = _communicator(board.pk, owner)
    connected, _ = await ana.connect()
    assert connected

    assert (await ana.receive_json_from())['type'] == 'connected'
    snapshot = await ana.receive_json_from()
    assert snapshot['type'] == 'board_presence_updated'
    assert [u['id'] for u in snapshot['payload']['users']] == [str(owner.pk)]

    bruno = _communicator(board.pk, editor)
    await bruno.connect()
    await bruno.receive_json_from()  # connected
    await bruno.receive_json_from()  # snapshot

    joined = await ana.receive_json_from()
    assert joined['type'] == 'user_joined'
    assert joined['payload']['user']['id'] == str(editor.pk)

    await ana.send_json_to({'type': 'ping'})
    assert (await ana.receive_json_from())['type'] == 'pong'

    await bruno.disconnect()
    left = await ana.receive_json_from()
    assert left['type'] == 'user_left'
    assert left['payload']['userId'] == str(editor.pk)

    await ana.disconnect()
    assert board_app.broadcaster.subscriber_count(board.pk) == 0
    assert board_app.presence.snapshot(board.pk) == []


@pytest.mark.django_db(transaction=True)
async def test_websocket_receives_committed_mutations(board, owner, columns, board_app):
    x, = await database_sync_to_async(make_tasks)(columns[0], 'x')

    ana = _communicator(board.pk, owner)
    await ana.connect()
    await ana.receive_json_from()
    await ana.receive_json_from()

    await database_sync_to_async(board_app.service.move_task)(owner, x.pk, columns[1].pk, 0)

    frame = await ana.receive_json_from(timeout=2)
    assert frame['type'] == 'task_moved'
    assert frame['payload']['sourceColumnId'] == str(columns[0].pk)
    assert frame['payload']['targetColumnId'] == str(columns[1].pk)
    assert frame['actorId'] == str(owner.pk)

    await ana.send_json_to({'type': 'sync_board'})
    sync = await ana.receive_json_from()
    assert sync['type'] == 'board_sync'
    assert [t['title'] for t in sync['payload']['columns'][1]['tasks']] == ['x']

    await ana.disconnect()


@pytest.mark.django_db(transaction=True)
async def test_leave_board_message_closes_connection(board, owner, board_app):
    ana = _communicator(board.pk, owner)
    await ana.connect()
    await ana.receive_json_from()
    await ana.receive_json_from()

    await ana.send_json_to({'type': 'leave_board'})

    assert (await ana.receive_output())['type'] == 'websocket.close'
    assert board_app.broadcaster.subscriber_count(board.pk) == 0
