# tests/test_lifespan.py

from apps.board.lifespan import lifespan_app
from tests.conftest import RecordingSubscriber


def _scripted(*messages):
    pending = list(messages)

    async def receive():
        return pending.pop(0)

    return receive


async def test_lifespan_shutdown_closes_broadcaster(board_app):
    subscriber = RecordingSubscriber(user_id=1)
    board_app.broadcaster.subscribe(1, subscriber)
    sent = []

    async def send(message):
        sent.append(message['type'])

    await lifespan_app(
        {'type': 'lifespan'},
        _scripted({'type': 'lifespan.startup'}, {'type': 'lifespan.shutdown'}),
        send,
    )

    assert sent == ['lifespan.startup.complete', 'lifespan.shutdown.complete']
    assert subscriber.closed
    assert board_app.broadcaster.subscriber_count(1) == 0


def test_shutdown_is_idempotent(board_app):
    subscriber = RecordingSubscriber()
    board_app.broadcaster.subscribe(1, subscriber)

    board_app.shutdown()
    board_app.shutdown()

    assert subscriber.closed
    assert board_app.broadcaster.subscriber_count(1) == 0
