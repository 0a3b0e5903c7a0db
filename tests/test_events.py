# tests/test_events.py

import json

import pytest
from django.db import transaction

from apps.board.broadcast import Broadcaster
from apps.board.events import ChangeEvent, EventKind, MutationEmitter
from tests.conftest import RecordingBroadcaster


def test_task_moved_wire_format():
    event = ChangeEvent.for_task_move(7, 11, 1, 2, 0, 3, actor_id=5)

    wire = json.loads(event.to_frame())

    assert set(wire) == {'type', 'boardId', 'payload', 'actorId'}
    assert wire['type'] == 'task_moved'
    assert wire['boardId'] == '7'
    assert wire['actorId'] == '5'
    assert wire['payload']['taskId'] == '11'
    assert wire['payload']['sourceColumnId'] == '1'
    assert wire['payload']['targetColumnId'] == '2'
    assert wire['payload']['oldPosition'] == 0
    assert wire['payload']['newPosition'] == 3
    assert 'timestamp' in wire['payload']


def test_column_moved_payload():
    payload = ChangeEvent.for_column_move(1, 4, 2, 0, actor_id=None).payload()

    assert payload['columnId'] == '4'
    assert (payload['oldPosition'], payload['newPosition']) == (2, 0)


def test_created_event_carries_the_record():
    record = {'id': '9', 'title': 'Escrever testes', 'columnId': '3', 'position': 1}
    event = ChangeEvent.created(EventKind.TASK_CREATED, 1, 9, 3, 1, record, actor_id=2)

    payload = event.payload()

    assert payload['taskId'] == '9'
    assert payload['columnId'] == '3'
    assert payload['task']['title'] == 'Escrever testes'
    assert payload['task']['position'] == 1


def test_updated_and_deleted_payloads():
    updated = ChangeEvent.updated(EventKind.TASK_UPDATED, 1, 9, {'title': 'Novo'}, actor_id=2, parent_id=3)
    deleted = ChangeEvent.deleted(EventKind.COLUMN_DELETED, 1, 4, 1, 2, actor_id=2)

    assert updated.payload()['changes'] == {'title': 'Novo'}
    assert updated.payload()['columnId'] == '3'
    assert deleted.payload()['columnId'] == '4'
    assert deleted.payload()['position'] == 2


def test_member_event_payload_uses_member_key():
    event = ChangeEvent.updated(EventKind.MEMBER_ROLE_UPDATED, 1, 8, {'newRole': 'editor'}, actor_id=2)

    assert event.payload()['memberId'] == '8'
    assert event.payload()['changes'] == {'newRole': 'editor'}


def test_system_event_payload_is_free_form():
    event = ChangeEvent.system(EventKind.USER_LEFT, 1, subject_id=3, boardId='1', userId='3')

    assert event.payload()['userId'] == '3'
    assert event.to_wire()['type'] == 'user_left'


def test_event_is_immutable():
    event = ChangeEvent.for_column_move(1, 4, 2, 0, actor_id=None)

    with pytest.raises(Exception):
        event.kind = 'outro'


def test_emit_swallows_broadcast_errors(caplog):
    class BrokenBroadcaster(Broadcaster):
        async def broadcast(self, board_id, event, exclude=None):
            raise RuntimeError('fora do ar')

    emitter = MutationEmitter(BrokenBroadcaster())

    delivered = emitter.emit(ChangeEvent.for_column_move(1, 4, 2, 0, actor_id=None))

    assert delivered == 0
    assert 'Falha ao emitir column_moved' in caplog.text


@pytest.mark.django_db
def test_emit_on_commit_runs_only_after_commit(django_capture_on_commit_callbacks):
    broadcaster = RecordingBroadcaster()
    emitter = MutationEmitter(broadcaster)
    event = ChangeEvent.for_column_move(1, 4, 2, 0, actor_id=None)

    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        with transaction.atomic():
            emitter.emit_on_commit(event)
            assert broadcaster.events == []

    assert len(callbacks) == 1
    assert broadcaster.events == [event]


@pytest.mark.django_db
def test_rolled_back_transaction_emits_nothing(django_capture_on_commit_callbacks):
    broadcaster = RecordingBroadcaster()
    emitter = MutationEmitter(broadcaster)

    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        with pytest.raises(RuntimeError):
            with transaction.atomic():
                emitter.emit_on_commit(ChangeEvent.for_column_move(1, 4, 2, 0, actor_id=None))
                raise RuntimeError('abortar')

    assert callbacks == []
    assert broadcaster.events == []
