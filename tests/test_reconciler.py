# tests/test_reconciler.py

from apps.board.events import ChangeEvent, EventKind
from apps.board.reconciler import (
    BoardCache,
    PendingMove,
    ReconcilerState,
    apply_event,
    apply_optimistic,
    confirm,
    receive_event,
    reject,
    view,
)

BOARD_STATE = {
    'id': '1',
    'title': 'Produto',
    'columns': [
        {'id': '10', 'title': 'A', 'position': 0, 'tasks': [
            {'id': '100', 'title': 'x', 'columnId': '10', 'position': 0},
            {'id': '101', 'title': 'y', 'columnId': '10', 'position': 1},
        ]},
        {'id': '20', 'title': 'B', 'position': 1, 'tasks': [
            {'id': '200', 'title': 'z', 'columnId': '20', 'position': 0},
        ]},
    ],
}


def _initial():
    return ReconcilerState(confirmed=BoardCache.from_board_state(BOARD_STATE))


def _move_x_to_b(actor_id='7'):
    return ChangeEvent.for_task_move('1', '100', '10', '20', 0, 0, actor_id=actor_id).to_wire()


def test_cache_built_from_board_state():
    cache = BoardCache.from_board_state(BOARD_STATE)

    assert cache.layout() == (('10', ('100', '101')), ('20', ('200',)))
    assert cache.tasks['101']['position'] == 1
    assert 'columns' not in cache.board


def test_optimistic_move_shows_in_view_only():
    state = apply_optimistic(_initial(), PendingMove.task('op-1', '100', '10', '20', 0, 0))

    assert view(state).layout() == (('10', ('101',)), ('20', ('100', '200')))
    assert view(state).pending == frozenset({'100'})
    # o confirmado não muda antes do servidor responder
    assert state.confirmed.layout() == _initial().confirmed.layout()


def test_own_event_confirms_pending_move():
    state = apply_optimistic(_initial(), PendingMove.task('op-1', '100', '10', '20', 0, 0))

    state = receive_event(state, _move_x_to_b(actor_id='7'), own_user_id='7')

    assert state.pending == ()
    assert view(state).pending == frozenset()
    assert view(state).layout() == (('10', ('101',)), ('20', ('100', '200')))


def test_event_from_other_actor_keeps_pending():
    state = apply_optimistic(_initial(), PendingMove.task('op-1', '100', '10', '20', 0, 0))

    state = receive_event(state, _move_x_to_b(actor_id='8'), own_user_id='7')

    assert len(state.pending) == 1


def test_two_clients_converge_after_same_events():
    author = apply_optimistic(_initial(), PendingMove.task('op-1', '100', '10', '20', 0, 0))
    observer = _initial()

    event = _move_x_to_b(actor_id='7')
    author = receive_event(author, event, own_user_id='7')
    observer = receive_event(observer, event, own_user_id='8')

    assert view(author).layout() == view(observer).layout()
    assert view(author).tasks == view(observer).tasks


def test_rejected_move_reverts_to_confirmed():
    state = apply_optimistic(_initial(), PendingMove.task('op-1', '101', '10', '10', 1, 0))
    assert view(state).layout()[0] == ('10', ('101', '100'))

    state = reject(state, 'op-1')

    assert view(state).layout() == _initial().confirmed.layout()
    assert view(state).pending == frozenset()


def test_pending_column_move_folds_over_confirmed():
    state = apply_optimistic(_initial(), PendingMove.column('op-2', '20', 1, 0))

    assert [c for c, _ in view(state).layout()] == ['20', '10']
    assert view(state).columns['20']['position'] == 0


def test_applying_same_move_twice_is_stable():
    cache = BoardCache.from_board_state(BOARD_STATE)
    event = _move_x_to_b()

    once = apply_event(cache, event)
    twice = apply_event(once, event)

    assert once.layout() == twice.layout()
    assert twice.tasks['100']['columnId'] == '20'


def test_created_updated_deleted_events():
    cache = BoardCache.from_board_state(BOARD_STATE)

    created = ChangeEvent.created(
        EventKind.TASK_CREATED, '1', '102', '10', 1,
        {'id': '102', 'title': 'novo', 'columnId': '10', 'position': 1}, actor_id='7'
    ).to_wire()
    cache = apply_event(cache, created)
    assert cache.task_order['10'] == ('100', '102', '101')
    assert cache.tasks['101']['position'] == 2

    updated = ChangeEvent.updated(EventKind.TASK_UPDATED, '1', '102', {'title': 'renomeado'}, actor_id='7').to_wire()
    cache = apply_event(cache, updated)
    assert cache.tasks['102']['title'] == 'renomeado'

    deleted = ChangeEvent.deleted(EventKind.TASK_DELETED, '1', '100', '10', 0, actor_id='7').to_wire()
    cache = apply_event(cache, deleted)
    assert cache.task_order['10'] == ('102', '101')
    assert cache.tasks['102']['position'] == 0


def test_column_events():
    cache = BoardCache.from_board_state(BOARD_STATE)

    created = ChangeEvent.created(
        EventKind.COLUMN_CREATED, '1', '30', '1', 2, {'id': '30', 'title': 'C', 'position': 2}, actor_id='7'
    ).to_wire()
    cache = apply_event(cache, created)
    assert cache.column_order == ('10', '20', '30')
    assert cache.task_order['30'] == ()

    renamed = ChangeEvent.updated(EventKind.COLUMN_UPDATED, '1', '30', {'title': 'Feito'}, actor_id='7').to_wire()
    cache = apply_event(cache, renamed)
    assert cache.columns['30']['title'] == 'Feito'

    deleted = ChangeEvent.deleted(EventKind.COLUMN_DELETED, '1', '10', '1', 0, actor_id='7').to_wire()
    cache = apply_event(cache, deleted)
    assert cache.column_order == ('20', '30')
    assert '100' not in cache.tasks
    assert cache.columns['30']['position'] == 1


def test_board_and_member_events():
    cache = BoardCache.from_board_state(BOARD_STATE, members=[{'userId': '8', 'role': 'viewer'}])
    cache = apply_event(cache, ChangeEvent.updated(EventKind.BOARD_UPDATED, '1', '1', {'title': 'Novo'}, actor_id='7').to_wire())
    assert cache.board['title'] == 'Novo'

    cache = apply_event(cache, ChangeEvent.updated(
        EventKind.MEMBER_ROLE_UPDATED, '1', '8', {'newRole': 'editor'}, actor_id='7').to_wire())
    assert cache.members['8']['role'] == 'editor'

    cache = apply_event(cache, ChangeEvent.updated(EventKind.MEMBER_REMOVED, '1', '8', {}, actor_id='7').to_wire())
    assert '8' not in cache.members


def test_presence_events_do_not_touch_cache():
    cache = BoardCache.from_board_state(BOARD_STATE)
    event = ChangeEvent.system(EventKind.USER_JOINED, '1', subject_id='8', boardId='1', user={'id': '8'}).to_wire()

    assert apply_event(cache, event) == cache


# === Confirmação pela resposta HTTP ===

def _move_response(item_id, source, target, old, new):
    return {
        'success': True, 'itemId': item_id, 'sourceParentId': source, 'targetParentId': target,
        'oldPosition': old, 'newPosition': new, 'state': 'committed',
    }


def test_confirm_clears_move_clamped_to_same_slot():
    # arrastar a última tarefa "além do fim" não gera evento no servidor
    state = apply_optimistic(_initial(), PendingMove.task('op-1', '101', '10', '10', 1, 7))
    assert view(state).pending == frozenset({'101'})

    state = confirm(state, 'op-1', _move_response('101', '10', '10', 1, 1))

    assert state.pending == ()
    assert view(state).pending == frozenset()
    assert view(state).layout() == _initial().confirmed.layout()


def test_confirm_applies_effective_move_and_absorbs_echo():
    state = apply_optimistic(_initial(), PendingMove.task('op-1', '100', '10', '20', 0, 5))
    state = confirm(state, 'op-1', _move_response('100', '10', '20', 0, 1))

    assert state.pending == ()
    assert state.confirmed.layout() == (('10', ('101',)), ('20', ('200', '100')))

    # nova movimentação do mesmo item antes de o eco chegar
    state = apply_optimistic(state, PendingMove.task('op-2', '100', '20', '10', 1, 0))
    echo = ChangeEvent.for_task_move('1', '100', '10', '20', 0, 1, actor_id='7').to_wire()
    state = receive_event(state, echo, own_user_id='7')

    assert [m.op_id for m in state.pending] == ['op-2']
    assert state.acknowledged == ()
    assert state.confirmed.layout() == (('10', ('101',)), ('20', ('200', '100')))


def test_confirm_after_echo_is_a_noop():
    state = apply_optimistic(_initial(), PendingMove.task('op-1', '100', '10', '20', 0, 0))
    state = receive_event(state, _move_x_to_b(actor_id='7'), own_user_id='7')

    confirmed = confirm(state, 'op-1', _move_response('100', '10', '20', 0, 0))

    assert confirmed == state


def test_confirm_column_move():
    state = apply_optimistic(_initial(), PendingMove.column('op-3', '20', 1, 0))

    state = confirm(state, 'op-3', _move_response('20', '1', '1', 1, 0))

    assert state.confirmed.column_order == ('20', '10')
    assert view(state).pending == frozenset()


def test_deleted_board_clears_cache_and_pending():
    state = apply_optimistic(_initial(), PendingMove.task('op-1', '100', '10', '20', 0, 0))
    deleted = ChangeEvent.updated(EventKind.BOARD_UPDATED, '1', '1', {'deleted': True}, actor_id='8').to_wire()

    state = receive_event(state, deleted, own_user_id='7')

    assert state.board_deleted
    assert state.pending == ()
    assert view(state).layout() == ()
    assert view(state).tasks == {}
