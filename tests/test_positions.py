# tests/test_positions.py

import pytest

from apps.board.positions import COLUMNS, TASKS
from apps.core.models import Task
from tests.conftest import make_tasks, positions, task_titles

pytestmark = pytest.mark.django_db


def test_append_position_is_count(columns):
    todo = columns[0]
    assert TASKS.append_position(todo.pk) == 0
    make_tasks(todo, 'a', 'b')
    assert TASKS.append_position(todo.pk) == 2


def test_insert_at_shifts_siblings_from_target(columns):
    todo = columns[0]
    make_tasks(todo, 'a', 'b', 'c')

    shifted = TASKS.insert_at(todo.pk, 1)
    Task.objects.create(column=todo, title='novo', position=1)

    assert shifted == 2
    assert task_titles(todo) == ['a', 'novo', 'b', 'c']
    assert TASKS.is_dense(todo.pk)


def test_remove_and_compact_closes_gap(columns):
    todo = columns[0]
    a, b, c, d = make_tasks(todo, 'a', 'b', 'c', 'd')
    b.delete()

    TASKS.remove_and_compact(todo.pk, 1)

    assert task_titles(todo) == ['a', 'c', 'd']
    assert positions(todo) == [0, 1, 2]


def test_reorder_forward_touches_only_window(columns):
    todo = columns[0]
    tasks = make_tasks(todo, 't0', 't1', 't2', 't3', 't4')

    assert TASKS.reorder_within_parent(todo.pk, tasks[1].pk, 1, 3) is True

    assert task_titles(todo) == ['t0', 't2', 't3', 't1', 't4']
    assert positions(todo) == [0, 1, 2, 3, 4]
    # fora da janela [1, 3] nada muda
    tasks[0].refresh_from_db()
    tasks[4].refresh_from_db()
    assert (tasks[0].position, tasks[4].position) == (0, 4)


def test_reorder_backward(columns):
    todo = columns[0]
    tasks = make_tasks(todo, 't0', 't1', 't2', 't3')

    TASKS.reorder_within_parent(todo.pk, tasks[3].pk, 3, 0)

    assert task_titles(todo) == ['t3', 't0', 't1', 't2']


def test_reorder_same_position_is_noop(columns):
    todo = columns[0]
    tasks = make_tasks(todo, 't0', 't1')

    assert TASKS.reorder_within_parent(todo.pk, tasks[0].pk, 0, 0) is False
    assert task_titles(todo) == ['t0', 't1']


def test_rebalance_repairs_gaps_and_duplicates(columns):
    todo = columns[0]
    a, b, c = make_tasks(todo, 'a', 'b', 'c')
    # SQLite não cria a constraint adiada; dados legados com buracos/duplicatas
    Task.objects.filter(pk=a.pk).update(position=3)
    Task.objects.filter(pk=b.pk).update(position=3)
    Task.objects.filter(pk=c.pk).update(position=7)
    assert not TASKS.is_dense(todo.pk)

    changed = TASKS.rebalance(todo.pk)

    assert changed == 3
    assert TASKS.is_dense(todo.pk)
    assert task_titles(todo) == ['a', 'b', 'c']


def test_columns_collection_uses_board_as_parent(board, columns):
    assert COLUMNS.parent_attname == 'board_id'
    assert COLUMNS.positions(board.pk) == [0, 1, 2]
    assert [parent.pk for parent in COLUMNS.lock_parents(board.pk, None)] == [board.pk]
