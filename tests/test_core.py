# tests/test_core.py

from io import StringIO

import pytest
from django.core.management import call_command

from apps.board.positions import TASKS
from apps.core.exceptions import Conflict, StorageFailure
from apps.core.models import Board, Task
from apps.core.permissions import NO_CAPABILITIES, get_board_capabilities
from apps.core.utils import gerar_cor_usuario
from tests.conftest import make_tasks

pytestmark = pytest.mark.django_db


def test_capabilities_by_role(board, owner, editor, viewer, outsider):
    assert get_board_capabilities(owner, board).can_manage_members
    assert get_board_capabilities(owner, board).can_delete

    editor_caps = get_board_capabilities(editor, board)
    assert (editor_caps.can_view, editor_caps.can_edit, editor_caps.can_delete) == (True, True, False)

    viewer_caps = get_board_capabilities(viewer, board)
    assert (viewer_caps.can_view, viewer_caps.can_edit) == (True, False)

    assert get_board_capabilities(outsider, board) == NO_CAPABILITIES
    assert get_board_capabilities(None, board) == NO_CAPABILITIES


def test_new_board_gets_default_labels(owner):
    board = Board.objects.create(title='Novo', owner=owner)

    labels = {label.key: (label.name, label.color) for label in board.labels.all()}
    assert labels == {
        'label-1': ('Priority', '#FF6B6B'),
        'label-2': ('In Progress', '#4ECDC4'),
        'label-3': ('Review', '#45B7D1'),
        'label-4': ('Completed', '#96CEB4'),
        'label-5': ('Bug', '#FECA57'),
        'label-6': ('Feature', '#FF9FF3'),
    }


def test_error_payloads():
    conflict = Conflict('Origem desatualizada', detail={'parent_id': '3', 'position': 0})
    assert conflict.status_code == 409
    assert conflict.as_dict() == {
        'success': False,
        'error': 'Origem desatualizada',
        'code': 'conflict',
        'detail': {'parent_id': '3', 'position': 0},
    }

    failure = StorageFailure('deadlock detected', detail={'sql': 'UPDATE ...'})
    assert failure.as_dict()['detail'] == {}
    assert 'deadlock' not in failure.as_dict()['error']


def test_user_color_is_stable():
    assert gerar_cor_usuario('ana') == gerar_cor_usuario('ana')
    assert gerar_cor_usuario('ana').startswith('#')


def test_check_positions_reports_and_fixes(columns):
    a, b, c = make_tasks(columns[0], 'a', 'b', 'c')
    Task.objects.filter(pk=b.pk).update(position=5)
    Task.objects.filter(pk=c.pk).update(position=9)

    out = StringIO()
    call_command('check_positions', stdout=out)
    assert 'inconsistentes' in out.getvalue()
    assert not TASKS.is_dense(columns[0].pk)

    out = StringIO()
    call_command('check_positions', '--fix', stdout=out)
    assert 'rebalanceados' in out.getvalue()
    assert TASKS.is_dense(columns[0].pk)


def test_check_positions_clean_database(columns):
    make_tasks(columns[1], 'a', 'b')

    out = StringIO()
    call_command('check_positions', stdout=out)

    assert 'Todas as posições estão consistentes' in out.getvalue()
