# apps/board/views.py

import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from apps.core.exceptions import InvalidOperation
from apps.core.permissions import requer_autenticacao
from apps.core.utils import serialize_board, serialize_column, serialize_member, serialize_task
from .services import get_board_service

logger = logging.getLogger(__name__)


def _json_body(request):
    """Corpo JSON da requisição; corpo vazio vale {}"""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidOperation('JSON inválido')
    if not isinstance(data, dict):
        raise InvalidOperation('Corpo da requisição deve ser um objeto JSON')
    return data


def _move_response(result):
    return JsonResponse({
        'success': True,
        'itemId': str(result.item_id),
        'sourceParentId': str(result.source_parent_id),
        'targetParentId': str(result.target_parent_id),
        'oldPosition': result.old_position,
        'newPosition': result.new_position,
        'state': result.state.value,
    })


# === Board ===

@requer_autenticacao
@require_GET
def board_state(request, board_id):
    """Estado completo do board (colunas com tarefas)"""
    state = get_board_service().board_state(request.user, board_id)
    return JsonResponse({'success': True, 'board': state})


@csrf_exempt
@requer_autenticacao
@require_POST
def create_board(request):
    """Cria board (labels padrão quando 'labels' não é enviado)"""
    board = get_board_service().create_board(request.user, _json_body(request))
    return JsonResponse({'success': True, 'board': serialize_board(board)}, status=201)


@csrf_exempt
@requer_autenticacao
@require_http_methods(["PATCH", "DELETE"])
def board_detail(request, board_id):
    service = get_board_service()

    if request.method == 'DELETE':
        service.delete_board(request.user, board_id)
        return JsonResponse({'success': True})

    board = service.update_board(request.user, board_id, _json_body(request))
    return JsonResponse({'success': True, 'board': serialize_board(board)})


# === Colunas ===

@csrf_exempt
@requer_autenticacao
@require_POST
def create_column(request, board_id):
    data = _json_body(request)
    column = get_board_service().create_column(
        request.user, board_id, data.get('title'), position=data.get('position')
    )
    return JsonResponse({'success': True, 'column': serialize_column(column, task_count=0)}, status=201)


@csrf_exempt
@requer_autenticacao
@require_http_methods(["PATCH", "DELETE"])
def column_detail(request, column_id):
    service = get_board_service()

    if request.method == 'DELETE':
        service.delete_column(request.user, column_id)
        return JsonResponse({'success': True})

    data = _json_body(request)
    column = service.update_column(
        request.user, column_id, title=data.get('title'), position=data.get('position')
    )
    return JsonResponse({'success': True, 'column': serialize_column(column)})


@csrf_exempt
@requer_autenticacao
@require_POST
def move_column(request, column_id):
    """
    Move coluna dentro do board

    Body: {"newPosition": int}
    """
    data = _json_body(request)
    service = get_board_service()
    column = service.get_column(column_id)
    result = service.move_column(request.user, column.board_id, column.pk, data.get('newPosition'))
    return _move_response(result)


# === Tarefas ===

@csrf_exempt
@requer_autenticacao
@require_POST
def create_task(request, column_id):
    data = _json_body(request)
    task = get_board_service().create_task(request.user, column_id, data, position=data.get('position'))
    return JsonResponse({'success': True, 'task': serialize_task(task)}, status=201)


@csrf_exempt
@requer_autenticacao
@require_http_methods(["PATCH", "DELETE"])
def task_detail(request, task_id):
    service = get_board_service()

    if request.method == 'DELETE':
        service.delete_task(request.user, task_id)
        return JsonResponse({'success': True})

    task = service.update_task(request.user, task_id, _json_body(request))
    task.refresh_from_db()
    return JsonResponse({'success': True, 'task': serialize_task(task)})


@csrf_exempt
@requer_autenticacao
@require_POST
def move_task(request, task_id):
    """
    Move tarefa (drag-and-drop)

    Body: {"targetColumnId", "newPosition", "sourceColumnId"?, "expectedPosition"?}
    Conflito (409) devolve a coluna/posição atuais em detail para o cliente reverter
    """
    data = _json_body(request)
    if data.get('targetColumnId') is None:
        raise InvalidOperation('targetColumnId é obrigatório')

    result = get_board_service().move_task(
        request.user, task_id,
        data['targetColumnId'], data.get('newPosition'),
        source_column_id=data.get('sourceColumnId'),
        expected_position=data.get('expectedPosition'),
    )
    return _move_response(result)


# === Membros ===

@csrf_exempt
@requer_autenticacao
@require_POST
def add_member(request, board_id):
    data = _json_body(request)
    if data.get('userId') is None:
        raise InvalidOperation('userId é obrigatório')
    membership = get_board_service().add_member(
        request.user, board_id, data['userId'], role=data.get('role', 'viewer')
    )
    return JsonResponse({'success': True, 'member': serialize_member(membership)}, status=201)


@csrf_exempt
@requer_autenticacao
@require_http_methods(["PATCH", "DELETE"])
def member_detail(request, board_id, user_id):
    service = get_board_service()

    if request.method == 'DELETE':
        service.remove_member(request.user, board_id, user_id)
        return JsonResponse({'success': True})

    data = _json_body(request)
    membership = service.update_member_role(request.user, board_id, user_id, data.get('role'))
    return JsonResponse({'success': True, 'member': serialize_member(membership)})
