# apps/core/utils.py

import hashlib
from typing import Dict, Iterable, List

from .exceptions import InvalidOperation


def gerar_cor_usuario(username: str) -> str:
    """
    Gera uma cor consistente baseada no username
    Útil para avatares quando não há foto
    """
    hash_hex = hashlib.md5(username.encode()).hexdigest()
    return f"#{hash_hex[:6]}"


def avatar_for(user) -> str:
    """Avatar do usuário ou, na falta dele, a cor gerada pelo username"""
    return user.avatar or gerar_cor_usuario(user.username)


def _iso(value):
    return value.isoformat() if value else None


def serialize_column(column, task_count=None) -> Dict:
    data = {
        'id': str(column.pk),
        'title': column.title,
        'position': column.position,
        'boardId': str(column.board_id),
    }
    if task_count is not None:
        data['taskCount'] = task_count
    return data


def serialize_task(task) -> Dict:
    return {
        'id': str(task.pk),
        'title': task.title,
        'description': task.description,
        'columnId': str(task.column_id),
        'position': task.position,
        'assigneeId': str(task.assignee_id) if task.assignee_id else None,
        'startDate': _iso(task.start_date),
        'dueDate': _iso(task.due_date),
        'labels': sorted(label.key for label in task.labels.all()),
        'isComplete': task.is_complete,
    }


def serialize_member(membership) -> Dict:
    user = membership.user
    return {
        'userId': str(user.pk),
        'name': user.get_full_name() or user.username,
        'email': user.email,
        'picture': avatar_for(user),
        'role': membership.role,
    }


def serialize_board(board) -> Dict:
    return {
        'id': str(board.pk),
        'title': board.title,
        'description': board.description,
        'isPublic': board.is_public,
        'ownerId': str(board.owner_id),
        'labels': [
            {'id': label.key, 'name': label.name, 'color': label.color}
            for label in board.labels.order_by('key')
        ],
    }


def serialize_board_state(board) -> Dict:
    """Estado completo do board: colunas ordenadas com suas tarefas"""
    columns: List[Dict] = []
    for column in board.columns.order_by('position').prefetch_related('tasks__labels'):
        tasks = [serialize_task(task) for task in column.tasks.all()]
        data = serialize_column(column, task_count=len(tasks))
        data['tasks'] = tasks
        columns.append(data)

    state = serialize_board(board)
    state['columns'] = columns
    return state


def validate_task_labels(board, label_keys: Iterable[str]):
    """
    Garante que as labels da tarefa pertencem ao board

    Returns:
        QuerySet das labels correspondentes
    """
    keys = list(label_keys or [])
    if len(keys) != len(set(keys)):
        raise InvalidOperation('Labels duplicadas não são permitidas')

    labels = board.labels.filter(key__in=keys)
    unknown = set(keys) - {label.key for label in labels}
    if unknown:
        raise InvalidOperation(
            'Labels não pertencem ao board',
            detail={'labels': sorted(unknown)}
        )
    return labels
