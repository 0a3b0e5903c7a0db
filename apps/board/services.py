# apps/board/services.py

"""
Serviço do board - ponto de entrada das mutações

Toda operação mutante segue o mesmo roteiro:
1. Resolver board e verificar capacidade (Forbidden antes de qualquer escrita)
2. Aplicar a mutação dentro de transaction.atomic
3. Agendar o evento de mudança para depois do commit
"""

import logging
import re
from typing import Dict, List, Optional

from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction

from apps.core.exceptions import InvalidOperation, NotFound, StorageFailure, Unauthenticated
from apps.core.models import Board, BoardMember, Column, Label, Task, User
from apps.core.permissions import get_board_capabilities, is_authenticated, require_capability
from apps.core.utils import (
    serialize_board,
    serialize_board_state,
    serialize_column,
    serialize_member,
    serialize_task,
    validate_task_labels,
)
from .events import ChangeEvent, EventKind, MutationEmitter
from .moves import MoveCoordinator
from .positions import COLUMNS, TASKS

logger = logging.getLogger(__name__)

TASK_FIELDS = ('title', 'description', 'assignee_id', 'start_date', 'due_date', 'is_complete')
TASK_WIRE_NAMES = {
    'assignee_id': 'assigneeId',
    'start_date': 'startDate',
    'due_date': 'dueDate',
    'is_complete': 'isComplete',
}
BOARD_FIELDS = ('title', 'description', 'is_public')
BOARD_WIRE_NAMES = {'is_public': 'isPublic'}
LABEL_COLOR_RE = re.compile(r'^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$')


def _actor_id(user):
    return getattr(user, 'pk', None)


def _coerce_position(value, allow_none=False):
    if value is None and allow_none:
        return None
    if isinstance(value, bool):
        raise InvalidOperation('Posição inválida', detail={'position': value})
    try:
        position = int(value)
    except (TypeError, ValueError):
        raise InvalidOperation('Posição inválida', detail={'position': value})
    if position < 0:
        raise InvalidOperation('Posição inválida', detail={'position': value})
    return position


class storage_guard:
    """Converte DatabaseError em StorageFailure (a transação já foi revertida)"""

    def __init__(self, operation):
        self.operation = operation

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None and issubclass(exc_type, DatabaseError):
            logger.error(f"❌ {self.operation} revertido(a): {exc}")
            raise StorageFailure(str(exc)) from exc
        return False


class BoardService:
    """
    Operações do board expostas à camada HTTP

    Args:
        emitter: emissor de eventos (ligado ao broadcaster do processo)
        capability_check: (user, board) -> BoardCapabilities
        coordinator: coordenador de movimentações
    """

    def __init__(self, emitter: MutationEmitter, capability_check=get_board_capabilities,
                 coordinator: Optional[MoveCoordinator] = None):
        self.emitter = emitter
        self.capability_check = capability_check
        self.coordinator = coordinator or MoveCoordinator()

    # === Resolução de objetos ===

    def _get(self, model, pk, label):
        try:
            return model.objects.get(pk=pk)
        except (model.DoesNotExist, ValueError, TypeError):
            raise NotFound(f'{label} não encontrado(a)', detail={'id': str(pk)})

    def get_board(self, board_id) -> Board:
        return self._get(Board, board_id, 'Board')

    def get_column(self, column_id) -> Column:
        return self._get(Column, column_id, 'Coluna')

    def get_task(self, task_id) -> Task:
        return self._get(Task, task_id, 'Tarefa')

    def _require(self, user, board, operation):
        return require_capability(user, board, operation, self.capability_check)

    # === Leitura ===

    def board_state(self, user, board_id) -> Dict:
        board = self.get_board(board_id)
        self._require(user, board, 'view')
        return serialize_board_state(board)

    # === Movimentações ===

    def move_column(self, user, board_id, column_id, new_position):
        """Move uma coluna dentro do board; emite column_moved"""
        board = self.get_board(board_id)
        self._require(user, board, 'edit')
        new_position = _coerce_position(new_position)

        with transaction.atomic():
            result = self.coordinator.move_column(board.pk, column_id, new_position)
            if result.changed:
                self.emitter.emit_on_commit(ChangeEvent.for_column_move(
                    board.pk, result.item_id, result.old_position, result.new_position, _actor_id(user)
                ))
        return result

    def move_task(self, user, task_id, target_column_id, new_position,
                  source_column_id=None, expected_position=None):
        """Move uma tarefa na mesma coluna ou para outra coluna do board; emite task_moved"""
        task = self.get_task(task_id)
        board = task.column.board
        self._require(user, board, 'edit')
        new_position = _coerce_position(new_position)
        expected_position = _coerce_position(expected_position, allow_none=True)

        with transaction.atomic():
            result = self.coordinator.move_task(
                task.pk, target_column_id, new_position,
                source_column_id=source_column_id,
                expected_position=expected_position,
            )
            if result.changed:
                self.emitter.emit_on_commit(ChangeEvent.for_task_move(
                    board.pk, result.item_id,
                    result.source_parent_id, result.target_parent_id,
                    result.old_position, result.new_position,
                    _actor_id(user),
                ))
        return result

    # === Colunas ===

    def create_column(self, user, board_id, title, position=None) -> Column:
        board = self.get_board(board_id)
        self._require(user, board, 'edit')
        title = (title or '').strip()
        if not title:
            raise InvalidOperation('Título é obrigatório')
        position = _coerce_position(position, allow_none=True)

        with storage_guard('Criação de coluna'), transaction.atomic():
            COLUMNS.lock_parents(board.pk)
            count = COLUMNS.count(board.pk)
            if position is None or position >= count:
                position = COLUMNS.append_position(board.pk)
            else:
                COLUMNS.insert_at(board.pk, position)
            column = Column.objects.create(board=board, title=title[:100], position=position)
            self.emitter.emit_on_commit(ChangeEvent.created(
                EventKind.COLUMN_CREATED, board.pk, column.pk, board.pk,
                column.position, serialize_column(column, task_count=0), _actor_id(user)
            ))
        return column

    def update_column(self, user, column_id, title=None, position=None) -> Column:
        """Atualiza título; mudança de posição é delegada a move_column"""
        column = self.get_column(column_id)
        board = column.board
        self._require(user, board, 'edit')

        if position is not None:
            self.move_column(user, board.pk, column.pk, position)
            column.refresh_from_db()

        if title is not None:
            title = title.strip()
            if not title:
                raise InvalidOperation('Título não pode ser vazio')
            if len(title) > 100:
                raise InvalidOperation('Título deve ter no máximo 100 caracteres')
            with storage_guard('Atualização de coluna'), transaction.atomic():
                Column.objects.filter(pk=column.pk).update(title=title)
                column.title = title
                self.emitter.emit_on_commit(ChangeEvent.updated(
                    EventKind.COLUMN_UPDATED, board.pk, column.pk, {'title': title}, _actor_id(user)
                ))
        return column

    def delete_column(self, user, column_id):
        column = self.get_column(column_id)
        board = column.board
        self._require(user, board, 'edit')

        with storage_guard('Remoção de coluna'), transaction.atomic():
            COLUMNS.lock_parents(board.pk)
            column = self.get_column(column_id)
            task_count = column.tasks.count()
            if task_count:
                raise InvalidOperation(
                    'Não é possível remover coluna com tarefas. Mova ou remova as tarefas primeiro.',
                    detail={'taskCount': task_count}
                )
            position = column.position
            column.delete()
            COLUMNS.remove_and_compact(board.pk, position)
            self.emitter.emit_on_commit(ChangeEvent.deleted(
                EventKind.COLUMN_DELETED, board.pk, column_id, board.pk, position, _actor_id(user)
            ))

    # === Tarefas ===

    def _task_changes(self, board, data):
        """Normaliza campos da tarefa vindos do cliente"""
        changes = {}
        for name in TASK_FIELDS:
            wire = TASK_WIRE_NAMES.get(name, name)
            if wire in data:
                changes[name] = data[wire]
            elif name in data:
                changes[name] = data[name]

        if 'title' in changes:
            changes['title'] = (changes['title'] or '').strip()
            if not changes['title']:
                raise InvalidOperation('Título é obrigatório')

        assignee_id = changes.get('assignee_id')
        if assignee_id:
            is_member = (str(board.owner_id) == str(assignee_id)
                         or board.memberships.filter(user_id=assignee_id).exists())
            if not is_member:
                raise InvalidOperation('Responsável não é membro do board', detail={'assigneeId': str(assignee_id)})
        return changes

    def _validate_task(self, task):
        try:
            task.full_clean(exclude=['column', 'labels', 'position'])
        except ValidationError as exc:
            raise InvalidOperation('Dados da tarefa inválidos', detail=exc.message_dict)

    def create_task(self, user, column_id, data: Dict, position=None) -> Task:
        column = self.get_column(column_id)
        board = column.board
        self._require(user, board, 'edit')
        changes = self._task_changes(board, data)
        if not changes.get('title'):
            raise InvalidOperation('Título é obrigatório')
        labels = validate_task_labels(board, data.get('labels'))
        position = _coerce_position(position, allow_none=True)

        task = Task(column=column, **changes)
        self._validate_task(task)

        with storage_guard('Criação de tarefa'), transaction.atomic():
            TASKS.lock_parents(column.pk)
            count = TASKS.count(column.pk)
            if position is None or position >= count:
                position = TASKS.append_position(column.pk)
            else:
                TASKS.insert_at(column.pk, position)
            task.position = position
            task.save()
            task.labels.set(labels)
            self.emitter.emit_on_commit(ChangeEvent.created(
                EventKind.TASK_CREATED, board.pk, task.pk, column.pk,
                task.position, serialize_task(task), _actor_id(user)
            ))
        return task

    def update_task(self, user, task_id, data: Dict) -> Task:
        """Atualiza campos da tarefa; 'position' reordena dentro da coluna"""
        task = self.get_task(task_id)
        board = task.column.board
        self._require(user, board, 'edit')
        changes = self._task_changes(board, data)
        labels = validate_task_labels(board, data['labels']) if 'labels' in data else None

        if data.get('position') is not None:
            self.move_task(user, task.pk, task.column_id, data['position'])
            task.refresh_from_db()

        if not changes and labels is None:
            return task

        for name, value in changes.items():
            setattr(task, name, value)
        self._validate_task(task)
        # Valores já convertidos pelo full_clean (datas como datetime)
        changes = {name: getattr(task, name) for name in changes}

        with storage_guard('Atualização de tarefa'), transaction.atomic():
            Task.objects.filter(pk=task.pk).update(**changes)
            wire_changes = {TASK_WIRE_NAMES.get(k, k): v for k, v in changes.items()}
            if 'assigneeId' in wire_changes and wire_changes['assigneeId'] is not None:
                wire_changes['assigneeId'] = str(wire_changes['assigneeId'])
            if labels is not None:
                task.labels.set(labels)
                wire_changes['labels'] = sorted(label.key for label in labels)
            self.emitter.emit_on_commit(ChangeEvent.updated(
                EventKind.TASK_UPDATED, board.pk, task.pk, wire_changes, _actor_id(user),
                parent_id=task.column_id,
            ))
        return task

    def delete_task(self, user, task_id):
        task = self.get_task(task_id)
        board = task.column.board
        self._require(user, board, 'edit')

        with storage_guard('Remoção de tarefa'), transaction.atomic():
            TASKS.lock_parents(task.column_id)
            task = self.get_task(task_id)
            column_id, position = task.column_id, task.position
            task.delete()
            TASKS.remove_and_compact(column_id, position)
            self.emitter.emit_on_commit(ChangeEvent.deleted(
                EventKind.TASK_DELETED, board.pk, task_id, column_id, position, _actor_id(user)
            ))

    # === Board e membros ===

    def _board_changes(self, data):
        """Normaliza título/descrição/visibilidade vindos do cliente"""
        changes = {}
        for name in BOARD_FIELDS:
            wire = BOARD_WIRE_NAMES.get(name, name)
            if wire in data:
                changes[name] = data[wire]

        if 'title' in changes:
            changes['title'] = (changes['title'] or '').strip()
            if not changes['title']:
                raise InvalidOperation('Título é obrigatório')
            if len(changes['title']) > 100:
                raise InvalidOperation('Título deve ter no máximo 100 caracteres')
        if 'description' in changes:
            changes['description'] = (changes['description'] or '').strip()
            if len(changes['description']) > 500:
                raise InvalidOperation('Descrição deve ter no máximo 500 caracteres')
        if 'is_public' in changes and not isinstance(changes['is_public'], bool):
            raise InvalidOperation('isPublic deve ser booleano', detail={'isPublic': changes['is_public']})
        return changes

    def _clean_labels(self, labels) -> List[Dict]:
        """
        Valida a lista de labels do board: [{"id", "name", "color"}, ...]

        Raises:
            InvalidOperation: formato inválido, nome longo, cor inválida ou id repetido
        """
        if not isinstance(labels, list):
            raise InvalidOperation('labels deve ser uma lista')

        cleaned = []
        for label in labels:
            if not isinstance(label, dict) or not all(label.get(k) for k in ('id', 'name', 'color')):
                raise InvalidOperation('Formato de label inválido', detail={'label': label})
            if len(str(label['name'])) > 50:
                raise InvalidOperation('Nome da label deve ter no máximo 50 caracteres', detail={'label': label['id']})
            if not LABEL_COLOR_RE.match(str(label['color'])):
                raise InvalidOperation('Cor da label inválida', detail={'label': label['id']})
            cleaned.append({'key': str(label['id']), 'name': str(label['name']), 'color': str(label['color'])})

        keys = [label['key'] for label in cleaned]
        if len(keys) != len(set(keys)):
            raise InvalidOperation('Labels com id repetido')
        return cleaned

    def _replace_labels(self, board, labels):
        """
        Substitui o conjunto de labels do board

        Labels mantidas (mesmo id) preservam as associações com tarefas;
        as removidas saem também das tarefas.
        """
        keep = {label['key'] for label in labels}
        board.labels.exclude(key__in=keep).delete()
        for label in labels:
            Label.objects.update_or_create(
                board=board, key=label['key'],
                defaults={'name': label['name'], 'color': label['color']},
            )

    def create_board(self, user, data: Dict) -> Board:
        """
        Cria um board com o usuário como dono

        Sem 'labels' o board recebe as labels padrão (signal de criação).
        """
        if not is_authenticated(user):
            raise Unauthenticated('Autenticação necessária')
        changes = self._board_changes(data)
        if not changes.get('title'):
            raise InvalidOperation('Título é obrigatório')
        labels = self._clean_labels(data['labels']) if data.get('labels') is not None else None

        with storage_guard('Criação de board'), transaction.atomic():
            board = Board.objects.create(owner=user, **changes)
            if labels is not None:
                self._replace_labels(board, labels)
            state = serialize_board(board)
            self.emitter.emit_on_commit(ChangeEvent.updated(
                EventKind.BOARD_UPDATED, board.pk, board.pk,
                {key: state[key] for key in ('title', 'description', 'labels', 'isPublic')},
                _actor_id(user)
            ))
        logger.info(f"📋 Board {board.pk} criado por {user.username}")
        return board

    def update_board(self, user, board_id, data: Dict) -> Board:
        board = self.get_board(board_id)
        self._require(user, board, 'edit')

        changes = self._board_changes(data)
        if 'is_public' in changes and not self.capability_check(user, board).can_delete:
            # Visibilidade pública é decisão do dono
            raise InvalidOperation('Apenas o dono pode alterar a visibilidade do board')
        labels = self._clean_labels(data['labels']) if data.get('labels') is not None else None
        if not changes and labels is None:
            return board

        with storage_guard('Atualização de board'), transaction.atomic():
            for name, value in changes.items():
                setattr(board, name, value)
            board.save(update_fields=[*changes, 'updated_at'])
            wire_changes = {BOARD_WIRE_NAMES.get(k, k): v for k, v in changes.items()}
            if labels is not None:
                self._replace_labels(board, labels)
                wire_changes['labels'] = serialize_board(board)['labels']
            self.emitter.emit_on_commit(ChangeEvent.updated(
                EventKind.BOARD_UPDATED, board.pk, board.pk, wire_changes, _actor_id(user)
            ))
        return board

    def delete_board(self, user, board_id):
        """
        Remove o board e tudo que pertence a ele (colunas, tarefas, labels, membros)

        Quem está com o board aberto recebe board_updated com deleted=True.
        """
        board = self.get_board(board_id)
        self._require(user, board, 'delete')

        with storage_guard('Remoção de board'), transaction.atomic():
            board_pk = board.pk
            # Evento montado só com ids: o board não existe mais quando ele sair
            self.emitter.emit_on_commit(ChangeEvent.updated(
                EventKind.BOARD_UPDATED, board_pk, board_pk, {'deleted': True}, _actor_id(user)
            ))
            board.delete()
        logger.info(f"🗑️ Board {board_pk} removido por {user.username}")

    def _validate_role(self, role):
        if role not in (BoardMember.ROLE_EDITOR, BoardMember.ROLE_VIEWER):
            raise InvalidOperation('Papel inválido', detail={'role': role})

    def add_member(self, user, board_id, member_id, role=BoardMember.ROLE_VIEWER) -> BoardMember:
        board = self.get_board(board_id)
        self._require(user, board, 'manage_members')
        self._validate_role(role)
        member = self._get(User, member_id, 'Usuário')
        if member.pk == board.owner_id or board.memberships.filter(user=member).exists():
            raise InvalidOperation('Usuário já é membro do board')

        with storage_guard('Inclusão de membro'), transaction.atomic():
            membership = BoardMember.objects.create(board=board, user=member, role=role)
            self.emitter.emit_on_commit(ChangeEvent.updated(
                EventKind.MEMBER_ADDED, board.pk, member.pk,
                {'member': serialize_member(membership)}, _actor_id(user)
            ))
        return membership

    def update_member_role(self, user, board_id, member_id, role) -> BoardMember:
        board = self.get_board(board_id)
        self._require(user, board, 'manage_members')
        self._validate_role(role)
        membership = board.memberships.filter(user_id=member_id).first() if str(member_id).isdigit() else None
        if membership is None:
            raise NotFound('Membro não encontrado', detail={'id': str(member_id)})

        with storage_guard('Atualização de papel'), transaction.atomic():
            membership.role = role
            membership.save(update_fields=['role'])
            self.emitter.emit_on_commit(ChangeEvent.updated(
                EventKind.MEMBER_ROLE_UPDATED, board.pk, membership.user_id,
                {'newRole': role}, _actor_id(user)
            ))
        return membership

    def remove_member(self, user, board_id, member_id):
        board = self.get_board(board_id)
        self._require(user, board, 'manage_members')
        membership = board.memberships.filter(user_id=member_id).first() if str(member_id).isdigit() else None
        if membership is None:
            raise NotFound('Membro não encontrado', detail={'id': str(member_id)})

        with storage_guard('Remoção de membro'), transaction.atomic():
            user_id = membership.user_id
            membership.delete()
            # Tarefas atribuídas ao membro removido ficam sem responsável
            Task.objects.filter(column__board=board, assignee_id=user_id).update(assignee=None)
            self.emitter.emit_on_commit(ChangeEvent.updated(
                EventKind.MEMBER_REMOVED, board.pk, user_id, {}, _actor_id(user)
            ))


def get_board_service() -> BoardService:
    """Serviço ligado ao broadcaster do processo (mantido pela app board)"""
    from django.apps import apps

    return apps.get_app_config('board').service
