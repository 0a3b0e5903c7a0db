# apps/board/reconciler.py

"""
Reconciliação do cache do cliente

Redutor puro: nenhuma função aqui altera o estado recebido, todas devolvem
um estado novo. O cache confirmado só muda com eventos vindos do servidor;
movimentações otimistas ficam na fila de pendentes e são aplicadas por cima
apenas na visão.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .events import EventKind


@dataclass(frozen=True)
class BoardCache:
    """
    Cópia local do board

    column_order: ids das colunas em ordem
    task_order: column_id -> ids das tarefas em ordem
    columns / tasks: id -> campos do item
    pending: ids com movimentação otimista ainda não confirmada
    """

    board: Dict[str, Any] = field(default_factory=dict)
    column_order: Tuple[str, ...] = ()
    task_order: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    columns: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    tasks: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    members: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    pending: FrozenSet[str] = frozenset()

    @classmethod
    def from_board_state(cls, state: Dict[str, Any], members=()):
        """Monta o cache a partir do estado completo (GET state / board_sync)"""
        columns, tasks, task_order = {}, {}, {}
        for column in sorted(state.get('columns', []), key=lambda c: c['position']):
            column_id = str(column['id'])
            columns[column_id] = {k: v for k, v in column.items() if k != 'tasks'}
            ordered = sorted(column.get('tasks', []), key=lambda t: t['position'])
            task_order[column_id] = tuple(str(task['id']) for task in ordered)
            for task in ordered:
                tasks[str(task['id'])] = dict(task)

        board = {k: v for k, v in state.items() if k != 'columns'}
        return cls(
            board=board,
            column_order=tuple(columns),
            task_order=task_order,
            columns=columns,
            tasks=tasks,
            members={str(m['userId']): dict(m) for m in members},
        )

    def tasks_in(self, column_id):
        return [self.tasks[task_id] for task_id in self.task_order.get(str(column_id), ())]

    def layout(self):
        """Estrutura comparável: ((column_id, (task_ids...)), ...)"""
        return tuple((c, self.task_order.get(c, ())) for c in self.column_order)


@dataclass(frozen=True)
class PendingMove:
    """Movimentação otimista aguardando confirmação do servidor"""

    op_id: str
    kind: str
    item_id: str
    source_parent_id: Optional[str]
    target_parent_id: Optional[str]
    old_position: int
    new_position: int

    @classmethod
    def task(cls, op_id, task_id, source_column_id, target_column_id, old_position, new_position):
        return cls(op_id, EventKind.TASK_MOVED, str(task_id), str(source_column_id),
                   str(target_column_id), old_position, new_position)

    @classmethod
    def column(cls, op_id, column_id, old_position, new_position):
        return cls(op_id, EventKind.COLUMN_MOVED, str(column_id), None, None, old_position, new_position)

    def to_event(self, actor_id=None) -> Dict[str, Any]:
        if self.kind == EventKind.TASK_MOVED:
            payload = {
                'taskId': self.item_id,
                'sourceColumnId': self.source_parent_id,
                'targetColumnId': self.target_parent_id,
                'oldPosition': self.old_position,
                'newPosition': self.new_position,
            }
        else:
            payload = {
                'columnId': self.item_id,
                'oldPosition': self.old_position,
                'newPosition': self.new_position,
            }
        return {'type': self.kind, 'payload': payload, 'actorId': actor_id}


@dataclass(frozen=True)
class ReconcilerState:
    """
    confirmed: cache derivado apenas do servidor
    pending: movimentações otimistas na ordem em que foram feitas
    acknowledged: (tipo, item) já confirmados pela resposta HTTP cujo evento
        ainda não chegou
    """

    confirmed: BoardCache = field(default_factory=BoardCache)
    pending: Tuple[PendingMove, ...] = ()
    acknowledged: Tuple[Tuple[str, str], ...] = ()

    @property
    def board_deleted(self):
        return bool(self.confirmed.board.get('deleted'))


# === Helpers de lista ===

def _without(order, item_id):
    return tuple(i for i in order if i != item_id)


def _insert(order, item_id, position):
    position = max(0, min(int(position), len(order)))
    return order[:position] + (item_id,) + order[position:]


def _reindex(records, order, **extra):
    """Reescreve 'position' (e campos extras) dos itens de uma ordem"""
    for index, item_id in enumerate(order):
        if item_id in records:
            records[item_id] = {**records[item_id], 'position': index, **extra}


# === Aplicação de eventos ===

def _task_moved(cache, payload):
    task_id = str(payload['taskId'])
    if task_id not in cache.tasks:
        return cache
    source = str(cache.tasks[task_id].get('columnId', payload.get('sourceColumnId')))
    target = str(payload['targetColumnId'])

    task_order = dict(cache.task_order)
    tasks = dict(cache.tasks)
    task_order[source] = _without(task_order.get(source, ()), task_id)
    task_order[target] = _insert(_without(task_order.get(target, ()), task_id), task_id, payload['newPosition'])
    tasks[task_id] = {**tasks[task_id], 'columnId': target}
    _reindex(tasks, task_order[source])
    _reindex(tasks, task_order[target])
    return replace(cache, task_order=task_order, tasks=tasks)


def _column_moved(cache, payload):
    column_id = str(payload['columnId'])
    if column_id not in cache.columns:
        return cache
    order = _insert(_without(cache.column_order, column_id), column_id, payload['newPosition'])
    columns = dict(cache.columns)
    _reindex(columns, order)
    return replace(cache, column_order=order, columns=columns)


def _column_created(cache, payload):
    record = dict(payload['column'])
    column_id = str(payload['columnId'])
    order = _insert(_without(cache.column_order, column_id), column_id, record.get('position', len(cache.column_order)))
    columns = {**cache.columns, column_id: record}
    _reindex(columns, order)
    task_order = {**cache.task_order}
    task_order.setdefault(column_id, ())
    return replace(cache, column_order=order, columns=columns, task_order=task_order)


def _column_deleted(cache, payload):
    column_id = str(payload['columnId'])
    order = _without(cache.column_order, column_id)
    columns = {k: v for k, v in cache.columns.items() if k != column_id}
    _reindex(columns, order)
    removed = set(cache.task_order.get(column_id, ()))
    task_order = {k: v for k, v in cache.task_order.items() if k != column_id}
    tasks = {k: v for k, v in cache.tasks.items() if k not in removed}
    return replace(cache, column_order=order, columns=columns, task_order=task_order, tasks=tasks)


def _task_created(cache, payload):
    record = dict(payload['task'])
    task_id = str(payload['taskId'])
    column_id = str(payload.get('columnId') or record.get('columnId'))
    task_order = dict(cache.task_order)
    current = _without(task_order.get(column_id, ()), task_id)
    task_order[column_id] = _insert(current, task_id, record.get('position', len(current)))
    tasks = {**cache.tasks, task_id: {**record, 'columnId': column_id}}
    _reindex(tasks, task_order[column_id])
    return replace(cache, task_order=task_order, tasks=tasks)


def _task_deleted(cache, payload):
    task_id = str(payload['taskId'])
    record = cache.tasks.get(task_id)
    if record is None:
        return cache
    column_id = str(record['columnId'])
    task_order = dict(cache.task_order)
    task_order[column_id] = _without(task_order.get(column_id, ()), task_id)
    tasks = {k: v for k, v in cache.tasks.items() if k != task_id}
    _reindex(tasks, task_order[column_id])
    return replace(cache, task_order=task_order, tasks=tasks)


def _merge(records, item_id, changes):
    if item_id not in records:
        return records
    return {**records, item_id: {**records[item_id], **changes}}


def apply_event(cache: BoardCache, event: Dict[str, Any]) -> BoardCache:
    """
    Aplica um evento no formato de transporte ({type, payload, ...})

    Eventos de presença e tipos desconhecidos não alteram o cache.
    """
    kind = event.get('type')
    payload = event.get('payload') or {}

    if kind == EventKind.TASK_MOVED:
        return _task_moved(cache, payload)
    if kind == EventKind.COLUMN_MOVED:
        return _column_moved(cache, payload)
    if kind == EventKind.COLUMN_CREATED:
        return _column_created(cache, payload)
    if kind == EventKind.COLUMN_DELETED:
        return _column_deleted(cache, payload)
    if kind == EventKind.TASK_CREATED:
        return _task_created(cache, payload)
    if kind == EventKind.TASK_DELETED:
        return _task_deleted(cache, payload)
    if kind == EventKind.COLUMN_UPDATED:
        return replace(cache, columns=_merge(cache.columns, str(payload['columnId']), payload.get('changes', {})))
    if kind == EventKind.TASK_UPDATED:
        return replace(cache, tasks=_merge(cache.tasks, str(payload['taskId']), payload.get('changes', {})))
    if kind == EventKind.BOARD_UPDATED:
        changes = payload.get('changes', {})
        if changes.get('deleted'):
            # Board removido: nada do conteúdo local continua valendo
            return BoardCache(board={'id': cache.board.get('id', payload.get('boardId')), 'deleted': True})
        tasks = cache.tasks
        if 'labels' in changes:
            # Labels removidas do board saem também das tarefas
            keys = {label['id'] for label in changes['labels']}
            tasks = {
                k: ({**v, 'labels': [key for key in v['labels'] if key in keys]} if 'labels' in v else v)
                for k, v in tasks.items()
            }
        return replace(cache, board={**cache.board, **changes}, tasks=tasks)
    if kind == EventKind.MEMBER_ADDED:
        member = payload.get('changes', {}).get('member', {})
        return replace(cache, members={**cache.members, str(payload['memberId']): dict(member)})
    if kind == EventKind.MEMBER_ROLE_UPDATED:
        role = payload.get('changes', {}).get('newRole')
        return replace(cache, members=_merge(cache.members, str(payload['memberId']), {'role': role}))
    if kind == EventKind.MEMBER_REMOVED:
        member_id = str(payload['memberId'])
        members = {k: v for k, v in cache.members.items() if k != member_id}
        tasks = {
            k: ({**v, 'assigneeId': None} if str(v.get('assigneeId')) == member_id else v)
            for k, v in cache.tasks.items()
        }
        return replace(cache, members=members, tasks=tasks)
    return cache


# === Redutor ===

def _subject_id(event):
    payload = event.get('payload') or {}
    subject = payload.get('taskId', payload.get('columnId'))
    return None if subject is None else str(subject)


def apply_optimistic(state: ReconcilerState, move: PendingMove) -> ReconcilerState:
    return replace(state, pending=state.pending + (move,))


def receive_event(state: ReconcilerState, event: Dict[str, Any], own_user_id=None) -> ReconcilerState:
    """
    Incorpora um evento do servidor

    Se o evento confirma uma movimentação pendente (mesmo item, mesmo tipo,
    autor é este cliente) a primeira pendente correspondente sai da fila.
    """
    confirmed = apply_event(state.confirmed, event)
    if confirmed.board.get('deleted'):
        return ReconcilerState(confirmed=confirmed)

    pending = state.pending
    acknowledged = state.acknowledged

    own = own_user_id is None or str(event.get('actorId')) == str(own_user_id)
    subject = _subject_id(event)
    key = (event.get('type'), subject)
    if own and subject is not None:
        if key in acknowledged:
            # Eco de uma movimentação que a resposta HTTP já confirmou
            index = acknowledged.index(key)
            acknowledged = acknowledged[:index] + acknowledged[index + 1:]
        else:
            for index, move in enumerate(pending):
                if move.kind == key[0] and move.item_id == subject:
                    pending = pending[:index] + pending[index + 1:]
                    break

    return ReconcilerState(confirmed=confirmed, pending=pending, acknowledged=acknowledged)


def _confirmed_event(move: PendingMove, response: Dict[str, Any]) -> Dict[str, Any]:
    """Evento equivalente ao resultado devolvido pelo endpoint de movimentação"""
    if move.kind == EventKind.TASK_MOVED:
        payload = {
            'taskId': move.item_id,
            'sourceColumnId': str(response['sourceParentId']),
            'targetColumnId': str(response['targetParentId']),
        }
    else:
        payload = {'columnId': move.item_id}
    payload['oldPosition'] = response['oldPosition']
    payload['newPosition'] = response['newPosition']
    return {'type': move.kind, 'payload': payload}


def confirm(state: ReconcilerState, op_id, response: Dict[str, Any]) -> ReconcilerState:
    """
    Confirma uma pendente com a resposta de sucesso do servidor

    A resposta traz as posições já ajustadas (clamp). Movimentos sem efeito
    não geram evento, então a pendente sai aqui mesmo. Movimentos efetivos
    são aplicados ao confirmado e o eco que ainda vai chegar é apenas
    consumido (aplicar o mesmo movimento de novo não altera o cache).
    """
    move = next((m for m in state.pending if m.op_id == op_id), None)
    if move is None:
        # O evento chegou antes da resposta e já confirmou a pendente
        return state

    pending = tuple(m for m in state.pending if m.op_id != op_id)
    changed = (str(response.get('sourceParentId')) != str(response.get('targetParentId'))
               or response.get('oldPosition') != response.get('newPosition'))
    if not changed:
        return replace(state, pending=pending)

    return ReconcilerState(
        confirmed=apply_event(state.confirmed, _confirmed_event(move, response)),
        pending=pending,
        acknowledged=state.acknowledged + ((move.kind, move.item_id),),
    )


def reject(state: ReconcilerState, op_id) -> ReconcilerState:
    """Descarta a pendente rejeitada; a visão volta a derivar do confirmado"""
    return replace(state, pending=tuple(m for m in state.pending if m.op_id != op_id))


def view(state: ReconcilerState) -> BoardCache:
    cache = state.confirmed
    for move in state.pending:
        cache = apply_event(cache, move.to_event())
    return replace(cache, pending=frozenset(move.item_id for move in state.pending))
