# apps/board/events.py

"""
Eventos de mudança do board

Cada mutação confirmada gera exatamente um ChangeEvent, com informação
suficiente para o cliente aplicar a mesma mudança no seu cache sem buscar
o board novamente.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any, Dict, Optional

from asgiref.sync import async_to_sync
from django.core.serializers.json import DjangoJSONEncoder
from django.db import transaction
from django.utils import timezone

logger = logging.getLogger(__name__)


class EventKind:
    """Tipos de evento trafegados no campo 'type' do frame"""

    BOARD_UPDATED = 'board_updated'

    COLUMN_CREATED = 'column_created'
    COLUMN_UPDATED = 'column_updated'
    COLUMN_MOVED = 'column_moved'
    COLUMN_DELETED = 'column_deleted'

    TASK_CREATED = 'task_created'
    TASK_UPDATED = 'task_updated'
    TASK_MOVED = 'task_moved'
    TASK_DELETED = 'task_deleted'

    MEMBER_ADDED = 'member_added'
    MEMBER_REMOVED = 'member_removed'
    MEMBER_ROLE_UPDATED = 'member_role_updated'

    # Presença e sistema (não passam pelo emissor de mutações)
    USER_JOINED = 'user_joined'
    USER_LEFT = 'user_left'
    PRESENCE_SNAPSHOT = 'board_presence_updated'
    CONNECTED = 'connected'


# Nome do campo identificador de cada tipo de sujeito no payload
SUBJECT_KEYS = {
    'board': 'boardId',
    'column': 'columnId',
    'task': 'taskId',
    'member': 'memberId',
    'user': 'userId',
}


def _str_or_none(value):
    return None if value is None else str(value)


@dataclass(frozen=True)
class ChangeEvent:
    """
    Registro imutável de uma mutação confirmada

    O evento é serializado para um frame JSON antes do fan-out; cada
    assinante recebe uma cópia, nunca um objeto mutável compartilhado.
    """

    board_id: str
    kind: str
    subject_id: str
    actor_id: Optional[str]
    parent_before: Optional[str] = None
    parent_after: Optional[str] = None
    position_before: Optional[int] = None
    position_after: Optional[int] = None
    changes: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=timezone.now)

    @property
    def subject_type(self):
        return self.kind.split('_', 1)[0]

    # === Construtores ===

    @classmethod
    def for_task_move(cls, board_id, task_id, source_column_id, target_column_id,
                      old_position, new_position, actor_id):
        return cls(
            board_id=str(board_id),
            kind=EventKind.TASK_MOVED,
            subject_id=str(task_id),
            actor_id=_str_or_none(actor_id),
            parent_before=str(source_column_id),
            parent_after=str(target_column_id),
            position_before=old_position,
            position_after=new_position,
        )

    @classmethod
    def for_column_move(cls, board_id, column_id, old_position, new_position, actor_id):
        return cls(
            board_id=str(board_id),
            kind=EventKind.COLUMN_MOVED,
            subject_id=str(column_id),
            actor_id=_str_or_none(actor_id),
            parent_before=str(board_id),
            parent_after=str(board_id),
            position_before=old_position,
            position_after=new_position,
        )

    @classmethod
    def created(cls, kind, board_id, subject_id, parent_id, position, data, actor_id):
        return cls(
            board_id=str(board_id),
            kind=kind,
            subject_id=str(subject_id),
            actor_id=_str_or_none(actor_id),
            parent_after=_str_or_none(parent_id),
            position_after=position,
            changes=dict(data),
        )

    @classmethod
    def updated(cls, kind, board_id, subject_id, changes, actor_id, parent_id=None):
        return cls(
            board_id=str(board_id),
            kind=kind,
            subject_id=str(subject_id),
            actor_id=_str_or_none(actor_id),
            parent_before=_str_or_none(parent_id),
            parent_after=_str_or_none(parent_id),
            changes=dict(changes),
        )

    @classmethod
    def deleted(cls, kind, board_id, subject_id, parent_id, position, actor_id):
        return cls(
            board_id=str(board_id),
            kind=kind,
            subject_id=str(subject_id),
            actor_id=_str_or_none(actor_id),
            parent_before=_str_or_none(parent_id),
            position_before=position,
        )

    @classmethod
    def system(cls, kind, board_id, subject_id=None, actor_id=None, **payload):
        """Eventos de presença/sistema - payload livre"""
        return cls(
            board_id=str(board_id),
            kind=kind,
            subject_id=_str_or_none(subject_id),
            actor_id=_str_or_none(actor_id),
            changes=payload,
        )

    # === Formato de transporte ===

    def payload(self) -> Dict[str, Any]:
        if self.kind == EventKind.TASK_MOVED:
            body = {
                'taskId': self.subject_id,
                'sourceColumnId': self.parent_before,
                'targetColumnId': self.parent_after,
                'oldPosition': self.position_before,
                'newPosition': self.position_after,
            }
        elif self.kind == EventKind.COLUMN_MOVED:
            body = {
                'columnId': self.subject_id,
                'oldPosition': self.position_before,
                'newPosition': self.position_after,
            }
        elif self.kind in (EventKind.COLUMN_CREATED, EventKind.TASK_CREATED):
            key = SUBJECT_KEYS[self.subject_type]
            record = dict(self.changes)
            record.setdefault('id', self.subject_id)
            record.setdefault('position', self.position_after)
            body = {key: self.subject_id, self.subject_type: record}
            if self.subject_type == 'task':
                body['columnId'] = self.parent_after
        elif self.kind in (EventKind.COLUMN_DELETED, EventKind.TASK_DELETED):
            body = {
                SUBJECT_KEYS[self.subject_type]: self.subject_id,
                'position': self.position_before,
            }
            if self.subject_type == 'task':
                body['columnId'] = self.parent_before
        elif self.subject_id is not None and self.subject_type in SUBJECT_KEYS and not self.kind.startswith('user_'):
            body = {SUBJECT_KEYS[self.subject_type]: self.subject_id, 'changes': dict(self.changes)}
            if self.subject_type == 'task' and self.parent_after is not None:
                body['columnId'] = self.parent_after
        else:
            body = dict(self.changes)

        body['timestamp'] = self.timestamp.isoformat()
        return body

    def to_wire(self) -> Dict[str, Any]:
        """Formato único nos dois canais: {type, boardId, payload, actorId}"""
        return {
            'type': self.kind,
            'boardId': self.board_id,
            'payload': self.payload(),
            'actorId': self.actor_id,
        }

    def to_frame(self) -> str:
        return json.dumps(self.to_wire(), cls=DjangoJSONEncoder)


class MutationEmitter:
    """
    Emite eventos de mutação para o broadcaster

    A emissão acontece estritamente depois do commit. Se ela falhar a
    mutação continua valendo: o erro é apenas registrado em log.
    """

    def __init__(self, broadcaster):
        self.broadcaster = broadcaster

    def emit_on_commit(self, event: ChangeEvent):
        """Agenda a emissão para depois do commit da transação corrente"""
        transaction.on_commit(partial(self.emit, event))

    def emit(self, event: ChangeEvent) -> int:
        try:
            delivered = async_to_sync(self.broadcaster.broadcast)(event.board_id, event)
        except Exception:
            logger.exception(f"❌ Falha ao emitir {event.kind} do board {event.board_id}")
            return 0

        logger.info(f"📡 {event.kind} emitido no board {event.board_id} ({delivered} conexões)")
        return delivered
