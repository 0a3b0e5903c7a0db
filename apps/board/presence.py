# apps/board/presence.py

"""
Presença de usuários nos boards

Mantém, por board, quem está com o board aberto. Usa o mesmo broadcaster
dos eventos de mutação para notificar entradas e saídas. Nada é
persistido: reiniciar o processo zera a presença.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List

from django.utils import timezone

from .broadcast import Broadcaster, Subscriber
from .events import ChangeEvent, EventKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Viewer:
    user_id: str
    display_name: str
    avatar: str = ''
    joined_at: datetime = field(default_factory=timezone.now)

    @classmethod
    def from_user(cls, user):
        from apps.core.utils import avatar_for

        return cls(
            user_id=str(user.pk),
            display_name=user.get_full_name() or user.username,
            avatar=avatar_for(user),
        )

    def as_dict(self):
        return {
            'id': self.user_id,
            'name': self.display_name,
            'picture': self.avatar,
            'joinedAt': self.joined_at.isoformat(),
        }


class PresenceTracker:
    """
    board_id → {connection_id: Viewer}

    Um mesmo usuário pode ter várias conexões (abas); ele aparece uma única
    vez no snapshot e só "sai" quando a última conexão dele fecha.
    """

    def __init__(self, broadcaster: Broadcaster):
        self.broadcaster = broadcaster
        self._lock = threading.Lock()
        self._boards: Dict[str, Dict[str, Viewer]] = {}

    def snapshot(self, board_id) -> List[Viewer]:
        """Usuários presentes, um por user_id, em ordem de chegada"""
        with self._lock:
            viewers = list(self._boards.get(str(board_id), {}).values())

        unique = {}
        for viewer in sorted(viewers, key=lambda v: v.joined_at):
            unique.setdefault(viewer.user_id, viewer)
        return list(unique.values())

    def is_present(self, board_id, user_id) -> bool:
        return any(v.user_id == str(user_id) for v in self.snapshot(board_id))

    async def join(self, board_id, viewer: Viewer, subscriber: Subscriber):
        """
        Registra a entrada e notifica

        1. user_joined para todos os OUTROS inscritos (se o usuário ainda não estava)
        2. snapshot completo apenas para a conexão que entrou
        """
        board_id = str(board_id)
        with self._lock:
            connections = self._boards.setdefault(board_id, {})
            already_present = any(v.user_id == viewer.user_id for v in connections.values())
            connections[subscriber.connection_id] = viewer

        if not already_present:
            joined = ChangeEvent.system(
                EventKind.USER_JOINED, board_id,
                subject_id=viewer.user_id, actor_id=viewer.user_id,
                boardId=board_id, user=viewer.as_dict(),
            )
            await self.broadcaster.broadcast(board_id, joined, exclude=[subscriber])

        snapshot = ChangeEvent.system(
            EventKind.PRESENCE_SNAPSHOT, board_id,
            actor_id=viewer.user_id,
            boardId=board_id, users=[v.as_dict() for v in self.snapshot(board_id)],
        )
        await self.broadcaster.send_to(board_id, subscriber, snapshot)
        logger.info(f"👋 {viewer.display_name} entrou no board {board_id}")

    async def leave(self, board_id, subscriber: Subscriber) -> bool:
        """
        Remove a conexão; emite user_left quando era a última do usuário

        Returns:
            True se a conexão estava registrada
        """
        board_id = str(board_id)
        with self._lock:
            connections = self._boards.get(board_id)
            if not connections or subscriber.connection_id not in connections:
                return False
            viewer = connections.pop(subscriber.connection_id)
            still_present = any(v.user_id == viewer.user_id for v in connections.values())
            if not connections:
                del self._boards[board_id]

        if not still_present:
            left = ChangeEvent.system(
                EventKind.USER_LEFT, board_id,
                subject_id=viewer.user_id, actor_id=viewer.user_id,
                boardId=board_id, userId=viewer.user_id,
            )
            await self.broadcaster.broadcast(board_id, left, exclude=[subscriber])
        logger.info(f"👋 {viewer.display_name} saiu do board {board_id}")
        return True

    def clear(self):
        with self._lock:
            self._boards.clear()
