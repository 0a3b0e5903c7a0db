# apps/board/consumers.py

import json
import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.apps import apps
from django.conf import settings
from django.utils import timezone

from apps.core.models import Board
from apps.core.permissions import get_board_capabilities
from apps.core.utils import serialize_board_state
from .broadcast import WebSocketSubscriber
from .events import ChangeEvent, EventKind
from .presence import Viewer

logger = logging.getLogger(__name__)

# Códigos de fechamento (faixa 4000-4999 reservada para aplicações)
CLOSE_UNAUTHENTICATED = 4401
CLOSE_FORBIDDEN = 4403
CLOSE_NOT_FOUND = 4404


class BoardConsumer(AsyncWebsocketConsumer):
    """
    Canal primário de tempo real de um board

    Funcionalidades:
    - Entrega dos eventos de mutação do board
    - Presença (quem está com o board aberto)
    - Heartbeat (ping/pong) e sincronização completa sob demanda
    """

    subscriber = None

    @property
    def board_app(self):
        return apps.get_app_config('board')

    async def connect(self):
        """
        Verifica identidade e capacidade antes de aceitar a conexão
        """
        self.board_id = str(self.scope['url_route']['kwargs']['board_id'])
        self.user = self.scope['user']

        if not self.user.is_authenticated:
            logger.warning("❌ Conexão WebSocket rejeitada - usuário não autenticado")
            await self.close(code=CLOSE_UNAUTHENTICATED)
            return

        capabilities = await self.get_capabilities()
        if capabilities is None:
            logger.warning(f"❌ Conexão WebSocket rejeitada - board {self.board_id} não existe")
            await self.close(code=CLOSE_NOT_FOUND)
            return
        if not capabilities.can_view:
            logger.warning(f"❌ Conexão WebSocket rejeitada - {self.user.username} sem acesso ao board {self.board_id}")
            await self.close(code=CLOSE_FORBIDDEN)
            return

        await self.accept()

        await self.send(text_data=ChangeEvent.system(
            EventKind.CONNECTED, self.board_id,
            actor_id=self.user.pk,
            channel=WebSocketSubscriber.channel,
            heartbeatInterval=getattr(settings, 'KANBAN_WS_HEARTBEAT_INTERVAL', 30),
        ).to_frame())

        self.subscriber = WebSocketSubscriber(self.channel_layer, self.channel_name, user_id=self.user.pk)
        self.board_app.broadcaster.subscribe(self.board_id, self.subscriber)
        await self.board_app.presence.join(self.board_id, Viewer.from_user(self.user), self.subscriber)

        logger.info(f"✅ WebSocket conectado - {self.user.username} no board {self.board_id}")

    async def disconnect(self, close_code):
        await self.leave_board()
        if self.user.is_authenticated:
            logger.info(f"🔌 WebSocket desconectado - {self.user.username} do board {self.board_id} ({close_code})")

    async def leave_board(self):
        """Sai da presença e das inscrições (idempotente)"""
        subscriber, self.subscriber = self.subscriber, None
        if subscriber is None:
            return
        subscriber.close()
        self.board_app.broadcaster.unsubscribe(self.board_id, subscriber)
        await self.board_app.presence.leave(self.board_id, subscriber)

    async def receive(self, text_data=None, bytes_data=None):
        """
        Mensagens do cliente: ping, sync_board, leave_board
        """
        try:
            data = json.loads(text_data or '')
        except json.JSONDecodeError:
            logger.error(f"❌ JSON inválido recebido via WebSocket de {self.user.username}")
            return

        message_type = data.get('type') if isinstance(data, dict) else None

        # Heartbeat
        if message_type == 'ping':
            await self.send(text_data=json.dumps({
                'type': 'pong',
                'timestamp': self.get_timestamp()
            }))

        # Sincronização completa do board
        elif message_type == 'sync_board':
            board_data = await self.get_board_state()
            await self.send(text_data=json.dumps({
                'type': 'board_sync',
                'boardId': self.board_id,
                'payload': board_data,
                'timestamp': self.get_timestamp()
            }))

        elif message_type == 'leave_board':
            await self.leave_board()
            await self.close()

        else:
            logger.debug(f"Mensagem WebSocket ignorada: {message_type}")

    # === Handler do channel layer ===

    async def board_event(self, event):
        """Frame já serializado pelo broadcaster"""
        await self.send(text_data=event['frame'])

    # === Métodos auxiliares ===

    @database_sync_to_async
    def get_capabilities(self):
        try:
            board = Board.objects.get(pk=self.board_id)
        except Board.DoesNotExist:
            return None
        return get_board_capabilities(self.user, board)

    @database_sync_to_async
    def get_board_state(self):
        board = Board.objects.get(pk=self.board_id)
        return serialize_board_state(board)

    def get_timestamp(self):
        return timezone.now().isoformat()
