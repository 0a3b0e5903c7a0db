# apps/board/broadcast.py

"""
Fan-out de eventos para as conexões inscritas em cada board

Dois canais de entrega, escolhidos por cliente no momento da inscrição:
- WebSocket (primário): conexão bidirecional via Channels
- SSE (fallback): push unidirecional servidor → cliente

A entrega é best-effort, pelo menos uma vez, para as conexões inscritas
no momento do broadcast. Não há replay nem backlog.
"""

import asyncio
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from channels.exceptions import ChannelFull

from apps.core.exceptions import DeliveryFailure

logger = logging.getLogger(__name__)

_connection_ids = itertools.count(1)


def next_connection_id(prefix):
    return f'{prefix}-{next(_connection_ids)}'


class Subscriber(ABC):
    """
    Uma conexão viva que recebe frames de um board

    A implementação concreta (WebSocket ou SSE) é escolhida uma única vez,
    quando a conexão se inscreve.
    """

    channel = 'unknown'

    def __init__(self, user_id=None, connection_id=None):
        self.user_id = None if user_id is None else str(user_id)
        self.connection_id = connection_id or next_connection_id(self.channel)
        self.closed = False

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.connection_id} user={self.user_id}>"

    def close(self):
        self.closed = True

    @abstractmethod
    async def send(self, frame: str):
        """Entrega um frame JSON; levanta DeliveryFailure se a conexão morreu"""


class WebSocketSubscriber(Subscriber):
    """Canal primário - entrega pelo channel layer ao consumer da conexão"""

    channel = 'websocket'

    def __init__(self, channel_layer, channel_name, user_id=None):
        super().__init__(user_id=user_id, connection_id=channel_name)
        self.channel_layer = channel_layer
        self.channel_name = channel_name

    async def send(self, frame: str):
        if self.closed:
            raise DeliveryFailure(f'WebSocket {self.channel_name} já desconectado')
        try:
            await self.channel_layer.send(self.channel_name, {
                'type': 'board.event',
                'frame': frame,
            })
        except ChannelFull as exc:
            raise DeliveryFailure(f'Canal {self.channel_name} cheio') from exc


class QueueSubscriber(Subscriber):
    """
    Canal de fallback - fila limitada drenada pelo stream SSE

    O broadcast pode rodar em outra thread/loop (views síncronas), por isso
    a entrega usa call_soon_threadsafe quando necessário.
    """

    channel = 'sse'

    def __init__(self, user_id=None, maxsize=100, loop=None):
        super().__init__(user_id=user_id)
        self.loop = loop or asyncio.get_running_loop()
        self.queue = asyncio.Queue(maxsize=maxsize)

    def _put(self, frame):
        if self.queue.full():
            # Cliente lento demais: conexão considerada morta
            self.closed = True
            return
        self.queue.put_nowait(frame)

    async def send(self, frame: str):
        if self.closed or self.loop.is_closed():
            raise DeliveryFailure(f'Stream {self.connection_id} encerrado')

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self.loop:
            if self.queue.full():
                self.closed = True
                raise DeliveryFailure(f'Fila do stream {self.connection_id} cheia')
            self.queue.put_nowait(frame)
            return

        if self.queue.full():
            self.closed = True
            raise DeliveryFailure(f'Fila do stream {self.connection_id} cheia')
        try:
            self.loop.call_soon_threadsafe(self._put, frame)
        except RuntimeError as exc:
            raise DeliveryFailure(f'Loop do stream {self.connection_id} encerrado') from exc

    async def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """Próximo frame, ou None se o timeout expirar"""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class Broadcaster:
    """
    Registro de inscrições board → conexões e fan-out de eventos

    Uma instância por processo, criada e mantida pela app board
    (BoardConfig.ready). O mapa é protegido por lock; os envios acontecem
    fora do lock sobre uma cópia da lista de inscritos.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, Dict[str, Subscriber]] = {}

    def subscribe(self, board_id, subscriber: Subscriber):
        board_id = str(board_id)
        with self._lock:
            self._subscriptions.setdefault(board_id, {})[subscriber.connection_id] = subscriber
        logger.info(f"✅ {subscriber!r} inscrito no board {board_id}")

    def unsubscribe(self, board_id, subscriber: Subscriber) -> bool:
        board_id = str(board_id)
        with self._lock:
            board_subs = self._subscriptions.get(board_id)
            if not board_subs or subscriber.connection_id not in board_subs:
                return False
            del board_subs[subscriber.connection_id]
            if not board_subs:
                del self._subscriptions[board_id]
        logger.info(f"🔌 {subscriber!r} saiu do board {board_id}")
        return True

    def subscribers(self, board_id) -> List[Subscriber]:
        with self._lock:
            return list(self._subscriptions.get(str(board_id), {}).values())

    def subscriber_count(self, board_id) -> int:
        with self._lock:
            return len(self._subscriptions.get(str(board_id), {}))

    def boards(self) -> List[str]:
        with self._lock:
            return list(self._subscriptions)

    def close(self):
        """Encerra o broadcaster: descarta todas as inscrições"""
        with self._lock:
            for board_subs in self._subscriptions.values():
                for subscriber in board_subs.values():
                    subscriber.close()
            self._subscriptions.clear()
        logger.info("🔕 Broadcaster encerrado")

    async def _deliver(self, board_id, subscriber: Subscriber, frame: str) -> bool:
        try:
            await subscriber.send(frame)
            if not subscriber.closed:
                return True
            logger.warning(f"⚠️ {subscriber!r} encerrou durante a entrega")
        except DeliveryFailure as exc:
            logger.warning(f"⚠️ Entrega falhou para {subscriber!r}: {exc.message}")
        except Exception as exc:
            logger.warning(f"⚠️ Erro inesperado entregando para {subscriber!r}: {exc}")

        # Conexão morta: remover imediatamente, sem nova tentativa
        subscriber.close()
        self.unsubscribe(board_id, subscriber)
        return False

    async def broadcast(self, board_id, event, exclude: Optional[Iterable[Subscriber]] = None) -> int:
        """
        Entrega o evento a todas as conexões inscritas no board

        Nunca levanta exceção para quem chamou. Board sem inscritos não é erro.

        Returns:
            Quantidade de conexões que receberam o frame
        """
        board_id = str(board_id)
        excluded = {s.connection_id for s in (exclude or ())}
        targets = [s for s in self.subscribers(board_id) if s.connection_id not in excluded]
        if not targets:
            return 0

        try:
            frame = event.to_frame()
        except Exception:
            logger.exception(f"❌ Evento {getattr(event, 'kind', '?')} não serializável")
            return 0

        delivered = 0
        for subscriber in targets:
            if await self._deliver(board_id, subscriber, frame):
                delivered += 1
        return delivered

    async def send_to(self, board_id, subscriber: Subscriber, event) -> bool:
        """Entrega um evento a uma única conexão (ex: snapshot de presença)"""
        return await self._deliver(str(board_id), subscriber, event.to_frame())
