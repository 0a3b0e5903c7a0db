# apps/board/transport.py

"""
Escolha do canal de tempo real do cliente

Tenta o WebSocket primeiro. Se ele não conectar dentro do prazo ou for
recusado (rede bloqueada, handshake rejeitado), passa para SSE até o fim da
sessão e nunca volta a tentar o WebSocket.
"""

import asyncio
import logging

from django.conf import settings

logger = logging.getLogger(__name__)


class ChannelSelector:
    """
    Args:
        connect_primary: corrotina-fábrica que abre o WebSocket
        connect_fallback: corrotina-fábrica que abre o stream SSE
        fallback_after: segundos de espera pelo primário
        primary_errors: exceções do primário que levam ao fallback
    """

    PRIMARY = 'websocket'
    FALLBACK = 'sse'

    # Recusa de conexão, DNS, TLS e afins são OSError
    PRIMARY_ERRORS = (OSError,)

    def __init__(self, connect_primary, connect_fallback, fallback_after=None, primary_errors=None):
        self.connect_primary = connect_primary
        self.connect_fallback = connect_fallback
        if fallback_after is None:
            fallback_after = getattr(settings, 'KANBAN_FALLBACK_WAIT_SECONDS', 2.0)
        self.fallback_after = fallback_after
        self.primary_errors = tuple(primary_errors or self.PRIMARY_ERRORS)
        self.active = None

    @property
    def using_fallback(self):
        return self.active == self.FALLBACK

    async def connect(self):
        """Abre o canal da sessão e devolve a conexão"""
        if self.active == self.FALLBACK:
            return await self.connect_fallback()

        try:
            connection = await asyncio.wait_for(self.connect_primary(), self.fallback_after)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ WebSocket não conectou em {self.fallback_after}s - usando SSE")
            return await self._switch_to_fallback()
        except self.primary_errors as exc:
            logger.warning(f"⚠️ WebSocket recusado ({exc!r}) - usando SSE")
            return await self._switch_to_fallback()

        self.active = self.PRIMARY
        return connection

    async def _switch_to_fallback(self):
        self.active = self.FALLBACK
        return await self.connect_fallback()
