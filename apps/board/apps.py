# apps/board/apps.py

import atexit
import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class BoardConfig(AppConfig):
    """Configuração da app Board"""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.board'
    verbose_name = 'Board - Kanban colaborativo'

    broadcaster = None
    presence = None
    emitter = None
    service = None

    def ready(self):
        """
        Inicialização da app
        Cria o broadcaster do processo e os componentes que dependem dele
        """
        from .broadcast import Broadcaster
        from .events import MutationEmitter
        from .presence import PresenceTracker
        from .services import BoardService

        self.broadcaster = Broadcaster()
        self.presence = PresenceTracker(self.broadcaster)
        self.emitter = MutationEmitter(self.broadcaster)
        self.service = BoardService(self.emitter)
        atexit.register(self.shutdown)

        logger.info("🔌 Board App inicializada - WebSocket e SSE habilitados")

    def shutdown(self):
        """
        Encerra o broadcaster do processo (idempotente)

        Chamado pelo lifespan ASGI no shutdown e, como garantia, no atexit.
        """
        if self.broadcaster is None:
            return
        self.broadcaster.close()
        self.presence.clear()
        logger.info("🔕 Board App encerrada")
