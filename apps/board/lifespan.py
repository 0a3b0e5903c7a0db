# apps/board/lifespan.py

"""
Ciclo de vida do processo ASGI

Servidores que enviam eventos 'lifespan' (uvicorn, hypercorn) encerram o
broadcaster no shutdown. O daphne não envia esses eventos; para ele vale o
atexit registrado em BoardConfig.ready.
"""

import logging

from django.apps import apps

logger = logging.getLogger(__name__)


async def lifespan_app(scope, receive, send):
    """Aplicação ASGI para o escopo 'lifespan'"""
    while True:
        message = await receive()

        if message['type'] == 'lifespan.startup':
            logger.info("🚀 Processo ASGI iniciado")
            await send({'type': 'lifespan.startup.complete'})

        elif message['type'] == 'lifespan.shutdown':
            apps.get_app_config('board').shutdown()
            await send({'type': 'lifespan.shutdown.complete'})
            return
