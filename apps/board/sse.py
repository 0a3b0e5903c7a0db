# apps/board/sse.py

"""
Canal de fallback: Server-Sent Events

Push unidirecional servidor → cliente, usado quando o WebSocket não conecta.
Cada evento sai como `data: <frame JSON>` seguido de linha em branco, no
mesmo formato de frame do canal primário.
"""

import logging

from asgiref.sync import sync_to_async
from django.apps import apps
from django.conf import settings
from django.http import JsonResponse, StreamingHttpResponse

from apps.core.exceptions import KanbanError, Unauthenticated
from apps.core.permissions import is_authenticated, require_capability
from .broadcast import QueueSubscriber
from .events import ChangeEvent, EventKind
from .presence import Viewer
from .services import get_board_service

logger = logging.getLogger(__name__)


def sse_message(frame: str) -> str:
    return f"data: {frame}\n\n"


def sse_comment(text: str) -> str:
    return f": {text}\n\n"


def _authorize(user, board_id):
    service = get_board_service()
    board = service.get_board(board_id)
    require_capability(user, board, 'view', service.capability_check)
    return board


async def stream_board_events(board_id, user, subscriber, keepalive):
    """
    Gerador do stream: frame 'connected', presença e depois os eventos

    A inscrição dura enquanto o gerador estiver vivo; ao fechar (cliente
    desconectou ou stream encerrado) sai da presença e das inscrições.
    """
    board_app = apps.get_app_config('board')
    board_id = str(board_id)
    board_app.broadcaster.subscribe(board_id, subscriber)

    try:
        yield sse_message(ChangeEvent.system(
            EventKind.CONNECTED, board_id,
            actor_id=user.pk, channel=subscriber.channel,
        ).to_frame())

        await board_app.presence.join(board_id, Viewer.from_user(user), subscriber)

        while not subscriber.closed:
            frame = await subscriber.get(timeout=keepalive)
            if frame is None:
                yield sse_comment('keepalive')
                continue
            yield sse_message(frame)
    finally:
        subscriber.close()
        board_app.broadcaster.unsubscribe(board_id, subscriber)
        await board_app.presence.leave(board_id, subscriber)
        logger.info(f"🔌 Stream SSE encerrado - usuário {user.pk} do board {board_id}")


async def board_events(request, board_id):
    """GET /board/<board_id>/events/ - text/event-stream"""
    if request.method != 'GET':
        return JsonResponse({'success': False, 'error': 'Método não permitido'}, status=405)

    user = await request.auser()
    try:
        if not is_authenticated(user):
            raise Unauthenticated('Autenticação necessária')
        await sync_to_async(_authorize)(user, board_id)
    except KanbanError as exc:
        logger.warning(f"❌ Stream SSE rejeitado no board {board_id}: {exc.message}")
        return JsonResponse(exc.as_dict(), status=exc.status_code)

    subscriber = QueueSubscriber(
        user_id=user.pk,
        maxsize=getattr(settings, 'KANBAN_SSE_QUEUE_SIZE', 100),
    )
    keepalive = getattr(settings, 'KANBAN_SSE_KEEPALIVE_SECONDS', 15)

    response = StreamingHttpResponse(
        stream_board_events(board_id, user, subscriber, keepalive),
        content_type='text/event-stream',
    )
    response['Cache-Control'] = 'no-cache'
    response['X-Accel-Buffering'] = 'no'
    logger.info(f"✅ Stream SSE aberto - usuário {user.pk} no board {board_id}")
    return response
