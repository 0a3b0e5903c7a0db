# apps/core/middleware.py

import logging

from django.http import JsonResponse

from .exceptions import KanbanError, StorageFailure

logger = logging.getLogger(__name__)


class KanbanMiddleware:
    """
    Converte erros de domínio em respostas JSON

    Views levantam KanbanError; aqui ele vira
    {'success': False, 'error', 'code', 'detail'} com o status HTTP do erro.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        response = self.get_response(request)

        # Cabeçalho útil para depuração do cliente
        if hasattr(request, 'user') and request.user.is_authenticated:
            response['X-User-Id'] = str(request.user.pk)

        return response

    def process_exception(self, request, exception):
        if not isinstance(exception, KanbanError):
            return None  # Deixar o Django lidar com o restante

        if isinstance(exception, StorageFailure):
            logger.error(f"❌ {request.method} {request.path}: falha de armazenamento - {exception.message}")
        else:
            logger.warning(f"⚠️ {request.method} {request.path}: {exception.code} - {exception.message}")

        return JsonResponse(exception.as_dict(), status=exception.status_code)
