# apps/core/exceptions.py

"""
Taxonomia de erros do quadro Kanban

Todos os erros de domínio herdam de KanbanError e carregam o status HTTP
que o middleware usa para responder ao cliente.
"""


class KanbanError(Exception):
    """Erro base de domínio"""

    status_code = 500
    code = 'error'

    def __init__(self, message='', *, detail=None, state=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.detail = detail or {}
        # Estado terminal da movimentação (quando aplicável)
        self.state = state

    def as_dict(self):
        return {
            'success': False,
            'error': self.message,
            'code': self.code,
            'detail': self.detail,
        }


class Unauthenticated(KanbanError):
    """Nenhum usuário autenticado na requisição"""

    status_code = 401
    code = 'unauthenticated'


class Forbidden(KanbanError):
    """Verificação de capacidade negou a operação"""

    status_code = 403
    code = 'forbidden'


class NotFound(KanbanError):
    """Board, coluna ou tarefa inexistente"""

    status_code = 404
    code = 'not_found'


class Conflict(KanbanError):
    """Estado enviado pelo cliente não confere com o armazenado"""

    status_code = 409
    code = 'conflict'


class InvalidOperation(KanbanError):
    """Operação inválida (board diferente, posição fora do intervalo, etc)"""

    status_code = 400
    code = 'invalid_operation'


class StorageFailure(KanbanError):
    """Transação abortada pela camada de armazenamento"""

    status_code = 500
    code = 'storage_failure'

    def as_dict(self):
        # Nunca expor detalhes parciais de falha de armazenamento
        return {
            'success': False,
            'error': 'Erro interno ao salvar alterações',
            'code': self.code,
            'detail': {},
        }


class DeliveryFailure(KanbanError):
    """Falha ao entregar evento a uma conexão - uso interno do broadcaster"""

    code = 'delivery_failure'
