# apps/core/permissions.py

from dataclasses import dataclass
from functools import wraps

from .exceptions import Forbidden, Unauthenticated
from .models import BoardMember


@dataclass(frozen=True)
class BoardCapabilities:
    """
    Capacidades de um usuário sobre um board

    Calculadas uma única vez por requisição e consumidas como booleanos
    pelo restante do sistema.
    """

    can_view: bool = False
    can_edit: bool = False
    can_delete: bool = False
    can_manage_members: bool = False

    def allows(self, operation):
        return getattr(self, f'can_{operation}', False)


NO_CAPABILITIES = BoardCapabilities()


def is_authenticated(user):
    return user is not None and getattr(user, 'is_authenticated', False)


def get_board_capabilities(user, board):
    """
    Calcula as capacidades do usuário no board

    Regras:
    1. Dono pode tudo
    2. Editor pode visualizar e editar
    3. Visualizador (ou qualquer um em board público) só visualiza
    """
    if not is_authenticated(user):
        if board.is_public:
            return BoardCapabilities(can_view=True)
        return NO_CAPABILITIES

    is_owner = board.owner_id == user.pk
    role = board.member_role(user)
    is_member = is_owner or role is not None
    is_editor = is_owner or role == BoardMember.ROLE_EDITOR

    return BoardCapabilities(
        can_view=board.is_public or is_member,
        can_edit=is_editor,
        can_delete=is_owner,
        can_manage_members=is_owner,
    )


def require_capability(user, board, operation, capability_check=get_board_capabilities):
    """
    Garante que o usuário pode executar a operação no board

    Raises:
        Unauthenticated: sem usuário autenticado
        Forbidden: capacidade negada
    """
    if not is_authenticated(user):
        raise Unauthenticated('Autenticação necessária')

    capabilities = capability_check(user, board)
    if not capabilities.allows(operation):
        raise Forbidden(
            'Sem permissão para esta ação no board',
            detail={'operation': operation, 'board_id': str(board.pk)}
        )
    return capabilities


# Decoradores para views

def requer_autenticacao(view_func):
    """Decorador que exige usuário autenticado (resposta JSON via middleware)"""

    @wraps(view_func)
    def wrapped_view(request, *args, **kwargs):
        if not is_authenticated(request.user):
            raise Unauthenticated('Autenticação necessária')
        return view_func(request, *args, **kwargs)

    return wrapped_view
