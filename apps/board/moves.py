# apps/board/moves.py

"""
Coordenador de movimentações

Orquestra a movimentação de um item dentro do mesmo pai ou entre dois pais,
delegando o cálculo de posições ao alocador e garantindo aplicação
tudo-ou-nada dentro de uma transação.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from django.db import DatabaseError, transaction

from apps.core.exceptions import Conflict, InvalidOperation, KanbanError, NotFound, StorageFailure
from .positions import COLUMNS, TASKS, OrderedCollection

logger = logging.getLogger(__name__)


class MoveState(enum.Enum):
    REQUESTED = 'requested'
    VALIDATING = 'validating'
    APPLYING = 'applying'
    COMMITTED = 'committed'
    REJECTED = 'rejected'
    ROLLED_BACK = 'rolled_back'

    @property
    def is_terminal(self):
        return self in (MoveState.COMMITTED, MoveState.REJECTED, MoveState.ROLLED_BACK)


@dataclass
class MoveResult:
    """Resultado de uma movimentação confirmada"""

    item_id: int
    source_parent_id: int
    target_parent_id: int
    old_position: int
    new_position: int
    state: MoveState = MoveState.REQUESTED
    history: List[MoveState] = field(default_factory=list)

    @property
    def changed(self):
        return (self.source_parent_id != self.target_parent_id
                or self.old_position != self.new_position)

    @property
    def cross_parent(self):
        return self.source_parent_id != self.target_parent_id


class MoveCoordinator:
    """
    Aplica movimentações de colunas e tarefas

    Movimentos no mesmo pai e entre pais rodam igualmente dentro de
    transaction.atomic, com as linhas dos pais travadas.
    """

    def __init__(self, columns: OrderedCollection = COLUMNS, tasks: OrderedCollection = TASKS):
        self.columns = columns
        self.tasks = tasks

    def _transition(self, result, state):
        result.state = state
        result.history.append(state)
        logger.debug(f"🔀 Movimento {result.item_id}: {state.value}")

    def _fail(self, result, state, error):
        self._transition(result, state)
        error.state = state
        return error

    def move_item(self, collection: OrderedCollection, item_id, source_parent_id,
                  target_parent_id, target_position: int,
                  expected_position: Optional[int] = None) -> MoveResult:
        """
        Move um item para target_parent_id na posição target_position

        Args:
            collection: coleção ordenada (COLUMNS ou TASKS)
            item_id: item a mover
            source_parent_id: pai que o cliente acredita ser o atual
            target_parent_id: pai de destino
            target_position: posição desejada (>= quantidade significa final)
            expected_position: posição que o cliente acredita ser a atual

        Raises:
            NotFound, Conflict, InvalidOperation: rejeição antes de qualquer escrita
            StorageFailure: transação abortada, nada foi aplicado
        """
        result = MoveResult(
            item_id=item_id,
            source_parent_id=source_parent_id,
            target_parent_id=target_parent_id,
            old_position=-1,
            new_position=target_position,
        )
        self._transition(result, MoveState.REQUESTED)

        try:
            with transaction.atomic():
                self._transition(result, MoveState.VALIDATING)
                item = self._validate(collection, result, expected_position)

                self._transition(result, MoveState.APPLYING)
                self._apply(collection, item, result)
        except KanbanError as error:
            if result.state == MoveState.APPLYING:
                raise self._fail(result, MoveState.ROLLED_BACK, error)
            raise self._fail(result, MoveState.REJECTED, error)
        except DatabaseError as exc:
            logger.error(f"❌ Movimento {item_id} revertido: {exc}")
            raise self._fail(
                result,
                MoveState.ROLLED_BACK,
                StorageFailure(str(exc), detail={'item_id': str(item_id)})
            ) from exc

        self._transition(result, MoveState.COMMITTED)
        return result

    @staticmethod
    def _coerce_id(value, label):
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise NotFound(f'{label} não encontrado(a)', detail={'id': str(value)})

    def _validate(self, collection, result, expected_position):
        position = result.new_position
        if isinstance(position, bool) or not isinstance(position, int) or position < 0:
            raise InvalidOperation(
                'Posição de destino inválida',
                detail={'position': position}
            )

        parent_label = collection.parent_model.__name__
        source_parent_id = self._coerce_id(result.source_parent_id, parent_label)
        target_parent_id = self._coerce_id(result.target_parent_id, parent_label)
        item_id = self._coerce_id(result.item_id, collection.model.__name__)

        try:
            current = collection.get_item(item_id)
        except collection.model.DoesNotExist:
            raise NotFound(f'{collection.model.__name__} não encontrado(a)')

        # Pais sempre travados antes dos itens
        stored_parent = collection.parent_of(current)
        collection.lock_parents(stored_parent, target_parent_id)

        try:
            item = collection.get_item(item_id, for_update=True)
        except collection.model.DoesNotExist:
            raise NotFound(f'{collection.model.__name__} não encontrado(a)')

        if collection.parent_of(item) != stored_parent:
            raise Conflict(
                'Item foi movido por outra requisição',
                detail={'parent_id': str(collection.parent_of(item)), 'position': item.position}
            )

        result.item_id = item.pk
        result.old_position = item.position

        if source_parent_id is not None and source_parent_id != stored_parent:
            raise Conflict(
                'Origem informada não confere com o estado atual',
                detail={'parent_id': str(stored_parent), 'position': item.position}
            )
        result.source_parent_id = stored_parent

        if expected_position is not None and expected_position != item.position:
            raise Conflict(
                'Posição informada não confere com o estado atual',
                detail={'parent_id': str(stored_parent), 'position': item.position}
            )

        if target_parent_id is None or target_parent_id == stored_parent:
            result.target_parent_id = stored_parent
            limit = collection.count(stored_parent) - 1
        else:
            self._validate_target_parent(collection, stored_parent, target_parent_id)
            result.target_parent_id = target_parent_id
            # Entre pais: a quantidade do destino é o sentinela de "final"
            limit = collection.count(target_parent_id)

        if result.new_position > limit:
            result.new_position = limit
        return item

    def _validate_target_parent(self, collection, stored_parent, target_parent_id):
        """Destino deve existir e pertencer ao mesmo board da origem"""
        parent_model = collection.parent_model
        try:
            target = parent_model.objects.get(pk=target_parent_id)
        except parent_model.DoesNotExist:
            raise NotFound(f'{parent_model.__name__} de destino não encontrado(a)')

        if collection is not self.tasks:
            # Colunas nunca mudam de board
            raise InvalidOperation(
                'Não é possível mover coluna para outro board',
                detail={'target_parent_id': str(target_parent_id)}
            )

        source = parent_model.objects.get(pk=stored_parent)
        if source.board_id != target.board_id:
            raise InvalidOperation(
                'Não é possível mover para outro board',
                detail={'target_parent_id': str(target_parent_id)}
            )

    def _apply(self, collection, item, result):
        if not result.cross_parent:
            collection.reorder_within_parent(
                result.source_parent_id, item.pk, result.old_position, result.new_position
            )
            return

        # 1. Compactar origem
        collection.remove_and_compact(result.source_parent_id, result.old_position)
        # 2. Abrir espaço no destino
        collection.insert_at(result.target_parent_id, result.new_position, exclude_id=item.pk)
        # 3. Atualizar o próprio item
        collection.model.objects.filter(pk=item.pk).update(**{
            collection.parent_attname: result.target_parent_id,
            'position': result.new_position,
        })

    # === Instanciações concretas ===

    def move_column(self, board_id, column_id, new_position: int,
                    expected_position: Optional[int] = None) -> MoveResult:
        return self.move_item(self.columns, column_id, board_id, board_id, new_position, expected_position)

    def move_task(self, task_id, target_column_id, new_position: int,
                  source_column_id=None, expected_position: Optional[int] = None) -> MoveResult:
        return self.move_item(self.tasks, task_id, source_column_id, target_column_id, new_position, expected_position)
