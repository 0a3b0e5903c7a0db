# apps/board/positions.py

"""
Alocação de posições densas em coleções ordenadas

Colunas dentro de um board e tarefas dentro de uma coluna compartilham a
mesma regra: depois de qualquer mutação confirmada as posições de um pai
formam exatamente o intervalo 0..n-1.

Todas as operações de deslocamento são um único UPDATE em lote com F(),
nunca um laço de save(). Quem chama é responsável por envolver sequências
de vários passos em transaction.atomic.
"""

import logging
from typing import List, Optional

from django.db.models import F

from apps.core.models import Column, Task

logger = logging.getLogger(__name__)


class OrderedCollection:
    """
    Descreve um tipo de coleção ordenada

    Args:
        model: modelo dos itens (Column ou Task)
        parent_field: nome da FK para o pai ('board' ou 'column')
    """

    def __init__(self, model, parent_field: str):
        self.model = model
        self.parent_field = parent_field
        self.parent_model = model._meta.get_field(parent_field).related_model

    def __repr__(self):
        return f"<OrderedCollection {self.model.__name__}.{self.parent_field}>"

    @property
    def parent_attname(self):
        return f'{self.parent_field}_id'

    def children(self, parent_id):
        return self.model.objects.filter(**{self.parent_attname: parent_id})

    def count(self, parent_id) -> int:
        return self.children(parent_id).count()

    def positions(self, parent_id) -> List[int]:
        return list(self.children(parent_id).order_by('position').values_list('position', flat=True))

    def is_dense(self, parent_id) -> bool:
        return self.positions(parent_id) == list(range(self.count(parent_id)))

    def append_position(self, parent_id) -> int:
        """Posição para inserir no final (quantidade de filhos existentes)"""
        return self.count(parent_id)

    def insert_at(self, parent_id, target_position: int, exclude_id=None) -> int:
        """
        Abre espaço na posição alvo

        Todo irmão com position >= target_position é incrementado em 1.
        O item novo/movido recebe target_position logo em seguida.
        """
        siblings = self.children(parent_id).filter(position__gte=target_position)
        if exclude_id is not None:
            siblings = siblings.exclude(pk=exclude_id)
        shifted = siblings.update(position=F('position') + 1)
        logger.debug(f"{self!r} insert_at pai={parent_id} pos={target_position} deslocados={shifted}")
        return shifted

    def reorder_within_parent(self, parent_id, subject_id, old_position: int, new_position: int) -> bool:
        """
        Reordena um item dentro do mesmo pai (deslocamento estilo Trello)

        Apenas a janela entre a posição antiga e a nova é afetada.

        Returns:
            False quando é um no-op (posições iguais), True caso contrário
        """
        if old_position == new_position:
            return False

        siblings = self.children(parent_id).exclude(pk=subject_id)
        if old_position < new_position:
            # Avançando - irmãos em (old, new] recuam uma posição
            siblings.filter(
                position__gt=old_position,
                position__lte=new_position
            ).update(position=F('position') - 1)
        else:
            # Recuando - irmãos em [new, old) avançam uma posição
            siblings.filter(
                position__gte=new_position,
                position__lt=old_position
            ).update(position=F('position') + 1)

        self.model.objects.filter(pk=subject_id).update(position=new_position)
        return True

    def remove_and_compact(self, parent_id, removed_position: int) -> int:
        """
        Fecha o buraco deixado por um item removido/desanexado

        Deve rodar depois da remoção e antes de qualquer outra inserção no pai.
        """
        return self.children(parent_id).filter(
            position__gt=removed_position
        ).update(position=F('position') - 1)

    def rebalance(self, parent_id) -> int:
        """
        Renumera os filhos para 0..n-1 preservando a ordem atual

        Usado para reparar dados legados com buracos ou duplicatas.

        Returns:
            Quantidade de itens cuja posição mudou
        """
        changed = 0
        ordered = self.children(parent_id).order_by('position', 'pk').values_list('pk', 'position')
        for index, (pk, position) in enumerate(list(ordered)):
            if position != index:
                self.model.objects.filter(pk=pk).update(position=index)
                changed += 1
        return changed

    def lock_parents(self, *parent_ids):
        """
        Trava as linhas dos pais durante a transação (lock consultivo)

        Ordena por pk para evitar deadlock entre movimentações cruzadas.
        """
        ids = sorted({pid for pid in parent_ids if pid is not None})
        return list(self.parent_model.objects.select_for_update().filter(pk__in=ids).order_by('pk'))

    def get_item(self, item_id, for_update: bool = False):
        queryset = self.model.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.get(pk=item_id)

    def parent_of(self, item) -> Optional[int]:
        return getattr(item, self.parent_attname)


COLUMNS = OrderedCollection(Column, 'board')
TASKS = OrderedCollection(Task, 'column')
