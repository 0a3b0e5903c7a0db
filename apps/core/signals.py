# apps/core/signals.py

import logging

from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import Board

logger = logging.getLogger(__name__)


@receiver(post_save, sender=Board)
def criar_labels_padrao(sender, instance, created, raw=False, **kwargs):
    """
    Cria as labels padrão quando um novo board é criado
    (fixtures carregadas com loaddata são ignoradas)
    """
    if not created or raw or instance.labels.exists():
        return

    labels = getattr(settings, 'KANBAN_DEFAULT_LABELS', ())
    instance.create_default_labels(labels)
    logger.info(f"🏷️ {len(labels)} labels padrão criadas para o board {instance.pk}")
