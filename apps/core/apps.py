# apps/core/apps.py

from django.apps import AppConfig


class CoreConfig(AppConfig):
    """Configuração da app Core"""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    label = 'core'
    verbose_name = 'Core - Modelos do Kanban'

    def ready(self):
        """
        Método chamado quando a aplicação está pronta
        Conecta os sinais dos modelos
        """
        from . import signals  # noqa: F401
