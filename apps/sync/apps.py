# apps/sync/apps.py

from django.apps import AppConfig


class SyncConfig(AppConfig):
    """Configuração da app Sync"""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.sync'
    verbose_name = 'Sync - Quadro em tempo real'

    def ready(self):
        """
        Inicialização da app
        """
        import logging
        logger = logging.getLogger(__name__)
        logger.info("🔌 Sync App inicializada - WebSockets habilitados")
