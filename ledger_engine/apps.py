# ledger_engine/apps.py
import logging
from django.apps import AppConfig

logger = logging.getLogger(__name__)


class LedgerEngineConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'ledger_engine'
    verbose_name = "Ledger Engine"

    def ready(self):
        import ledger_engine.signals  # noqa: F401
        logger.debug(f"Signals registered for '{self.name}' app.")
