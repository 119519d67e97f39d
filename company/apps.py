# company/apps.py
import logging
from django.apps import AppConfig

logger = logging.getLogger(__name__)


class CompanyConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'company'

    def ready(self):
        import company.signals  # noqa: F401
        logger.debug(f"Signals registered for '{self.name}' app.")
