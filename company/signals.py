# company/signals.py
import logging

from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import Company, Branch

logger = logging.getLogger("company.signals")

DEFAULT_BRANCH_NAME = "Head Office"
DEFAULT_BRANCH_PREFIX = "HO"


@receiver(post_save, sender=Company, dispatch_uid="company_created_default_branch")
def company_created_onboarding_handler(sender, instance: Company, created: bool, raw: bool = False, **kwargs):
    """
    Every tenant needs at least one active branch before it can number documents,
    so a new company gets a default 'Head Office' branch.
    """
    if raw:
        logger.info(f"Skipping onboarding for Company '{instance.name}' (ID: {instance.pk}) during raw fixture loading.")
        return
    if not created:
        return

    log_prefix = f"[CompanyOnboard][CoName:'{instance.name}'][CoID:{instance.pk}]"
    if instance.branches.exists():
        logger.debug(f"{log_prefix} Branches already present. Skipping default branch.")
        return

    branch = Branch(
        company=instance, name=DEFAULT_BRANCH_NAME, prefix=DEFAULT_BRANCH_PREFIX,
        state_code=instance.state_code, is_default=True, is_active=True,
    )
    branch.save()
    logger.info(f"{log_prefix} Created default branch '{branch.name}' [{branch.prefix}].")
