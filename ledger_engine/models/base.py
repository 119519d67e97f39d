# ledger_engine/models/base.py

import uuid
import logging

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils.translation import gettext_lazy as _

from safedelete import SOFT_DELETE_CASCADE
from safedelete.managers import SafeDeleteManager
from safedelete.models import SafeDeleteModel
from simple_history.models import HistoricalRecords

from company.managers import CompanyManager, UnfilteredCompanyManager
from company.models import Company
from company.utils import get_current_company

logger = logging.getLogger(__name__)

# ============================================================================
# Custom Manager Combinations (Scoped by Company)
# ============================================================================
# CompanyManager comes first in the MRO so its get_queryset() wraps the
# soft-delete queryset instead of being bypassed by it.

class TenantSafeDeleteManager(CompanyManager, SafeDeleteManager):
    """Manager with soft delete and tenant (company) scoping."""
    pass


class UnfilteredTenantSafeDeleteManager(UnfilteredCompanyManager, SafeDeleteManager):
    """Soft delete manager that falls back to all tenants when no company context is set."""
    pass


# ============================================================================
# Abstract Base Model with Tenant Scoping and Soft Delete
# ============================================================================

class TenantScopedModel(SafeDeleteModel):
    """
    Abstract base model that includes:
    - Soft deletion support
    - Tenant scoping via a 'company' foreign key
    - Audit fields (created/updated timestamps and users)
    - Historical tracking
    """
    _safedelete_policy = SOFT_DELETE_CASCADE

    id = models.UUIDField(
        primary_key=True, default=uuid.uuid4, editable=False, verbose_name=_("ID")
    )
    company = models.ForeignKey(
        Company, verbose_name=_("Company"), on_delete=models.PROTECT,
        related_name='%(app_label)s_%(class)s_related', db_index=True,
        help_text=_("The company this record belongs to.")
    )
    created_at = models.DateTimeField(_("Created At"), auto_now_add=True, editable=False)
    updated_at = models.DateTimeField(_("Updated At"), auto_now=True, editable=False)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, verbose_name=_("Created By"), on_delete=models.SET_NULL,
        null=True, blank=True, related_name='created_%(app_label)s_%(class)s_set', editable=False
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, verbose_name=_("Last Updated By"), on_delete=models.SET_NULL,
        null=True, blank=True, related_name='updated_%(app_label)s_%(class)s_set', editable=False
    )

    # Managers for various access scopes
    objects = TenantSafeDeleteManager()
    global_objects = UnfilteredTenantSafeDeleteManager()

    # Historical audit tracking
    history = HistoricalRecords(inherit=True)

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        """
        Enforces company scoping before every save:
        - Company is auto-filled from context if missing
        - Only active companies accept writes
        - full_clean runs unless update_fields is used
        """
        is_new = self._state.adding

        if is_new and not self.company_id:
            current_company = get_current_company()
            if current_company:
                self.company = current_company
            else:
                raise ValueError(
                    f"Cannot save new {self.__class__.__name__}: 'company' is required and no company context found."
                )

        if not self.company.effective_is_active:
            raise ValidationError({
                'company': _("Operations cannot be performed for an inactive or suspended company: %(company_name)s") %
                           {'company_name': self.company.name}
            })

        if not kwargs.get('update_fields'):
            if hasattr(self, '_set_derived_fields') and callable(self._set_derived_fields):
                self._set_derived_fields()
            self.full_clean(exclude=['company'] if is_new else None)

        super().save(*args, **kwargs)

    def _check_same_company(self, errors: dict, field_name: str, related):
        """Adds an error when a related tenant-owned object belongs to another company."""
        if related is not None and self.company_id and related.company_id != self.company_id:
            errors[field_name] = _("%(field)s must belong to the same company.") % {
                'field': field_name.replace('_', ' ').capitalize()}

    def __str__(self):
        name_attrs = ['name', 'document_number', 'payment_number', 'code', 'reference_number']
        for attr in name_attrs:
            value = getattr(self, attr, None)
            if value:
                return f"{value} (Co: {self.company_id})"
        return f"{self.__class__.__name__} (ID: {self.pk}, Co: {self.company_id})"
