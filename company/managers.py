# company/managers.py
import logging
from django.db import models
from .utils import get_current_company  # Relies on utils.py to provide the Company instance
from .models import Company  # For type checking in create method

logger = logging.getLogger(__name__)


class CompanyManager(models.Manager):
    """
    Filters querysets by the current company from the request context.
    Assumes models using it have a 'company' ForeignKey to the Company model.
    """
    _allow_unfiltered_global_access = False  # Default: strict tenant isolation

    def get_queryset(self):
        queryset = super().get_queryset()
        company = get_current_company()

        if company:
            if not hasattr(self.model, 'company'):
                logger.error(f"CompanyManager on {self.model.__name__} which lacks 'company' field.")
                return queryset.none()  # Prevent accidental data leakage
            return queryset.filter(company=company)

        if self._allow_unfiltered_global_access:
            return queryset  # System task access (management commands, admin)
        logger.debug(
            f"CompanyManager: Empty queryset for {self.model.__name__} (no company context, global access disallowed).")
        return queryset.none()

    def create(self, **kwargs):
        """
        Sets 'company' from the current context when the caller did not pass one.
        Refuses to create a row without a company in strict mode.
        """
        if 'company' not in kwargs and 'company_id' not in kwargs:
            company_from_context = get_current_company()
            if company_from_context:
                company_field = self.model._meta.get_field('company')
                if not (company_field.is_relation and company_field.related_model == Company):
                    raise ValueError(f"{self.model.__name__}.company misconfigured for CompanyManager.")
                kwargs['company'] = company_from_context
            elif not self._allow_unfiltered_global_access:
                logger.error(
                    f"CompanyManager: Cannot create {self.model.__name__} without Company context or explicit 'company' kwarg.")
                raise ValueError(f"Create {self.model.__name__}: No company context and 'company' not provided.")

        return super().create(**kwargs)


class UnfilteredCompanyManager(CompanyManager):
    """
    A manager that allows access to all company data when no context is set.
    Used by system tasks and the admin; services always filter by company explicitly.
    """
    _allow_unfiltered_global_access = True
