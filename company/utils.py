# company/utils.py
import contextvars
import logging
from contextlib import contextmanager
from typing import Optional

# Company model is imported lazily (string annotations) to avoid circular imports with managers.py

logger = logging.getLogger(__name__)

# Use contextvars for both sync and async safety
current_company_context_var: contextvars.ContextVar[Optional['Company']] = contextvars.ContextVar(
    "current_company_context_var",
    default=None
)


def set_current_company(company_instance: Optional['Company']) -> contextvars.Token:
    """
    Sets the current company for the current execution flow.
    Called by the tenant/session resolver once it has identified the company.

    Returns the contextvars token so the caller can restore the previous value.
    """
    token = current_company_context_var.set(company_instance)
    if company_instance:
        logger.debug(
            f"utils.set_current_company: Context set to Company '{getattr(company_instance, 'name', 'N/A')}' "
            f"(ID: {getattr(company_instance, 'pk', 'N/A')})")
    else:
        logger.debug("utils.set_current_company: Context cleared (set to None)")
    return token


def get_current_company() -> Optional['Company']:
    """
    Retrieves the current company from the context variable.
    This is what CompanyManager filters by.
    """
    return current_company_context_var.get()


@contextmanager
def tenant_context(company_instance: 'Company'):
    """
    Runs a block with `company_instance` as the current company and restores
    whatever context was active before, even when the block raises.
    """
    token = current_company_context_var.set(company_instance)
    try:
        yield company_instance
    finally:
        current_company_context_var.reset(token)
