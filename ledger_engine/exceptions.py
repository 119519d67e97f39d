"""
Custom exceptions for the ledger engine.

Every engine error carries a machine readable `code` and a `retryable` flag so
callers can tell a business rejection (surface it) from a transient failure
(try the whole operation again). Rejections carry the numeric context the
caller needs to decide what to do next.
"""

from decimal import Decimal
from typing import Dict, List, Optional, Union

from django.utils.translation import gettext_lazy as _


class LedgerEngineError(Exception):
    """
    Base exception for the ledger engine.
    Allows catching every engine-specific failure in one place.
    """
    default_message = _("An error occurred in the ledger engine.")
    code = 'ledger_engine_error'
    retryable = False

    def __init__(self, message=None, code=None):
        self.message = str(message or self.default_message)  # Ensure message is a string
        self.code = code or self.code
        super().__init__(self.message)


class ValidationError(LedgerEngineError):
    """
    Bad input shape or range. Always surfaced to the caller, never retried.
    `errors` maps field names to lists of messages (Django's message_dict shape).
    """
    default_message = _("The request contains invalid data.")
    code = 'validation_error'

    def __init__(self, errors: Optional[Union[Dict[str, List[str]], str]] = None, message=None):
        if isinstance(errors, dict):
            self.errors = {field: [str(m) for m in (msgs if isinstance(msgs, (list, tuple)) else [msgs])]
                           for field, msgs in errors.items()}
        elif errors:
            self.errors = {'non_field_errors': [str(errors)]}
        else:
            self.errors = {}
        if not message:
            flat = [f"{field}: {msg}" for field, msgs in self.errors.items() for msg in msgs]
            message = "; ".join(flat) if flat else None
        super().__init__(message=message, code=self.code)

    @classmethod
    def from_django(cls, django_error) -> 'ValidationError':
        """Converts a django.core.exceptions.ValidationError raised by full_clean()."""
        if hasattr(django_error, 'message_dict'):
            return cls(django_error.message_dict)
        return cls({'non_field_errors': django_error.messages})


class ConcurrencyError(LedgerEngineError):
    """
    A document sequence draw kept losing its compare-and-swap race.
    Nothing was issued; the caller may retry the whole operation.
    """
    default_message = _("Could not reserve a document number due to concurrent requests. Please retry.")
    code = 'sequence_contention'
    retryable = True

    def __init__(self, document_type=None, attempts: int = 0, message=None):
        self.document_type = document_type
        self.attempts = attempts
        if not message and document_type:
            message = _("Could not reserve a '%(type)s' number after %(attempts)s attempts. Please retry.") % {
                'type': document_type, 'attempts': attempts}
        super().__init__(message=message, code=self.code)


class UnbalancedEntryError(LedgerEngineError):
    """Journal debits and credits differ by more than the tolerance. Never auto-corrected."""
    default_message = _("Journal entry debits and credits do not balance.")
    code = 'unbalanced'

    def __init__(self, total_debit: Decimal, total_credit: Decimal, message=None):
        self.total_debit = total_debit
        self.total_credit = total_credit
        self.difference = abs(total_debit - total_credit)
        if not message:
            message = _("Debits (%(dr)s) and credits (%(cr)s) differ by %(diff)s.") % {
                'dr': total_debit, 'cr': total_credit, 'diff': self.difference}
        super().__init__(message=message, code=self.code)


class OverAllocationError(LedgerEngineError):
    """An allocation asks for more than the document (or the payment) has available."""
    default_message = _("Allocated amount exceeds the available balance.")
    code = 'over_allocation'

    def __init__(self, reference: str, requested: Decimal, available: Decimal, message=None):
        self.reference = reference
        self.requested = requested
        self.available = available
        if not message:
            message = _("Cannot allocate %(req)s to %(ref)s: only %(avail)s is available.") % {
                'req': requested, 'ref': reference, 'avail': available}
        super().__init__(message=message, code=self.code)


class CreditLimitExceededError(LedgerEngineError):
    """Posting the document would take the counterparty beyond its credit limit."""
    default_message = _("Credit limit exceeded.")
    code = 'credit_limit_exceeded'

    def __init__(self, outstanding: Decimal, new_amount: Decimal, credit_limit: Decimal, message=None):
        self.outstanding = outstanding
        self.new_amount = new_amount
        self.credit_limit = credit_limit
        self.available = credit_limit - outstanding
        if not message:
            message = _("Outstanding %(out)s plus new amount %(new)s exceeds credit limit %(limit)s "
                        "(available %(avail)s).") % {
                'out': outstanding, 'new': new_amount, 'limit': credit_limit, 'avail': self.available}
        super().__init__(message=message, code=self.code)


class InvalidEntryStatusError(LedgerEngineError):
    """
    Raised when an operation is attempted on a journal entry, document or payment
    that is not in an appropriate status for that operation.
    """
    default_message = _("Operation invalid for the current status.")
    code = 'invalid_status'

    def __init__(self, current_status, expected_statuses=None, message=None):
        self.current_status = current_status
        self.expected_statuses = list(expected_statuses or [])
        if not message:
            if self.expected_statuses:
                message = _("Operation invalid for status '%(current)s'. Expected one of: %(expected)s.") % {
                    'current': current_status,
                    'expected': ', '.join(f"'{s}'" for s in self.expected_statuses)}
            else:
                message = _("Operation invalid for status '%(current)s'.") % {'current': current_status}
        super().__init__(message=message, code=self.code)


class PersistenceError(LedgerEngineError):
    """
    The underlying store failed. Compensating actions (sequence release) have
    already been attempted when this reaches the caller.
    """
    default_message = _("The operation could not be saved. Please retry.")
    code = 'persistence_error'
    retryable = True

    def __init__(self, message=None, original: Optional[BaseException] = None):
        self.original = original
        super().__init__(message=message, code=self.code)
