# ledger_engine/services/credit_service.py

import logging
from decimal import Decimal
from typing import Any, Dict, Tuple

from django.conf import settings
from django.db.models import Sum
from django.db.models.functions import Coalesce
from django.db import models

from crp_core.constants import CREDIT_WARNING_RATIO
from crp_core.enums import CreditStatus, DocumentStatus, DocumentType
from crp_core.utils import round_decimal, to_decimal
from ..exceptions import CreditLimitExceededError
from ..models.documents import FinancialDocument
from ..models.party import Counterparty
from .party_ledger_service import latest_entry

logger = logging.getLogger(__name__)
ZERO_DECIMAL = Decimal('0.00')

SOURCE_LEDGER = 'ledger'
SOURCE_CALCULATED = 'calculated'
SOURCE_OPENING_BALANCE = 'opening_balance'


def _warning_ratio() -> Decimal:
    return to_decimal(getattr(settings, 'LEDGER_CREDIT_WARNING_RATIO', CREDIT_WARNING_RATIO))


def get_outstanding_balance(counterparty: Counterparty) -> Tuple[Decimal, str]:
    """
    What the counterparty currently owes us (customer) or we owe them (vendor).

    The latest ledger entry is authoritative. Only a counterparty without any ledger
    entry falls back to opening balance plus open invoices/bills.
    """
    entry = latest_entry(counterparty)
    if entry is not None:
        return entry.balance, SOURCE_LEDGER

    doc_type = DocumentType.INVOICE.value if counterparty.is_customer else DocumentType.BILL.value
    open_total = FinancialDocument.global_objects.filter(
        company_id=counterparty.company_id,
        counterparty_id=counterparty.pk,
        document_type=doc_type,
        status=DocumentStatus.ISSUED.value,
    ).aggregate(total=Coalesce(Sum('balance_amount'), ZERO_DECIMAL, output_field=models.DecimalField()))['total']

    if open_total:
        return counterparty.signed_opening_balance + open_total, SOURCE_CALCULATED
    return counterparty.signed_opening_balance, SOURCE_OPENING_BALANCE


def check_credit_limit(counterparty: Counterparty, new_document_total: Decimal, override: bool = False) -> None:
    """
    Raises CreditLimitExceededError when the new document would take the counterparty
    past its credit limit. A limit of 0 means unlimited. With override=True the breach
    is only logged.
    """
    credit_limit = counterparty.credit_limit or ZERO_DECIMAL
    if credit_limit <= ZERO_DECIMAL:
        return

    outstanding, source = get_outstanding_balance(counterparty)
    if outstanding + new_document_total <= credit_limit:
        return

    log_prefix = f"[CreditCheck][Co:{counterparty.company_id}][CP:{counterparty.pk}]"
    if override:
        logger.warning(f"{log_prefix} Credit limit {credit_limit} overridden: outstanding {outstanding} "
                       f"({source}) + new {new_document_total}.")
        return
    logger.warning(f"{log_prefix} Rejected: outstanding {outstanding} ({source}) + new {new_document_total} "
                   f"exceeds limit {credit_limit}.")
    raise CreditLimitExceededError(outstanding=outstanding, new_amount=new_document_total, credit_limit=credit_limit)


def credit_status(counterparty: Counterparty) -> Dict[str, Any]:
    outstanding, source = get_outstanding_balance(counterparty)
    credit_limit = counterparty.credit_limit or ZERO_DECIMAL
    result = {
        'credit_limit': credit_limit,
        'outstanding_balance': outstanding,
        'balance_source': source,
        'available_credit': None,
        'utilization_percent': None,
        'status': CreditStatus.UNLIMITED.value,
    }
    if credit_limit <= ZERO_DECIMAL:
        return result

    utilization = outstanding / credit_limit
    result['available_credit'] = credit_limit - outstanding
    result['utilization_percent'] = round_decimal(utilization * 100)
    if utilization > 1:
        result['status'] = CreditStatus.EXCEEDED.value
    elif utilization >= _warning_ratio():
        result['status'] = CreditStatus.LIMITED.value
    else:
        result['status'] = CreditStatus.AVAILABLE.value
    return result
