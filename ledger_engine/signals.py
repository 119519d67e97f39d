# ledger_engine/signals.py

"""
Outbound notifications for collaborators outside the engine (inventory,
rendering, notifications).

Every signal is dispatched from transaction.on_commit with send_robust(), so a
receiver only ever sees committed data and a failing receiver is logged
without touching the committed mutation.
"""

import logging
from decimal import Decimal
from typing import Any

from django.db import transaction
from django.dispatch import Signal

from crp_core.enums import DocumentType, StockDirection
from .models.documents import LineItem

logger = logging.getLogger(__name__)

# kwargs: company, document, action ('created' | 'cancelled')
document_committed = Signal()
# kwargs: company, payment, action ('recorded' | 'voided')
payment_committed = Signal()
# kwargs: company, item_ref, quantity, direction, document
stock_movement_intent = Signal()

STOCK_OUT_TYPES = (DocumentType.INVOICE.value, DocumentType.DEBIT_NOTE.value)
STOCK_IN_TYPES = (DocumentType.BILL.value, DocumentType.GRN.value, DocumentType.CREDIT_NOTE.value)


def _dispatch(signal: Signal, sender, log_prefix: str, **kwargs: Any) -> None:
    responses = signal.send_robust(sender=sender, **kwargs)
    for receiver_func, response in responses:
        if isinstance(response, Exception):
            logger.error(f"{log_prefix} Receiver {getattr(receiver_func, '__qualname__', receiver_func)} failed: "
                         f"{response!r}", exc_info=(type(response), response, response.__traceback__))


def stock_direction_for(document_type: str, reverse: bool = False):
    """Direction of the stock movement a document implies, or None when it implies none."""
    if document_type in STOCK_OUT_TYPES:
        direction = StockDirection.OUT.value
    elif document_type in STOCK_IN_TYPES:
        direction = StockDirection.IN.value
    else:
        return None
    if reverse:
        return StockDirection.IN.value if direction == StockDirection.OUT.value else StockDirection.OUT.value
    return direction


def emit_document_committed(document, action: str, reverse_stock: bool = False) -> None:
    """Schedules document_committed plus one stock_movement_intent per stock line, after commit."""
    log_prefix = f"[DocSignals][Co:{document.company_id}][Doc:{document.document_number}]"
    direction = stock_direction_for(document.document_type, reverse=reverse_stock)
    stock_lines = []
    if direction:
        lines = LineItem.global_objects.filter(document_id=document.pk).order_by('position')
        stock_lines = [(line.item_ref, line.quantity) for line in lines
                       if line.item_ref and line.quantity > Decimal('0')]
    sender = type(document)

    def _send():
        _dispatch(document_committed, sender, log_prefix,
                  company=document.company, document=document, action=action)
        for item_ref, quantity in stock_lines:
            _dispatch(stock_movement_intent, sender, log_prefix, company=document.company, item_ref=item_ref,
                      quantity=quantity, direction=direction, document=document)
        logger.debug(f"{log_prefix} Dispatched '{action}' with {len(stock_lines)} stock intents ({direction}).")

    transaction.on_commit(_send)


def emit_payment_committed(payment, action: str) -> None:
    log_prefix = f"[PaymentSignals][Co:{payment.company_id}][Pay:{payment.payment_number}]"
    transaction.on_commit(
        lambda: _dispatch(payment_committed, type(payment), log_prefix,
                          company=payment.company, payment=payment, action=action)
    )
