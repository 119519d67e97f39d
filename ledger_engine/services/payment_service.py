# ledger_engine/services/payment_service.py

import logging
from decimal import Decimal
from typing import Optional

from django.core.exceptions import ValidationError as DjangoValidationError, ObjectDoesNotExist
from django.db import transaction, DatabaseError
from django.db.models import F
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from company.models import Company
from company.utils import tenant_context
from crp_core.enums import (
    DocumentType, DocumentStatus, LedgerEntryType, PaymentDirection, PaymentRecordStatus, TransactionStatus,
)
from ..commands import RecordPaymentCommand, JournalLineInput, PostJournalEntryCommand
from ..exceptions import ValidationError, OverAllocationError, PersistenceError, InvalidEntryStatusError
from ..models.coa import Account
from ..models.documents import FinancialDocument
from ..models.payments import Payment, Allocation, DIRECTION_PARTY_TYPES
from ..signals import emit_payment_committed
from . import ledger_service, sequence_service
from .document_service import resolve_branch
from .party_ledger_service import append_entry, advance_balance, increase_advance, decrease_advance

logger = logging.getLogger(__name__)
ZERO_DECIMAL = Decimal('0.00')

PAYABLE_DOCUMENT_TYPES = {
    PaymentDirection.RECEIVED.value: DocumentType.INVOICE.value,
    PaymentDirection.MADE.value: DocumentType.BILL.value,
}
SEQUENCE_TYPES = {
    PaymentDirection.RECEIVED.value: DocumentType.PAYMENT_RECEIVED.value,
    PaymentDirection.MADE.value: DocumentType.PAYMENT_MADE.value,
}
LEDGER_TYPES = {
    PaymentDirection.RECEIVED.value: LedgerEntryType.PAYMENT_RECEIVED.value,
    PaymentDirection.MADE.value: LedgerEntryType.PAYMENT_MADE.value,
}


def _cash_sides(direction: str, amount: Decimal):
    """(debit, credit) of a counterparty ledger row that lowers the outstanding balance by `amount`."""
    if direction == PaymentDirection.RECEIVED.value:
        return ZERO_DECIMAL, amount
    return amount, ZERO_DECIMAL


def _set_payment_status(document: FinancialDocument) -> None:
    document.refresh_from_db(fields=['paid_amount', 'balance_amount'])
    status = FinancialDocument.derive_payment_status(document.paid_amount, document.balance_amount)
    FinancialDocument.global_objects.filter(pk=document.pk).update(payment_status=status, updated_at=timezone.now())
    document.payment_status = status


def _resolve_cash_account(company: Company, cash_account_id) -> Optional[Account]:
    if not cash_account_id:
        return None
    account = Account.objects.filter(company=company, pk=cash_account_id).first()
    if account is None:
        raise ValidationError({'cash_account_id': [str(_("Account not found in this company."))]})
    return account


def _lock_payable_document(payment: Payment, document_id) -> FinancialDocument:
    try:
        document = FinancialDocument.objects.select_for_update().get(pk=document_id, company_id=payment.company_id)
    except FinancialDocument.DoesNotExist:
        raise ValidationError({'allocations': [str(_("Document %(id)s not found.") % {'id': document_id})]})

    errors = []
    if document.status != DocumentStatus.ISSUED.value:
        errors.append(_("%(number)s is not issued.") % {'number': document.document_number})
    if document.counterparty_id != payment.counterparty_id:
        errors.append(_("%(number)s belongs to another counterparty.") % {'number': document.document_number})
    if document.document_type != PAYABLE_DOCUMENT_TYPES[payment.direction]:
        errors.append(_("%(number)s cannot be settled by a payment %(dir)s.") % {
            'number': document.document_number, 'dir': payment.direction})
    if errors:
        raise ValidationError({'allocations': [str(e) for e in errors]})
    return document


def _post_payment_journal(payment: Payment, cash_account: Account, user=None):
    control = payment.counterparty.control_account
    received = payment.is_received
    lines = [
        JournalLineInput(account_id=cash_account.pk,
                         debit_amount=payment.amount if received else ZERO_DECIMAL,
                         credit_amount=ZERO_DECIMAL if received else payment.amount),
        JournalLineInput(account_id=control.pk,
                         debit_amount=ZERO_DECIMAL if received else payment.amount,
                         credit_amount=payment.amount if received else ZERO_DECIMAL,
                         description=payment.counterparty.name),
    ]
    verb = _("Payment received") if received else _("Payment made")
    return ledger_service.post_journal_entry(PostJournalEntryCommand(
        company=payment.company,
        lines=lines,
        entry_date=payment.payment_date,
        narration=f"{verb} - {payment.payment_number} ({payment.counterparty.name})",
        reference_type=SEQUENCE_TYPES[payment.direction],
        reference_number=payment.payment_number,
        status=TransactionStatus.POSTED.value,
        user=user,
    ))


def _apply_allocations(payment: Payment, command: RecordPaymentCommand, log_prefix: str) -> None:
    counterparty = payment.counterparty
    total_allocated = command.total_allocated

    advance_used = ZERO_DECIMAL
    if command.use_advance:
        wanted = min(advance_balance(counterparty), total_allocated)
        advance_used = decrease_advance(counterparty, wanted)
        if advance_used:
            logger.info(f"{log_prefix} Drew {advance_used} from the counterparty advance.")

    fresh_applied = total_allocated - advance_used
    if fresh_applied > payment.amount:
        raise OverAllocationError(reference=payment.payment_number, requested=fresh_applied, available=payment.amount)

    for allocation in command.allocations:
        document = _lock_payable_document(payment, allocation.document_id)
        amount = allocation.amount
        if amount > document.balance_amount:
            raise OverAllocationError(reference=document.document_number, requested=amount,
                                      available=document.balance_amount)
        updated = FinancialDocument.global_objects.filter(pk=document.pk, balance_amount__gte=amount).update(
            paid_amount=F('paid_amount') + amount, balance_amount=F('balance_amount') - amount,
            updated_at=timezone.now())
        if not updated:
            document.refresh_from_db(fields=['balance_amount'])
            raise OverAllocationError(reference=document.document_number, requested=amount,
                                      available=document.balance_amount)
        _set_payment_status(document)
        Allocation(company_id=payment.company_id, payment=payment, document=document, allocated_amount=amount,
                   created_by=command.user, updated_by=command.user).save()
        logger.debug(f"{log_prefix} Allocated {amount} to {document.document_number} "
                     f"(now {document.payment_status}).")

    if advance_used > ZERO_DECIMAL:
        append_entry(counterparty, LedgerEntryType.ADVANCE_ADJUSTED.value, debit=advance_used, credit=advance_used,
                     entry_date=payment.payment_date, payment=payment,
                     description=f"Advance adjusted - {payment.payment_number}")

    remainder = payment.amount - fresh_applied
    if remainder > ZERO_DECIMAL:
        increase_advance(counterparty, remainder)
        logger.info(f"{log_prefix} Unallocated {remainder} added to the counterparty advance.")

    verb = "Payment received" if payment.is_received else "Payment made"
    debit, credit = _cash_sides(payment.direction, payment.amount)
    append_entry(counterparty, LEDGER_TYPES[payment.direction], debit=debit, credit=credit,
                 entry_date=payment.payment_date, payment=payment,
                 description=f"{verb} - {payment.payment_number} "
                             f"(Allocated to {len(command.allocations)} documents)")

    Payment.global_objects.filter(pk=payment.pk).update(
        allocated_amount=total_allocated, unallocated_amount=remainder, advance_used=advance_used)
    payment.allocated_amount, payment.unallocated_amount, payment.advance_used = (
        total_allocated, remainder, advance_used)


def record_payment(command: RecordPaymentCommand) -> Payment:
    """
    Records a payment, settles the documents it is allocated to and moves the
    counterparty ledger and advance accordingly.

    Without allocations the whole amount becomes an advance. With use_advance set, the
    existing advance covers as much of the allocations as it can before fresh money is
    applied. Everything after the number draw commits together or not at all.

    Raises:
        ValidationError, OverAllocationError, ConcurrencyError, PersistenceError
    """
    command.validate()
    company = command.company
    direction = command.direction
    log_prefix = f"[RecordPayment][Co:{company.pk}][Dir:{direction}]"

    with tenant_context(company):
        branch = resolve_branch(company, command.branch)
        counterparty = command.counterparty
        if not counterparty.is_active:
            raise ValidationError({'counterparty': [str(_("Counterparty is inactive."))]})
        if counterparty.party_type != DIRECTION_PARTY_TYPES[direction]:
            raise ValidationError({'counterparty': [
                str(_("A payment %(dir)s needs a %(party)s.") % {
                    'dir': direction, 'party': DIRECTION_PARTY_TYPES[direction].lower()})]})
        cash_account = _resolve_cash_account(company, command.cash_account_id)
        if cash_account is not None and counterparty.control_account_id is None:
            logger.warning(f"{log_prefix} Cash account given but counterparty has no control account; "
                           f"no journal entry will be posted.")
            cash_account = None
        payment_date = command.payment_date or company.local_date()

    allocated = sequence_service.next_number(company, branch, SEQUENCE_TYPES[direction], payment_date)
    log_prefix = f"{log_prefix}[No:{allocated.rendered}]"

    try:
        with tenant_context(company), transaction.atomic():
            payment = Payment(
                company=company, branch=branch, counterparty=counterparty, direction=direction,
                payment_number=allocated.rendered, payment_date=payment_date, amount=command.amount,
                method=command.method, reference=command.reference or '',
                created_by=command.user, updated_by=command.user,
            )
            payment.save()

            if not command.allocations:
                increase_advance(counterparty, payment.amount)
                debit, credit = _cash_sides(direction, payment.amount)
                append_entry(counterparty, LedgerEntryType.ADVANCE_PAYMENT.value, debit=debit, credit=credit,
                             entry_date=payment_date, payment=payment,
                             description=f"Advance payment - {payment.payment_number}")
                Payment.global_objects.filter(pk=payment.pk).update(unallocated_amount=payment.amount)
                payment.unallocated_amount = payment.amount
            else:
                _apply_allocations(payment, command, log_prefix)

            if cash_account is not None:
                journal = _post_payment_journal(payment, cash_account, user=command.user)
                Payment.global_objects.filter(pk=payment.pk).update(journal_entry=journal)
                payment.journal_entry = journal

            emit_payment_committed(payment, 'recorded')
    except DjangoValidationError as e:
        sequence_service.release_number(allocated)
        logger.warning(f"{log_prefix} Model validation failed, number released: {e}")
        raise ValidationError.from_django(e)
    except DatabaseError as e:
        sequence_service.release_number(allocated)
        logger.error(f"{log_prefix} Database failure while recording payment: {e}", exc_info=True)
        raise PersistenceError(_("The payment could not be saved."), original=e) from e
    except Exception:
        sequence_service.release_number(allocated)
        logger.warning(f"{log_prefix} Payment failed after the number draw; compensation attempted.")
        raise

    logger.info(f"{log_prefix} Recorded {payment.amount}: allocated {payment.allocated_amount}, "
                f"advance used {payment.advance_used}, unallocated {payment.unallocated_amount}.")
    return payment


@transaction.atomic
def void_payment(company: Company, payment_id, reason: str = '', user=None) -> Payment:
    """
    Voids a completed payment: re-opens the documents it settled, takes its remainder back
    out of the advance (never below zero), restores any advance it consumed and reverses
    its ledger and journal impact.
    """
    log_prefix = f"[VoidPayment][Co:{company.pk}][Pay:{payment_id}]"
    with tenant_context(company):
        try:
            payment = Payment.objects.select_for_update().select_related('counterparty').get(
                pk=payment_id, company=company)
        except Payment.DoesNotExist:
            raise ObjectDoesNotExist(f"Payment {payment_id} not found in company {company.pk}.")
        if payment.is_void:
            raise InvalidEntryStatusError(current_status=payment.status,
                                          expected_statuses=[PaymentRecordStatus.COMPLETED.value])
        counterparty = payment.counterparty

        for allocation in Allocation.objects.filter(payment=payment).select_related('document'):
            document = FinancialDocument.objects.select_for_update().get(pk=allocation.document_id)
            FinancialDocument.global_objects.filter(pk=document.pk).update(
                paid_amount=F('paid_amount') - allocation.allocated_amount,
                balance_amount=F('balance_amount') + allocation.allocated_amount,
                updated_at=timezone.now())
            _set_payment_status(document)

        if payment.unallocated_amount > ZERO_DECIMAL:
            taken = decrease_advance(counterparty, payment.unallocated_amount, floor_at_zero=True)
            if taken < payment.unallocated_amount:
                logger.warning(f"{log_prefix} Advance already consumed; reversed {taken} of "
                               f"{payment.unallocated_amount}.")
        if payment.advance_used > ZERO_DECIMAL:
            increase_advance(counterparty, payment.advance_used)

        credit, debit = _cash_sides(payment.direction, payment.amount)
        append_entry(counterparty, LedgerEntryType.PAYMENT_VOIDED.value, debit=debit, credit=credit,
                     entry_date=company.local_date(), payment=payment,
                     description=f"Payment voided - {payment.payment_number}")

        if payment.journal_entry_id:
            ledger_service.cancel_journal_entry(company, payment.journal_entry_id,
                                                reason=f"Payment {payment.payment_number} voided")

        Payment.global_objects.filter(pk=payment.pk).update(
            status=PaymentRecordStatus.VOID.value, voided_at=timezone.now(), void_reason=(reason or '')[:255],
            updated_at=timezone.now(), updated_by=user)
        payment.refresh_from_db()
        emit_payment_committed(payment, 'voided')

    logger.info(f"{log_prefix} {payment.payment_number} voided. Reason: {reason or '-'}")
    return payment
