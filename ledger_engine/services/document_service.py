# ledger_engine/services/document_service.py

import dataclasses
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from django.core.exceptions import ValidationError as DjangoValidationError, ObjectDoesNotExist
from django.db import transaction, DatabaseError
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from company.models import Company, Branch
from company.utils import tenant_context
from crp_core.enums import DocumentType, DocumentStatus, LedgerEntryType, TransactionStatus
from crp_core.utils import round_decimal
from ..commands import CreateDocumentCommand, JournalLineInput, PostJournalEntryCommand
from ..exceptions import ValidationError, PersistenceError, InvalidEntryStatusError
from ..models.coa import Account
from ..models.documents import FinancialDocument, LineItem
from ..models.party import Counterparty, LedgerEntry
from ..signals import emit_document_committed
from . import credit_service, ledger_service, sequence_service, tax_service
from .party_ledger_service import append_entry

logger = logging.getLogger(__name__)
ZERO_DECIMAL = Decimal('0.00')
LINE_PRECISION = '0.0001'

# (side, entry type) of the counterparty ledger movement each document type causes.
LEDGER_EFFECTS = {
    DocumentType.INVOICE.value: ('debit', LedgerEntryType.INVOICE.value),
    DocumentType.BILL.value: ('credit', LedgerEntryType.BILL.value),
    DocumentType.CREDIT_NOTE.value: ('credit', LedgerEntryType.CREDIT_NOTE.value),
    DocumentType.DEBIT_NOTE.value: ('debit', LedgerEntryType.DEBIT_NOTE.value),
}

# Journal shape per document type: True means the control account is debited.
CONTROL_DEBITED = {
    DocumentType.INVOICE.value: True,
    DocumentType.DEBIT_NOTE.value: True,
    DocumentType.BILL.value: False,
    DocumentType.CREDIT_NOTE.value: False,
}


# =============================================================================
# Helpers
# =============================================================================

def resolve_branch(company: Company, branch: Optional[Branch]) -> Branch:
    """The given branch, or the company's active default branch."""
    if branch is None:
        branch = company.branches.filter(is_default=True, is_active=True).first()
    if branch is None or branch.company_id != company.pk:
        raise ValidationError({'branch': [str(_("No active branch available for this company."))]})
    if not branch.is_active:
        raise ValidationError({'branch': [str(_("Branch '%(prefix)s' is inactive.") % {'prefix': branch.prefix})]})
    return branch


def _compute_lines(command: CreateDocumentCommand, place_of_supply: str) -> List[Tuple[Any, tax_service.LineTaxResult]]:
    results = []
    for line in command.lines:
        if line.tax_rate is not None and not line.has_head_rates:
            cgst, sgst, igst = tax_service.split_gst_rate(line.tax_rate, place_of_supply)
            line = dataclasses.replace(line, cgst_rate=cgst, sgst_rate=sgst, igst_rate=igst)
        if line.supplied_breakdown:
            result = tax_service.verify_line(line, line.supplied_breakdown, rates_inclusive=command.rates_inclusive)
        else:
            result = tax_service.calculate_line(line, rates_inclusive=command.rates_inclusive)
        results.append((line, result))
    return results


def _posting_accounts(company: Company, counterparty: Counterparty, document_type: str, tax_amount: Decimal,
                      posting_account_id, tax_account_id) -> Optional[Dict[str, Account]]:
    """Loads and checks the accounts a document journal needs, or returns None when no journal is wanted."""
    if not posting_account_id or document_type not in CONTROL_DEBITED:
        return None
    errors = {}
    if counterparty.control_account_id is None:
        errors['counterparty'] = [str(_("Counterparty has no control account to post against."))]
    if tax_amount > ZERO_DECIMAL and not tax_account_id:
        errors['tax_account_id'] = [str(_("A tax account is required when the document carries tax."))]
    wanted = {'posting': posting_account_id}
    if tax_account_id:
        wanted['tax'] = tax_account_id
    accounts = {}
    for key, account_id in wanted.items():
        account = Account.objects.filter(company=company, pk=account_id).first()
        if account is None:
            errors[f"{key}_account_id"] = [str(_("Account not found in this company."))]
        accounts[key] = account
    if errors:
        raise ValidationError(errors)
    accounts['control'] = counterparty.control_account
    return accounts


def _post_document_journal(document: FinancialDocument, accounts: Dict[str, Account], user=None):
    if document.total_amount <= ZERO_DECIMAL:
        return None
    net_amount = document.total_amount - document.tax_amount
    if net_amount < ZERO_DECIMAL:
        raise ValidationError({'discount_amount': [str(_("Discount leaves a negative net amount to post."))]})

    control_debited = CONTROL_DEBITED[document.document_type]
    lines = [JournalLineInput(account_id=accounts['control'].pk,
                              debit_amount=document.total_amount if control_debited else ZERO_DECIMAL,
                              credit_amount=ZERO_DECIMAL if control_debited else document.total_amount,
                              description=document.counterparty.name)]
    for key, amount in (('posting', net_amount), ('tax', document.tax_amount)):
        if amount > ZERO_DECIMAL:
            lines.append(JournalLineInput(account_id=accounts[key].pk,
                                          debit_amount=ZERO_DECIMAL if control_debited else amount,
                                          credit_amount=amount if control_debited else ZERO_DECIMAL))

    command = PostJournalEntryCommand(
        company=document.company,
        lines=lines,
        entry_date=document.document_date,
        narration=f"{document.get_document_type_display()} {document.document_number} - {document.counterparty.name}",
        reference_type=document.document_type,
        reference_number=document.document_number,
        status=TransactionStatus.POSTED.value,
        user=user,
    )
    return ledger_service.post_journal_entry(command)


def _apply_issue_effects(document: FinancialDocument, accounts: Optional[Dict[str, Account]], user=None) -> None:
    """Counterparty ledger movement and optional journal for a document that has just become issued."""
    effect = LEDGER_EFFECTS.get(document.document_type)
    if effect:
        side, entry_type = effect
        append_entry(
            document.counterparty, entry_type,
            debit=document.total_amount if side == 'debit' else ZERO_DECIMAL,
            credit=document.total_amount if side == 'credit' else ZERO_DECIMAL,
            entry_date=document.document_date,
            description=f"{document.get_document_type_display()} - {document.document_number}",
            document=document,
        )
    if accounts:
        journal = _post_document_journal(document, accounts, user=user)
        if journal is not None:
            FinancialDocument.global_objects.filter(pk=document.pk).update(journal_entry=journal)
            document.journal_entry = journal


# =============================================================================
# Document creation
# =============================================================================

def create_document(command: CreateDocumentCommand) -> FinancialDocument:
    """
    Computes, numbers and persists a document with its lines and ledger movement.

    The number is drawn (and committed) before the document transaction opens. If
    anything fails afterwards the number is released when no later number has been
    drawn; otherwise a gap is left. Signals go out only after commit.

    Raises:
        ValidationError, CreditLimitExceededError, ConcurrencyError, PersistenceError
    """
    command.validate()
    company = command.company
    log_prefix = f"[DocCreate][Co:{company.pk}][Type:{command.document_type}]"

    with tenant_context(company):
        branch = resolve_branch(company, command.branch)
        counterparty = command.counterparty
        if not counterparty.is_active:
            raise ValidationError({'counterparty': [str(_("Counterparty is inactive."))]})

        document_date = command.document_date or company.local_date()
        place_of_supply = command.place_of_supply or tax_service.gst_type_for(
            branch.state_code or company.state_code, counterparty.state_code)
        computed = _compute_lines(command, place_of_supply)
        totals = tax_service.calculate_document(
            [result for _line, result in computed],
            discount_percentage=command.discount_percentage,
            discount_amount=command.discount_amount,
            decimal_places=company.currency_decimal_places,
        )

        is_issued = command.status == DocumentStatus.ISSUED.value
        if is_issued and command.document_type == DocumentType.INVOICE.value:
            credit_service.check_credit_limit(counterparty, totals.total_amount, override=command.credit_override)
        accounts = None
        if is_issued:
            accounts = _posting_accounts(company, counterparty, command.document_type, totals.tax_amount,
                                         command.posting_account_id, command.tax_account_id)

    allocated = sequence_service.next_number(company, branch, command.document_type, document_date)
    log_prefix = f"{log_prefix}[No:{allocated.rendered}]"

    try:
        with tenant_context(company), transaction.atomic():
            document = FinancialDocument(
                company=company,
                branch=branch,
                counterparty=counterparty,
                document_type=command.document_type,
                document_number=allocated.rendered,
                document_date=document_date,
                due_date=command.due_date,
                place_of_supply=place_of_supply,
                prices_include_tax=command.rates_inclusive,
                subtotal=totals.subtotal,
                tax_amount=totals.tax_amount,
                cgst_amount=totals.cgst_amount,
                sgst_amount=totals.sgst_amount,
                igst_amount=totals.igst_amount,
                discount_percentage=totals.discount_percentage,
                discount_amount=totals.discount_amount,
                total_amount=totals.total_amount,
                paid_amount=ZERO_DECIMAL,
                balance_amount=totals.total_amount,
                status=command.status,
                notes=command.notes,
                created_by=command.user,
                updated_by=command.user,
            )
            document.save()

            for position, (line, result) in enumerate(computed, start=1):
                taxable = round_decimal(result.taxable_amount, LINE_PRECISION)
                cgst = round_decimal(result.cgst_amount, LINE_PRECISION)
                sgst = round_decimal(result.sgst_amount, LINE_PRECISION)
                igst = round_decimal(result.igst_amount, LINE_PRECISION)
                LineItem(
                    company=company, document=document, position=position,
                    item_ref=line.item_ref, description=line.description,
                    quantity=line.quantity, rate=line.rate, discount_percentage=line.discount_percentage,
                    cgst_rate=line.cgst_rate, sgst_rate=line.sgst_rate, igst_rate=line.igst_rate,
                    taxable_amount=taxable, cgst_amount=cgst, sgst_amount=sgst, igst_amount=igst,
                    line_total=taxable + cgst + sgst + igst,
                    created_by=command.user, updated_by=command.user,
                ).save()

            if is_issued:
                _apply_issue_effects(document, accounts, user=command.user)
                emit_document_committed(document, 'created')
    except DjangoValidationError as e:
        sequence_service.release_number(allocated)
        logger.warning(f"{log_prefix} Model validation failed, number released: {e}")
        raise ValidationError.from_django(e)
    except DatabaseError as e:
        sequence_service.release_number(allocated)
        logger.error(f"{log_prefix} Database failure while saving document: {e}", exc_info=True)
        raise PersistenceError(_("The document could not be saved."), original=e) from e
    except Exception:
        sequence_service.release_number(allocated)
        logger.warning(f"{log_prefix} Document creation failed after the number draw; compensation attempted.")
        raise

    logger.info(f"{log_prefix} Created {command.status} document {document.pk} total {document.total_amount}.")
    return document


@transaction.atomic
def issue_document(company: Company, document_id, posting_account_id=None, tax_account_id=None,
                   user=None, credit_override: bool = False) -> FinancialDocument:
    """Moves a draft document to issued and applies its ledger movement."""
    log_prefix = f"[DocIssue][Co:{company.pk}][Doc:{document_id}]"
    with tenant_context(company):
        document = _get_locked_document(company, document_id)
        if document.status != DocumentStatus.DRAFT.value:
            raise InvalidEntryStatusError(current_status=document.status,
                                          expected_statuses=[DocumentStatus.DRAFT.value])
        if document.document_type == DocumentType.INVOICE.value:
            credit_service.check_credit_limit(document.counterparty, document.total_amount, override=credit_override)
        accounts = _posting_accounts(company, document.counterparty, document.document_type, document.tax_amount,
                                     posting_account_id, tax_account_id)
        FinancialDocument.global_objects.filter(pk=document.pk).update(
            status=DocumentStatus.ISSUED.value, updated_at=timezone.now(), updated_by=user)
        document.status = DocumentStatus.ISSUED.value
        _apply_issue_effects(document, accounts, user=user)
        emit_document_committed(document, 'created')
    logger.info(f"{log_prefix} Issued {document.document_number}.")
    return document


def _get_locked_document(company: Company, document_id) -> FinancialDocument:
    try:
        return FinancialDocument.objects.select_for_update().select_related('counterparty').get(
            pk=document_id, company=company)
    except FinancialDocument.DoesNotExist:
        raise ObjectDoesNotExist(f"Document {document_id} not found in company {company.pk}.")


# =============================================================================
# Cancellation
# =============================================================================

@transaction.atomic
def cancel_document(company: Company, document_id, reason: str = '', user=None) -> FinancialDocument:
    """
    Cancels an unpaid document: reverses its counterparty ledger movement and journal
    entry and, after commit, announces reversed stock movements.
    """
    log_prefix = f"[DocCancel][Co:{company.pk}][Doc:{document_id}]"
    with tenant_context(company):
        document = _get_locked_document(company, document_id)
        if document.is_cancelled:
            raise InvalidEntryStatusError(
                current_status=document.status,
                expected_statuses=[DocumentStatus.DRAFT.value, DocumentStatus.ISSUED.value])
        if document.paid_amount > ZERO_DECIMAL:
            logger.warning(f"{log_prefix} Rejected: {document.paid_amount} already paid.")
            raise ValidationError({'paid_amount': [
                str(_("Cannot cancel %(number)s: %(paid)s has already been paid against it.") % {
                    'number': document.document_number, 'paid': document.paid_amount})]})

        was_issued = document.is_issued
        effect = LEDGER_EFFECTS.get(document.document_type)
        if was_issued and effect:
            side, _entry_type = effect
            append_entry(
                document.counterparty, LedgerEntryType.DOCUMENT_CANCELLED.value,
                debit=document.total_amount if side == 'credit' else ZERO_DECIMAL,
                credit=document.total_amount if side == 'debit' else ZERO_DECIMAL,
                entry_date=company.local_date(),
                description=f"Cancelled {document.get_document_type_display()} - {document.document_number}",
                document=document,
            )
        if document.journal_entry_id and document.journal_entry.status != TransactionStatus.CANCELLED.value:
            ledger_service.cancel_journal_entry(company, document.journal_entry_id,
                                                reason=f"Document {document.document_number} cancelled")

        FinancialDocument.global_objects.filter(pk=document.pk).update(
            status=DocumentStatus.CANCELLED.value, cancelled_at=timezone.now(),
            cancellation_reason=(reason or '')[:255], updated_at=timezone.now(), updated_by=user)
        document.refresh_from_db()
        if was_issued:
            emit_document_committed(document, 'cancelled', reverse_stock=True)

    logger.info(f"{log_prefix} {document.document_number} cancelled. Reason: {reason or '-'}")
    return document


# =============================================================================
# Counterparty statement
# =============================================================================

def counterparty_statement(company: Company, counterparty_id, start_date: Optional[date] = None,
                           end_date: Optional[date] = None) -> Dict[str, Any]:
    """
    Ledger entries of one counterparty in (entry_date, sequence_no) order, with the
    opening balance before start_date and the closing balance at end_date.
    """
    with tenant_context(company):
        try:
            counterparty = Counterparty.objects.get(pk=counterparty_id, company=company)
        except Counterparty.DoesNotExist:
            raise ObjectDoesNotExist(f"Counterparty {counterparty_id} not found in company {company.pk}.")

        entries_qs = LedgerEntry.objects.filter(company=company, counterparty=counterparty).select_related(
            'document', 'payment').order_by('entry_date', 'sequence_no')

        opening = counterparty.signed_opening_balance
        if start_date:
            for entry in entries_qs.filter(entry_date__lt=start_date):
                opening += counterparty.ledger_delta(entry.debit_amount, entry.credit_amount)
            entries_qs = entries_qs.filter(entry_date__gte=start_date)
        if end_date:
            entries_qs = entries_qs.filter(entry_date__lte=end_date)

        rows = []
        running = opening
        total_debit = total_credit = ZERO_DECIMAL
        for entry in entries_qs:
            running += counterparty.ledger_delta(entry.debit_amount, entry.credit_amount)
            total_debit += entry.debit_amount
            total_credit += entry.credit_amount
            rows.append({
                'sequence_no': entry.sequence_no,
                'date': entry.entry_date,
                'entry_type': entry.entry_type,
                'description': entry.description,
                'document_number': entry.document.document_number if entry.document_id else None,
                'payment_number': entry.payment.payment_number if entry.payment_id else None,
                'debit': entry.debit_amount,
                'credit': entry.credit_amount,
                'balance': running,
            })

    return {
        'counterparty': {'pk': counterparty.pk, 'name': counterparty.name, 'party_type': counterparty.party_type},
        'start_date': start_date,
        'end_date': end_date,
        'opening_balance': opening,
        'total_debit': total_debit,
        'total_credit': total_credit,
        'entries': rows,
        'closing_balance': running,
    }
