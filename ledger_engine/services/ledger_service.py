# ledger_engine/services/ledger_service.py

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError, ObjectDoesNotExist
from django.db import transaction
from django.db.models import Prefetch
from django.utils import timezone
from django.utils.translation import gettext_lazy as _
from safedelete import HARD_DELETE

from company.models import Company
from company.utils import tenant_context
from crp_core.constants import BALANCE_TOLERANCE
from crp_core.enums import TransactionStatus
from crp_core.utils import to_decimal
from ..commands import PostJournalEntryCommand
from ..exceptions import ValidationError, UnbalancedEntryError, InvalidEntryStatusError
from ..models.coa import Account, signed_delta
from ..models.journal import JournalEntry, JournalLine

logger = logging.getLogger("ledger_engine.services.ledger")
ZERO_DECIMAL = Decimal('0.00')


def balance_tolerance() -> Decimal:
    return to_decimal(getattr(settings, 'LEDGER_BALANCE_TOLERANCE', BALANCE_TOLERANCE))


def _dr_cr_label(balance: Decimal, is_debit_nature: bool) -> str:
    if balance == ZERO_DECIMAL:
        return ''
    if (balance > ZERO_DECIMAL) == is_debit_nature:
        return 'Dr'
    return 'Cr'


# =============================================================================
# Validation helpers
# =============================================================================

def _check_balanced(total_debit: Decimal, total_credit: Decimal, log_prefix: str) -> None:
    if abs(total_debit - total_credit) >= balance_tolerance():
        logger.warning(f"{log_prefix} Unbalanced entry rejected: Dr {total_debit} vs Cr {total_credit}.")
        raise UnbalancedEntryError(total_debit=total_debit, total_credit=total_credit)


def _resolve_accounts(company: Company, command: PostJournalEntryCommand) -> Dict[Any, Account]:
    """Loads every account the lines reference and checks it can take a direct posting."""
    account_ids = {line.account_id for line in command.lines}
    accounts = {str(acc.pk): acc for acc in Account.objects.filter(company=company, pk__in=account_ids)}
    errors: Dict[str, List[str]] = {}
    for position, line in enumerate(command.lines, start=1):
        account = accounts.get(str(line.account_id))
        key = f"lines[{position}].account_id"
        if account is None:
            errors[key] = [str(_("Account not found in this company."))]
        elif not account.is_active:
            errors[key] = [str(_("Account '%(code)s' is inactive.") % {'code': account.code})]
        elif not account.allow_direct_posting:
            errors[key] = [str(_("Account '%(code)s' does not allow direct posting.") % {'code': account.code})]
    if errors:
        raise ValidationError(errors)
    return accounts


def _write_lines(entry: JournalEntry, command: PostJournalEntryCommand, accounts: Dict[Any, Account]) -> None:
    for line in command.lines:
        journal_line = JournalLine(
            company_id=entry.company_id,
            entry=entry,
            account=accounts[str(line.account_id)],
            debit_amount=line.debit_amount or ZERO_DECIMAL,
            credit_amount=line.credit_amount or ZERO_DECIMAL,
            description=line.description or '',
            created_by=command.user,
            updated_by=command.user,
        )
        journal_line.save()


def _apply_balances(entry: JournalEntry, reverse: bool = False) -> None:
    """Moves each account's current_balance by its lines of `entry` (or undoes that)."""
    for line in JournalLine.global_objects.filter(entry_id=entry.pk).select_related('account'):
        delta = signed_delta(line.account.account_nature, line.debit_amount, line.credit_amount)
        line.account.apply_delta(-delta if reverse else delta)


# =============================================================================
# Posting
# =============================================================================

@transaction.atomic
def post_journal_entry(command: PostJournalEntryCommand) -> JournalEntry:
    """
    Validates and saves a journal entry. A POSTED entry moves the running balance of
    every account it touches.

    Raises:
        ValidationError: bad lines, or accounts that are foreign, inactive or closed to posting.
        UnbalancedEntryError: debits and credits differ by the tolerance or more.
    """
    command.validate()
    company = command.company
    log_prefix = f"[JournalPost][Co:{company.pk}][Ref:{command.reference_type}:{command.reference_number}]"
    _check_balanced(command.total_debit, command.total_credit, log_prefix)

    with tenant_context(company):
        accounts = _resolve_accounts(company, command)
        is_posted = command.status == TransactionStatus.POSTED.value
        entry = JournalEntry(
            company=company,
            entry_date=command.entry_date or company.local_date(),
            narration=command.narration or '',
            reference_type=command.reference_type or '',
            reference_number=command.reference_number or '',
            status=command.status,
            posted_at=timezone.now() if is_posted else None,
            created_by=command.user,
            updated_by=command.user,
        )
        try:
            entry.save()
            _write_lines(entry, command, accounts)
        except DjangoValidationError as e:
            logger.warning(f"{log_prefix} Model validation failed: {e}")
            raise ValidationError.from_django(e)
        entry.recompute_totals()

        if is_posted:
            _apply_balances(entry)
    logger.info(f"{log_prefix} Saved {entry.status} entry {entry.pk} (Dr {entry.total_debit} / Cr {entry.total_credit}).")
    return entry


def _get_locked_entry(company: Company, entry_id) -> JournalEntry:
    try:
        return JournalEntry.objects.select_for_update().get(pk=entry_id, company=company)
    except JournalEntry.DoesNotExist:
        raise ObjectDoesNotExist(f"Journal entry {entry_id} not found in company {company.pk}.")


@transaction.atomic
def replace_draft_entry(company: Company, entry_id, command: PostJournalEntryCommand) -> JournalEntry:
    """Replaces header and lines of a DRAFT entry. The result stays a draft unless the command says POSTED."""
    command.company = company
    command.validate()
    log_prefix = f"[JournalReplaceDraft][Co:{company.pk}][JE:{entry_id}]"
    _check_balanced(command.total_debit, command.total_credit, log_prefix)

    with tenant_context(company):
        entry = _get_locked_entry(company, entry_id)
        if not entry.is_editable:
            raise InvalidEntryStatusError(current_status=entry.status,
                                          expected_statuses=[TransactionStatus.DRAFT.value])
        accounts = _resolve_accounts(company, command)
        JournalLine.global_objects.filter(entry_id=entry.pk).delete(force_policy=HARD_DELETE)

        entry.entry_date = command.entry_date or entry.entry_date
        entry.narration = command.narration or ''
        entry.reference_type = command.reference_type or ''
        entry.reference_number = command.reference_number or ''
        entry.status = command.status
        entry.updated_by = command.user
        if entry.is_posted:
            entry.posted_at = timezone.now()
        try:
            entry.save()
            _write_lines(entry, command, accounts)
        except DjangoValidationError as e:
            raise ValidationError.from_django(e)
        entry.recompute_totals()
        if entry.is_posted:
            _apply_balances(entry)
    logger.info(f"{log_prefix} Draft replaced ({len(command.lines)} lines, status {entry.status}).")
    return entry


@transaction.atomic
def post_draft_entry(company: Company, entry_id) -> JournalEntry:
    log_prefix = f"[JournalPostDraft][Co:{company.pk}][JE:{entry_id}]"
    with tenant_context(company):
        entry = _get_locked_entry(company, entry_id)
        if not entry.is_editable:
            raise InvalidEntryStatusError(current_status=entry.status,
                                          expected_statuses=[TransactionStatus.DRAFT.value])
        entry.recompute_totals()
        if JournalLine.global_objects.filter(entry_id=entry.pk).count() < 2:
            raise ValidationError({'lines': [str(_("A journal entry needs at least two lines."))]})
        _check_balanced(entry.total_debit, entry.total_credit, log_prefix)
        JournalEntry.global_objects.filter(pk=entry.pk).update(
            status=TransactionStatus.POSTED.value, posted_at=timezone.now(), updated_at=timezone.now())
        entry.refresh_from_db()
        _apply_balances(entry)
    logger.info(f"{log_prefix} Draft posted.")
    return entry


@transaction.atomic
def cancel_journal_entry(company: Company, entry_id, reason: str = '') -> JournalEntry:
    """
    Cancels a draft or posted entry. Cancelling a posted entry reverses its balance
    impact; a cancelled entry cannot be cancelled again.
    """
    log_prefix = f"[JournalCancel][Co:{company.pk}][JE:{entry_id}]"
    with tenant_context(company):
        entry = _get_locked_entry(company, entry_id)
        if entry.status == TransactionStatus.CANCELLED.value:
            raise InvalidEntryStatusError(
                current_status=entry.status,
                expected_statuses=[TransactionStatus.DRAFT.value, TransactionStatus.POSTED.value])
        was_posted = entry.is_posted
        JournalEntry.global_objects.filter(pk=entry.pk).update(
            status=TransactionStatus.CANCELLED.value, cancelled_at=timezone.now(),
            cancellation_reason=(reason or '')[:255], updated_at=timezone.now())
        if was_posted:
            _apply_balances(entry, reverse=True)
        entry.refresh_from_db()
    logger.info(f"{log_prefix} Cancelled (was posted: {was_posted}). Reason: {reason or '-'}")
    return entry


# =============================================================================
# General ledger view
# =============================================================================

def account_ledger(company: Company, account_id, start_date: Optional[date] = None,
                   end_date: Optional[date] = None) -> Dict[str, Any]:
    """
    Posted lines of one account between start_date and end_date with a running balance.
    The opening figure is the account's balance at the end of the day before start_date.
    """
    with tenant_context(company):
        try:
            account = Account.objects.get(pk=account_id, company=company)
        except Account.DoesNotExist:
            logger.error(f"Ledger requested for Account ID {account_id} not found in Company ID {company.pk}")
            raise ObjectDoesNotExist(f"Account with ID {account_id} not found in the specified company.")

        if start_date:
            opening_balance = account.get_dynamic_balance(date_upto=start_date - timedelta(days=1))
        else:
            opening_balance = account.opening_balance

        lines_qs = JournalLine.objects.filter(
            company=company, account=account, entry__status=TransactionStatus.POSTED.value,
        ).select_related('entry').prefetch_related(
            Prefetch('entry__lines', queryset=JournalLine.objects.select_related('account'))
        ).order_by('entry__entry_date', 'entry__created_at', 'created_at')
        if start_date:
            lines_qs = lines_qs.filter(entry__entry_date__gte=start_date)
        if end_date:
            lines_qs = lines_qs.filter(entry__entry_date__lte=end_date)

        entries: List[Dict[str, Any]] = []
        running_balance = opening_balance
        period_debit = period_credit = ZERO_DECIMAL
        for line in lines_qs:
            running_balance += signed_delta(account.account_nature, line.debit_amount, line.credit_amount)
            period_debit += line.debit_amount
            period_credit += line.credit_amount

            contra_names = [other.account.name for other in line.entry.lines.all() if other.pk != line.pk]
            if len(contra_names) == 1:
                particulars = contra_names[0]
            else:
                particulars = line.entry.narration or line.description or str(_("Sundry Accounts"))

            entries.append({
                'line_pk': line.pk,
                'date': line.entry.entry_date,
                'entry_pk': line.entry.pk,
                'reference': line.entry.reference_number,
                'particulars': particulars,
                'debit': line.debit_amount,
                'credit': line.credit_amount,
                'running_balance': running_balance,
                'dr_cr': _dr_cr_label(running_balance, account.is_debit_nature),
            })

    return {
        'account': {'pk': account.pk, 'code': account.code, 'name': account.name,
                    'account_nature': account.account_nature},
        'start_date': start_date,
        'end_date': end_date,
        'opening_balance': opening_balance,
        'total_debit': period_debit,
        'total_credit': period_credit,
        'entries': entries,
        'closing_balance': running_balance,
        'closing_dr_cr': _dr_cr_label(running_balance, account.is_debit_nature),
    }
