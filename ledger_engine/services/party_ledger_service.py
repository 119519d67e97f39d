# ledger_engine/services/party_ledger_service.py

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from ..models.party import Counterparty, CounterpartyAdvance, LedgerEntry

logger = logging.getLogger(__name__)
ZERO_DECIMAL = Decimal('0.00')


def latest_entry(counterparty: Counterparty) -> Optional[LedgerEntry]:
    return LedgerEntry.global_objects.filter(
        company_id=counterparty.company_id, counterparty_id=counterparty.pk
    ).order_by('-sequence_no').first()


@transaction.atomic
def append_entry(counterparty: Counterparty, entry_type: str, debit: Decimal = ZERO_DECIMAL,
                 credit: Decimal = ZERO_DECIMAL, entry_date: Optional[date] = None, description: str = '',
                 document=None, payment=None) -> LedgerEntry:
    """
    Appends one row to the counterparty's running ledger and refreshes the cached balance.

    The counterparty row is locked for the duration so sequence_no and the running
    balance are computed against the true latest entry. The first entry builds on the
    signed opening balance.
    """
    locked = Counterparty.global_objects.select_for_update().get(pk=counterparty.pk,
                                                                 company_id=counterparty.company_id)
    previous = latest_entry(locked)
    if previous is not None:
        previous_balance, sequence_no = previous.balance, previous.sequence_no + 1
    else:
        previous_balance, sequence_no = locked.signed_opening_balance, 1

    balance = previous_balance + locked.ledger_delta(debit, credit)
    entry = LedgerEntry(
        company_id=locked.company_id,
        counterparty=locked,
        sequence_no=sequence_no,
        entry_date=entry_date or timezone.now().date(),
        entry_type=entry_type,
        debit_amount=debit,
        credit_amount=credit,
        balance=balance,
        description=description[:255],
        document=document,
        payment=payment,
    )
    entry.save()

    Counterparty.global_objects.filter(pk=locked.pk).update(current_balance=balance, updated_at=timezone.now())
    counterparty.current_balance = balance
    logger.debug(f"[LedgerAppend][Co:{locked.company_id}][CP:{locked.pk}] #{sequence_no} {entry_type} "
                 f"Dr {debit} Cr {credit} -> {balance}")
    return entry


def refresh_cached_balance(counterparty: Counterparty, dry_run: bool = False) -> Decimal:
    """Resets current_balance to the latest ledger balance (or the opening balance). Returns the drift."""
    previous = latest_entry(counterparty)
    expected = previous.balance if previous is not None else counterparty.signed_opening_balance
    stored = Counterparty.global_objects.filter(pk=counterparty.pk).values_list('current_balance', flat=True).get()
    drift = expected - stored
    if dry_run:
        return drift
    if drift:
        Counterparty.global_objects.filter(pk=counterparty.pk).update(current_balance=expected, updated_at=timezone.now())
        logger.warning(f"[LedgerRefresh][Co:{counterparty.company_id}][CP:{counterparty.pk}] Cached balance drift of {drift} corrected.")
    counterparty.current_balance = expected
    return drift


def get_or_create_advance(counterparty: Counterparty) -> CounterpartyAdvance:
    advance = CounterpartyAdvance.global_objects.filter(
        company_id=counterparty.company_id, counterparty_id=counterparty.pk).first()
    if advance is None:
        advance = CounterpartyAdvance(company_id=counterparty.company_id, counterparty=counterparty)
        advance.save()
    return advance


def advance_balance(counterparty: Counterparty) -> Decimal:
    value = CounterpartyAdvance.global_objects.filter(
        company_id=counterparty.company_id, counterparty_id=counterparty.pk
    ).values_list('balance', flat=True).first()
    return value if value is not None else ZERO_DECIMAL


def increase_advance(counterparty: Counterparty, amount: Decimal) -> None:
    if amount <= ZERO_DECIMAL:
        return
    advance = get_or_create_advance(counterparty)
    CounterpartyAdvance.global_objects.filter(pk=advance.pk).update(
        balance=F('balance') + amount, last_movement_at=timezone.now())


def decrease_advance(counterparty: Counterparty, amount: Decimal, floor_at_zero: bool = False) -> Decimal:
    """
    Draws `amount` from the advance with a guarded decrement and returns what was taken.

    Without floor_at_zero the draw is all or nothing: 0 is returned when the balance is short.
    With floor_at_zero whatever is left (up to `amount`) is taken.
    """
    if amount <= ZERO_DECIMAL:
        return ZERO_DECIMAL
    advance = get_or_create_advance(counterparty)
    taken = CounterpartyAdvance.global_objects.filter(pk=advance.pk, balance__gte=amount).update(
        balance=F('balance') - amount, last_movement_at=timezone.now())
    if taken:
        return amount
    if not floor_at_zero:
        return ZERO_DECIMAL

    locked = CounterpartyAdvance.global_objects.select_for_update().get(pk=advance.pk)
    available = min(locked.balance, amount)
    if available > ZERO_DECIMAL:
        CounterpartyAdvance.global_objects.filter(pk=advance.pk).update(
            balance=F('balance') - available, last_movement_at=timezone.now())
    logger.warning(f"[AdvanceDecrease][Co:{counterparty.company_id}][CP:{counterparty.pk}] Only {available} of "
                   f"{amount} was left in the advance.")
    return available
