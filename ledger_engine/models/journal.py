# ledger_engine/models/journal.py

import logging
from decimal import Decimal

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Sum
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from crp_core.constants import BALANCE_TOLERANCE
from crp_core.enums import TransactionStatus
from .base import TenantScopedModel
from .coa import Account

logger = logging.getLogger("ledger_engine.models.journal")
ZERO_DECIMAL = Decimal('0.00')


class JournalEntry(TenantScopedModel):
    """
    A double-entry journal entry. Its lines must balance (within BALANCE_TOLERANCE)
    before it is saved in any status. POSTED entries are immutable except for the
    transition to CANCELLED.
    """
    entry_date = models.DateField(_("Entry Date"), default=timezone.now, db_index=True)
    narration = models.TextField(_("Narration"), blank=True, default='')
    reference_type = models.CharField(
        _("Reference Type"), max_length=50, blank=True, default='', db_index=True,
        help_text=_("Origin of the entry, e.g. 'invoice', 'payment_received', 'manual'. Used by the cash flow classifier.")
    )
    reference_number = models.CharField(_("Reference Number"), max_length=100, blank=True, default='')
    status = models.CharField(_("Status"), max_length=20, choices=TransactionStatus.choices,
                              default=TransactionStatus.POSTED.value, db_index=True)
    total_debit = models.DecimalField(_("Total Debit"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL,
                                      editable=False)
    total_credit = models.DecimalField(_("Total Credit"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL,
                                       editable=False)
    posted_at = models.DateTimeField(_("Posted At"), null=True, blank=True, editable=False)
    cancelled_at = models.DateTimeField(_("Cancelled At"), null=True, blank=True, editable=False)
    cancellation_reason = models.CharField(_("Cancellation Reason"), max_length=255, blank=True, default='')

    class Meta:
        verbose_name = _("Journal Entry")
        verbose_name_plural = _("Journal Entries")
        ordering = ['company', '-entry_date', '-created_at']
        indexes = [
            models.Index(fields=['company', 'status', 'entry_date'], name='je_co_status_date_idx'),
        ]

    def __str__(self):
        ref = self.reference_number or (_('Entry %(pk)s') % {'pk': self.pk})
        return f"{ref} - {self.entry_date} [{self.get_status_display()}]"

    @property
    def is_posted(self) -> bool:
        return self.status == TransactionStatus.POSTED.value

    @property
    def is_editable(self) -> bool:
        return self.status == TransactionStatus.DRAFT.value

    @property
    def is_balanced(self) -> bool:
        return abs(self.total_debit - self.total_credit) < BALANCE_TOLERANCE

    def recompute_totals(self) -> None:
        """Refreshes the stored totals from the entry's current lines."""
        totals = JournalLine.global_objects.filter(entry_id=self.pk).aggregate(
            dr=Sum('debit_amount'), cr=Sum('credit_amount'))
        self.total_debit = totals['dr'] or ZERO_DECIMAL
        self.total_credit = totals['cr'] or ZERO_DECIMAL
        JournalEntry.global_objects.filter(pk=self.pk).update(
            total_debit=self.total_debit, total_credit=self.total_credit)


class JournalLine(TenantScopedModel):
    entry = models.ForeignKey(JournalEntry, verbose_name=_("Journal Entry"), on_delete=models.CASCADE,
                              related_name='lines')
    account = models.ForeignKey(Account, verbose_name=_("Account"), on_delete=models.PROTECT,
                                related_name='journal_lines')
    debit_amount = models.DecimalField(_("Debit"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL,
                                       validators=[MinValueValidator(ZERO_DECIMAL)])
    credit_amount = models.DecimalField(_("Credit"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL,
                                        validators=[MinValueValidator(ZERO_DECIMAL)])
    description = models.CharField(_("Line Description"), max_length=255, blank=True, default='')

    class Meta:
        verbose_name = _("Journal Line")
        verbose_name_plural = _("Journal Lines")
        ordering = ['entry', 'created_at']
        indexes = [
            models.Index(fields=['account', 'entry'], name='jl_account_entry_idx'),
        ]

    def __str__(self):
        side = f"Dr {self.debit_amount}" if self.debit_amount else f"Cr {self.credit_amount}"
        return f"{self.account_id}: {side}"

    def clean(self):
        super().clean()
        errors = {}
        debit = self.debit_amount or ZERO_DECIMAL
        credit = self.credit_amount or ZERO_DECIMAL
        if debit > ZERO_DECIMAL and credit > ZERO_DECIMAL:
            errors['debit_amount'] = _("A line cannot carry both a debit and a credit.")
        elif debit == ZERO_DECIMAL and credit == ZERO_DECIMAL:
            errors['debit_amount'] = _("A line must carry either a debit or a credit amount.")
        if self.account_id and self.entry_id:
            self._check_same_company(errors, 'account', self.account)
        if errors:
            raise DjangoValidationError(errors)
