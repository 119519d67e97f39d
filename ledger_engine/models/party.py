# ledger_engine/models/party.py
import logging
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from crp_core.enums import PartyType, BalanceType, LedgerEntryType
from .base import TenantScopedModel
from .coa import Account

logger = logging.getLogger(__name__)
ZERO = Decimal('0.00')


class Counterparty(TenantScopedModel):
    """
    A customer or vendor.

    The running ledger (LedgerEntry) is the authoritative source of what the
    counterparty owes us (customers) or what we owe them (vendors).
    `current_balance` is a cache of the latest ledger balance, rewritten on every append.
    """
    party_type = models.CharField(_("Party Type"), max_length=20, choices=PartyType.choices, db_index=True)
    name = models.CharField(_("Name"), max_length=255, db_index=True)
    gst_number = models.CharField(_("GSTIN"), max_length=15, blank=True, default='')
    state_code = models.CharField(_("State Code"), max_length=2, blank=True, default='')
    opening_balance = models.DecimalField(
        _("Opening Balance"), max_digits=20, decimal_places=2, default=ZERO,
        validators=[MinValueValidator(ZERO)]
    )
    opening_balance_type = models.CharField(
        _("Opening Balance Type"), max_length=10, choices=BalanceType.choices, default=BalanceType.DEBIT.value,
        help_text=_("Debit means the customer owes us; credit means we owe them (or hold their money).")
    )
    credit_limit = models.DecimalField(
        _("Credit Limit"), max_digits=20, decimal_places=2, default=ZERO,
        validators=[MinValueValidator(ZERO)],
        help_text=_("Maximum outstanding exposure allowed. 0 means no limit.")
    )
    current_balance = models.DecimalField(
        _("Current Balance (cached)"), max_digits=20, decimal_places=2, default=ZERO, editable=False
    )
    control_account = models.ForeignKey(
        Account, verbose_name=_("Control Account"), on_delete=models.PROTECT,
        null=True, blank=True, related_name='counterparties',
        help_text=_("Receivable/payable account used when documents and payments are posted to the journal.")
    )
    is_active = models.BooleanField(_("Is Active"), default=True, db_index=True)

    class Meta:
        verbose_name = _("Counterparty")
        verbose_name_plural = _("Counterparties")
        ordering = ['company', 'party_type', 'name']
        indexes = [
            models.Index(fields=['company', 'party_type', 'is_active'], name='cp_co_type_active_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.get_party_type_display()})"

    def clean(self):
        super().clean()
        errors = {}
        self._check_same_company(errors, 'control_account', self.control_account if self.control_account_id else None)
        if errors:
            raise ValidationError(errors)

    @property
    def is_customer(self) -> bool:
        return self.party_type == PartyType.CUSTOMER.value

    @property
    def signed_opening_balance(self) -> Decimal:
        """
        Opening balance expressed as outstanding exposure. A debit opening raises what a
        customer owes; for vendors the natural side is credit.
        """
        natural_side = BalanceType.DEBIT.value if self.is_customer else BalanceType.CREDIT.value
        amount = self.opening_balance or ZERO
        return amount if self.opening_balance_type == natural_side else -amount

    def ledger_delta(self, debit: Decimal, credit: Decimal) -> Decimal:
        """
        Change in outstanding balance for a ledger movement.
        Customers: debit raises what they owe. Vendors: credit raises what we owe.
        """
        if self.is_customer:
            return debit - credit
        return credit - debit


class CounterpartyAdvance(TenantScopedModel):
    """Running store of unapplied payment money held for (or paid to) a counterparty."""
    counterparty = models.OneToOneField(Counterparty, verbose_name=_("Counterparty"), on_delete=models.CASCADE,
                                        related_name='advance')
    balance = models.DecimalField(_("Advance Balance"), max_digits=20, decimal_places=2, default=ZERO,
                                  validators=[MinValueValidator(ZERO)])
    last_movement_at = models.DateTimeField(_("Last Movement"), null=True, blank=True, editable=False)

    class Meta:
        verbose_name = _("Counterparty Advance")
        verbose_name_plural = _("Counterparty Advances")

    def __str__(self):
        return f"Advance {self.balance} for {self.counterparty_id}"


class LedgerEntry(TenantScopedModel):
    """
    Append-only row of a counterparty's running ledger.

    balance = previous entry's balance + counterparty.ledger_delta(debit, credit),
    where the previous entry is the one with the next lower sequence_no.
    """
    counterparty = models.ForeignKey(Counterparty, verbose_name=_("Counterparty"), on_delete=models.PROTECT,
                                     related_name='ledger_entries')
    sequence_no = models.PositiveIntegerField(_("Sequence"), editable=False)
    entry_date = models.DateField(_("Entry Date"), default=timezone.now, db_index=True)
    entry_type = models.CharField(_("Entry Type"), max_length=30, choices=LedgerEntryType.choices, db_index=True)
    debit_amount = models.DecimalField(_("Debit"), max_digits=20, decimal_places=2, default=ZERO,
                                       validators=[MinValueValidator(ZERO)])
    credit_amount = models.DecimalField(_("Credit"), max_digits=20, decimal_places=2, default=ZERO,
                                        validators=[MinValueValidator(ZERO)])
    balance = models.DecimalField(_("Running Balance"), max_digits=20, decimal_places=2)
    description = models.CharField(_("Description"), max_length=255, blank=True, default='')
    document = models.ForeignKey('ledger_engine.FinancialDocument', on_delete=models.PROTECT, null=True, blank=True,
                                 related_name='ledger_entries')
    payment = models.ForeignKey('ledger_engine.Payment', on_delete=models.PROTECT, null=True, blank=True,
                                related_name='ledger_entries')

    class Meta:
        verbose_name = _("Ledger Entry")
        verbose_name_plural = _("Ledger Entries")
        ordering = ['counterparty', 'entry_date', 'sequence_no']
        constraints = [
            models.UniqueConstraint(fields=['counterparty', 'sequence_no'], name='ledger_entry_unique_sequence'),
        ]

    def __str__(self):
        return f"#{self.sequence_no} {self.get_entry_type_display()} Dr {self.debit_amount} Cr {self.credit_amount} = {self.balance}"
