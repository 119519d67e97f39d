# ledger_engine/models/payments.py

import logging
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from company.models import Branch
from crp_core.enums import PaymentDirection, PaymentMethod, PaymentRecordStatus, PartyType
from .base import TenantScopedModel
from .documents import FinancialDocument
from .journal import JournalEntry
from .party import Counterparty

logger = logging.getLogger(__name__)
ZERO_DECIMAL = Decimal('0.00')

DIRECTION_PARTY_TYPES = {
    PaymentDirection.RECEIVED.value: PartyType.CUSTOMER.value,
    PaymentDirection.MADE.value: PartyType.VENDOR.value,
}


class Payment(TenantScopedModel):
    """
    Money received from a customer or paid to a vendor.

    allocated_amount is what was applied to documents (fresh cash plus advance_used);
    unallocated_amount is the part of `amount` that went to the counterparty's advance.
    """
    branch = models.ForeignKey(Branch, verbose_name=_("Branch"), on_delete=models.PROTECT, related_name='payments')
    counterparty = models.ForeignKey(Counterparty, verbose_name=_("Counterparty"), on_delete=models.PROTECT,
                                     related_name='payments')
    direction = models.CharField(_("Direction"), max_length=10, choices=PaymentDirection.choices, db_index=True)
    payment_number = models.CharField(_("Payment Number"), max_length=60, db_index=True, editable=False)
    payment_date = models.DateField(_("Payment Date"), default=timezone.now, db_index=True)
    amount = models.DecimalField(_("Amount"), max_digits=20, decimal_places=2,
                                 validators=[MinValueValidator(Decimal('0.01'))])
    method = models.CharField(_("Method"), max_length=20, choices=PaymentMethod.choices,
                              default=PaymentMethod.BANK_TRANSFER.value)
    reference = models.CharField(_("Reference"), max_length=100, blank=True, default='',
                                 help_text=_("Cheque number, UTR or other bank reference."))
    allocated_amount = models.DecimalField(_("Allocated"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL)
    unallocated_amount = models.DecimalField(_("Unallocated"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL)
    advance_used = models.DecimalField(_("Advance Used"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL,
                                       validators=[MinValueValidator(ZERO_DECIMAL)])
    status = models.CharField(_("Status"), max_length=10, choices=PaymentRecordStatus.choices,
                              default=PaymentRecordStatus.COMPLETED.value, db_index=True)
    journal_entry = models.OneToOneField(JournalEntry, verbose_name=_("Journal Entry"), on_delete=models.SET_NULL,
                                         null=True, blank=True, related_name='source_payment')
    voided_at = models.DateTimeField(_("Voided At"), null=True, blank=True, editable=False)
    void_reason = models.CharField(_("Void Reason"), max_length=255, blank=True, default='')

    class Meta:
        verbose_name = _("Payment")
        verbose_name_plural = _("Payments")
        ordering = ['company', '-payment_date', '-created_at']
        constraints = [
            models.UniqueConstraint(fields=['company', 'payment_number'], name='payment_unique_number_per_company'),
        ]

    def __str__(self):
        return f"{self.payment_number} {self.get_direction_display()} {self.amount}"

    def clean(self):
        super().clean()
        errors = {}
        if self.branch_id:
            self._check_same_company(errors, 'branch', self.branch)
        if self.counterparty_id:
            self._check_same_company(errors, 'counterparty', self.counterparty)
            expected_party = DIRECTION_PARTY_TYPES.get(self.direction)
            if expected_party and self.counterparty.party_type != expected_party:
                errors['counterparty'] = _("Payments %(dir)s must be against a %(party)s.") % {
                    'dir': self.direction, 'party': PartyType(expected_party).label}
        if self.amount is not None and self.allocated_amount > self.amount + (self.advance_used or ZERO_DECIMAL):
            errors['allocated_amount'] = _("Allocated amount cannot exceed the payment amount plus advance used.")
        if errors:
            raise ValidationError(errors)

    @property
    def is_received(self) -> bool:
        return self.direction == PaymentDirection.RECEIVED.value

    @property
    def is_void(self) -> bool:
        return self.status == PaymentRecordStatus.VOID.value


class Allocation(TenantScopedModel):
    payment = models.ForeignKey(Payment, verbose_name=_("Payment"), on_delete=models.CASCADE,
                                related_name='allocations')
    document = models.ForeignKey(FinancialDocument, verbose_name=_("Document"), on_delete=models.PROTECT,
                                 related_name='allocations')
    allocated_amount = models.DecimalField(_("Allocated Amount"), max_digits=20, decimal_places=2,
                                           validators=[MinValueValidator(Decimal('0.01'))])

    class Meta:
        verbose_name = _("Payment Allocation")
        verbose_name_plural = _("Payment Allocations")
        constraints = [
            models.UniqueConstraint(fields=['payment', 'document'], name='allocation_unique_payment_document'),
        ]

    def __str__(self):
        return f"{self.allocated_amount} -> {self.document_id}"
