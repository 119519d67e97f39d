# ledger_engine/models/documents.py

import logging
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from company.models import Branch
from crp_core.enums import DocumentType, DocumentStatus, PaymentStatus, GSTType, PartyType
from .base import TenantScopedModel
from .journal import JournalEntry
from .party import Counterparty

logger = logging.getLogger(__name__)
ZERO_DECIMAL = Decimal('0.00')

# Which kind of counterparty each document type is raised against.
DOCUMENT_PARTY_TYPES = {
    DocumentType.INVOICE.value: PartyType.CUSTOMER.value,
    DocumentType.QUOTATION.value: PartyType.CUSTOMER.value,
    DocumentType.SALES_ORDER.value: PartyType.CUSTOMER.value,
    DocumentType.CREDIT_NOTE.value: PartyType.CUSTOMER.value,
    DocumentType.PURCHASE_ORDER.value: PartyType.VENDOR.value,
    DocumentType.BILL.value: PartyType.VENDOR.value,
    DocumentType.DEBIT_NOTE.value: PartyType.VENDOR.value,
    DocumentType.GRN.value: PartyType.VENDOR.value,
}

PAYMENT_DOCUMENT_TYPES = (DocumentType.PAYMENT_RECEIVED.value, DocumentType.PAYMENT_MADE.value)


class FinancialDocument(TenantScopedModel):
    """
    A numbered commercial document (invoice, bill, note, order, GRN, ...).

    After every mutation:
        total_amount   == subtotal - discount_amount + tax_amount
        balance_amount == total_amount - paid_amount
    """
    branch = models.ForeignKey(Branch, verbose_name=_("Branch"), on_delete=models.PROTECT,
                               related_name='financial_documents')
    counterparty = models.ForeignKey(Counterparty, verbose_name=_("Counterparty"), on_delete=models.PROTECT,
                                     related_name='documents')
    document_type = models.CharField(
        _("Document Type"), max_length=30, db_index=True,
        choices=[c for c in DocumentType.choices if c[0] not in PAYMENT_DOCUMENT_TYPES]
    )
    document_number = models.CharField(_("Document Number"), max_length=60, db_index=True, editable=False)
    document_date = models.DateField(_("Document Date"), default=timezone.now, db_index=True)
    due_date = models.DateField(_("Due Date"), null=True, blank=True)
    place_of_supply = models.CharField(_("GST Type"), max_length=20, choices=GSTType.choices,
                                       default=GSTType.INTRASTATE.value)
    prices_include_tax = models.BooleanField(
        _("Rates Include Tax"), default=True,
        help_text=_("When set, line rates are tax-inclusive and the taxable value is backed out of them.")
    )

    subtotal = models.DecimalField(_("Subtotal"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL)
    tax_amount = models.DecimalField(_("Tax Amount"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL)
    cgst_amount = models.DecimalField(_("CGST"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL)
    sgst_amount = models.DecimalField(_("SGST"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL)
    igst_amount = models.DecimalField(_("IGST"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL)
    discount_percentage = models.DecimalField(
        _("Discount %"), max_digits=5, decimal_places=2, null=True, blank=True,
        validators=[MinValueValidator(ZERO_DECIMAL), MaxValueValidator(Decimal('100'))]
    )
    discount_amount = models.DecimalField(_("Discount Amount"), max_digits=20, decimal_places=2,
                                          default=ZERO_DECIMAL, validators=[MinValueValidator(ZERO_DECIMAL)])
    total_amount = models.DecimalField(_("Total Amount"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL)
    paid_amount = models.DecimalField(_("Paid Amount"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL,
                                      validators=[MinValueValidator(ZERO_DECIMAL)])
    balance_amount = models.DecimalField(_("Balance Due"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL)

    payment_status = models.CharField(_("Payment Status"), max_length=10, choices=PaymentStatus.choices,
                                      default=PaymentStatus.UNPAID.value, db_index=True)
    status = models.CharField(_("Status"), max_length=10, choices=DocumentStatus.choices,
                              default=DocumentStatus.ISSUED.value, db_index=True)
    notes = models.TextField(_("Notes"), blank=True, default='')
    journal_entry = models.OneToOneField(JournalEntry, verbose_name=_("Journal Entry"), on_delete=models.SET_NULL,
                                         null=True, blank=True, related_name='source_document')
    cancelled_at = models.DateTimeField(_("Cancelled At"), null=True, blank=True, editable=False)
    cancellation_reason = models.CharField(_("Cancellation Reason"), max_length=255, blank=True, default='')

    class Meta:
        verbose_name = _("Financial Document")
        verbose_name_plural = _("Financial Documents")
        ordering = ['company', '-document_date', '-created_at']
        constraints = [
            models.UniqueConstraint(fields=['company', 'document_number'], name='document_unique_number_per_company'),
        ]
        indexes = [
            models.Index(fields=['company', 'counterparty', 'document_type', 'status'], name='doc_co_cp_type_idx'),
        ]

    def __str__(self):
        return f"{self.document_number} ({self.get_document_type_display()})"

    def clean(self):
        super().clean()
        errors = {}
        if self.branch_id:
            self._check_same_company(errors, 'branch', self.branch)
        if self.counterparty_id:
            self._check_same_company(errors, 'counterparty', self.counterparty)
            expected_party = DOCUMENT_PARTY_TYPES.get(self.document_type)
            if expected_party and self.counterparty.party_type != expected_party:
                errors['counterparty'] = _("A %(doc)s must be raised against a %(party)s.") % {
                    'doc': self.get_document_type_display(), 'party': PartyType(expected_party).label}
        if self.due_date and self.document_date and self.due_date < self.document_date:
            errors['due_date'] = _("Due date cannot be before the document date.")
        expected_total = (self.subtotal or ZERO_DECIMAL) - (self.discount_amount or ZERO_DECIMAL) + (
            self.tax_amount or ZERO_DECIMAL)
        if self.total_amount != expected_total:
            errors['total_amount'] = _("Total %(total)s does not equal subtotal - discount + tax (%(expected)s).") % {
                'total': self.total_amount, 'expected': expected_total}
        if self.balance_amount != (self.total_amount or ZERO_DECIMAL) - (self.paid_amount or ZERO_DECIMAL):
            errors['balance_amount'] = _("Balance must equal total minus paid amount.")
        if errors:
            raise ValidationError(errors)

    @property
    def is_issued(self) -> bool:
        return self.status == DocumentStatus.ISSUED.value

    @property
    def is_cancelled(self) -> bool:
        return self.status == DocumentStatus.CANCELLED.value

    @staticmethod
    def derive_payment_status(paid_amount: Decimal, balance_amount: Decimal) -> str:
        if balance_amount <= ZERO_DECIMAL and paid_amount > ZERO_DECIMAL:
            return PaymentStatus.PAID.value
        if paid_amount > ZERO_DECIMAL:
            return PaymentStatus.PARTIAL.value
        return PaymentStatus.UNPAID.value


class LineItem(TenantScopedModel):
    """
    One line of a FinancialDocument. Derived amounts are stored at 4 places;
    line_total always equals taxable_amount + cgst + sgst + igst as stored.
    """
    document = models.ForeignKey(FinancialDocument, verbose_name=_("Document"), on_delete=models.CASCADE,
                                 related_name='lines')
    position = models.PositiveSmallIntegerField(_("Position"), default=1)
    item_ref = models.CharField(_("Item Reference"), max_length=64, blank=True, default='',
                                help_text=_("Opaque inventory item id."))
    description = models.CharField(_("Description"), max_length=255, blank=True, default='')
    quantity = models.DecimalField(_("Quantity"), max_digits=15, decimal_places=4,
                                   validators=[MinValueValidator(ZERO_DECIMAL)])
    rate = models.DecimalField(_("Rate"), max_digits=20, decimal_places=4, validators=[MinValueValidator(ZERO_DECIMAL)])
    discount_percentage = models.DecimalField(
        _("Discount %"), max_digits=5, decimal_places=2, default=ZERO_DECIMAL,
        validators=[MinValueValidator(ZERO_DECIMAL), MaxValueValidator(Decimal('100'))]
    )
    cgst_rate = models.DecimalField(_("CGST %"), max_digits=5, decimal_places=2, default=ZERO_DECIMAL,
                                    validators=[MinValueValidator(ZERO_DECIMAL)])
    sgst_rate = models.DecimalField(_("SGST %"), max_digits=5, decimal_places=2, default=ZERO_DECIMAL,
                                    validators=[MinValueValidator(ZERO_DECIMAL)])
    igst_rate = models.DecimalField(_("IGST %"), max_digits=5, decimal_places=2, default=ZERO_DECIMAL,
                                    validators=[MinValueValidator(ZERO_DECIMAL)])
    taxable_amount = models.DecimalField(_("Taxable Amount"), max_digits=20, decimal_places=4, default=ZERO_DECIMAL)
    cgst_amount = models.DecimalField(_("CGST Amount"), max_digits=20, decimal_places=4, default=ZERO_DECIMAL)
    sgst_amount = models.DecimalField(_("SGST Amount"), max_digits=20, decimal_places=4, default=ZERO_DECIMAL)
    igst_amount = models.DecimalField(_("IGST Amount"), max_digits=20, decimal_places=4, default=ZERO_DECIMAL)
    line_total = models.DecimalField(_("Line Total"), max_digits=20, decimal_places=4, default=ZERO_DECIMAL)

    class Meta:
        verbose_name = _("Line Item")
        verbose_name_plural = _("Line Items")
        ordering = ['document', 'position']

    def __str__(self):
        return f"{self.description or self.item_ref or 'Line'} x {self.quantity}"

    def clean(self):
        super().clean()
        errors = {}
        if (self.cgst_rate or self.sgst_rate) and self.igst_rate:
            errors['igst_rate'] = _("A line carries either CGST/SGST or IGST, not both.")
        heads = (self.cgst_amount or ZERO_DECIMAL) + (self.sgst_amount or ZERO_DECIMAL) + (
            self.igst_amount or ZERO_DECIMAL)
        if self.line_total != (self.taxable_amount or ZERO_DECIMAL) + heads:
            errors['line_total'] = _("Line total must equal the taxable amount plus tax.")
        if errors:
            raise ValidationError(errors)
