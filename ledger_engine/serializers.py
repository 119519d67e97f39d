# ledger_engine/serializers.py

"""
Raw-payload boundary for the engine's write operations (API calls, imports).

Each serializer validates field shapes, then to_command() resolves the referenced
rows inside the given company and builds the typed command the services accept.
"""

import logging
from decimal import Decimal

from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from company.models import Branch
from crp_core.enums import DocumentStatus, DocumentType, GSTType, PaymentDirection, PaymentMethod, TransactionStatus
from .commands import (
    AllocationInput, CreateDocumentCommand, JournalLineInput, LineItemInput, PostJournalEntryCommand,
    RecordPaymentCommand,
)
from .models.party import Counterparty

logger = logging.getLogger("ledger_engine.serializers")

MONEY = dict(max_digits=20, decimal_places=2)
RATE = dict(max_digits=7, decimal_places=4, min_value=Decimal('0'))
NUMBERED_DOCUMENT_TYPES = [
    choice for choice in DocumentType.choices
    if choice[0] not in (DocumentType.PAYMENT_RECEIVED.value, DocumentType.PAYMENT_MADE.value)
]


def _resolve(queryset, company, pk, field_name):
    """Row `pk` of `queryset` inside `company`, or a field error naming `field_name`."""
    if pk is None:
        return None
    instance = queryset.filter(company=company, pk=pk).first()
    if instance is None:
        logger.warning(f"Serializer lookup failed: {queryset.model.__name__} {pk} not found in Company ID {company.pk}")
        raise serializers.ValidationError({field_name: [_("Not found in this company.")]})
    return instance


# =============================================================================
# Documents
# =============================================================================

class LineItemSerializer(serializers.Serializer):
    item_ref = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    description = serializers.CharField(required=False, allow_blank=True, default='')
    quantity = serializers.DecimalField(max_digits=20, decimal_places=4, min_value=Decimal('0'))
    rate = serializers.DecimalField(max_digits=20, decimal_places=4, min_value=Decimal('0'))
    discount_percentage = serializers.DecimalField(max_digits=7, decimal_places=4, min_value=Decimal('0'),
                                                   max_value=Decimal('100'), required=False, default=Decimal('0'))
    cgst_rate = serializers.DecimalField(required=False, default=Decimal('0'), **RATE)
    sgst_rate = serializers.DecimalField(required=False, default=Decimal('0'), **RATE)
    igst_rate = serializers.DecimalField(required=False, default=Decimal('0'), **RATE)
    tax_rate = serializers.DecimalField(required=False, allow_null=True, default=None, **RATE)
    supplied_breakdown = serializers.DictField(
        child=serializers.DecimalField(max_digits=20, decimal_places=4), required=False, default=dict,
        help_text=_("Optional caller-computed taxable_amount/cgst_amount/sgst_amount/igst_amount, verified server side."))

    def validate(self, attrs):
        if (attrs.get('cgst_rate') or attrs.get('sgst_rate')) and attrs.get('igst_rate'):
            raise serializers.ValidationError({'igst_rate': _("Use either CGST/SGST or IGST, not both.")})
        return attrs

    @staticmethod
    def to_input(data) -> LineItemInput:
        return LineItemInput(
            quantity=data['quantity'],
            rate=data['rate'],
            item_ref=data.get('item_ref', ''),
            description=data.get('description', ''),
            discount_percentage=data.get('discount_percentage', Decimal('0')),
            cgst_rate=data.get('cgst_rate', Decimal('0')),
            sgst_rate=data.get('sgst_rate', Decimal('0')),
            igst_rate=data.get('igst_rate', Decimal('0')),
            tax_rate=data.get('tax_rate'),
            supplied_breakdown=dict(data.get('supplied_breakdown') or {}),
        )


class CreateDocumentSerializer(serializers.Serializer):
    document_type = serializers.ChoiceField(choices=NUMBERED_DOCUMENT_TYPES)
    branch_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    counterparty_id = serializers.UUIDField()
    document_date = serializers.DateField(required=False, allow_null=True, default=None)
    due_date = serializers.DateField(required=False, allow_null=True, default=None)
    rates_inclusive = serializers.BooleanField(required=False, default=True)
    place_of_supply = serializers.ChoiceField(choices=GSTType.choices, required=False, allow_null=True, default=None)
    discount_percentage = serializers.DecimalField(max_digits=7, decimal_places=4, min_value=Decimal('0'),
                                                   max_value=Decimal('100'), required=False, allow_null=True,
                                                   default=None)
    discount_amount = serializers.DecimalField(min_value=Decimal('0'), required=False, allow_null=True,
                                               default=None, **MONEY)
    status = serializers.ChoiceField(choices=[DocumentStatus.DRAFT.value, DocumentStatus.ISSUED.value],
                                     required=False, default=DocumentStatus.ISSUED.value)
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    credit_override = serializers.BooleanField(required=False, default=False)
    posting_account_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    tax_account_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    lines = LineItemSerializer(many=True, allow_empty=False)

    def validate(self, attrs):
        if attrs.get('document_date') and attrs.get('due_date') and attrs['due_date'] < attrs['document_date']:
            raise serializers.ValidationError({'due_date': _("Due date cannot be before the document date.")})
        return attrs

    def to_command(self, company, user=None) -> CreateDocumentCommand:
        data = self.validated_data
        return CreateDocumentCommand(
            company=company,
            branch=_resolve(Branch.objects.all(), company, data.get('branch_id'), 'branch_id'),
            counterparty=_resolve(Counterparty.global_objects.all(), company, data['counterparty_id'], 'counterparty_id'),
            document_type=data['document_type'],
            lines=[LineItemSerializer.to_input(line) for line in data['lines']],
            document_date=data.get('document_date'),
            due_date=data.get('due_date'),
            rates_inclusive=data.get('rates_inclusive', True),
            place_of_supply=data.get('place_of_supply'),
            discount_percentage=data.get('discount_percentage'),
            discount_amount=data.get('discount_amount'),
            status=data.get('status', DocumentStatus.ISSUED.value),
            notes=data.get('notes', ''),
            credit_override=data.get('credit_override', False),
            posting_account_id=data.get('posting_account_id'),
            tax_account_id=data.get('tax_account_id'),
            user=user,
        )


# =============================================================================
# Payments
# =============================================================================

class AllocationSerializer(serializers.Serializer):
    document_id = serializers.UUIDField()
    amount = serializers.DecimalField(min_value=Decimal('0.01'), **MONEY)


class RecordPaymentSerializer(serializers.Serializer):
    direction = serializers.ChoiceField(choices=PaymentDirection.choices)
    branch_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    counterparty_id = serializers.UUIDField()
    amount = serializers.DecimalField(min_value=Decimal('0.01'), **MONEY)
    payment_date = serializers.DateField(required=False, allow_null=True, default=None)
    method = serializers.ChoiceField(choices=PaymentMethod.choices, required=False,
                                     default=PaymentMethod.BANK_TRANSFER.value)
    reference = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    use_advance = serializers.BooleanField(required=False, default=False)
    cash_account_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    allocations = AllocationSerializer(many=True, required=False, default=list)

    def validate_allocations(self, value):
        document_ids = [allocation['document_id'] for allocation in value]
        if len(document_ids) != len(set(document_ids)):
            raise serializers.ValidationError(_("Each document can be allocated only once per payment."))
        return value

    def to_command(self, company, user=None) -> RecordPaymentCommand:
        data = self.validated_data
        return RecordPaymentCommand(
            company=company,
            branch=_resolve(Branch.objects.all(), company, data.get('branch_id'), 'branch_id'),
            counterparty=_resolve(Counterparty.global_objects.all(), company, data['counterparty_id'], 'counterparty_id'),
            direction=data['direction'],
            amount=data['amount'],
            payment_date=data.get('payment_date'),
            method=data.get('method', PaymentMethod.BANK_TRANSFER.value),
            reference=data.get('reference', ''),
            allocations=[AllocationInput(document_id=a['document_id'], amount=a['amount'])
                         for a in data.get('allocations', [])],
            use_advance=data.get('use_advance', False),
            cash_account_id=data.get('cash_account_id'),
            user=user,
        )


# =============================================================================
# Journal entries
# =============================================================================

class JournalLineSerializer(serializers.Serializer):
    account_id = serializers.UUIDField()
    debit_amount = serializers.DecimalField(min_value=Decimal('0'), required=False, default=Decimal('0.00'), **MONEY)
    credit_amount = serializers.DecimalField(min_value=Decimal('0'), required=False, default=Decimal('0.00'), **MONEY)
    description = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, attrs):
        has_debit = attrs.get('debit_amount', Decimal('0')) > 0
        has_credit = attrs.get('credit_amount', Decimal('0')) > 0
        if has_debit == has_credit:
            raise serializers.ValidationError(_("Each line needs exactly one of debit or credit."))
        return attrs


class PostJournalEntrySerializer(serializers.Serializer):
    entry_date = serializers.DateField(required=False, allow_null=True, default=None)
    narration = serializers.CharField(required=False, allow_blank=True, default='')
    reference_type = serializers.CharField(max_length=50, required=False, allow_blank=True, default='manual')
    reference_number = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    status = serializers.ChoiceField(choices=[TransactionStatus.DRAFT.value, TransactionStatus.POSTED.value],
                                     required=False, default=TransactionStatus.POSTED.value)
    lines = JournalLineSerializer(many=True, min_length=2)

    def to_command(self, company, user=None) -> PostJournalEntryCommand:
        # Account ownership is checked by the ledger service against the company.
        data = self.validated_data
        return PostJournalEntryCommand(
            company=company,
            lines=[JournalLineInput(account_id=line['account_id'], debit_amount=line['debit_amount'],
                                    credit_amount=line['credit_amount'], description=line.get('description', ''))
                   for line in data['lines']],
            entry_date=data.get('entry_date'),
            narration=data.get('narration', ''),
            reference_type=data.get('reference_type', 'manual'),
            reference_number=data.get('reference_number', ''),
            status=data.get('status', TransactionStatus.POSTED.value),
            user=user,
        )
