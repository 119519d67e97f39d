# ledger_engine/admin.py

import logging

from django.contrib import admin
from django.http import HttpRequest
from django.urls import reverse, NoReverseMatch
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _
from simple_history.admin import SimpleHistoryAdmin

from .models import (
    Account, JournalEntry, JournalLine, DocumentSequence, Counterparty, CounterpartyAdvance, LedgerEntry,
    FinancialDocument, LineItem, Payment, Allocation,
)
from .services import credit_service

logger = logging.getLogger("ledger_engine.admin")


class TenantModelAdmin(SimpleHistoryAdmin):
    """
    Admin base for tenant-scoped models. The admin runs without a tenant context,
    so it reads through global_objects and shows the owning company.
    """
    list_select_related = ('company',)

    def get_queryset(self, request: HttpRequest):
        qs = self.model.global_objects.all()
        ordering = self.get_ordering(request)
        if ordering:
            qs = qs.order_by(*ordering)
        return qs


class ReadOnlyTenantModelAdmin(TenantModelAdmin):
    """Rows written only by the engine's services."""

    def has_add_permission(self, request: HttpRequest, obj=None) -> bool:
        return False

    def has_change_permission(self, request: HttpRequest, obj=None) -> bool:
        return False

    def has_delete_permission(self, request: HttpRequest, obj=None) -> bool:
        return False


def _change_link(obj, label: str):
    try:
        url = reverse(f"admin:{obj._meta.app_label}_{obj._meta.model_name}_change", args=[obj.pk])
    except NoReverseMatch:
        logger.warning(f"Admin: no change URL for {obj._meta.model_name} {obj.pk}")
        return label
    return format_html('<a href="{}">{}</a>', url, label)


# =============================================================================
# Chart of Accounts & Journal
# =============================================================================

@admin.register(Account)
class AccountAdmin(TenantModelAdmin):
    list_display = ('code', 'name', 'company', 'account_type', 'account_subtype', 'account_nature',
                    'current_balance', 'is_active', 'allow_direct_posting')
    list_filter = (('company', admin.RelatedOnlyFieldListFilter), 'account_type', 'account_subtype', 'is_active')
    search_fields = ('code', 'name', 'company__name')
    readonly_fields = ('account_nature', 'current_balance', 'balance_last_updated', 'created_at', 'updated_at')
    ordering = ('company__name', 'code')


class JournalLineInline(admin.TabularInline):
    model = JournalLine
    fields = ('account', 'debit_amount', 'credit_amount', 'description')
    readonly_fields = fields
    extra = 0
    can_delete = False

    def get_queryset(self, request):
        return JournalLine.global_objects.select_related('account')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(JournalEntry)
class JournalEntryAdmin(ReadOnlyTenantModelAdmin):
    list_display = ('entry_date', 'reference_type', 'reference_number', 'company', 'status',
                    'total_debit', 'total_credit', 'posted_at')
    list_filter = (('company', admin.RelatedOnlyFieldListFilter), 'status', 'reference_type')
    search_fields = ('reference_number', 'narration', 'company__name')
    date_hierarchy = 'entry_date'
    ordering = ('-entry_date', '-created_at')
    inlines = [JournalLineInline]


# =============================================================================
# Numbering
# =============================================================================

@admin.register(DocumentSequence)
class DocumentSequenceAdmin(TenantModelAdmin):
    list_display = ('company', 'branch', 'document_type', 'prefix', 'padding', 'current_number',
                    'financial_year', 'reset_policy', 'next_preview', 'is_active')
    list_filter = (('company', admin.RelatedOnlyFieldListFilter), 'document_type', 'reset_policy', 'is_active')
    search_fields = ('prefix', 'company__name', 'branch__prefix')
    # The counter moves only through the sequence service.
    readonly_fields = ('current_number', 'financial_year', 'created_at', 'updated_at')
    list_select_related = ('company', 'branch')

    @admin.display(description=_('Next Number'))
    def next_preview(self, obj: DocumentSequence) -> str:
        return obj.render_number(obj.current_number)


# =============================================================================
# Counterparties
# =============================================================================

class LedgerEntryInline(admin.TabularInline):
    model = LedgerEntry
    fields = ('sequence_no', 'entry_date', 'entry_type', 'debit_amount', 'credit_amount', 'balance', 'description')
    readonly_fields = fields
    extra = 0
    can_delete = False
    ordering = ('-sequence_no',)

    def get_queryset(self, request):
        return LedgerEntry.global_objects.all()

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Counterparty)
class CounterpartyAdmin(TenantModelAdmin):
    list_display = ('name', 'party_type', 'company', 'state_code', 'credit_limit', 'current_balance',
                    'control_account_link', 'is_active')
    list_filter = (('company', admin.RelatedOnlyFieldListFilter), 'party_type', 'is_active')
    search_fields = ('name', 'gst_number', 'company__name')
    readonly_fields = ('current_balance', 'display_credit_status', 'created_at', 'updated_at')
    fieldsets = (
        (None, {'fields': ('company', 'party_type', 'name', 'gst_number', 'state_code', 'is_active')}),
        (_('Accounting & Credit'), {'fields': ('control_account', 'opening_balance', 'opening_balance_type',
                                              'credit_limit', 'current_balance', 'display_credit_status')}),
        (_('Audit Information'), {'fields': ('created_at', 'updated_at'), 'classes': ('collapse',)}),
    )
    inlines = [LedgerEntryInline]

    @admin.display(description=_('Control Account'), ordering='control_account__code')
    def control_account_link(self, obj: Counterparty):
        if obj.control_account_id:
            return _change_link(obj.control_account, str(obj.control_account))
        return _("N/A")

    @admin.display(description=_('Credit Status'))
    def display_credit_status(self, obj: Counterparty) -> str:
        if not obj.pk:
            return "-"
        status = credit_service.credit_status(obj)
        return f"{status['status']} (outstanding {status['outstanding_balance']}, limit {status['credit_limit']})"


@admin.register(CounterpartyAdvance)
class CounterpartyAdvanceAdmin(ReadOnlyTenantModelAdmin):
    list_display = ('counterparty', 'company', 'balance', 'last_movement_at')
    list_select_related = ('company', 'counterparty')
    search_fields = ('counterparty__name',)


@admin.register(LedgerEntry)
class LedgerEntryAdmin(ReadOnlyTenantModelAdmin):
    list_display = ('counterparty', 'sequence_no', 'entry_date', 'entry_type', 'debit_amount', 'credit_amount',
                    'balance')
    list_filter = (('company', admin.RelatedOnlyFieldListFilter), 'entry_type')
    search_fields = ('counterparty__name', 'description')
    list_select_related = ('company', 'counterparty')
    ordering = ('counterparty__name', 'sequence_no')


# =============================================================================
# Documents & Payments
# =============================================================================

class LineItemInline(admin.TabularInline):
    model = LineItem
    fields = ('position', 'item_ref', 'description', 'quantity', 'rate', 'discount_percentage',
              'cgst_rate', 'sgst_rate', 'igst_rate', 'taxable_amount', 'line_total')
    readonly_fields = fields
    extra = 0
    can_delete = False

    def get_queryset(self, request):
        return LineItem.global_objects.all()

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(FinancialDocument)
class FinancialDocumentAdmin(ReadOnlyTenantModelAdmin):
    list_display = ('document_number', 'document_type', 'counterparty', 'document_date', 'total_amount',
                    'paid_amount', 'balance_amount', 'payment_status', 'status', 'journal_link')
    list_filter = (('company', admin.RelatedOnlyFieldListFilter), 'document_type', 'status', 'payment_status')
    search_fields = ('document_number', 'counterparty__name', 'company__name')
    date_hierarchy = 'document_date'
    list_select_related = ('company', 'counterparty', 'journal_entry')
    inlines = [LineItemInline]

    @admin.display(description=_('Journal'))
    def journal_link(self, obj: FinancialDocument):
        if obj.journal_entry_id:
            return _change_link(obj.journal_entry, obj.journal_entry.reference_number or str(obj.journal_entry_id))
        return "-"


class AllocationInline(admin.TabularInline):
    model = Allocation
    fields = ('document', 'allocated_amount')
    readonly_fields = fields
    extra = 0
    can_delete = False

    def get_queryset(self, request):
        return Allocation.global_objects.select_related('document')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Payment)
class PaymentAdmin(ReadOnlyTenantModelAdmin):
    list_display = ('payment_number', 'direction', 'counterparty', 'payment_date', 'amount', 'allocated_amount',
                    'unallocated_amount', 'advance_used', 'method', 'status')
    list_filter = (('company', admin.RelatedOnlyFieldListFilter), 'direction', 'method', 'status')
    search_fields = ('payment_number', 'reference', 'counterparty__name')
    date_hierarchy = 'payment_date'
    list_select_related = ('company', 'counterparty')
    inlines = [AllocationInline]
