# company/admin.py
import logging

from django.contrib import admin, messages
from django.utils import timezone
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _

from .models import Company, Branch

logger = logging.getLogger("company.admin")


# =============================================================================
# Branch Inline & Admin
# =============================================================================

class BranchInline(admin.TabularInline):
    model = Branch
    fields = ('name', 'prefix', 'state_code', 'is_default', 'is_active')
    extra = 0
    show_change_link = True


@admin.register(Branch)
class BranchAdmin(admin.ModelAdmin):
    list_display = ('prefix', 'name', 'company', 'state_code', 'is_default', 'is_active')
    list_filter = ('is_active', 'is_default', ('company', admin.RelatedOnlyFieldListFilter))
    search_fields = ('prefix', 'name', 'company__name')
    list_select_related = ('company',)
    readonly_fields = ('created_at', 'updated_at')


# =============================================================================
# Company Admin
# =============================================================================

@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ('name', 'subdomain_prefix', 'state_code', 'financial_year_start_month',
                    'current_financial_year_display', 'effective_is_active_display')
    list_filter = ('is_active', 'is_suspended_by_admin')
    search_fields = ('name', 'display_name', 'subdomain_prefix', 'gst_number')
    readonly_fields = ('current_financial_year_display', 'created_at', 'updated_at')
    fieldsets = (
        (None, {'fields': ('name', 'display_name', 'subdomain_prefix', 'gst_number', 'state_code')}),
        (_('Localisation & Books'), {'fields': ('default_currency_code', 'currency_decimal_places',
                                               'financial_year_start_month', 'current_financial_year_display',
                                               'timezone_name')}),
        (_('Status'), {'fields': ('is_active', 'is_suspended_by_admin')}),
        (_('Audit Information'), {'fields': ('created_at', 'updated_at'), 'classes': ('collapse',)}),
    )
    inlines = [BranchInline]
    actions = ['admin_action_make_companies_active', 'admin_action_suspend_companies']

    @admin.display(description=_('Effective Status'), ordering='is_active')
    def effective_is_active_display(self, obj: Company) -> str:
        if obj.is_suspended_by_admin:
            return format_html('<span style="color: red;">{}</span>', _('Suspended'))
        if obj.is_active:
            return format_html('<span style="color: green;">{}</span>', _('Active'))
        return format_html('<span style="color: orange;">{}</span>', _('Inactive'))

    @admin.display(description=_('Current Financial Year'))
    def current_financial_year_display(self, obj: Company) -> str:
        if obj is None or not obj.pk:
            return "---"
        return obj.get_financial_year_label()

    @admin.action(description=_("Activate & Unsuspend selected companies"))
    def admin_action_make_companies_active(self, request, queryset):
        updated_count = queryset.update(is_active=True, is_suspended_by_admin=False, updated_at=timezone.now())
        logger.info(f"Admin {request.user} activated {updated_count} companies.")
        self.message_user(request, _("%(count)d companies activated & unsuspended.") % {'count': updated_count},
                          messages.SUCCESS)

    @admin.action(description=_("Suspend selected companies"))
    def admin_action_suspend_companies(self, request, queryset):
        updated_count = queryset.update(is_suspended_by_admin=True, updated_at=timezone.now())
        logger.warning(f"Admin {request.user} suspended {updated_count} companies.")
        self.message_user(request, _("%(count)d companies suspended.") % {'count': updated_count}, messages.SUCCESS)
