import datetime

import pytz
from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import RegexValidator, MinValueValidator, MaxValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from crp_core.constants import DEFAULT_FY_START_MONTH, MAX_CURRENCY_DECIMAL_PLACES
from crp_core.utils import financial_year_label


def _default_fy_start_month():
    return getattr(settings, 'LEDGER_DEFAULT_FY_START_MONTH', DEFAULT_FY_START_MONTH)


class Company(models.Model):
    subdomain_prefix = models.CharField(
        _("Subdomain Prefix"),
        max_length=100,
        unique=True,
        db_index=True,
        help_text=_("Unique tenant identifier (e.g., 'acme'). Lowercase letters, numbers, hyphens."),
        validators=[
            RegexValidator(
                regex=r'^[a-z0-9-]+$',
                message=_("Subdomain can only contain lowercase letters, numbers, and hyphens.")
            )
        ]
    )
    name = models.CharField(
        _("Legal Company Name"),
        max_length=255,
        help_text=_("The official legal name of the company.")
    )
    display_name = models.CharField(
        _("Display Name / Trading Name"),
        max_length=255,
        blank=True,
        help_text=_("Name used for display purposes if different from legal name. Defaults to legal name.")
    )
    gst_number = models.CharField(_("GSTIN"), max_length=15, blank=True, default='')
    state_code = models.CharField(
        _("State Code"),
        max_length=2,
        blank=True, default='',
        help_text=_("Two-digit GST state code of the registered place of business. Drives intrastate/interstate tax.")
    )
    currency_decimal_places = models.PositiveSmallIntegerField(
        default=2,
        validators=[MinValueValidator(0), MaxValueValidator(MAX_CURRENCY_DECIMAL_PLACES)],
        help_text="Number of decimal places to use for currency values. Stored amounts carry at most 2."
    )
    default_currency_code = models.CharField(_("Default Currency Code"), max_length=3, default='INR')
    financial_year_start_month = models.PositiveSmallIntegerField(
        _("Financial Year Start Month"),
        default=_default_fy_start_month,
        choices=[(i, datetime.date(2000, i, 1).strftime('%B')) for i in range(1, 13)],
        help_text=_("The month your company's financial year starts. Document sequences reset on this boundary.")
    )
    timezone_name = models.CharField(
        _("Timezone"),
        max_length=63,
        default='Asia/Kolkata',
        choices=[(tz, tz) for tz in pytz.common_timezones],
        help_text=_("Company's primary operational timezone (e.g., 'Asia/Kolkata').")
    )
    is_active = models.BooleanField(
        _("Tenant Account Active"), default=True,
        help_text=_("Designates whether this tenant account is active and can access the service.")
    )
    is_suspended_by_admin = models.BooleanField(default=False, verbose_name=_("Suspended by Admin"))
    created_at = models.DateTimeField(_("Registered At"), auto_now_add=True)
    updated_at = models.DateTimeField(_("Last Updated"), auto_now=True)

    class Meta:
        verbose_name = _("Company")
        verbose_name_plural = _("Companies")
        ordering = ['name']

    def __str__(self):
        return f"{self.display_name or self.name} ({self.subdomain_prefix})"

    def save(self, *args, **kwargs):
        if not self.display_name:
            self.display_name = self.name
        super().save(*args, **kwargs)

    @property
    def effective_is_active(self):
        return self.is_active and not self.is_suspended_by_admin

    def local_date(self, for_date=None) -> datetime.date:
        """Resolves None or a datetime to the company's local calendar date."""
        try:
            company_tz = pytz.timezone(self.timezone_name)
        except pytz.exceptions.UnknownTimeZoneError:
            company_tz = pytz.utc

        if for_date is None:
            return timezone.localtime(timezone.now(), company_tz).date()
        if isinstance(for_date, datetime.datetime):
            if timezone.is_naive(for_date):
                return for_date.date()
            return timezone.localtime(for_date, company_tz).date()
        if isinstance(for_date, datetime.date):
            return for_date
        raise ValueError("for_date must be a datetime.date or datetime.datetime object")

    def get_financial_year_label(self, for_date=None) -> str:
        return financial_year_label(self.local_date(for_date), self.financial_year_start_month)


class Branch(models.Model):
    company = models.ForeignKey(
        Company,
        verbose_name=_("Company"),
        on_delete=models.CASCADE,
        related_name='branches'
    )
    name = models.CharField(_("Branch Name"), max_length=255)
    prefix = models.CharField(
        _("Document Prefix"),
        max_length=10,
        help_text=_("Short code placed in front of every document number issued by this branch (e.g., 'MUM')."),
        validators=[
            RegexValidator(
                regex=r'^[A-Z0-9]+$',
                message=_("Branch prefix can only contain uppercase letters and digits.")
            )
        ]
    )
    state_code = models.CharField(_("State Code"), max_length=2, blank=True, default='')
    is_default = models.BooleanField(_("Default Branch"), default=False)
    is_active = models.BooleanField(_("Active"), default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Branch")
        verbose_name_plural = _("Branches")
        ordering = ['company__name', 'name']
        constraints = [
            models.UniqueConstraint(fields=['company', 'prefix'], name='branch_unique_prefix_per_company'),
        ]

    def __str__(self):
        return f"{self.name} [{self.prefix}] ({self.company.name})"

    def clean(self):
        super().clean()
        if self.pk and not self.is_active and self.company_id:
            others_active = Branch.objects.filter(company_id=self.company_id, is_active=True).exclude(pk=self.pk)
            if not others_active.exists():
                raise ValidationError({'is_active': _("A company must keep at least one active branch.")})

    def save(self, *args, **kwargs):
        if not kwargs.get('update_fields'):
            self.full_clean()
        if self.is_default:
            Branch.objects.filter(company_id=self.company_id, is_default=True).exclude(pk=self.pk) \
                .update(is_default=False)
        super().save(*args, **kwargs)
