# ledger_engine/models/coa.py
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, Optional

from django.db import models
from django.db.models import F, Q, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone
from django.utils.translation import gettext_lazy as _
from django.core.exceptions import ValidationError

from crp_core.enums import AccountType, AccountNature, AccountSubType, TransactionStatus
from .base import TenantScopedModel

logger = logging.getLogger(__name__)

# --- Constants ---
# Mapping from AccountType to its inherent AccountNature (Debit or Credit).
ACCOUNT_TYPE_TO_NATURE: Dict[str, str] = {
    AccountType.ASSET.value: AccountNature.DEBIT.value,
    AccountType.LIABILITY.value: AccountNature.CREDIT.value,
    AccountType.EQUITY.value: AccountNature.CREDIT.value,
    AccountType.INCOME.value: AccountNature.CREDIT.value,
    AccountType.EXPENSE.value: AccountNature.DEBIT.value,
    AccountType.COST_OF_GOODS_SOLD.value: AccountNature.DEBIT.value,
}

# Subtypes that make sense for each account type; OTHER is always allowed.
ALLOWED_SUBTYPES: Dict[str, set] = {
    AccountType.ASSET.value: {AccountSubType.CURRENT_ASSET.value, AccountSubType.FIXED_ASSET.value,
                              AccountSubType.CASH.value, AccountSubType.BANK.value},
    AccountType.LIABILITY.value: {AccountSubType.CURRENT_LIABILITY.value, AccountSubType.LONG_TERM_LIABILITY.value},
}

CASH_SUBTYPES = (AccountSubType.CASH.value, AccountSubType.BANK.value)
ZERO_DECIMAL = Decimal('0.00')


def signed_delta(account_nature: str, debit: Decimal, credit: Decimal) -> Decimal:
    """Change in an account's balance caused by a debit/credit pair, per its normal balance side."""
    if account_nature == AccountNature.DEBIT.value:
        return debit - credit
    return credit - debit


class Account(TenantScopedModel):
    """
    An individual account in the Chart of Accounts.

    `current_balance` is a running figure maintained by the ledger service with
    atomic increments as journal entries are posted or cancelled. It is always
    expressed on the account's normal side, so a positive balance on a liability
    means a credit balance.
    """
    code = models.CharField(
        _("Account Code"), max_length=50, db_index=True,
        help_text=_("Identifier code for the account. Must be unique within the company.")
    )
    name = models.CharField(_("Account Name"), max_length=255)
    account_type = models.CharField(
        _("Account Type"), max_length=30, choices=AccountType.choices, db_index=True,
        help_text=_("Fundamental accounting classification (Asset, Liability, etc.).")
    )
    account_subtype = models.CharField(
        _("Account Sub-Type"), max_length=30, choices=AccountSubType.choices,
        default=AccountSubType.OTHER.value, db_index=True,
        help_text=_("Balance sheet grouping. Cash and Bank accounts feed the cash flow statement.")
    )
    account_nature = models.CharField(
        _("Account Nature"), max_length=10, choices=AccountNature.choices, editable=False,
        help_text=_("System-inferred nature (Debit/Credit).")
    )
    opening_balance = models.DecimalField(
        _("Opening Balance"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL,
        help_text=_("Balance brought forward, on the account's normal side.")
    )
    current_balance = models.DecimalField(
        _("Current Balance"), max_digits=20, decimal_places=2, default=ZERO_DECIMAL, editable=False,
        help_text=_("Opening balance plus all posted journal lines. Maintained by the ledger service.")
    )
    balance_last_updated = models.DateTimeField(_("Balance Last Updated"), null=True, blank=True, editable=False)
    is_active = models.BooleanField(_("Account is Active"), default=True, db_index=True)
    allow_direct_posting = models.BooleanField(
        _("Allow Direct Posting"), default=True,
        help_text=_("Can journal entries be posted directly to this account?")
    )

    class Meta:
        verbose_name = _("Account")
        verbose_name_plural = _("Accounts")
        ordering = ['company', 'code']
        constraints = [
            models.UniqueConstraint(fields=['company', 'code'], name='account_unique_code_per_company'),
        ]

    def __str__(self) -> str:
        return f"{self.code} - {self.name}"

    def _set_derived_fields(self):
        inferred = ACCOUNT_TYPE_TO_NATURE.get(self.account_type)
        if inferred:
            self.account_nature = inferred
        if self._state.adding:
            self.current_balance = self.opening_balance or ZERO_DECIMAL

    def clean(self):
        super().clean()
        errors = {}
        if self.account_type and self.account_type not in ACCOUNT_TYPE_TO_NATURE:
            errors['account_type'] = _("Unknown account type '%(type)s'.") % {'type': self.account_type}
        allowed = ALLOWED_SUBTYPES.get(self.account_type, set())
        if self.account_subtype != AccountSubType.OTHER.value and self.account_subtype not in allowed:
            errors['account_subtype'] = _("Sub-type '%(sub)s' is not valid for a %(type)s account.") % {
                'sub': self.account_subtype, 'type': self.account_type}
        if errors:
            raise ValidationError(errors)

    @property
    def is_debit_nature(self) -> bool:
        return self.account_nature == AccountNature.DEBIT.value

    @property
    def is_credit_nature(self) -> bool:
        return self.account_nature == AccountNature.CREDIT.value

    @property
    def is_cash_account(self) -> bool:
        return self.account_type == AccountType.ASSET.value and self.account_subtype in CASH_SUBTYPES

    def get_dynamic_balance(self, date_upto: Optional[date] = None, start_date: Optional[date] = None,
                            include_opening: bool = True) -> Decimal:
        """
        Calculates the balance from posted journal lines instead of the running figure.

        Args:
            date_upto (Optional[date]): Include entries dated on or before this date.
            start_date (Optional[date]): Include entries dated on or after this date.
            include_opening (bool): Add the opening balance (only meaningful without start_date).
        """
        from .journal import JournalLine  # Local import to avoid circular dependencies at module level.

        lines_qs = JournalLine.global_objects.filter(
            account_id=self.pk, entry__status=TransactionStatus.POSTED.value, entry__deleted__isnull=True)
        date_filter = Q()
        if start_date:
            date_filter &= Q(entry__entry_date__gte=start_date)
        if date_upto:
            date_filter &= Q(entry__entry_date__lte=date_upto)
        aggregation = lines_qs.filter(date_filter).aggregate(
            total_debit=Coalesce(Sum('debit_amount'), ZERO_DECIMAL, output_field=models.DecimalField()),
            total_credit=Coalesce(Sum('credit_amount'), ZERO_DECIMAL, output_field=models.DecimalField()),
        )
        balance = signed_delta(self.account_nature, aggregation['total_debit'], aggregation['total_credit'])
        if include_opening and not start_date:
            balance += self.opening_balance
        return balance

    def apply_delta(self, delta: Decimal) -> None:
        """Atomically moves current_balance by `delta` (already signed for this account's nature)."""
        if not delta:
            return
        Account.global_objects.filter(pk=self.pk).update(
            current_balance=F('current_balance') + delta,
            balance_last_updated=timezone.now(),
        )

    def update_stored_balance(self, calculated_balance: Optional[Decimal] = None) -> Decimal:
        """
        Overwrites current_balance with a recalculated figure (maintenance only).
        Returns the drift that was corrected.
        """
        if calculated_balance is None:
            calculated_balance = self.get_dynamic_balance()
        self.refresh_from_db(fields=['current_balance'])
        drift = calculated_balance - self.current_balance
        Account.global_objects.filter(pk=self.pk).update(
            current_balance=calculated_balance, balance_last_updated=timezone.now())
        self.refresh_from_db(fields=['current_balance', 'balance_last_updated'])
        if drift:
            logger.warning(f"Account {self.code} (Co: {self.company_id}) balance drift of {drift} corrected.")
        return drift
