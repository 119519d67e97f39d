# ledger_engine/services/reports_service.py

import logging
import re
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, DefaultDict, Dict, Iterable, List, Optional, Sequence, Tuple, TypedDict

from django.conf import settings
from django.db import models
from django.db.models import Sum, Q
from django.db.models.functions import Coalesce
from django.utils.translation import gettext_lazy as _

from company.models import Company
from company.utils import tenant_context
from crp_core.constants import DEFAULT_CASH_FLOW_KEYWORDS
from crp_core.enums import AccountNature, AccountType, AccountSubType, CashFlowCategory, TransactionStatus
from ..models.coa import Account, CASH_SUBTYPES, signed_delta
from ..models.journal import JournalLine
from .ledger_service import balance_tolerance

logger = logging.getLogger("ledger_engine.services.reports")

ZERO_DECIMAL = Decimal('0.00')
CURRENT_EARNINGS_NAME_DISPLAY = _("Current Earnings (Calculated)")
CURRENT_EARNINGS_ID_PLACEHOLDER = "CURRENT_EARNINGS_CALCULATED"

PK_TYPE = Any


# =============================================================================
# Type Definitions
# =============================================================================

class AccountBalance(TypedDict):
    account_pk: PK_TYPE
    code: str
    name: str
    account_type: str
    account_subtype: str
    account_nature: str
    balance: Decimal


class ReportAccountLine(TypedDict):
    account_pk: PK_TYPE
    code: Optional[str]
    name: str
    amount: Decimal


class CashFlowLine(TypedDict):
    date: date
    account_code: str
    narration: str
    reference_type: str
    reference_number: str
    amount: Decimal


# =============================================================================
# Balance helpers
# =============================================================================

def _posted_line_totals(company: Company, date_filter: Q, account_filter: Optional[Q] = None) \
        -> Dict[PK_TYPE, Tuple[Decimal, Decimal]]:
    """(total_debit, total_credit) per account over posted entries matching the filters."""
    qs = JournalLine.objects.filter(company=company, entry__status=TransactionStatus.POSTED.value).filter(date_filter)
    if account_filter is not None:
        qs = qs.filter(account_filter)
    rows = qs.values('account_id').annotate(
        total_debit=Coalesce(Sum('debit_amount'), ZERO_DECIMAL, output_field=models.DecimalField()),
        total_credit=Coalesce(Sum('credit_amount'), ZERO_DECIMAL, output_field=models.DecimalField()),
    )
    return {row['account_id']: (row['total_debit'], row['total_credit']) for row in rows}


def _account_balances(company: Company, as_of_date: Optional[date]) -> Dict[PK_TYPE, AccountBalance]:
    """
    Balance of every account on its normal side. Without a date this is the running
    current_balance; with one it is opening balance plus posted lines up to that date.
    """
    accounts = list(Account.objects.filter(company=company).order_by('code'))
    totals = {}
    if as_of_date is not None:
        totals = _posted_line_totals(company, Q(entry__entry_date__lte=as_of_date))

    balances: Dict[PK_TYPE, AccountBalance] = {}
    for account in accounts:
        if as_of_date is None:
            balance = account.current_balance
        else:
            debit, credit = totals.get(account.pk, (ZERO_DECIMAL, ZERO_DECIMAL))
            balance = account.opening_balance + signed_delta(account.account_nature, debit, credit)
        balances[account.pk] = {
            'account_pk': account.pk,
            'code': account.code,
            'name': account.name,
            'account_type': account.account_type,
            'account_subtype': account.account_subtype,
            'account_nature': account.account_nature,
            'balance': balance,
        }
    return balances


def _section(balances: Iterable[AccountBalance]) -> Dict[str, Any]:
    lines: List[ReportAccountLine] = [
        {'account_pk': b['account_pk'], 'code': b['code'], 'name': b['name'], 'amount': b['balance']}
        for b in balances if b['balance'] != ZERO_DECIMAL
    ]
    return {'accounts': lines, 'total': sum((line['amount'] for line in lines), ZERO_DECIMAL)}


# =============================================================================
# Trial Balance
# =============================================================================

def trial_balance(company: Company, as_of_date: Optional[date] = None) -> Dict[str, Any]:
    logger.info(f"Generating Trial Balance for Company ID {company.pk} as of {as_of_date or 'now'}")
    with tenant_context(company):
        balances = _account_balances(company, as_of_date)

    entries: List[Dict[str, Any]] = []
    total_debit = total_credit = ZERO_DECIMAL
    for data in balances.values():
        balance = data['balance']
        debit_amount = credit_amount = ZERO_DECIMAL
        if data['account_nature'] == AccountNature.DEBIT.value:
            debit_amount = balance if balance >= ZERO_DECIMAL else ZERO_DECIMAL
            credit_amount = -balance if balance < ZERO_DECIMAL else ZERO_DECIMAL
        else:
            credit_amount = balance if balance >= ZERO_DECIMAL else ZERO_DECIMAL
            debit_amount = -balance if balance < ZERO_DECIMAL else ZERO_DECIMAL

        if debit_amount or credit_amount:
            entries.append({
                'account_pk': data['account_pk'],
                'code': data['code'],
                'name': data['name'],
                'debit': debit_amount,
                'credit': credit_amount,
            })
        total_debit += debit_amount
        total_credit += credit_amount

    difference = abs(total_debit - total_credit)
    is_balanced = difference < balance_tolerance()
    if not is_balanced:
        logger.error(f"Trial Balance for Co ID {company.pk} is OUT OF BALANCE! "
                     f"Debit Total: {total_debit}, Credit Total: {total_credit}, Difference: {difference}")
    return {
        'company_id': company.pk,
        'company_name': company.name,
        'as_of_date': as_of_date,
        'entries': entries,
        'total_debit': total_debit,
        'total_credit': total_credit,
        'difference': difference,
        'is_balanced': is_balanced,
    }


# =============================================================================
# Profit & Loss
# =============================================================================

def profit_and_loss(company: Company, start_date: date, end_date: date) -> Dict[str, Any]:
    """Income, COGS and expenses from posted lines dated between start_date and end_date (inclusive)."""
    logger.info(f"Generating P&L for Company ID {company.pk} from {start_date} to {end_date}")
    pl_types = (AccountType.INCOME.value, AccountType.COST_OF_GOODS_SOLD.value, AccountType.EXPENSE.value)
    with tenant_context(company):
        accounts = {acc.pk: acc for acc in Account.objects.filter(company=company, account_type__in=pl_types)}
        totals = _posted_line_totals(
            company, Q(entry__entry_date__gte=start_date, entry__entry_date__lte=end_date),
            Q(account__account_type__in=pl_types))

    grouped: DefaultDict[str, List[AccountBalance]] = defaultdict(list)
    for account in sorted(accounts.values(), key=lambda a: a.code):
        debit, credit = totals.get(account.pk, (ZERO_DECIMAL, ZERO_DECIMAL))
        grouped[account.account_type].append({
            'account_pk': account.pk, 'code': account.code, 'name': account.name,
            'account_type': account.account_type, 'account_subtype': account.account_subtype,
            'account_nature': account.account_nature,
            # Income counts credit - debit, expense and COGS debit - credit.
            'balance': signed_delta(account.account_nature, debit, credit),
        })

    income = _section(grouped[AccountType.INCOME.value])
    cogs = _section(grouped[AccountType.COST_OF_GOODS_SOLD.value])
    expenses = _section(grouped[AccountType.EXPENSE.value])
    gross_profit = income['total'] - cogs['total']
    return {
        'company_id': company.pk,
        'start_date': start_date,
        'end_date': end_date,
        'income': income,
        'cost_of_goods_sold': cogs,
        'gross_profit': gross_profit,
        'expenses': expenses,
        'net_profit': gross_profit - expenses['total'],
    }


# =============================================================================
# Balance Sheet
# =============================================================================

ASSET_PARTITIONS = (
    ('current', (AccountSubType.CURRENT_ASSET.value, AccountSubType.CASH.value, AccountSubType.BANK.value)),
    ('fixed', (AccountSubType.FIXED_ASSET.value,)),
)
LIABILITY_PARTITIONS = (
    ('current', (AccountSubType.CURRENT_LIABILITY.value,)),
    ('long_term', (AccountSubType.LONG_TERM_LIABILITY.value,)),
)


def _partition(balances: Sequence[AccountBalance], partitions) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    claimed = set()
    for key, subtypes in partitions:
        members = [b for b in balances if b['account_subtype'] in subtypes]
        claimed.update(b['account_pk'] for b in members)
        result[key] = _section(members)
    result['other'] = _section([b for b in balances if b['account_pk'] not in claimed])
    result['total'] = sum((result[key]['total'] for key, _subtypes in partitions), result['other']['total'])
    return result


def balance_sheet(company: Company, as_of_date: Optional[date] = None) -> Dict[str, Any]:
    logger.info(f"Generating Balance Sheet for Company ID {company.pk} as of {as_of_date or 'now'}")
    with tenant_context(company):
        balances = list(_account_balances(company, as_of_date).values())

    by_type: DefaultDict[str, List[AccountBalance]] = defaultdict(list)
    for data in balances:
        by_type[data['account_type']].append(data)

    current_earnings = (sum((b['balance'] for b in by_type[AccountType.INCOME.value]), ZERO_DECIMAL)
                        - sum((b['balance'] for b in by_type[AccountType.COST_OF_GOODS_SOLD.value]), ZERO_DECIMAL)
                        - sum((b['balance'] for b in by_type[AccountType.EXPENSE.value]), ZERO_DECIMAL))

    assets = _partition(by_type[AccountType.ASSET.value], ASSET_PARTITIONS)
    liabilities = _partition(by_type[AccountType.LIABILITY.value], LIABILITY_PARTITIONS)
    equity = _section(by_type[AccountType.EQUITY.value])
    equity['accounts'].append({
        'account_pk': CURRENT_EARNINGS_ID_PLACEHOLDER,
        'code': None,
        'name': str(CURRENT_EARNINGS_NAME_DISPLAY),
        'amount': current_earnings,
    })
    equity['total'] += current_earnings
    equity['current_earnings'] = current_earnings

    difference = assets['total'] - (liabilities['total'] + equity['total'])
    is_balanced = abs(difference) < balance_tolerance()
    if not is_balanced:
        logger.error(f"Balance Sheet for Co ID {company.pk} is OUT OF BALANCE! Assets: {assets['total']}, "
                     f"Liabilities: {liabilities['total']}, Equity: {equity['total']}, Difference: {difference}")
    return {
        'company_id': company.pk,
        'company_name': company.name,
        'as_of_date': as_of_date,
        'assets': assets,
        'liabilities': liabilities,
        'equity': equity,
        'balance_difference': difference,
        'is_balanced': is_balanced,
    }


# =============================================================================
# Cash Flow (direct method, keyword classified)
# =============================================================================

def _cash_flow_keywords() -> Sequence[Tuple[str, Sequence[str]]]:
    return getattr(settings, 'LEDGER_CASH_FLOW_KEYWORDS', DEFAULT_CASH_FLOW_KEYWORDS)


def _match_category(text: str) -> Optional[str]:
    for category, keywords in _cash_flow_keywords():
        if any(re.search(rf"\b{re.escape(keyword)}\b", text) for keyword in keywords):
            return category
    return None


def classify_cash_flow(narration: str, reference_type: str = '') -> str:
    """
    First category with a whole-word keyword in the reference type, then in the narration;
    operating otherwise.
    """
    reference_text = (reference_type or '').replace('_', ' ').lower()
    category = _match_category(reference_text) if reference_text else None
    if category is None:
        category = _match_category((narration or '').lower())
    return category or CashFlowCategory.OPERATING.value


def cash_flow(company: Company, start_date: date, end_date: date) -> Dict[str, Any]:
    """
    Cash and bank movements between start_date and end_date bucketed into operating,
    investing and financing activities.

    The bucketing is a keyword heuristic over entry narrations, so the result carries
    is_approximation=True.
    """
    logger.info(f"Generating Cash Flow for Company ID {company.pk} from {start_date} to {end_date}")
    with tenant_context(company):
        cash_accounts = list(Account.objects.filter(
            company=company, account_type=AccountType.ASSET.value, account_subtype__in=CASH_SUBTYPES))
        opening_date = start_date - timedelta(days=1)
        opening_balance = sum((acc.get_dynamic_balance(date_upto=opening_date) for acc in cash_accounts),
                              ZERO_DECIMAL)
        lines = JournalLine.objects.filter(
            company=company, account__in=cash_accounts, entry__status=TransactionStatus.POSTED.value,
            entry__entry_date__gte=start_date, entry__entry_date__lte=end_date,
        ).select_related('entry', 'account').order_by('entry__entry_date', 'entry__created_at')

        buckets: Dict[str, Dict[str, Any]] = {
            category: {'lines': [], 'net': ZERO_DECIMAL} for category in CashFlowCategory.values
        }
        for line in lines:
            category = classify_cash_flow(line.entry.narration, line.entry.reference_type)
            amount = line.debit_amount - line.credit_amount
            buckets[category]['net'] += amount
            buckets[category]['lines'].append({
                'date': line.entry.entry_date,
                'account_code': line.account.code,
                'narration': line.entry.narration,
                'reference_type': line.entry.reference_type,
                'reference_number': line.entry.reference_number,
                'amount': amount,
            })

    net_change = sum((bucket['net'] for bucket in buckets.values()), ZERO_DECIMAL)
    return {
        'company_id': company.pk,
        'start_date': start_date,
        'end_date': end_date,
        'operating': buckets[CashFlowCategory.OPERATING.value],
        'investing': buckets[CashFlowCategory.INVESTING.value],
        'financing': buckets[CashFlowCategory.FINANCING.value],
        'net_change': net_change,
        'opening_balance': opening_balance,
        'closing_balance': opening_balance + net_change,
        'is_approximation': True,
    }
