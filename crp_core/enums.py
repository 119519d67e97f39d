# crp_core/enums.py

from django.db import models
from django.utils.translation import gettext_lazy as _

# -------------------- CORE ACCOUNTING CLASSIFICATIONS --------------------

class AccountType(models.TextChoices):
    """
    Fundamental accounting classification for an Account.
    Determines the account's role in financial statements (Balance Sheet or P&L)
    and, through AccountNature, which side increases its balance.
    """
    ASSET     = 'ASSET', _('Asset')         # Resources owned (Cash, AR, Buildings)
    LIABILITY = 'LIABILITY', _('Liability')     # Obligations owed (AP, Loans, GST payable)
    EQUITY    = 'EQUITY', _('Equity')        # Owner's stake (Capital, Retained Earnings)
    INCOME    = 'INCOME', _('Income')        # Revenues from operations (Sales, Service Revenue)
    EXPENSE   = 'EXPENSE', _('Expense')       # Costs incurred (Salaries, Rent, Utilities)
    COST_OF_GOODS_SOLD = 'COGS', _('Cost of Goods Sold') # Direct costs of goods/services sold


class AccountNature(models.TextChoices):
    """Normal balance side of an account. Derived from AccountType, never entered."""
    DEBIT  = 'DEBIT', _('Debit')    # Assets, Expenses, COGS
    CREDIT = 'CREDIT', _('Credit')   # Liabilities, Equity, Income


class AccountSubType(models.TextChoices):
    """
    Balance sheet partition of an account. CASH and BANK also mark the accounts
    the cash flow statement is built from.
    """
    CURRENT_ASSET = 'CURRENT_ASSET', _('Current Asset')
    FIXED_ASSET = 'FIXED_ASSET', _('Fixed Asset')
    CASH = 'CASH', _('Cash')
    BANK = 'BANK', _('Bank')
    CURRENT_LIABILITY = 'CURRENT_LIABILITY', _('Current Liability')
    LONG_TERM_LIABILITY = 'LONG_TERM_LIABILITY', _('Long-Term Liability')
    OTHER = 'OTHER', _('Other')


class TransactionStatus(models.TextChoices):
    """
    Workflow status of a JournalEntry.
    Only POSTED entries affect account balances and reports.
    """
    DRAFT = 'DRAFT', _('Draft')                 # Freely replaceable, no ledger impact
    POSTED = 'POSTED', _('Posted')               # Impacts balances, immutable except cancellation
    CANCELLED = 'CANCELLED', _('Cancelled')       # Voided, balance impact reversed


class BalanceType(models.TextChoices):
    """Side on which an opening balance sits."""
    DEBIT = 'DEBIT', _('Dr')
    CREDIT = 'CREDIT', _('Cr')

# -------------------- PARTY & TAX --------------------

class PartyType(models.TextChoices):
    """Classifies the counterparty of a financial document or payment."""
    CUSTOMER = 'CUSTOMER', _('Customer') # Buys goods/services from us
    VENDOR = 'VENDOR', _('Vendor')       # Sells goods/services to us


class GSTType(models.TextChoices):
    """
    Place-of-supply classification. Intrastate supplies carry CGST + SGST,
    interstate supplies carry IGST.
    """
    INTRASTATE = 'INTRASTATE', _('Intrastate (CGST + SGST)')
    INTERSTATE = 'INTERSTATE', _('Interstate (IGST)')


class CreditStatus(models.TextChoices):
    UNLIMITED = 'unlimited', _('Unlimited')
    AVAILABLE = 'available', _('Available')
    LIMITED = 'limited', _('Limited')
    EXCEEDED = 'exceeded', _('Exceeded')

# -------------------- DOCUMENTS & NUMBERING --------------------

class DocumentType(models.TextChoices):
    """
    Every numbered document type. Each one has its own DocumentSequence per branch.
    PAYMENT_RECEIVED and PAYMENT_MADE number Payment rows, the rest number FinancialDocuments.
    """
    INVOICE = 'invoice', _('Sales Invoice')
    QUOTATION = 'quotation', _('Quotation')
    SALES_ORDER = 'sales_order', _('Sales Order')
    PURCHASE_ORDER = 'purchase_order', _('Purchase Order')
    BILL = 'bill', _('Vendor Bill')
    PAYMENT_RECEIVED = 'payment_received', _('Payment Received')
    PAYMENT_MADE = 'payment_made', _('Payment Made')
    CREDIT_NOTE = 'credit_note', _('Credit Note')
    DEBIT_NOTE = 'debit_note', _('Debit Note')
    GRN = 'grn', _('Goods Receipt Note')


class SequenceResetPolicy(models.TextChoices):
    NONE = 'none', _('Never Reset')
    YEARLY = 'yearly', _('Reset Every Financial Year')


class DocumentStatus(models.TextChoices):
    DRAFT = 'draft', _('Draft')
    ISSUED = 'issued', _('Issued')
    CANCELLED = 'cancelled', _('Cancelled')


class PaymentStatus(models.TextChoices):
    """Settlement state of a FinancialDocument, derived from paid_amount and balance_amount."""
    UNPAID = 'unpaid', _('Unpaid')
    PARTIAL = 'partial', _('Partially Paid')
    PAID = 'paid', _('Paid')

# -------------------- PAYMENTS & COUNTERPARTY LEDGER --------------------

class PaymentDirection(models.TextChoices):
    RECEIVED = 'received', _('Received from Customer')
    MADE = 'made', _('Made to Vendor')


class PaymentMethod(models.TextChoices):
    CASH = 'cash', _('Cash')
    BANK_TRANSFER = 'bank_transfer', _('Bank Transfer')
    CHEQUE = 'cheque', _('Cheque')
    UPI = 'upi', _('UPI')
    CARD = 'card', _('Card')
    OTHER = 'other', _('Other')


class PaymentRecordStatus(models.TextChoices):
    COMPLETED = 'completed', _('Completed')
    VOID = 'void', _('Void')


class LedgerEntryType(models.TextChoices):
    """Kind of movement recorded in a counterparty's running ledger."""
    INVOICE = 'invoice', _('Invoice')
    BILL = 'bill', _('Bill')
    CREDIT_NOTE = 'credit_note', _('Credit Note')
    DEBIT_NOTE = 'debit_note', _('Debit Note')
    PAYMENT_RECEIVED = 'payment_received', _('Payment Received')
    PAYMENT_MADE = 'payment_made', _('Payment Made')
    ADVANCE_PAYMENT = 'advance_payment', _('Advance Payment')
    ADVANCE_ADJUSTED = 'advance_adjusted', _('Advance Adjusted')
    DOCUMENT_CANCELLED = 'document_cancelled', _('Document Cancelled')
    PAYMENT_VOIDED = 'payment_voided', _('Payment Voided')

# -------------------- INVENTORY & REPORTING --------------------

class StockDirection(models.TextChoices):
    IN = 'in', _('Stock In')
    OUT = 'out', _('Stock Out')


class CashFlowCategory(models.TextChoices):
    OPERATING = 'operating', _('Operating Activities')
    INVESTING = 'investing', _('Investing Activities')
    FINANCING = 'financing', _('Financing Activities')
