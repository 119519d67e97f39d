# crp_core/constants.py

"""
Static defaults shared by the ledger engine: document numbering defaults,
the monetary tolerance used for balance checks and the keyword table the
cash flow classifier starts from. Deployments override the tunable ones
through Django settings (see crp_project/settings.py).
"""

from decimal import Decimal

from .enums import DocumentType, CashFlowCategory

ZERO = Decimal('0.00')

# Absorbs rounding when comparing debit and credit totals or echoed-back tax amounts.
BALANCE_TOLERANCE = Decimal('0.01')

# Share of the credit limit above which a counterparty is reported as "limited".
CREDIT_WARNING_RATIO = Decimal('0.80')

# Money columns are stored with two decimal places.
MAX_CURRENCY_DECIMAL_PLACES = 2

DEFAULT_FY_START_MONTH = 4  # April
DEFAULT_SEQUENCE_MAX_RETRIES = 3
DEFAULT_SEQUENCE_PADDING = 4

# =============================================================================
# Document numbering defaults, applied when a sequence is created lazily
# =============================================================================
DEFAULT_DOCUMENT_PREFIXES = {
    DocumentType.INVOICE.value: 'INV-',
    DocumentType.QUOTATION.value: 'QUO-',
    DocumentType.SALES_ORDER.value: 'SO-',
    DocumentType.PURCHASE_ORDER.value: 'PO-',
    DocumentType.BILL.value: 'BILL-',
    DocumentType.PAYMENT_RECEIVED.value: 'PR-',
    DocumentType.PAYMENT_MADE.value: 'PM-',
    DocumentType.CREDIT_NOTE.value: 'CN-',
    DocumentType.DEBIT_NOTE.value: 'DN-',
    DocumentType.GRN.value: 'GRN-',
}

# =============================================================================
# Cash flow keyword heuristic
# =============================================================================
# Whole-word matches, evaluated in order against the reference type and then the
# narration; the first category with a matching keyword wins, anything else is operating.
DEFAULT_CASH_FLOW_KEYWORDS = (
    (CashFlowCategory.INVESTING.value, ('purchase of', 'sale of', 'asset', 'equipment', 'investment')),
    (CashFlowCategory.FINANCING.value, ('loan', 'capital', 'dividend', 'equity', 'borrowing')),
    (CashFlowCategory.OPERATING.value, ('sales', 'purchase', 'invoice', 'bill', 'receipt', 'payment',
                                        'salary', 'wages', 'rent', 'utility')),
)
