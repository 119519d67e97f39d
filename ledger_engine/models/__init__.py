from .base import TenantScopedModel
from .coa import Account
from .journal import JournalEntry, JournalLine
from .sequence import DocumentSequence
from .party import Counterparty, CounterpartyAdvance, LedgerEntry
from .documents import FinancialDocument, LineItem
from .payments import Payment, Allocation

__all__ = [
    'TenantScopedModel',
    'Account',
    'JournalEntry', 'JournalLine',
    'DocumentSequence',
    'Counterparty', 'CounterpartyAdvance', 'LedgerEntry',
    'FinancialDocument', 'LineItem',
    'Payment', 'Allocation',
]
