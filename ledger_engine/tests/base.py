from decimal import Decimal

from django.test import TestCase

from company.models import Branch, Company
from company.utils import current_company_context_var, set_current_company
from crp_core.enums import AccountSubType, AccountType, DocumentType, PartyType
from ledger_engine.commands import CreateDocumentCommand, LineItemInput
from ledger_engine.models import Account, Counterparty
from ledger_engine.services import document_service


class LedgerTestCase(TestCase):
    """
    One company (Maharashtra, state 27) with a Mumbai branch, a small chart of
    accounts and a customer and a vendor wired to control accounts.
    """

    def setUp(self):
        self.company = Company.objects.create(subdomain_prefix='acme', name='Acme Traders', state_code='27')
        self.head_office = self.company.branches.get(prefix='HO')
        self.branch = Branch.objects.create(company=self.company, name='Mumbai', prefix='MUM', state_code='27')
        token = set_current_company(self.company)
        self.addCleanup(current_company_context_var.reset, token)

        self.cash = self.make_account('1000', 'Cash in Hand', AccountType.ASSET, AccountSubType.CASH)
        self.bank = self.make_account('1010', 'HDFC Current Account', AccountType.ASSET, AccountSubType.BANK)
        self.receivables = self.make_account('1100', 'Sundry Debtors', AccountType.ASSET,
                                             AccountSubType.CURRENT_ASSET)
        self.equipment = self.make_account('1500', 'Office Equipment', AccountType.ASSET, AccountSubType.FIXED_ASSET)
        self.payables = self.make_account('2000', 'Sundry Creditors', AccountType.LIABILITY,
                                          AccountSubType.CURRENT_LIABILITY)
        self.gst_payable = self.make_account('2100', 'GST Payable', AccountType.LIABILITY,
                                             AccountSubType.CURRENT_LIABILITY)
        self.loan = self.make_account('2500', 'Term Loan', AccountType.LIABILITY, AccountSubType.LONG_TERM_LIABILITY)
        self.capital = self.make_account('3000', 'Owner Capital', AccountType.EQUITY)
        self.sales = self.make_account('4000', 'Sales', AccountType.INCOME)
        self.purchases = self.make_account('5000', 'Purchases', AccountType.COST_OF_GOODS_SOLD)
        self.rent = self.make_account('6000', 'Rent', AccountType.EXPENSE)

        self.customer = self.make_counterparty('Ravi Stores', PartyType.CUSTOMER, control_account=self.receivables)
        self.vendor = self.make_counterparty('Supreme Supplies', PartyType.VENDOR, control_account=self.payables)

    def make_company(self, prefix, name, state_code='27'):
        return Company.objects.create(subdomain_prefix=prefix, name=name, state_code=state_code)

    def make_account(self, code, name, account_type, subtype=AccountSubType.OTHER, company=None,
                     opening_balance=Decimal('0.00')):
        account = Account(company=company or self.company, code=code, name=name, account_type=account_type.value,
                          account_subtype=subtype.value, opening_balance=opening_balance)
        account.save()
        return account

    def make_counterparty(self, name, party_type, company=None, state_code='27', **kwargs):
        counterparty = Counterparty(company=company or self.company, name=name, party_type=party_type.value,
                                    state_code=state_code, **kwargs)
        counterparty.save()
        return counterparty

    def create_document(self, rate, document_type=DocumentType.INVOICE, counterparty=None, quantity='1',
                        lines=None, **kwargs):
        """Creates a document through the service. A single untaxed line of `rate` unless lines are given."""
        if lines is None:
            lines = [LineItemInput(quantity=Decimal(quantity), rate=Decimal(rate), item_ref='SKU-1')]
        if counterparty is None:
            vendor_types = (DocumentType.BILL, DocumentType.PURCHASE_ORDER, DocumentType.DEBIT_NOTE, DocumentType.GRN)
            counterparty = self.vendor if document_type in vendor_types else self.customer
        command = CreateDocumentCommand(
            company=self.company, branch=kwargs.pop('branch', self.branch), counterparty=counterparty,
            document_type=document_type.value, lines=lines, **kwargs)
        return document_service.create_document(command)

    def assertMoney(self, actual, expected):
        self.assertEqual(Decimal(actual), Decimal(expected))
