from datetime import date
from decimal import Decimal

from company.utils import current_company_context_var, set_current_company, tenant_context
from crp_core.enums import AccountType, PartyType, PaymentDirection
from ledger_engine.commands import AllocationInput, RecordPaymentCommand
from ledger_engine.exceptions import ValidationError
from ledger_engine.models import Account, Counterparty, FinancialDocument
from ledger_engine.services import payment_service, sequence_service
from .base import LedgerTestCase


class TenantIsolationTests(LedgerTestCase):

    def setUp(self):
        super().setUp()
        self.globex = self.make_company('globex', 'Globex Industries', state_code='29')
        with tenant_context(self.globex):
            self.globex_cash = self.make_account('1000', 'Cash', AccountType.ASSET, company=self.globex)
            self.globex_customer = self.make_counterparty('Globex Buyer', PartyType.CUSTOMER, company=self.globex,
                                                          state_code='29')

    def test_default_manager_follows_the_current_company(self):
        self.assertNotIn(self.globex_cash, Account.objects.all())
        self.assertTrue(Account.objects.filter(pk=self.cash.pk).exists())
        with tenant_context(self.globex):
            self.assertEqual(list(Account.objects.all()), [self.globex_cash])

    def test_no_context_sees_nothing_but_global_manager_sees_all(self):
        token = set_current_company(None)
        try:
            self.assertFalse(Account.objects.exists())
            self.assertTrue(Account.global_objects.filter(pk=self.globex_cash.pk).exists())
            self.assertTrue(Account.global_objects.filter(pk=self.cash.pk).exists())
        finally:
            current_company_context_var.reset(token)

    def test_document_for_foreign_counterparty_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.create_document('100', counterparty=self.globex_customer, document_date=date(2024, 6, 15))
        self.assertIn('counterparty', ctx.exception.errors)
        self.assertFalse(FinancialDocument.global_objects.exists())

    def test_foreign_branch_is_rejected(self):
        globex_branch = self.globex.branches.get(prefix='HO')
        with self.assertRaises(ValidationError) as ctx:
            self.create_document('100', branch=globex_branch, document_date=date(2024, 6, 15))
        self.assertIn('branch', ctx.exception.errors)

    def test_payment_cannot_settle_another_companys_document(self):
        command = RecordPaymentCommand(company=self.globex, branch=None, counterparty=self.globex_customer,
                                       direction=PaymentDirection.RECEIVED.value, amount=Decimal('100'),
                                       payment_date=date(2024, 7, 1))
        invoice = self.create_document('100', document_date=date(2024, 6, 15))
        command.allocations = [AllocationInput(document_id=invoice.pk, amount=Decimal('100'))]
        with self.assertRaises(ValidationError) as ctx:
            payment_service.record_payment(command)
        self.assertIn('allocations', ctx.exception.errors)
        invoice.refresh_from_db()
        self.assertMoney(invoice.balance_amount, '100.00')

    def test_sequences_are_per_company(self):
        self.create_document('100', branch=self.head_office, document_date=date(2024, 6, 15))
        allocated = sequence_service.next_number(self.globex, self.globex.branches.get(prefix='HO'), 'invoice',
                                                 date(2024, 6, 15))
        self.assertEqual(allocated.rendered, 'HO-INV-0001/24')

    def test_services_ignore_ambient_context(self):
        # The acme context is active; the service still works inside globex.
        with tenant_context(self.globex):
            names = list(Counterparty.objects.values_list('name', flat=True))
        self.assertEqual(names, ['Globex Buyer'])
        payment = payment_service.record_payment(RecordPaymentCommand(
            company=self.globex, branch=None, counterparty=self.globex_customer,
            direction=PaymentDirection.RECEIVED.value, amount=Decimal('50'), payment_date=date(2024, 7, 1)))
        self.assertEqual(payment.company, self.globex)
        self.assertEqual(payment.payment_number, 'HO-PR-0001/24')

    def test_history_is_recorded(self):
        self.cash.name = 'Main Cash'
        self.cash.save()
        self.assertEqual(self.cash.history.count(), 2)
