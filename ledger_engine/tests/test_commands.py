from datetime import date
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError

from ledger_engine.commands import JournalLineInput, PostJournalEntryCommand
from ledger_engine.models import Account, Counterparty
from ledger_engine.services import ledger_service
from .base import LedgerTestCase


class RebuildLedgerBalancesTests(LedgerTestCase):

    def setUp(self):
        super().setUp()
        ledger_service.post_journal_entry(PostJournalEntryCommand(
            company=self.company, entry_date=date(2024, 6, 1),
            lines=[JournalLineInput(account_id=self.cash.pk, debit_amount=Decimal('500')),
                   JournalLineInput(account_id=self.capital.pk, credit_amount=Decimal('500'))]))
        self.create_document('300', document_date=date(2024, 6, 15))
        # Simulate drift in both caches.
        Account.global_objects.filter(pk=self.cash.pk).update(current_balance=Decimal('999.00'))
        Counterparty.global_objects.filter(pk=self.customer.pk).update(current_balance=Decimal('1.00'))

    def run_command(self, *args):
        out = StringIO()
        call_command('rebuild_ledger_balances', *args, stdout=out, stderr=StringIO())
        return out.getvalue()

    def test_dry_run_reports_without_writing(self):
        output = self.run_command('--companies', str(self.company.pk), '--dry-run')
        self.assertIn('drift -499.00', output)
        self.assertIn('would be corrected', output)
        self.cash.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertMoney(self.cash.current_balance, '999.00')
        self.assertMoney(self.customer.current_balance, '1.00')

    def test_rebuild_corrects_drift(self):
        output = self.run_command('--all')
        self.assertIn('1 account(s) corrected', output)
        self.assertIn('1 counterparty cache(s) corrected', output)
        self.cash.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertMoney(self.cash.current_balance, '500.00')
        self.assertMoney(self.customer.current_balance, '300.00')

    def test_non_numeric_company_ids_are_rejected(self):
        with self.assertRaises(CommandError):
            self.run_command('--companies', 'acme')

    def test_a_target_is_required(self):
        with self.assertRaises(CommandError):
            self.run_command()
