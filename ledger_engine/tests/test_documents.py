from datetime import date
from decimal import Decimal
from unittest import mock

from django.db import DatabaseError

from crp_core.enums import (
    DocumentStatus, DocumentType, GSTType, LedgerEntryType, PartyType, PaymentStatus, StockDirection,
    TransactionStatus,
)
from ledger_engine import signals
from ledger_engine.commands import LineItemInput
from ledger_engine.exceptions import (
    CreditLimitExceededError, InvalidEntryStatusError, PersistenceError, ValidationError,
)
from ledger_engine.models import FinancialDocument, JournalEntry, LedgerEntry, LineItem
from ledger_engine.services import document_service, ledger_service
from .base import LedgerTestCase

DOC_DATE = date(2024, 6, 15)


def taxed_line(quantity='2', rate='118', tax_rate='18', item_ref='SKU-1'):
    return LineItemInput(quantity=Decimal(quantity), rate=Decimal(rate), tax_rate=Decimal(tax_rate),
                         item_ref=item_ref, description='Widget')


class CreateDocumentTests(LedgerTestCase):

    def test_intrastate_invoice_totals_and_number(self):
        invoice = self.create_document(None, lines=[taxed_line()], document_date=DOC_DATE)
        self.assertEqual(invoice.document_number, 'MUM-INV-0001/24')
        self.assertEqual(invoice.place_of_supply, GSTType.INTRASTATE.value)
        self.assertMoney(invoice.subtotal, '200.00')
        self.assertMoney(invoice.cgst_amount, '18.00')
        self.assertMoney(invoice.sgst_amount, '18.00')
        self.assertMoney(invoice.igst_amount, '0.00')
        self.assertMoney(invoice.total_amount, '236.00')
        self.assertMoney(invoice.balance_amount, '236.00')
        self.assertEqual(invoice.payment_status, PaymentStatus.UNPAID.value)

        line = LineItem.objects.get(document=invoice)
        self.assertMoney(line.taxable_amount, '200')
        self.assertEqual(line.cgst_rate, Decimal('9'))
        self.assertEqual(line.line_total, line.taxable_amount + line.cgst_amount + line.sgst_amount + line.igst_amount)

    def test_interstate_customer_gets_igst(self):
        outstation = self.make_counterparty('Bengaluru Mart', PartyType.CUSTOMER, state_code='29')
        invoice = self.create_document(None, counterparty=outstation, lines=[taxed_line()], document_date=DOC_DATE)
        self.assertEqual(invoice.place_of_supply, GSTType.INTERSTATE.value)
        self.assertMoney(invoice.igst_amount, '36.00')
        self.assertMoney(invoice.cgst_amount, '0.00')
        self.assertMoney(invoice.total_amount, '236.00')

    def test_invoice_moves_customer_ledger(self):
        invoice = self.create_document('1000', document_date=DOC_DATE)
        entry = LedgerEntry.objects.get(counterparty=self.customer)
        self.assertEqual(entry.sequence_no, 1)
        self.assertEqual(entry.entry_type, LedgerEntryType.INVOICE.value)
        self.assertMoney(entry.debit_amount, '1000.00')
        self.assertMoney(entry.balance, '1000.00')
        self.assertEqual(entry.document_id, invoice.pk)
        self.customer.refresh_from_db()
        self.assertMoney(self.customer.current_balance, '1000.00')

    def test_bill_raises_what_we_owe_the_vendor(self):
        self.create_document('750', document_type=DocumentType.BILL, document_date=DOC_DATE)
        entry = LedgerEntry.objects.get(counterparty=self.vendor)
        self.assertMoney(entry.credit_amount, '750.00')
        self.assertMoney(entry.balance, '750.00')

    def test_document_discount(self):
        invoice = self.create_document('1000', document_date=DOC_DATE, discount_amount=Decimal('100'))
        self.assertMoney(invoice.discount_amount, '100.00')
        self.assertMoney(invoice.total_amount, '900.00')

    def test_invoice_posts_journal_when_accounts_given(self):
        invoice = self.create_document(None, lines=[taxed_line()], document_date=DOC_DATE,
                                       posting_account_id=self.sales.pk, tax_account_id=self.gst_payable.pk)
        self.assertIsNotNone(invoice.journal_entry)
        entry = JournalEntry.objects.get(pk=invoice.journal_entry.pk)
        self.assertEqual(entry.status, TransactionStatus.POSTED.value)
        self.assertEqual(entry.reference_number, invoice.document_number)
        self.assertMoney(entry.total_debit, '236.00')
        self.assertMoney(entry.total_credit, '236.00')
        for account, expected in ((self.receivables, '236.00'), (self.sales, '200.00'), (self.gst_payable, '36.00')):
            account.refresh_from_db()
            self.assertMoney(account.current_balance, expected)

    def test_taxed_document_without_tax_account_is_rejected_before_numbering(self):
        with self.assertRaises(ValidationError) as ctx:
            self.create_document(None, lines=[taxed_line()], document_date=DOC_DATE, posting_account_id=self.sales.pk)
        self.assertIn('tax_account_id', ctx.exception.errors)
        invoice = self.create_document('10', document_date=DOC_DATE)
        self.assertEqual(invoice.document_number, 'MUM-INV-0001/24')

    def test_default_branch_is_used_when_none_given(self):
        invoice = self.create_document('10', branch=None, document_date=DOC_DATE)
        self.assertEqual(invoice.branch, self.head_office)
        self.assertEqual(invoice.document_number, 'HO-INV-0001/24')

    def test_empty_lines_are_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.create_document(None, lines=[], document_date=DOC_DATE)
        self.assertIn('lines', ctx.exception.errors)

    def test_wrong_party_type_releases_number(self):
        with self.assertRaises(ValidationError) as ctx:
            self.create_document('10', counterparty=self.vendor, document_date=DOC_DATE)
        self.assertIn('counterparty', ctx.exception.errors)
        self.assertFalse(FinancialDocument.objects.exists())
        invoice = self.create_document('10', document_date=DOC_DATE)
        self.assertEqual(invoice.document_number, 'MUM-INV-0001/24')

    def test_database_failure_rolls_back_and_releases_number(self):
        with mock.patch.object(document_service, 'append_entry', side_effect=DatabaseError('connection lost')):
            with self.assertRaises(PersistenceError):
                self.create_document('10', document_date=DOC_DATE)
        self.assertFalse(FinancialDocument.objects.exists())
        self.assertFalse(LineItem.objects.exists())
        invoice = self.create_document('10', document_date=DOC_DATE)
        self.assertEqual(invoice.document_number, 'MUM-INV-0001/24')

    def test_draft_has_no_ledger_effect_until_issued(self):
        draft = self.create_document('500', document_date=DOC_DATE, status=DocumentStatus.DRAFT.value)
        self.assertEqual(draft.status, DocumentStatus.DRAFT.value)
        self.assertFalse(LedgerEntry.objects.filter(counterparty=self.customer).exists())

        issued = document_service.issue_document(self.company, draft.pk)
        self.assertEqual(issued.status, DocumentStatus.ISSUED.value)
        self.assertMoney(LedgerEntry.objects.get(counterparty=self.customer).balance, '500.00')
        with self.assertRaises(InvalidEntryStatusError):
            document_service.issue_document(self.company, draft.pk)


class CreditLimitOnCreateTests(LedgerTestCase):

    def setUp(self):
        super().setUp()
        self.customer.credit_limit = Decimal('1000.00')
        self.customer.save()

    def test_invoice_within_limit_is_accepted(self):
        self.create_document('800', document_date=DOC_DATE)

    def test_invoice_beyond_limit_is_rejected_without_consuming_a_number(self):
        self.create_document('800', document_date=DOC_DATE)
        with self.assertRaises(CreditLimitExceededError) as ctx:
            self.create_document('300', document_date=DOC_DATE)
        self.assertMoney(ctx.exception.outstanding, '800.00')
        self.assertMoney(ctx.exception.available, '200.00')
        following = self.create_document('100', document_date=DOC_DATE)
        self.assertEqual(following.document_number, 'MUM-INV-0002/24')

    def test_override_allows_breach(self):
        self.create_document('800', document_date=DOC_DATE)
        invoice = self.create_document('300', document_date=DOC_DATE, credit_override=True)
        self.assertMoney(invoice.total_amount, '300.00')


class CancelDocumentTests(LedgerTestCase):

    def test_cancel_reverses_ledger_and_journal(self):
        invoice = self.create_document('1000', document_date=DOC_DATE, posting_account_id=self.sales.pk)
        cancelled = document_service.cancel_document(self.company, invoice.pk, reason='Duplicate')
        self.assertEqual(cancelled.status, DocumentStatus.CANCELLED.value)
        self.assertEqual(cancelled.cancellation_reason, 'Duplicate')

        reversal = LedgerEntry.objects.filter(counterparty=self.customer).order_by('-sequence_no').first()
        self.assertEqual(reversal.entry_type, LedgerEntryType.DOCUMENT_CANCELLED.value)
        self.assertMoney(reversal.credit_amount, '1000.00')
        self.assertMoney(reversal.balance, '0.00')

        journal = JournalEntry.objects.get(pk=invoice.journal_entry.pk)
        self.assertEqual(journal.status, TransactionStatus.CANCELLED.value)
        self.sales.refresh_from_db()
        self.receivables.refresh_from_db()
        self.assertMoney(self.sales.current_balance, '0.00')
        self.assertMoney(self.receivables.current_balance, '0.00')

    def test_cancel_twice_is_rejected(self):
        invoice = self.create_document('1000', document_date=DOC_DATE)
        document_service.cancel_document(self.company, invoice.pk)
        with self.assertRaises(InvalidEntryStatusError):
            document_service.cancel_document(self.company, invoice.pk)

    def test_journal_cancelled_directly_is_not_reversed_again(self):
        invoice = self.create_document('1000', document_date=DOC_DATE, posting_account_id=self.sales.pk)
        ledger_service.cancel_journal_entry(self.company, invoice.journal_entry.pk, reason='Posted in error')
        cancelled = document_service.cancel_document(self.company, invoice.pk)
        self.assertEqual(cancelled.status, DocumentStatus.CANCELLED.value)
        self.sales.refresh_from_db()
        self.receivables.refresh_from_db()
        self.assertMoney(self.sales.current_balance, '0.00')
        self.assertMoney(self.receivables.current_balance, '0.00')

    def test_cancel_draft_leaves_ledger_untouched(self):
        draft = self.create_document('1000', document_date=DOC_DATE, status=DocumentStatus.DRAFT.value)
        document_service.cancel_document(self.company, draft.pk)
        self.assertFalse(LedgerEntry.objects.filter(counterparty=self.customer).exists())


class DocumentSignalTests(LedgerTestCase):

    def setUp(self):
        super().setUp()
        self.document_events = []
        self.stock_events = []

        def on_document(sender, company, document, action, **kwargs):
            self.document_events.append((document.document_number, action))

        def on_stock(sender, company, item_ref, quantity, direction, document, **kwargs):
            self.stock_events.append((item_ref, quantity, direction))

        signals.document_committed.connect(on_document, weak=False, dispatch_uid='test_on_document')
        signals.stock_movement_intent.connect(on_stock, weak=False, dispatch_uid='test_on_stock')
        self.addCleanup(signals.document_committed.disconnect, dispatch_uid='test_on_document')
        self.addCleanup(signals.stock_movement_intent.disconnect, dispatch_uid='test_on_stock')

    def test_signals_fire_only_after_commit(self):
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            self.create_document(None, lines=[taxed_line(quantity='3')], document_date=DOC_DATE)
        self.assertEqual(self.document_events, [])
        self.assertTrue(callbacks)

    def test_invoice_announces_outgoing_stock_and_cancel_reverses_it(self):
        with self.captureOnCommitCallbacks(execute=True):
            invoice = self.create_document(None, lines=[taxed_line(quantity='3'),
                                                        taxed_line(quantity='1', item_ref='')],
                                           document_date=DOC_DATE)
        self.assertEqual(self.document_events, [(invoice.document_number, 'created')])
        self.assertEqual(self.stock_events, [('SKU-1', Decimal('3'), StockDirection.OUT.value)])

        with self.captureOnCommitCallbacks(execute=True):
            document_service.cancel_document(self.company, invoice.pk)
        self.assertEqual(self.document_events[-1], (invoice.document_number, 'cancelled'))
        self.assertEqual(self.stock_events[-1], ('SKU-1', Decimal('3'), StockDirection.IN.value))

    def test_bill_announces_incoming_stock(self):
        with self.captureOnCommitCallbacks(execute=True):
            self.create_document('40', document_type=DocumentType.BILL, quantity='5', document_date=DOC_DATE)
        self.assertEqual(self.stock_events, [('SKU-1', Decimal('5'), StockDirection.IN.value)])

    def test_failing_receiver_is_logged_not_raised(self):
        def broken(sender, **kwargs):
            raise RuntimeError("renderer down")

        signals.document_committed.connect(broken, weak=False, dispatch_uid='test_broken')
        self.addCleanup(signals.document_committed.disconnect, dispatch_uid='test_broken')
        with self.assertLogs('ledger_engine.signals', level='ERROR'):
            with self.captureOnCommitCallbacks(execute=True):
                invoice = self.create_document('10', document_date=DOC_DATE)
        self.assertTrue(FinancialDocument.objects.filter(pk=invoice.pk).exists())


class CounterpartyStatementTests(LedgerTestCase):

    def test_statement_runs_balance_from_opening(self):
        self.customer.opening_balance = Decimal('250.00')
        self.customer.save()
        self.create_document('1000', document_date=date(2024, 6, 1))
        self.create_document('500', document_date=date(2024, 7, 1))

        statement = document_service.counterparty_statement(self.company, self.customer.pk,
                                                            start_date=date(2024, 6, 15))
        self.assertMoney(statement['opening_balance'], '1250.00')
        self.assertEqual(len(statement['entries']), 1)
        self.assertMoney(statement['closing_balance'], '1750.00')
