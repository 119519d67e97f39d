from datetime import date
from decimal import Decimal

from crp_core.enums import (
    DocumentType, LedgerEntryType, PaymentDirection, PaymentRecordStatus, PaymentStatus, TransactionStatus,
)
from ledger_engine.commands import AllocationInput, RecordPaymentCommand
from ledger_engine.exceptions import InvalidEntryStatusError, OverAllocationError, ValidationError
from ledger_engine.models import FinancialDocument, JournalEntry, LedgerEntry, Payment
from ledger_engine.services import document_service, payment_service
from ledger_engine.services.party_ledger_service import advance_balance
from .base import LedgerTestCase

PAY_DATE = date(2024, 7, 1)


class PaymentTestCase(LedgerTestCase):

    def record(self, amount, allocations=(), counterparty=None, direction=PaymentDirection.RECEIVED, **kwargs):
        command = RecordPaymentCommand(
            company=self.company, branch=kwargs.pop('branch', self.branch),
            counterparty=counterparty or (self.customer if direction == PaymentDirection.RECEIVED else self.vendor),
            direction=direction.value, amount=Decimal(amount), payment_date=kwargs.pop('payment_date', PAY_DATE),
            allocations=[AllocationInput(document_id=doc.pk, amount=Decimal(value)) for doc, value in allocations],
            **kwargs)
        return payment_service.record_payment(command)

    def latest_ledger_balance(self, counterparty):
        return LedgerEntry.objects.filter(counterparty=counterparty).order_by('-sequence_no').first().balance


class RecordPaymentTests(PaymentTestCase):

    def test_full_allocation_settles_invoice(self):
        invoice = self.create_document('1000', document_date=date(2024, 6, 15))
        payment = self.record('1000', [(invoice, '1000')])

        self.assertEqual(payment.payment_number, 'MUM-PR-0001/24')
        self.assertMoney(payment.allocated_amount, '1000.00')
        self.assertMoney(payment.unallocated_amount, '0.00')
        invoice.refresh_from_db()
        self.assertMoney(invoice.paid_amount, '1000.00')
        self.assertMoney(invoice.balance_amount, '0.00')
        self.assertEqual(invoice.payment_status, PaymentStatus.PAID.value)

        entry = LedgerEntry.objects.filter(counterparty=self.customer).order_by('-sequence_no').first()
        self.assertEqual(entry.entry_type, LedgerEntryType.PAYMENT_RECEIVED.value)
        self.assertMoney(entry.credit_amount, '1000.00')
        self.assertMoney(entry.balance, '0.00')
        self.assertMoney(advance_balance(self.customer), '0.00')

    def test_partial_allocation_marks_invoice_partial(self):
        invoice = self.create_document('1000', document_date=date(2024, 6, 15))
        self.record('400', [(invoice, '400')])
        invoice.refresh_from_db()
        self.assertEqual(invoice.payment_status, PaymentStatus.PARTIAL.value)
        self.assertMoney(invoice.balance_amount, '600.00')
        self.assertMoney(self.latest_ledger_balance(self.customer), '600.00')

    def test_overpayment_becomes_advance(self):
        invoice = self.create_document('1000', document_date=date(2024, 6, 15))
        payment = self.record('1500', [(invoice, '1000')])
        self.assertMoney(payment.unallocated_amount, '500.00')
        self.assertMoney(advance_balance(self.customer), '500.00')
        self.assertMoney(self.latest_ledger_balance(self.customer), '-500.00')

    def test_unallocated_payment_is_recorded_as_advance(self):
        payment = self.record('250')
        self.assertMoney(payment.unallocated_amount, '250.00')
        entry = LedgerEntry.objects.get(counterparty=self.customer)
        self.assertEqual(entry.entry_type, LedgerEntryType.ADVANCE_PAYMENT.value)
        self.assertMoney(entry.balance, '-250.00')
        self.assertMoney(advance_balance(self.customer), '250.00')

    def test_use_advance_covers_allocation_first(self):
        self.record('500')
        invoice = self.create_document('300', document_date=date(2024, 7, 5))
        payment = self.record('100', [(invoice, '300')], use_advance=True, payment_date=date(2024, 7, 6))

        self.assertMoney(payment.advance_used, '300.00')
        self.assertMoney(payment.unallocated_amount, '100.00')
        self.assertMoney(advance_balance(self.customer), '300.00')
        invoice.refresh_from_db()
        self.assertEqual(invoice.payment_status, PaymentStatus.PAID.value)
        self.assertTrue(LedgerEntry.objects.filter(counterparty=self.customer,
                                                   entry_type=LedgerEntryType.ADVANCE_ADJUSTED.value).exists())
        # 500 advance, 300 invoice, 100 more received: we owe the customer 300.
        self.assertMoney(self.latest_ledger_balance(self.customer), '-300.00')

    def test_allocation_beyond_payment_is_rejected(self):
        invoice = self.create_document('1000', document_date=date(2024, 6, 15))
        with self.assertRaises(OverAllocationError):
            self.record('500', [(invoice, '800')])
        self.assertFalse(Payment.objects.exists())
        invoice.refresh_from_db()
        self.assertMoney(invoice.balance_amount, '1000.00')

    def test_allocation_beyond_document_balance_is_rejected(self):
        invoice = self.create_document('100', document_date=date(2024, 6, 15))
        with self.assertRaises(OverAllocationError) as ctx:
            self.record('500', [(invoice, '150')])
        self.assertMoney(ctx.exception.available, '100.00')
        self.assertEqual(LedgerEntry.objects.filter(counterparty=self.customer).count(), 1)

    def test_failed_payment_releases_its_number(self):
        invoice = self.create_document('100', document_date=date(2024, 6, 15))
        with self.assertRaises(OverAllocationError):
            self.record('500', [(invoice, '150')])
        payment = self.record('100', [(invoice, '100')])
        self.assertEqual(payment.payment_number, 'MUM-PR-0001/24')

    def test_payment_to_customer_direction_mismatch(self):
        with self.assertRaises(ValidationError) as ctx:
            self.record('100', counterparty=self.vendor, direction=PaymentDirection.RECEIVED)
        self.assertIn('counterparty', ctx.exception.errors)

    def test_cannot_allocate_to_another_counterpartys_document(self):
        bill = self.create_document('100', document_type=DocumentType.BILL, document_date=date(2024, 6, 15))
        with self.assertRaises(ValidationError) as ctx:
            self.record('100', [(bill, '100')])
        self.assertIn('allocations', ctx.exception.errors)

    def test_payment_made_to_vendor_settles_bill(self):
        bill = self.create_document('800', document_type=DocumentType.BILL, document_date=date(2024, 6, 15))
        payment = self.record('800', [(bill, '800')], direction=PaymentDirection.MADE)
        self.assertEqual(payment.payment_number, 'MUM-PM-0001/24')
        bill.refresh_from_db()
        self.assertEqual(bill.payment_status, PaymentStatus.PAID.value)
        self.assertMoney(self.latest_ledger_balance(self.vendor), '0.00')

    def test_cash_account_posts_journal(self):
        invoice = self.create_document('1000', document_date=date(2024, 6, 15))
        payment = self.record('1000', [(invoice, '1000')], cash_account_id=self.bank.pk)
        journal = JournalEntry.objects.get(pk=payment.journal_entry.pk)
        self.assertEqual(journal.status, TransactionStatus.POSTED.value)
        self.assertEqual(journal.reference_number, payment.payment_number)
        self.bank.refresh_from_db()
        self.receivables.refresh_from_db()
        self.assertMoney(self.bank.current_balance, '1000.00')
        self.assertMoney(self.receivables.current_balance, '-1000.00')

    def test_cash_account_without_control_account_skips_journal(self):
        self.customer.control_account = None
        self.customer.save()
        with self.assertLogs('ledger_engine.services.payment_service', level='WARNING'):
            payment = self.record('100', cash_account_id=self.cash.pk)
        self.assertIsNone(payment.journal_entry)

    def test_paid_invoice_cannot_be_cancelled(self):
        invoice = self.create_document('1000', document_date=date(2024, 6, 15))
        self.record('200', [(invoice, '200')])
        with self.assertRaises(ValidationError) as ctx:
            document_service.cancel_document(self.company, invoice.pk)
        self.assertIn('paid_amount', ctx.exception.errors)


class VoidPaymentTests(PaymentTestCase):

    def test_void_reopens_documents_and_reverses_ledger(self):
        invoice = self.create_document('1000', document_date=date(2024, 6, 15))
        payment = self.record('1000', [(invoice, '1000')], cash_account_id=self.bank.pk)

        voided = payment_service.void_payment(self.company, payment.pk, reason='Cheque bounced')
        self.assertEqual(voided.status, PaymentRecordStatus.VOID.value)
        invoice.refresh_from_db()
        self.assertMoney(invoice.balance_amount, '1000.00')
        self.assertEqual(invoice.payment_status, PaymentStatus.UNPAID.value)

        entry = LedgerEntry.objects.filter(counterparty=self.customer).order_by('-sequence_no').first()
        self.assertEqual(entry.entry_type, LedgerEntryType.PAYMENT_VOIDED.value)
        self.assertMoney(entry.balance, '1000.00')
        self.bank.refresh_from_db()
        self.assertMoney(self.bank.current_balance, '0.00')

    def test_void_takes_remainder_back_out_of_advance(self):
        invoice = self.create_document('1000', document_date=date(2024, 6, 15))
        payment = self.record('1500', [(invoice, '1000')])
        payment_service.void_payment(self.company, payment.pk)
        self.assertMoney(advance_balance(self.customer), '0.00')
        self.assertMoney(self.latest_ledger_balance(self.customer), '1000.00')

    def test_void_floors_consumed_advance_at_zero(self):
        advance_payment = self.record('500')
        invoice = self.create_document('400', document_date=date(2024, 7, 5))
        self.record('1', [(invoice, '400')], use_advance=True, payment_date=date(2024, 7, 6))
        self.assertMoney(advance_balance(self.customer), '101.00')

        with self.assertLogs('ledger_engine.services.payment_service', level='WARNING'):
            payment_service.void_payment(self.company, advance_payment.pk)
        self.assertMoney(advance_balance(self.customer), '0.00')

    def test_void_restores_consumed_advance(self):
        self.record('500')
        invoice = self.create_document('300', document_date=date(2024, 7, 5))
        payment = self.record('50', [(invoice, '300')], use_advance=True, payment_date=date(2024, 7, 6))
        self.assertMoney(advance_balance(self.customer), '250.00')
        payment_service.void_payment(self.company, payment.pk)
        self.assertMoney(advance_balance(self.customer), '500.00')
        self.assertEqual(FinancialDocument.objects.get(pk=invoice.pk).payment_status, PaymentStatus.UNPAID.value)

    def test_void_twice_is_rejected(self):
        payment = self.record('100')
        payment_service.void_payment(self.company, payment.pk)
        with self.assertRaises(InvalidEntryStatusError):
            payment_service.void_payment(self.company, payment.pk)
