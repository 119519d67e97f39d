from decimal import Decimal

from rest_framework import serializers

from crp_core.enums import DocumentType, PartyType, PaymentDirection, TransactionStatus
from ledger_engine.serializers import (
    CreateDocumentSerializer, JournalLineSerializer, PostJournalEntrySerializer, RecordPaymentSerializer,
)
from ledger_engine.services import document_service, ledger_service
from .base import LedgerTestCase


class CreateDocumentSerializerTests(LedgerTestCase):

    def payload(self, **overrides):
        data = {
            'document_type': DocumentType.INVOICE.value,
            'branch_id': self.branch.pk,
            'counterparty_id': str(self.customer.pk),
            'document_date': '2024-06-15',
            'lines': [{'item_ref': 'SKU-1', 'quantity': '2', 'rate': '118', 'tax_rate': '18'}],
            'posting_account_id': str(self.sales.pk),
            'tax_account_id': str(self.gst_payable.pk),
        }
        data.update(overrides)
        return data

    def test_payload_becomes_a_document(self):
        serializer = CreateDocumentSerializer(data=self.payload())
        self.assertTrue(serializer.is_valid(), serializer.errors)
        command = serializer.to_command(self.company)
        self.assertEqual(command.counterparty, self.customer)
        self.assertEqual(command.lines[0].tax_rate, Decimal('18'))

        invoice = document_service.create_document(command)
        self.assertMoney(invoice.total_amount, '236.00')
        self.assertIsNotNone(invoice.journal_entry)

    def test_payment_types_are_not_documents(self):
        serializer = CreateDocumentSerializer(data=self.payload(document_type=DocumentType.PAYMENT_RECEIVED.value))
        self.assertFalse(serializer.is_valid())
        self.assertIn('document_type', serializer.errors)

    def test_lines_are_required(self):
        serializer = CreateDocumentSerializer(data=self.payload(lines=[]))
        self.assertFalse(serializer.is_valid())
        self.assertIn('lines', serializer.errors)

    def test_line_cannot_mix_gst_heads(self):
        lines = [{'quantity': '1', 'rate': '100', 'cgst_rate': '9', 'igst_rate': '18'}]
        serializer = CreateDocumentSerializer(data=self.payload(lines=lines))
        self.assertFalse(serializer.is_valid())
        self.assertIn('lines', serializer.errors)

    def test_due_date_before_document_date(self):
        serializer = CreateDocumentSerializer(data=self.payload(due_date='2024-06-01'))
        self.assertFalse(serializer.is_valid())
        self.assertIn('due_date', serializer.errors)

    def test_counterparty_of_another_company_is_not_found(self):
        globex = self.make_company('globex', 'Globex')
        outsider = self.make_counterparty('Outsider', PartyType.CUSTOMER, company=globex)
        serializer = CreateDocumentSerializer(data=self.payload(counterparty_id=str(outsider.pk)))
        self.assertTrue(serializer.is_valid(), serializer.errors)
        with self.assertRaises(serializers.ValidationError) as ctx:
            serializer.to_command(self.company)
        self.assertIn('counterparty_id', ctx.exception.detail)


class RecordPaymentSerializerTests(LedgerTestCase):

    def test_duplicate_allocations_are_rejected(self):
        invoice = self.create_document('100')
        allocation = {'document_id': str(invoice.pk), 'amount': '50'}
        serializer = RecordPaymentSerializer(data={
            'direction': PaymentDirection.RECEIVED.value, 'counterparty_id': str(self.customer.pk),
            'amount': '100', 'allocations': [allocation, allocation]})
        self.assertFalse(serializer.is_valid())
        self.assertIn('allocations', serializer.errors)

    def test_payload_becomes_a_command(self):
        invoice = self.create_document('100')
        serializer = RecordPaymentSerializer(data={
            'direction': PaymentDirection.RECEIVED.value, 'counterparty_id': str(self.customer.pk),
            'amount': '100.00', 'method': 'upi', 'cash_account_id': str(self.bank.pk),
            'allocations': [{'document_id': str(invoice.pk), 'amount': '100'}]})
        self.assertTrue(serializer.is_valid(), serializer.errors)
        command = serializer.to_command(self.company)
        self.assertEqual(command.method, 'upi')
        self.assertEqual(command.total_allocated, Decimal('100'))
        self.assertIsNone(command.branch)

    def test_amount_must_be_positive(self):
        serializer = RecordPaymentSerializer(data={
            'direction': PaymentDirection.RECEIVED.value, 'counterparty_id': str(self.customer.pk), 'amount': '0'})
        self.assertFalse(serializer.is_valid())
        self.assertIn('amount', serializer.errors)


class JournalSerializerTests(LedgerTestCase):

    def test_line_needs_exactly_one_side(self):
        self.assertFalse(JournalLineSerializer(data={'account_id': str(self.cash.pk)}).is_valid())
        both = JournalLineSerializer(data={'account_id': str(self.cash.pk), 'debit_amount': '1', 'credit_amount': '1'})
        self.assertFalse(both.is_valid())

    def test_entry_needs_two_lines(self):
        serializer = PostJournalEntrySerializer(data={
            'lines': [{'account_id': str(self.cash.pk), 'debit_amount': '10'}]})
        self.assertFalse(serializer.is_valid())
        self.assertIn('lines', serializer.errors)

    def test_payload_posts(self):
        serializer = PostJournalEntrySerializer(data={
            'entry_date': '2024-06-01', 'narration': 'Capital introduced',
            'lines': [{'account_id': str(self.cash.pk), 'debit_amount': '500'},
                      {'account_id': str(self.capital.pk), 'credit_amount': '500'}]})
        self.assertTrue(serializer.is_valid(), serializer.errors)
        entry = ledger_service.post_journal_entry(serializer.to_command(self.company))
        self.assertEqual(entry.status, TransactionStatus.POSTED.value)
        self.cash.refresh_from_db()
        self.assertMoney(self.cash.current_balance, '500.00')
