from datetime import date
from unittest import mock

from django.db import DatabaseError
from django.test import override_settings

from crp_core.enums import DocumentType, SequenceResetPolicy
from ledger_engine.exceptions import ConcurrencyError, PersistenceError, ValidationError
from ledger_engine.models import DocumentSequence
from ledger_engine.models.sequence import parse_document_number, render_document_number
from ledger_engine.services import sequence_service
from .base import LedgerTestCase

INVOICE = DocumentType.INVOICE.value
IN_FY_2024 = date(2024, 6, 15)


class RenderParseTests(LedgerTestCase):

    def test_render_full_number(self):
        self.assertEqual(render_document_number(7, prefix='INV-', padding=4, branch_prefix='MUM', short_year='24'),
                         'MUM-INV-0007/24')

    def test_render_without_branch_or_year(self):
        self.assertEqual(render_document_number(42, prefix='PO-', padding=3), 'PO-042')

    def test_render_rejects_non_positive_numbers(self):
        with self.assertRaises(ValueError):
            render_document_number(0, prefix='INV-')

    def test_parse_with_known_prefix(self):
        parsed = parse_document_number('MUM-INV-0007/24', prefix='INV-')
        self.assertEqual(parsed.branch_prefix, 'MUM')
        self.assertEqual(parsed.prefix, 'INV-')
        self.assertEqual(parsed.number, 7)
        self.assertEqual(parsed.short_year, '24')

    def test_parse_generic(self):
        parsed = parse_document_number('MUM-BILL-0012-A/25')
        self.assertEqual(parsed.branch_prefix, 'MUM')
        self.assertEqual(parsed.number, 12)
        self.assertEqual(parsed.suffix, '-A')
        self.assertEqual(parsed.short_year, '25')

    def test_round_trip_through_sequence(self):
        sequence = DocumentSequence(company=self.company, branch=self.branch, document_type=INVOICE,
                                    prefix='INV-', suffix='-X', padding=5, financial_year='2024-25')
        for number in (1, 99, 123456):
            rendered = sequence.render_number(number)
            parsed = sequence.parse_number(rendered)
            self.assertEqual((parsed.branch_prefix, parsed.prefix, parsed.number, parsed.suffix, parsed.short_year),
                             ('MUM', 'INV-', number, '-X', '24'))

    def test_parse_rejects_garbage(self):
        with self.assertRaises(ValueError):
            parse_document_number('INV-ABC', prefix='INV-')


class NextNumberTests(LedgerTestCase):

    def make_sequence(self, current_number=1, financial_year='2024-25', **kwargs):
        sequence = DocumentSequence(company=self.company, branch=self.branch, document_type=INVOICE,
                                    prefix='INV-', padding=4, current_number=current_number,
                                    financial_year=financial_year, **kwargs)
        sequence.save()
        return sequence

    def test_issues_current_number_and_advances(self):
        sequence = self.make_sequence(current_number=7)
        allocated = sequence_service.next_number(self.company, self.branch, INVOICE, IN_FY_2024)
        self.assertEqual(allocated.rendered, 'MUM-INV-0007/24')
        self.assertEqual(allocated.number, 7)
        sequence.refresh_from_db()
        self.assertEqual(sequence.current_number, 8)

    def test_sequence_is_created_lazily_with_default_prefix(self):
        allocated = sequence_service.next_number(self.company, self.branch, DocumentType.BILL.value, IN_FY_2024)
        self.assertEqual(allocated.rendered, 'MUM-BILL-0001/24')
        self.assertTrue(DocumentSequence.objects.filter(branch=self.branch, document_type='bill').exists())

    def test_branches_number_independently(self):
        first = sequence_service.next_number(self.company, self.branch, INVOICE, IN_FY_2024)
        other = sequence_service.next_number(self.company, self.head_office, INVOICE, IN_FY_2024)
        self.assertEqual(first.rendered, 'MUM-INV-0001/24')
        self.assertEqual(other.rendered, 'HO-INV-0001/24')

    def test_yearly_sequence_restarts_in_new_financial_year(self):
        sequence = self.make_sequence(current_number=57, financial_year='2023-24')
        allocated = sequence_service.next_number(self.company, self.branch, INVOICE, IN_FY_2024)
        self.assertEqual(allocated.rendered, 'MUM-INV-0001/24')
        sequence.refresh_from_db()
        self.assertEqual(sequence.current_number, 2)
        self.assertEqual(sequence.financial_year, '2024-25')

    def test_backdated_draw_continues_current_counter(self):
        sequence = self.make_sequence(current_number=5, financial_year='2024-25')
        allocated = sequence_service.next_number(self.company, self.branch, INVOICE, date(2024, 1, 10))
        self.assertEqual(allocated.number, 5)
        self.assertEqual(allocated.financial_year, '2024-25')
        sequence.refresh_from_db()
        self.assertEqual(sequence.current_number, 6)

    def test_never_reset_policy_keeps_counting(self):
        sequence = self.make_sequence(current_number=57, financial_year='2023-24',
                                      reset_policy=SequenceResetPolicy.NONE.value)
        allocated = sequence_service.next_number(self.company, self.branch, INVOICE, IN_FY_2024)
        self.assertEqual(allocated.rendered, 'MUM-INV-0057/24')
        sequence.refresh_from_db()
        self.assertEqual(sequence.current_number, 58)

    def test_inactive_sequence_is_rejected(self):
        self.make_sequence(is_active=False)
        with self.assertRaises(ValidationError):
            sequence_service.next_number(self.company, self.branch, INVOICE, IN_FY_2024)

    def test_foreign_branch_is_rejected(self):
        other = self.make_company('globex', 'Globex')
        with self.assertRaises(ValidationError):
            sequence_service.next_number(self.company, other.branches.get(), INVOICE, IN_FY_2024)

    def test_unknown_document_type_is_rejected(self):
        with self.assertRaises(ValidationError):
            sequence_service.next_number(self.company, self.branch, 'receipt_voucher', IN_FY_2024)

    def test_competing_draws_never_duplicate(self):
        self.make_sequence(current_number=1)
        real_cas = sequence_service._compare_and_swap
        competitor_numbers = []
        calls = {'count': 0}

        def racing_cas(sequence_pk, expected_number, expected_year, new_values):
            # Every other attempt, another writer commits its own draw from the same read first.
            calls['count'] += 1
            if calls['count'] % 2 == 1:
                self.assertTrue(real_cas(sequence_pk, expected_number, expected_year, dict(new_values)))
                competitor_numbers.append(new_values['current_number'] - 1)
            return real_cas(sequence_pk, expected_number, expected_year, new_values)

        with mock.patch.object(sequence_service, '_compare_and_swap', side_effect=racing_cas):
            ours = [sequence_service.next_number(self.company, self.branch, INVOICE, IN_FY_2024) for _i in range(50)]

        issued = [a.number for a in ours] + competitor_numbers
        self.assertEqual(len(issued), 100)
        self.assertEqual(sorted(issued), list(range(1, 101)))
        self.assertEqual(len({a.rendered for a in ours}), 50)

    def test_exhausted_retries_raise_concurrency_error(self):
        sequence = self.make_sequence(current_number=3)
        with override_settings(LEDGER_SEQUENCE_MAX_RETRIES=2), \
                mock.patch.object(sequence_service, '_compare_and_swap', return_value=False) as cas:
            with self.assertRaises(ConcurrencyError) as ctx:
                sequence_service.next_number(self.company, self.branch, INVOICE, IN_FY_2024)
        self.assertEqual(cas.call_count, 2)
        self.assertEqual(ctx.exception.attempts, 2)
        self.assertTrue(ctx.exception.retryable)
        sequence.refresh_from_db()
        self.assertEqual(sequence.current_number, 3)

    def test_database_failure_becomes_persistence_error(self):
        self.make_sequence()
        with mock.patch.object(sequence_service, '_compare_and_swap', side_effect=DatabaseError('disk I/O error')):
            with self.assertRaises(PersistenceError) as ctx:
                sequence_service.next_number(self.company, self.branch, INVOICE, IN_FY_2024)
        self.assertIsInstance(ctx.exception.original, DatabaseError)


class ReleaseAndConfigureTests(LedgerTestCase):

    def test_release_gives_number_back(self):
        allocated = sequence_service.next_number(self.company, self.branch, INVOICE, IN_FY_2024)
        self.assertTrue(sequence_service.release_number(allocated))
        again = sequence_service.next_number(self.company, self.branch, INVOICE, IN_FY_2024)
        self.assertEqual(again.rendered, allocated.rendered)

    def test_release_after_later_draw_leaves_gap(self):
        first = sequence_service.next_number(self.company, self.branch, INVOICE, IN_FY_2024)
        second = sequence_service.next_number(self.company, self.branch, INVOICE, IN_FY_2024)
        self.assertFalse(sequence_service.release_number(first))
        third = sequence_service.next_number(self.company, self.branch, INVOICE, IN_FY_2024)
        self.assertEqual(third.number, second.number + 1)

    def test_preview_does_not_consume(self):
        preview = sequence_service.preview_next_number(self.company, self.branch, INVOICE, IN_FY_2024)
        allocated = sequence_service.next_number(self.company, self.branch, INVOICE, IN_FY_2024)
        self.assertEqual(preview, allocated.rendered)

    def test_configure_prefix_and_start(self):
        sequence_service.configure_sequence(self.company, self.branch, INVOICE, prefix='SI/', padding=3,
                                            current_number=100)
        sequence = DocumentSequence.objects.get(branch=self.branch, document_type=INVOICE)
        self.assertEqual(sequence.prefix, 'SI/')
        self.assertEqual(sequence.current_number, 100)

    def test_configure_cannot_move_counter_back(self):
        sequence_service.configure_sequence(self.company, self.branch, INVOICE, current_number=10)
        with self.assertRaises(ValidationError):
            sequence_service.configure_sequence(self.company, self.branch, INVOICE, current_number=5)

    def test_configure_rejects_unknown_fields(self):
        with self.assertRaises(ValidationError) as ctx:
            sequence_service.configure_sequence(self.company, self.branch, INVOICE, financial_year='2020-21')
        self.assertIn('financial_year', ctx.exception.errors)
