import datetime

from django.core.exceptions import ValidationError
from django.test import TestCase, SimpleTestCase

from crp_core.utils import financial_year_bounds, financial_year_label, short_year
from .models import Company, Branch
from .utils import get_current_company, tenant_context


class FinancialYearTests(SimpleTestCase):

    def test_april_start(self):
        self.assertEqual(financial_year_label(datetime.date(2024, 6, 15), 4), '2024-25')
        self.assertEqual(financial_year_label(datetime.date(2025, 3, 31), 4), '2024-25')
        self.assertEqual(financial_year_label(datetime.date(2025, 4, 1), 4), '2025-26')

    def test_calendar_year(self):
        self.assertEqual(financial_year_label(datetime.date(2024, 12, 31), 1), '2024')
        self.assertEqual(financial_year_bounds(datetime.date(2024, 2, 29), 1),
                         (datetime.date(2024, 1, 1), datetime.date(2024, 12, 31)))

    def test_bounds_cross_leap_february(self):
        self.assertEqual(financial_year_bounds(datetime.date(2023, 5, 1), 4),
                         (datetime.date(2023, 4, 1), datetime.date(2024, 3, 31)))

    def test_short_year(self):
        self.assertEqual(short_year('2024-25'), '24')
        self.assertEqual(short_year('2024'), '24')


class CompanyTests(TestCase):

    def setUp(self):
        self.company = Company.objects.create(subdomain_prefix='acme', name='Acme Traders', state_code='27')

    def test_default_branch_created(self):
        branch = self.company.branches.get()
        self.assertEqual(branch.prefix, 'HO')
        self.assertTrue(branch.is_default)
        self.assertEqual(branch.state_code, '27')

    def test_display_name_defaults_to_name(self):
        self.assertEqual(self.company.display_name, 'Acme Traders')

    def test_financial_year_label_uses_company_start_month(self):
        self.assertEqual(self.company.get_financial_year_label(datetime.date(2024, 3, 1)), '2023-24')
        self.company.financial_year_start_month = 1
        self.assertEqual(self.company.get_financial_year_label(datetime.date(2024, 3, 1)), '2024')

    def test_local_date_of_aware_datetime(self):
        utc_evening = datetime.datetime(2024, 6, 15, 20, 0, tzinfo=datetime.timezone.utc)
        self.assertEqual(self.company.local_date(utc_evening), datetime.date(2024, 6, 16))

    def test_suspended_company_is_not_effectively_active(self):
        self.company.is_suspended_by_admin = True
        self.assertFalse(self.company.effective_is_active)

    def test_currency_decimal_places_limited_to_stored_precision(self):
        self.company.currency_decimal_places = 2
        self.company.full_clean()
        self.company.currency_decimal_places = 3
        with self.assertRaises(ValidationError) as ctx:
            self.company.full_clean()
        self.assertIn('currency_decimal_places', ctx.exception.message_dict)


class BranchTests(TestCase):

    def setUp(self):
        self.company = Company.objects.create(subdomain_prefix='acme', name='Acme Traders', state_code='27')
        self.head_office = self.company.branches.get(prefix='HO')

    def test_prefix_must_be_uppercase_alphanumeric(self):
        with self.assertRaises(ValidationError):
            Branch(company=self.company, name='Pune', prefix='pn-1').save()

    def test_prefix_unique_per_company(self):
        with self.assertRaises(ValidationError):
            Branch(company=self.company, name='Other HO', prefix='HO').save()
        other = Company.objects.create(subdomain_prefix='globex', name='Globex')
        self.assertTrue(other.branches.filter(prefix='HO').exists())

    def test_new_default_branch_replaces_old_one(self):
        Branch(company=self.company, name='Mumbai', prefix='MUM', is_default=True).save()
        self.head_office.refresh_from_db()
        self.assertFalse(self.head_office.is_default)

    def test_last_active_branch_cannot_be_deactivated(self):
        self.head_office.is_active = False
        with self.assertRaises(ValidationError):
            self.head_office.save()


class TenantContextTests(TestCase):

    def test_context_is_restored_after_block(self):
        acme = Company.objects.create(subdomain_prefix='acme', name='Acme Traders')
        globex = Company.objects.create(subdomain_prefix='globex', name='Globex')
        self.assertIsNone(get_current_company())
        with tenant_context(acme):
            with tenant_context(globex):
                self.assertEqual(get_current_company(), globex)
            self.assertEqual(get_current_company(), acme)
        self.assertIsNone(get_current_company())

    def test_context_is_restored_when_block_raises(self):
        acme = Company.objects.create(subdomain_prefix='acme', name='Acme Traders')
        with self.assertRaises(RuntimeError):
            with tenant_context(acme):
                raise RuntimeError("boom")
        self.assertIsNone(get_current_company())
