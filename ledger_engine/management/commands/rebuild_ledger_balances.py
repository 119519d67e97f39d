# ledger_engine/management/commands/rebuild_ledger_balances.py

import logging
from decimal import Decimal

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from company.models import Company
from company.utils import tenant_context
from ledger_engine.models import Account, Counterparty
from ledger_engine.services.party_ledger_service import refresh_cached_balance

logger = logging.getLogger(__name__)
ZERO_DECIMAL = Decimal('0.00')


class Command(BaseCommand):
    help = ("Recomputes Account.current_balance from opening balances plus posted journal lines, and "
            "refreshes the Counterparty.current_balance cache from the counterparty ledger. Reports the drift.")

    def add_arguments(self, parser):
        group = parser.add_mutually_exclusive_group(required=True)
        group.add_argument('--companies', nargs='+', type=str, help='List of specific Company IDs to process.')
        group.add_argument('--all', action='store_true', help='Process all active companies.')
        parser.add_argument('--dry-run', action='store_true', help='Report drift without writing anything.')

    def _target_companies(self, options):
        if options['all']:
            return Company.objects.filter(is_active=True).order_by('name')

        valid_ids, invalid_entries = [], []
        for cid in options['companies']:
            try:
                valid_ids.append(int(cid))
            except ValueError:
                invalid_entries.append(cid)
        if invalid_entries:
            raise CommandError(f"Invalid non-numeric company IDs provided: {', '.join(invalid_entries)}")

        companies = Company.objects.filter(pk__in=valid_ids).order_by('name')
        missing_ids = set(valid_ids) - set(companies.values_list('pk', flat=True))
        if missing_ids:
            self.stdout.write(self.style.WARNING(
                f"Could not find companies with IDs: {', '.join(map(str, sorted(missing_ids)))}"))
        return companies

    def _rebuild_company(self, company: Company, dry_run: bool):
        account_drift = party_drift = ZERO_DECIMAL
        accounts_fixed = parties_fixed = 0
        with tenant_context(company):
            for account in Account.global_objects.filter(company=company).order_by('code'):
                calculated = account.get_dynamic_balance()
                drift = calculated - account.current_balance
                if drift:
                    self.stdout.write(f"  Account {account.code} {account.name}: "
                                      f"stored {account.current_balance}, calculated {calculated} (drift {drift})")
                    accounts_fixed += 1
                    account_drift += abs(drift)
                    if not dry_run:
                        account.update_stored_balance(calculated)

            for counterparty in Counterparty.global_objects.filter(company=company).order_by('name'):
                drift = refresh_cached_balance(counterparty, dry_run=dry_run)
                if drift:
                    self.stdout.write(f"  Counterparty {counterparty.name}: cached balance drift {drift}")
                    parties_fixed += 1
                    party_drift += abs(drift)
        return accounts_fixed, account_drift, parties_fixed, party_drift

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        companies = self._target_companies(options)
        if not companies.exists():
            self.stdout.write(self.style.WARNING("No companies found matching the criteria. Exiting."))
            return
        if dry_run:
            self.stdout.write(self.style.NOTICE("Dry run: no balances will be written."))

        failed_companies = []
        for company in companies:
            self.stdout.write(f"\nProcessing Company: {company.name} (ID: {company.pk})")
            try:
                with transaction.atomic():
                    accounts_fixed, account_drift, parties_fixed, party_drift = self._rebuild_company(company, dry_run)
            except Exception as e:
                logger.exception(f"Balance rebuild failed for Company {company.pk}")
                self.stderr.write(self.style.ERROR(f"  Failed: {e}"))
                failed_companies.append(company.pk)
                continue
            verb = "would be corrected" if dry_run else "corrected"
            self.stdout.write(self.style.SUCCESS(
                f"  {accounts_fixed} account(s) {verb} (total drift {account_drift}); "
                f"{parties_fixed} counterparty cache(s) {verb} (total drift {party_drift})."))

        if failed_companies:
            raise CommandError(f"Rebuild failed for companies: {', '.join(map(str, failed_companies))}")
        self.stdout.write(self.style.SUCCESS("\nLedger balance rebuild complete."))
