# ledger_engine/services/sequence_service.py

import logging
from datetime import date
from typing import NamedTuple, Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction, IntegrityError, DatabaseError
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from company.models import Company, Branch
from company.utils import tenant_context
from crp_core.constants import DEFAULT_DOCUMENT_PREFIXES, DEFAULT_SEQUENCE_MAX_RETRIES, DEFAULT_SEQUENCE_PADDING
from crp_core.enums import DocumentType, SequenceResetPolicy
from ..exceptions import ConcurrencyError, ValidationError, PersistenceError
from ..models.sequence import DocumentSequence, ParsedDocumentNumber, parse_document_number  # noqa: F401 (re-export)

logger = logging.getLogger(__name__)

CONFIGURABLE_FIELDS = ('prefix', 'suffix', 'padding', 'reset_policy', 'current_number', 'is_active')


class AllocatedNumber(NamedTuple):
    sequence: DocumentSequence
    number: int
    financial_year: str
    rendered: str


class _DrawPlan(NamedTuple):
    number: int
    financial_year: str
    new_values: dict


def _max_retries() -> int:
    return int(getattr(settings, 'LEDGER_SEQUENCE_MAX_RETRIES', DEFAULT_SEQUENCE_MAX_RETRIES))


def _validate_scope(company: Company, branch: Branch, document_type: str) -> None:
    errors = {}
    if document_type not in DocumentType.values:
        errors['document_type'] = [_("Unknown document type '%(type)s'.") % {'type': document_type}]
    if branch is None or branch.company_id != company.pk:
        errors['branch'] = [_("Branch does not belong to this company.")]
    elif not branch.is_active:
        errors['branch'] = [_("Branch '%(branch)s' is inactive.") % {'branch': branch.prefix}]
    if errors:
        raise ValidationError(errors)


def get_or_create_sequence(company: Company, branch: Branch, document_type: str,
                           financial_year: str) -> DocumentSequence:
    """
    Returns the sequence row for (company, branch, document_type), creating it with the
    default prefix on first use. A concurrent creator winning the insert is not an error:
    the row it created is read back.
    """
    lookup = dict(company=company, branch=branch, document_type=document_type)
    try:
        return DocumentSequence.objects.select_related('branch').get(**lookup)
    except DocumentSequence.DoesNotExist:
        pass

    try:
        with transaction.atomic():
            sequence = DocumentSequence(
                prefix=DEFAULT_DOCUMENT_PREFIXES.get(document_type, ''),
                padding=DEFAULT_SEQUENCE_PADDING,
                current_number=1,
                financial_year=financial_year,
                reset_policy=SequenceResetPolicy.YEARLY.value,
                **lookup
            )
            sequence.save()
        logger.info(
            f"Created DocumentSequence for Co ID {company.pk}, Branch '{branch.prefix}', Type '{document_type}' "
            f"with prefix '{sequence.prefix}'.")
        return sequence
    except (IntegrityError, DjangoValidationError) as e:
        logger.debug(f"Sequence creation race for Co ID {company.pk}, Type '{document_type}': {e}. Re-reading.")
        try:
            return DocumentSequence.objects.select_related('branch').get(**lookup)
        except DocumentSequence.DoesNotExist:
            raise e


def _plan_draw(sequence: DocumentSequence, ambient_year: str) -> _DrawPlan:
    """
    Decides which number the next draw issues, given the stored counter and year tag.

    A yearly sequence entering a later financial year restarts at 1. A date that falls in
    an earlier year than the stored tag continues the current counter under the stored
    year, so an old year's numbers can never be issued twice.
    """
    stored_number = sequence.current_number
    stored_year = sequence.financial_year

    if stored_year and ambient_year < stored_year:
        return _DrawPlan(stored_number, stored_year, {'current_number': stored_number + 1})
    if ambient_year != stored_year and sequence.resets_yearly:
        return _DrawPlan(1, ambient_year, {'current_number': 2, 'financial_year': ambient_year})
    return _DrawPlan(stored_number, ambient_year,
                     {'current_number': stored_number + 1, 'financial_year': ambient_year})


def _compare_and_swap(sequence_pk, expected_number: int, expected_year: str, new_values: dict) -> bool:
    """
    Conditional UPDATE of the counter. Succeeds only when nobody has drawn since
    (expected_number, expected_year) was read.
    """
    updated = DocumentSequence.objects.filter(
        pk=sequence_pk, current_number=expected_number, financial_year=expected_year
    ).update(updated_at=timezone.now(), **new_values)
    return updated == 1


def next_number(company: Company, branch: Branch, document_type: str,
                as_of_date: Optional[date] = None) -> AllocatedNumber:
    """
    Draws the next number for (company, branch, document_type) and commits the draw.

    Uses compare-and-swap on current_number with bounded retry. The draw is final once
    this returns; callers that fail to persist their document should call
    release_number() with the result.

    Raises:
        ValidationError: unknown document type, foreign or inactive branch, inactive sequence.
        ConcurrencyError: every attempt lost its race (retryable, nothing was issued).
        PersistenceError: the database failed (retryable).
    """
    log_prefix = f"[SeqDraw][Co:{company.pk}][Br:{getattr(branch, 'prefix', None)}][Type:{document_type}]"
    _validate_scope(company, branch, document_type)
    ambient_year = company.get_financial_year_label(as_of_date)
    max_retries = _max_retries()

    with tenant_context(company):
        try:
            sequence = get_or_create_sequence(company, branch, document_type, ambient_year)
            if not sequence.is_active:
                raise ValidationError({'document_type': [
                    _("Numbering for '%(type)s' is disabled for this branch.") % {'type': document_type}]})

            for attempt in range(1, max_retries + 1):
                with transaction.atomic():
                    sequence.refresh_from_db(fields=['current_number', 'financial_year', 'prefix', 'suffix',
                                                     'padding', 'reset_policy'])
                    plan = _plan_draw(sequence, ambient_year)
                    swapped = _compare_and_swap(sequence.pk, sequence.current_number, sequence.financial_year,
                                                plan.new_values)
                if swapped:
                    rendered = sequence.render_number(plan.number, plan.financial_year)
                    logger.info(f"{log_prefix} Issued '{rendered}' (No. {plan.number}, FY {plan.financial_year}) "
                                f"on attempt {attempt}.")
                    return AllocatedNumber(sequence, plan.number, plan.financial_year, rendered)
                logger.warning(f"{log_prefix} Lost sequence race on attempt {attempt}/{max_retries} "
                               f"(read No. {sequence.current_number}). Retrying.")
        except DatabaseError as e:
            logger.error(f"{log_prefix} Database failure while drawing a number: {e}", exc_info=True)
            raise PersistenceError(_("Could not reserve a document number."), original=e) from e

    logger.error(f"{log_prefix} Gave up after {max_retries} contended attempts.")
    raise ConcurrencyError(document_type=document_type, attempts=max_retries)


def release_number(allocated: AllocatedNumber) -> bool:
    """
    Best-effort compensation for a draw whose document was never saved.

    Steps the counter back only if it still points just past the released number;
    otherwise someone has drawn since and the gap is kept. Returns True when the
    number was given back.
    """
    sequence = allocated.sequence
    log_prefix = f"[SeqRelease][Co:{sequence.company_id}][Seq:{sequence.pk}]"
    try:
        released = DocumentSequence.global_objects.filter(
            pk=sequence.pk, company_id=sequence.company_id,
            current_number=allocated.number + 1, financial_year=allocated.financial_year,
        ).update(current_number=allocated.number, updated_at=timezone.now()) == 1
    except DatabaseError as e:
        logger.error(f"{log_prefix} Could not release '{allocated.rendered}', leaving a gap: {e}", exc_info=True)
        return False

    if released:
        logger.info(f"{log_prefix} Released '{allocated.rendered}'; it will be issued again.")
    else:
        logger.warning(f"{log_prefix} '{allocated.rendered}' was not released because later numbers were "
                       f"already drawn. Accepting a gap.")
    return released


def preview_next_number(company: Company, branch: Branch, document_type: str,
                        as_of_date: Optional[date] = None) -> str:
    """Renders the number the next draw would get, without consuming it."""
    _validate_scope(company, branch, document_type)
    ambient_year = company.get_financial_year_label(as_of_date)
    with tenant_context(company):
        try:
            sequence = DocumentSequence.objects.select_related('branch').get(
                company=company, branch=branch, document_type=document_type)
        except DocumentSequence.DoesNotExist:
            sequence = DocumentSequence(
                company=company, branch=branch, document_type=document_type,
                prefix=DEFAULT_DOCUMENT_PREFIXES.get(document_type, ''), padding=DEFAULT_SEQUENCE_PADDING,
                current_number=1, financial_year=ambient_year, reset_policy=SequenceResetPolicy.YEARLY.value,
            )
        plan = _plan_draw(sequence, ambient_year)
        return sequence.render_number(plan.number, plan.financial_year)


def configure_sequence(company: Company, branch: Branch, document_type: str, **changes) -> DocumentSequence:
    """
    Updates prefix, suffix, padding, reset_policy, current_number or is_active of a sequence,
    creating the sequence first if needed. current_number can only move forward.
    """
    log_prefix = f"[SeqConfig][Co:{company.pk}][Br:{getattr(branch, 'prefix', None)}][Type:{document_type}]"
    unknown = set(changes) - set(CONFIGURABLE_FIELDS)
    if unknown:
        raise ValidationError({field: [_("This field cannot be configured.")] for field in sorted(unknown)})
    _validate_scope(company, branch, document_type)

    with tenant_context(company), transaction.atomic():
        sequence = get_or_create_sequence(company, branch, document_type, company.get_financial_year_label())
        sequence = DocumentSequence.objects.select_for_update().select_related('branch').get(pk=sequence.pk)

        new_start = changes.get('current_number')
        if new_start is not None and int(new_start) < sequence.current_number:
            raise ValidationError({'current_number': [
                _("Next number cannot move back from %(current)s to %(requested)s.") % {
                    'current': sequence.current_number, 'requested': new_start}]})

        for field, value in changes.items():
            setattr(sequence, field, value)
        try:
            sequence.save()
        except DjangoValidationError as e:
            raise ValidationError.from_django(e)

    logger.info(f"{log_prefix} Sequence updated: {sorted(changes)}.")
    return sequence
