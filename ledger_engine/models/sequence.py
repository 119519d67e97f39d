# ledger_engine/models/sequence.py

import logging
import re
from typing import NamedTuple, Optional

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.utils.translation import gettext_lazy as _

from company.models import Branch
from crp_core.constants import DEFAULT_SEQUENCE_PADDING
from crp_core.enums import DocumentType, SequenceResetPolicy
from crp_core.utils import short_year as fy_short_year
from .base import TenantScopedModel

logger = logging.getLogger(__name__)

_GENERIC_NUMBER_RE = re.compile(r'^(?P<head>.*?)(?P<number>\d+)(?P<suffix>\D*)$')
_BRANCH_PREFIX_RE = re.compile(r'^[A-Z0-9]+$')


class ParsedDocumentNumber(NamedTuple):
    branch_prefix: str
    prefix: str
    number: int
    suffix: str
    short_year: str


def render_document_number(number: int, prefix: str = '', suffix: str = '', padding: int = DEFAULT_SEQUENCE_PADDING,
                           branch_prefix: str = '', short_year: str = '') -> str:
    """
    Builds a document number such as 'MUM-INV-0007/24'.

    The branch part and its separating hyphen are left out when branch_prefix is empty,
    and the '/YY' tail is left out when short_year is empty.
    """
    if not isinstance(number, int) or number <= 0:
        raise ValueError(f"Document numbers start at 1, got {number!r}.")
    body = f"{prefix}{str(number).zfill(padding)}{suffix}"
    if branch_prefix:
        body = f"{branch_prefix}-{body}"
    if short_year:
        body = f"{body}/{short_year}"
    return body


def parse_document_number(rendered: str, prefix: Optional[str] = None,
                          suffix: Optional[str] = None) -> ParsedDocumentNumber:
    """
    Splits a rendered document number back into its parts.

    When prefix and suffix are known (they are for a stored sequence) parsing is exact.
    Without them the number is taken as the last run of digits, anything after it is the
    suffix, and a leading uppercase alphanumeric token followed by '-' is the branch prefix
    as long as something remains after it.

    Raises:
        ValueError: If the string cannot be a number produced by render_document_number().
    """
    if not rendered:
        raise ValueError("Cannot parse an empty document number.")

    body, year = rendered, ''
    if '/' in rendered:
        body, year = rendered.rsplit('/', 1)
        if not year.isdigit():
            raise ValueError(f"'{rendered}' has a non-numeric year part '{year}'.")

    if suffix:
        if not body.endswith(suffix):
            raise ValueError(f"'{rendered}' does not end with suffix '{suffix}'.")
        body = body[:-len(suffix)]

    if prefix is not None:
        branch = ''
        if not body.startswith(prefix) or not body[len(prefix):].isdigit():
            head, sep, rest = body.partition('-')
            if not sep or not _BRANCH_PREFIX_RE.match(head) or not rest.startswith(prefix):
                raise ValueError(f"'{rendered}' does not contain prefix '{prefix}'.")
            branch, body = head, rest
        digits = body[len(prefix):]
        if not digits.isdigit():
            raise ValueError(f"'{rendered}' has no numeric part after prefix '{prefix}'.")
        return ParsedDocumentNumber(branch, prefix, int(digits), suffix or '', year)

    match = _GENERIC_NUMBER_RE.match(body)
    if not match:
        raise ValueError(f"'{rendered}' contains no numeric part.")
    head = match.group('head')
    branch, sep, rest = head.partition('-')
    if sep and rest and _BRANCH_PREFIX_RE.match(branch):
        parsed_prefix = rest
    else:
        branch, parsed_prefix = '', head
    parsed_suffix = suffix if suffix else match.group('suffix')
    return ParsedDocumentNumber(branch, parsed_prefix, int(match.group('number')), parsed_suffix, year)


class DocumentSequence(TenantScopedModel):
    """
    Counter that issues document numbers for one (company, branch, document type).

    `current_number` is the NEXT number to issue. It only moves through the conditional
    updates in sequence_service, never through save(). `financial_year` tags the year the
    counter belongs to so a yearly sequence restarts at 1 exactly once per year.
    """
    branch = models.ForeignKey(
        Branch, verbose_name=_("Branch"), on_delete=models.PROTECT, related_name='document_sequences'
    )
    document_type = models.CharField(
        _("Document Type"), max_length=30, choices=DocumentType.choices, db_index=True
    )
    prefix = models.CharField(
        _("Prefix"), max_length=20, blank=True, default='',
        help_text=_("Placed before the number, e.g. 'INV-'.")
    )
    suffix = models.CharField(_("Suffix"), max_length=20, blank=True, default='')
    padding = models.PositiveSmallIntegerField(
        _("Padding Digits"), default=DEFAULT_SEQUENCE_PADDING,
        validators=[MinValueValidator(1), MaxValueValidator(12)],
        help_text=_("Number of digits for padding (e.g., 4 means 0001).")
    )
    current_number = models.PositiveIntegerField(
        _("Next Number"), default=1, validators=[MinValueValidator(1)],
        help_text=_("The number the next document will receive.")
    )
    financial_year = models.CharField(
        _("Financial Year"), max_length=9, blank=True, default='',
        help_text=_("Financial year the counter currently belongs to, e.g. '2024-25'.")
    )
    reset_policy = models.CharField(
        _("Reset Policy"), max_length=10, choices=SequenceResetPolicy.choices,
        default=SequenceResetPolicy.YEARLY.value
    )
    is_active = models.BooleanField(_("Is Active"), default=True)

    class Meta:
        verbose_name = _("Document Sequence")
        verbose_name_plural = _("Document Sequences")
        ordering = ['company', 'branch', 'document_type']
        constraints = [
            models.UniqueConstraint(fields=['company', 'branch', 'document_type'],
                                    name='document_sequence_unique_scope'),
        ]

    def __str__(self):
        return f"{self.get_document_type_display()} sequence for {self.branch.prefix} ({self.financial_year or '-'})"

    def clean(self):
        super().clean()
        errors = {}
        if self.branch_id:
            self._check_same_company(errors, 'branch', self.branch)
        if errors:
            raise ValidationError(errors)

    @property
    def resets_yearly(self) -> bool:
        return self.reset_policy == SequenceResetPolicy.YEARLY.value

    def render_number(self, number: int, financial_year: Optional[str] = None) -> str:
        fy = financial_year if financial_year is not None else self.financial_year
        return render_document_number(
            number, prefix=self.prefix, suffix=self.suffix, padding=self.padding,
            branch_prefix=self.branch.prefix if self.branch_id else '',
            short_year=fy_short_year(fy) if fy else '',
        )

    def parse_number(self, rendered: str) -> ParsedDocumentNumber:
        """Parses a number rendered by this sequence using its own prefix and suffix."""
        return parse_document_number(rendered, prefix=self.prefix, suffix=self.suffix)
