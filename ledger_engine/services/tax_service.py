# ledger_engine/services/tax_service.py

"""
GST arithmetic for document lines and document totals.

Everything here is pure Decimal math with no database access. Line figures are
kept unrounded; rounding to the company's minor unit happens once, in
calculate_document().
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Mapping, NamedTuple, Optional, Tuple

from django.utils.translation import gettext_lazy as _

from crp_core.constants import BALANCE_TOLERANCE
from crp_core.enums import GSTType
from crp_core.utils import round_decimal, minor_unit, to_decimal
from ..exceptions import ValidationError

logger = logging.getLogger(__name__)

ZERO_DECIMAL = Decimal('0.00')
HUNDRED = Decimal('100')

SUPPLIED_BREAKDOWN_FIELDS = ('taxable_amount', 'cgst_amount', 'sgst_amount', 'igst_amount', 'line_total')


class LineTaxResult(NamedTuple):
    line_gross: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    line_total: Decimal

    @property
    def tax_amount(self) -> Decimal:
        return self.cgst_amount + self.sgst_amount + self.igst_amount


class DocumentTotals(NamedTuple):
    subtotal: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    tax_amount: Decimal
    discount_percentage: Optional[Decimal]
    discount_amount: Decimal
    total_amount: Decimal


def _line_value(line, field: str) -> Decimal:
    if isinstance(line, Mapping):
        raw = line.get(field)
    else:
        raw = getattr(line, field, None)
    if raw is None or raw == '':
        return ZERO_DECIMAL
    try:
        return to_decimal(raw)
    except ValueError:
        raise ValidationError({field: [_("'%(value)s' is not a valid number.") % {'value': raw}]})


def _validate_line_inputs(quantity, rate, discount_pct, cgst, sgst, igst) -> None:
    errors = {}
    for field, value in (('quantity', quantity), ('rate', rate), ('discount_percentage', discount_pct),
                         ('cgst_rate', cgst), ('sgst_rate', sgst), ('igst_rate', igst)):
        if value < ZERO_DECIMAL:
            errors[field] = [_("Cannot be negative.")]
    if discount_pct > HUNDRED:
        errors['discount_percentage'] = [_("Discount percentage cannot exceed 100.")]
    if (cgst > ZERO_DECIMAL or sgst > ZERO_DECIMAL) and igst > ZERO_DECIMAL:
        errors['igst_rate'] = [_("A line carries either CGST/SGST (intrastate) or IGST (interstate), not both.")]
    if errors:
        raise ValidationError(errors)


def calculate_line(line, rates_inclusive: bool = True) -> LineTaxResult:
    """
    Computes the taxable value and tax heads of one line.

    `line` is any object (or mapping) exposing quantity, rate, discount_percentage,
    cgst_rate, sgst_rate and igst_rate. The line discount is taken off the gross
    before tax; with tax-inclusive rates the taxable value is backed out of the
    discounted amount.

    Raises:
        ValidationError: negative inputs, a discount over 100% or both CGST/SGST and IGST set.
    """
    quantity = _line_value(line, 'quantity')
    rate = _line_value(line, 'rate')
    discount_pct = _line_value(line, 'discount_percentage')
    cgst_rate = _line_value(line, 'cgst_rate')
    sgst_rate = _line_value(line, 'sgst_rate')
    igst_rate = _line_value(line, 'igst_rate')
    _validate_line_inputs(quantity, rate, discount_pct, cgst_rate, sgst_rate, igst_rate)

    line_gross = quantity * rate
    discount_amount = line_gross * discount_pct / HUNDRED
    line_after_discount = line_gross - discount_amount

    total_tax_rate = cgst_rate + sgst_rate + igst_rate
    if rates_inclusive and total_tax_rate:
        taxable_amount = line_after_discount / (1 + total_tax_rate / HUNDRED)
    else:
        taxable_amount = line_after_discount

    cgst_amount = taxable_amount * cgst_rate / HUNDRED
    sgst_amount = taxable_amount * sgst_rate / HUNDRED
    igst_amount = taxable_amount * igst_rate / HUNDRED

    return LineTaxResult(
        line_gross=line_gross,
        discount_amount=discount_amount,
        taxable_amount=taxable_amount,
        cgst_amount=cgst_amount,
        sgst_amount=sgst_amount,
        igst_amount=igst_amount,
        line_total=taxable_amount + cgst_amount + sgst_amount + igst_amount,
    )


def verify_line(line, supplied: Mapping, rates_inclusive: bool = True) -> LineTaxResult:
    """
    Checks a caller-supplied tax breakdown against a fresh calculation.

    Every supplied figure must be within BALANCE_TOLERANCE of the computed one. When they
    all agree, the supplied figures are returned as the line's values and line_total is
    rebuilt from them so the line identity holds exactly.
    """
    computed = calculate_line(line, rates_inclusive=rates_inclusive)
    errors = {}
    accepted = computed._asdict()
    for field in SUPPLIED_BREAKDOWN_FIELDS:
        raw = supplied.get(field) if supplied else None
        if raw is None or raw == '':
            continue
        try:
            value = to_decimal(raw)
        except ValueError:
            errors[field] = [_("'%(value)s' is not a valid number.") % {'value': raw}]
            continue
        expected = getattr(computed, field)
        if abs(value - expected) > BALANCE_TOLERANCE:
            errors[field] = [_("Supplied %(field)s %(supplied)s does not match the computed %(computed)s.") % {
                'field': field, 'supplied': value, 'computed': round_decimal(expected, '0.0001')}]
        else:
            accepted[field] = value
    if errors:
        logger.warning(f"[VerifyLine] Supplied tax breakdown rejected: {errors}")
        raise ValidationError(errors)

    accepted['line_total'] = (accepted['taxable_amount'] + accepted['cgst_amount'] +
                              accepted['sgst_amount'] + accepted['igst_amount'])
    return LineTaxResult(**accepted)


def calculate_document(line_results: Iterable[LineTaxResult], discount_percentage=None, discount_amount=None,
                       decimal_places: int = 2) -> DocumentTotals:
    """
    Rolls line results up into document totals.

    The document discount applies to (subtotal + tax). A percentage wins over a
    flat amount when both are given. All figures are rounded half-up to the
    company's minor unit here and only here, and
    total_amount == subtotal - discount_amount + tax_amount holds exactly.

    Raises:
        ValidationError: negative discount, a percentage over 100 or a flat discount
            larger than the pre-discount total.
    """
    results: List[LineTaxResult] = list(line_results)
    precision = minor_unit(decimal_places)

    subtotal = round_decimal(sum((r.taxable_amount for r in results), ZERO_DECIMAL), precision)
    cgst = round_decimal(sum((r.cgst_amount for r in results), ZERO_DECIMAL), precision)
    sgst = round_decimal(sum((r.sgst_amount for r in results), ZERO_DECIMAL), precision)
    igst = round_decimal(sum((r.igst_amount for r in results), ZERO_DECIMAL), precision)
    tax_amount = cgst + sgst + igst
    pre_discount_total = subtotal + tax_amount

    pct = to_decimal(discount_percentage) if discount_percentage not in (None, '') else None
    flat = to_decimal(discount_amount) if discount_amount not in (None, '') else None

    if pct is not None:
        if pct < ZERO_DECIMAL or pct > HUNDRED:
            raise ValidationError({'discount_percentage': [_("Discount percentage must be between 0 and 100.")]})
        discount = round_decimal(pre_discount_total * pct / HUNDRED, precision)
    elif flat is not None:
        if flat < ZERO_DECIMAL:
            raise ValidationError({'discount_amount': [_("Discount amount cannot be negative.")]})
        if flat > pre_discount_total:
            raise ValidationError({'discount_amount': [
                _("Discount %(discount)s exceeds the document total %(total)s.") % {
                    'discount': flat, 'total': pre_discount_total}]})
        discount = round_decimal(flat, precision)
    else:
        discount = ZERO_DECIMAL

    return DocumentTotals(
        subtotal=subtotal,
        cgst_amount=cgst,
        sgst_amount=sgst,
        igst_amount=igst,
        tax_amount=tax_amount,
        discount_percentage=pct,
        discount_amount=discount,
        total_amount=subtotal - discount + tax_amount,
    )


def gst_type_for(company_state: Optional[str], counterparty_state: Optional[str]) -> str:
    """
    Place of supply: interstate when both state codes are known and differ,
    intrastate otherwise.
    """
    if company_state and counterparty_state and company_state.strip() != counterparty_state.strip():
        return GSTType.INTERSTATE.value
    return GSTType.INTRASTATE.value


def split_gst_rate(total_rate, gst_type: str) -> Tuple[Decimal, Decimal, Decimal]:
    """Turns a single GST rate into (cgst_rate, sgst_rate, igst_rate) for the place of supply."""
    try:
        rate = to_decimal(total_rate) if total_rate not in (None, '') else ZERO_DECIMAL
    except ValueError:
        raise ValidationError({'tax_rate': [_("'%(value)s' is not a valid number.") % {'value': total_rate}]})
    if rate < ZERO_DECIMAL:
        raise ValidationError({'tax_rate': [_("Tax rate cannot be negative.")]})
    if gst_type == GSTType.INTERSTATE.value:
        return ZERO_DECIMAL, ZERO_DECIMAL, rate
    half = rate / 2
    return half, half, ZERO_DECIMAL
