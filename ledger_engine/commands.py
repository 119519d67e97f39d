# ledger_engine/commands.py

"""
Typed inputs for the engine's write operations.

Callers build these directly, or let the serializers in ledger_engine.serializers
build them from raw payloads. validate() checks shape and ranges only; business
rules (limits, balances, statuses) are enforced by the services.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.utils.translation import gettext_lazy as _

from crp_core.enums import DocumentType, DocumentStatus, PaymentDirection, PaymentMethod, TransactionStatus
from .exceptions import ValidationError

ZERO_DECIMAL = Decimal('0.00')


def _check_non_negative(errors: Dict[str, List[str]], name: str, value: Optional[Decimal]) -> None:
    if value is not None and value < ZERO_DECIMAL:
        errors.setdefault(name, []).append(str(_("Cannot be negative.")))


@dataclass
class LineItemInput:
    quantity: Decimal
    rate: Decimal
    item_ref: str = ''
    description: str = ''
    discount_percentage: Decimal = ZERO_DECIMAL
    cgst_rate: Decimal = ZERO_DECIMAL
    sgst_rate: Decimal = ZERO_DECIMAL
    igst_rate: Decimal = ZERO_DECIMAL
    # Single GST rate, split into CGST/SGST or IGST by place of supply when no head rate is given.
    tax_rate: Optional[Decimal] = None
    # Optional echo-back of a breakdown computed by the caller; verified, never trusted blindly.
    supplied_breakdown: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def has_head_rates(self) -> bool:
        return any((self.cgst_rate, self.sgst_rate, self.igst_rate))

    def validate(self, position: int = 1) -> Dict[str, List[str]]:
        errors: Dict[str, List[str]] = {}
        for name in ('quantity', 'rate', 'discount_percentage', 'cgst_rate', 'sgst_rate', 'igst_rate', 'tax_rate'):
            _check_non_negative(errors, name, getattr(self, name))
        if self.discount_percentage > Decimal('100'):
            errors.setdefault('discount_percentage', []).append(str(_("Cannot exceed 100.")))
        if (self.cgst_rate or self.sgst_rate) and self.igst_rate:
            errors.setdefault('igst_rate', []).append(str(_("Use either CGST/SGST or IGST, not both.")))
        return {f"lines[{position}].{name}": msgs for name, msgs in errors.items()}


@dataclass
class CreateDocumentCommand:
    company: Any
    branch: Any
    counterparty: Any
    document_type: str
    lines: List[LineItemInput]
    document_date: Optional[date] = None
    due_date: Optional[date] = None
    rates_inclusive: bool = True
    place_of_supply: Optional[str] = None
    discount_percentage: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    status: str = DocumentStatus.ISSUED.value
    notes: str = ''
    credit_override: bool = False
    # Journal posting is optional: both accounts and a counterparty control account are needed.
    posting_account_id: Optional[Any] = None
    tax_account_id: Optional[Any] = None
    user: Any = None

    def validate(self) -> None:
        errors: Dict[str, List[str]] = {}
        if self.document_type not in DocumentType.values or self.document_type in (
                DocumentType.PAYMENT_RECEIVED.value, DocumentType.PAYMENT_MADE.value):
            errors['document_type'] = [str(_("'%(type)s' is not a document type.") % {'type': self.document_type})]
        if self.status not in (DocumentStatus.DRAFT.value, DocumentStatus.ISSUED.value):
            errors['status'] = [str(_("New documents are created as draft or issued."))]
        if not self.lines:
            errors['lines'] = [str(_("At least one line is required."))]
        for position, line in enumerate(self.lines or [], start=1):
            errors.update(line.validate(position))
        _check_non_negative(errors, 'discount_percentage', self.discount_percentage)
        _check_non_negative(errors, 'discount_amount', self.discount_amount)
        if self.discount_percentage is not None and self.discount_percentage > Decimal('100'):
            errors.setdefault('discount_percentage', []).append(str(_("Cannot exceed 100.")))
        if self.document_date and self.due_date and self.due_date < self.document_date:
            errors['due_date'] = [str(_("Due date cannot be before the document date."))]
        if self.company is None:
            errors['company'] = [str(_("Company is required."))]
        elif self.branch is not None and self.branch.company_id != self.company.pk:
            errors['branch'] = [str(_("Branch does not belong to this company."))]
        if self.counterparty is None:
            errors['counterparty'] = [str(_("Counterparty is required."))]
        elif self.company is not None and self.counterparty.company_id != self.company.pk:
            errors['counterparty'] = [str(_("Counterparty does not belong to this company."))]
        if self.tax_account_id and not self.posting_account_id:
            errors['posting_account_id'] = [str(_("A tax account needs a posting account."))]
        if errors:
            raise ValidationError(errors)


@dataclass
class AllocationInput:
    document_id: Any
    amount: Decimal


@dataclass
class RecordPaymentCommand:
    company: Any
    branch: Any
    counterparty: Any
    direction: str
    amount: Decimal
    payment_date: Optional[date] = None
    method: str = PaymentMethod.BANK_TRANSFER.value
    reference: str = ''
    allocations: List[AllocationInput] = field(default_factory=list)
    use_advance: bool = False
    cash_account_id: Optional[Any] = None
    user: Any = None

    @property
    def total_allocated(self) -> Decimal:
        return sum((a.amount for a in self.allocations), ZERO_DECIMAL)

    def validate(self) -> None:
        errors: Dict[str, List[str]] = {}
        if self.direction not in PaymentDirection.values:
            errors['direction'] = [str(_("Direction must be 'received' or 'made'."))]
        if self.method not in PaymentMethod.values:
            errors['method'] = [str(_("Unknown payment method '%(method)s'.") % {'method': self.method})]
        if self.amount is None or self.amount <= ZERO_DECIMAL:
            errors['amount'] = [str(_("Payment amount must be positive."))]
        seen = set()
        for position, allocation in enumerate(self.allocations, start=1):
            if allocation.amount is None or allocation.amount <= ZERO_DECIMAL:
                errors[f"allocations[{position}].amount"] = [str(_("Allocated amount must be positive."))]
            if allocation.document_id in seen:
                errors[f"allocations[{position}].document_id"] = [str(_("Document allocated twice."))]
            seen.add(allocation.document_id)
        if self.company is None:
            errors['company'] = [str(_("Company is required."))]
        elif self.branch is not None and self.branch.company_id != self.company.pk:
            errors['branch'] = [str(_("Branch does not belong to this company."))]
        if self.counterparty is None:
            errors['counterparty'] = [str(_("Counterparty is required."))]
        elif self.company is not None and self.counterparty.company_id != self.company.pk:
            errors['counterparty'] = [str(_("Counterparty does not belong to this company."))]
        if errors:
            raise ValidationError(errors)


@dataclass
class JournalLineInput:
    account_id: Any
    debit_amount: Decimal = ZERO_DECIMAL
    credit_amount: Decimal = ZERO_DECIMAL
    description: str = ''


@dataclass
class PostJournalEntryCommand:
    company: Any
    lines: List[JournalLineInput]
    entry_date: Optional[date] = None
    narration: str = ''
    reference_type: str = 'manual'
    reference_number: str = ''
    status: str = TransactionStatus.POSTED.value
    user: Any = None

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit_amount or ZERO_DECIMAL for line in self.lines), ZERO_DECIMAL)

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit_amount or ZERO_DECIMAL for line in self.lines), ZERO_DECIMAL)

    def validate(self) -> None:
        errors: Dict[str, List[str]] = {}
        if self.company is None:
            errors['company'] = [str(_("Company is required."))]
        if self.status not in (TransactionStatus.DRAFT.value, TransactionStatus.POSTED.value):
            errors['status'] = [str(_("Entries are created as draft or posted."))]
        if len(self.lines or []) < 2:
            errors['lines'] = [str(_("A journal entry needs at least two lines."))]
        for position, line in enumerate(self.lines or [], start=1):
            debit = line.debit_amount or ZERO_DECIMAL
            credit = line.credit_amount or ZERO_DECIMAL
            key = f"lines[{position}]"
            if debit < ZERO_DECIMAL or credit < ZERO_DECIMAL:
                errors[key] = [str(_("Amounts cannot be negative."))]
            elif (debit > ZERO_DECIMAL) == (credit > ZERO_DECIMAL):
                errors[key] = [str(_("Each line needs exactly one of debit or credit."))]
            if not line.account_id:
                errors[f"{key}.account_id"] = [str(_("Account is required."))]
        if errors:
            raise ValidationError(errors)
