"""
Invoicing Domain Models (``billing_modules.invoicing.models``).

Responsibility
--------------
Frozen dataclass value objects for invoices and their line items, plus the
``InvoiceOutcome`` returned by every ``InvoiceComputer`` mutation.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* ``Invoice.total_amount == subtotal + tax_amount - discount_amount`` and
  ``amount_due == max(0, total_amount - amount_paid)`` (checked by the
  computer after every change, not here).
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from billing_kernel.domain.billing_types import (
    InvoiceStatus,
    InvoiceType,
    LineItemType,
    PaymentTerms,
)
from billing_kernel.domain.money import ZERO
from billing_kernel.domain.workflow import TransitionRecord
from billing_engines.invoice_totals import is_overdue


@dataclass(frozen=True)
class LineItemInput:
    """A line item as supplied by the caller; derived amounts are computed."""
    description: str
    quantity: Decimal
    unit_price: Decimal
    item_type: LineItemType = LineItemType.ONE_TIME
    tax_rate: Decimal | None = None
    discount_amount: Decimal = ZERO
    period_start: datetime | None = None
    period_end: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LineItem:
    """A persisted invoice line."""
    id: UUID
    invoice_id: UUID
    line_number: int
    description: str
    item_type: LineItemType
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    tax_rate: Decimal | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Invoice:
    """A tenant invoice."""
    id: UUID
    tenant_id: UUID
    invoice_number: str
    invoice_type: InvoiceType
    status: InvoiceStatus
    currency: str
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    payment_terms: PaymentTerms
    issued_date: datetime
    due_date: datetime
    customer_id: UUID | None = None
    subscription_id: UUID | None = None
    sent_at: datetime | None = None
    paid_date: datetime | None = None
    voided_date: datetime | None = None
    billing_country: str | None = None
    billing_state: str | None = None
    exemption_type: str | None = None
    notes: str | None = None
    line_items: tuple[LineItem, ...] = ()

    def is_overdue(self, as_of: datetime) -> bool:
        return is_overdue(self.status, self.amount_due, self.due_date, as_of)


@dataclass(frozen=True)
class InvoiceOutcome:
    """The invoice after a mutation and the transition it went through."""
    invoice: Invoice
    transition: TransitionRecord
