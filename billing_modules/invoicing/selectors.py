"""
Invoice read side.

Read-only: returns ``Invoice`` DTOs, never ORM models, and returns None or an
empty list when nothing matches.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.billing_types import InvoiceStatus, InvoiceType
from billing_kernel.selectors.base import BaseSelector
from billing_engines.invoice_totals import OPEN_STATUSES
from billing_modules.invoicing.models import Invoice
from billing_modules.invoicing.orm import InvoiceModel


@dataclass(frozen=True)
class InvoiceFilter:
    tenant_id: UUID | None = None
    customer_id: UUID | None = None
    subscription_id: UUID | None = None
    statuses: tuple[InvoiceStatus, ...] = ()
    invoice_type: InvoiceType | None = None
    issued_from: datetime | None = None
    issued_to: datetime | None = None
    due_before: datetime | None = None
    billing_country: str | None = None
    billing_state: str | None = None
    currency: str | None = None
    limit: int | None = None


class InvoiceSelector(BaseSelector[InvoiceModel]):

    def get_invoice(self, invoice_id: UUID) -> Invoice | None:
        model = self.session.get(InvoiceModel, invoice_id)
        return model.to_dto() if model else None

    def find_invoices(self, invoice_filter: InvoiceFilter) -> list[Invoice]:
        f = invoice_filter
        stmt = select(InvoiceModel)
        if f.tenant_id is not None:
            stmt = stmt.where(InvoiceModel.tenant_id == f.tenant_id)
        if f.customer_id is not None:
            stmt = stmt.where(InvoiceModel.customer_id == f.customer_id)
        if f.subscription_id is not None:
            stmt = stmt.where(InvoiceModel.subscription_id == f.subscription_id)
        if f.statuses:
            stmt = stmt.where(InvoiceModel.status.in_([s.value for s in f.statuses]))
        if f.invoice_type is not None:
            stmt = stmt.where(InvoiceModel.invoice_type == f.invoice_type.value)
        if f.issued_from is not None:
            stmt = stmt.where(InvoiceModel.issued_date >= f.issued_from)
        if f.issued_to is not None:
            stmt = stmt.where(InvoiceModel.issued_date <= f.issued_to)
        if f.due_before is not None:
            stmt = stmt.where(InvoiceModel.due_date < f.due_before)
        if f.billing_country is not None:
            stmt = stmt.where(InvoiceModel.billing_country == f.billing_country)
        if f.billing_state is not None:
            stmt = stmt.where(InvoiceModel.billing_state == f.billing_state)
        if f.currency is not None:
            stmt = stmt.where(InvoiceModel.currency == f.currency)
        stmt = stmt.order_by(InvoiceModel.issued_date, InvoiceModel.invoice_number)
        if f.limit is not None:
            stmt = stmt.limit(f.limit)
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def find_overdue_invoices(self, as_of: datetime, tenant_id: UUID | None = None) -> list[Invoice]:
        candidates = self.find_invoices(InvoiceFilter(
            tenant_id=tenant_id,
            statuses=tuple(sorted(OPEN_STATUSES, key=lambda s: s.value)),
            due_before=as_of,
        ))
        return [inv for inv in candidates if inv.is_overdue(as_of)]
