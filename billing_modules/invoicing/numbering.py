"""
Invoice numbering: ``INV-YYYYMM-NNNN`` per tenant per month.

NNNN comes from the locked counter ``invoice:{tenant_id}:{YYYYMM}`` in
``SequenceService``.  The counter is seeded on first use with the highest
number already stored for that prefix, so numbering continues across data
imported before the counter existed.  Timestamp fallback numbers are not
counted.  Without a sequence service the number falls back to a
timestamp-derived suffix; the unique constraint on (tenant_id,
invoice_number) catches the rare collision.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.logging_config import get_logger
from billing_kernel.services.sequence_service import SequenceService
from billing_engines.invoice_totals import (
    fallback_invoice_number,
    format_invoice_number,
    invoice_number_prefix,
    parse_invoice_sequence,
)
from billing_modules.invoicing.orm import InvoiceModel

logger = get_logger("modules.invoicing.numbering")


def sequence_name(tenant_id: UUID, issued_date: datetime) -> str:
    return f"invoice:{tenant_id}:{issued_date:%Y%m}"


class InvoiceNumberGenerator:

    def __init__(self, session: Session, sequence_service: SequenceService | None = None):
        self._session = session
        self._sequences = sequence_service

    def highest_existing_sequence(self, tenant_id: UUID, issued_date: datetime) -> int:
        """Largest NNNN already stored for the tenant and month, or 0."""
        prefix = invoice_number_prefix(issued_date)
        numbers = self._session.scalars(
            select(InvoiceModel.invoice_number).where(
                InvoiceModel.tenant_id == tenant_id,
                InvoiceModel.invoice_number.like(f"{prefix}-%"),
            )
        )
        return max(
            (seq for seq in (parse_invoice_sequence(n) for n in numbers) if seq is not None),
            default=0,
        )

    def next_number(self, tenant_id: UUID, issued_date: datetime) -> str:
        if self._sequences is None:
            number = fallback_invoice_number(issued_date)
            logger.warning("invoice_number_fallback", extra={
                "tenant_id": str(tenant_id),
                "invoice_number": number,
            })
            return number

        value = self._sequences.next_value(
            sequence_name(tenant_id, issued_date),
            seed=lambda: self.highest_existing_sequence(tenant_id, issued_date),
        )
        return format_invoice_number(issued_date, value)
