"""
Usage Billing Service -- metered usage into invoice line items.

Records usage events and, for a billing window, turns them into one
``usage`` line item per metric (see ``billing_engines.usage``).  The line
items feed ``InvoiceComputer.create_invoice`` with invoice type ``usage``.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from billing_kernel.domain.billing_types import InvoiceType, LineItemType, PaymentTerms
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.money import ZERO, to_decimal
from billing_kernel.exceptions import InvalidAmountError, InvalidBillingPeriodError
from billing_kernel.logging_config import get_logger
from billing_engines.usage import aggregate_usage
from billing_modules.invoicing.models import InvoiceOutcome, LineItemInput
from billing_modules.invoicing.service import InvoiceComputer
from billing_modules.usage.models import UsageRecord
from billing_modules.usage.orm import UsageRecordModel
from billing_modules.usage.selectors import UsageRecordFilter, UsageRecordSelector

logger = get_logger("modules.usage.service")


class UsageBillingService:

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        invoice_computer: InvoiceComputer | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._selector = UsageRecordSelector(session)
        self._invoices = invoice_computer or InvoiceComputer(session, clock=self._clock)

    def record_usage(
        self,
        tenant_id: UUID,
        subscription_id: UUID,
        metric_name: str,
        quantity: Decimal,
        unit_price: Decimal,
        recorded_at: datetime | None = None,
        actor_id: UUID | None = None,
    ) -> UsageRecord:
        """
        Store one usage event.

        Raises:
            InvalidAmountError: quantity <= 0, negative unit price or blank metric.
        """
        quantity = to_decimal(quantity)
        unit_price = to_decimal(unit_price)
        if not metric_name or not metric_name.strip():
            raise InvalidAmountError("metric_name", metric_name, "cannot be blank")
        if quantity <= ZERO:
            raise InvalidAmountError("quantity", quantity, "must be positive")
        if unit_price < ZERO:
            raise InvalidAmountError("unit_price", unit_price, "cannot be negative")

        dto = UsageRecord(
            id=uuid4(),
            tenant_id=tenant_id,
            subscription_id=subscription_id,
            metric_name=metric_name.strip(),
            quantity=quantity,
            unit_price=unit_price,
            recorded_at=recorded_at or self._clock.now(),
        )
        try:
            self._session.add(UsageRecordModel.from_dto(dto, created_by_id=actor_id))
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.debug("usage_recorded", extra={
            "subscription_id": str(subscription_id),
            "metric_name": dto.metric_name,
            "quantity": str(quantity),
        })
        return dto

    def get_usage(self, usage_filter: UsageRecordFilter) -> list[UsageRecord]:
        return self._selector.find_usage(usage_filter)

    def build_usage_line_items(
        self,
        subscription_id: UUID,
        period_start: datetime,
        period_end: datetime,
    ) -> list[LineItemInput]:
        """
        Usage in [period_start, period_end) as one line per metric, sorted by
        metric name.  Quantity is the sum; unit price the weighted average.
        """
        if period_end <= period_start:
            raise InvalidBillingPeriodError("period_end must be after period_start")

        records = self._selector.find_usage(UsageRecordFilter(
            subscription_id=subscription_id,
            recorded_from=period_start,
            recorded_to=period_end,
        ))
        charges = aggregate_usage(records)
        logger.info("usage_aggregated", extra={
            "subscription_id": str(subscription_id),
            "record_count": len(records),
            "metric_count": len(charges),
        })
        return [
            LineItemInput(
                description=f"Usage: {charge.metric_name}",
                quantity=charge.quantity,
                unit_price=charge.unit_price,
                item_type=LineItemType.USAGE,
                period_start=period_start,
                period_end=period_end,
                metadata={
                    "metric_name": charge.metric_name,
                    "record_count": charge.record_count,
                },
            )
            for charge in charges
        ]

    def invoice_usage(
        self,
        tenant_id: UUID,
        subscription_id: UUID,
        period_start: datetime,
        period_end: datetime,
        payment_terms: PaymentTerms = PaymentTerms.NET_30,
        tax_rate: Decimal | None = None,
        currency: str = "USD",
    ) -> InvoiceOutcome | None:
        """Create a usage invoice for the window; None when there was no usage."""
        line_items = self.build_usage_line_items(subscription_id, period_start, period_end)
        if not line_items:
            logger.info("usage_invoice_skipped", extra={
                "subscription_id": str(subscription_id),
                "reason": "no usage in period",
            })
            return None
        if tax_rate is not None:
            line_items = [replace(item, tax_rate=tax_rate) for item in line_items]
        return self._invoices.create_invoice(
            tenant_id,
            line_items,
            payment_terms,
            subscription_id=subscription_id,
            invoice_type=InvoiceType.USAGE,
            currency=currency,
            notes=(
                f"Usage for {period_start.date().isoformat()} "
                f"to {period_end.date().isoformat()}"
            ),
        )
