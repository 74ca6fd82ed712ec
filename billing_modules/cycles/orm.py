"""
Billing Cycle ORM Persistence Model (``billing_modules.cycles.orm``).

Invariants enforced:
    - ``total_amount`` uses Decimal (Numeric(38,9)) -- NEVER float.
    - ``status`` is the only column the claim UPDATE conditions on.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class BillingCycleModel(TrackedBase):
    """ORM model for ``BillingCycle``."""

    __tablename__ = "billing_cycles"

    __table_args__ = (
        Index("idx_billing_cycles_tenant_status", "tenant_id", "status"),
        Index("idx_billing_cycles_billing_date", "billing_date"),
        Index("idx_billing_cycles_subscription_id", "subscription_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    subscription_id: Mapped[UUID | None] = mapped_column(nullable=True)
    cycle_type: Mapped[str] = mapped_column(String(50), nullable=False)
    start_date: Mapped[datetime] = mapped_column(nullable=False)
    end_date: Mapped[datetime] = mapped_column(nullable=False)
    billing_date: Mapped[datetime] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    invoice_id: Mapped[UUID | None] = mapped_column(ForeignKey("invoices.id"), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cycle_metadata: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    def to_dto(self):
        from billing_kernel.domain.billing_types import BillingCycleStatus, BillingCycleType
        from billing_modules.cycles.models import BillingCycle

        return BillingCycle(
            id=self.id,
            tenant_id=self.tenant_id,
            subscription_id=self.subscription_id,
            cycle_type=BillingCycleType(self.cycle_type),
            start_date=self.start_date,
            end_date=self.end_date,
            billing_date=self.billing_date,
            total_amount=self.total_amount,
            currency=self.currency,
            status=BillingCycleStatus(self.status),
            invoice_id=self.invoice_id,
            processed_at=self.processed_at,
            metadata=dict(self.cycle_metadata or {}),
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID | None = None) -> "BillingCycleModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            subscription_id=dto.subscription_id,
            cycle_type=dto.cycle_type.value,
            start_date=dto.start_date,
            end_date=dto.end_date,
            billing_date=dto.billing_date,
            total_amount=dto.total_amount,
            currency=dto.currency,
            status=dto.status.value,
            invoice_id=dto.invoice_id,
            processed_at=dto.processed_at,
            cycle_metadata=dict(dto.metadata),
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<BillingCycleModel {self.cycle_type} billing={self.billing_date} "
            f"status={self.status}>"
        )
