"""
Subscription ORM Persistence Model (``billing_modules.subscriptions.orm``).

Invariants enforced:
    - ``amount`` uses Decimal (Numeric(38,9)) -- NEVER float.
    - ``status`` and ``billing_cycle`` stored as enum .value strings.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class SubscriptionModel(TrackedBase):
    """ORM model for ``Subscription``."""

    __tablename__ = "subscriptions"

    __table_args__ = (
        Index("idx_subscriptions_tenant_status", "tenant_id", "status"),
        Index("idx_subscriptions_customer_id", "customer_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    customer_id: Mapped[UUID | None] = mapped_column(nullable=True)
    plan_name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    billing_cycle: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="active")
    current_period_start: Mapped[datetime] = mapped_column(nullable=False)
    current_period_end: Mapped[datetime] = mapped_column(nullable=False)
    canceled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self):
        from billing_kernel.domain.billing_types import BillingCycleType
        from billing_modules.subscriptions.models import Subscription, SubscriptionStatus

        return Subscription(
            id=self.id,
            tenant_id=self.tenant_id,
            customer_id=self.customer_id,
            plan_name=self.plan_name,
            amount=self.amount,
            quantity=self.quantity,
            currency=self.currency,
            billing_cycle=BillingCycleType(self.billing_cycle),
            status=SubscriptionStatus(self.status),
            current_period_start=self.current_period_start,
            current_period_end=self.current_period_end,
            canceled_at=self.canceled_at,
            cancel_reason=self.cancel_reason,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID | None = None) -> "SubscriptionModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            customer_id=dto.customer_id,
            plan_name=dto.plan_name,
            amount=dto.amount,
            quantity=dto.quantity,
            currency=dto.currency,
            billing_cycle=dto.billing_cycle.value,
            status=dto.status.value,
            current_period_start=dto.current_period_start,
            current_period_end=dto.current_period_end,
            canceled_at=dto.canceled_at,
            cancel_reason=dto.cancel_reason,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<SubscriptionModel {self.plan_name} x{self.quantity} "
            f"{self.billing_cycle} status={self.status}>"
        )
