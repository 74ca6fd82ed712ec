"""Usage ORM Persistence Model (``billing_modules.usage.orm``)."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class UsageRecordModel(TrackedBase):
    """ORM model for ``UsageRecord``."""

    __tablename__ = "usage_records"

    __table_args__ = (
        Index("idx_usage_records_subscription_recorded", "subscription_id", "recorded_at"),
        Index("idx_usage_records_tenant_id", "tenant_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    subscription_id: Mapped[UUID] = mapped_column(nullable=False)
    metric_name: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self):
        from billing_modules.usage.models import UsageRecord

        return UsageRecord(
            id=self.id,
            tenant_id=self.tenant_id,
            subscription_id=self.subscription_id,
            metric_name=self.metric_name,
            quantity=self.quantity,
            unit_price=self.unit_price,
            recorded_at=self.recorded_at,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID | None = None) -> "UsageRecordModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            subscription_id=dto.subscription_id,
            metric_name=dto.metric_name,
            quantity=dto.quantity,
            unit_price=dto.unit_price,
            recorded_at=dto.recorded_at,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<UsageRecordModel {self.metric_name} qty={self.quantity} at={self.recorded_at}>"
