"""Usage read side."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from billing_kernel.selectors.base import BaseSelector
from billing_modules.usage.models import UsageRecord
from billing_modules.usage.orm import UsageRecordModel


@dataclass(frozen=True)
class UsageRecordFilter:
    """``recorded_from`` is inclusive, ``recorded_to`` exclusive."""
    tenant_id: UUID | None = None
    subscription_id: UUID | None = None
    metric_name: str | None = None
    recorded_from: datetime | None = None
    recorded_to: datetime | None = None


class UsageRecordSelector(BaseSelector[UsageRecordModel]):

    def find_usage(self, usage_filter: UsageRecordFilter) -> list[UsageRecord]:
        f = usage_filter
        stmt = select(UsageRecordModel)
        if f.tenant_id is not None:
            stmt = stmt.where(UsageRecordModel.tenant_id == f.tenant_id)
        if f.subscription_id is not None:
            stmt = stmt.where(UsageRecordModel.subscription_id == f.subscription_id)
        if f.metric_name is not None:
            stmt = stmt.where(UsageRecordModel.metric_name == f.metric_name)
        if f.recorded_from is not None:
            stmt = stmt.where(UsageRecordModel.recorded_at >= f.recorded_from)
        if f.recorded_to is not None:
            stmt = stmt.where(UsageRecordModel.recorded_at < f.recorded_to)
        stmt = stmt.order_by(UsageRecordModel.recorded_at, UsageRecordModel.metric_name)
        return [m.to_dto() for m in self.session.scalars(stmt)]
