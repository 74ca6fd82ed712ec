"""Billing cycle read side."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.billing_types import BillingCycleStatus
from billing_kernel.selectors.base import BaseSelector
from billing_modules.cycles.models import BillingCycle
from billing_modules.cycles.orm import BillingCycleModel

DEFAULT_LIMIT = 50


@dataclass(frozen=True)
class BillingCycleFilter:
    tenant_id: UUID | None = None
    subscription_id: UUID | None = None
    statuses: tuple[BillingCycleStatus, ...] = ()
    billing_from: datetime | None = None
    billing_to: datetime | None = None
    limit: int = DEFAULT_LIMIT


class BillingCycleSelector(BaseSelector[BillingCycleModel]):

    def get_billing_cycle(self, cycle_id: UUID) -> BillingCycle | None:
        model = self.session.get(BillingCycleModel, cycle_id)
        return model.to_dto() if model else None

    def find_billing_cycles(self, cycle_filter: BillingCycleFilter) -> list[BillingCycle]:
        f = cycle_filter
        stmt = select(BillingCycleModel)
        if f.tenant_id is not None:
            stmt = stmt.where(BillingCycleModel.tenant_id == f.tenant_id)
        if f.subscription_id is not None:
            stmt = stmt.where(BillingCycleModel.subscription_id == f.subscription_id)
        if f.statuses:
            stmt = stmt.where(BillingCycleModel.status.in_([s.value for s in f.statuses]))
        if f.billing_from is not None:
            stmt = stmt.where(BillingCycleModel.billing_date >= f.billing_from)
        if f.billing_to is not None:
            stmt = stmt.where(BillingCycleModel.billing_date <= f.billing_to)
        stmt = stmt.order_by(BillingCycleModel.billing_date, BillingCycleModel.id).limit(f.limit)
        return [m.to_dto() for m in self.session.scalars(stmt)]
