"""Subscription read side."""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.billing_types import BillingCycleType
from billing_kernel.selectors.base import BaseSelector
from billing_modules.subscriptions.models import Subscription, SubscriptionStatus
from billing_modules.subscriptions.orm import SubscriptionModel


@dataclass(frozen=True)
class SubscriptionFilter:
    tenant_id: UUID | None = None
    customer_id: UUID | None = None
    statuses: tuple[SubscriptionStatus, ...] = ()
    billing_cycle: BillingCycleType | None = None


class SubscriptionSelector(BaseSelector[SubscriptionModel]):

    def get_subscription(self, subscription_id: UUID) -> Subscription | None:
        model = self.session.get(SubscriptionModel, subscription_id)
        return model.to_dto() if model else None

    def find_subscriptions(self, subscription_filter: SubscriptionFilter) -> list[Subscription]:
        f = subscription_filter
        stmt = select(SubscriptionModel)
        if f.tenant_id is not None:
            stmt = stmt.where(SubscriptionModel.tenant_id == f.tenant_id)
        if f.customer_id is not None:
            stmt = stmt.where(SubscriptionModel.customer_id == f.customer_id)
        if f.statuses:
            stmt = stmt.where(SubscriptionModel.status.in_([s.value for s in f.statuses]))
        if f.billing_cycle is not None:
            stmt = stmt.where(SubscriptionModel.billing_cycle == f.billing_cycle.value)
        stmt = stmt.order_by(SubscriptionModel.current_period_start, SubscriptionModel.plan_name)
        return [m.to_dto() for m in self.session.scalars(stmt)]
