"""
Subscription Domain Models.

Frozen dataclass DTOs.  ``amount`` is the price of one unit for one billing
period; the billed amount for a period comes from the pricing rules engine.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_kernel.domain.billing_types import BillingCycleType


class SubscriptionStatus(Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    SUSPENDED = "suspended"
    CANCELED = "canceled"


@dataclass(frozen=True)
class Subscription:
    id: UUID
    tenant_id: UUID
    plan_name: str
    amount: Decimal
    quantity: int
    currency: str
    billing_cycle: BillingCycleType
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    customer_id: UUID | None = None
    canceled_at: datetime | None = None
    cancel_reason: str | None = None

    @property
    def is_billable(self) -> bool:
        return self.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE)
