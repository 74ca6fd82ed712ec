"""Usage Domain Models."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class UsageRecord:
    """One metered usage event for a subscription."""
    id: UUID
    tenant_id: UUID
    subscription_id: UUID
    metric_name: str
    quantity: Decimal
    unit_price: Decimal
    recorded_at: datetime
