"""Usage Module: metered usage records billed as usage line items."""

from billing_modules.usage.models import UsageRecord
from billing_modules.usage.selectors import UsageRecordFilter
from billing_modules.usage.service import UsageBillingService

__all__ = [
    "UsageBillingService",
    "UsageRecord",
    "UsageRecordFilter",
]
