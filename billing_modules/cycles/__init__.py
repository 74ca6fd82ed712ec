"""
Billing Cycles Module.

``BillingCycleScheduler`` schedules recurring billing periods for
subscriptions and processes each cycle at most once into a subscription
invoice.
"""

from billing_modules.cycles.models import (
    BillingCycle,
    CycleFailure,
    CycleOutcome,
    CycleProcessingResult,
    DueCycleRun,
)
from billing_modules.cycles.selectors import BillingCycleFilter
from billing_modules.cycles.service import BillingCycleScheduler
from billing_modules.cycles.workflows import BILLING_CYCLE_WORKFLOW

__all__ = [
    "BILLING_CYCLE_WORKFLOW",
    "BillingCycle",
    "BillingCycleFilter",
    "BillingCycleScheduler",
    "CycleFailure",
    "CycleOutcome",
    "CycleProcessingResult",
    "DueCycleRun",
]
