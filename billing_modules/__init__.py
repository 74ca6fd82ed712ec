"""
Billing Modules.

Orchestration over the billing kernel and the pure engines.  Each module
contains:
- Domain models (frozen DTOs)
- ORM models and selectors (the read side)
- Workflows (state machines)
- A service that owns the transaction boundary

Modules:
- Tax: rates, exemptions, provider dispatch, administration, reporting
- Invoicing: totals, numbering, due dates, invoice lifecycle
- Subscriptions: lifecycle, pricing rules, proration
- Cycles: recurring billing cycle scheduling and processing
- Usage: metered usage aggregated into invoice line items
"""

from billing_modules import (
    invoicing,
    tax,
    subscriptions,
    cycles,
    usage,
)

__all__ = [
    "invoicing",
    "tax",
    "subscriptions",
    "cycles",
    "usage",
]
