"""
Pure domain layer.

Value objects, enumerations and time abstraction with NO dependencies on
the ORM, the database or I/O.
"""

from billing_kernel.domain.billing_types import (
    BillingCycleStatus,
    BillingCycleType,
    InvoiceStatus,
    InvoiceType,
    LineItemType,
    PaymentTerms,
    TaxType,
)
from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.workflow import Guard, Transition, TransitionRecord, Workflow

__all__ = [
    "BillingCycleStatus",
    "BillingCycleType",
    "Clock",
    "DeterministicClock",
    "Guard",
    "InvoiceStatus",
    "InvoiceType",
    "LineItemType",
    "PaymentTerms",
    "SystemClock",
    "TaxType",
    "Transition",
    "TransitionRecord",
    "Workflow",
]
