"""
Billing Cycle Domain Models.

Invariants:
    - A cycle is created ``pending``.  ``processing`` is the in-flight claim
      held only while ``process_billing_cycle`` runs.
    - ``paid`` is reached only through successful processing and always
      carries ``invoice_id``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from billing_kernel.domain.billing_types import BillingCycleStatus, BillingCycleType
from billing_kernel.domain.workflow import TransitionRecord
from billing_modules.invoicing.models import Invoice


@dataclass(frozen=True)
class BillingCycle:
    id: UUID
    tenant_id: UUID
    cycle_type: BillingCycleType
    start_date: datetime
    end_date: datetime
    billing_date: datetime
    total_amount: Decimal
    currency: str
    status: BillingCycleStatus
    subscription_id: UUID | None = None
    invoice_id: UUID | None = None
    processed_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CycleOutcome:
    cycle: BillingCycle
    transition: TransitionRecord


@dataclass(frozen=True)
class CycleProcessingResult:
    """A processed cycle, its invoice and every transition on the way."""
    cycle: BillingCycle
    invoice: Invoice
    transitions: tuple[TransitionRecord, ...]


@dataclass(frozen=True)
class CycleFailure:
    cycle_id: UUID
    error_code: str
    message: str


@dataclass(frozen=True)
class DueCycleRun:
    processed: tuple[CycleProcessingResult, ...] = ()
    failures: tuple[CycleFailure, ...] = ()

    @property
    def processed_count(self) -> int:
        return len(self.processed)

    @property
    def failure_count(self) -> int:
        return len(self.failures)
