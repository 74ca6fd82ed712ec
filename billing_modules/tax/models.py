"""
Tax Domain Models.

Responsibility:
    Frozen dataclass DTOs for tax resolution: rates, exemptions, the
    calculation request and the calculation result.

Architecture:
    billing_modules -- module layer.
    These models are pure data containers with no I/O and no ORM coupling.
    Validity and coverage rules live on the exemption itself so every caller
    (resolver, reporting, admin) applies the same definition.

Invariants:
    - All models are ``frozen=True``.
    - All monetary fields and rates use ``Decimal``; rates are fractions in [0, 1].
    - ``TaxExemption.is_valid`` <=> status approved and not expired.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from billing_kernel.domain.billing_types import TaxType
from billing_kernel.domain.money import ZERO, round_money
from billing_kernel.exceptions import InvalidAmountError, InvalidJurisdictionError
from billing_engines.tax import build_jurisdiction_code, rate_is_effective

_COUNTRY_RE = re.compile(r"^[A-Z]{2}$")
_STATE_RE = re.compile(r"^[A-Z0-9]{1,3}$")


class ExemptionStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class ExemptionType(Enum):
    NONPROFIT = "nonprofit"
    GOVERNMENT = "government"
    RESALE = "resale"
    EXPORT = "export"
    EDUCATIONAL = "educational"
    RELIGIOUS = "religious"
    MEDICAL = "medical"
    OTHER = "other"


class CalculationMethod(Enum):
    """How the tax on a result was produced."""
    MANUAL = "manual"
    PLATFORM = "platform"
    EXTERNAL = "external"


@dataclass(frozen=True)
class TaxRate:
    """A tax rate for a country or a country+state pair."""
    id: UUID
    jurisdiction_code: str
    country: str
    tax_type: TaxType
    rate: Decimal
    state: str | None = None
    threshold: Decimal | None = None
    enabled: bool = True
    effective_date: date | None = None
    expiration_date: date | None = None
    description: str | None = None
    tenant_id: UUID | None = None
    updated_at: datetime | None = None

    def __post_init__(self):
        if not ZERO <= self.rate <= Decimal("1"):
            raise InvalidAmountError("rate", self.rate, "must be within [0, 1]")
        if self.threshold is not None and self.threshold < ZERO:
            raise InvalidAmountError("threshold", self.threshold, "cannot be negative")

    def is_effective(self, on_date: date) -> bool:
        return rate_is_effective(self, on_date)


@dataclass(frozen=True)
class TaxExemption:
    """A tenant- or customer-scoped tax exemption certificate."""
    id: UUID
    tenant_id: UUID
    exemption_type: ExemptionType
    status: ExemptionStatus
    organization_name: str
    exemption_number: str
    country: str
    issue_date: date
    customer_id: UUID | None = None
    state: str | None = None
    jurisdictions: tuple[str, ...] = ()
    expiration_date: date | None = None
    validation_data: dict[str, Any] | None = None

    @property
    def is_tenant_level(self) -> bool:
        return self.customer_id is None

    def is_valid(self, as_of: date) -> bool:
        if self.status is not ExemptionStatus.APPROVED:
            return False
        return self.expiration_date is None or self.expiration_date >= as_of

    def covers(self, country: str, state: str | None) -> bool:
        """Whether this exemption applies to the given jurisdiction."""
        if self.jurisdictions:
            return (
                build_jurisdiction_code(country, state) in self.jurisdictions
                or country in self.jurisdictions
            )
        if self.country != country:
            return False
        return self.state is None or self.state == state


@dataclass(frozen=True)
class Jurisdiction:
    """Where a charge is taxed.  Codes are ISO-style and upper case."""
    country: str
    state: str | None = None
    city: str | None = None
    postal_code: str | None = None

    @property
    def code(self) -> str:
        return build_jurisdiction_code(self.country, self.state)

    def validated(self) -> "Jurisdiction":
        """Normalized copy; raises InvalidJurisdictionError when malformed."""
        country = (self.country or "").strip().upper()
        state = (self.state or "").strip().upper() or None
        if not _COUNTRY_RE.match(country):
            raise InvalidJurisdictionError(self.country, self.state, "country must be 2 letters")
        if state is not None and not _STATE_RE.match(state):
            raise InvalidJurisdictionError(
                self.country, self.state, "state must be 1-3 letters or digits",
            )
        return replace(self, country=country, state=state)


@dataclass(frozen=True)
class TaxableLine:
    """One line sent to a tax provider."""
    amount: Decimal
    description: str = "Service"
    tax_code: str | None = None


@dataclass(frozen=True)
class TaxCalculationRequest:
    tenant_id: UUID
    amount: Decimal
    jurisdiction: Jurisdiction
    currency: str = "USD"
    line_items: tuple[TaxableLine, ...] = ()
    exemption_id: UUID | None = None
    customer_id: UUID | None = None
    calculation_date: date | None = None


@dataclass(frozen=True)
class TaxInfo:
    """One component of the tax on a result."""
    tax_type: TaxType
    rate: Decimal
    amount: Decimal
    jurisdiction: str
    tax_id: str | None = None


@dataclass(frozen=True)
class JurisdictionInfo:
    code: str
    name: str
    country: str
    state: str | None = None


@dataclass(frozen=True)
class ExemptionApplied:
    exemption_id: UUID
    exemption_type: ExemptionType
    organization_name: str
    exemption_number: str
    reason: str


@dataclass(frozen=True)
class TaxResult:
    """Outcome of TaxResolver.calculate_tax."""
    subtotal: Decimal
    total_tax_amount: Decimal
    total_amount: Decimal
    currency: str
    calculation_method: CalculationMethod
    tax_breakdown: tuple[TaxInfo, ...] = ()
    jurisdiction: JurisdictionInfo | None = None
    exemption_applied: ExemptionApplied | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_exempt(self) -> bool:
        return self.exemption_applied is not None

    @property
    def effective_rate(self) -> Decimal:
        if self.subtotal == ZERO:
            return ZERO
        return self.total_tax_amount / self.subtotal

    @classmethod
    def zero_tax(
        cls,
        amount: Decimal,
        currency: str,
        method: CalculationMethod,
        jurisdiction: JurisdictionInfo | None = None,
        exemption: ExemptionApplied | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "TaxResult":
        return cls(
            subtotal=round_money(amount),
            total_tax_amount=round_money(ZERO),
            total_amount=round_money(amount),
            currency=currency,
            calculation_method=method,
            jurisdiction=jurisdiction,
            exemption_applied=exemption,
            metadata=metadata or {},
        )
