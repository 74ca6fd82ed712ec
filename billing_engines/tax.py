"""
Tax Engine - rate selection, exemption selection and manual tax math.

Pure functions with no I/O - rates and exemptions are provided as parameters.

Rate selection prefers a rate for the exact (country, state) pair and falls
back to the country-level rate (state is None).  Only enabled rates whose
effective window contains the calculation date are considered.  When more
than one rate qualifies at the same level (a data problem: at most one
enabled rate should apply per pair), the most recently effective one wins
and a warning is logged.

Usage:
    from billing_engines.tax import ManualTaxCalculator, select_applicable_rate

    rate = select_applicable_rate(rates, "US", "CA", date(2024, 3, 1))
    result = ManualTaxCalculator().calculate(Decimal("100.00"), rate)
    result.tax_amount  # Decimal("7.25") for a 7.25% rate
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol, Sequence

from billing_kernel.domain.billing_types import TaxType
from billing_kernel.domain.money import ZERO, round_money
from billing_kernel.exceptions import InvalidAmountError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.tax")

_PROVIDER_TAX_TYPES: dict[str, TaxType] = {
    "vat": TaxType.VAT,
    "gst": TaxType.GST,
    "hst": TaxType.HST,
    "pst": TaxType.PST,
    "qst": TaxType.QST,
}


class RateCandidate(Protocol):
    country: str
    state: str | None
    rate: Decimal
    enabled: bool
    effective_date: date | None
    expiration_date: date | None
    threshold: Decimal | None


class ExemptionCandidate(Protocol):
    def is_valid(self, as_of: date) -> bool: ...

    def covers(self, country: str, state: str | None) -> bool: ...


@dataclass(frozen=True)
class ManualTaxComputation:
    """Outcome of applying one rate to one amount."""

    taxable_amount: Decimal
    tax_amount: Decimal
    rate: Decimal
    below_threshold: bool = False

    @property
    def total_amount(self) -> Decimal:
        return self.taxable_amount + self.tax_amount


def build_jurisdiction_code(country: str, state: str | None) -> str:
    """``US_CA`` for a state, ``US`` for a country."""
    return f"{country}_{state}" if state else country


def map_provider_tax_type(raw: str | None) -> TaxType:
    """Map a provider's tax type label onto TaxType; unknown labels are sales tax."""
    return _PROVIDER_TAX_TYPES.get((raw or "").lower(), TaxType.SALES_TAX)


def rate_is_effective(rate: RateCandidate, on_date: date) -> bool:
    if not rate.enabled:
        return False
    if rate.effective_date and on_date < rate.effective_date:
        return False
    if rate.expiration_date and on_date > rate.expiration_date:
        return False
    return True


def _latest(candidates: list, level: str, country: str, state: str | None):
    if len(candidates) > 1:
        logger.warning("tax_rate_ambiguous", extra={
            "country": country,
            "state": state,
            "level": level,
            "candidate_count": len(candidates),
        })
    return max(candidates, key=lambda r: r.effective_date or date.min)


def select_applicable_rate(
    rates: Sequence[RateCandidate],
    country: str,
    state: str | None,
    on_date: date,
) -> RateCandidate | None:
    """State-specific rate first, then country-level, else None."""
    effective = [r for r in rates if r.country == country and rate_is_effective(r, on_date)]

    if state:
        state_level = [r for r in effective if r.state == state]
        if state_level:
            return _latest(state_level, "state", country, state)

    country_level = [r for r in effective if r.state is None]
    if country_level:
        return _latest(country_level, "country", country, state)
    return None


def select_valid_exemption(
    exemptions: Sequence[ExemptionCandidate],
    as_of: date,
    country: str,
    state: str | None,
) -> ExemptionCandidate | None:
    """First exemption, in the given order, that is valid and covers the jurisdiction."""
    for exemption in exemptions:
        if exemption.is_valid(as_of) and exemption.covers(country, state):
            return exemption
    return None


class ManualTaxCalculator:
    """
    Apply a single resolved rate to an amount.

    Pure functions - no I/O, no database access.
    """

    def calculate(
        self,
        amount: Decimal,
        rate: RateCandidate | Decimal | None,
    ) -> ManualTaxComputation:
        """
        Tax = amount x rate, rounded to cents half-up.

        ``rate`` may be a rate record (threshold honoured), a bare Decimal, or
        None for "no applicable rate" (zero tax).

        Raises:
            InvalidAmountError: If amount is negative.
        """
        t0 = time.monotonic()
        if amount < ZERO:
            raise InvalidAmountError("amount", amount, "cannot be negative")

        if rate is None:
            return ManualTaxComputation(
                taxable_amount=amount, tax_amount=round_money(ZERO), rate=ZERO,
            )

        if isinstance(rate, Decimal):
            rate_value, threshold = rate, None
        else:
            rate_value, threshold = rate.rate, rate.threshold

        if threshold is not None and amount < threshold:
            logger.debug("tax_below_threshold", extra={
                "amount": str(amount),
                "threshold": str(threshold),
            })
            return ManualTaxComputation(
                taxable_amount=amount,
                tax_amount=round_money(ZERO),
                rate=rate_value,
                below_threshold=True,
            )

        tax = round_money(amount * rate_value)
        logger.debug("manual_tax_computed", extra={
            "amount": str(amount),
            "rate": str(rate_value),
            "tax_amount": str(tax),
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return ManualTaxComputation(taxable_amount=amount, tax_amount=tax, rate=rate_value)
