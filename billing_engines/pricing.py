"""
Pricing Rules Engine - tiered discounts for subscription pricing.

Pure functions with deterministic behavior. No I/O.

Rules are applied as a left-fold over an ordered tuple of pure functions.
Each rule receives the running amount and the pricing context and returns
``(new_amount, description | None)``.  Discounts therefore compound on the
running total instead of summing percentages, and a description is recorded
only when a rule actually changes the amount.

Default rule order:
    1. Annual billing discount (20%)
    2. Volume discount (more than 10 units: 2% per unit, at most 30%)
    3. Enterprise discount (15% when gross exceeds 1000)
    4. Custom discount (``CustomPricingRule.discount_percent``)
    5. Maximum discount cap (50% of gross unless the custom rule says otherwise)
    6. Minimum price floor ($5 unless the custom rule says otherwise)

Usage:
    from billing_engines.pricing import PricingRulesEngine
    from billing_kernel.domain.billing_types import BillingCycleType

    result = PricingRulesEngine().apply_pricing_rules(
        Decimal("100"), BillingCycleType.ANNUALLY, 1,
    )
    result.final_amount    # Decimal("80.00")
    result.rules_applied   # ("Annual billing discount: 20%",)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from billing_kernel.domain.billing_types import BillingCycleType
from billing_kernel.domain.money import HUNDRED, ZERO, round_money, to_decimal
from billing_kernel.exceptions import InvalidAmountError
from billing_kernel.logging_config import get_logger
from billing_engines.tracer import traced_engine

logger = get_logger("engines.pricing")


# ============================================================================
# Constants
# ============================================================================

ANNUAL_DISCOUNT_PERCENT = Decimal("20")
VOLUME_THRESHOLD_UNITS = 10
VOLUME_PERCENT_PER_UNIT = Decimal("2")
VOLUME_MAX_PERCENT = Decimal("30")
ENTERPRISE_THRESHOLD = Decimal("1000")
ENTERPRISE_DISCOUNT_PERCENT = Decimal("15")
DEFAULT_MAXIMUM_DISCOUNT_PERCENT = Decimal("50")
DEFAULT_MINIMUM_PRICE = Decimal("5")


# ============================================================================
# Value Objects
# ============================================================================


@dataclass(frozen=True)
class CustomPricingRule:
    """
    Tenant- or deal-specific pricing overrides.

    All percentages are expressed as numbers from 0 to 100.
    """

    discount_percent: Decimal = ZERO
    minimum_commitment: Decimal | None = None
    maximum_discount: Decimal | None = None

    def __post_init__(self) -> None:
        if not ZERO <= self.discount_percent <= HUNDRED:
            raise InvalidAmountError(
                "discount_percent", self.discount_percent, "must be between 0 and 100",
            )
        if self.maximum_discount is not None and not ZERO <= self.maximum_discount <= HUNDRED:
            raise InvalidAmountError(
                "maximum_discount", self.maximum_discount, "must be between 0 and 100",
            )
        if self.minimum_commitment is not None and self.minimum_commitment < ZERO:
            raise InvalidAmountError(
                "minimum_commitment", self.minimum_commitment, "cannot be negative",
            )


@dataclass(frozen=True)
class PricingContext:
    """Inputs every rule may consult.  ``gross_amount`` = base x quantity."""

    base_amount: Decimal
    billing_cycle: BillingCycleType
    quantity: int
    gross_amount: Decimal
    custom_rule: CustomPricingRule | None = None

    @property
    def maximum_discount_percent(self) -> Decimal:
        if self.custom_rule and self.custom_rule.maximum_discount is not None:
            return self.custom_rule.maximum_discount
        return DEFAULT_MAXIMUM_DISCOUNT_PERCENT

    @property
    def minimum_price(self) -> Decimal:
        if self.custom_rule and self.custom_rule.minimum_commitment is not None:
            return self.custom_rule.minimum_commitment
        return DEFAULT_MINIMUM_PRICE


@dataclass(frozen=True)
class PricingResult:
    """Outcome of applying all pricing rules."""

    gross_amount: Decimal
    final_amount: Decimal
    discount_applied: Decimal
    rules_applied: tuple[str, ...]

    @property
    def discount_percent(self) -> Decimal:
        if self.gross_amount == ZERO:
            return ZERO
        return self.discount_applied / self.gross_amount * HUNDRED


PricingRule = Callable[[Decimal, PricingContext], "tuple[Decimal, str | None]"]


def _pct(value: Decimal) -> str:
    """``Decimal("50")`` -> ``"50"``, ``Decimal("12.50")`` -> ``"12.5"``."""
    return f"{Decimal(value).normalize():f}"


def _off(amount: Decimal, percent: Decimal) -> Decimal:
    return amount * (HUNDRED - percent) / HUNDRED


# ============================================================================
# Rules
# ============================================================================


def annual_billing_rule(running: Decimal, ctx: PricingContext) -> tuple[Decimal, str | None]:
    if ctx.billing_cycle is not BillingCycleType.ANNUALLY:
        return running, None
    return (
        _off(running, ANNUAL_DISCOUNT_PERCENT),
        f"Annual billing discount: {_pct(ANNUAL_DISCOUNT_PERCENT)}%",
    )


def volume_rule(running: Decimal, ctx: PricingContext) -> tuple[Decimal, str | None]:
    if ctx.quantity <= VOLUME_THRESHOLD_UNITS:
        return running, None
    percent = min(VOLUME_PERCENT_PER_UNIT * ctx.quantity, VOLUME_MAX_PERCENT)
    return _off(running, percent), f"Volume discount: {_pct(percent)}%"


def enterprise_rule(running: Decimal, ctx: PricingContext) -> tuple[Decimal, str | None]:
    if ctx.gross_amount <= ENTERPRISE_THRESHOLD:
        return running, None
    return (
        _off(running, ENTERPRISE_DISCOUNT_PERCENT),
        f"Enterprise discount: {_pct(ENTERPRISE_DISCOUNT_PERCENT)}%",
    )


def custom_discount_rule(running: Decimal, ctx: PricingContext) -> tuple[Decimal, str | None]:
    if ctx.custom_rule is None or ctx.custom_rule.discount_percent == ZERO:
        return running, None
    percent = ctx.custom_rule.discount_percent
    return _off(running, percent), f"Custom discount: {_pct(percent)}%"


def maximum_discount_cap_rule(running: Decimal, ctx: PricingContext) -> tuple[Decimal, str | None]:
    cap = ctx.maximum_discount_percent
    lowest_allowed = _off(ctx.gross_amount, cap)
    if running >= lowest_allowed:
        return running, None
    return lowest_allowed, f"Maximum discount cap: {_pct(cap)}%"


def minimum_price_rule(running: Decimal, ctx: PricingContext) -> tuple[Decimal, str | None]:
    floor = ctx.minimum_price
    if running >= floor:
        return running, None
    return floor, f"Minimum price enforcement: ${_pct(floor)}"


DEFAULT_RULES: tuple[PricingRule, ...] = (
    annual_billing_rule,
    volume_rule,
    enterprise_rule,
    custom_discount_rule,
    maximum_discount_cap_rule,
    minimum_price_rule,
)


# ============================================================================
# Engine
# ============================================================================


class PricingRulesEngine:
    """
    Apply sequential discount rules to a base amount.

    Pure functions - no I/O, no database access.  Safe to share between
    threads; the engine holds only its immutable rule tuple.
    """

    def __init__(self, rules: tuple[PricingRule, ...] = DEFAULT_RULES):
        self._rules = rules

    @traced_engine("pricing", "1.0", fingerprint_fields=("base_amount", "billing_cycle", "quantity"))
    def apply_pricing_rules(
        self,
        base_amount: Decimal,
        billing_cycle: BillingCycleType,
        quantity: int = 1,
        custom_rule: CustomPricingRule | None = None,
    ) -> PricingResult:
        """
        Fold every rule over the gross amount.

        Args:
            base_amount: Unit price per billing period.
            billing_cycle: Billing cycle of the subscription.
            quantity: Number of units (seats); at least 1.
            custom_rule: Optional deal-specific overrides.

        Returns:
            PricingResult with the final amount rounded to cents.

        Raises:
            InvalidAmountError: Negative base amount or quantity below 1.
        """
        t0 = time.monotonic()
        base_amount = to_decimal(base_amount)
        if base_amount < ZERO:
            raise InvalidAmountError("base_amount", base_amount, "cannot be negative")
        if quantity < 1:
            raise InvalidAmountError("quantity", quantity, "must be at least 1")

        gross = base_amount * quantity
        ctx = PricingContext(
            base_amount=base_amount,
            billing_cycle=billing_cycle,
            quantity=quantity,
            gross_amount=gross,
            custom_rule=custom_rule,
        )

        running = gross
        descriptions: list[str] = []
        for rule in self._rules:
            new_amount, description = rule(running, ctx)
            if new_amount != running and description:
                descriptions.append(description)
            running = new_amount

        final_amount = round_money(running)
        discount = max(ZERO, round_money(gross) - final_amount)

        logger.info("pricing_rules_applied", extra={
            "base_amount": str(base_amount),
            "billing_cycle": billing_cycle.value,
            "quantity": quantity,
            "gross_amount": str(gross),
            "final_amount": str(final_amount),
            "rules_applied": descriptions,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })

        return PricingResult(
            gross_amount=round_money(gross),
            final_amount=final_amount,
            discount_applied=discount,
            rules_applied=tuple(descriptions),
        )


def apply_pricing_rules(
    base_amount: Decimal,
    billing_cycle: BillingCycleType,
    quantity: int = 1,
    custom_rule: CustomPricingRule | None = None,
) -> PricingResult:
    """Convenience wrapper using the default rule order."""
    return PricingRulesEngine().apply_pricing_rules(
        base_amount, billing_cycle, quantity, custom_rule,
    )
