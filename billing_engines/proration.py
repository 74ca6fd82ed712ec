"""
Proration Calculator - time-weighted charges and credits.

Pure functions with deterministic behavior. No I/O.

When a recurring amount changes part-way through a billing period, the
difference is charged (upgrade) or credited (downgrade) in proportion to the
time remaining in the period:

    fraction  = clamp((period_end - change_date) / (period_end - period_start), 0, 1)
    proration = (new_amount - current_amount) x fraction

A change on the first instant of the period carries the full delta; a change
at the end of the period carries nothing.  A zero-length period yields a
zero fraction.

Usage:
    from billing_engines.proration import ProrationCalculator

    result = ProrationCalculator().calculate(
        current_amount=Decimal("100"),
        new_amount=Decimal("200"),
        period_start=datetime(2024, 1, 1, tzinfo=timezone.utc),
        period_end=datetime(2024, 1, 31, tzinfo=timezone.utc),
        change_date=datetime(2024, 1, 16, tzinfo=timezone.utc),
    )
    result.charge_amount  # Decimal("50.00")
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from billing_kernel.domain.money import ZERO, round_money, to_decimal
from billing_kernel.logging_config import get_logger
from billing_engines.tracer import traced_engine

logger = get_logger("engines.proration")

_ONE = Decimal("1")


@dataclass(frozen=True)
class ProrationResult:
    """
    Prorated adjustment for a mid-period change.

    ``proration_amount`` is signed; exactly one of ``charge_amount`` and
    ``credit_amount`` is non-zero unless the proration is zero.
    """

    proration_amount: Decimal
    charge_amount: Decimal
    credit_amount: Decimal
    fraction: Decimal = ZERO

    @classmethod
    def zero(cls) -> ProrationResult:
        return cls(
            proration_amount=round_money(ZERO),
            charge_amount=round_money(ZERO),
            credit_amount=round_money(ZERO),
            fraction=ZERO,
        )


def remaining_fraction(
    period_start: datetime,
    period_end: datetime,
    change_date: datetime,
) -> Decimal:
    """Share of the period still ahead of ``change_date``, clamped to [0, 1]."""
    total_seconds = Decimal(str((period_end - period_start).total_seconds()))
    if total_seconds <= ZERO:
        return ZERO
    remaining_seconds = Decimal(str((period_end - change_date).total_seconds()))
    fraction = remaining_seconds / total_seconds
    return max(ZERO, min(_ONE, fraction))


class ProrationCalculator:
    """Pure proration arithmetic over a billing period."""

    @traced_engine("proration", "1.0", fingerprint_fields=("current_amount", "new_amount", "change_date"))
    def calculate(
        self,
        current_amount: Decimal,
        new_amount: Decimal,
        period_start: datetime,
        period_end: datetime,
        change_date: datetime,
    ) -> ProrationResult:
        """
        Compute the prorated charge or credit.

        Args:
            current_amount: Amount billed for the full period today.
            new_amount: Amount the subscription changes to.
            period_start: Start of the current billing period.
            period_end: End of the current billing period.
            change_date: Instant the change takes effect.

        Returns:
            ProrationResult rounded to cents.
        """
        fraction = remaining_fraction(period_start, period_end, change_date)
        delta = to_decimal(new_amount) - to_decimal(current_amount)
        proration = round_money(delta * fraction)

        result = ProrationResult(
            proration_amount=proration,
            charge_amount=max(round_money(ZERO), proration),
            credit_amount=max(round_money(ZERO), -proration),
            fraction=fraction,
        )

        logger.debug("proration_calculated", extra={
            "current_amount": str(current_amount),
            "new_amount": str(new_amount),
            "fraction": str(fraction),
            "proration_amount": str(proration),
        })
        return result
