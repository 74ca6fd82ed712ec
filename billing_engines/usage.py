"""
Usage aggregation - metered usage into one charge per metric.

Pure functions, no I/O.  Quantities are summed per metric and the unit price
is the quantity-weighted average of the recorded prices, so
``quantity x unit_price`` reproduces the sum of the individual charges.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol, Sequence

from billing_kernel.domain.money import ZERO, round_money

# Matches the Numeric(38, 9) storage scale.
UNIT_PRICE_PLACES = Decimal("0.000000001")


class UsageLike(Protocol):
    metric_name: str
    quantity: Decimal
    unit_price: Decimal


@dataclass(frozen=True)
class UsageCharge:
    metric_name: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    record_count: int


def aggregate_usage(records: Sequence[UsageLike]) -> list[UsageCharge]:
    """One charge per metric, sorted by metric name.  Zero-quantity metrics are dropped."""
    quantities: dict[str, Decimal] = defaultdict(lambda: ZERO)
    extended: dict[str, Decimal] = defaultdict(lambda: ZERO)
    counts: dict[str, int] = defaultdict(int)

    for record in records:
        quantities[record.metric_name] += record.quantity
        extended[record.metric_name] += record.quantity * record.unit_price
        counts[record.metric_name] += 1

    charges = []
    for metric in sorted(quantities):
        quantity = quantities[metric]
        if quantity <= ZERO:
            continue
        unit_price = (extended[metric] / quantity).quantize(UNIT_PRICE_PLACES, rounding=ROUND_HALF_UP)
        charges.append(UsageCharge(
            metric_name=metric,
            quantity=quantity,
            unit_price=unit_price,
            amount=round_money(extended[metric]),
            record_count=counts[metric],
        ))
    return charges
