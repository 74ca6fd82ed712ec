"""
Money helpers -- Decimal quantization and minor-unit conversion.

All monetary arithmetic in the system uses ``Decimal`` with ROUND_HALF_UP.
Amounts cross the integrated tax platform boundary in minor units (cents);
``to_minor_units`` / ``from_minor_units`` are the only conversions allowed.
"""

from decimal import ROUND_HALF_UP, Decimal

TWO_PLACES = Decimal("0.01")
FOUR_PLACES = Decimal("0.0001")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def round_money(amount: Decimal) -> Decimal:
    """Quantize to cents, half-up."""
    return Decimal(amount).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_decimal(value) -> Decimal:
    """Coerce int/str/Decimal input to Decimal; floats go through str()."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal currency amount to integer cents."""
    return int((Decimal(amount) * HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(minor_units: int) -> Decimal:
    """Convert integer cents back to a 2-place decimal amount."""
    return round_money(Decimal(minor_units) / HUNDRED)


def format_money(amount: Decimal) -> str:
    """Render with exactly two decimals (CSV and descriptions)."""
    return f"{round_money(amount):.2f}"


def format_rate_percent(rate: Decimal) -> str:
    """Render a fractional rate as a percentage with four decimals, e.g. ``7.2500%``."""
    pct = (Decimal(rate) * HUNDRED).quantize(FOUR_PLACES, rounding=ROUND_HALF_UP)
    return f"{pct:.4f}%"
