"""
Invoice Totals Engine - line amounts, totals, due dates and payments.

Pure functions with deterministic behavior. No I/O.

Invoice tax here is computed per line from each line's own rate.  This is
deliberately independent of the jurisdiction-rate quote produced by the tax
resolver; the two paths are never merged.

Monetary invariants (checked by ``check_invoice_invariants``):
    total_amount = subtotal + tax_amount - discount_amount
    amount_due   = max(0, total_amount - amount_paid)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Protocol, Sequence

from billing_kernel.domain.billing_types import InvoiceStatus, PaymentTerms
from billing_kernel.domain.money import ZERO, round_money
from billing_kernel.exceptions import (
    InvalidAmountError,
    InvalidLineItemError,
    InvariantViolationError,
)
from billing_engines.tracer import traced_engine

_ONE = Decimal("1")

PAYMENT_TERM_DAYS: dict[PaymentTerms, int] = {
    PaymentTerms.DUE_ON_RECEIPT: 0,
    PaymentTerms.NET_15: 15,
    PaymentTerms.NET_30: 30,
    PaymentTerms.NET_45: 45,
    PaymentTerms.NET_60: 60,
    PaymentTerms.NET_90: 90,
}

DEFAULT_PAYMENT_TERMS = PaymentTerms.NET_30

OPEN_STATUSES = frozenset({InvoiceStatus.PENDING, InvoiceStatus.PARTIALLY_PAID})

# Width of the timestamp-derived suffix; counter suffixes are 4 or 5 digits.
FALLBACK_SUFFIX_DIGITS = 6


class BillableLine(Protocol):
    """Anything that carries the four billable fields of a line item."""

    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal | None
    discount_amount: Decimal


@dataclass(frozen=True)
class LineAmounts:
    amount: Decimal
    tax_amount: Decimal
    discount_amount: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class PaymentApplication:
    amount_paid: Decimal
    amount_due: Decimal

    @property
    def is_fully_paid(self) -> bool:
        return self.amount_due == ZERO


def validate_line(index: int, line: BillableLine) -> None:
    """Raise InvalidLineItemError for quantities, prices, rates or discounts out of range."""
    if line.quantity is None or line.quantity <= ZERO:
        raise InvalidLineItemError(index, f"quantity must be positive, got {line.quantity}")
    if line.unit_price is None or line.unit_price < ZERO:
        raise InvalidLineItemError(index, f"unit_price cannot be negative, got {line.unit_price}")
    if line.tax_rate is not None and not ZERO <= line.tax_rate <= _ONE:
        raise InvalidLineItemError(index, f"tax_rate must be within [0, 1], got {line.tax_rate}")
    if line.discount_amount is not None and line.discount_amount < ZERO:
        raise InvalidLineItemError(
            index, f"discount_amount cannot be negative, got {line.discount_amount}",
        )


def compute_line_amounts(line: BillableLine) -> LineAmounts:
    """amount = quantity x unit_price; tax = amount x tax_rate (cents, half-up)."""
    amount = round_money(Decimal(line.quantity) * Decimal(line.unit_price))
    tax = round_money(amount * line.tax_rate) if line.tax_rate is not None else round_money(ZERO)
    discount = round_money(line.discount_amount or ZERO)
    return LineAmounts(amount=amount, tax_amount=tax, discount_amount=discount)


@traced_engine("invoice_totals", "1.0")
def compute_invoice_totals(lines: Sequence[BillableLine]) -> InvoiceTotals:
    """
    Sum line amounts into invoice totals.

    Raises:
        InvalidLineItemError: No lines, or any line out of range.
        InvalidAmountError: Discounts exceed subtotal plus tax.
    """
    if not lines:
        raise InvalidLineItemError(0, "an invoice requires at least one line item")

    subtotal = tax = discount = round_money(ZERO)
    for index, line in enumerate(lines):
        validate_line(index, line)
        amounts = compute_line_amounts(line)
        subtotal += amounts.amount
        tax += amounts.tax_amount
        discount += amounts.discount_amount

    total = subtotal + tax - discount
    if total < ZERO:
        raise InvalidAmountError("total_amount", total, "discounts exceed invoice value")

    return InvoiceTotals(
        subtotal=subtotal,
        tax_amount=tax,
        discount_amount=discount,
        total_amount=total,
    )


def compute_amount_due(total_amount: Decimal, amount_paid: Decimal) -> Decimal:
    return max(round_money(ZERO), round_money(total_amount - amount_paid))


def apply_payment(total_amount: Decimal, amount_paid: Decimal, payment: Decimal) -> PaymentApplication:
    """
    Add a payment to what has been paid so far.

    Raises:
        InvalidAmountError: payment is zero or negative.
    """
    if payment is None or payment <= ZERO:
        raise InvalidAmountError("payment_amount", payment, "must be positive")
    new_paid = round_money(amount_paid + payment)
    return PaymentApplication(
        amount_paid=new_paid,
        amount_due=compute_amount_due(total_amount, new_paid),
    )


def compute_due_date(
    issued_date: datetime,
    payment_terms: PaymentTerms | None = None,
) -> datetime:
    """issued_date + term offset; custom or missing terms fall back to net 30."""
    days = PAYMENT_TERM_DAYS.get(
        payment_terms or DEFAULT_PAYMENT_TERMS,
        PAYMENT_TERM_DAYS[DEFAULT_PAYMENT_TERMS],
    )
    return issued_date + timedelta(days=days)


def check_invoice_invariants(
    subtotal: Decimal,
    tax_amount: Decimal,
    discount_amount: Decimal,
    total_amount: Decimal,
    amount_paid: Decimal,
    amount_due: Decimal,
) -> None:
    """Fail fast when stored figures disagree with each other."""
    if total_amount != subtotal + tax_amount - discount_amount:
        raise InvariantViolationError("total = subtotal + tax - discount", {
            "subtotal": subtotal,
            "tax_amount": tax_amount,
            "discount_amount": discount_amount,
            "total_amount": total_amount,
        })
    if amount_due < ZERO or amount_due != compute_amount_due(total_amount, amount_paid):
        raise InvariantViolationError("amount_due = max(0, total - paid)", {
            "total_amount": total_amount,
            "amount_paid": amount_paid,
            "amount_due": amount_due,
        })


def format_invoice_number(issued_date: datetime, sequence: int) -> str:
    """``INV-YYYYMM-NNNN``; sequences beyond 9999 keep all their digits."""
    return f"{invoice_number_prefix(issued_date)}-{sequence:04d}"


def invoice_number_prefix(issued_date: datetime) -> str:
    return f"INV-{issued_date:%Y%m}"


def fallback_invoice_number(issued_date: datetime) -> str:
    """Timestamp-derived number used when no sequence source is available.

    Uses the last six digits of the epoch milliseconds; collisions are
    possible and caught by the unique constraint.
    """
    millis = int(issued_date.timestamp() * 1000)
    return f"{invoice_number_prefix(issued_date)}-{millis % 1_000_000:0{FALLBACK_SUFFIX_DIGITS}d}"


def parse_invoice_sequence(invoice_number: str) -> int | None:
    """Trailing sequence of an ``INV-YYYYMM-NNNN`` number, or None.

    Six-digit suffixes are timestamp fallbacks, not counter values, and
    return None.
    """
    parts = invoice_number.rsplit("-", 1)
    if len(parts) != 2 or not parts[1].isdigit():
        return None
    if not 4 <= len(parts[1]) < FALLBACK_SUFFIX_DIGITS:
        return None
    return int(parts[1])


def is_overdue(
    status: InvoiceStatus,
    amount_due: Decimal,
    due_date: datetime,
    as_of: datetime,
) -> bool:
    """Open invoices with money outstanding past their due date."""
    return status in OPEN_STATUSES and amount_due > ZERO and due_date < as_of
