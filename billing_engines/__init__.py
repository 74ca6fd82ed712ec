"""
Module: billing_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines.  This is
    the canonical import surface for billing_modules.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import billing_kernel (domain, money, exceptions, logging).
    MUST NOT import billing_modules.

Invariants enforced:
    - Purity: engines NEVER read the clock.  Timestamps are parameters.
    - Decimal-only arithmetic: floats are forbidden for money.
    - Determinism: identical inputs always produce identical outputs.
"""

from billing_engines.invoice_totals import (
    InvoiceTotals,
    PaymentApplication,
    apply_payment,
    check_invoice_invariants,
    compute_due_date,
    compute_invoice_totals,
    compute_line_amounts,
)
from billing_engines.pricing import (
    CustomPricingRule,
    PricingResult,
    PricingRulesEngine,
    apply_pricing_rules,
)
from billing_engines.proration import ProrationCalculator, ProrationResult
from billing_engines.schedule import BillingPeriod, add_cycle_interval, compute_next_billing_period
from billing_engines.tax import ManualTaxCalculator, ManualTaxComputation
from billing_engines.usage import UsageCharge, aggregate_usage

__all__ = [
    "BillingPeriod",
    "CustomPricingRule",
    "InvoiceTotals",
    "ManualTaxCalculator",
    "ManualTaxComputation",
    "PaymentApplication",
    "PricingResult",
    "PricingRulesEngine",
    "ProrationCalculator",
    "ProrationResult",
    "UsageCharge",
    "add_cycle_interval",
    "aggregate_usage",
    "apply_payment",
    "apply_pricing_rules",
    "check_invoice_invariants",
    "compute_due_date",
    "compute_invoice_totals",
    "compute_line_amounts",
    "compute_next_billing_period",
]
