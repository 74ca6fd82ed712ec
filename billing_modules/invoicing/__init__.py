"""
Invoicing Module.

Responsibility:
    Computes invoice totals from line items, assigns per-tenant invoice
    numbers, derives due dates from payment terms and drives the invoice
    state machine (``InvoiceComputer``).

Invariants:
    - ``total_amount == subtotal + tax_amount - discount_amount``.
    - ``amount_due == max(0, total_amount - amount_paid)``.
    - Invoice numbers are unique per tenant.
    - Paid invoices are immutable.
"""

from billing_modules.invoicing.models import Invoice, InvoiceOutcome, LineItem, LineItemInput
from billing_modules.invoicing.selectors import InvoiceFilter
from billing_modules.invoicing.service import InvoiceComputer
from billing_modules.invoicing.workflows import INVOICE_WORKFLOW

__all__ = [
    "INVOICE_WORKFLOW",
    "Invoice",
    "InvoiceComputer",
    "InvoiceFilter",
    "InvoiceOutcome",
    "LineItem",
    "LineItemInput",
]
