"""
Shared billing enumerations.

Values are the wire strings persisted in the database and exchanged with
callers.  Modules and engines both import from here so that a cycle type or
payment term means the same thing everywhere.
"""

from enum import Enum


class BillingCycleType(Enum):
    """Recurrence unit of a subscription's billing."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUALLY = "semi_annually"
    ANNUALLY = "annually"
    CUSTOM = "custom"


class PaymentTerms(Enum):
    """Offset from issue date to due date."""
    DUE_ON_RECEIPT = "due_on_receipt"
    NET_15 = "net_15"
    NET_30 = "net_30"
    NET_45 = "net_45"
    NET_60 = "net_60"
    NET_90 = "net_90"
    CUSTOM = "custom"


class InvoiceStatus(Enum):
    """Stored invoice lifecycle states."""
    DRAFT = "draft"
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    VOIDED = "voided"


class InvoiceType(Enum):
    SUBSCRIPTION = "subscription"
    USAGE = "usage"
    ONE_TIME = "one_time"
    CREDIT = "credit"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class LineItemType(Enum):
    SUBSCRIPTION = "subscription"
    USAGE = "usage"
    ONE_TIME = "one_time"
    TAX = "tax"
    DISCOUNT = "discount"
    CREDIT = "credit"
    ADJUSTMENT = "adjustment"


class BillingCycleStatus(Enum):
    """Billing cycle lifecycle states.

    PROCESSING is the in-flight claim held while an invoice is generated.
    """
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    CANCELLED = "cancelled"


class TaxType(Enum):
    SALES_TAX = "sales_tax"
    VAT = "vat"
    GST = "gst"
    HST = "hst"
    PST = "pst"
    QST = "qst"
    CUSTOM = "custom"
