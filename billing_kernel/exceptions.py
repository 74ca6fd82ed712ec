"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Billing code is called from API handlers, schedulers and reporting jobs.
Each of them reacts differently to "the invoice is already paid" than to
"the tax provider timed out".  Matching on message text is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        computer.mark_as_paid(invoice_id, Decimal("50.00"))
    except InvalidTransitionError as e:
        api_response(code=e.code, status=e.from_status, action=e.action)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- InvalidJurisdictionError
    |   +-- InvalidLineItemError
    |   +-- InvalidBillingPeriodError
    |   +-- InvalidReportFormatError
    |
    +-- NotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- BillingCycleNotFoundError
    |   +-- TaxExemptionNotFoundError
    |   +-- TaxRateNotFoundError
    |   +-- SubscriptionNotFoundError
    |
    +-- ConflictError
    |   +-- InvalidTransitionError
    |   +-- PaidInvoiceImmutableError
    |   +-- DuplicateInvoiceNumberError
    |   +-- CycleNotPendingError
    |   +-- DuplicateExemptionNumberError
    |
    +-- ProviderError
    |   +-- ProviderTimeoutError
    |
    +-- ConfigurationError
    |   +-- ProviderNotConfiguredError
    |   +-- ProviderDisabledError
    |
    +-- InvariantViolationError

===============================================================================
HANDLING PATTERNS
===============================================================================

* ValidationError, NotFoundError, ConflictError and ConfigurationError are
  always surfaced to the caller.
* ProviderError raised by the integrated tax platform is recovered inside
  TaxResolver by falling back to manual calculation.  Every other
  ProviderError is surfaced.
* InvariantViolationError signals a defect in calling code.  It is never
  caught inside the core.
"""

from decimal import Decimal


class BillingKernelError(Exception):
    """
    Base exception for all billing errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


# Validation errors


class ValidationError(BillingKernelError):
    """Base exception for rejected input."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """A monetary amount or quantity is out of range."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value}: {reason}")


class InvalidJurisdictionError(ValidationError):
    """Country or state code is malformed."""

    code: str = "INVALID_JURISDICTION"

    def __init__(self, country, state, reason: str):
        self.country = country
        self.state = state
        self.reason = reason
        super().__init__(
            f"Invalid jurisdiction country={country!r} state={state!r}: {reason}"
        )


class InvalidLineItemError(ValidationError):
    """A line item cannot be billed as given."""

    code: str = "INVALID_LINE_ITEM"

    def __init__(self, index: int, reason: str):
        self.index = index
        self.reason = reason
        super().__init__(f"Invalid line item #{index}: {reason}")


class InvalidBillingPeriodError(ValidationError):
    """Billing period or cycle type cannot be scheduled."""

    code: str = "INVALID_BILLING_PERIOD"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid billing period: {reason}")


class InvalidReportFormatError(ValidationError):
    """A tax report CSV could not be read back."""

    code: str = "INVALID_REPORT_FORMAT"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid report format: {reason}")


# Not-found errors


class NotFoundError(BillingKernelError):
    """Base exception for unresolved identifiers."""

    code: str = "NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    """Invoice with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id):
        self.invoice_id = str(invoice_id)
        super().__init__(f"Invoice not found: {invoice_id}")


class BillingCycleNotFoundError(NotFoundError):
    """Billing cycle with given ID was not found."""

    code: str = "BILLING_CYCLE_NOT_FOUND"

    def __init__(self, cycle_id):
        self.cycle_id = str(cycle_id)
        super().__init__(f"Billing cycle not found: {cycle_id}")


class TaxExemptionNotFoundError(NotFoundError):
    """Tax exemption with given ID was not found for the tenant."""

    code: str = "TAX_EXEMPTION_NOT_FOUND"

    def __init__(self, exemption_id):
        self.exemption_id = str(exemption_id)
        super().__init__(f"Tax exemption not found: {exemption_id}")


class TaxRateNotFoundError(NotFoundError):
    """Tax rate with given ID was not found."""

    code: str = "TAX_RATE_NOT_FOUND"

    def __init__(self, rate_id):
        self.rate_id = str(rate_id)
        super().__init__(f"Tax rate not found: {rate_id}")


class SubscriptionNotFoundError(NotFoundError):
    """Subscription with given ID was not found."""

    code: str = "SUBSCRIPTION_NOT_FOUND"

    def __init__(self, subscription_id):
        self.subscription_id = str(subscription_id)
        super().__init__(f"Subscription not found: {subscription_id}")


# Conflict errors


class ConflictError(BillingKernelError):
    """Base exception for operations illegal in the entity's current state."""

    code: str = "CONFLICT"


class InvalidTransitionError(ConflictError):
    """No workflow transition exists for the action from the current status."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(self, entity_type: str, entity_id, from_status: str, action: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.from_status = from_status
        self.action = action
        super().__init__(
            f"Cannot {action} {entity_type} {entity_id} in status '{from_status}'"
        )


class PaidInvoiceImmutableError(ConflictError):
    """Paid (or voided) invoices cannot be updated or deleted."""

    code: str = "PAID_INVOICE_IMMUTABLE"

    def __init__(self, invoice_id, status: str, operation: str):
        self.invoice_id = str(invoice_id)
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} invoice {invoice_id} in status '{status}'"
        )


class DuplicateInvoiceNumberError(ConflictError):
    """Invoice number already exists for the tenant."""

    code: str = "DUPLICATE_INVOICE_NUMBER"

    def __init__(self, tenant_id, invoice_number: str):
        self.tenant_id = str(tenant_id)
        self.invoice_number = invoice_number
        super().__init__(
            f"Invoice number {invoice_number} already exists for tenant {tenant_id}"
        )


class CycleNotPendingError(ConflictError):
    """Billing cycle could not be claimed because it is not pending."""

    code: str = "CYCLE_NOT_PENDING"

    def __init__(self, cycle_id, status: str):
        self.cycle_id = str(cycle_id)
        self.status = status
        super().__init__(
            f"Billing cycle {cycle_id} is not pending (status '{status}')"
        )


class DuplicateExemptionNumberError(ConflictError):
    """Exemption certificate number already registered for the tenant."""

    code: str = "DUPLICATE_EXEMPTION_NUMBER"

    def __init__(self, tenant_id, exemption_number: str):
        self.tenant_id = str(tenant_id)
        self.exemption_number = exemption_number
        super().__init__(
            f"Exemption number {exemption_number} already exists for tenant {tenant_id}"
        )


# Provider errors


class ProviderError(BillingKernelError):
    """A tax provider call failed."""

    code: str = "TAX_PROVIDER_FAILED"

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"Tax provider '{provider}' failed: {reason}")


class ProviderTimeoutError(ProviderError):
    """A tax provider call exceeded its deadline."""

    code: str = "TAX_PROVIDER_TIMEOUT"

    def __init__(self, provider: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(provider, f"no response within {timeout_seconds}s")


# Configuration errors


class ConfigurationError(BillingKernelError):
    """Billing configuration does not allow the requested operation."""

    code: str = "CONFIGURATION_ERROR"


class ProviderNotConfiguredError(ConfigurationError):
    """Tax provider is selected but required settings or client are missing."""

    code: str = "TAX_PROVIDER_NOT_CONFIGURED"

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(message)


class ProviderDisabledError(ConfigurationError):
    """Tax provider is selected but disabled in configuration."""

    code: str = "TAX_PROVIDER_DISABLED"

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Tax provider '{provider}' is not enabled")


# Invariant violations


class InvariantViolationError(BillingKernelError):
    """
    A computed monetary invariant does not hold.

    Raised as a fail-fast assertion; indicates a defect rather than bad input.
    """

    code: str = "MONETARY_INVARIANT_VIOLATED"

    def __init__(self, invariant: str, details: dict[str, Decimal]):
        self.invariant = invariant
        self.details = details
        rendered = ", ".join(f"{k}={v}" for k, v in details.items())
        super().__init__(f"Invariant '{invariant}' violated: {rendered}")
