"""
Tax provider boundary: client protocols, minor-unit conversion, deadlines.

Two kinds of remote provider exist:

* the integrated tax platform, which speaks in minor currency units and
  returns a per-line breakdown (``IntegratedTaxClient``);
* a generic external tax service reached through a caller-supplied HTTP
  client (``ExternalTaxClient``).

The HTTP implementations live outside this package; only the shapes that
cross the boundary are defined here.  Every remote call is run through
``call_with_deadline`` so that an unresponsive provider cannot stall a
billing worker.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Protocol, Sequence, TypeVar

from billing_kernel.domain.money import HUNDRED, from_minor_units, round_money, to_minor_units
from billing_kernel.exceptions import BillingKernelError, ProviderError, ProviderTimeoutError
from billing_kernel.logging_config import get_logger
from billing_engines.tax import map_provider_tax_type
from billing_modules.tax.config import ExternalProviderConfig
from billing_modules.tax.models import (
    CalculationMethod,
    JurisdictionInfo,
    TaxCalculationRequest,
    TaxInfo,
    TaxResult,
)

logger = get_logger("modules.tax.providers")

T = TypeVar("T")

PLATFORM_PROVIDER = "integrated_platform"
EXTERNAL_PROVIDER = "external"


# ---------------------------------------------------------------------------
# Integrated platform wire shapes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlatformLineItem:
    amount_minor_units: int
    reference: str
    tax_code: str


@dataclass(frozen=True)
class CustomerAddress:
    country: str
    state: str | None = None
    city: str | None = None
    postal_code: str | None = None


@dataclass(frozen=True)
class PlatformTaxBreakdown:
    """``rate`` is a percentage as returned by the platform, e.g. ``7.25``."""
    jurisdiction: str
    rate: Decimal
    tax_amount_minor_units: int
    tax_type: str | None = None


@dataclass(frozen=True)
class PlatformLineResult:
    tax_breakdown: tuple[PlatformTaxBreakdown, ...] = ()


@dataclass(frozen=True)
class PlatformTaxCalculation:
    line_items: tuple[PlatformLineResult, ...]
    tax_amount_exclusive_minor_units: int
    calculation_id: str | None = None


class IntegratedTaxClient(Protocol):
    def calculate_tax(
        self,
        line_items: Sequence[PlatformLineItem],
        customer_address: CustomerAddress,
        currency: str,
    ) -> PlatformTaxCalculation: ...


class ExternalTaxClient(Protocol):
    def calculate_tax(
        self,
        request: TaxCalculationRequest,
        settings: ExternalProviderConfig,
    ) -> TaxResult: ...


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


def build_platform_line_items(
    request: TaxCalculationRequest,
    default_tax_code: str,
) -> list[PlatformLineItem]:
    """Request lines in minor units; a single "Service" line when none are given."""
    if not request.line_items:
        return [
            PlatformLineItem(
                amount_minor_units=to_minor_units(request.amount),
                reference="Service",
                tax_code=default_tax_code,
            )
        ]
    return [
        PlatformLineItem(
            amount_minor_units=to_minor_units(line.amount),
            reference=line.description,
            tax_code=line.tax_code or default_tax_code,
        )
        for line in request.line_items
    ]


def build_customer_address(request: TaxCalculationRequest) -> CustomerAddress:
    j = request.jurisdiction
    return CustomerAddress(
        country=j.country,
        state=j.state,
        city=j.city,
        postal_code=j.postal_code,
    )


def convert_platform_result(
    request: TaxCalculationRequest,
    jurisdiction: JurisdictionInfo,
    calculation: PlatformTaxCalculation,
) -> TaxResult:
    """Map the platform's per-line breakdown onto ``TaxInfo`` entries."""
    breakdown = tuple(
        TaxInfo(
            tax_type=map_provider_tax_type(item.tax_type),
            rate=Decimal(item.rate) / HUNDRED,
            amount=from_minor_units(item.tax_amount_minor_units),
            jurisdiction=item.jurisdiction,
        )
        for line in calculation.line_items
        for item in line.tax_breakdown
    )
    subtotal = round_money(request.amount)
    total_tax = from_minor_units(calculation.tax_amount_exclusive_minor_units)
    metadata = {}
    if calculation.calculation_id:
        metadata["calculation_id"] = calculation.calculation_id
    return TaxResult(
        subtotal=subtotal,
        total_tax_amount=total_tax,
        total_amount=subtotal + total_tax,
        currency=request.currency,
        calculation_method=CalculationMethod.PLATFORM,
        tax_breakdown=breakdown,
        jurisdiction=jurisdiction,
        metadata=metadata,
    )


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------


def call_with_deadline(provider: str, fn: Callable[[], T], timeout_seconds: float) -> T:
    """
    Run ``fn`` on a worker thread and wait at most ``timeout_seconds``.

    Raises:
        ProviderTimeoutError: The deadline expired.
        ProviderError: ``fn`` raised anything that is not a BillingKernelError.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"tax-{provider}")
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeoutError as exc:
        future.cancel()
        logger.warning("tax_provider_timeout", extra={
            "provider": provider,
            "timeout_seconds": timeout_seconds,
        })
        raise ProviderTimeoutError(provider, timeout_seconds) from exc
    except BillingKernelError:
        raise
    except Exception as exc:
        raise ProviderError(provider, f"{type(exc).__name__}: {exc}") from exc
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
