"""
Tax Resolver -- exemption precedence, then provider dispatch.

Responsibility:
    Resolve the tax owed on an amount for a jurisdiction.  Exemptions are
    checked first; when none applies the configured provider computes the
    tax.  Rate arithmetic and rate/exemption selection are delegated to
    ``billing_engines.tax``; remote calls go through
    ``billing_modules.tax.providers``.

Architecture:
    billing_modules -- module layer.
    1. Reads rates and exemptions through the ``TaxRateSource`` and
       ``TaxExemptionSource`` protocols (no hidden lazy loading).
    2. Calls ``ManualTaxCalculator`` for manual tax (pure).
    3. Calls the injected platform or external client under a deadline.

Invariants:
    - Exemption precedence: explicit exemption id, then tenant-level, then
      customer-specific.  The first valid, covering exemption wins.
    - Exempt results always carry zero tax.
    - Configuration is injected; no global settings are read.
    - ``calculation_method`` is always reported.

Failure modes:
    - InvalidAmountError / InvalidJurisdictionError for bad input.
    - TaxExemptionNotFoundError for an explicit exemption id that does not
      exist for the tenant.
    - ProviderDisabledError / ProviderNotConfiguredError when the selected
      provider cannot be used.  Never recovered.
    - ProviderError from the integrated platform is recovered with a manual
      calculation; the original error is logged and kept in result metadata.
      ProviderError from the external provider is surfaced.

Usage:
    resolver = TaxResolver(
        config=TaxConfig.with_defaults(),
        rate_source=TaxRateSelector(session),
        exemption_source=TaxExemptionSelector(session),
        clock=clock,
    )
    result = resolver.calculate_tax(TaxCalculationRequest(
        tenant_id=tenant_id,
        amount=Decimal("100.00"),
        jurisdiction=Jurisdiction(country="US", state="CA"),
    ))
"""

from __future__ import annotations

import time
from dataclasses import replace
from datetime import date

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.billing_types import TaxType
from billing_kernel.domain.money import ZERO, round_money, to_decimal
from billing_kernel.exceptions import (
    InvalidAmountError,
    ProviderDisabledError,
    ProviderError,
    ProviderNotConfiguredError,
    TaxExemptionNotFoundError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_engines.tax import ManualTaxCalculator, select_applicable_rate, select_valid_exemption
from billing_modules.tax.config import TaxConfig, TaxProvider
from billing_modules.tax.models import (
    CalculationMethod,
    ExemptionApplied,
    ExemptionStatus,
    Jurisdiction,
    JurisdictionInfo,
    TaxCalculationRequest,
    TaxExemption,
    TaxInfo,
    TaxResult,
)
from billing_modules.tax.providers import (
    EXTERNAL_PROVIDER,
    PLATFORM_PROVIDER,
    ExternalTaxClient,
    IntegratedTaxClient,
    build_customer_address,
    build_platform_line_items,
    call_with_deadline,
    convert_platform_result,
)
from billing_modules.tax.selectors import (
    TaxExemptionFilter,
    TaxExemptionSource,
    TaxRateFilter,
    TaxRateSource,
)

logger = get_logger("modules.tax.service")


class TaxResolver:
    """
    Resolves exemptions or tax for an amount and jurisdiction.

    Contract:
        ``calculate_tax`` is read-only against the entity store.  The only
        I/O beyond store reads is the provider call, which is bounded by a
        deadline.

    Guarantees:
        - Exempt and no-rate results have ``total_tax_amount == 0``.
        - For manual results, ``total_amount == subtotal + total_tax_amount``.
        - An integrated platform failure never surfaces as an exception.

    Non-goals:
        - Does NOT write invoice tax; invoices carry per-line rates.
        - Does NOT persist results.
    """

    def __init__(
        self,
        config: TaxConfig,
        rate_source: TaxRateSource,
        exemption_source: TaxExemptionSource,
        clock: Clock | None = None,
        platform_client: IntegratedTaxClient | None = None,
        external_client: ExternalTaxClient | None = None,
    ):
        self._config = config
        self._rates = rate_source
        self._exemptions = exemption_source
        self._clock = clock or SystemClock()
        self._platform_client = platform_client
        self._external_client = external_client
        self._calculator = ManualTaxCalculator()

    # =========================================================================
    # Entry point
    # =========================================================================

    def calculate_tax(self, request: TaxCalculationRequest) -> TaxResult:
        """
        Resolve tax for ``request``.

        Raises:
            InvalidAmountError: Negative amount.
            InvalidJurisdictionError: Malformed country or state.
            TaxExemptionNotFoundError: Unknown explicit exemption id.
            ConfigurationError: Selected provider disabled or unconfigured.
            ProviderError: External provider failure.
        """
        t0 = time.monotonic()
        amount = to_decimal(request.amount)
        if amount < ZERO:
            raise InvalidAmountError("amount", amount, "cannot be negative")
        jurisdiction = request.jurisdiction.validated()
        request = replace(request, amount=amount, jurisdiction=jurisdiction)
        as_of = request.calculation_date or self._clock.now().date()

        with LogContext.bind(tenant_id=request.tenant_id):
            logger.info("tax_calculation_started", extra={
                "amount": str(amount),
                "currency": request.currency,
                "jurisdiction": jurisdiction.code,
                "provider": self._config.provider.value,
                "has_exemption_id": request.exemption_id is not None,
            })

            exemption = self._find_exemption(request, jurisdiction, as_of)
            if exemption is not None:
                result = self._exempt_result(request, jurisdiction, exemption)
            else:
                result = self._dispatch(request, jurisdiction, as_of)

            logger.info("tax_calculation_completed", extra={
                "calculation_method": result.calculation_method.value,
                "subtotal": str(result.subtotal),
                "total_tax_amount": str(result.total_tax_amount),
                "exempt": result.is_exempt,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            })
        return result

    # =========================================================================
    # Exemptions
    # =========================================================================

    def _find_exemption(
        self,
        request: TaxCalculationRequest,
        jurisdiction: Jurisdiction,
        as_of: date,
    ) -> TaxExemption | None:
        if not self._config.exemptions.enabled:
            return None

        if request.exemption_id is not None:
            explicit = self._exemptions.get_exemption(request.exemption_id)
            if explicit is None or explicit.tenant_id != request.tenant_id:
                raise TaxExemptionNotFoundError(request.exemption_id)
            if select_valid_exemption([explicit], as_of, jurisdiction.country, jurisdiction.state):
                return explicit
            logger.info("tax_exemption_not_applicable", extra={
                "exemption_id": str(explicit.id),
                "status": explicit.status.value,
                "expiration_date": explicit.expiration_date,
            })

        tenant_level = self._exemptions.find_exemptions(TaxExemptionFilter(
            tenant_id=request.tenant_id,
            tenant_level_only=True,
            status=ExemptionStatus.APPROVED,
        ))
        found = select_valid_exemption(tenant_level, as_of, jurisdiction.country, jurisdiction.state)
        if found is not None:
            return found

        if request.customer_id is None:
            return None
        customer_level = self._exemptions.find_exemptions(TaxExemptionFilter(
            tenant_id=request.tenant_id,
            customer_id=request.customer_id,
            status=ExemptionStatus.APPROVED,
        ))
        return select_valid_exemption(customer_level, as_of, jurisdiction.country, jurisdiction.state)

    def _exempt_result(
        self,
        request: TaxCalculationRequest,
        jurisdiction: Jurisdiction,
        exemption: TaxExemption,
    ) -> TaxResult:
        reason = f"Tax exempt: {exemption.organization_name} ({exemption.exemption_number})"
        logger.info("tax_exemption_applied", extra={
            "exemption_id": str(exemption.id),
            "exemption_type": exemption.exemption_type.value,
            "tenant_level": exemption.is_tenant_level,
        })
        return TaxResult.zero_tax(
            request.amount,
            request.currency,
            CalculationMethod.MANUAL,
            jurisdiction=self._jurisdiction_info(jurisdiction),
            exemption=ExemptionApplied(
                exemption_id=exemption.id,
                exemption_type=exemption.exemption_type,
                organization_name=exemption.organization_name,
                exemption_number=exemption.exemption_number,
                reason=reason,
            ),
        )

    # =========================================================================
    # Provider dispatch
    # =========================================================================

    def _dispatch(
        self,
        request: TaxCalculationRequest,
        jurisdiction: Jurisdiction,
        as_of: date,
    ) -> TaxResult:
        provider = self._config.provider

        if provider is TaxProvider.INTEGRATED_PLATFORM:
            try:
                return self._calculate_with_platform(request, jurisdiction)
            except ProviderError as exc:
                logger.warning("tax_platform_fallback_to_manual", extra={
                    "error_code": exc.code,
                    "reason": exc.reason,
                })
                manual = self._calculate_manually(request, jurisdiction, as_of)
                return replace(manual, metadata={
                    **manual.metadata,
                    "fallback_from": CalculationMethod.PLATFORM.value,
                    "fallback_reason": str(exc),
                })

        if provider is TaxProvider.EXTERNAL:
            return self._calculate_with_external(request)

        return self._calculate_manually(request, jurisdiction, as_of)

    def _calculate_manually(
        self,
        request: TaxCalculationRequest,
        jurisdiction: Jurisdiction,
        as_of: date,
    ) -> TaxResult:
        info = self._jurisdiction_info(jurisdiction)

        if not self._config.enable_regional_tax:
            computation = self._calculator.calculate(request.amount, self._config.default_tax_rate)
            return self._manual_result(
                request, info, computation, TaxType.SALES_TAX, tax_id=info.code, metadata={},
            )

        candidates = self._rates.find_rates(TaxRateFilter(
            country=jurisdiction.country,
            enabled=True,
            effective_on=as_of,
        ))
        rate = select_applicable_rate(candidates, jurisdiction.country, jurisdiction.state, as_of)
        if rate is None:
            logger.info("tax_rate_not_found", extra={"jurisdiction": jurisdiction.code})
            return TaxResult.zero_tax(
                request.amount, request.currency, CalculationMethod.MANUAL, jurisdiction=info,
            )

        computation = self._calculator.calculate(request.amount, rate)
        metadata = {"tax_rate_id": str(rate.id)}
        if computation.below_threshold:
            metadata["below_threshold"] = True
        return self._manual_result(
            request, info, computation, rate.tax_type,
            tax_id=rate.jurisdiction_code, metadata=metadata,
        )

    def _manual_result(self, request, info, computation, tax_type, tax_id, metadata) -> TaxResult:
        subtotal = round_money(request.amount)
        return TaxResult(
            subtotal=subtotal,
            total_tax_amount=computation.tax_amount,
            total_amount=subtotal + computation.tax_amount,
            currency=request.currency,
            calculation_method=CalculationMethod.MANUAL,
            tax_breakdown=(
                TaxInfo(
                    tax_type=tax_type,
                    rate=computation.rate,
                    amount=computation.tax_amount,
                    jurisdiction=info.name,
                    tax_id=tax_id,
                ),
            ),
            jurisdiction=info,
            metadata=metadata,
        )

    def _calculate_with_platform(
        self,
        request: TaxCalculationRequest,
        jurisdiction: Jurisdiction,
    ) -> TaxResult:
        settings = self._config.platform
        if not settings.enabled:
            raise ProviderDisabledError(PLATFORM_PROVIDER)
        if self._platform_client is None:
            raise ProviderNotConfiguredError(
                PLATFORM_PROVIDER, "Integrated tax platform client is not configured",
            )

        client = self._platform_client
        line_items = build_platform_line_items(request, settings.default_tax_code)
        address = build_customer_address(request)
        calculation = call_with_deadline(
            PLATFORM_PROVIDER,
            lambda: client.calculate_tax(line_items, address, request.currency),
            self._config.provider_timeout_seconds,
        )
        return convert_platform_result(request, self._jurisdiction_info(jurisdiction), calculation)

    def _calculate_with_external(self, request: TaxCalculationRequest) -> TaxResult:
        settings = self._config.external
        if not settings.is_configured:
            raise ProviderNotConfiguredError(
                EXTERNAL_PROVIDER, "External tax provider is not configured",
            )
        if self._external_client is None:
            raise ProviderNotConfiguredError(
                EXTERNAL_PROVIDER, "External tax provider client is not configured",
            )

        client = self._external_client
        result = call_with_deadline(
            EXTERNAL_PROVIDER,
            lambda: client.calculate_tax(request, settings),
            settings.timeout_seconds,
        )
        if result.calculation_method is not CalculationMethod.EXTERNAL:
            result = replace(result, calculation_method=CalculationMethod.EXTERNAL)
        return result

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _jurisdiction_info(jurisdiction: Jurisdiction) -> JurisdictionInfo:
        return JurisdictionInfo(
            code=jurisdiction.code,
            name=jurisdiction.state or jurisdiction.country,
            country=jurisdiction.country,
            state=jurisdiction.state,
        )
