"""
Tax Module.

Responsibility:
    Resolves the tax owed on a charge (``TaxResolver``), administers tax
    rates and exemption certificates (``TaxAdministrationService``) and
    produces tax reports with CSV export (``TaxReportingService``).

Architecture:
    Rate selection and manual tax arithmetic live in ``billing_engines.tax``.
    Provider clients are injected; configuration arrives as a ``TaxConfig``
    value and is never read from global state.

Failure modes:
    - ValidationError for negative amounts and malformed jurisdictions.
    - ConfigurationError when the selected provider is disabled or not set up.
    - ProviderError from the external provider; platform errors fall back
      to manual calculation.
"""

from billing_modules.tax.admin import TaxAdministrationService
from billing_modules.tax.config import TaxConfig, TaxProvider
from billing_modules.tax.models import (
    CalculationMethod,
    ExemptionStatus,
    ExemptionType,
    Jurisdiction,
    TaxCalculationRequest,
    TaxExemption,
    TaxRate,
    TaxResult,
)
from billing_modules.tax.reporting import (
    ReportPeriod,
    ReportType,
    TaxReportingService,
    export_report_to_csv,
    parse_summary_totals,
)
from billing_modules.tax.service import TaxResolver
from billing_modules.tax.workflows import EXEMPTION_WORKFLOW

__all__ = [
    "CalculationMethod",
    "EXEMPTION_WORKFLOW",
    "ExemptionStatus",
    "ExemptionType",
    "Jurisdiction",
    "ReportPeriod",
    "ReportType",
    "TaxAdministrationService",
    "TaxCalculationRequest",
    "TaxConfig",
    "TaxExemption",
    "TaxProvider",
    "TaxRate",
    "TaxReportingService",
    "TaxResolver",
    "TaxResult",
    "export_report_to_csv",
    "parse_summary_totals",
]
