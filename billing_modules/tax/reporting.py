"""
Tax Reporting (``billing_modules.tax.reporting``).

Responsibility
--------------
Aggregates paid invoices issued in a reporting period into tax reports:
summary totals with per-jurisdiction and per-exemption breakdowns, one row
per invoice (detailed), exempt activity with the certificates that covered
it (exemptions), and a compliance review (audit).  Reports export to CSV
and the summary TOTALS section parses back into the same totals.

Architecture position
---------------------
**Modules layer** -- read-only.  ``TaxReportingService`` loads invoices,
rates and exemptions through selectors and hands them to the pure builder
functions below; the CSV writer and parser are plain functions too.

Invariants enforced
-------------------
* Only ``paid`` invoices count, filtered to the report currency.
* ``gross_sales == taxable_amount + exempt_amount`` in every summary.
* Totals are quantized to cents, so ``parse_summary_totals`` of an exported
  summary equals the summary's totals.

Failure modes
-------------
* End date before start date  -> InvalidBillingPeriodError.
* Jurisdiction filter that is not ``CC`` or ``CC_SS``  -> InvalidJurisdictionError.
* CSV without a complete TOTALS section  -> InvalidReportFormatError.
"""

from __future__ import annotations

import csv
import io
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, time as dt_time, timedelta, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from billing_kernel.domain.billing_types import InvoiceStatus, TaxType
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.money import (
    HUNDRED,
    ZERO,
    format_money,
    format_rate_percent,
    round_money,
)
from billing_kernel.exceptions import (
    InvalidBillingPeriodError,
    InvalidJurisdictionError,
    InvalidReportFormatError,
)
from billing_kernel.logging_config import get_logger
from billing_engines.tax import build_jurisdiction_code
from billing_modules.invoicing.models import Invoice
from billing_modules.invoicing.selectors import InvoiceFilter, InvoiceSelector
from billing_modules.tax.config import JurisdictionConfig, TaxConfig
from billing_modules.tax.models import ExemptionStatus, JurisdictionInfo, TaxExemption, TaxRate
from billing_modules.tax.selectors import (
    TaxExemptionFilter,
    TaxExemptionSelector,
    TaxRateFilter,
    TaxRateSelector,
)

logger = get_logger("modules.tax.reporting")

DEFAULT_REPORT_COUNTRY = "US"
UNKNOWN_EXEMPTION = "unknown"
STALE_RATE_AGE = timedelta(days=730)
FREQUENCY_TOLERANCE_DAYS = 7
EXPECTED_PERIOD_DAYS = {
    "monthly": 31,
    "quarterly": 92,
    "annually": 365,
}

RATE_PLACES = Decimal("0.000001")

TOTALS_LABELS = (
    ("Gross Sales", "gross_sales"),
    ("Taxable Amount", "taxable_amount"),
    ("Exempt Amount", "exempt_amount"),
    ("Total Tax Collected", "total_tax_collected"),
    ("Total Transactions", "total_transactions"),
    ("Exempt Transactions", "exempt_transactions"),
)
_COUNT_FIELDS = {"total_transactions", "exempt_transactions"}

TAX_BREAKDOWN_HEADER = (
    "Tax Type", "Jurisdiction", "Rate", "Taxable Amount", "Tax Amount", "Transaction Count",
)
EXEMPTION_BREAKDOWN_HEADER = (
    "Exemption Type", "Exempt Amount", "Transaction Count", "Exemption Count",
)
DETAILED_HEADER = (
    "Invoice ID", "Invoice Number", "Customer ID", "Date", "Gross Amount",
    "Taxable Amount", "Exempt Amount", "Tax Amount", "Tax Rate", "Tax Type",
    "Jurisdiction", "Country", "State",
)


# =========================================================================
# Report models
# =========================================================================


class ReportType(Enum):
    SUMMARY = "summary"
    DETAILED = "detailed"
    EXEMPTIONS = "exemptions"
    AUDIT = "audit"


class ComplianceStatus(Enum):
    PASS = "pass"
    WARNING = "warning"


@dataclass(frozen=True)
class ReportPeriod:
    """Inclusive calendar date range."""

    start_date: date
    end_date: date

    def __post_init__(self):
        if self.end_date < self.start_date:
            raise InvalidBillingPeriodError(
                f"report end {self.end_date.isoformat()} is before start "
                f"{self.start_date.isoformat()}"
            )

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days

    def issued_bounds(self) -> tuple[datetime, datetime]:
        return (
            datetime.combine(self.start_date, dt_time.min, tzinfo=timezone.utc),
            datetime.combine(self.end_date, dt_time.max, tzinfo=timezone.utc),
        )

    def covers(self, exemption: TaxExemption) -> bool:
        """True if the certificate was in force on any day of the period."""
        if exemption.issue_date > self.end_date:
            return False
        return exemption.expiration_date is None or exemption.expiration_date >= self.start_date


@dataclass(frozen=True)
class ReportTotals:
    gross_sales: Decimal
    taxable_amount: Decimal
    exempt_amount: Decimal
    total_tax_collected: Decimal
    total_transactions: int
    exempt_transactions: int

    @classmethod
    def empty(cls) -> ReportTotals:
        return cls(ZERO, ZERO, ZERO, ZERO, 0, 0)


@dataclass(frozen=True)
class TaxBreakdownRow:
    tax_type: TaxType
    jurisdiction: str
    rate: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    transaction_count: int


@dataclass(frozen=True)
class ExemptionBreakdownRow:
    exemption_type: str
    exempt_amount: Decimal
    transaction_count: int
    exemption_count: int


@dataclass(frozen=True)
class TaxReportSummary:
    period: ReportPeriod
    totals: ReportTotals
    tax_breakdown: tuple[TaxBreakdownRow, ...]
    exemption_breakdown: tuple[ExemptionBreakdownRow, ...]
    currency: str
    generated_at: datetime
    jurisdiction: JurisdictionInfo | None = None


@dataclass(frozen=True)
class DetailedReportItem:
    invoice_id: UUID
    invoice_number: str
    customer_id: UUID | None
    invoice_date: date
    gross_amount: Decimal
    taxable_amount: Decimal
    exempt_amount: Decimal
    tax_amount: Decimal
    tax_rate: Decimal
    tax_type: TaxType
    jurisdiction: str
    country: str
    state: str | None


@dataclass(frozen=True)
class TaxExemptionsReport:
    summary: TaxReportSummary
    certificates: tuple[TaxExemption, ...]


@dataclass(frozen=True)
class ComplianceCheck:
    check: str
    status: ComplianceStatus
    message: str
    recommendation: str | None = None


@dataclass(frozen=True)
class Reconciliation:
    """Tax collected against tax implied by the configured jurisdiction rates."""

    expected_tax: Decimal
    actual_tax: Decimal
    variance: Decimal
    variance_percentage: Decimal
    notes: str


@dataclass(frozen=True)
class TaxAuditReport:
    summary: TaxReportSummary
    compliance_checks: tuple[ComplianceCheck, ...]
    reconciliation: Reconciliation

    @property
    def has_warnings(self) -> bool:
        return any(c.status is ComplianceStatus.WARNING for c in self.compliance_checks)


TaxReport = TaxReportSummary | list[DetailedReportItem] | TaxExemptionsReport | TaxAuditReport


# =========================================================================
# Pure builders
# =========================================================================


def parse_jurisdiction_filter(code: str) -> tuple[str, str | None]:
    """``US`` -> (US, None); ``US_CA`` -> (US, CA)."""
    country, _, state = code.strip().upper().partition("_")
    if len(country) != 2 or not country.isalpha():
        raise InvalidJurisdictionError(country, state or None, "country must be a 2-letter code")
    if "_" in state:
        raise InvalidJurisdictionError(country, state, "expected COUNTRY or COUNTRY_STATE")
    return country, state or None


def invoice_jurisdiction(invoice: Invoice) -> str:
    return build_jurisdiction_code(invoice.billing_country or DEFAULT_REPORT_COUNTRY, invoice.billing_state)


def effective_rate(tax_amount: Decimal, taxable_amount: Decimal) -> Decimal:
    if taxable_amount <= ZERO:
        return ZERO
    return (tax_amount / taxable_amount).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)


def _configured(config: TaxConfig, jurisdiction: str) -> JurisdictionConfig | None:
    country, _, state = jurisdiction.partition("_")
    return config.jurisdiction_for(country, state or None)


def _configured_tax_type(config: TaxConfig, jurisdiction: str) -> TaxType:
    configured = _configured(config, jurisdiction)
    return configured.tax_type if configured else TaxType.SALES_TAX


def build_summary(
    invoices: Sequence[Invoice],
    certificates: Sequence[TaxExemption],
    config: TaxConfig,
    period: ReportPeriod,
    currency: str,
    generated_at: datetime,
    jurisdiction: JurisdictionInfo | None = None,
) -> TaxReportSummary:
    """
    Fold invoices into totals and breakdowns.

    An invoice with positive tax contributes its subtotal to the taxable
    amount; any other invoice is an exempt transaction.
    """
    gross = taxable = exempt = tax = ZERO
    exempt_count = 0
    tax_groups: dict[tuple[TaxType, str], list] = {}
    exemption_groups: dict[str, list] = {}

    for invoice in invoices:
        gross += invoice.subtotal
        if invoice.tax_amount > ZERO:
            taxable += invoice.subtotal
            tax += invoice.tax_amount
            code = invoice_jurisdiction(invoice)
            key = (_configured_tax_type(config, code), code)
            group = tax_groups.setdefault(key, [ZERO, ZERO, 0])
            group[0] += invoice.subtotal
            group[1] += invoice.tax_amount
            group[2] += 1
        else:
            exempt += invoice.subtotal
            exempt_count += 1
            group = exemption_groups.setdefault(invoice.exemption_type or UNKNOWN_EXEMPTION, [ZERO, 0])
            group[0] += invoice.subtotal
            group[1] += 1

    tax_breakdown = tuple(
        TaxBreakdownRow(
            tax_type=tax_type,
            jurisdiction=code,
            rate=effective_rate(group_tax, group_taxable),
            taxable_amount=round_money(group_taxable),
            tax_amount=round_money(group_tax),
            transaction_count=count,
        )
        for (tax_type, code), (group_taxable, group_tax, count) in sorted(
            tax_groups.items(), key=lambda item: (item[0][0].value, item[0][1])
        )
    )
    exemption_breakdown = tuple(
        ExemptionBreakdownRow(
            exemption_type=exemption_type,
            exempt_amount=round_money(amount),
            transaction_count=count,
            exemption_count=sum(
                1 for c in certificates if c.exemption_type.value == exemption_type
            ),
        )
        for exemption_type, (amount, count) in sorted(exemption_groups.items())
    )

    return TaxReportSummary(
        period=period,
        totals=ReportTotals(
            gross_sales=round_money(gross),
            taxable_amount=round_money(taxable),
            exempt_amount=round_money(exempt),
            total_tax_collected=round_money(tax),
            total_transactions=len(invoices),
            exempt_transactions=exempt_count,
        ),
        tax_breakdown=tax_breakdown,
        exemption_breakdown=exemption_breakdown,
        currency=currency,
        generated_at=generated_at,
        jurisdiction=jurisdiction,
    )


def build_detailed_items(invoices: Sequence[Invoice], config: TaxConfig) -> list[DetailedReportItem]:
    items = []
    for invoice in invoices:
        is_taxed = invoice.tax_amount > ZERO
        code = invoice_jurisdiction(invoice)
        items.append(DetailedReportItem(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            customer_id=invoice.customer_id,
            invoice_date=invoice.issued_date.date(),
            gross_amount=round_money(invoice.total_amount),
            taxable_amount=round_money(invoice.subtotal) if is_taxed else ZERO,
            exempt_amount=ZERO if is_taxed else round_money(invoice.subtotal),
            tax_amount=round_money(invoice.tax_amount),
            tax_rate=effective_rate(invoice.tax_amount, invoice.subtotal),
            tax_type=_configured_tax_type(config, code),
            jurisdiction=code,
            country=invoice.billing_country or DEFAULT_REPORT_COUNTRY,
            state=invoice.billing_state,
        ))
    return items


def check_rate_currency(rates: Sequence[TaxRate], now: datetime) -> ComplianceCheck:
    cutoff = now - STALE_RATE_AGE
    stale = [r for r in rates if r.updated_at is not None and r.updated_at < cutoff]
    if stale:
        return ComplianceCheck(
            check="Tax Rate Currency",
            status=ComplianceStatus.WARNING,
            message=f"{len(stale)} tax rate(s) have not been updated in over two years",
            recommendation="Review and update tax rates to reflect current regulations",
        )
    return ComplianceCheck(
        check="Tax Rate Currency",
        status=ComplianceStatus.PASS,
        message="All tax rates are current",
    )


def check_exemption_validity(expiring: Sequence[TaxExemption]) -> ComplianceCheck:
    if expiring:
        return ComplianceCheck(
            check="Tax Exemption Validity",
            status=ComplianceStatus.WARNING,
            message=f"{len(expiring)} exemption certificate(s) expire within the report period",
            recommendation="Contact the affected customers to renew their exemption certificates",
        )
    return ComplianceCheck(
        check="Tax Exemption Validity",
        status=ComplianceStatus.PASS,
        message="No exemption certificates expire within the report period",
    )


def check_reporting_frequency(period: ReportPeriod, frequency: str) -> ComplianceCheck:
    expected = EXPECTED_PERIOD_DAYS[frequency]
    if abs(period.days - expected) > FREQUENCY_TOLERANCE_DAYS:
        return ComplianceCheck(
            check="Reporting Frequency",
            status=ComplianceStatus.WARNING,
            message=(
                f"Report period ({period.days} days) does not match the {frequency} "
                f"reporting frequency (expected {expected} days)"
            ),
            recommendation=f"Generate reports covering one {frequency} period",
        )
    return ComplianceCheck(
        check="Reporting Frequency",
        status=ComplianceStatus.PASS,
        message=f"Report period matches the {frequency} reporting frequency",
    )


def reconcile(summary: TaxReportSummary, config: TaxConfig) -> Reconciliation:
    """
    Expected tax is each taxable group's amount at its configured
    jurisdiction rate; groups without a configured rate count as expected.
    """
    expected = ZERO
    for row in summary.tax_breakdown:
        configured = _configured(config, row.jurisdiction)
        expected += round_money(row.taxable_amount * configured.rate) if configured else row.tax_amount

    actual = summary.totals.total_tax_collected
    variance = round_money(actual - expected)
    percentage = (
        (variance / expected * HUNDRED).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        if expected > ZERO else ZERO
    )
    notes = (
        "Tax collected matches the configured jurisdiction rates"
        if variance == ZERO
        else f"Tax collected differs from the configured jurisdiction rates by {format_money(variance)}"
    )
    return Reconciliation(
        expected_tax=round_money(expected),
        actual_tax=actual,
        variance=variance,
        variance_percentage=percentage,
        notes=notes,
    )


# =========================================================================
# CSV
# =========================================================================


def _summary_of(report) -> TaxReportSummary | None:
    if isinstance(report, TaxReportSummary):
        return report
    if isinstance(report, (TaxExemptionsReport, TaxAuditReport)):
        return report.summary
    return None


def export_report_to_csv(report: TaxReport) -> str:
    """
    Render a report as CSV text with ``\\n`` line endings.

    Summary-bearing reports (summary, exemptions, audit) use the sectioned
    summary layout; a detailed report is a header row plus one row per
    invoice.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")

    summary = _summary_of(report)
    if summary is None:
        writer.writerow(DETAILED_HEADER)
        for item in report:
            writer.writerow([
                str(item.invoice_id),
                item.invoice_number,
                str(item.customer_id) if item.customer_id else "",
                item.invoice_date.isoformat(),
                format_money(item.gross_amount),
                format_money(item.taxable_amount),
                format_money(item.exempt_amount),
                format_money(item.tax_amount),
                format_rate_percent(item.tax_rate),
                item.tax_type.value,
                item.jurisdiction,
                item.country,
                item.state or "",
            ])
        return buffer.getvalue()

    writer.writerow(["Tax Report Summary"])
    writer.writerow([
        f"Report Period: {summary.period.start_date.isoformat()} to {summary.period.end_date.isoformat()}"
    ])
    writer.writerow([f"Generated: {summary.generated_at.isoformat()}"])
    writer.writerow([f"Currency: {summary.currency}"])
    writer.writerow([])

    writer.writerow(["TOTALS"])
    for label, attr in TOTALS_LABELS:
        value = getattr(summary.totals, attr)
        writer.writerow([label, value if attr in _COUNT_FIELDS else format_money(value)])
    writer.writerow([])

    writer.writerow(["TAX BREAKDOWN"])
    writer.writerow(TAX_BREAKDOWN_HEADER)
    for row in summary.tax_breakdown:
        writer.writerow([
            row.tax_type.value,
            row.jurisdiction,
            format_rate_percent(row.rate),
            format_money(row.taxable_amount),
            format_money(row.tax_amount),
            row.transaction_count,
        ])

    if summary.exemption_breakdown:
        writer.writerow([])
        writer.writerow(["EXEMPTION BREAKDOWN"])
        writer.writerow(EXEMPTION_BREAKDOWN_HEADER)
        for row in summary.exemption_breakdown:
            writer.writerow([
                row.exemption_type,
                format_money(row.exempt_amount),
                row.transaction_count,
                row.exemption_count,
            ])

    return buffer.getvalue()


def parse_summary_totals(csv_text: str) -> ReportTotals:
    """Read the TOTALS section of an exported summary back into ReportTotals."""
    rows = list(csv.reader(io.StringIO(csv_text)))
    try:
        start = rows.index(["TOTALS"]) + 1
    except ValueError:
        raise InvalidReportFormatError("no TOTALS section") from None

    values: dict[str, str] = {}
    for row in rows[start:]:
        if not row:
            break
        if len(row) != 2:
            raise InvalidReportFormatError(f"malformed TOTALS row {row!r}")
        values[row[0]] = row[1]

    fields = {}
    for label, attr in TOTALS_LABELS:
        if label not in values:
            raise InvalidReportFormatError(f"TOTALS is missing '{label}'")
        raw = values[label]
        try:
            fields[attr] = int(raw) if attr in _COUNT_FIELDS else Decimal(raw)
        except (ValueError, InvalidOperation):
            raise InvalidReportFormatError(f"'{label}' has a non-numeric value {raw!r}") from None
    return ReportTotals(**fields)


# =========================================================================
# Service
# =========================================================================


class TaxReportingService:
    """
    Read-only tax report generation.

    Constructor: ``session`` + ``config`` + ``clock``.  Each report type is
    built by the pure functions in this module from invoices, rates and
    exemptions loaded through selectors.
    """

    def __init__(
        self,
        session: Session,
        config: TaxConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config or TaxConfig.with_defaults()
        self._clock = clock or SystemClock()
        self._invoices = InvoiceSelector(session)
        self._rates = TaxRateSelector(session)
        self._exemptions = TaxExemptionSelector(session)

    def generate_tax_report(
        self,
        period: ReportPeriod,
        jurisdiction: str | None = None,
        report_type: ReportType = ReportType.SUMMARY,
        tenant_id: UUID | None = None,
        currency: str = "USD",
    ) -> TaxReport:
        """
        Build one report over paid invoices issued within ``period``.

        Args:
            period: Inclusive report dates.
            jurisdiction: Optional ``US`` or ``US_CA`` style filter.
            report_type: Which report to build.
            tenant_id: Restrict to one tenant; None reports platform-wide.
            currency: Only invoices in this currency are included.

        Returns:
            TaxReportSummary, list[DetailedReportItem], TaxExemptionsReport
            or TaxAuditReport according to ``report_type``.
        """
        t0 = time.monotonic()
        country, state = parse_jurisdiction_filter(jurisdiction) if jurisdiction else (None, None)
        issued_from, issued_to = period.issued_bounds()
        invoices = self._invoices.find_invoices(InvoiceFilter(
            tenant_id=tenant_id,
            statuses=(InvoiceStatus.PAID,),
            issued_from=issued_from,
            issued_to=issued_to,
            billing_country=country,
            billing_state=state,
            currency=currency,
        ))
        now = self._clock.now()

        if report_type is ReportType.DETAILED:
            report = build_detailed_items(invoices, self._config)
        else:
            certificates = self._active_certificates(period, tenant_id)
            if report_type is ReportType.EXEMPTIONS:
                exempt_invoices = [inv for inv in invoices if inv.tax_amount <= ZERO]
                report = TaxExemptionsReport(
                    summary=self._summary(exempt_invoices, certificates, period, currency, now, country, state),
                    certificates=tuple(certificates),
                )
            else:
                summary = self._summary(invoices, certificates, period, currency, now, country, state)
                if report_type is ReportType.AUDIT:
                    report = self._audit(summary, period, tenant_id, now)
                else:
                    report = summary

        logger.info("tax_report_generated", extra={
            "report_type": report_type.value,
            "period_start": period.start_date.isoformat(),
            "period_end": period.end_date.isoformat(),
            "jurisdiction": jurisdiction,
            "tenant_id": str(tenant_id) if tenant_id else None,
            "invoice_count": len(invoices),
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return report

    def _summary(
        self,
        invoices: Sequence[Invoice],
        certificates: Sequence[TaxExemption],
        period: ReportPeriod,
        currency: str,
        now: datetime,
        country: str | None,
        state: str | None,
    ) -> TaxReportSummary:
        info = None
        if country is not None:
            code = build_jurisdiction_code(country, state)
            configured = self._config.jurisdiction_for(country, state)
            info = JurisdictionInfo(
                code=code,
                name=configured.name if configured else code,
                country=country,
                state=state,
            )
        return build_summary(invoices, certificates, self._config, period, currency, now, info)

    def _active_certificates(self, period: ReportPeriod, tenant_id: UUID | None) -> list[TaxExemption]:
        approved = self._exemptions.find_exemptions(TaxExemptionFilter(
            tenant_id=tenant_id,
            status=ExemptionStatus.APPROVED,
        ))
        return [e for e in approved if period.covers(e)]

    def _audit(
        self,
        summary: TaxReportSummary,
        period: ReportPeriod,
        tenant_id: UUID | None,
        now: datetime,
    ) -> TaxAuditReport:
        expiring = self._exemptions.find_exemptions(TaxExemptionFilter(
            tenant_id=tenant_id,
            status=ExemptionStatus.APPROVED,
            expires_from=period.start_date,
            expires_to=period.end_date,
        ))
        checks = (
            check_rate_currency(self._rates.find_rates(TaxRateFilter(enabled=True)), now),
            check_exemption_validity(expiring),
            check_reporting_frequency(period, self._config.compliance.reporting_frequency),
        )
        audit = TaxAuditReport(
            summary=summary,
            compliance_checks=checks,
            reconciliation=reconcile(summary, self._config),
        )
        if audit.has_warnings:
            logger.warning("tax_audit_warnings", extra={
                "checks": [c.check for c in checks if c.status is ComplianceStatus.WARNING],
            })
        return audit
