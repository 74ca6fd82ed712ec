"""
Tests for tax reporting.

Covers:
- Summary totals, tax and exemption breakdowns over paid invoices
- Detailed, exemptions and audit reports
- CSV export and parsing the TOTALS section back
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from billing_kernel.domain.billing_types import TaxType
from billing_kernel.exceptions import (
    InvalidBillingPeriodError,
    InvalidJurisdictionError,
    InvalidReportFormatError,
)
from billing_modules.invoicing.models import LineItemInput
from billing_modules.tax.config import TaxConfig
from billing_modules.tax.models import ExemptionType
from billing_modules.tax.reporting import (
    ComplianceStatus,
    DetailedReportItem,
    ReportPeriod,
    ReportTotals,
    ReportType,
    TaxAuditReport,
    TaxExemptionsReport,
    TaxReportSummary,
    TaxReportingService,
    check_reporting_frequency,
    export_report_to_csv,
    parse_jurisdiction_filter,
    parse_summary_totals,
    reconcile,
)

from tests.conftest import OTHER_TENANT_ID, TEST_TENANT_ID

Q1 = ReportPeriod(date(2024, 1, 1), date(2024, 3, 31))


def _paid_invoice(invoice_computer, amount, tax_rate=None, country="US", state="CA", **kwargs):
    tenant_id = kwargs.pop("tenant_id", TEST_TENANT_ID)
    invoice = invoice_computer.create_invoice(
        tenant_id,
        [LineItemInput("Service", Decimal("1"), Decimal(amount), tax_rate=tax_rate)],
        billing_country=country,
        billing_state=state,
        **kwargs,
    ).invoice
    invoice_computer.send_invoice(invoice.id)
    return invoice_computer.mark_as_paid(invoice.id, invoice.total_amount).invoice


@pytest.fixture
def q1_activity(invoice_computer, tax_admin):
    """
    Four paid USD invoices in Q1 2024 for the test tenant:

    * US_CA 100.00 and 200.00 at 7.25%
    * US_NY 50.00 at 8%
    * US_CA 80.00 untaxed, nonprofit

    plus activity that must not be reported (unpaid, EUR, other tenant).
    """
    ca_rate = Decimal("0.0725")
    invoices = [
        _paid_invoice(invoice_computer, "100.00", ca_rate),
        _paid_invoice(invoice_computer, "200.00", ca_rate),
        _paid_invoice(invoice_computer, "50.00", Decimal("0.08"), state="NY"),
        _paid_invoice(invoice_computer, "80.00", exemption_type="nonprofit"),
    ]

    invoice_computer.create_invoice(
        TEST_TENANT_ID,
        [LineItemInput("Unpaid", Decimal("1"), Decimal("1000.00"), tax_rate=ca_rate)],
        billing_country="US",
        billing_state="CA",
    )
    _paid_invoice(invoice_computer, "500.00", Decimal("0.19"), country="DE", state=None, currency="EUR")
    _paid_invoice(invoice_computer, "999.00", ca_rate, tenant_id=OTHER_TENANT_ID)

    certificate = tax_admin.create_tax_exemption(
        TEST_TENANT_ID, ExemptionType.NONPROFIT, "Helping Hands", "EX-1", "US", date(2023, 1, 1),
        expiration_date=date(2024, 3, 20),
    )
    tax_admin.validate_exemption(certificate.id, True)
    return invoices


# =============================================================================
# Pure helpers
# =============================================================================


class TestReportHelpers:

    @pytest.mark.parametrize("code,expected", [
        ("US", ("US", None)),
        ("us_ca", ("US", "CA")),
        (" DE ", ("DE", None)),
    ])
    def test_parse_jurisdiction_filter(self, code, expected):
        assert parse_jurisdiction_filter(code) == expected

    @pytest.mark.parametrize("code", ["USA", "U1", "US_CA_X"])
    def test_bad_jurisdiction_filter(self, code):
        with pytest.raises(InvalidJurisdictionError):
            parse_jurisdiction_filter(code)

    def test_period_end_before_start(self):
        with pytest.raises(InvalidBillingPeriodError):
            ReportPeriod(date(2024, 3, 31), date(2024, 1, 1))

    @pytest.mark.parametrize("period,frequency,status", [
        (Q1, "quarterly", ComplianceStatus.PASS),
        (ReportPeriod(date(2024, 3, 1), date(2024, 3, 31)), "quarterly", ComplianceStatus.WARNING),
        (ReportPeriod(date(2024, 3, 1), date(2024, 3, 31)), "monthly", ComplianceStatus.PASS),
        (ReportPeriod(date(2024, 1, 1), date(2024, 12, 31)), "annually", ComplianceStatus.PASS),
    ])
    def test_reporting_frequency(self, period, frequency, status):
        assert check_reporting_frequency(period, frequency).status is status


# =============================================================================
# Report types
# =============================================================================


class TestSummaryReport:

    def test_totals(self, reporting_service, q1_activity):
        summary = reporting_service.generate_tax_report(Q1, tenant_id=TEST_TENANT_ID)

        assert isinstance(summary, TaxReportSummary)
        assert summary.totals == ReportTotals(
            gross_sales=Decimal("430.00"),
            taxable_amount=Decimal("350.00"),
            exempt_amount=Decimal("80.00"),
            total_tax_collected=Decimal("25.75"),
            total_transactions=4,
            exempt_transactions=1,
        )
        assert summary.currency == "USD"
        assert summary.jurisdiction is None

    def test_tax_breakdown(self, reporting_service, q1_activity):
        summary = reporting_service.generate_tax_report(Q1, tenant_id=TEST_TENANT_ID)

        rows = [(r.tax_type, r.jurisdiction, r.rate, r.taxable_amount, r.tax_amount, r.transaction_count)
                for r in summary.tax_breakdown]
        assert rows == [
            (TaxType.SALES_TAX, "US_CA", Decimal("0.0725"), Decimal("300.00"), Decimal("21.75"), 2),
            (TaxType.SALES_TAX, "US_NY", Decimal("0.08"), Decimal("50.00"), Decimal("4.00"), 1),
        ]

    def test_exemption_breakdown(self, reporting_service, q1_activity):
        summary = reporting_service.generate_tax_report(Q1, tenant_id=TEST_TENANT_ID)

        (row,) = summary.exemption_breakdown
        assert row.exemption_type == "nonprofit"
        assert row.exempt_amount == Decimal("80.00")
        assert row.transaction_count == 1
        assert row.exemption_count == 1

    def test_jurisdiction_filter(self, reporting_service, q1_activity):
        summary = reporting_service.generate_tax_report(Q1, "US_NY", tenant_id=TEST_TENANT_ID)

        assert summary.totals.gross_sales == Decimal("50.00")
        assert summary.jurisdiction.code == "US_NY"
        assert summary.jurisdiction.name == "New York"

    def test_platform_wide(self, reporting_service, q1_activity):
        summary = reporting_service.generate_tax_report(Q1)

        assert summary.totals.total_transactions == 5

    def test_currency(self, reporting_service, q1_activity):
        summary = reporting_service.generate_tax_report(Q1, tenant_id=TEST_TENANT_ID, currency="EUR")

        assert summary.totals.gross_sales == Decimal("500.00")
        assert summary.tax_breakdown[0].tax_type is TaxType.VAT
        assert summary.tax_breakdown[0].jurisdiction == "DE"

    def test_period_outside_activity(self, reporting_service, q1_activity):
        summary = reporting_service.generate_tax_report(
            ReportPeriod(date(2024, 4, 1), date(2024, 6, 30)), tenant_id=TEST_TENANT_ID,
        )

        assert summary.totals == ReportTotals.empty()
        assert summary.tax_breakdown == ()

    def test_logs_generation(self, reporting_service, q1_activity, captured_logs):
        reporting_service.generate_tax_report(Q1, tenant_id=TEST_TENANT_ID)

        generated = [r for r in captured_logs() if r["message"] == "tax_report_generated"]
        assert generated[0]["invoice_count"] == 4
        assert generated[0]["report_type"] == "summary"


class TestDetailedReport:

    def test_one_row_per_invoice(self, reporting_service, q1_activity):
        items = reporting_service.generate_tax_report(
            Q1, report_type=ReportType.DETAILED, tenant_id=TEST_TENANT_ID,
        )

        assert all(isinstance(i, DetailedReportItem) for i in items)
        assert [i.invoice_id for i in items] == [inv.id for inv in q1_activity]

        taxed = items[0]
        assert taxed.gross_amount == Decimal("107.25")
        assert taxed.taxable_amount == Decimal("100.00")
        assert taxed.exempt_amount == Decimal("0")
        assert taxed.tax_rate == Decimal("0.0725")
        assert taxed.jurisdiction == "US_CA"
        assert taxed.invoice_date == date(2024, 3, 15)

        exempt = items[3]
        assert exempt.taxable_amount == Decimal("0")
        assert exempt.exempt_amount == Decimal("80.00")
        assert exempt.tax_rate == Decimal("0")


class TestExemptionsReport:

    def test_exempt_activity_and_certificates(self, reporting_service, q1_activity):
        report = reporting_service.generate_tax_report(
            Q1, report_type=ReportType.EXEMPTIONS, tenant_id=TEST_TENANT_ID,
        )

        assert isinstance(report, TaxExemptionsReport)
        assert report.summary.totals.total_transactions == 1
        assert report.summary.totals.exempt_amount == Decimal("80.00")
        assert report.summary.totals.total_tax_collected == Decimal("0.00")
        assert [c.exemption_number for c in report.certificates] == ["EX-1"]

    def test_certificate_expired_before_period_excluded(self, reporting_service, q1_activity):
        report = reporting_service.generate_tax_report(
            ReportPeriod(date(2024, 4, 1), date(2024, 6, 30)),
            report_type=ReportType.EXEMPTIONS,
            tenant_id=TEST_TENANT_ID,
        )

        assert report.certificates == ()


class TestAuditReport:

    def test_checks_and_reconciliation(self, reporting_service, q1_activity):
        report = reporting_service.generate_tax_report(
            Q1, report_type=ReportType.AUDIT, tenant_id=TEST_TENANT_ID,
        )

        assert isinstance(report, TaxAuditReport)
        statuses = {c.check: c.status for c in report.compliance_checks}
        assert statuses == {
            "Tax Rate Currency": ComplianceStatus.PASS,
            "Tax Exemption Validity": ComplianceStatus.WARNING,
            "Reporting Frequency": ComplianceStatus.PASS,
        }
        assert report.has_warnings
        assert report.reconciliation.expected_tax == Decimal("25.75")
        assert report.reconciliation.actual_tax == Decimal("25.75")
        assert report.reconciliation.variance == Decimal("0.00")

    def test_stale_rates_flagged(self, session, tax_admin, deterministic_clock):
        tax_admin.create_tax_rate("US", TaxType.SALES_TAX, Decimal("0.05"))
        deterministic_clock.set_time(datetime(2100, 1, 1, tzinfo=timezone.utc))
        service = TaxReportingService(session, config=TaxConfig(), clock=deterministic_clock)

        report = service.generate_tax_report(Q1, report_type=ReportType.AUDIT)

        rate_check = report.compliance_checks[0]
        assert rate_check.status is ComplianceStatus.WARNING
        assert rate_check.message.startswith("1 tax rate(s)")

    def test_reconciliation_variance(self, reporting_service, q1_activity):
        summary = reporting_service.generate_tax_report(Q1, tenant_id=TEST_TENANT_ID)
        config = TaxConfig.from_dict({"jurisdictions": [
            {"code": "US_CA", "country": "US", "state": "CA", "tax_type": "sales_tax",
             "rate": "0.08", "name": "California"},
            {"code": "US_NY", "country": "US", "state": "NY", "tax_type": "sales_tax",
             "rate": "0.08", "name": "New York"},
        ]})

        result = reconcile(summary, config)

        # 300.00 at 8% = 24.00 expected for CA, 4.00 for NY
        assert result.expected_tax == Decimal("28.00")
        assert result.variance == Decimal("-2.25")
        assert result.variance_percentage == Decimal("-8.04")
        assert "-2.25" in result.notes


# =============================================================================
# CSV
# =============================================================================


class TestCsvExport:

    def test_summary_layout(self, reporting_service, q1_activity):
        summary = reporting_service.generate_tax_report(Q1, tenant_id=TEST_TENANT_ID)

        lines = export_report_to_csv(summary).split("\n")

        assert lines[:4] == [
            "Tax Report Summary",
            "Report Period: 2024-01-01 to 2024-03-31",
            "Generated: 2024-03-15T12:00:00+00:00",
            "Currency: USD",
        ]
        assert lines[5:12] == [
            "TOTALS",
            "Gross Sales,430.00",
            "Taxable Amount,350.00",
            "Exempt Amount,80.00",
            "Total Tax Collected,25.75",
            "Total Transactions,4",
            "Exempt Transactions,1",
        ]
        assert "sales_tax,US_CA,7.2500%,300.00,21.75,2" in lines
        assert "EXEMPTION BREAKDOWN" in lines
        assert "nonprofit,80.00,1,1" in lines

    def test_totals_parse_back(self, reporting_service, q1_activity):
        audit = reporting_service.generate_tax_report(
            Q1, report_type=ReportType.AUDIT, tenant_id=TEST_TENANT_ID,
        )

        assert parse_summary_totals(export_report_to_csv(audit)) == audit.summary.totals

    def test_detailed_layout(self, reporting_service, q1_activity):
        items = reporting_service.generate_tax_report(
            Q1, report_type=ReportType.DETAILED, tenant_id=TEST_TENANT_ID,
        )

        lines = export_report_to_csv(items).strip().split("\n")

        assert lines[0].startswith("Invoice ID,Invoice Number,Customer ID,Date")
        assert len(lines) == 5
        assert lines[1].endswith(",2024-03-15,107.25,100.00,0.00,7.25,7.2500%,sales_tax,US_CA,US,CA")

    def test_empty_summary_still_parses(self, reporting_service):
        summary = reporting_service.generate_tax_report(Q1)

        assert parse_summary_totals(export_report_to_csv(summary)) == ReportTotals(
            Decimal("0"), Decimal("0"), Decimal("0"), Decimal("0"), 0, 0,
        )


class TestParseSummaryTotals:

    def test_missing_section(self):
        with pytest.raises(InvalidReportFormatError, match="TOTALS"):
            parse_summary_totals("Tax Report Summary\n")

    def test_missing_label(self):
        with pytest.raises(InvalidReportFormatError, match="Exempt Transactions"):
            parse_summary_totals(
                "TOTALS\nGross Sales,1.00\nTaxable Amount,1.00\nExempt Amount,0.00\n"
                "Total Tax Collected,0.10\nTotal Transactions,1\n"
            )

    def test_non_numeric(self):
        with pytest.raises(InvalidReportFormatError, match="non-numeric"):
            parse_summary_totals(
                "TOTALS\nGross Sales,lots\nTaxable Amount,1.00\nExempt Amount,0.00\n"
                "Total Tax Collected,0.10\nTotal Transactions,1\nExempt Transactions,0\n"
            )

    def test_malformed_row(self):
        with pytest.raises(InvalidReportFormatError, match="malformed"):
            parse_summary_totals("TOTALS\nGross Sales,1.00,extra\n")
