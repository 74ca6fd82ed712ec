"""
Tests for the Tax Engine.

Covers:
- Jurisdiction codes and provider tax type mapping
- Rate effectiveness and state-then-country selection
- Exemption selection order
- Manual tax arithmetic and thresholds
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.domain.billing_types import TaxType
from billing_kernel.exceptions import InvalidAmountError
from billing_engines.tax import (
    ManualTaxCalculator,
    build_jurisdiction_code,
    map_provider_tax_type,
    rate_is_effective,
    select_applicable_rate,
    select_valid_exemption,
)
from billing_modules.tax.models import (
    ExemptionStatus,
    ExemptionType,
    TaxExemption,
    TaxRate,
)

ON = date(2024, 3, 15)


def make_rate(country="US", state=None, rate="0.05", **kwargs) -> TaxRate:
    return TaxRate(
        id=uuid4(),
        jurisdiction_code=build_jurisdiction_code(country, state),
        country=country,
        state=state,
        tax_type=kwargs.pop("tax_type", TaxType.SALES_TAX),
        rate=Decimal(rate),
        **kwargs,
    )


def make_exemption(status=ExemptionStatus.APPROVED, country="US", state=None, **kwargs) -> TaxExemption:
    return TaxExemption(
        id=uuid4(),
        tenant_id=uuid4(),
        exemption_type=kwargs.pop("exemption_type", ExemptionType.NONPROFIT),
        status=status,
        organization_name="Helping Hands",
        exemption_number=kwargs.pop("exemption_number", "EX-1"),
        country=country,
        state=state,
        issue_date=date(2023, 1, 1),
        **kwargs,
    )


class TestJurisdictionCodes:

    def test_state_code(self):
        assert build_jurisdiction_code("US", "CA") == "US_CA"

    def test_country_code(self):
        assert build_jurisdiction_code("DE", None) == "DE"

    @pytest.mark.parametrize("raw,expected", [
        ("vat", TaxType.VAT),
        ("GST", TaxType.GST),
        ("hst", TaxType.HST),
        ("sales_tax", TaxType.SALES_TAX),
        ("lodging", TaxType.SALES_TAX),
        (None, TaxType.SALES_TAX),
    ])
    def test_provider_tax_type_mapping(self, raw, expected):
        assert map_provider_tax_type(raw) is expected


class TestRateSelection:

    def test_disabled_rate_not_effective(self):
        assert not rate_is_effective(make_rate(enabled=False), ON)

    def test_future_rate_not_effective(self):
        assert not rate_is_effective(make_rate(effective_date=date(2024, 4, 1)), ON)

    def test_expired_rate_not_effective(self):
        assert not rate_is_effective(make_rate(expiration_date=date(2024, 3, 14)), ON)

    def test_boundaries_inclusive(self):
        rate = make_rate(effective_date=ON, expiration_date=ON)
        assert rate_is_effective(rate, ON)

    def test_state_rate_preferred(self):
        country = make_rate(rate="0.05")
        state = make_rate(state="CA", rate="0.0725")

        assert select_applicable_rate([country, state], "US", "CA", ON) is state

    def test_falls_back_to_country_rate(self):
        country = make_rate(rate="0.05")
        other_state = make_rate(state="NY", rate="0.08")

        assert select_applicable_rate([country, other_state], "US", "CA", ON) is country

    def test_no_rate_for_country(self):
        assert select_applicable_rate([make_rate(country="CA")], "US", None, ON) is None

    def test_ignores_ineffective_state_rate(self):
        country = make_rate(rate="0.05")
        disabled_state = make_rate(state="CA", enabled=False)

        assert select_applicable_rate([country, disabled_state], "US", "CA", ON) is country

    def test_ambiguous_rates_latest_wins(self, captured_logs):
        older = make_rate(state="CA", rate="0.07", effective_date=date(2020, 1, 1))
        newer = make_rate(state="CA", rate="0.0725", effective_date=date(2023, 1, 1))

        assert select_applicable_rate([newer, older], "US", "CA", ON) is newer
        warnings = [r for r in captured_logs() if r["message"] == "tax_rate_ambiguous"]
        assert warnings and warnings[0]["candidate_count"] == 2


class TestExemptionSelection:

    def test_first_valid_covering_wins(self):
        rejected = make_exemption(status=ExemptionStatus.REJECTED)
        first = make_exemption(exemption_number="EX-2")
        second = make_exemption(exemption_number="EX-3")

        assert select_valid_exemption([rejected, first, second], ON, "US", "CA") is first

    def test_expired_skipped(self):
        expired = make_exemption(expiration_date=date(2024, 3, 1))

        assert select_valid_exemption([expired], ON, "US", None) is None

    def test_state_scoped_exemption_does_not_cover_other_state(self):
        ny_only = make_exemption(state="NY")

        assert select_valid_exemption([ny_only], ON, "US", "CA") is None
        assert select_valid_exemption([ny_only], ON, "US", "NY") is ny_only

    def test_jurisdiction_list_overrides_home_country(self):
        multi = make_exemption(country="US", jurisdictions=("CA_ON", "DE"))

        assert select_valid_exemption([multi], ON, "DE", None) is multi
        assert select_valid_exemption([multi], ON, "CA", "ON") is multi
        assert select_valid_exemption([multi], ON, "US", None) is None


class TestManualTaxCalculator:

    def setup_method(self):
        self.calculator = ManualTaxCalculator()

    def test_rate_record(self):
        result = self.calculator.calculate(Decimal("100.00"), make_rate(rate="0.0725"))

        assert result.tax_amount == Decimal("7.25")
        assert result.rate == Decimal("0.0725")
        assert result.total_amount == Decimal("107.25")
        assert not result.below_threshold

    def test_bare_decimal_rate(self):
        result = self.calculator.calculate(Decimal("19.99"), Decimal("0.08"))

        assert result.tax_amount == Decimal("1.60")

    def test_no_rate_is_zero_tax(self):
        result = self.calculator.calculate(Decimal("50.00"), None)

        assert result.tax_amount == Decimal("0.00")
        assert result.rate == Decimal("0")

    def test_below_threshold(self):
        rate = make_rate(rate="0.10", threshold=Decimal("100"))
        result = self.calculator.calculate(Decimal("99.99"), rate)

        assert result.tax_amount == Decimal("0.00")
        assert result.below_threshold

    def test_at_threshold_is_taxed(self):
        rate = make_rate(rate="0.10", threshold=Decimal("100"))
        result = self.calculator.calculate(Decimal("100"), rate)

        assert result.tax_amount == Decimal("10.00")

    def test_negative_amount_rejected(self):
        with pytest.raises(InvalidAmountError):
            self.calculator.calculate(Decimal("-1"), Decimal("0.1"))

    def test_zero_amount(self):
        assert self.calculator.calculate(Decimal("0"), Decimal("0.2")).tax_amount == Decimal("0.00")
