"""
Tax read side: typed filters, source protocols and selectors.

TaxResolver depends only on the ``TaxRateSource`` / ``TaxExemptionSource``
protocols.  Two rate sources exist: ``TaxRateSelector`` (database) and
``ConfiguredTaxRateSource`` (the jurisdiction table in TaxConfig).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Protocol, Sequence
from uuid import UUID, uuid5, NAMESPACE_URL

from sqlalchemy import or_, select

from billing_kernel.domain.billing_types import TaxType
from billing_kernel.selectors.base import BaseSelector
from billing_modules.tax.config import TaxConfig
from billing_modules.tax.models import (
    ExemptionStatus,
    ExemptionType,
    TaxExemption,
    TaxRate,
)
from billing_modules.tax.orm import TaxExemptionModel, TaxRateModel


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaxRateFilter:
    """Every field is optional; unset fields do not constrain the query."""

    country: str | None = None
    state: str | None = None
    country_level_only: bool = False
    enabled: bool | None = None
    effective_on: date | None = None
    tax_type: TaxType | None = None
    jurisdiction_code: str | None = None

    def matches(self, rate: TaxRate) -> bool:
        if self.country is not None and rate.country != self.country:
            return False
        if self.country_level_only:
            if rate.state is not None:
                return False
        elif self.state is not None and rate.state != self.state:
            return False
        if self.enabled is not None and rate.enabled != self.enabled:
            return False
        if self.tax_type is not None and rate.tax_type is not self.tax_type:
            return False
        if self.jurisdiction_code is not None and rate.jurisdiction_code != self.jurisdiction_code:
            return False
        if self.effective_on is not None:
            if rate.effective_date and rate.effective_date > self.effective_on:
                return False
            if rate.expiration_date and rate.expiration_date < self.effective_on:
                return False
        return True


@dataclass(frozen=True)
class TaxExemptionFilter:
    tenant_id: UUID | None = None
    customer_id: UUID | None = None
    tenant_level_only: bool = False
    status: ExemptionStatus | None = None
    exemption_type: ExemptionType | None = None
    active_on: date | None = None
    expires_from: date | None = None
    expires_to: date | None = None


# ---------------------------------------------------------------------------
# Source protocols
# ---------------------------------------------------------------------------


class TaxRateSource(Protocol):
    def find_rates(self, rate_filter: TaxRateFilter) -> Sequence[TaxRate]: ...


class TaxExemptionSource(Protocol):
    def get_exemption(self, exemption_id: UUID) -> TaxExemption | None: ...

    def find_exemptions(self, exemption_filter: TaxExemptionFilter) -> Sequence[TaxExemption]: ...


# ---------------------------------------------------------------------------
# Database selectors
# ---------------------------------------------------------------------------


class TaxRateSelector(BaseSelector[TaxRateModel]):
    """Tax rates from the ``tax_rates`` table."""

    def get_rate(self, rate_id: UUID) -> TaxRate | None:
        model = self.session.get(TaxRateModel, rate_id)
        return model.to_dto() if model else None

    def find_rates(self, rate_filter: TaxRateFilter) -> list[TaxRate]:
        stmt = select(TaxRateModel)
        if rate_filter.country is not None:
            stmt = stmt.where(TaxRateModel.country == rate_filter.country)
        if rate_filter.country_level_only:
            stmt = stmt.where(TaxRateModel.state.is_(None))
        elif rate_filter.state is not None:
            stmt = stmt.where(TaxRateModel.state == rate_filter.state)
        if rate_filter.enabled is not None:
            stmt = stmt.where(TaxRateModel.enabled == rate_filter.enabled)
        if rate_filter.tax_type is not None:
            stmt = stmt.where(TaxRateModel.tax_type == rate_filter.tax_type.value)
        if rate_filter.jurisdiction_code is not None:
            stmt = stmt.where(TaxRateModel.jurisdiction_code == rate_filter.jurisdiction_code)
        if rate_filter.effective_on is not None:
            on = rate_filter.effective_on
            stmt = stmt.where(
                or_(TaxRateModel.effective_date.is_(None), TaxRateModel.effective_date <= on),
                or_(TaxRateModel.expiration_date.is_(None), TaxRateModel.expiration_date >= on),
            )
        stmt = stmt.order_by(
            TaxRateModel.country, TaxRateModel.state, TaxRateModel.effective_date,
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]


class TaxExemptionSelector(BaseSelector[TaxExemptionModel]):
    """Tax exemptions from the ``tax_exemptions`` table."""

    def get_exemption(self, exemption_id: UUID) -> TaxExemption | None:
        model = self.session.get(TaxExemptionModel, exemption_id)
        return model.to_dto() if model else None

    def find_exemptions(self, exemption_filter: TaxExemptionFilter) -> list[TaxExemption]:
        f = exemption_filter
        stmt = select(TaxExemptionModel)
        if f.tenant_id is not None:
            stmt = stmt.where(TaxExemptionModel.tenant_id == f.tenant_id)
        if f.tenant_level_only:
            stmt = stmt.where(TaxExemptionModel.customer_id.is_(None))
        elif f.customer_id is not None:
            stmt = stmt.where(TaxExemptionModel.customer_id == f.customer_id)
        if f.status is not None:
            stmt = stmt.where(TaxExemptionModel.status == f.status.value)
        if f.exemption_type is not None:
            stmt = stmt.where(TaxExemptionModel.exemption_type == f.exemption_type.value)
        if f.active_on is not None:
            stmt = stmt.where(
                TaxExemptionModel.issue_date <= f.active_on,
                or_(
                    TaxExemptionModel.expiration_date.is_(None),
                    TaxExemptionModel.expiration_date >= f.active_on,
                ),
            )
        if f.expires_from is not None:
            stmt = stmt.where(TaxExemptionModel.expiration_date >= f.expires_from)
        if f.expires_to is not None:
            stmt = stmt.where(TaxExemptionModel.expiration_date <= f.expires_to)
        stmt = stmt.order_by(TaxExemptionModel.issue_date, TaxExemptionModel.exemption_number)
        return [m.to_dto() for m in self.session.scalars(stmt)]


# ---------------------------------------------------------------------------
# Configured rates
# ---------------------------------------------------------------------------


class ConfiguredTaxRateSource:
    """
    Rates built from ``TaxConfig.jurisdictions``.

    Ids are derived from the jurisdiction code so they are stable across
    processes.
    """

    def __init__(self, config: TaxConfig):
        self._rates = tuple(
            TaxRate(
                id=uuid5(NAMESPACE_URL, f"billing:tax-rate:{j.code}"),
                jurisdiction_code=j.code,
                country=j.country,
                state=j.state,
                tax_type=j.tax_type,
                rate=j.rate,
                description=j.name,
            )
            for j in config.jurisdictions
        )

    def find_rates(self, rate_filter: TaxRateFilter) -> list[TaxRate]:
        return [r for r in self._rates if rate_filter.matches(r)]
