"""
Tax ORM Persistence Models (``billing_modules.tax.orm``).

Responsibility:
    SQLAlchemy ORM models that persist the frozen dataclass DTOs defined in
    ``billing_modules.tax.models``.  Each ORM class mirrors a DTO and provides
    ``to_dto()`` / ``from_dto()`` round-trip conversion.

Architecture position:
    **Modules layer** -- persistence companions to the pure DTO models.
    Inherits from ``TrackedBase`` which provides id, created_at, updated_at,
    created_by_id and updated_by_id.

Invariants enforced:
    - Rates use Decimal (maps to Numeric(38,9)) -- NEVER float.
    - Enum fields stored as String(50) containing the enum .value string.
    - An exemption number is unique within a tenant.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


# ---------------------------------------------------------------------------
# TaxRateModel
# ---------------------------------------------------------------------------

class TaxRateModel(TrackedBase):
    """
    ORM model for ``TaxRate``.

    Contract:
        ``state`` is NULL for country-level rates.  ``tenant_id`` is NULL for
        platform-wide rates.
    """

    __tablename__ = "tax_rates"

    tenant_id: Mapped[UUID | None] = mapped_column(nullable=True)
    jurisdiction_code: Mapped[str] = mapped_column(String(50), nullable=False)
    country: Mapped[str] = mapped_column(String(2), nullable=False)
    state: Mapped[str | None] = mapped_column(String(3), nullable=True)
    tax_type: Mapped[str] = mapped_column(String(50), nullable=False)
    rate: Mapped[Decimal] = mapped_column(nullable=False)
    threshold: Mapped[Decimal | None] = mapped_column(nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("idx_tax_rate_country_state", "country", "state"),
        Index("idx_tax_rate_enabled", "enabled"),
    )

    def to_dto(self):
        from billing_kernel.domain.billing_types import TaxType
        from billing_modules.tax.models import TaxRate
        return TaxRate(
            id=self.id,
            jurisdiction_code=self.jurisdiction_code,
            country=self.country,
            state=self.state,
            tax_type=TaxType(self.tax_type),
            rate=self.rate,
            threshold=self.threshold,
            enabled=self.enabled,
            effective_date=self.effective_date,
            expiration_date=self.expiration_date,
            description=self.description,
            tenant_id=self.tenant_id,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID | None = None) -> "TaxRateModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            jurisdiction_code=dto.jurisdiction_code,
            country=dto.country,
            state=dto.state,
            tax_type=dto.tax_type.value,
            rate=dto.rate,
            threshold=dto.threshold,
            enabled=dto.enabled,
            effective_date=dto.effective_date,
            expiration_date=dto.expiration_date,
            description=dto.description,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<TaxRateModel {self.jurisdiction_code} rate={self.rate} enabled={self.enabled}>"


# ---------------------------------------------------------------------------
# TaxExemptionModel
# ---------------------------------------------------------------------------

class TaxExemptionModel(TrackedBase):
    """
    ORM model for ``TaxExemption``.

    Contract:
        ``customer_id`` NULL marks a tenant-level exemption.  The
        ``jurisdictions`` JSON list holds jurisdiction codes (``US_CA``)
        or country codes.
    """

    __tablename__ = "tax_exemptions"

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    customer_id: Mapped[UUID | None] = mapped_column(nullable=True)
    exemption_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    organization_name: Mapped[str] = mapped_column(String(255), nullable=False)
    exemption_number: Mapped[str] = mapped_column(String(100), nullable=False)
    country: Mapped[str] = mapped_column(String(2), nullable=False)
    state: Mapped[str | None] = mapped_column(String(3), nullable=True)
    jurisdictions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    validation_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "exemption_number", name="uq_tax_exemption_tenant_number"),
        Index("idx_tax_exemption_tenant_customer", "tenant_id", "customer_id"),
        Index("idx_tax_exemption_status", "status"),
    )

    def to_dto(self):
        from billing_modules.tax.models import ExemptionStatus, ExemptionType, TaxExemption
        return TaxExemption(
            id=self.id,
            tenant_id=self.tenant_id,
            customer_id=self.customer_id,
            exemption_type=ExemptionType(self.exemption_type),
            status=ExemptionStatus(self.status),
            organization_name=self.organization_name,
            exemption_number=self.exemption_number,
            country=self.country,
            state=self.state,
            jurisdictions=tuple(self.jurisdictions or ()),
            issue_date=self.issue_date,
            expiration_date=self.expiration_date,
            validation_data=dict(self.validation_data) if self.validation_data else None,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID | None = None) -> "TaxExemptionModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            customer_id=dto.customer_id,
            exemption_type=dto.exemption_type.value,
            status=dto.status.value,
            organization_name=dto.organization_name,
            exemption_number=dto.exemption_number,
            country=dto.country,
            state=dto.state,
            jurisdictions=list(dto.jurisdictions),
            issue_date=dto.issue_date,
            expiration_date=dto.expiration_date,
            validation_data=dto.validation_data,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<TaxExemptionModel {self.exemption_number} "
            f"{self.exemption_type} status={self.status}>"
        )
