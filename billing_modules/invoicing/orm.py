"""
Invoicing ORM Persistence Models (``billing_modules.invoicing.orm``).

Responsibility:
    SQLAlchemy ORM models for ``Invoice`` and ``LineItem``.  Each ORM class
    provides ``to_dto()`` / ``from_dto()`` round-trip conversion.

Architecture position:
    **Modules layer** -- persistence companions to the pure DTO models.

Invariants enforced:
    - (tenant_id, invoice_number) is unique (uq_invoices_tenant_number).
    - Monetary fields use Decimal (Numeric(38,9) via type_annotation_map).
    - Enum fields stored as String(50) containing the enum .value string.
    - Lines are owned by their invoice (delete-orphan cascade).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase


# ---------------------------------------------------------------------------
# InvoiceModel
# ---------------------------------------------------------------------------


class InvoiceModel(TrackedBase):
    """
    ORM model for tenant invoices.

    Guarantees:
        - invoice_number is unique per tenant.
        - status stored as string enum value.
        - line_items loaded eagerly (selectin) and ordered by line_number.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="uq_invoices_tenant_number"),
        Index("idx_invoices_tenant_status", "tenant_id", "status"),
        Index("idx_invoices_due_date", "due_date"),
        Index("idx_invoices_subscription_id", "subscription_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    customer_id: Mapped[UUID | None] = mapped_column(nullable=True)
    subscription_id: Mapped[UUID | None] = mapped_column(nullable=True)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False)
    amount_due: Mapped[Decimal] = mapped_column(nullable=False)
    payment_terms: Mapped[str] = mapped_column(String(50), nullable=False)
    issued_date: Mapped[datetime] = mapped_column(nullable=False)
    due_date: Mapped[datetime] = mapped_column(nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_date: Mapped[datetime | None] = mapped_column(nullable=True)
    voided_date: Mapped[datetime | None] = mapped_column(nullable=True)
    billing_country: Mapped[str | None] = mapped_column(String(2), nullable=True)
    billing_state: Mapped[str | None] = mapped_column(String(3), nullable=True)
    exemption_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    line_items: Mapped[list["InvoiceLineItemModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceLineItemModel.line_number",
    )

    def to_dto(self):
        from billing_kernel.domain.billing_types import InvoiceStatus, InvoiceType, PaymentTerms
        from billing_modules.invoicing.models import Invoice

        return Invoice(
            id=self.id,
            tenant_id=self.tenant_id,
            customer_id=self.customer_id,
            subscription_id=self.subscription_id,
            invoice_number=self.invoice_number,
            invoice_type=InvoiceType(self.invoice_type),
            status=InvoiceStatus(self.status),
            currency=self.currency,
            subtotal=self.subtotal,
            tax_amount=self.tax_amount,
            discount_amount=self.discount_amount,
            total_amount=self.total_amount,
            amount_paid=self.amount_paid,
            amount_due=self.amount_due,
            payment_terms=PaymentTerms(self.payment_terms),
            issued_date=self.issued_date,
            due_date=self.due_date,
            sent_at=self.sent_at,
            paid_date=self.paid_date,
            voided_date=self.voided_date,
            billing_country=self.billing_country,
            billing_state=self.billing_state,
            exemption_type=self.exemption_type,
            notes=self.notes,
            line_items=tuple(line.to_dto() for line in self.line_items),
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID | None = None) -> "InvoiceModel":
        model = cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            customer_id=dto.customer_id,
            subscription_id=dto.subscription_id,
            invoice_number=dto.invoice_number,
            invoice_type=dto.invoice_type.value,
            status=dto.status.value,
            currency=dto.currency,
            subtotal=dto.subtotal,
            tax_amount=dto.tax_amount,
            discount_amount=dto.discount_amount,
            total_amount=dto.total_amount,
            amount_paid=dto.amount_paid,
            amount_due=dto.amount_due,
            payment_terms=dto.payment_terms.value,
            issued_date=dto.issued_date,
            due_date=dto.due_date,
            sent_at=dto.sent_at,
            paid_date=dto.paid_date,
            voided_date=dto.voided_date,
            billing_country=dto.billing_country,
            billing_state=dto.billing_state,
            exemption_type=dto.exemption_type,
            notes=dto.notes,
            created_by_id=created_by_id,
        )
        model.line_items = [
            InvoiceLineItemModel.from_dto(line, created_by_id) for line in dto.line_items
        ]
        return model

    def __repr__(self) -> str:
        return (
            f"<InvoiceModel {self.invoice_number} "
            f"status={self.status} due={self.amount_due}>"
        )


# ---------------------------------------------------------------------------
# InvoiceLineItemModel
# ---------------------------------------------------------------------------


class InvoiceLineItemModel(TrackedBase):
    """ORM model for invoice lines.  Each line belongs to exactly one invoice."""

    __tablename__ = "invoice_line_items"

    __table_args__ = (
        Index("idx_invoice_line_items_invoice_id", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    item_type: Mapped[str] = mapped_column(String(50), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    period_start: Mapped[datetime | None] = mapped_column(nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(nullable=True)
    line_metadata: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    invoice: Mapped["InvoiceModel"] = relationship(back_populates="line_items")

    def to_dto(self):
        from billing_kernel.domain.billing_types import LineItemType
        from billing_modules.invoicing.models import LineItem

        return LineItem(
            id=self.id,
            invoice_id=self.invoice_id,
            line_number=self.line_number,
            description=self.description,
            item_type=LineItemType(self.item_type),
            quantity=self.quantity,
            unit_price=self.unit_price,
            amount=self.amount,
            tax_rate=self.tax_rate,
            tax_amount=self.tax_amount,
            discount_amount=self.discount_amount,
            period_start=self.period_start,
            period_end=self.period_end,
            metadata=dict(self.line_metadata or {}),
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID | None = None) -> "InvoiceLineItemModel":
        return cls(
            id=dto.id,
            invoice_id=dto.invoice_id,
            line_number=dto.line_number,
            description=dto.description,
            item_type=dto.item_type.value,
            quantity=dto.quantity,
            unit_price=dto.unit_price,
            amount=dto.amount,
            tax_rate=dto.tax_rate,
            tax_amount=dto.tax_amount,
            discount_amount=dto.discount_amount,
            period_start=dto.period_start,
            period_end=dto.period_end,
            line_metadata=dict(dto.metadata),
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<InvoiceLineItemModel line={self.line_number} amount={self.amount}>"
