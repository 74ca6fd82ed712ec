"""
Invoice Computer -- totals, numbering, due dates and the invoice lifecycle.

Responsibility:
    Creates invoices from line items and moves them through
    draft -> pending -> partially_paid/paid, or voided.  All arithmetic is
    delegated to ``billing_engines.invoice_totals``; the legal moves are
    declared in ``billing_modules.invoicing.workflows``.

Architecture:
    billing_modules -- module layer.
    1. Computes line amounts and totals (pure engine).
    2. Allocates the invoice number from a locked per-tenant-month counter.
    3. Persists the invoice and its lines in one transaction.

Invariants:
    - total_amount = subtotal + tax_amount - discount_amount
    - amount_due   = max(0, total_amount - amount_paid)
      Both are re-checked after every change (fail fast with
      InvariantViolationError).
    - (tenant_id, invoice_number) is unique.
    - Invoice tax comes from each line's own rate, never from TaxResolver.

Failure modes:
    - InvalidLineItemError / InvalidAmountError for bad input.
    - InvoiceNotFoundError for unknown ids.
    - InvalidTransitionError for moves the workflow does not allow.
    - PaidInvoiceImmutableError for updating a paid or voided invoice, or
      deleting a paid one.
    - DuplicateInvoiceNumberError when the number collides.

Audit relevance:
    Every mutation returns an ``InvoiceOutcome`` whose ``TransitionRecord``
    carries the action, both statuses and the resulting amounts.

Usage:
    computer = InvoiceComputer(session, clock=clock)
    outcome = computer.create_invoice(tenant_id, [
        LineItemInput(description="Pro plan", quantity=Decimal("1"),
                      unit_price=Decimal("100.00"), tax_rate=Decimal("0.08")),
    ])
    computer.send_invoice(outcome.invoice.id)
    computer.mark_as_paid(outcome.invoice.id, Decimal("108.00"))
"""

from __future__ import annotations

import time
from datetime import datetime
from decimal import Decimal
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing_kernel.domain.billing_types import (
    InvoiceStatus,
    InvoiceType,
    PaymentTerms,
)
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.money import ZERO, round_money
from billing_kernel.domain.workflow import TransitionRecord
from billing_kernel.exceptions import (
    DuplicateInvoiceNumberError,
    InvoiceNotFoundError,
    PaidInvoiceImmutableError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.sequence_service import SequenceService
from billing_engines.invoice_totals import (
    apply_payment,
    check_invoice_invariants,
    compute_amount_due,
    compute_due_date,
    compute_invoice_totals,
    compute_line_amounts,
)
from billing_modules.invoicing.models import (
    Invoice,
    InvoiceOutcome,
    LineItem,
    LineItemInput,
)
from billing_modules.invoicing.numbering import InvoiceNumberGenerator
from billing_modules.invoicing.orm import InvoiceLineItemModel, InvoiceModel
from billing_modules.invoicing.selectors import InvoiceFilter, InvoiceSelector
from billing_modules.invoicing.workflows import (
    DELETABLE_STATES,
    INVOICE_WORKFLOW,
    UPDATABLE_STATES,
)

logger = get_logger("modules.invoicing.service")

ENTITY_TYPE = "invoice"


class InvoiceComputer:
    """
    Computes, numbers and transitions invoices.

    Contract:
        With ``auto_commit=True`` (default) every mutation commits on success
        and rolls back on failure.  With ``auto_commit=False`` the caller owns
        the transaction and mutations only flush; the billing cycle scheduler
        uses this so cycle and invoice commit together.

    Guarantees:
        - Monetary invariants hold on every returned invoice.
        - Numbers are strictly increasing per tenant per month when a
          sequence service is in use.

    Non-goals:
        - Does NOT resolve jurisdiction tax (see TaxResolver).
        - Does NOT collect payments; ``mark_as_paid`` records them.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        use_sequence: bool = True,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._numbers = InvoiceNumberGenerator(
            session, SequenceService(session) if use_sequence else None,
        )
        self._selector = InvoiceSelector(session)

    # =========================================================================
    # Creation
    # =========================================================================

    def create_invoice(
        self,
        tenant_id: UUID,
        line_items: Sequence[LineItemInput],
        payment_terms: PaymentTerms = PaymentTerms.NET_30,
        due_date: datetime | None = None,
        *,
        customer_id: UUID | None = None,
        subscription_id: UUID | None = None,
        invoice_type: InvoiceType = InvoiceType.ONE_TIME,
        currency: str = "USD",
        billing_country: str | None = None,
        billing_state: str | None = None,
        exemption_type: str | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> InvoiceOutcome:
        """
        Create a draft invoice.

        Preconditions:
            - At least one line item; every quantity > 0, unit price >= 0,
              tax rate within [0, 1], discount >= 0.

        Postconditions:
            - status draft, amount_paid 0, amount_due == total_amount.
            - issued_date is the clock's now; due_date is explicit or
              issued_date + payment terms offset.

        Raises:
            InvalidLineItemError, InvalidAmountError, DuplicateInvoiceNumberError.
        """
        t0 = time.monotonic()
        totals = compute_invoice_totals(line_items)
        issued = self._clock.now()
        invoice_id = uuid4()

        with LogContext.bind(tenant_id=tenant_id, invoice_id=invoice_id):
            try:
                invoice_number = self._numbers.next_number(tenant_id, issued)
                dto = Invoice(
                    id=invoice_id,
                    tenant_id=tenant_id,
                    customer_id=customer_id,
                    subscription_id=subscription_id,
                    invoice_number=invoice_number,
                    invoice_type=invoice_type,
                    status=InvoiceStatus.DRAFT,
                    currency=currency,
                    subtotal=totals.subtotal,
                    tax_amount=totals.tax_amount,
                    discount_amount=totals.discount_amount,
                    total_amount=totals.total_amount,
                    amount_paid=round_money(ZERO),
                    amount_due=totals.total_amount,
                    payment_terms=payment_terms,
                    issued_date=issued,
                    due_date=due_date or compute_due_date(issued, payment_terms),
                    billing_country=billing_country,
                    billing_state=billing_state,
                    exemption_type=exemption_type,
                    notes=notes,
                    line_items=self._build_lines(invoice_id, line_items),
                )
                self._check(dto)

                model = InvoiceModel.from_dto(dto, created_by_id=actor_id)
                try:
                    with self._session.begin_nested():
                        self._session.add(model)
                        self._session.flush()
                except IntegrityError as exc:
                    raise DuplicateInvoiceNumberError(tenant_id, invoice_number) from exc
                self._finish()
            except Exception:
                self._abort()
                raise

            logger.info("invoice_created", extra={
                "invoice_number": invoice_number,
                "invoice_type": invoice_type.value,
                "line_count": len(line_items),
                "total_amount": str(totals.total_amount),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            })

        invoice = model.to_dto()
        return InvoiceOutcome(
            invoice=invoice,
            transition=self._record(invoice, "create", None, issued),
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def send_invoice(self, invoice_id: UUID, actor_id: UUID | None = None) -> InvoiceOutcome:
        """draft -> pending.  Raises InvalidTransitionError from any other status."""
        model = self._load(invoice_id)
        transition = INVOICE_WORKFLOW.require(ENTITY_TYPE, invoice_id, model.status, "send")
        now = self._clock.now()
        from_status = model.status
        try:
            model.status = transition.to_state
            model.sent_at = now
            model.updated_by_id = actor_id
            self._finish()
        except Exception:
            self._abort()
            raise
        return self._outcome(model, "send", from_status, now)

    def mark_as_paid(
        self,
        invoice_id: UUID,
        payment_amount: Decimal,
        actor_id: UUID | None = None,
    ) -> InvoiceOutcome:
        """
        Record a payment.

        Postconditions:
            - amount_paid increases by ``payment_amount``.
            - status paid when nothing remains due (paid_date set), else
              partially_paid.

        Raises:
            InvalidTransitionError: Invoice is draft, paid or voided.
            InvalidAmountError: ``payment_amount`` <= 0.
        """
        model = self._load(invoice_id)
        INVOICE_WORKFLOW.require(ENTITY_TYPE, invoice_id, model.status, "mark_as_paid")
        application = apply_payment(model.total_amount, model.amount_paid, payment_amount)
        to_state = (
            InvoiceStatus.PAID.value if application.is_fully_paid
            else InvoiceStatus.PARTIALLY_PAID.value
        )
        transition = INVOICE_WORKFLOW.require(
            ENTITY_TYPE, invoice_id, model.status, "mark_as_paid", to_state=to_state,
        )
        now = self._clock.now()
        from_status = model.status

        if application.amount_paid > model.total_amount:
            logger.warning("invoice_overpaid", extra={
                "invoice_id": str(invoice_id),
                "total_amount": str(model.total_amount),
                "amount_paid": str(application.amount_paid),
            })

        try:
            model.amount_paid = application.amount_paid
            model.amount_due = application.amount_due
            model.status = transition.to_state
            if application.is_fully_paid:
                model.paid_date = now
            model.updated_by_id = actor_id
            self._check(model)
            self._finish()
        except Exception:
            self._abort()
            raise
        return self._outcome(model, "mark_as_paid", from_status, now)

    def void_invoice(
        self,
        invoice_id: UUID,
        reason: str | None = None,
        actor_id: UUID | None = None,
    ) -> InvoiceOutcome:
        """draft|pending|partially_paid -> voided."""
        model = self._load(invoice_id)
        transition = INVOICE_WORKFLOW.require(ENTITY_TYPE, invoice_id, model.status, "void")
        now = self._clock.now()
        from_status = model.status
        try:
            model.status = transition.to_state
            model.voided_date = now
            model.updated_by_id = actor_id
            self._finish()
        except Exception:
            self._abort()
            raise
        logger.info("invoice_voided", extra={
            "invoice_id": str(invoice_id),
            "reason": reason,
        })
        return self._outcome(model, "void", from_status, now)

    def update_invoice(
        self,
        invoice_id: UUID,
        line_items: Sequence[LineItemInput] | None = None,
        due_date: datetime | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> InvoiceOutcome:
        """
        Replace line items, due date or notes of an unpaid invoice.

        Replacing line items re-derives subtotal, tax, discount and total,
        keeps amount_paid and recomputes amount_due.  When the payments
        already received cover the new total, an open invoice moves to paid
        and paid_date is set.

        Raises:
            PaidInvoiceImmutableError: Invoice is paid or voided.
        """
        model = self._load(invoice_id)
        if model.status not in UPDATABLE_STATES:
            raise PaidInvoiceImmutableError(invoice_id, model.status, "update")

        now = self._clock.now()
        from_status = model.status
        action = "update"
        totals = compute_invoice_totals(line_items) if line_items is not None else None
        settled = None
        if totals is not None and model.amount_paid > ZERO:
            if compute_amount_due(totals.total_amount, model.amount_paid) == ZERO:
                settled = INVOICE_WORKFLOW.require(
                    ENTITY_TYPE, invoice_id, model.status, "mark_as_paid",
                    to_state=InvoiceStatus.PAID.value,
                )
                action = "mark_as_paid"

        try:
            if totals is not None:
                model.line_items = [
                    InvoiceLineItemModel.from_dto(line, created_by_id=actor_id)
                    for line in self._build_lines(invoice_id, line_items)
                ]
                model.subtotal = totals.subtotal
                model.tax_amount = totals.tax_amount
                model.discount_amount = totals.discount_amount
                model.total_amount = totals.total_amount
                model.amount_due = compute_amount_due(totals.total_amount, model.amount_paid)
            if settled is not None:
                model.status = settled.to_state
                model.paid_date = now
            if due_date is not None:
                model.due_date = due_date
            if notes is not None:
                model.notes = notes
            model.updated_by_id = actor_id
            self._check(model)
            self._finish()
        except Exception:
            self._abort()
            raise
        if settled is not None:
            logger.info("invoice_settled_by_update", extra={
                "invoice_id": str(invoice_id),
                "total_amount": str(model.total_amount),
                "amount_paid": str(model.amount_paid),
            })
        return self._outcome(model, action, from_status, now)

    def delete_invoice(self, invoice_id: UUID) -> TransitionRecord:
        """
        Delete an invoice that has not been paid.

        Raises:
            PaidInvoiceImmutableError: Invoice is paid.
        """
        model = self._load(invoice_id)
        if model.status not in DELETABLE_STATES:
            raise PaidInvoiceImmutableError(invoice_id, model.status, "delete")

        invoice = model.to_dto()
        now = self._clock.now()
        try:
            self._session.delete(model)
            self._finish()
        except Exception:
            self._abort()
            raise
        logger.info("invoice_deleted", extra={
            "invoice_id": str(invoice_id),
            "invoice_number": invoice.invoice_number,
            "status": invoice.status.value,
        })
        return TransitionRecord(
            entity_type=ENTITY_TYPE,
            entity_id=invoice_id,
            action="delete",
            from_status=invoice.status.value,
            to_status="deleted",
            occurred_at=now,
            amounts=self._amounts(invoice),
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self._selector.get_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def find_invoices(self, invoice_filter: InvoiceFilter) -> list[Invoice]:
        return self._selector.find_invoices(invoice_filter)

    def find_overdue_invoices(
        self,
        as_of: datetime | None = None,
        tenant_id: UUID | None = None,
    ) -> list[Invoice]:
        return self._selector.find_overdue_invoices(as_of or self._clock.now(), tenant_id)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _build_lines(invoice_id: UUID, line_items: Sequence[LineItemInput]) -> tuple[LineItem, ...]:
        lines = []
        for number, item in enumerate(line_items, start=1):
            amounts = compute_line_amounts(item)
            lines.append(LineItem(
                id=uuid4(),
                invoice_id=invoice_id,
                line_number=number,
                description=item.description,
                item_type=item.item_type,
                quantity=item.quantity,
                unit_price=item.unit_price,
                amount=amounts.amount,
                tax_rate=item.tax_rate,
                tax_amount=amounts.tax_amount,
                discount_amount=amounts.discount_amount,
                period_start=item.period_start,
                period_end=item.period_end,
                metadata=dict(item.metadata),
            ))
        return tuple(lines)

    def _load(self, invoice_id: UUID) -> InvoiceModel:
        model = self._session.get(InvoiceModel, invoice_id)
        if model is None:
            raise InvoiceNotFoundError(invoice_id)
        return model

    @staticmethod
    def _check(invoice) -> None:
        check_invoice_invariants(
            subtotal=invoice.subtotal,
            tax_amount=invoice.tax_amount,
            discount_amount=invoice.discount_amount,
            total_amount=invoice.total_amount,
            amount_paid=invoice.amount_paid,
            amount_due=invoice.amount_due,
        )

    def _finish(self) -> None:
        if self._auto_commit:
            self._session.commit()
        else:
            self._session.flush()

    def _abort(self) -> None:
        if self._auto_commit:
            self._session.rollback()

    @staticmethod
    def _amounts(invoice: Invoice) -> dict[str, Decimal]:
        return {
            "subtotal": invoice.subtotal,
            "tax_amount": invoice.tax_amount,
            "discount_amount": invoice.discount_amount,
            "total_amount": invoice.total_amount,
            "amount_paid": invoice.amount_paid,
            "amount_due": invoice.amount_due,
        }

    def _record(
        self,
        invoice: Invoice,
        action: str,
        from_status: str | None,
        occurred_at: datetime,
    ) -> TransitionRecord:
        return TransitionRecord(
            entity_type=ENTITY_TYPE,
            entity_id=invoice.id,
            action=action,
            from_status=from_status,
            to_status=invoice.status.value,
            occurred_at=occurred_at,
            amounts=self._amounts(invoice),
        )

    def _outcome(
        self,
        model: InvoiceModel,
        action: str,
        from_status: str,
        occurred_at: datetime,
    ) -> InvoiceOutcome:
        invoice = model.to_dto()
        logger.info("invoice_transitioned", extra={
            "invoice_id": str(invoice.id),
            "invoice_number": invoice.invoice_number,
            "action": action,
            "from_status": from_status,
            "to_status": invoice.status.value,
            "amount_due": str(invoice.amount_due),
        })
        return InvoiceOutcome(
            invoice=invoice,
            transition=self._record(invoice, action, from_status, occurred_at),
        )
