"""
Billing Cycle Scheduler -- schedule, claim, invoice and settle cycles.

Responsibility:
    Creates pending billing cycles (optionally priced from a subscription)
    and turns a due cycle into an invoice exactly once.

Architecture:
    billing_modules -- module layer.
    1. ``compute_next_billing_period`` (pure) places the next period.
    2. ``PricingRulesEngine`` (pure) prices subscription cycles.
    3. ``InvoiceComputer`` creates the invoice inside this service's
       transaction (``auto_commit=False``).

Invariants:
    - At-most-once processing: the pending -> processing claim is a single
      conditional UPDATE.  Two workers racing for one cycle get exactly one
      winner; the loser sees CycleNotPendingError.
    - A cycle becomes paid only after its invoice exists.  The cycle is
      marked paid as soon as the invoice is created; collection is tracked
      on the invoice.
    - A failed run is released back to pending; the claim never outlives
      ``process_billing_cycle``.

Failure modes:
    - BillingCycleNotFoundError / SubscriptionNotFoundError for unknown ids.
    - CycleNotPendingError when the claim loses.
    - InvalidTransitionError when cancelling a non-pending cycle.
    - Any invoice creation error is re-raised after the release.

Usage:
    scheduler = BillingCycleScheduler(session, clock=clock)
    outcome = scheduler.schedule_recurring_billing(tenant_id, subscription_id)
    result = scheduler.process_billing_cycle(outcome.cycle.id)
    result.invoice.invoice_number   # "INV-202402-0001"
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import update
from sqlalchemy.orm import Session

from billing_kernel.domain.billing_types import (
    BillingCycleStatus,
    BillingCycleType,
    InvoiceType,
    LineItemType,
    PaymentTerms,
)
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.money import ZERO, round_money, to_decimal
from billing_kernel.domain.workflow import TransitionRecord
from billing_kernel.exceptions import (
    BillingCycleNotFoundError,
    BillingKernelError,
    CycleNotPendingError,
    InvalidAmountError,
    InvalidBillingPeriodError,
    SubscriptionNotFoundError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_engines.invoice_totals import PAYMENT_TERM_DAYS
from billing_engines.pricing import CustomPricingRule, PricingRulesEngine
from billing_engines.schedule import compute_next_billing_period
from billing_modules.cycles.models import (
    BillingCycle,
    CycleFailure,
    CycleOutcome,
    CycleProcessingResult,
    DueCycleRun,
)
from billing_modules.cycles.orm import BillingCycleModel
from billing_modules.cycles.selectors import BillingCycleFilter, BillingCycleSelector
from billing_modules.cycles.workflows import BILLING_CYCLE_WORKFLOW
from billing_modules.invoicing.models import LineItemInput
from billing_modules.invoicing.service import InvoiceComputer
from billing_modules.subscriptions.selectors import SubscriptionSelector

logger = get_logger("modules.cycles.service")

ENTITY_TYPE = "billing_cycle"
CYCLE_PAYMENT_TERMS = PaymentTerms.NET_30


class BillingCycleScheduler:
    """
    Schedules and processes billing cycles.

    Contract:
        Owns the transaction boundary: the claim commits on its own, then the
        invoice and the paid cycle commit together.  The injected
        ``invoice_computer`` must share this session and must not commit.

    Guarantees:
        - A cycle is invoiced at most once.
        - After any failure the cycle is pending again.

    Non-goals:
        - Does NOT collect payment for the invoice it creates.
        - Does NOT run on a timer; callers invoke ``process_due_cycles``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        invoice_computer: InvoiceComputer | None = None,
        pricing_engine: PricingRulesEngine | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._invoices = invoice_computer or InvoiceComputer(
            session, clock=self._clock, auto_commit=False,
        )
        self._pricing = pricing_engine or PricingRulesEngine()
        self._selector = BillingCycleSelector(session)
        self._subscriptions = SubscriptionSelector(session)

    # =========================================================================
    # Scheduling
    # =========================================================================

    def schedule_recurring_billing(
        self,
        tenant_id: UUID,
        subscription_id: UUID,
        cycle_type: BillingCycleType | None = None,
        custom_rule: CustomPricingRule | None = None,
        actor_id: UUID | None = None,
    ) -> CycleOutcome:
        """
        Schedule the next cycle for a subscription.

        The billing date is one cycle unit after now and opens the period
        [billing_date, billing_date + unit).  The amount is the
        subscription's amount and quantity run through the pricing rules;
        the rules applied are kept in the cycle metadata.

        Raises:
            SubscriptionNotFoundError: Unknown ``subscription_id``.
            InvalidBillingPeriodError: Custom cycle type.
        """
        subscription = self._subscriptions.get_subscription(subscription_id)
        if subscription is None or subscription.tenant_id != tenant_id:
            raise SubscriptionNotFoundError(subscription_id)

        cycle_type = cycle_type or subscription.billing_cycle
        period = compute_next_billing_period(self._clock.now(), cycle_type)
        pricing = self._pricing.apply_pricing_rules(
            subscription.amount, cycle_type, subscription.quantity, custom_rule,
        )

        return self.create_billing_cycle(
            tenant_id=tenant_id,
            cycle_type=cycle_type,
            start_date=period.start_date,
            end_date=period.end_date,
            billing_date=period.billing_date,
            total_amount=pricing.final_amount,
            currency=subscription.currency,
            subscription_id=subscription_id,
            metadata={
                "plan_name": subscription.plan_name,
                "gross_amount": str(pricing.gross_amount),
                "discount_applied": str(pricing.discount_applied),
                "pricing_rules_applied": list(pricing.rules_applied),
            },
            actor_id=actor_id,
        )

    def create_billing_cycle(
        self,
        tenant_id: UUID,
        cycle_type: BillingCycleType,
        start_date: datetime,
        end_date: datetime,
        billing_date: datetime,
        total_amount: Decimal = ZERO,
        currency: str = "USD",
        subscription_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
        actor_id: UUID | None = None,
    ) -> CycleOutcome:
        """
        Create a pending cycle.

        Raises:
            InvalidBillingPeriodError: ``end_date`` not after ``start_date``.
            InvalidAmountError: Negative ``total_amount``.
        """
        if end_date <= start_date:
            raise InvalidBillingPeriodError("end_date must be after start_date")
        total_amount = round_money(to_decimal(total_amount))
        if total_amount < ZERO:
            raise InvalidAmountError("total_amount", total_amount, "cannot be negative")

        dto = BillingCycle(
            id=uuid4(),
            tenant_id=tenant_id,
            subscription_id=subscription_id,
            cycle_type=cycle_type,
            start_date=start_date,
            end_date=end_date,
            billing_date=billing_date,
            total_amount=total_amount,
            currency=currency,
            status=BillingCycleStatus.PENDING,
            metadata=metadata or {},
        )
        try:
            self._session.add(BillingCycleModel.from_dto(dto, created_by_id=actor_id))
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("billing_cycle_scheduled", extra={
            "cycle_id": str(dto.id),
            "tenant_id": str(tenant_id),
            "cycle_type": cycle_type.value,
            "billing_date": billing_date,
            "total_amount": str(total_amount),
        })
        return CycleOutcome(
            cycle=dto,
            transition=self._record(dto.id, "create", None, "pending", self._clock.now(), total_amount),
        )

    # =========================================================================
    # Processing
    # =========================================================================

    def process_billing_cycle(self, cycle_id: UUID) -> CycleProcessingResult:
        """
        Invoice a pending cycle and mark it paid.

        Postconditions:
            - On success: one invoice exists for the cycle; the cycle is paid
              and carries the invoice id, total and currency.
            - On failure: the cycle is pending again and the error re-raised.

        Raises:
            BillingCycleNotFoundError, CycleNotPendingError, and any error
            from invoice creation.
        """
        t0 = time.monotonic()
        claim = self._claim(cycle_id)

        with LogContext.bind(cycle_id=cycle_id):
            model = self._session.get(BillingCycleModel, cycle_id, populate_existing=True)
            try:
                outcome = self._invoices.create_invoice(
                    model.tenant_id,
                    [
                        LineItemInput(
                            description=f"Subscription billing for {model.cycle_type} period",
                            quantity=Decimal("1"),
                            unit_price=model.total_amount,
                            item_type=LineItemType.SUBSCRIPTION,
                            period_start=model.start_date,
                            period_end=model.end_date,
                        ),
                    ],
                    CYCLE_PAYMENT_TERMS,
                    model.billing_date + timedelta(days=PAYMENT_TERM_DAYS[CYCLE_PAYMENT_TERMS]),
                    subscription_id=model.subscription_id,
                    invoice_type=InvoiceType.SUBSCRIPTION,
                    currency=model.currency,
                    notes=(
                        f"Billing cycle for {model.start_date.date().isoformat()} "
                        f"to {model.end_date.date().isoformat()}"
                    ),
                )
                invoice = outcome.invoice

                transition = BILLING_CYCLE_WORKFLOW.require(
                    ENTITY_TYPE, cycle_id, model.status, "complete",
                )
                completed_at = self._clock.now()
                model.status = transition.to_state
                model.invoice_id = invoice.id
                model.total_amount = invoice.total_amount
                model.currency = invoice.currency
                model.processed_at = completed_at
                self._session.commit()
            except Exception as exc:
                self._session.rollback()
                self._release(cycle_id)
                logger.error("billing_cycle_processing_failed", extra={
                    "error_code": getattr(exc, "code", type(exc).__name__),
                    "error": str(exc),
                })
                raise

            cycle = model.to_dto()
            logger.info("billing_cycle_processed", extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "total_amount": str(invoice.total_amount),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            })

        return CycleProcessingResult(
            cycle=cycle,
            invoice=invoice,
            transitions=(
                claim,
                outcome.transition,
                self._record(
                    cycle_id, "complete", "processing", cycle.status.value,
                    completed_at, cycle.total_amount,
                ),
            ),
        )

    def process_due_cycles(
        self,
        tenant_id: UUID | None = None,
        as_of: datetime | None = None,
        limit: int = 50,
    ) -> DueCycleRun:
        """
        Process every pending cycle whose billing date has arrived.

        Each cycle is processed in its own transaction; a failure is recorded
        in the run and does not stop the remaining cycles.
        """
        as_of = as_of or self._clock.now()
        due = self._selector.find_billing_cycles(BillingCycleFilter(
            tenant_id=tenant_id,
            statuses=(BillingCycleStatus.PENDING,),
            billing_to=as_of,
            limit=limit,
        ))

        processed: list[CycleProcessingResult] = []
        failures: list[CycleFailure] = []
        for cycle in due:
            try:
                processed.append(self.process_billing_cycle(cycle.id))
            except BillingKernelError as exc:
                failures.append(CycleFailure(cycle_id=cycle.id, error_code=exc.code, message=str(exc)))

        logger.info("due_billing_cycles_processed", extra={
            "due_count": len(due),
            "processed_count": len(processed),
            "failure_count": len(failures),
        })
        return DueCycleRun(processed=tuple(processed), failures=tuple(failures))

    def cancel_billing_cycle(
        self,
        cycle_id: UUID,
        reason: str | None = None,
        actor_id: UUID | None = None,
    ) -> CycleOutcome:
        """
        pending -> cancelled.

        Raises:
            BillingCycleNotFoundError: Unknown ``cycle_id``.
            InvalidTransitionError: Cycle is processing, paid or cancelled.
        """
        model = self._session.get(BillingCycleModel, cycle_id)
        if model is None:
            raise BillingCycleNotFoundError(cycle_id)
        transition = BILLING_CYCLE_WORKFLOW.require(ENTITY_TYPE, cycle_id, model.status, "cancel")

        now = self._clock.now()
        try:
            model.status = transition.to_state
            if reason:
                model.cycle_metadata = {**(model.cycle_metadata or {}), "cancel_reason": reason}
            model.updated_by_id = actor_id
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("billing_cycle_cancelled", extra={
            "cycle_id": str(cycle_id),
            "reason": reason,
        })
        cycle = model.to_dto()
        return CycleOutcome(
            cycle=cycle,
            transition=self._record(
                cycle_id, "cancel", "pending", cycle.status.value, now, cycle.total_amount,
            ),
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_billing_cycle(self, cycle_id: UUID) -> BillingCycle:
        cycle = self._selector.get_billing_cycle(cycle_id)
        if cycle is None:
            raise BillingCycleNotFoundError(cycle_id)
        return cycle

    def get_upcoming_billing_cycles(self, tenant_id: UUID, days: int = 7) -> list[BillingCycle]:
        """Pending cycles billing between now and ``days`` from now."""
        now = self._clock.now()
        return self._selector.find_billing_cycles(BillingCycleFilter(
            tenant_id=tenant_id,
            statuses=(BillingCycleStatus.PENDING,),
            billing_from=now,
            billing_to=now + timedelta(days=days),
        ))

    def find_billing_cycles(self, cycle_filter: BillingCycleFilter) -> list[BillingCycle]:
        return self._selector.find_billing_cycles(cycle_filter)

    # =========================================================================
    # Claim and release
    # =========================================================================

    def _claim(self, cycle_id: UUID) -> TransitionRecord:
        transition = BILLING_CYCLE_WORKFLOW.require(ENTITY_TYPE, cycle_id, "pending", "process")
        result = self._session.execute(
            update(BillingCycleModel)
            .where(
                BillingCycleModel.id == cycle_id,
                BillingCycleModel.status == transition.from_state,
            )
            .values(status=transition.to_state)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._session.rollback()
            model = self._session.get(BillingCycleModel, cycle_id)
            if model is None:
                raise BillingCycleNotFoundError(cycle_id)
            logger.warning("billing_cycle_claim_lost", extra={
                "cycle_id": str(cycle_id),
                "status": model.status,
            })
            raise CycleNotPendingError(cycle_id, model.status)

        self._session.commit()
        logger.info("billing_cycle_claimed", extra={"cycle_id": str(cycle_id)})
        return self._record(
            cycle_id, "process", transition.from_state, transition.to_state, self._clock.now(),
        )

    def _release(self, cycle_id: UUID) -> None:
        transition = BILLING_CYCLE_WORKFLOW.require(ENTITY_TYPE, cycle_id, "processing", "release")
        self._session.execute(
            update(BillingCycleModel)
            .where(
                BillingCycleModel.id == cycle_id,
                BillingCycleModel.status == transition.from_state,
            )
            .values(status=transition.to_state)
            .execution_options(synchronize_session=False)
        )
        self._session.commit()
        logger.info("billing_cycle_released", extra={"cycle_id": str(cycle_id)})

    @staticmethod
    def _record(
        cycle_id: UUID,
        action: str,
        from_status: str | None,
        to_status: str,
        occurred_at: datetime,
        total_amount: Decimal | None = None,
    ) -> TransitionRecord:
        return TransitionRecord(
            entity_type=ENTITY_TYPE,
            entity_id=cycle_id,
            action=action,
            from_status=from_status,
            to_status=to_status,
            occurred_at=occurred_at,
            amounts={} if total_amount is None else {"total_amount": total_amount},
        )
