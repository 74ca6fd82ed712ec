"""
Subscription Service -- lifecycle, pricing and proration wiring.

Responsibility:
    Creates subscriptions and moves them through their lifecycle, prices a
    subscription period with ``PricingRulesEngine`` and computes mid-period
    change adjustments with ``ProrationCalculator``.  Arithmetic stays in
    ``billing_engines``.

Failure modes:
    - SubscriptionNotFoundError for unknown ids, except in
      ``calculate_proration`` which degrades to a zero result with a warning.
    - InvalidTransitionError for lifecycle moves the workflow does not allow.
    - InvalidAmountError / InvalidBillingPeriodError for bad input.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from billing_kernel.domain.billing_types import BillingCycleType
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.money import ZERO, to_decimal
from billing_kernel.domain.workflow import TransitionRecord
from billing_kernel.exceptions import (
    InvalidAmountError,
    InvalidBillingPeriodError,
    InvalidTransitionError,
    SubscriptionNotFoundError,
)
from billing_kernel.logging_config import get_logger
from billing_engines.pricing import CustomPricingRule, PricingResult, PricingRulesEngine
from billing_engines.proration import ProrationCalculator, ProrationResult
from billing_engines.schedule import add_cycle_interval
from billing_modules.subscriptions.models import Subscription, SubscriptionStatus
from billing_modules.subscriptions.orm import SubscriptionModel
from billing_modules.subscriptions.selectors import SubscriptionFilter, SubscriptionSelector
from billing_modules.subscriptions.workflows import CHANGEABLE_STATES, SUBSCRIPTION_WORKFLOW

logger = get_logger("modules.subscriptions.service")

ENTITY_TYPE = "subscription"


class SubscriptionService:
    """
    Orchestrates subscription operations through the pricing and proration
    engines.

    Contract:
        Every write commits on success and rolls back on failure.  Pricing
        and proration methods are read-only.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        pricing_engine: PricingRulesEngine | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._selector = SubscriptionSelector(session)

        # Stateless engines
        self._pricing = pricing_engine or PricingRulesEngine()
        self._proration = ProrationCalculator()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create_subscription(
        self,
        tenant_id: UUID,
        plan_name: str,
        amount: Decimal,
        billing_cycle: BillingCycleType,
        quantity: int = 1,
        currency: str = "USD",
        customer_id: UUID | None = None,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
        trial: bool = False,
        actor_id: UUID | None = None,
    ) -> Subscription:
        """
        Start a subscription whose first period opens at ``period_start``
        (default now).

        Raises:
            InvalidAmountError: Negative amount or quantity below 1.
            InvalidBillingPeriodError: Custom cycle without ``period_end``, or
                an end that does not follow the start.
        """
        amount = to_decimal(amount)
        if amount < ZERO:
            raise InvalidAmountError("amount", amount, "cannot be negative")
        if quantity < 1:
            raise InvalidAmountError("quantity", quantity, "must be at least 1")

        start = period_start or self._clock.now()
        end = period_end or add_cycle_interval(start, billing_cycle)
        if end <= start:
            raise InvalidBillingPeriodError("period end must be after period start")

        dto = Subscription(
            id=uuid4(),
            tenant_id=tenant_id,
            customer_id=customer_id,
            plan_name=plan_name,
            amount=amount,
            quantity=quantity,
            currency=currency,
            billing_cycle=billing_cycle,
            status=SubscriptionStatus.TRIAL if trial else SubscriptionStatus.ACTIVE,
            current_period_start=start,
            current_period_end=end,
        )
        try:
            self._session.add(SubscriptionModel.from_dto(dto, created_by_id=actor_id))
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("subscription_created", extra={
            "subscription_id": str(dto.id),
            "tenant_id": str(tenant_id),
            "plan_name": plan_name,
            "billing_cycle": billing_cycle.value,
            "quantity": quantity,
        })
        return dto

    def change_subscription(
        self,
        subscription_id: UUID,
        new_amount: Decimal | None = None,
        new_quantity: int | None = None,
        change_date: datetime | None = None,
        actor_id: UUID | None = None,
    ) -> tuple[Subscription, ProrationResult]:
        """
        Change price or quantity mid-period and return the proration for the
        rest of the current period.

        The proration compares the per-period charge (amount x quantity)
        before and after the change.

        Raises:
            SubscriptionNotFoundError, InvalidAmountError,
            InvalidTransitionError (subscription not trial or active).
        """
        model = self._load(subscription_id)
        if model.status not in CHANGEABLE_STATES:
            raise InvalidTransitionError(ENTITY_TYPE, subscription_id, model.status, "change")

        amount = to_decimal(new_amount) if new_amount is not None else model.amount
        quantity = new_quantity if new_quantity is not None else model.quantity
        if amount < ZERO:
            raise InvalidAmountError("amount", amount, "cannot be negative")
        if quantity < 1:
            raise InvalidAmountError("quantity", quantity, "must be at least 1")

        proration = self._proration.calculate(
            current_amount=model.amount * model.quantity,
            new_amount=amount * quantity,
            period_start=model.current_period_start,
            period_end=model.current_period_end,
            change_date=change_date or self._clock.now(),
        )
        try:
            model.amount = amount
            model.quantity = quantity
            model.updated_by_id = actor_id
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("subscription_changed", extra={
            "subscription_id": str(subscription_id),
            "amount": str(amount),
            "quantity": quantity,
            "proration_amount": str(proration.proration_amount),
        })
        return model.to_dto(), proration

    def activate_subscription(self, subscription_id: UUID) -> tuple[Subscription, TransitionRecord]:
        return self._transition(subscription_id, "activate")

    def suspend_subscription(
        self, subscription_id: UUID, reason: str | None = None,
    ) -> tuple[Subscription, TransitionRecord]:
        return self._transition(subscription_id, "suspend", reason=reason)

    def reactivate_subscription(self, subscription_id: UUID) -> tuple[Subscription, TransitionRecord]:
        return self._transition(subscription_id, "reactivate")

    def cancel_subscription(
        self, subscription_id: UUID, reason: str | None = None,
    ) -> tuple[Subscription, TransitionRecord]:
        return self._transition(subscription_id, "cancel", reason=reason)

    def _transition(
        self,
        subscription_id: UUID,
        action: str,
        reason: str | None = None,
    ) -> tuple[Subscription, TransitionRecord]:
        model = self._load(subscription_id)
        transition = SUBSCRIPTION_WORKFLOW.require(ENTITY_TYPE, subscription_id, model.status, action)
        now = self._clock.now()
        from_status = model.status
        try:
            model.status = transition.to_state
            if action == "cancel":
                model.canceled_at = now
            elif action == "reactivate":
                model.canceled_at = None
            if reason is not None:
                model.cancel_reason = reason
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("subscription_transitioned", extra={
            "subscription_id": str(subscription_id),
            "action": action,
            "from_status": from_status,
            "to_status": transition.to_state,
        })
        return model.to_dto(), TransitionRecord(
            entity_type=ENTITY_TYPE,
            entity_id=subscription_id,
            action=action,
            from_status=from_status,
            to_status=transition.to_state,
            occurred_at=now,
        )

    # =========================================================================
    # Pricing and proration
    # =========================================================================

    def apply_pricing_rules(
        self,
        subscription_id: UUID,
        custom_rule: CustomPricingRule | None = None,
    ) -> PricingResult:
        """
        Price one period of the subscription.

        Raises:
            SubscriptionNotFoundError: Unknown ``subscription_id``.
        """
        subscription = self.get_subscription(subscription_id)
        return self._pricing.apply_pricing_rules(
            subscription.amount,
            subscription.billing_cycle,
            subscription.quantity,
            custom_rule,
        )

    def calculate_proration(
        self,
        subscription_id: UUID,
        new_amount: Decimal,
        change_date: datetime | None = None,
    ) -> ProrationResult:
        """
        Proration of changing the subscription's amount to ``new_amount``
        at ``change_date`` (default now) within its current period.

        A missing subscription yields a zero result, not an error.
        """
        subscription = self._selector.get_subscription(subscription_id)
        if subscription is None:
            logger.warning("proration_subscription_not_found", extra={
                "subscription_id": str(subscription_id),
            })
            return ProrationResult.zero()

        return self._proration.calculate(
            current_amount=subscription.amount,
            new_amount=new_amount,
            period_start=subscription.current_period_start,
            period_end=subscription.current_period_end,
            change_date=change_date or self._clock.now(),
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_subscription(self, subscription_id: UUID) -> Subscription:
        subscription = self._selector.get_subscription(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    def find_subscriptions(self, subscription_filter: SubscriptionFilter) -> list[Subscription]:
        return self._selector.find_subscriptions(subscription_filter)

    def _load(self, subscription_id: UUID) -> SubscriptionModel:
        model = self._session.get(SubscriptionModel, subscription_id)
        if model is None:
            raise SubscriptionNotFoundError(subscription_id)
        return model
