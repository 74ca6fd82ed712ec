"""
Tests for BillingCycleScheduler.

Covers:
- Creating and scheduling cycles (with pricing rules)
- Processing a due cycle into exactly one invoice
- Release back to pending when invoicing fails
- Batch processing of due cycles, cancellation and queries
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from billing_kernel.domain.billing_types import (
    BillingCycleStatus,
    BillingCycleType,
    InvoiceStatus,
    InvoiceType,
)
from billing_kernel.exceptions import (
    BillingCycleNotFoundError,
    CycleNotPendingError,
    InvalidAmountError,
    InvalidBillingPeriodError,
    InvalidLineItemError,
    InvalidTransitionError,
    SubscriptionNotFoundError,
)
from billing_engines.pricing import CustomPricingRule
from billing_modules.cycles.selectors import BillingCycleFilter
from billing_modules.cycles.service import BillingCycleScheduler
from billing_modules.invoicing.selectors import InvoiceFilter

from tests.conftest import OTHER_TENANT_ID, TEST_TENANT_ID


def _make_cycle(scheduler, billing_date, amount="100.00", tenant_id=TEST_TENANT_ID):
    return scheduler.create_billing_cycle(
        tenant_id=tenant_id,
        cycle_type=BillingCycleType.MONTHLY,
        start_date=billing_date,
        end_date=billing_date + timedelta(days=30),
        billing_date=billing_date,
        total_amount=Decimal(amount),
    ).cycle


class TestCreateBillingCycle:

    def test_created_pending(self, scheduler, deterministic_clock):
        now = deterministic_clock.now()

        outcome = scheduler.create_billing_cycle(
            tenant_id=TEST_TENANT_ID,
            cycle_type=BillingCycleType.MONTHLY,
            start_date=now,
            end_date=now + timedelta(days=30),
            billing_date=now,
            total_amount=Decimal("49.999"),
        )

        assert outcome.cycle.status is BillingCycleStatus.PENDING
        assert outcome.cycle.total_amount == Decimal("50.00")
        assert outcome.cycle.invoice_id is None
        assert outcome.transition.action == "create"
        assert outcome.transition.from_status is None
        assert outcome.transition.to_status == "pending"

    def test_end_before_start_rejected(self, scheduler, deterministic_clock):
        now = deterministic_clock.now()

        with pytest.raises(InvalidBillingPeriodError):
            scheduler.create_billing_cycle(
                TEST_TENANT_ID, BillingCycleType.MONTHLY, now, now, now,
            )

    def test_negative_amount_rejected(self, scheduler, deterministic_clock):
        now = deterministic_clock.now()

        with pytest.raises(InvalidAmountError):
            scheduler.create_billing_cycle(
                TEST_TENANT_ID, BillingCycleType.MONTHLY, now, now + timedelta(days=1), now,
                total_amount=Decimal("-1"),
            )


class TestScheduleRecurringBilling:

    def test_monthly_subscription(self, scheduler, monthly_subscription, deterministic_clock):
        outcome = scheduler.schedule_recurring_billing(TEST_TENANT_ID, monthly_subscription.id)

        cycle = outcome.cycle
        now = deterministic_clock.now()
        assert cycle.subscription_id == monthly_subscription.id
        assert cycle.cycle_type is BillingCycleType.MONTHLY
        assert cycle.billing_date == now.replace(month=4)
        assert cycle.start_date == cycle.billing_date
        assert cycle.end_date == now.replace(month=5)
        assert cycle.total_amount == Decimal("100.00")
        assert cycle.metadata["plan_name"] == "Pro"
        assert cycle.metadata["pricing_rules_applied"] == []

    def test_annual_override_applies_discount(self, scheduler, monthly_subscription):
        outcome = scheduler.schedule_recurring_billing(
            TEST_TENANT_ID, monthly_subscription.id, cycle_type=BillingCycleType.ANNUALLY,
        )

        assert outcome.cycle.total_amount == Decimal("80.00")
        assert outcome.cycle.metadata["pricing_rules_applied"] == ["Annual billing discount: 20%"]
        assert outcome.cycle.metadata["discount_applied"] == "20.00"

    def test_custom_rule(self, scheduler, monthly_subscription):
        outcome = scheduler.schedule_recurring_billing(
            TEST_TENANT_ID, monthly_subscription.id,
            custom_rule=CustomPricingRule(discount_percent=Decimal("10")),
        )

        assert outcome.cycle.total_amount == Decimal("90.00")

    def test_unknown_subscription(self, scheduler):
        with pytest.raises(SubscriptionNotFoundError):
            scheduler.schedule_recurring_billing(TEST_TENANT_ID, uuid4())

    def test_other_tenant_subscription_not_visible(self, scheduler, monthly_subscription):
        with pytest.raises(SubscriptionNotFoundError):
            scheduler.schedule_recurring_billing(OTHER_TENANT_ID, monthly_subscription.id)


class TestProcessBillingCycle:

    def test_creates_invoice_and_marks_paid(self, scheduler, due_cycle, invoice_computer):
        result = scheduler.process_billing_cycle(due_cycle.id)

        assert result.cycle.status is BillingCycleStatus.PAID
        assert result.cycle.invoice_id == result.invoice.id
        assert result.cycle.processed_at is not None

        invoice = invoice_computer.get_invoice(result.invoice.id)
        assert invoice.status is InvoiceStatus.DRAFT
        assert invoice.invoice_type is InvoiceType.SUBSCRIPTION
        assert invoice.total_amount == Decimal("250.00")
        assert invoice.due_date == due_cycle.billing_date + timedelta(days=30)
        assert invoice.line_items[0].description == "Subscription billing for monthly period"
        assert invoice.line_items[0].period_start == due_cycle.start_date

    def test_transitions_in_order(self, scheduler, due_cycle):
        result = scheduler.process_billing_cycle(due_cycle.id)

        steps = [(t.entity_type, t.action, t.from_status, t.to_status) for t in result.transitions]
        assert steps == [
            ("billing_cycle", "process", "pending", "processing"),
            ("invoice", "create", None, "draft"),
            ("billing_cycle", "complete", "processing", "paid"),
        ]

    def test_processed_at_most_once(self, scheduler, due_cycle, invoice_computer):
        scheduler.process_billing_cycle(due_cycle.id)

        with pytest.raises(CycleNotPendingError) as exc_info:
            scheduler.process_billing_cycle(due_cycle.id)

        assert exc_info.value.status == "paid"
        invoices = invoice_computer.find_invoices(InvoiceFilter(tenant_id=TEST_TENANT_ID))
        assert len(invoices) == 1

    def test_unknown_cycle(self, scheduler):
        with pytest.raises(BillingCycleNotFoundError):
            scheduler.process_billing_cycle(uuid4())

    def test_failure_releases_claim(self, session, deterministic_clock, due_cycle, captured_logs):
        failing = MagicMock()
        failing.create_invoice.side_effect = InvalidLineItemError(0, "boom")
        scheduler = BillingCycleScheduler(
            session, clock=deterministic_clock, invoice_computer=failing,
        )

        with pytest.raises(InvalidLineItemError):
            scheduler.process_billing_cycle(due_cycle.id)

        cycle = scheduler.get_billing_cycle(due_cycle.id)
        assert cycle.status is BillingCycleStatus.PENDING
        assert cycle.invoice_id is None
        failed = [r for r in captured_logs() if r["message"] == "billing_cycle_processing_failed"]
        assert failed[0]["error_code"] == "INVALID_LINE_ITEM"

    def test_released_cycle_can_be_retried(self, session, deterministic_clock, due_cycle):
        failing = MagicMock()
        failing.create_invoice.side_effect = InvalidLineItemError(0, "boom")
        with pytest.raises(InvalidLineItemError):
            BillingCycleScheduler(
                session, clock=deterministic_clock, invoice_computer=failing,
            ).process_billing_cycle(due_cycle.id)

        result = BillingCycleScheduler(session, clock=deterministic_clock).process_billing_cycle(
            due_cycle.id,
        )

        assert result.cycle.status is BillingCycleStatus.PAID


class TestProcessDueCycles:

    def test_processes_only_due_pending_cycles(self, scheduler, deterministic_clock):
        now = deterministic_clock.now()
        due = _make_cycle(scheduler, now - timedelta(days=2))
        due_today = _make_cycle(scheduler, now)
        _make_cycle(scheduler, now + timedelta(days=3))
        cancelled = _make_cycle(scheduler, now - timedelta(days=1))
        scheduler.cancel_billing_cycle(cancelled.id)

        run = scheduler.process_due_cycles(tenant_id=TEST_TENANT_ID)

        assert run.processed_count == 2
        assert run.failure_count == 0
        assert [r.cycle.id for r in run.processed] == [due.id, due_today.id]

    def test_scoped_to_tenant(self, scheduler, deterministic_clock):
        now = deterministic_clock.now()
        _make_cycle(scheduler, now, tenant_id=OTHER_TENANT_ID)

        assert scheduler.process_due_cycles(tenant_id=TEST_TENANT_ID).processed_count == 0

    def test_failures_recorded_and_run_continues(self, session, deterministic_clock):
        failing = MagicMock()
        failing.create_invoice.side_effect = InvalidLineItemError(0, "boom")
        scheduler = BillingCycleScheduler(
            session, clock=deterministic_clock, invoice_computer=failing,
        )
        now = deterministic_clock.now()
        first = _make_cycle(scheduler, now - timedelta(days=1))
        second = _make_cycle(scheduler, now)

        run = scheduler.process_due_cycles()

        assert run.processed_count == 0
        assert [f.cycle_id for f in run.failures] == [first.id, second.id]
        assert run.failures[0].error_code == "INVALID_LINE_ITEM"
        assert failing.create_invoice.call_count == 2


class TestCancelAndQueries:

    def test_cancel_pending(self, scheduler, due_cycle):
        outcome = scheduler.cancel_billing_cycle(due_cycle.id, reason="customer churned")

        assert outcome.cycle.status is BillingCycleStatus.CANCELLED
        assert outcome.cycle.metadata["cancel_reason"] == "customer churned"
        assert outcome.transition.from_status == "pending"
        assert outcome.transition.to_status == "cancelled"

    def test_cancel_paid_rejected(self, scheduler, due_cycle):
        scheduler.process_billing_cycle(due_cycle.id)

        with pytest.raises(InvalidTransitionError):
            scheduler.cancel_billing_cycle(due_cycle.id)

    def test_cancelled_cycle_not_processed(self, scheduler, due_cycle):
        scheduler.cancel_billing_cycle(due_cycle.id)

        with pytest.raises(CycleNotPendingError):
            scheduler.process_billing_cycle(due_cycle.id)

    def test_cancel_unknown(self, scheduler):
        with pytest.raises(BillingCycleNotFoundError):
            scheduler.cancel_billing_cycle(uuid4())

    def test_upcoming_window(self, scheduler, deterministic_clock):
        now = deterministic_clock.now()
        soon = _make_cycle(scheduler, now + timedelta(days=2))
        _make_cycle(scheduler, now + timedelta(days=10))
        _make_cycle(scheduler, now - timedelta(days=1))

        upcoming = scheduler.get_upcoming_billing_cycles(TEST_TENANT_ID, days=7)

        assert [c.id for c in upcoming] == [soon.id]

    def test_find_by_status(self, scheduler, deterministic_clock, due_cycle):
        _make_cycle(scheduler, deterministic_clock.now() + timedelta(days=5))
        scheduler.process_billing_cycle(due_cycle.id)

        paid = scheduler.find_billing_cycles(BillingCycleFilter(
            tenant_id=TEST_TENANT_ID, statuses=(BillingCycleStatus.PAID,),
        ))

        assert [c.id for c in paid] == [due_cycle.id]
