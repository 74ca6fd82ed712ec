"""
Tests for InvoiceComputer.

Covers:
- Creation: totals, numbering, due dates, transition records
- Lifecycle: send, partial and full payment, void
- Update and delete rules for paid invoices
- Queries and overdue detection
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.domain.billing_types import (
    InvoiceStatus,
    InvoiceType,
    LineItemType,
    PaymentTerms,
)
from billing_kernel.exceptions import (
    InvalidAmountError,
    InvalidLineItemError,
    InvalidTransitionError,
    InvoiceNotFoundError,
    PaidInvoiceImmutableError,
)
from billing_modules.invoicing.models import LineItemInput
from billing_modules.invoicing.selectors import InvoiceFilter

from tests.conftest import OTHER_TENANT_ID, TEST_ACTOR_ID, TEST_CUSTOMER_ID, TEST_TENANT_ID


def _create(invoice_computer, lines, *args, **kwargs):
    return invoice_computer.create_invoice(TEST_TENANT_ID, lines, *args, **kwargs).invoice


class TestCreateInvoice:

    def test_totals_and_defaults(self, invoice_computer, simple_line, deterministic_clock):
        outcome = invoice_computer.create_invoice(TEST_TENANT_ID, [simple_line])
        invoice = outcome.invoice

        assert invoice.status is InvoiceStatus.DRAFT
        assert invoice.subtotal == Decimal("100.00")
        assert invoice.tax_amount == Decimal("10.00")
        assert invoice.discount_amount == Decimal("0.00")
        assert invoice.total_amount == Decimal("110.00")
        assert invoice.amount_paid == Decimal("0.00")
        assert invoice.amount_due == Decimal("110.00")
        assert invoice.issued_date == deterministic_clock.now()
        assert invoice.due_date == deterministic_clock.now() + timedelta(days=30)
        assert invoice.invoice_type is InvoiceType.ONE_TIME
        assert invoice.currency == "USD"

    def test_transition_record(self, invoice_computer, simple_line):
        outcome = invoice_computer.create_invoice(TEST_TENANT_ID, [simple_line])

        record = outcome.transition
        assert record.entity_type == "invoice"
        assert record.entity_id == outcome.invoice.id
        assert record.action == "create"
        assert record.from_status is None
        assert record.to_status == "draft"
        assert record.amounts["total_amount"] == Decimal("110.00")

    def test_line_items_persisted_in_order(self, invoice_computer):
        invoice = _create(invoice_computer, [
            LineItemInput("Seats", Decimal("3"), Decimal("20.00"), LineItemType.SUBSCRIPTION),
            LineItemInput("Setup", Decimal("1"), Decimal("50.00"), discount_amount=Decimal("10.00")),
        ])

        assert [line.line_number for line in invoice.line_items] == [1, 2]
        assert invoice.line_items[0].amount == Decimal("60.00")
        assert invoice.line_items[0].item_type is LineItemType.SUBSCRIPTION
        assert invoice.line_items[1].discount_amount == Decimal("10.00")
        assert invoice.total_amount == Decimal("100.00")

    def test_payment_terms_set_due_date(self, invoice_computer, simple_line, deterministic_clock):
        invoice = _create(invoice_computer, [simple_line], payment_terms=PaymentTerms.NET_15)

        assert invoice.due_date == deterministic_clock.now() + timedelta(days=15)

    def test_explicit_due_date_wins(self, invoice_computer, simple_line, deterministic_clock):
        due = deterministic_clock.now() + timedelta(days=3)
        invoice = _create(invoice_computer, [simple_line], PaymentTerms.NET_60, due)

        assert invoice.due_date == due

    def test_billing_fields_recorded(self, invoice_computer, simple_line):
        invoice = _create(
            invoice_computer, [simple_line],
            customer_id=TEST_CUSTOMER_ID,
            billing_country="US",
            billing_state="CA",
            notes="March",
        )

        assert invoice.customer_id == TEST_CUSTOMER_ID
        assert invoice.billing_country == "US"
        assert invoice.billing_state == "CA"
        assert invoice.notes == "March"

    def test_empty_line_items_rejected(self, invoice_computer):
        with pytest.raises(InvalidLineItemError):
            invoice_computer.create_invoice(TEST_TENANT_ID, [])

    def test_invalid_line_rejected_without_writing(self, invoice_computer):
        with pytest.raises(InvalidLineItemError):
            invoice_computer.create_invoice(
                TEST_TENANT_ID, [LineItemInput("Bad", Decimal("0"), Decimal("10"))],
            )

        assert invoice_computer.find_invoices(InvoiceFilter(tenant_id=TEST_TENANT_ID)) == []

    def test_logs_creation(self, invoice_computer, simple_line, captured_logs):
        invoice = _create(invoice_computer, [simple_line])

        created = [r for r in captured_logs() if r["message"] == "invoice_created"]
        assert len(created) == 1
        assert created[0]["invoice_number"] == invoice.invoice_number
        assert created[0]["tenant_id"] == str(TEST_TENANT_ID)
        assert created[0]["invoice_id"] == str(invoice.id)


class TestInvoiceLifecycle:

    def test_send(self, invoice_computer, simple_line, deterministic_clock):
        invoice = _create(invoice_computer, [simple_line])

        outcome = invoice_computer.send_invoice(invoice.id, actor_id=TEST_ACTOR_ID)

        assert outcome.invoice.status is InvoiceStatus.PENDING
        assert outcome.invoice.sent_at == deterministic_clock.now()
        assert outcome.transition.from_status == "draft"
        assert outcome.transition.to_status == "pending"

    def test_send_twice_rejected(self, invoice_computer, simple_line):
        invoice = _create(invoice_computer, [simple_line])
        invoice_computer.send_invoice(invoice.id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            invoice_computer.send_invoice(invoice.id)
        assert exc_info.value.from_status == "pending"
        assert exc_info.value.action == "send"

    def test_partial_then_full_payment(self, invoice_computer, simple_line, deterministic_clock):
        invoice = _create(invoice_computer, [simple_line])
        invoice_computer.send_invoice(invoice.id)

        partial = invoice_computer.mark_as_paid(invoice.id, Decimal("60.00"))
        assert partial.invoice.status is InvoiceStatus.PARTIALLY_PAID
        assert partial.invoice.amount_paid == Decimal("60.00")
        assert partial.invoice.amount_due == Decimal("50.00")
        assert partial.invoice.paid_date is None

        full = invoice_computer.mark_as_paid(invoice.id, Decimal("50.00"))
        assert full.invoice.status is InvoiceStatus.PAID
        assert full.invoice.amount_due == Decimal("0.00")
        assert full.invoice.paid_date == deterministic_clock.now()
        assert full.transition.from_status == "partially_paid"
        assert full.transition.to_status == "paid"

    def test_payment_on_draft_rejected(self, invoice_computer, simple_line):
        invoice = _create(invoice_computer, [simple_line])

        with pytest.raises(InvalidTransitionError):
            invoice_computer.mark_as_paid(invoice.id, Decimal("10.00"))

    def test_non_positive_payment_rejected(self, invoice_computer, simple_line):
        invoice = _create(invoice_computer, [simple_line])
        invoice_computer.send_invoice(invoice.id)

        with pytest.raises(InvalidAmountError):
            invoice_computer.mark_as_paid(invoice.id, Decimal("0"))

    def test_overpayment_marks_paid_and_warns(self, invoice_computer, simple_line, captured_logs):
        invoice = _create(invoice_computer, [simple_line])
        invoice_computer.send_invoice(invoice.id)

        outcome = invoice_computer.mark_as_paid(invoice.id, Decimal("150.00"))

        assert outcome.invoice.status is InvoiceStatus.PAID
        assert outcome.invoice.amount_paid == Decimal("150.00")
        assert outcome.invoice.amount_due == Decimal("0.00")
        assert any(r["message"] == "invoice_overpaid" for r in captured_logs())

    def test_paid_invoice_rejects_further_payment(self, invoice_computer, simple_line):
        invoice = _create(invoice_computer, [simple_line])
        invoice_computer.send_invoice(invoice.id)
        invoice_computer.mark_as_paid(invoice.id, Decimal("110.00"))

        with pytest.raises(InvalidTransitionError):
            invoice_computer.mark_as_paid(invoice.id, Decimal("1.00"))

    def test_void(self, invoice_computer, simple_line, deterministic_clock):
        invoice = _create(invoice_computer, [simple_line])

        outcome = invoice_computer.void_invoice(invoice.id, reason="duplicate")

        assert outcome.invoice.status is InvoiceStatus.VOIDED
        assert outcome.invoice.voided_date == deterministic_clock.now()

    def test_void_paid_rejected(self, invoice_computer, simple_line):
        invoice = _create(invoice_computer, [simple_line])
        invoice_computer.send_invoice(invoice.id)
        invoice_computer.mark_as_paid(invoice.id, Decimal("110.00"))

        with pytest.raises(InvalidTransitionError):
            invoice_computer.void_invoice(invoice.id)

    def test_unknown_invoice(self, invoice_computer):
        with pytest.raises(InvoiceNotFoundError):
            invoice_computer.send_invoice(uuid4())


class TestUpdateAndDelete:

    def test_replace_lines_recomputes(self, invoice_computer, simple_line):
        invoice = _create(invoice_computer, [simple_line])
        invoice_computer.send_invoice(invoice.id)
        invoice_computer.mark_as_paid(invoice.id, Decimal("20.00"))

        outcome = invoice_computer.update_invoice(
            invoice.id,
            line_items=[LineItemInput("Pro plan", Decimal("2"), Decimal("100.00"))],
            notes="Seat added",
        )

        updated = outcome.invoice
        assert updated.subtotal == Decimal("200.00")
        assert updated.tax_amount == Decimal("0.00")
        assert updated.total_amount == Decimal("200.00")
        assert updated.amount_paid == Decimal("20.00")
        assert updated.amount_due == Decimal("180.00")
        assert updated.notes == "Seat added"
        assert len(updated.line_items) == 1
        assert outcome.transition.action == "update"

    def test_replace_lines_below_amount_paid_settles(self, invoice_computer, simple_line, deterministic_clock, captured_logs):
        invoice = _create(invoice_computer, [simple_line])
        invoice_computer.send_invoice(invoice.id)
        invoice_computer.mark_as_paid(invoice.id, Decimal("60.00"))

        outcome = invoice_computer.update_invoice(
            invoice.id,
            line_items=[LineItemInput("Starter plan", Decimal("1"), Decimal("50.00"))],
        )

        updated = outcome.invoice
        assert updated.total_amount == Decimal("50.00")
        assert updated.amount_due == Decimal("0.00")
        assert updated.status is InvoiceStatus.PAID
        assert updated.paid_date == deterministic_clock.now()
        assert outcome.transition.from_status == "partially_paid"
        assert outcome.transition.to_status == "paid"
        assert any(r["message"] == "invoice_settled_by_update" for r in captured_logs())

    def test_replace_lines_with_balance_keeps_status(self, invoice_computer, simple_line):
        invoice = _create(invoice_computer, [simple_line])
        invoice_computer.send_invoice(invoice.id)

        outcome = invoice_computer.update_invoice(
            invoice.id,
            line_items=[LineItemInput("Starter plan", Decimal("1"), Decimal("50.00"))],
        )

        assert outcome.invoice.status is InvoiceStatus.PENDING
        assert outcome.invoice.paid_date is None

    def test_update_paid_rejected(self, invoice_computer, simple_line):
        invoice = _create(invoice_computer, [simple_line])
        invoice_computer.send_invoice(invoice.id)
        invoice_computer.mark_as_paid(invoice.id, Decimal("110.00"))

        with pytest.raises(PaidInvoiceImmutableError) as exc_info:
            invoice_computer.update_invoice(invoice.id, notes="late edit")
        assert exc_info.value.operation == "update"

    def test_update_voided_rejected(self, invoice_computer, simple_line):
        invoice = _create(invoice_computer, [simple_line])
        invoice_computer.void_invoice(invoice.id)

        with pytest.raises(PaidInvoiceImmutableError):
            invoice_computer.update_invoice(invoice.id, notes="edit")

    def test_delete_draft(self, invoice_computer, simple_line):
        invoice = _create(invoice_computer, [simple_line])

        record = invoice_computer.delete_invoice(invoice.id)

        assert record.action == "delete"
        assert record.from_status == "draft"
        assert record.to_status == "deleted"
        with pytest.raises(InvoiceNotFoundError):
            invoice_computer.get_invoice(invoice.id)

    def test_delete_voided_allowed(self, invoice_computer, simple_line):
        invoice = _create(invoice_computer, [simple_line])
        invoice_computer.void_invoice(invoice.id)

        assert invoice_computer.delete_invoice(invoice.id).from_status == "voided"

    def test_delete_paid_rejected(self, invoice_computer, simple_line):
        invoice = _create(invoice_computer, [simple_line])
        invoice_computer.send_invoice(invoice.id)
        invoice_computer.mark_as_paid(invoice.id, Decimal("110.00"))

        with pytest.raises(PaidInvoiceImmutableError) as exc_info:
            invoice_computer.delete_invoice(invoice.id)
        assert exc_info.value.operation == "delete"
        assert invoice_computer.get_invoice(invoice.id).status is InvoiceStatus.PAID


class TestQueries:

    def test_find_by_tenant_and_status(self, invoice_computer, simple_line):
        first = _create(invoice_computer, [simple_line])
        _create(invoice_computer, [simple_line])
        invoice_computer.create_invoice(OTHER_TENANT_ID, [simple_line])
        invoice_computer.send_invoice(first.id)

        pending = invoice_computer.find_invoices(InvoiceFilter(
            tenant_id=TEST_TENANT_ID, statuses=(InvoiceStatus.PENDING,),
        ))
        everything = invoice_computer.find_invoices(InvoiceFilter(tenant_id=TEST_TENANT_ID))

        assert [inv.id for inv in pending] == [first.id]
        assert len(everything) == 2

    def test_overdue(self, invoice_computer, simple_line, deterministic_clock):
        invoice = _create(invoice_computer, [simple_line], payment_terms=PaymentTerms.NET_15)
        invoice_computer.send_invoice(invoice.id)
        _create(invoice_computer, [simple_line], payment_terms=PaymentTerms.NET_15)  # still draft

        assert invoice_computer.find_overdue_invoices() == []

        later = deterministic_clock.now() + timedelta(days=16)
        overdue = invoice_computer.find_overdue_invoices(as_of=later, tenant_id=TEST_TENANT_ID)
        assert [inv.id for inv in overdue] == [invoice.id]
        assert overdue[0].is_overdue(later)

        deterministic_clock.advance_days(16)
        assert [inv.id for inv in invoice_computer.find_overdue_invoices()] == [invoice.id]
