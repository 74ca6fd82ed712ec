"""Tests for invoice numbering and the sequence counter behind it."""

from datetime import datetime, timezone

import pytest

from billing_kernel.exceptions import DuplicateInvoiceNumberError
from billing_kernel.services.sequence_service import SequenceService
from billing_modules.invoicing.numbering import InvoiceNumberGenerator, sequence_name
from billing_modules.invoicing.service import InvoiceComputer

from tests.conftest import OTHER_TENANT_ID, TEST_TENANT_ID


class TestSequenceService:

    def test_starts_at_one_and_increments(self, session):
        sequences = SequenceService(session)

        assert sequences.current_value("orders") is None
        assert sequences.next_value("orders") == 1
        assert sequences.next_value("orders") == 2
        assert sequences.current_value("orders") == 2

    def test_sequences_are_independent(self, session):
        sequences = SequenceService(session)
        sequences.next_value("a")
        sequences.next_value("a")

        assert sequences.next_value("b") == 1

    def test_seed_used_once(self, session):
        sequences = SequenceService(session)
        calls = []

        def seed():
            calls.append(1)
            return 41

        assert sequences.next_value("imported", seed=seed) == 42
        assert sequences.next_value("imported", seed=seed) == 43
        assert len(calls) == 1

    def test_reset(self, session):
        sequences = SequenceService(session)
        sequences.next_value("x")
        sequences.reset("x", 10)

        assert sequences.next_value("x") == 11


class TestInvoiceNumbers:

    def test_sequential_per_tenant_month(self, invoice_computer, simple_line):
        first = invoice_computer.create_invoice(TEST_TENANT_ID, [simple_line]).invoice
        second = invoice_computer.create_invoice(TEST_TENANT_ID, [simple_line]).invoice
        other = invoice_computer.create_invoice(OTHER_TENANT_ID, [simple_line]).invoice

        assert first.invoice_number == "INV-202403-0001"
        assert second.invoice_number == "INV-202403-0002"
        assert other.invoice_number == "INV-202403-0001"

    def test_new_month_restarts(self, invoice_computer, simple_line, deterministic_clock):
        invoice_computer.create_invoice(TEST_TENANT_ID, [simple_line])
        deterministic_clock.set_time(datetime(2024, 4, 1, 9, tzinfo=timezone.utc))

        april = invoice_computer.create_invoice(TEST_TENANT_ID, [simple_line]).invoice

        assert april.invoice_number == "INV-202404-0001"

    def test_sequence_name(self):
        moment = datetime(2024, 3, 15, tzinfo=timezone.utc)
        assert sequence_name(TEST_TENANT_ID, moment) == f"invoice:{TEST_TENANT_ID}:202403"


class TestFallbackNumbers:

    def test_fallback_derived_from_timestamp(self, session, deterministic_clock, simple_line, captured_logs):
        deterministic_clock.set_time(datetime(2024, 3, 15, 12, 0, 7, tzinfo=timezone.utc))
        computer = InvoiceComputer(session, clock=deterministic_clock, use_sequence=False)

        invoice = computer.create_invoice(TEST_TENANT_ID, [simple_line]).invoice

        assert invoice.invoice_number == "INV-202403-007000"
        assert any(r["message"] == "invoice_number_fallback" for r in captured_logs())

    def test_fallback_collision_is_duplicate(self, session, deterministic_clock, simple_line):
        computer = InvoiceComputer(session, clock=deterministic_clock, use_sequence=False)
        computer.create_invoice(TEST_TENANT_ID, [simple_line])

        with pytest.raises(DuplicateInvoiceNumberError) as exc_info:
            computer.create_invoice(TEST_TENANT_ID, [simple_line])
        assert exc_info.value.tenant_id == str(TEST_TENANT_ID)

    def test_sequence_ignores_fallback_numbers(self, session, deterministic_clock, simple_line):
        """Timestamp fallback suffixes do not seed the counter."""
        deterministic_clock.set_time(datetime(2024, 3, 15, 12, 0, 7, tzinfo=timezone.utc))
        InvoiceComputer(session, clock=deterministic_clock, use_sequence=False).create_invoice(
            TEST_TENANT_ID, [simple_line],
        )

        generator = InvoiceNumberGenerator(session)
        assert generator.highest_existing_sequence(TEST_TENANT_ID, deterministic_clock.now()) == 0

        numbered = InvoiceComputer(session, clock=deterministic_clock).create_invoice(
            TEST_TENANT_ID, [simple_line],
        ).invoice
        assert numbered.invoice_number == "INV-202403-0001"

    def test_highest_sequence_reads_counter_numbers_only(self, session, deterministic_clock, invoice_computer, simple_line):
        invoice_computer.create_invoice(TEST_TENANT_ID, [simple_line])
        invoice_computer.create_invoice(TEST_TENANT_ID, [simple_line])
        deterministic_clock.set_time(datetime(2024, 3, 15, 12, 0, 7, tzinfo=timezone.utc))
        InvoiceComputer(session, clock=deterministic_clock, use_sequence=False).create_invoice(
            TEST_TENANT_ID, [simple_line],
        )

        generator = InvoiceNumberGenerator(session)

        assert generator.highest_existing_sequence(TEST_TENANT_ID, deterministic_clock.now()) == 2
