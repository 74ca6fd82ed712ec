"""
Shared fixtures for module tests.

Every service is built on the per-test ``session`` and the deterministic
clock from the root conftest, so issued dates, due dates and invoice numbers
are reproducible.

DESIGN RULE: Every fixture is opt-in.  No autouse.  Each test explicitly
declares which services it depends on in its function signature.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from billing_kernel.domain.billing_types import BillingCycleType
from billing_modules.cycles.service import BillingCycleScheduler
from billing_modules.invoicing.models import LineItemInput
from billing_modules.invoicing.service import InvoiceComputer
from billing_modules.subscriptions.service import SubscriptionService
from billing_modules.tax.admin import TaxAdministrationService
from billing_modules.tax.config import TaxConfig
from billing_modules.tax.reporting import TaxReportingService
from billing_modules.tax.selectors import TaxExemptionSelector, TaxRateSelector
from billing_modules.tax.service import TaxResolver
from billing_modules.usage.service import UsageBillingService

from tests.conftest import TEST_TENANT_ID


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def invoice_computer(session, deterministic_clock):
    return InvoiceComputer(session, clock=deterministic_clock)


@pytest.fixture
def scheduler(session, deterministic_clock):
    return BillingCycleScheduler(session, clock=deterministic_clock)


@pytest.fixture
def subscription_service(session, deterministic_clock):
    return SubscriptionService(session, clock=deterministic_clock)


@pytest.fixture
def usage_service(session, deterministic_clock):
    return UsageBillingService(session, clock=deterministic_clock)


@pytest.fixture
def tax_admin(session, deterministic_clock):
    return TaxAdministrationService(session, clock=deterministic_clock)


@pytest.fixture
def tax_config():
    return TaxConfig.with_defaults()


@pytest.fixture
def tax_resolver(session, deterministic_clock, tax_config):
    """Manual resolver reading rates and exemptions from the database."""
    return TaxResolver(
        config=tax_config,
        rate_source=TaxRateSelector(session),
        exemption_source=TaxExemptionSelector(session),
        clock=deterministic_clock,
    )


@pytest.fixture
def reporting_service(session, deterministic_clock, tax_config):
    return TaxReportingService(session, config=tax_config, clock=deterministic_clock)


# ---------------------------------------------------------------------------
# Data builders
# ---------------------------------------------------------------------------


@pytest.fixture
def simple_line():
    """One $100.00 line at 10% tax."""
    return LineItemInput(
        description="Pro plan",
        quantity=Decimal("1"),
        unit_price=Decimal("100.00"),
        tax_rate=Decimal("0.10"),
    )


@pytest.fixture
def monthly_subscription(subscription_service, deterministic_clock):
    """Active $100/month subscription whose period opens at the clock's now."""
    return subscription_service.create_subscription(
        tenant_id=TEST_TENANT_ID,
        plan_name="Pro",
        amount=Decimal("100.00"),
        billing_cycle=BillingCycleType.MONTHLY,
    )


@pytest.fixture
def due_cycle(scheduler, deterministic_clock):
    """A pending $250.00 monthly cycle billing one day before the clock's now."""
    now = deterministic_clock.now()
    billing_date = now - timedelta(days=1)
    return scheduler.create_billing_cycle(
        tenant_id=TEST_TENANT_ID,
        cycle_type=BillingCycleType.MONTHLY,
        start_date=billing_date,
        end_date=billing_date + timedelta(days=31),
        billing_date=billing_date,
        total_amount=Decimal("250.00"),
    ).cycle
