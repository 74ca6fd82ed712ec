"""
Subscriptions Module.

Subscription lifecycle plus the wiring of ``PricingRulesEngine`` and
``ProrationCalculator`` to stored subscriptions.
"""

from billing_modules.subscriptions.models import Subscription, SubscriptionStatus
from billing_modules.subscriptions.selectors import SubscriptionFilter
from billing_modules.subscriptions.service import SubscriptionService
from billing_modules.subscriptions.workflows import SUBSCRIPTION_WORKFLOW

__all__ = [
    "SUBSCRIPTION_WORKFLOW",
    "Subscription",
    "SubscriptionFilter",
    "SubscriptionService",
    "SubscriptionStatus",
]
