"""Subscription Workflows.

State machine for the subscription lifecycle.
"""

from billing_kernel.logging_config import get_logger
from billing_kernel.domain.workflow import Transition, Workflow

logger = get_logger("modules.subscriptions.workflows")


SUBSCRIPTION_WORKFLOW = Workflow(
    name="subscription",
    description="Subscription lifecycle",
    initial_state="active",
    states=(
        "trial",
        "active",
        "past_due",
        "suspended",
        "canceled",
    ),
    transitions=(
        Transition("trial", "active", action="activate"),
        Transition("active", "past_due", action="mark_past_due"),
        Transition("past_due", "active", action="activate"),
        Transition("active", "suspended", action="suspend"),
        Transition("suspended", "active", action="reactivate"),
        Transition("canceled", "active", action="reactivate"),
        Transition("trial", "canceled", action="cancel"),
        Transition("active", "canceled", action="cancel"),
        Transition("past_due", "canceled", action="cancel"),
        Transition("suspended", "canceled", action="cancel"),
    ),
)

CHANGEABLE_STATES = frozenset({"trial", "active"})

logger.info(
    "subscription_workflow_registered",
    extra={
        "workflow_name": SUBSCRIPTION_WORKFLOW.name,
        "state_count": len(SUBSCRIPTION_WORKFLOW.states),
        "transition_count": len(SUBSCRIPTION_WORKFLOW.transitions),
    },
)
