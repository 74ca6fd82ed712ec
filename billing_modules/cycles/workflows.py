"""Billing Cycle Workflows.

``process`` is the claim, ``complete`` finishes a successful run and
``release`` returns a failed run to pending so it can be retried.
"""

from billing_kernel.logging_config import get_logger
from billing_kernel.domain.workflow import Guard, Transition, Workflow

logger = get_logger("modules.cycles.workflows")


INVOICE_CREATED = Guard(
    name="invoice_created",
    description="Invoice for the cycle was created in the same transaction",
)

BILLING_CYCLE_WORKFLOW = Workflow(
    name="billing_cycle",
    description="Billing cycle lifecycle",
    initial_state="pending",
    states=(
        "pending",
        "processing",
        "paid",
        "cancelled",
    ),
    transitions=(
        Transition("pending", "processing", action="process"),
        Transition("processing", "paid", action="complete", guard=INVOICE_CREATED),
        Transition("processing", "pending", action="release"),
        Transition("pending", "cancelled", action="cancel"),
    ),
    terminal_states=("paid", "cancelled"),
)

logger.info(
    "billing_cycle_workflow_registered",
    extra={
        "workflow_name": BILLING_CYCLE_WORKFLOW.name,
        "state_count": len(BILLING_CYCLE_WORKFLOW.states),
        "transition_count": len(BILLING_CYCLE_WORKFLOW.transitions),
    },
)
