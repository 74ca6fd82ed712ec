"""Invoicing Workflows.

State machine for the invoice lifecycle.  ``mark_as_paid`` has two targets;
the computer picks one from the amount still due after the payment.
"""

from billing_kernel.logging_config import get_logger
from billing_kernel.domain.workflow import Guard, Transition, Workflow

logger = get_logger("modules.invoicing.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

BALANCE_SETTLED = Guard(
    name="balance_settled",
    description="Amount due is zero after the payment",
)

BALANCE_OUTSTANDING = Guard(
    name="balance_outstanding",
    description="Amount due remains after the payment",
)

logger.info(
    "invoicing_workflow_guards_defined",
    extra={"guards": [BALANCE_SETTLED.name, BALANCE_OUTSTANDING.name]},
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

INVOICE_WORKFLOW = Workflow(
    name="invoice",
    description="Tenant invoice lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "pending",
        "partially_paid",
        "paid",
        "voided",
    ),
    transitions=(
        Transition("draft", "pending", action="send"),
        Transition("pending", "paid", action="mark_as_paid", guard=BALANCE_SETTLED),
        Transition("pending", "partially_paid", action="mark_as_paid", guard=BALANCE_OUTSTANDING),
        Transition("partially_paid", "paid", action="mark_as_paid", guard=BALANCE_SETTLED),
        Transition(
            "partially_paid", "partially_paid", action="mark_as_paid", guard=BALANCE_OUTSTANDING,
        ),
        Transition("draft", "voided", action="void"),
        Transition("pending", "voided", action="void"),
        Transition("partially_paid", "voided", action="void"),
    ),
    terminal_states=("paid", "voided"),
)

UPDATABLE_STATES = frozenset({"draft", "pending", "partially_paid"})
DELETABLE_STATES = frozenset({"draft", "pending", "partially_paid", "voided"})

logger.info(
    "invoice_workflow_registered",
    extra={
        "workflow_name": INVOICE_WORKFLOW.name,
        "state_count": len(INVOICE_WORKFLOW.states),
        "transition_count": len(INVOICE_WORKFLOW.transitions),
    },
)
