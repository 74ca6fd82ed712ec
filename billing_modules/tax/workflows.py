"""Tax Workflows.

State machine for exemption certificate review.
"""

from billing_kernel.logging_config import get_logger
from billing_kernel.domain.workflow import Guard, Transition, Workflow

logger = get_logger("modules.tax.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

CERTIFICATE_VALIDATED = Guard(
    name="certificate_validated",
    description="Exemption certificate passed validation",
)

logger.info(
    "tax_workflow_guards_defined",
    extra={"guards": [CERTIFICATE_VALIDATED.name]},
)


# -----------------------------------------------------------------------------
# Exemption Workflow
# -----------------------------------------------------------------------------

EXEMPTION_WORKFLOW = Workflow(
    name="tax_exemption",
    description="Tax exemption certificate lifecycle",
    initial_state="pending",
    states=(
        "pending",
        "approved",
        "rejected",
        "expired",
    ),
    transitions=(
        Transition("pending", "approved", action="approve", guard=CERTIFICATE_VALIDATED),
        Transition("pending", "rejected", action="reject"),
        Transition("approved", "expired", action="expire"),
        Transition("approved", "rejected", action="revoke"),
    ),
    terminal_states=("rejected", "expired"),
)

logger.info(
    "tax_exemption_workflow_registered",
    extra={
        "workflow_name": EXEMPTION_WORKFLOW.name,
        "state_count": len(EXEMPTION_WORKFLOW.states),
        "transition_count": len(EXEMPTION_WORKFLOW.transitions),
    },
)
