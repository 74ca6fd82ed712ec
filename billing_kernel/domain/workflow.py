"""
Canonical workflow types (``billing_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for workflow state machines.  Invoices and billing cycles
declare their lifecycles with Guard, Transition and Workflow so that the
legal moves are data, not scattered ``if`` statements.  ``TransitionRecord``
is the detail returned to callers after every state change so that an
external audit layer can record it.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from billing_kernel.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the owning service does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    Guarantees: ``initial_state`` is a member of ``states``.
    ``terminal_states`` are states with no outgoing transitions.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self):
        if self.initial_state not in self.states:
            raise ValueError(
                f"{self.name}: initial_state '{self.initial_state}' not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"{self.name}: transition {t.from_state}->{t.to_state} "
                    f"references an unknown state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"{self.name}: terminal state '{t.from_state}' has an "
                    f"outgoing transition"
                )

    def transitions_from(self, state: str, action: str) -> tuple[Transition, ...]:
        """All transitions leaving ``state`` for ``action``."""
        return tuple(
            t for t in self.transitions
            if t.from_state == state and t.action == action
        )

    def can(self, state: str, action: str) -> bool:
        return bool(self.transitions_from(state, action))

    def require(
        self,
        entity_type: str,
        entity_id: UUID,
        state: str,
        action: str,
        to_state: str | None = None,
    ) -> Transition:
        """
        Return the transition for ``action`` from ``state``.

        Raises:
            InvalidTransitionError: If no such transition exists, or none
                lands on ``to_state`` when one is given.
        """
        for t in self.transitions_from(state, action):
            if to_state is None or t.to_state == to_state:
                return t
        raise InvalidTransitionError(entity_type, entity_id, state, action)


@dataclass(frozen=True)
class TransitionRecord:
    """Observable detail of one state change.

    ``from_status`` is None when the entity was created by the action.
    ``amounts`` carries the monetary figures after the change.
    """
    entity_type: str
    entity_id: UUID
    action: str
    from_status: str | None
    to_status: str
    occurred_at: datetime
    amounts: dict[str, Decimal] = field(default_factory=dict)
