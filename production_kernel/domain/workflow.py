"""
Production Entry Workflow.

State machine for the validation lifecycle of a production entry.  The
graph is data; ValidationService consults it before every status write.
"""

from dataclasses import dataclass

from production_kernel.domain.dtos import EntryStatus
from production_kernel.logging_config import get_logger

logger = get_logger("domain.workflow")


@dataclass(frozen=True)
class Guard:
    """A condition for a transition."""
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    moves_stock: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

OWNER_MAY_SUBMIT = Guard(
    name="owner_may_submit",
    description="Caller owns the draft and may submit it",
)

PRIVILEGED_EDITOR = Guard(
    name="privileged_editor",
    description="Caller may re-validate an already validated entry",
)

PRECONDITIONS_MET = Guard(
    name="preconditions_met",
    description="Inputs, outputs, attributes and identifiers are complete and stock suffices",
)

OPERATOR_REVERT = Guard(
    name="operator_revert",
    description="Caller may force the entry back to draft",
)


# -----------------------------------------------------------------------------
# Entry Validation Workflow
# -----------------------------------------------------------------------------

D = EntryStatus.DRAFT.value
V = EntryStatus.VALIDATING.value
OK = EntryStatus.VALIDATED.value

ENTRY_VALIDATION_WORKFLOW = Workflow(
    name="production_entry_validation",
    description="Draft to validated lifecycle of a production entry",
    initial_state=D,
    states=(D, V, OK),
    transitions=(
        Transition(D, V, action="submit", guard=OWNER_MAY_SUBMIT),
        Transition(OK, V, action="revalidate", guard=PRIVILEGED_EDITOR),
        Transition(V, OK, action="finalize", guard=PRECONDITIONS_MET, moves_stock=True),
        Transition(V, D, action="rollback"),
        Transition(V, OK, action="rollback"),
        Transition(V, D, action="revert", guard=OPERATOR_REVERT, moves_stock=True),
        Transition(OK, D, action="revert", guard=OPERATOR_REVERT, moves_stock=True),
    ),
)

logger.debug(
    "entry_workflow_registered",
    extra={
        "workflow_name": ENTRY_VALIDATION_WORKFLOW.name,
        "state_count": len(ENTRY_VALIDATION_WORKFLOW.states),
        "transition_count": len(ENTRY_VALIDATION_WORKFLOW.transitions),
    },
)


def find_transition(
    from_state: EntryStatus | str,
    action: str,
    to_state: EntryStatus | str | None = None,
    workflow: Workflow = ENTRY_VALIDATION_WORKFLOW,
) -> Transition | None:
    """The transition for ``action`` out of ``from_state``, if one exists."""
    source = EntryStatus(from_state).value
    target = EntryStatus(to_state).value if to_state is not None else None
    for transition in workflow.transitions:
        if transition.from_state != source or transition.action != action:
            continue
        if target is None or transition.to_state == target:
            return transition
    return None


def lock_action_for(status: EntryStatus) -> str | None:
    """Action that moves ``status`` into the validating lock, if any."""
    for transition in ENTRY_VALIDATION_WORKFLOW.transitions:
        if transition.from_state == status.value and transition.to_state == V:
            return transition.action
    return None
