"""
Unit tests for the entry validation state graph.
"""

from production_kernel.domain.dtos import EntryStatus
from production_kernel.domain.workflow import (
    ENTRY_VALIDATION_WORKFLOW,
    find_transition,
    lock_action_for,
)


class TestWorkflowGraph:
    def test_states(self):
        assert ENTRY_VALIDATION_WORKFLOW.initial_state == "draft"
        assert set(ENTRY_VALIDATION_WORKFLOW.states) == {"draft", "validating", "validated"}

    def test_every_transition_uses_known_states(self):
        states = set(ENTRY_VALIDATION_WORKFLOW.states)
        for transition in ENTRY_VALIDATION_WORKFLOW.transitions:
            assert transition.from_state in states
            assert transition.to_state in states

    def test_only_validating_can_finalize(self):
        finals = [t for t in ENTRY_VALIDATION_WORKFLOW.transitions if t.to_state == "validated"]

        assert {t.from_state for t in finals} == {"validating"}


class TestLockAction:
    def test_draft_submits(self):
        assert lock_action_for(EntryStatus.DRAFT) == "submit"

    def test_validated_revalidates(self):
        assert lock_action_for(EntryStatus.VALIDATED) == "revalidate"

    def test_validating_cannot_be_locked_again(self):
        assert lock_action_for(EntryStatus.VALIDATING) is None


class TestFindTransition:
    def test_rollback_targets_prior_status(self):
        to_draft = find_transition(EntryStatus.VALIDATING, "rollback", EntryStatus.DRAFT)
        to_validated = find_transition(EntryStatus.VALIDATING, "rollback", EntryStatus.VALIDATED)

        assert to_draft is not None and to_draft.to_state == "draft"
        assert to_validated is not None and to_validated.to_state == "validated"

    def test_revert_from_any_non_draft(self):
        assert find_transition("validated", "revert", "draft") is not None
        assert find_transition("validating", "revert", "draft") is not None
        assert find_transition("draft", "revert") is None

    def test_draft_cannot_finalize(self):
        assert find_transition(EntryStatus.DRAFT, "finalize") is None
