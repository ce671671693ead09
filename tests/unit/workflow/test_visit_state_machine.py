from __future__ import annotations

import pytest

from upkeep.core.enums import VisitStatus
from upkeep.core.exceptions import InvalidStateTransitionError
from upkeep.workflow.state_machine import (
    COMPLETION_RESULTS,
    VISIT_TRANSITIONS,
    StateMachine,
    visit_state_machine,
)


def test_every_status_has_a_transition_row():
    assert set(VISIT_TRANSITIONS) == set(VisitStatus)
    for targets in VISIT_TRANSITIONS.values():
        assert targets <= set(VisitStatus)


def test_completed_and_cancelled_are_terminal():
    assert visit_state_machine.is_terminal(VisitStatus.COMPLETED)
    assert visit_state_machine.is_terminal(VisitStatus.CANCELLED)
    assert not visit_state_machine.is_terminal(VisitStatus.MISSED)


@pytest.mark.parametrize(
    "current,target",
    [
        ("scheduled", "in_progress"),
        ("scheduled", "missed"),
        ("rescheduled", "in_progress"),
        ("in_progress", "no_access"),
        ("failed", "rescheduled"),
        ("missed", "rescheduled"),
    ],
)
def test_allowed_transitions(current, target):
    visit_state_machine.assert_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        ("in_progress", "scheduled"),
        ("completed", "rescheduled"),
        ("rescheduled", "rescheduled"),
        ("cancelled", "scheduled"),
        ("missed", "in_progress"),
    ],
)
def test_rejected_transitions_carry_both_states(current, target):
    with pytest.raises(InvalidStateTransitionError) as exc:
        visit_state_machine.assert_transition(current, target)
    assert exc.value.current == current
    assert exc.value.requested == target
    assert exc.value.kind == "invalid_state_transition"


def test_completion_results_are_reachable_only_from_in_progress():
    for result in COMPLETION_RESULTS:
        sources = {status for status, targets in VISIT_TRANSITIONS.items() if result in targets}
        assert sources == {VisitStatus.IN_PROGRESS}


def test_custom_table():
    sm = StateMachine({VisitStatus.SCHEDULED: frozenset({VisitStatus.CANCELLED})})
    assert sm.can_transition("scheduled", "cancelled") is True
    assert sm.can_transition("scheduled", "in_progress") is False
    assert sm.allowed_targets("missed") == frozenset()
