"""Visit lifecycle transitions."""

from __future__ import annotations

from upkeep.core.enums import VisitStatus
from upkeep.core.exceptions import InvalidStateTransitionError


class StateMachine:
    """Transition table guard shared by every status-changing call site."""

    def __init__(self, transitions: dict[VisitStatus, frozenset[VisitStatus]]) -> None:
        self._transitions = transitions

    def allowed_targets(self, current: VisitStatus | str) -> frozenset[VisitStatus]:
        return self._transitions.get(VisitStatus(current), frozenset())

    def can_transition(self, current: VisitStatus | str, target: VisitStatus | str) -> bool:
        return VisitStatus(target) in self.allowed_targets(current)

    def assert_transition(self, current: VisitStatus | str, target: VisitStatus | str) -> None:
        if not self.can_transition(current=current, target=target):
            raise InvalidStateTransitionError(VisitStatus(current).value, VisitStatus(target).value)

    def is_terminal(self, state: VisitStatus | str) -> bool:
        return not self.allowed_targets(state)


VISIT_TRANSITIONS: dict[VisitStatus, frozenset[VisitStatus]] = {
    VisitStatus.SCHEDULED: frozenset(
        {VisitStatus.IN_PROGRESS, VisitStatus.RESCHEDULED, VisitStatus.CANCELLED, VisitStatus.MISSED}
    ),
    VisitStatus.RESCHEDULED: frozenset({VisitStatus.IN_PROGRESS, VisitStatus.CANCELLED, VisitStatus.MISSED}),
    VisitStatus.IN_PROGRESS: frozenset({VisitStatus.COMPLETED, VisitStatus.FAILED, VisitStatus.NO_ACCESS}),
    VisitStatus.FAILED: frozenset({VisitStatus.RESCHEDULED}),
    VisitStatus.NO_ACCESS: frozenset({VisitStatus.RESCHEDULED}),
    VisitStatus.MISSED: frozenset({VisitStatus.RESCHEDULED}),
    VisitStatus.COMPLETED: frozenset(),
    VisitStatus.CANCELLED: frozenset(),
}

# Outcomes accepted by visit completion.
COMPLETION_RESULTS = frozenset({VisitStatus.COMPLETED, VisitStatus.FAILED, VisitStatus.NO_ACCESS})

visit_state_machine = StateMachine(VISIT_TRANSITIONS)
