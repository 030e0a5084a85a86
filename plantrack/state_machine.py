"""Lifecycle state machines for tasks and plans.

Pure transition tables: nothing here touches storage. Each machine maps a
status to the set of statuses it may move to next; terminal statuses map to
the empty set and a status never transitions to itself.

Task lifecycle::

    backlog -> ready -> in_progress -> review -> completed
                            |   ^        |
                            v   |        |
                          blocked <------+ (request_changes goes back to in_progress)

    every non-terminal status may move to cancelled

Plan lifecycle::

    draft -> active -> completed -> archived
               |                       ^
               +-----------------------+
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Generic, List, Mapping, Optional, Tuple, Type, TypeVar

from .errors import InvalidTransition
from .models import PlanStatus, TaskStatus, TransitionResult, parse_enum

S = TypeVar("S", bound=Enum)


TASK_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.BACKLOG: frozenset({TaskStatus.READY, TaskStatus.CANCELLED}),
    TaskStatus.READY: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.REVIEW, TaskStatus.BLOCKED, TaskStatus.CANCELLED}),
    TaskStatus.REVIEW: frozenset({TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.BLOCKED: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.READY, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

TASK_TRIGGERS: Dict[Tuple[TaskStatus, TaskStatus], str] = {
    (TaskStatus.BACKLOG, TaskStatus.READY): "prioritize",
    (TaskStatus.READY, TaskStatus.IN_PROGRESS): "start",
    (TaskStatus.IN_PROGRESS, TaskStatus.REVIEW): "submit",
    (TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED): "block",
    (TaskStatus.BLOCKED, TaskStatus.IN_PROGRESS): "unblock",
    (TaskStatus.BLOCKED, TaskStatus.READY): "reset",
    (TaskStatus.REVIEW, TaskStatus.COMPLETED): "approve",
    (TaskStatus.REVIEW, TaskStatus.IN_PROGRESS): "request_changes",
}

PLAN_TRANSITIONS: Dict[PlanStatus, FrozenSet[PlanStatus]] = {
    PlanStatus.DRAFT: frozenset({PlanStatus.ACTIVE}),
    PlanStatus.ACTIVE: frozenset({PlanStatus.COMPLETED, PlanStatus.ARCHIVED}),
    PlanStatus.COMPLETED: frozenset({PlanStatus.ARCHIVED}),
    PlanStatus.ARCHIVED: frozenset(),
}

PLAN_TRIGGERS: Dict[Tuple[PlanStatus, PlanStatus], str] = {
    (PlanStatus.DRAFT, PlanStatus.ACTIVE): "activate",
    (PlanStatus.ACTIVE, PlanStatus.COMPLETED): "complete",
    (PlanStatus.ACTIVE, PlanStatus.ARCHIVED): "archive",
    (PlanStatus.COMPLETED, PlanStatus.ARCHIVED): "archive",
}


class StateMachine(Generic[S]):
    """Transition table over one closed status enum.

    ``fallback_trigger`` names every legal move into ``fallback_status`` that
    has no explicit trigger (the task machine uses it for ``cancel``).
    """

    def __init__(
        self,
        status_type: Type[S],
        transitions: Mapping[S, FrozenSet[S]],
        triggers: Mapping[Tuple[S, S], str],
        fallback_status: Optional[S] = None,
        fallback_trigger: Optional[str] = None,
    ):
        self.status_type = status_type
        self.transitions = dict(transitions)
        self.triggers = dict(triggers)
        self.fallback_status = fallback_status
        self.fallback_trigger = fallback_trigger
        self._verify()

    def parse(self, value: S | str) -> S:
        return parse_enum(self.status_type, value, "status")

    def can_transition(self, from_status: S | str, to_status: S | str) -> bool:
        from_status, to_status = self.parse(from_status), self.parse(to_status)
        if from_status == to_status:
            return False
        return to_status in self.transitions[from_status]

    def get_available_transitions(self, from_status: S | str) -> List[S]:
        """Legal next statuses, in enum declaration order."""
        allowed = self.transitions[self.parse(from_status)]
        return [status for status in self.status_type if status in allowed]

    def transition(self, from_status: S | str, to_status: S | str) -> TransitionResult:
        from_status, to_status = self.parse(from_status), self.parse(to_status)
        if self.can_transition(from_status, to_status):
            return TransitionResult(success=True, new_status=to_status)
        rejection = InvalidTransition(from_status.value, to_status.value)
        return TransitionResult(success=False, error=rejection.message, code=rejection.code)

    def get_trigger_name(self, from_status: S | str, to_status: S | str) -> Optional[str]:
        """Name of the event behind a legal transition; None when the transition is illegal."""
        from_status, to_status = self.parse(from_status), self.parse(to_status)
        if not self.can_transition(from_status, to_status):
            return None
        trigger = self.triggers.get((from_status, to_status))
        if trigger is None and to_status == self.fallback_status:
            return self.fallback_trigger
        return trigger

    def is_terminal(self, status: S | str) -> bool:
        return not self.transitions[self.parse(status)]

    def _verify(self) -> None:
        missing_rows = [s.value for s in self.status_type if s not in self.transitions]
        if missing_rows:
            raise RuntimeError(f"{self.status_type.__name__} table has no row for: {missing_rows}")

        for from_status, targets in self.transitions.items():
            if from_status in targets:
                raise RuntimeError(f"{self.status_type.__name__} table allows {from_status.value} -> itself")
            for to_status in targets:
                if (from_status, to_status) in self.triggers:
                    continue
                if to_status == self.fallback_status and self.fallback_trigger:
                    continue
                raise RuntimeError(
                    f"{self.status_type.__name__} transition {from_status.value} -> {to_status.value} has no trigger"
                )

        for from_status, to_status in self.triggers:
            if to_status not in self.transitions[from_status]:
                raise RuntimeError(
                    f"{self.status_type.__name__} trigger {from_status.value} -> {to_status.value} is not a legal transition"
                )


class TaskStateMachine(StateMachine[TaskStatus]):
    def __init__(self):
        super().__init__(
            TaskStatus,
            TASK_TRANSITIONS,
            TASK_TRIGGERS,
            fallback_status=TaskStatus.CANCELLED,
            fallback_trigger="cancel",
        )


class PlanStateMachine(StateMachine[PlanStatus]):
    def __init__(self):
        super().__init__(PlanStatus, PLAN_TRANSITIONS, PLAN_TRIGGERS)


# Built at import so a gap in either table fails immediately.
TASK_STATE_MACHINE = TaskStateMachine()
PLAN_STATE_MACHINE = PlanStateMachine()
