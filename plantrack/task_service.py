"""Task orchestration: composite task actions enforced by the task state machine."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .dependencies import DependencyGraph
from .errors import InvalidTransition, NotFound, ValidationError
from .models import (
    EntityKind,
    EntityRef,
    ProgressStats,
    Task,
    TaskOperationResult,
    TaskStatus,
)
from .planning_logging import log_operation, log_transition
from .repositories import EntityStore
from .state_machine import TASK_STATE_MACHINE, TaskStateMachine

logger = logging.getLogger("plantrack.task_service")

TASK_NOT_FOUND = "Task not found"


def _not_found() -> TaskOperationResult:
    return TaskOperationResult(success=False, error=TASK_NOT_FOUND, code=NotFound.code)


class TaskService:
    """Applies task transitions and their side effects.

    Lifecycle operations return a ``TaskOperationResult`` instead of raising
    for missing tasks and rejected transitions. Notes are appended to the
    task context only after the status write has succeeded, in a separate
    update.
    """

    def __init__(
        self,
        store: EntityStore,
        graph: Optional[DependencyGraph] = None,
        state_machine: TaskStateMachine = TASK_STATE_MACHINE,
    ):
        self.store = store
        self.graph = graph
        self.state_machine = state_machine

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_task(self, plan_id: str, title: str, **fields: Any) -> Task:
        if not self.store.exists(EntityKind.PLAN, plan_id):
            raise NotFound("plan", plan_id)
        parent_task_id = fields.get("parent_task_id")
        if parent_task_id:
            parent = self.store.find_by_id(EntityKind.TASK, parent_task_id)
            if parent is None:
                raise NotFound("task", parent_task_id)
            if parent.plan_id != plan_id:
                raise ValidationError("Parent task belongs to a different plan")
        task = self.store.create_task(plan_id, title, **fields)
        logger.info(f"Created task {task.id} in plan {plan_id}: {task.title}")
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.store.find_by_id(EntityKind.TASK, task_id)

    def update_task(self, task_id: str, fields: Mapping[str, Any]) -> TaskOperationResult:
        """Update non-status fields; status changes go through ``transition``."""
        if "status" in fields:
            raise ValidationError("Task status can only be changed through a transition")
        updated = self.store.update(EntityKind.TASK, task_id, fields)
        if updated is None:
            return _not_found()
        return TaskOperationResult(success=True, task=updated)

    def delete_task(self, task_id: str) -> bool:
        """Delete a task, its subtasks and every dependency edge touching them."""
        if not self.store.exists(EntityKind.TASK, task_id):
            return False

        def delete_rows() -> bool:
            if self.graph is not None:
                for doomed_id in [task_id, *self.store.find_subtask_ids(task_id)]:
                    self.graph.delete_all_for_entity(EntityRef(EntityKind.TASK, doomed_id))
            return self.store.delete(EntityKind.TASK, task_id)

        with log_operation("delete_task", task_id=task_id):
            deleted = self.store.db.execute_with_retry(delete_rows)
        logger.info(f"Deleted task {task_id}")
        return deleted

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def transition(self, task_id: str, new_status: TaskStatus | str) -> TaskOperationResult:
        new_status = self.state_machine.parse(new_status)
        task = self.get_task(task_id)
        if task is None:
            return _not_found()

        result = self.state_machine.transition(task.status, new_status)
        if not result.success:
            logger.debug(f"Rejected transition for task {task_id}: {result.error}")
            return TaskOperationResult(success=False, error=result.error, code=result.code)

        updated = self.store.update(EntityKind.TASK, task_id, {"status": new_status})
        log_transition(
            EntityKind.TASK.value,
            task_id,
            task.status.value,
            new_status.value,
            trigger=self.state_machine.get_trigger_name(task.status, new_status),
            plan_id=task.plan_id,
        )
        return TaskOperationResult(success=True, task=updated)

    def start_task(self, task_id: str, notes: Optional[str] = None) -> TaskOperationResult:
        """Move a task to in_progress, passing through ready when it sits in the backlog.

        The two steps are separate writes: when the second is rejected the
        task stays in ``ready``.
        """
        task = self.get_task(task_id)
        if task is None:
            return _not_found()

        if task.status == TaskStatus.BACKLOG:
            ready = self.transition(task_id, TaskStatus.READY)
            if not ready.success:
                return ready

        result = self.transition(task_id, TaskStatus.IN_PROGRESS)
        if result.success and notes:
            return self._append_note(result, f"Started: {notes}")
        return result

    def submit_for_review(self, task_id: str) -> TaskOperationResult:
        return self.transition(task_id, TaskStatus.REVIEW)

    def complete_task(
        self,
        task_id: str,
        summary: str,
        actual_hours: Optional[float] = None,
        learnings: Optional[str] = None,
    ) -> TaskOperationResult:
        task = self.get_task(task_id)
        if task is None:
            return _not_found()
        if task.status != TaskStatus.REVIEW:
            return TaskOperationResult(
                success=False,
                error="Task must be in review to complete",
                code=InvalidTransition.code,
            )
        if actual_hours is not None and actual_hours < 0:
            raise ValidationError("Actual hours cannot be negative")

        result = self.transition(task_id, TaskStatus.COMPLETED)
        if not result.success:
            return result

        note = f"Completion: {summary}"
        if learnings:
            note += f"\n\nLearnings: {learnings}"
        fields: Dict[str, Any] = {"context": {"notes": result.task.context.with_note(note)}}
        if actual_hours is not None:
            fields["actual_hours"] = actual_hours
        updated = self.store.update(EntityKind.TASK, task_id, fields)
        return TaskOperationResult(success=True, task=updated)

    def block_task(self, task_id: str, reason: str) -> TaskOperationResult:
        result = self.transition(task_id, TaskStatus.BLOCKED)
        if result.success:
            return self._append_note(result, f"Blocked: {reason}")
        return result

    def unblock_task(self, task_id: str) -> TaskOperationResult:
        """Resume a blocked task. blocked -> ready is only reachable through ``transition``."""
        task = self.get_task(task_id)
        if task is None:
            return _not_found()
        if task.status != TaskStatus.BLOCKED:
            return TaskOperationResult(
                success=False,
                error=f"Task is not blocked (status: {task.status.value})",
                code=InvalidTransition.code,
            )
        return self.transition(task_id, TaskStatus.IN_PROGRESS)

    def cancel_task(self, task_id: str) -> TaskOperationResult:
        return self.transition(task_id, TaskStatus.CANCELLED)

    def get_available_transitions(self, task_id: str) -> List[TaskStatus]:
        task = self.get_task(task_id)
        if task is None:
            return []
        return self.state_machine.get_available_transitions(task.status)

    def bulk_transition(
        self, task_ids: Sequence[str], new_status: TaskStatus | str
    ) -> Tuple[List[Task], List[Dict[str, Any]]]:
        """Apply one transition to many tasks in a single transaction.

        Each task is checked against the state machine on its own; a rejected
        or missing task is reported in the failures and does not stop the rest.
        """
        new_status = self.state_machine.parse(new_status)

        def apply() -> Tuple[List[Task], List[Dict[str, Any]]]:
            updated: List[Task] = []
            failed: List[Dict[str, Any]] = []
            for task_id in dict.fromkeys(task_ids):
                result = self.transition(task_id, new_status)
                if result.success:
                    updated.append(result.task)
                else:
                    failed.append({"id": task_id, "error": result.error, "code": result.code})
            return updated, failed

        with log_operation("bulk_transition", status=new_status.value, count=len(task_ids)):
            return self.store.db.execute_with_retry(apply)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def add_tag(self, task_id: str, tag: str) -> TaskOperationResult:
        task = self.get_task(task_id)
        if task is None:
            return _not_found()
        return self._set_tags(task_id, [*task.tags, tag])

    def remove_tag(self, task_id: str, tag: str) -> TaskOperationResult:
        task = self.get_task(task_id)
        if task is None:
            return _not_found()
        unwanted = tag.strip().lower()
        return self._set_tags(task_id, [t for t in task.tags if t != unwanted])

    def set_tags(self, task_id: str, tags: Sequence[str]) -> TaskOperationResult:
        if not self.store.exists(EntityKind.TASK, task_id):
            return _not_found()
        return self._set_tags(task_id, tags)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_tasks_for_plan(
        self,
        plan_id: str,
        statuses: Optional[Sequence[TaskStatus | str]] = None,
        priorities: Optional[Sequence[str]] = None,
        assignee: Optional[str] = None,
    ) -> List[Task]:
        return self.store.find_tasks_by_plan(plan_id, statuses=statuses, priorities=priorities, assignee=assignee)

    def get_subtasks(self, parent_task_id: str) -> List[Task]:
        task = self.get_task(parent_task_id)
        if task is None:
            return []
        return [t for t in self.store.find_tasks_by_plan(task.plan_id) if t.parent_task_id == parent_task_id]

    def get_blocked_tasks(self, plan_id: str) -> List[Task]:
        return self.store.find_tasks_by_plan(plan_id, statuses=[TaskStatus.BLOCKED])

    def get_ready_tasks(self, plan_id: str) -> List[Task]:
        return self.store.find_tasks_by_plan(plan_id, statuses=[TaskStatus.READY])

    def get_in_progress_tasks(self, plan_id: str) -> List[Task]:
        return self.store.find_tasks_by_plan(plan_id, statuses=[TaskStatus.IN_PROGRESS])

    def get_progress_stats(self, plan_id: str) -> ProgressStats:
        counts = self.store.count_tasks_by_status(plan_id)
        return ProgressStats(
            total=sum(counts.values()),
            completed=counts[TaskStatus.COMPLETED],
            in_progress=counts[TaskStatus.IN_PROGRESS],
            review=counts[TaskStatus.REVIEW],
            blocked=counts[TaskStatus.BLOCKED],
            ready=counts[TaskStatus.READY],
            backlog=counts[TaskStatus.BACKLOG],
            cancelled=counts[TaskStatus.CANCELLED],
        )

    def _set_tags(self, task_id: str, tags: Sequence[str]) -> TaskOperationResult:
        if not all(isinstance(tag, str) for tag in tags):
            raise ValidationError("Tags must be strings")
        updated = self.store.update(EntityKind.TASK, task_id, {"tags": list(tags)})
        return TaskOperationResult(success=True, task=updated)

    def _append_note(self, result: TaskOperationResult, note: str) -> TaskOperationResult:
        task = result.task
        updated = self.store.update(EntityKind.TASK, task.id, {"context": {"notes": task.context.with_note(note)}})
        return TaskOperationResult(success=True, task=updated)
