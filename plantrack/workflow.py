"""Planning workflow management for PlanTrack.

``PlanningManager`` is the tool-facing facade over the entity store, the
dependency graph and the lifecycle services. It validates new dependency
edges before they are written and turns service results into response
dictionaries that always point the caller at a sensible next action.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .comments import CommentStore
from .config import DEFAULT_MAX_CHAIN_DEPTH, PlanTrackConfig
from .database import Database
from .dependencies import DependencyGraph
from .errors import InvariantViolation, NotFound, PlanTrackError, ValidationError
from .models import (
    ChainDirection,
    DependencyType,
    EntityKind,
    EntityRef,
    Plan,
    PlanOperationResult,
    Task,
    TaskOperationResult,
    is_resolved,
    parse_enum,
)
from .plan_service import PlanService
from .planning_logging import (
    log_error_with_context,
    log_operation,
    log_performance,
    observability_hooks,
)
from .repositories import DEFAULT_SEARCH_LIMIT, EntityStore
from .task_service import TaskService

logger = logging.getLogger("plantrack.workflow")


class PlanningManager:
    """Runs planning operations and reports their outcome as response dicts."""

    def __init__(
        self,
        db: Database,
        project_root: Path | str,
        max_chain_depth: int = DEFAULT_MAX_CHAIN_DEPTH,
    ):
        self.db = db
        self.project_root = Path(project_root)
        self.max_chain_depth = max_chain_depth
        self.store = EntityStore(db)
        self.graph = DependencyGraph(db)
        self.tasks = TaskService(self.store, self.graph)
        self.plans = PlanService(self.store, self.graph)
        self.comments = CommentStore(db)

    @classmethod
    def from_config(cls, config: PlanTrackConfig) -> "PlanningManager":
        return cls(Database(config.db_path), config.project_root, config.max_chain_depth)

    def close(self) -> None:
        self.db.close()

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    @log_performance("create_plan")
    def create_plan(
        self,
        name: str,
        description: str = "",
        start_date: Optional[str] = None,
        target_date: Optional[str] = None,
        project_path: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a plan in draft status."""
        try:
            with log_operation("create_plan", name=name):
                plan = self.plans.create_plan(
                    name,
                    project_path or str(self.project_root),
                    description,
                    start_date,
                    target_date,
                )
            return {
                "success": True,
                "plan": plan.to_dict(),
                "message": f"Created plan '{plan.name}'",
                "next_suggested_action": "create_goal",
                "workflow_tip": "Break the plan into goals, or add tasks directly with add_task",
            }
        except PlanTrackError as e:
            return self._failure(e, "create_plan", "Provide a non-empty plan name", "create_plan")

    def get_plan(self, plan_id: str) -> Dict[str, Any]:
        try:
            plan = self._require_plan(plan_id)
            return {
                "success": True,
                "plan": plan.to_dict(),
                "progress": self.tasks.get_progress_stats(plan_id).to_dict(),
                "available_transitions": [s.value for s in self.plans.get_available_transitions(plan_id)],
            }
        except PlanTrackError as e:
            return self._failure(e, "get_plan", f"Check that plan '{plan_id}' exists", "list_plans")

    def list_plans(self, status: Optional[str] = None) -> Dict[str, Any]:
        try:
            plans = self.plans.list_plans(status)
            return {
                "success": True,
                "plans": [plan.to_dict() for plan in plans],
                "count": len(plans),
            }
        except PlanTrackError as e:
            return self._failure(e, "list_plans", "Use one of: draft, active, completed, archived", "list_plans")

    def update_plan_status(self, plan_id: str, status: str) -> Dict[str, Any]:
        """Move a plan through draft -> active -> completed -> archived."""
        try:
            result = self.plans.transition(plan_id, status)
            if not result.success:
                return self._plan_rejection(result, plan_id, "update_plan_status")
            return {
                **result.to_dict(),
                "message": f"Plan '{result.plan.name}' is now {result.plan.status.value}",
            }
        except PlanTrackError as e:
            return self._failure(e, "update_plan_status", f"Check that plan '{plan_id}' exists", "list_plans")

    def update_plan(
        self,
        plan_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        start_date: Optional[str] = None,
        target_date: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Update plan metadata, then apply a status change through the plan state machine."""
        try:
            fields = {
                key: value
                for key, value in {
                    "name": name,
                    "description": description,
                    "start_date": start_date,
                    "target_date": target_date,
                }.items()
                if value is not None
            }
            if not fields and status is None:
                return {
                    "success": False,
                    "error": "No fields to update",
                    "suggestion": "Pass at least one field to change",
                    "next_suggested_action": "get_plan",
                }
            if fields:
                result = self.plans.update_plan(plan_id, fields)
                if not result.success:
                    raise NotFound("plan", plan_id)
            if status is not None:
                result = self.plans.transition(plan_id, status)
                if not result.success:
                    return self._plan_rejection(result, plan_id, "update_plan")
            return {
                **result.to_dict(),
                "message": f"Updated plan '{result.plan.name}'",
            }
        except PlanTrackError as e:
            return self._failure(e, "update_plan", f"Check that plan '{plan_id}' exists", "list_plans")

    def archive_plan(self, plan_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        try:
            result = self.plans.archive(plan_id)
            if not result.success:
                return self._plan_rejection(result, plan_id, "archive_plan")
            if reason:
                logger.info(f"Archived plan {plan_id}: {reason}")
            return {
                **result.to_dict(),
                "archived_at": result.plan.updated_at,
                "message": f"Archived plan '{result.plan.name}'",
            }
        except PlanTrackError as e:
            return self._failure(e, "archive_plan", f"Check that plan '{plan_id}' exists", "list_plans")

    def delete_plan(self, plan_id: str) -> Dict[str, Any]:
        try:
            self._require_plan(plan_id)
            self.plans.delete_plan(plan_id)
            return {"success": True, "message": f"Deleted plan {plan_id}"}
        except PlanTrackError as e:
            return self._failure(e, "delete_plan", f"Check that plan '{plan_id}' exists", "list_plans")

    # ------------------------------------------------------------------
    # Goals, objectives and milestones
    # ------------------------------------------------------------------

    def create_goal(
        self,
        plan_id: str,
        title: str,
        description: str = "",
        priority: str = "medium",
        parent_goal_id: Optional[str] = None,
        target_date: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            self._require_plan(plan_id)
            if parent_goal_id:
                parent = self._require(EntityKind.GOAL, parent_goal_id)
                if parent.plan_id != plan_id:
                    raise InvariantViolation("Parent goal belongs to a different plan")
            goal = self.store.create_goal(plan_id, title, description, priority, parent_goal_id, target_date)
            logger.info(f"Created goal {goal.id} in plan {plan_id}")
            return {
                "success": True,
                "goal": goal.to_dict(),
                "next_suggested_action": "create_objective",
                "workflow_tip": "Add objectives to make the goal measurable",
            }
        except PlanTrackError as e:
            return self._failure(e, "create_goal", "Check the plan id and goal fields", "get_plan")

    def create_objective(self, goal_id: str, title: str, description: str = "") -> Dict[str, Any]:
        try:
            self._require(EntityKind.GOAL, goal_id)
            objective = self.store.create_objective(goal_id, title, description)
            return {
                "success": True,
                "objective": objective.to_dict(),
                "next_suggested_action": "create_milestone",
            }
        except PlanTrackError as e:
            return self._failure(e, "create_objective", f"Check that goal '{goal_id}' exists", "get_plan")

    def create_milestone(
        self,
        objective_id: str,
        title: str,
        description: str = "",
        due_date: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            self._require(EntityKind.OBJECTIVE, objective_id)
            milestone = self.store.create_milestone(objective_id, title, description, due_date)
            return {
                "success": True,
                "milestone": milestone.to_dict(),
                "next_suggested_action": "add_task",
                "workflow_tip": "Attach tasks to the milestone with add_task(milestone_id=...)",
            }
        except PlanTrackError as e:
            return self._failure(e, "create_milestone", f"Check that objective '{objective_id}' exists", "get_plan")

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @log_performance("add_task")
    def add_task(self, plan_id: str, title: str, **fields: Any) -> Dict[str, Any]:
        try:
            goal_id = fields.get("goal_id")
            if goal_id and self._require(EntityKind.GOAL, goal_id).plan_id != plan_id:
                raise InvariantViolation("Goal belongs to a different plan")
            milestone_id = fields.get("milestone_id")
            if milestone_id:
                self._require(EntityKind.MILESTONE, milestone_id)
                if self.store.plan_id_of(EntityRef(EntityKind.MILESTONE, milestone_id)) != plan_id:
                    raise InvariantViolation("Milestone belongs to a different plan")
            task = self.tasks.create_task(plan_id, title, **fields)
            return {
                "success": True,
                "task": task.to_dict(),
                "message": f"Created task '{task.title}'",
                "next_suggested_action": "add_dependency",
                "workflow_tip": "Declare what this task waits on with add_dependency, then start it",
            }
        except PlanTrackError as e:
            return self._failure(e, "add_task", "Check the plan id and task fields", "get_plan")

    def get_task(self, task_id: str) -> Dict[str, Any]:
        try:
            task = self._require_task(task_id)
            return {
                "success": True,
                "task": task.to_dict(),
                "available_transitions": [s.value for s in self.tasks.get_available_transitions(task_id)],
                "dependency_counts": self.graph.count_for_entity(task.ref),
            }
        except PlanTrackError as e:
            return self._failure(e, "get_task", f"Check that task '{task_id}' exists", "find_tasks")

    def update_task(self, task_id: str, **fields: Any) -> Dict[str, Any]:
        """Update task fields other than status."""
        try:
            changes = {name: value for name, value in fields.items() if value is not None}
            if not changes:
                return {
                    "success": False,
                    "error": "No fields to update",
                    "suggestion": "Pass at least one field to change",
                    "next_suggested_action": "get_task",
                }
            result = self.tasks.update_task(task_id, changes)
            return self._task_response(result, task_id, "update_task", f"Updated task {task_id}")
        except PlanTrackError as e:
            return self._failure(e, "update_task", "Use transition_task to change status", "get_task")

    def delete_task(self, task_id: str) -> Dict[str, Any]:
        try:
            self._require_task(task_id)
            self.tasks.delete_task(task_id)
            return {"success": True, "message": f"Deleted task {task_id} and its dependencies"}
        except PlanTrackError as e:
            return self._failure(e, "delete_task", f"Check that task '{task_id}' exists", "find_tasks")

    def start_task(self, task_id: str, notes: Optional[str] = None) -> Dict[str, Any]:
        """Start a task. Blockers are reported, not enforced; see ``check_can_start``."""
        try:
            result = self.tasks.start_task(task_id, notes)
            response = self._task_response(
                result,
                task_id,
                "start_task",
                f"Started task {task_id}",
                next_action="submit_for_review",
                tip="Submit the task for review when the work is done",
            )
            if result.success:
                waiting_on = [b for b in self._describe_blockers(result.task) if not b["is_resolved"]]
                if waiting_on:
                    response["warning"] = f"Task has {len(waiting_on)} unresolved blocker(s)"
                    response["incomplete_blockers"] = waiting_on
            return response
        except PlanTrackError as e:
            return self._failure(e, "start_task", f"Check that task '{task_id}' exists", "find_tasks")

    def submit_for_review(self, task_id: str) -> Dict[str, Any]:
        try:
            result = self.tasks.submit_for_review(task_id)
            return self._task_response(
                result,
                task_id,
                "submit_for_review",
                f"Task {task_id} is ready for review",
                next_action="complete_task",
                tip="Complete the task with a summary once the review passes",
            )
        except PlanTrackError as e:
            return self._failure(e, "submit_for_review", f"Check that task '{task_id}' exists", "find_tasks")

    def complete_task(
        self,
        task_id: str,
        summary: str,
        actual_hours: Optional[float] = None,
        learnings: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            result = self.tasks.complete_task(task_id, summary, actual_hours, learnings)
            response = self._task_response(
                result,
                task_id,
                "complete_task",
                f"Completed task {task_id}",
                next_action="find_tasks",
                tip="Tasks waiting on this one may now be startable",
            )
            if result.success:
                unblocked = [
                    self._describe(ref)
                    for ref in self.graph.get_blocked(result.task.ref)
                ]
                response["unblocked_candidates"] = unblocked
                observability_hooks.log_planning_event(
                    "task_completed", task_id=task_id, plan_id=result.task.plan_id
                )
            return response
        except PlanTrackError as e:
            return self._failure(e, "complete_task", f"Check that task '{task_id}' exists", "find_tasks")

    def block_task(self, task_id: str, reason: str) -> Dict[str, Any]:
        try:
            result = self.tasks.block_task(task_id, reason)
            return self._task_response(
                result,
                task_id,
                "block_task",
                f"Blocked task {task_id}",
                next_action="unblock_task",
                tip="Unblock the task when the impediment is gone",
            )
        except PlanTrackError as e:
            return self._failure(e, "block_task", f"Check that task '{task_id}' exists", "find_tasks")

    def unblock_task(self, task_id: str) -> Dict[str, Any]:
        try:
            result = self.tasks.unblock_task(task_id)
            return self._task_response(result, task_id, "unblock_task", f"Resumed task {task_id}")
        except PlanTrackError as e:
            return self._failure(e, "unblock_task", f"Check that task '{task_id}' exists", "find_tasks")

    def cancel_task(self, task_id: str) -> Dict[str, Any]:
        try:
            result = self.tasks.cancel_task(task_id)
            return self._task_response(result, task_id, "cancel_task", f"Cancelled task {task_id}")
        except PlanTrackError as e:
            return self._failure(e, "cancel_task", f"Check that task '{task_id}' exists", "find_tasks")

    def transition_task(self, task_id: str, status: str) -> Dict[str, Any]:
        try:
            result = self.tasks.transition(task_id, status)
            return self._task_response(result, task_id, "transition_task", f"Task {task_id} is now {status}")
        except PlanTrackError as e:
            return self._failure(
                e, "transition_task", "Use a status from get_available_transitions", "get_available_transitions"
            )

    def get_available_transitions(self, task_id: str) -> Dict[str, Any]:
        try:
            task = self._require_task(task_id)
            return {
                "success": True,
                "task_id": task_id,
                "current_status": task.status.value,
                "available_transitions": [s.value for s in self.tasks.get_available_transitions(task_id)],
            }
        except PlanTrackError as e:
            return self._failure(e, "get_available_transitions", f"Check that task '{task_id}' exists", "find_tasks")

    def find_tasks(
        self,
        plan_id: str,
        status: Optional[Sequence[str]] = None,
        priority: Optional[Sequence[str]] = None,
        assignee: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            self._require_plan(plan_id)
            tasks = self.tasks.get_tasks_for_plan(plan_id, statuses=status, priorities=priority, assignee=assignee)
            return {
                "success": True,
                "tasks": [task.to_dict() for task in tasks],
                "count": len(tasks),
                "filters_applied": {"status": status, "priority": priority, "assignee": assignee},
            }
        except PlanTrackError as e:
            return self._failure(e, "find_tasks", "Check your filter parameters", "get_plan")

    def get_progress(self, plan_id: str) -> Dict[str, Any]:
        try:
            plan = self._require_plan(plan_id)
            stats = self.tasks.get_progress_stats(plan_id)
            ready = self.tasks.get_ready_tasks(plan_id)
            return {
                "success": True,
                "plan": {"id": plan.id, "name": plan.name, "status": plan.status.value},
                "progress": stats.to_dict(),
                "blocked_tasks": [t.summary() for t in self.tasks.get_blocked_tasks(plan_id)],
                "in_progress_tasks": [t.summary() for t in self.tasks.get_in_progress_tasks(plan_id)],
                "ready_tasks": [t.summary() for t in ready],
                "next_suggested_action": "start_task" if ready else "find_tasks",
                "workflow_tip": f"{len(ready)} task(s) ready to start" if ready else "No tasks are ready; prioritize backlog tasks",
            }
        except PlanTrackError as e:
            return self._failure(e, "get_progress", f"Check that plan '{plan_id}' exists", "list_plans")

    def get_blocked(self, plan_id: str) -> Dict[str, Any]:
        """List blocked tasks with the notes that explain why."""
        try:
            self._require_plan(plan_id)
            blocked = self.tasks.get_blocked_tasks(plan_id)
            return {
                "success": True,
                "plan_id": plan_id,
                "count": len(blocked),
                "tasks": [{**task.summary(), "notes": task.context.notes} for task in blocked],
                "next_suggested_action": "unblock_task" if blocked else "get_progress",
            }
        except PlanTrackError as e:
            return self._failure(e, "get_blocked", f"Check that plan '{plan_id}' exists", "list_plans")

    def search_tasks(
        self,
        query: Optional[str] = None,
        plan_id: Optional[str] = None,
        status: Optional[Sequence[str]] = None,
        priority: Optional[Sequence[str]] = None,
        assignee: Optional[str] = None,
        due_before: Optional[str] = None,
        due_after: Optional[str] = None,
        include_completed: bool = False,
        tags: Optional[Sequence[str]] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> Dict[str, Any]:
        """Search tasks by text and filters, across every plan unless ``plan_id`` is given."""
        try:
            tasks = self.store.search_tasks(
                query=query,
                plan_id=plan_id,
                statuses=status,
                priorities=priority,
                assignee=assignee,
                due_before=due_before,
                due_after=due_after,
                include_completed=include_completed,
                tags=tags,
                limit=limit,
            )
            plan_names = {plan.id: plan.name for plan in self.plans.list_plans()}
            return {
                "success": True,
                "query": query,
                "count": len(tasks),
                "tasks": [{**task.to_dict(), "plan_name": plan_names.get(task.plan_id)} for task in tasks],
            }
        except PlanTrackError as e:
            return self._failure(e, "search_tasks", "Check your filter parameters", "find_tasks")

    def bulk_update_status(self, task_ids: Sequence[str], status: str) -> Dict[str, Any]:
        """Move several tasks to one status; each move must be legal on its own."""
        try:
            if not task_ids:
                return {
                    "success": False,
                    "error": "No task IDs provided",
                    "suggestion": "Pass at least one task id",
                    "next_suggested_action": "find_tasks",
                }
            updated, failed = self.tasks.bulk_transition(task_ids, status)
            message = f"Updated {len(updated)} task(s) to status '{status}'"
            if failed:
                message += f", {len(failed)} failed"
            return {
                "success": True,
                "status": status,
                "updated_count": len(updated),
                "failed_count": len(failed),
                "updated": [task.summary() for task in updated],
                "failed": failed,
                "message": message,
            }
        except PlanTrackError as e:
            return self._failure(
                e, "bulk_update_status", "Use a status from get_available_transitions", "get_available_transitions"
            )

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def add_tag(self, task_id: str, tag: str) -> Dict[str, Any]:
        try:
            result = self.tasks.add_tag(task_id, tag)
            return self._task_response(result, task_id, "add_tag", f"Added tag '{tag.strip().lower()}' to task {task_id}")
        except PlanTrackError as e:
            return self._failure(e, "add_tag", "Tags must be non-empty strings", "get_task")

    def remove_tag(self, task_id: str, tag: str) -> Dict[str, Any]:
        try:
            result = self.tasks.remove_tag(task_id, tag)
            return self._task_response(
                result, task_id, "remove_tag", f"Removed tag '{tag.strip().lower()}' from task {task_id}"
            )
        except PlanTrackError as e:
            return self._failure(e, "remove_tag", "Tags must be non-empty strings", "get_task")

    def set_tags(self, task_id: str, tags: Sequence[str]) -> Dict[str, Any]:
        try:
            result = self.tasks.set_tags(task_id, tags)
            count = len(result.task.tags) if result.success else 0
            return self._task_response(result, task_id, "set_tags", f"Set {count} tag(s) on task {task_id}")
        except PlanTrackError as e:
            return self._failure(e, "set_tags", "Tags must be non-empty strings", "get_task")

    def get_tags(self, plan_id: str) -> Dict[str, Any]:
        try:
            self._require_plan(plan_id)
            tags = self.store.all_tags(plan_id)
            return {"success": True, "plan_id": plan_id, "count": len(tags), "tags": tags}
        except PlanTrackError as e:
            return self._failure(e, "get_tags", f"Check that plan '{plan_id}' exists", "list_plans")

    def find_by_tag(self, plan_id: str, tag: str) -> Dict[str, Any]:
        try:
            self._require_plan(plan_id)
            tasks = self.store.find_tasks_by_tag(plan_id, tag)
            return {
                "success": True,
                "tag": tag.strip().lower(),
                "count": len(tasks),
                "tasks": [{**task.summary(), "priority": task.priority.value, "tags": task.tags} for task in tasks],
            }
        except PlanTrackError as e:
            return self._failure(e, "find_by_tag", f"Check that plan '{plan_id}' exists", "get_tags")

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def add_comment(self, task_id: str, content: str, author: Optional[str] = None) -> Dict[str, Any]:
        try:
            task = self._require_task(task_id)
            comment = self.comments.create(task_id, content, author)
            return {
                "success": True,
                "comment": comment.to_dict(),
                "task_title": task.title,
                "message": f"Added comment to task '{task.title}'",
            }
        except PlanTrackError as e:
            return self._failure(e, "add_comment", "Comments need an existing task and non-empty content", "get_task")

    def list_comments(self, task_id: str, order: str = "asc") -> Dict[str, Any]:
        try:
            task = self._require_task(task_id)
            if order not in ("asc", "desc"):
                raise ValidationError(f"Invalid order: {order!r}. Allowed: ['asc', 'desc']")
            comments = self.comments.find_by_task(task_id, newest_first=order == "desc")
            return {
                "success": True,
                "task_id": task_id,
                "task_title": task.title,
                "count": len(comments),
                "comments": [comment.to_dict() for comment in comments],
            }
        except PlanTrackError as e:
            return self._failure(e, "list_comments", f"Check that task '{task_id}' exists", "find_tasks")

    def update_comment(self, comment_id: str, content: str) -> Dict[str, Any]:
        try:
            comment = self.comments.update(comment_id, content)
            if comment is None:
                raise NotFound("comment", comment_id)
            return {"success": True, "comment": comment.to_dict(), "message": "Comment updated successfully"}
        except PlanTrackError as e:
            return self._failure(e, "update_comment", "List the task's comments first", "list_comments")

    def delete_comment(self, comment_id: str) -> Dict[str, Any]:
        try:
            if not self.comments.delete(comment_id):
                raise NotFound("comment", comment_id)
            return {"success": True, "comment_id": comment_id, "message": "Comment deleted successfully"}
        except PlanTrackError as e:
            return self._failure(e, "delete_comment", "List the task's comments first", "list_comments")

    def get_recent_comments(self, plan_id: str, limit: int = 20) -> Dict[str, Any]:
        try:
            self._require_plan(plan_id)
            if limit < 1:
                raise ValidationError("Limit must be positive")
            comments = self.comments.find_recent_for_plan(plan_id, limit)
            return {
                "success": True,
                "plan_id": plan_id,
                "count": len(comments),
                "comments": [comment.to_dict() for comment in comments],
            }
        except PlanTrackError as e:
            return self._failure(e, "get_recent_comments", f"Check that plan '{plan_id}' exists", "list_plans")

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    @log_performance("add_dependency")
    def add_dependency(
        self,
        task_id: str,
        depends_on_task_id: str,
        dependency_type: str = DependencyType.BLOCKS.value,
    ) -> Dict[str, Any]:
        """Make ``task_id`` wait on ``depends_on_task_id``."""
        try:
            dep_type = parse_enum(DependencyType, dependency_type, "dependency type")
            task = self._require_task(task_id)
            depends_on = self._require_task(depends_on_task_id)
            if task.plan_id != depends_on.plan_id:
                raise InvariantViolation("Tasks must be in the same plan to create a dependency")
            self._check_new_edge(depends_on.ref, task.ref)

            dependency = self.graph.create(depends_on.ref, task.ref, dep_type)
            return {
                "success": True,
                "dependency": dependency.to_dict(),
                "message": f"Task '{task.title}' now depends on '{depends_on.title}'",
                "blocked_task": {"id": task.id, "title": task.title},
                "blocking_task": {"id": depends_on.id, "title": depends_on.title},
                "next_suggested_action": "check_can_start",
            }
        except PlanTrackError as e:
            return self._failure(
                e,
                "add_dependency",
                "Both tasks must exist in the same plan and the edge must not close a cycle",
                "get_dependencies",
                task_id=task_id,
                depends_on_task_id=depends_on_task_id,
            )

    def link_entities(
        self,
        source_type: str,
        source_id: str,
        target_type: str,
        target_id: str,
        dependency_type: str = DependencyType.BLOCKS.value,
    ) -> Dict[str, Any]:
        """Create an edge between any two planning entities of the same plan."""
        try:
            dep_type = parse_enum(DependencyType, dependency_type, "dependency type")
            source = EntityRef.of(source_type, source_id)
            target = EntityRef.of(target_type, target_id)
            source_plan = self._require_plan_id(source)
            target_plan = self._require_plan_id(target)
            if source_plan != target_plan:
                raise InvariantViolation("Entities must belong to the same plan to be linked")
            self._check_new_edge(source, target)

            dependency = self.graph.create(source, target, dep_type)
            return {
                "success": True,
                "dependency": dependency.to_dict(),
                "message": f"{source} now {dep_type.value} {target}",
            }
        except PlanTrackError as e:
            return self._failure(
                e,
                "link_entities",
                "Both entities must exist in the same plan and the edge must not close a cycle",
                "get_dependencies",
            )

    def remove_dependency(self, task_id: str, depends_on_task_id: str) -> Dict[str, Any]:
        try:
            removed = self.graph.delete_between(
                EntityRef(EntityKind.TASK, depends_on_task_id), EntityRef(EntityKind.TASK, task_id)
            )
            if not removed:
                raise NotFound("dependency", f"{depends_on_task_id} -> {task_id}")
            return {"success": True, "message": "Dependency removed successfully"}
        except PlanTrackError as e:
            return self._failure(e, "remove_dependency", "List the task's dependencies first", "get_dependencies")

    def get_dependencies(self, task_id: str) -> Dict[str, Any]:
        try:
            task = self._require_task(task_id)
            depends_on = self._describe_blockers(task)
            blocks = [self._describe(ref) for ref in self.graph.get_blocked(task.ref)]
            related = [
                dep.to_dict()
                for dep in self.graph.find_by_entity(task.ref)
                if dep.dependency_type != DependencyType.BLOCKS
            ]
            incomplete = [b for b in depends_on if not b["is_resolved"]]
            return {
                "success": True,
                "task": task.summary(),
                "depends_on": depends_on,
                "blocks": blocks,
                "other_links": related,
                "can_start": not incomplete,
                "incomplete_blockers": len(incomplete),
            }
        except PlanTrackError as e:
            return self._failure(e, "get_dependencies", f"Check that task '{task_id}' exists", "find_tasks")

    def get_dependency_chain(
        self,
        task_id: str,
        direction: str = ChainDirection.UPSTREAM.value,
        max_depth: Optional[int] = None,
    ) -> Dict[str, Any]:
        try:
            task = self._require_task(task_id)
            chain_direction = parse_enum(ChainDirection, direction, "direction")
            depth = self.max_chain_depth if max_depth is None else max_depth
            chain = self.graph.get_dependency_chain(task.ref, chain_direction, depth)
            items = [{**item.to_dict(), **self._describe(item.entity)} for item in chain]
            return {
                "success": True,
                "task": {"id": task.id, "title": task.title},
                "direction": chain_direction.value,
                "max_depth": depth,
                "chain": items,
                "total_dependencies": len(items),
            }
        except PlanTrackError as e:
            return self._failure(e, "get_dependency_chain", "Use direction 'upstream' or 'downstream'", "get_dependencies")

    def check_can_start(self, task_id: str) -> Dict[str, Any]:
        """Report whether every blocker of a task has resolved.

        Missing blockers are ignored; completed and cancelled tasks count
        as resolved.
        """
        try:
            task = self._require_task(task_id)
            blockers = self._describe_blockers(task)
            incomplete = [b for b in blockers if not b["is_resolved"]]
            can_start = not incomplete
            if can_start:
                message = "Task can be started - all dependencies are satisfied"
            else:
                titles = ", ".join(b["title"] for b in incomplete)
                message = f"Task cannot start - waiting on {len(incomplete)} blocker(s): {titles}"
            return {
                "success": True,
                "task": task.summary(),
                "can_start": can_start,
                "blockers": blockers,
                "incomplete_blockers": incomplete,
                "message": message,
                "next_suggested_action": "start_task" if can_start else "get_dependency_chain",
            }
        except PlanTrackError as e:
            return self._failure(e, "check_can_start", f"Check that task '{task_id}' exists", "find_tasks")

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _require(self, kind: EntityKind, entity_id: str):
        entity = self.store.find_by_id(kind, entity_id)
        if entity is None:
            raise NotFound(kind.value, entity_id)
        return entity

    def _require_plan(self, plan_id: str) -> Plan:
        return self._require(EntityKind.PLAN, plan_id)

    def _require_task(self, task_id: str) -> Task:
        return self._require(EntityKind.TASK, task_id)

    def _require_plan_id(self, ref: EntityRef) -> str:
        plan_id = self.store.plan_id_of(ref)
        if plan_id is None:
            raise NotFound(ref.kind.value, ref.id)
        return plan_id

    def _check_new_edge(self, source: EntityRef, target: EntityRef) -> None:
        """Reject self edges, duplicates and edges that would close a cycle."""
        if source == target:
            raise InvariantViolation("An entity cannot depend on itself")
        if self.graph.exists(source, target):
            raise InvariantViolation("This dependency already exists")
        if self.graph.would_create_cycle(source, target):
            raise InvariantViolation("Adding this dependency would create a circular dependency")

    def _describe(self, ref: EntityRef) -> Dict[str, Any]:
        entity = self.store.find_ref(ref)
        if entity is None:
            return {"type": ref.kind.value, "id": ref.id, "title": "Unknown", "status": "unknown"}
        title = entity.name if isinstance(entity, Plan) else entity.title
        return {"type": ref.kind.value, "id": ref.id, "title": title, "status": entity.status.value}

    def _describe_blockers(self, task: Task) -> List[Dict[str, Any]]:
        described = []
        for ref in self.graph.get_blockers(task.ref):
            entity = self.store.find_ref(ref)
            if entity is None:
                continue
            details = self._describe(ref)
            details["is_resolved"] = is_resolved(ref.kind, entity.status)
            described.append(details)
        return described

    def _task_response(
        self,
        result: TaskOperationResult,
        task_id: str,
        operation: str,
        message: str,
        next_action: str = "get_task",
        tip: Optional[str] = None,
    ) -> Dict[str, Any]:
        if result.success:
            response = {**result.to_dict(), "message": message, "next_suggested_action": next_action}
            if tip:
                response["workflow_tip"] = tip
            return response

        if result.code == NotFound.code:
            return self._failure(NotFound("task", task_id), operation, f"Check that task '{task_id}' exists", "find_tasks")

        logger.info(f"{operation} rejected for task {task_id}: {result.error}")
        return {
            **result.to_dict(),
            "available_transitions": [s.value for s in self.tasks.get_available_transitions(task_id)],
            "suggestion": "Choose one of the available transitions",
            "next_suggested_action": "get_available_transitions",
            "workflow_tip": "Tasks move backlog -> ready -> in_progress -> review -> completed",
        }

    def _plan_rejection(self, result: PlanOperationResult, plan_id: str, operation: str) -> Dict[str, Any]:
        if result.code == NotFound.code:
            return self._failure(NotFound("plan", plan_id), operation, f"Check that plan '{plan_id}' exists", "list_plans")

        logger.info(f"{operation} rejected for plan {plan_id}: {result.error}")
        return {
            **result.to_dict(),
            "available_transitions": [s.value for s in self.plans.get_available_transitions(plan_id)],
            "suggestion": "Choose one of the available transitions",
            "next_suggested_action": "get_plan",
        }

    def _failure(
        self,
        error: PlanTrackError,
        operation: str,
        suggestion: str,
        next_action: str,
        **context: Any,
    ) -> Dict[str, Any]:
        logger.warning(f"{operation} failed: {error}")
        log_error_with_context(error, {"operation": operation, **context})
        return {
            "success": False,
            "error": error.message,
            "code": error.code,
            "suggestion": suggestion,
            "next_suggested_action": next_action,
        }
