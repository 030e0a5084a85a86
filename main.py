"""MCP server exposing PlanTrack planning and dependency tools."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from plantrack.config import PlanTrackConfig
from plantrack.planning_logging import setup_logging
from plantrack.workflow import PlanningManager

mcp = FastMCP("plantrack")

logger = logging.getLogger("plantrack.server")

_MANAGER: Optional[PlanningManager] = None


def _manager() -> PlanningManager:
    global _MANAGER
    if _MANAGER is None:
        _MANAGER = PlanningManager.from_config(PlanTrackConfig.from_env())
    return _MANAGER


def _reset_manager() -> None:
    """Close the current manager so the next call reloads configuration."""
    global _MANAGER
    if _MANAGER is not None:
        _MANAGER.close()
    _MANAGER = None


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


@mcp.tool()
def create_plan(
    name: str,
    description: str = "",
    start_date: Optional[str] = None,
    target_date: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 1: Create a new plan in draft status for the current project.
    Activate it with update_plan_status once goals and tasks are in place."""
    return _manager().create_plan(name, description, start_date, target_date)


@mcp.tool()
def update_plan_status(plan_id: str, status: str) -> Dict[str, Any]:
    """Move a plan along draft -> active -> completed -> archived (active may also go straight to archived)."""
    return _manager().update_plan_status(plan_id, status)


@mcp.tool()
def get_plan(plan_id: str) -> Dict[str, Any]:
    """Return a plan with its task progress and the status changes it allows."""
    return _manager().get_plan(plan_id)


@mcp.tool()
def list_plans(status: Optional[str] = None) -> Dict[str, Any]:
    """List plans, optionally only those in one status (draft, active, completed, archived)."""
    return _manager().list_plans(status)


@mcp.tool()
def update_plan(
    plan_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    start_date: Optional[str] = None,
    target_date: Optional[str] = None,
    status: Optional[str] = None,
) -> Dict[str, Any]:
    """Update plan details. A status change must be legal from the plan's current status."""
    return _manager().update_plan(plan_id, name, description, start_date, target_date, status)


@mcp.tool()
def archive_plan(plan_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
    """Archive an active or completed plan, keeping it for reference."""
    return _manager().archive_plan(plan_id, reason)


@mcp.tool()
def delete_plan(plan_id: str) -> Dict[str, Any]:
    """Permanently delete a plan with its goals, tasks, comments and dependencies."""
    return _manager().delete_plan(plan_id)


@mcp.resource("plantrack://plans")
def resource_plans() -> str:
    """List known plans with their status."""
    response = _manager().list_plans()
    plans = response.get("plans", [])
    if not plans:
        return "No plans have been created yet."

    lines = ["# Plans", ""]
    for plan in plans:
        lines.append(f"- {plan['name']} ({plan['id']}) - {plan['status']}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Hierarchy
# ---------------------------------------------------------------------------


@mcp.tool()
def create_goal(
    plan_id: str,
    title: str,
    description: str = "",
    priority: str = "medium",
    parent_goal_id: Optional[str] = None,
    target_date: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 2: Add a goal to a plan. Priority is one of critical, high, medium, low."""
    return _manager().create_goal(plan_id, title, description, priority, parent_goal_id, target_date)


@mcp.tool()
def create_objective(goal_id: str, title: str, description: str = "") -> Dict[str, Any]:
    """Add a measurable objective under a goal."""
    return _manager().create_objective(goal_id, title, description)


@mcp.tool()
def create_milestone(
    objective_id: str,
    title: str,
    description: str = "",
    due_date: Optional[str] = None,
) -> Dict[str, Any]:
    """Add a milestone under an objective."""
    return _manager().create_milestone(objective_id, title, description, due_date)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@mcp.tool()
def add_task(
    plan_id: str,
    title: str,
    description: str = "",
    goal_id: Optional[str] = None,
    milestone_id: Optional[str] = None,
    parent_task_id: Optional[str] = None,
    priority: str = "medium",
    estimated_hours: Optional[float] = None,
    assignee: Optional[str] = None,
    due_date: Optional[str] = None,
    tags: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """STEP 3: Add a task to a plan. New tasks start in the backlog."""
    return _manager().add_task(
        plan_id,
        title,
        description=description,
        goal_id=goal_id,
        milestone_id=milestone_id,
        parent_task_id=parent_task_id,
        priority=priority,
        estimated_hours=estimated_hours,
        assignee=assignee,
        due_date=due_date,
        tags=tags,
    )


@mcp.tool()
def get_task(task_id: str) -> Dict[str, Any]:
    """Return a task with its available transitions and dependency counts."""
    return _manager().get_task(task_id)


@mcp.tool()
def update_task(
    task_id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    priority: Optional[str] = None,
    estimated_hours: Optional[float] = None,
    actual_hours: Optional[float] = None,
    assignee: Optional[str] = None,
    due_date: Optional[str] = None,
    tags: Optional[List[str]] = None,
    acceptance_criteria: Optional[List[str]] = None,
    files_involved: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Update task fields. Status is changed with the lifecycle tools, not here."""
    context: Dict[str, Any] = {}
    if acceptance_criteria is not None:
        context["acceptance_criteria"] = acceptance_criteria
    if files_involved is not None:
        context["files_involved"] = files_involved

    return _manager().update_task(
        task_id,
        title=title,
        description=description,
        priority=priority,
        estimated_hours=estimated_hours,
        actual_hours=actual_hours,
        assignee=assignee,
        due_date=due_date,
        tags=tags,
        context=context or None,
    )


@mcp.tool()
def delete_task(task_id: str) -> Dict[str, Any]:
    """Delete a task, its subtasks and every dependency touching them."""
    return _manager().delete_task(task_id)


@mcp.tool()
def start_task(task_id: str, notes: Optional[str] = None) -> Dict[str, Any]:
    """STEP 4: Start a task. Backlog tasks pass through ready on the way to in_progress.
    Call check_can_start first; unresolved blockers are reported as a warning."""
    return _manager().start_task(task_id, notes)


@mcp.tool()
def submit_for_review(task_id: str) -> Dict[str, Any]:
    """STEP 5: Move an in-progress task to review."""
    return _manager().submit_for_review(task_id)


@mcp.tool()
def complete_task(
    task_id: str,
    summary: str,
    actual_hours: Optional[float] = None,
    learnings: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 6: Complete a task that is in review, recording a summary of the work."""
    return _manager().complete_task(task_id, summary, actual_hours, learnings)


@mcp.tool()
def block_task(task_id: str, reason: str) -> Dict[str, Any]:
    """Mark an in-progress task as blocked and record why."""
    return _manager().block_task(task_id, reason)


@mcp.tool()
def unblock_task(task_id: str) -> Dict[str, Any]:
    """Resume a blocked task."""
    return _manager().unblock_task(task_id)


@mcp.tool()
def cancel_task(task_id: str) -> Dict[str, Any]:
    """Cancel a task that has not finished."""
    return _manager().cancel_task(task_id)


@mcp.tool()
def transition_task(task_id: str, status: str) -> Dict[str, Any]:
    """Move a task to any status its current status allows."""
    return _manager().transition_task(task_id, status)


@mcp.tool()
def get_available_transitions(task_id: str) -> Dict[str, Any]:
    """List the statuses a task can move to next."""
    return _manager().get_available_transitions(task_id)


@mcp.tool()
def find_tasks(
    plan_id: str,
    status: Optional[List[str]] = None,
    priority: Optional[List[str]] = None,
    assignee: Optional[str] = None,
) -> Dict[str, Any]:
    """Find tasks in a plan, optionally filtered by status, priority and assignee."""
    return _manager().find_tasks(plan_id, status, priority, assignee)


@mcp.tool()
def get_progress(plan_id: str) -> Dict[str, Any]:
    """Summarize task progress for a plan and suggest what to start next."""
    return _manager().get_progress(plan_id)


@mcp.tool()
def get_blocked(plan_id: str) -> Dict[str, Any]:
    """List the blocked tasks of a plan with their notes."""
    return _manager().get_blocked(plan_id)


@mcp.tool()
def search_tasks(
    query: Optional[str] = None,
    plan_id: Optional[str] = None,
    status: Optional[List[str]] = None,
    priority: Optional[List[str]] = None,
    assignee: Optional[str] = None,
    due_before: Optional[str] = None,
    due_after: Optional[str] = None,
    include_completed: bool = False,
    tags: Optional[List[str]] = None,
    limit: int = 50,
) -> Dict[str, Any]:
    """Search tasks across all plans by text in the title or description, with optional filters.
    Completed and cancelled tasks are skipped unless include_completed is set or a status is given.
    Tasks must carry every tag listed. At most 200 results are returned."""
    return _manager().search_tasks(
        query, plan_id, status, priority, assignee, due_before, due_after, include_completed, tags, limit
    )


@mcp.tool()
def bulk_update_status(task_ids: List[str], status: str) -> Dict[str, Any]:
    """Move several tasks to one status. Tasks for which the move is not allowed are reported as failed."""
    return _manager().bulk_update_status(task_ids, status)


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


@mcp.tool()
def add_tag(task_id: str, tag: str) -> Dict[str, Any]:
    """Add a tag to a task. Tags are stored lower-case."""
    return _manager().add_tag(task_id, tag)


@mcp.tool()
def remove_tag(task_id: str, tag: str) -> Dict[str, Any]:
    """Remove a tag from a task."""
    return _manager().remove_tag(task_id, tag)


@mcp.tool()
def set_tags(task_id: str, tags: List[str]) -> Dict[str, Any]:
    """Replace all tags of a task."""
    return _manager().set_tags(task_id, tags)


@mcp.tool()
def get_tags(plan_id: str) -> Dict[str, Any]:
    """List every tag used in a plan."""
    return _manager().get_tags(plan_id)


@mcp.tool()
def find_by_tag(plan_id: str, tag: str) -> Dict[str, Any]:
    """Find the tasks of a plan that carry a tag."""
    return _manager().find_by_tag(plan_id, tag)


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


@mcp.tool()
def add_comment(task_id: str, content: str, author: Optional[str] = None) -> Dict[str, Any]:
    """Add a comment to a task."""
    return _manager().add_comment(task_id, content, author)


@mcp.tool()
def list_comments(task_id: str, order: str = "asc") -> Dict[str, Any]:
    """List a task's comments, oldest first ("asc") or newest first ("desc")."""
    return _manager().list_comments(task_id, order)


@mcp.tool()
def update_comment(comment_id: str, content: str) -> Dict[str, Any]:
    """Replace the content of a comment."""
    return _manager().update_comment(comment_id, content)


@mcp.tool()
def delete_comment(comment_id: str) -> Dict[str, Any]:
    """Delete a comment."""
    return _manager().delete_comment(comment_id)


@mcp.tool()
def get_recent_comments(plan_id: str, limit: int = 20) -> Dict[str, Any]:
    """List the newest comments across all tasks of a plan."""
    return _manager().get_recent_comments(plan_id, limit)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


@mcp.tool()
def add_dependency(task_id: str, depends_on_task_id: str, dependency_type: str = "blocks") -> Dict[str, Any]:
    """Make task_id wait on depends_on_task_id. Both tasks must be in the same plan
    and the new edge must not create a circular dependency."""
    return _manager().add_dependency(task_id, depends_on_task_id, dependency_type)


@mcp.tool()
def link_entities(
    source_type: str,
    source_id: str,
    target_type: str,
    target_id: str,
    dependency_type: str = "blocks",
) -> Dict[str, Any]:
    """Link any two entities of one plan (plan, goal, objective, milestone, task); the source blocks the target."""
    return _manager().link_entities(source_type, source_id, target_type, target_id, dependency_type)


@mcp.tool()
def remove_dependency(task_id: str, depends_on_task_id: str) -> Dict[str, Any]:
    """Remove the dependency of task_id on depends_on_task_id."""
    return _manager().remove_dependency(task_id, depends_on_task_id)


@mcp.tool()
def get_dependencies(task_id: str) -> Dict[str, Any]:
    """Show what a task waits on and what waits on it."""
    return _manager().get_dependencies(task_id)


@mcp.tool()
def get_dependency_chain(
    task_id: str,
    direction: str = "upstream",
    max_depth: Optional[int] = None,
) -> Dict[str, Any]:
    """Walk transitive dependencies: upstream (what the task depends on) or downstream (what depends on it)."""
    return _manager().get_dependency_chain(task_id, direction, max_depth)


@mcp.tool()
def check_can_start(task_id: str) -> Dict[str, Any]:
    """Check whether every blocker of a task is completed or cancelled."""
    return _manager().check_can_start(task_id)


if __name__ == "__main__":
    config = PlanTrackConfig.from_env()
    setup_logging(config.log_level, config.log_file)
    logger.info(f"Starting PlanTrack server with database {config.db_path}")
    mcp.run(transport="stdio")
