"""Entity store: point lookups and updates of planning entities by ``(kind, id)``."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from itertools import islice
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .database import Database
from .errors import ValidationError
from .models import (
    STATUS_TYPES,
    EntityKind,
    EntityRef,
    Goal,
    GoalStatus,
    Milestone,
    MilestoneStatus,
    Objective,
    ObjectiveStatus,
    Plan,
    PlanStatus,
    Priority,
    Task,
    TaskContext,
    TaskStatus,
    parse_enum,
    utc_now,
)

logger = logging.getLogger("plantrack.repositories")

Entity = Union[Plan, Goal, Objective, Milestone, Task]

TABLES: Dict[EntityKind, str] = {
    EntityKind.PLAN: "plans",
    EntityKind.GOAL: "goals",
    EntityKind.OBJECTIVE: "objectives",
    EntityKind.MILESTONE: "milestones",
    EntityKind.TASK: "tasks",
}

UPDATABLE_FIELDS: Dict[EntityKind, frozenset] = {
    EntityKind.PLAN: frozenset({"name", "description", "status", "start_date", "target_date"}),
    EntityKind.GOAL: frozenset({"title", "description", "priority", "status", "target_date"}),
    EntityKind.OBJECTIVE: frozenset({"title", "description", "status"}),
    EntityKind.MILESTONE: frozenset({"title", "description", "status", "due_date"}),
    EntityKind.TASK: frozenset({
        "title",
        "description",
        "status",
        "priority",
        "estimated_hours",
        "actual_hours",
        "assignee",
        "due_date",
        "context",
        "tags",
    }),
}


HOUR_FIELDS = frozenset({"estimated_hours", "actual_hours"})

DEFAULT_SEARCH_LIMIT = 50
MAX_SEARCH_LIMIT = 200


def generate_id() -> str:
    return str(uuid.uuid4())


def _parse_json(raw: Optional[str], default: Any) -> Any:
    """Decode a JSON column; malformed or empty values load as ``default``."""
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Discarding malformed JSON column value")
        return default


def _row_to_plan(row: sqlite3.Row) -> Plan:
    return Plan(
        id=row["id"],
        project_path=row["project_path"],
        name=row["name"],
        description=row["description"],
        status=PlanStatus(row["status"]),
        start_date=row["start_date"],
        target_date=row["target_date"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_goal(row: sqlite3.Row) -> Goal:
    return Goal(
        id=row["id"],
        plan_id=row["plan_id"],
        parent_goal_id=row["parent_goal_id"],
        title=row["title"],
        description=row["description"],
        priority=Priority(row["priority"]),
        status=GoalStatus(row["status"]),
        target_date=row["target_date"],
        sequence_order=row["sequence_order"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_objective(row: sqlite3.Row) -> Objective:
    return Objective(
        id=row["id"],
        goal_id=row["goal_id"],
        title=row["title"],
        description=row["description"],
        status=ObjectiveStatus(row["status"]),
        sequence_order=row["sequence_order"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_milestone(row: sqlite3.Row) -> Milestone:
    return Milestone(
        id=row["id"],
        objective_id=row["objective_id"],
        title=row["title"],
        description=row["description"],
        status=MilestoneStatus(row["status"]),
        due_date=row["due_date"],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_task(row: sqlite3.Row) -> Task:
    tags = _parse_json(row["tags"], [])
    return Task(
        id=row["id"],
        plan_id=row["plan_id"],
        goal_id=row["goal_id"],
        milestone_id=row["milestone_id"],
        parent_task_id=row["parent_task_id"],
        title=row["title"],
        description=row["description"],
        status=TaskStatus(row["status"]),
        priority=Priority(row["priority"]),
        estimated_hours=row["estimated_hours"],
        actual_hours=row["actual_hours"],
        assignee=row["assignee"],
        due_date=row["due_date"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        context=TaskContext.from_dict(_parse_json(row["context"], {})),
        tags=tags if isinstance(tags, list) else [],
        sequence_order=row["sequence_order"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


ROW_MAPPERS: Dict[EntityKind, Callable[[sqlite3.Row], Entity]] = {
    EntityKind.PLAN: _row_to_plan,
    EntityKind.GOAL: _row_to_goal,
    EntityKind.OBJECTIVE: _row_to_objective,
    EntityKind.MILESTONE: _row_to_milestone,
    EntityKind.TASK: _row_to_task,
}


class EntityStore:
    """Reads and writes the five planning entity tables.

    The store enforces no lifecycle rules of its own except the write-once
    task timestamps: ``started_at`` is stamped the first time a task is
    written with ``in_progress`` and ``completed_at`` the first time it is
    written with ``completed``. Neither is ever cleared.
    """

    def __init__(self, db: Database):
        self.db = db

    # ------------------------------------------------------------------
    # Generic access
    # ------------------------------------------------------------------

    def find_by_id(self, kind: EntityKind | str, entity_id: str) -> Optional[Entity]:
        kind = parse_enum(EntityKind, kind, "entity kind")
        row = self.db.query_one(f"SELECT * FROM {TABLES[kind]} WHERE id = ?", (entity_id,))
        if row is None:
            return None
        return ROW_MAPPERS[kind](row)

    def find_ref(self, ref: EntityRef) -> Optional[Entity]:
        return self.find_by_id(ref.kind, ref.id)

    def exists(self, kind: EntityKind | str, entity_id: str) -> bool:
        kind = parse_enum(EntityKind, kind, "entity kind")
        row = self.db.query_one(f"SELECT 1 FROM {TABLES[kind]} WHERE id = ?", (entity_id,))
        return row is not None

    def update(self, kind: EntityKind | str, entity_id: str, fields: Mapping[str, Any]) -> Optional[Entity]:
        """Apply a partial update; returns the updated entity or None when it does not exist."""
        kind = parse_enum(EntityKind, kind, "entity kind")
        unknown = set(fields) - UPDATABLE_FIELDS[kind]
        if unknown:
            raise ValidationError(f"Cannot update {kind.value} fields: {sorted(unknown)}")

        existing = self.find_by_id(kind, entity_id)
        if existing is None:
            return None

        timestamp = utc_now()
        values: Dict[str, Any] = {}
        for name, value in fields.items():
            if name in HOUR_FIELDS:
                _require_non_negative(name, value)
                values[name] = value
            elif name == "status":
                values[name] = parse_enum(STATUS_TYPES[kind], value, "status").value
            elif name == "priority":
                values[name] = parse_enum(Priority, value, "priority").value
            elif name == "context":
                values[name] = json.dumps(self._merge_context(existing, value).to_dict())
            elif name == "tags":
                values[name] = json.dumps(_normalize_tags(value))
            else:
                values[name] = value

        status = values.get("status")
        if kind is EntityKind.TASK:
            if status == TaskStatus.IN_PROGRESS.value and not existing.started_at:
                values["started_at"] = timestamp
            if status == TaskStatus.COMPLETED.value and not existing.completed_at:
                values["completed_at"] = timestamp
        elif kind is EntityKind.MILESTONE:
            if status == MilestoneStatus.COMPLETED.value and not existing.completed_at:
                values["completed_at"] = timestamp

        values["updated_at"] = timestamp
        assignments = ", ".join(f"{column} = ?" for column in values)
        self.db.execute(
            f"UPDATE {TABLES[kind]} SET {assignments} WHERE id = ?",
            [*values.values(), entity_id],
        )
        return self.find_by_id(kind, entity_id)

    def delete(self, kind: EntityKind | str, entity_id: str) -> bool:
        kind = parse_enum(EntityKind, kind, "entity kind")
        cursor = self.db.execute(f"DELETE FROM {TABLES[kind]} WHERE id = ?", (entity_id,))
        return cursor.rowcount > 0

    def plan_id_of(self, ref: EntityRef) -> Optional[str]:
        """Resolve the plan an entity belongs to, walking up the hierarchy."""
        entity = self.find_ref(ref)
        if entity is None:
            return None
        if isinstance(entity, Plan):
            return entity.id
        if isinstance(entity, (Goal, Task)):
            return entity.plan_id
        if isinstance(entity, Objective):
            return self.plan_id_of(EntityRef(EntityKind.GOAL, entity.goal_id))
        return self.plan_id_of(EntityRef(EntityKind.OBJECTIVE, entity.objective_id))

    def refs_in_plan(self, plan_id: str) -> List[EntityRef]:
        """Every entity reference owned by a plan, the plan itself included."""
        refs = [EntityRef(EntityKind.PLAN, plan_id)]
        queries = (
            (EntityKind.GOAL, "SELECT id FROM goals WHERE plan_id = ?"),
            (
                EntityKind.OBJECTIVE,
                "SELECT o.id FROM objectives o JOIN goals g ON o.goal_id = g.id WHERE g.plan_id = ?",
            ),
            (
                EntityKind.MILESTONE,
                "SELECT m.id FROM milestones m JOIN objectives o ON m.objective_id = o.id "
                "JOIN goals g ON o.goal_id = g.id WHERE g.plan_id = ?",
            ),
            (EntityKind.TASK, "SELECT id FROM tasks WHERE plan_id = ?"),
        )
        for kind, sql in queries:
            refs.extend(EntityRef(kind, row["id"]) for row in self.db.query_all(sql, (plan_id,)))
        return refs

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_plan(
        self,
        name: str,
        project_path: str,
        description: str = "",
        start_date: Optional[str] = None,
        target_date: Optional[str] = None,
    ) -> Plan:
        if not name or not name.strip():
            raise ValidationError("Plan name cannot be empty")
        plan = Plan(
            id=generate_id(),
            project_path=project_path,
            name=name.strip(),
            description=description or "",
            start_date=start_date,
            target_date=target_date,
        )
        self.db.execute(
            """
            INSERT INTO plans (id, project_path, name, description, status,
                               start_date, target_date, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                plan.id,
                plan.project_path,
                plan.name,
                plan.description,
                plan.status.value,
                plan.start_date,
                plan.target_date,
                plan.created_at,
                plan.updated_at,
            ),
        )
        return plan

    def create_goal(
        self,
        plan_id: str,
        title: str,
        description: str = "",
        priority: Priority | str = Priority.MEDIUM,
        parent_goal_id: Optional[str] = None,
        target_date: Optional[str] = None,
    ) -> Goal:
        _require_title(title)
        goal = Goal(
            id=generate_id(),
            plan_id=plan_id,
            title=title.strip(),
            description=description or "",
            parent_goal_id=parent_goal_id,
            priority=parse_enum(Priority, priority, "priority"),
            target_date=target_date,
            sequence_order=self._next_sequence("goals", "plan_id", plan_id),
        )
        self.db.execute(
            """
            INSERT INTO goals (id, plan_id, parent_goal_id, title, description, priority,
                               status, target_date, sequence_order, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                goal.id,
                goal.plan_id,
                goal.parent_goal_id,
                goal.title,
                goal.description,
                goal.priority.value,
                goal.status.value,
                goal.target_date,
                goal.sequence_order,
                goal.created_at,
                goal.updated_at,
            ),
        )
        return goal

    def create_objective(self, goal_id: str, title: str, description: str = "") -> Objective:
        _require_title(title)
        objective = Objective(
            id=generate_id(),
            goal_id=goal_id,
            title=title.strip(),
            description=description or "",
            sequence_order=self._next_sequence("objectives", "goal_id", goal_id),
        )
        self.db.execute(
            """
            INSERT INTO objectives (id, goal_id, title, description, status,
                                    sequence_order, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                objective.id,
                objective.goal_id,
                objective.title,
                objective.description,
                objective.status.value,
                objective.sequence_order,
                objective.created_at,
                objective.updated_at,
            ),
        )
        return objective

    def create_milestone(
        self,
        objective_id: str,
        title: str,
        description: str = "",
        due_date: Optional[str] = None,
    ) -> Milestone:
        _require_title(title)
        milestone = Milestone(
            id=generate_id(),
            objective_id=objective_id,
            title=title.strip(),
            description=description or "",
            due_date=due_date,
        )
        self.db.execute(
            """
            INSERT INTO milestones (id, objective_id, title, description, status,
                                    due_date, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                milestone.id,
                milestone.objective_id,
                milestone.title,
                milestone.description,
                milestone.status.value,
                milestone.due_date,
                milestone.created_at,
                milestone.updated_at,
            ),
        )
        return milestone

    def create_task(
        self,
        plan_id: str,
        title: str,
        description: str = "",
        goal_id: Optional[str] = None,
        milestone_id: Optional[str] = None,
        parent_task_id: Optional[str] = None,
        priority: Priority | str = Priority.MEDIUM,
        estimated_hours: Optional[float] = None,
        assignee: Optional[str] = None,
        due_date: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Task:
        _require_title(title)
        _require_non_negative("estimated_hours", estimated_hours)
        task = Task(
            id=generate_id(),
            plan_id=plan_id,
            title=title.strip(),
            description=description or "",
            goal_id=goal_id,
            milestone_id=milestone_id,
            parent_task_id=parent_task_id,
            priority=parse_enum(Priority, priority, "priority"),
            estimated_hours=estimated_hours,
            assignee=assignee,
            due_date=due_date,
            tags=_normalize_tags(tags or []),
            sequence_order=self._next_sequence("tasks", "plan_id", plan_id),
        )
        self.db.execute(
            """
            INSERT INTO tasks (id, plan_id, goal_id, milestone_id, parent_task_id, title,
                               description, status, priority, estimated_hours, assignee,
                               due_date, context, tags, sequence_order, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.id,
                task.plan_id,
                task.goal_id,
                task.milestone_id,
                task.parent_task_id,
                task.title,
                task.description,
                task.status.value,
                task.priority.value,
                task.estimated_hours,
                task.assignee,
                task.due_date,
                json.dumps(task.context.to_dict()),
                json.dumps(task.tags),
                task.sequence_order,
                task.created_at,
                task.updated_at,
            ),
        )
        return task

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_plans(self, status: Optional[PlanStatus | str] = None) -> List[Plan]:
        if status is None:
            rows = self.db.query_all("SELECT * FROM plans ORDER BY created_at ASC, rowid ASC")
        else:
            value = parse_enum(PlanStatus, status, "plan status").value
            rows = self.db.query_all(
                "SELECT * FROM plans WHERE status = ? ORDER BY created_at ASC, rowid ASC", (value,)
            )
        return [_row_to_plan(row) for row in rows]

    def find_tasks_by_plan(
        self,
        plan_id: str,
        statuses: Optional[Sequence[TaskStatus | str]] = None,
        priorities: Optional[Sequence[Priority | str]] = None,
        assignee: Optional[str] = None,
    ) -> List[Task]:
        sql = "SELECT * FROM tasks WHERE plan_id = ?"
        params: List[Any] = [plan_id]

        if statuses:
            values = [parse_enum(TaskStatus, s, "status").value for s in statuses]
            sql += f" AND status IN ({', '.join('?' for _ in values)})"
            params.extend(values)

        if priorities:
            values = [parse_enum(Priority, p, "priority").value for p in priorities]
            sql += f" AND priority IN ({', '.join('?' for _ in values)})"
            params.extend(values)

        if assignee:
            sql += " AND assignee = ?"
            params.append(assignee)

        sql += " ORDER BY sequence_order ASC"
        return [_row_to_task(row) for row in self.db.query_all(sql, params)]

    def find_subtask_ids(self, task_id: str) -> List[str]:
        """Ids of every descendant of a task, breadth first."""
        found: List[str] = []
        frontier = [task_id]
        while frontier:
            placeholders = ", ".join("?" for _ in frontier)
            rows = self.db.query_all(
                f"SELECT id FROM tasks WHERE parent_task_id IN ({placeholders})", frontier
            )
            frontier = [row["id"] for row in rows if row["id"] not in found]
            found.extend(frontier)
        return found

    def count_tasks_by_status(self, plan_id: str) -> Dict[TaskStatus, int]:
        counts = {status: 0 for status in TaskStatus}
        rows = self.db.query_all(
            "SELECT status, COUNT(*) AS count FROM tasks WHERE plan_id = ? GROUP BY status",
            (plan_id,),
        )
        for row in rows:
            counts[TaskStatus(row["status"])] = row["count"]
        return counts

    def find_tasks_by_tag(self, plan_id: str, tag: str) -> List[Task]:
        wanted = _normalize_tags([tag])
        if not wanted:
            return []
        return [task for task in self.find_tasks_by_plan(plan_id) if wanted[0] in task.tags]

    def all_tags(self, plan_id: str) -> List[str]:
        """Every distinct tag used by a plan's tasks, sorted."""
        found = set()
        for row in self.db.query_all("SELECT tags FROM tasks WHERE plan_id = ?", (plan_id,)):
            tags = _parse_json(row["tags"], [])
            if isinstance(tags, list):
                found.update(str(tag) for tag in tags)
        return sorted(found)

    def search_tasks(
        self,
        query: Optional[str] = None,
        plan_id: Optional[str] = None,
        statuses: Optional[Sequence[TaskStatus | str]] = None,
        priorities: Optional[Sequence[Priority | str]] = None,
        assignee: Optional[str] = None,
        due_before: Optional[str] = None,
        due_after: Optional[str] = None,
        include_completed: bool = False,
        tags: Optional[Iterable[str]] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> List[Task]:
        """Search tasks across plans.

        Text matches title or description. Without an explicit status filter
        completed and cancelled tasks are left out unless ``include_completed``
        is set. A task must carry every requested tag. Results put critical
        then high priority first, then the earliest due date, then the newest
        task; ``limit`` is capped at ``MAX_SEARCH_LIMIT``.
        """
        if limit < 1:
            raise ValidationError("Search limit must be positive")

        sql = "SELECT * FROM tasks WHERE 1 = 1"
        params: List[Any] = []

        if query:
            sql += " AND (title LIKE ? OR description LIKE ?)"
            pattern = f"%{query}%"
            params.extend([pattern, pattern])

        if plan_id:
            sql += " AND plan_id = ?"
            params.append(plan_id)

        if statuses:
            values = [parse_enum(TaskStatus, s, "status").value for s in statuses]
            sql += f" AND status IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        elif not include_completed:
            sql += " AND status NOT IN (?, ?)"
            params.extend([TaskStatus.COMPLETED.value, TaskStatus.CANCELLED.value])

        if priorities:
            values = [parse_enum(Priority, p, "priority").value for p in priorities]
            sql += f" AND priority IN ({', '.join('?' for _ in values)})"
            params.extend(values)

        if assignee:
            sql += " AND assignee = ?"
            params.append(assignee)

        if due_before:
            sql += " AND due_date IS NOT NULL AND due_date <= ?"
            params.append(due_before)

        if due_after:
            sql += " AND due_date IS NOT NULL AND due_date >= ?"
            params.append(due_after)

        sql += (
            " ORDER BY priority = 'critical' DESC, priority = 'high' DESC,"
            " due_date IS NULL, due_date ASC, created_at DESC, rowid DESC"
        )
        tasks = (_row_to_task(row) for row in self.db.query_all(sql, params))
        wanted = set(_normalize_tags(tags or []))
        if wanted:
            tasks = (task for task in tasks if wanted.issubset(task.tags))
        return list(islice(tasks, min(limit, MAX_SEARCH_LIMIT)))

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _next_sequence(self, table: str, column: str, value: str) -> int:
        row = self.db.query_one(
            f"SELECT MAX(sequence_order) AS max_seq FROM {table} WHERE {column} = ?", (value,)
        )
        max_seq = row["max_seq"] if row is not None else None
        return (max_seq if max_seq is not None else -1) + 1

    @staticmethod
    def _merge_context(existing: Entity, value: Any) -> TaskContext:
        if isinstance(value, TaskContext):
            return value
        if not isinstance(value, Mapping):
            raise ValidationError("Task context must be an object")
        merged = existing.context.to_dict()
        merged.update(value)
        return TaskContext.from_dict(merged)


def _require_title(title: str) -> None:
    if not title or not title.strip():
        raise ValidationError("Title cannot be empty")


def _require_non_negative(name: str, hours: Optional[float]) -> None:
    if hours is not None and hours < 0:
        label = name.replace("_", " ").capitalize()
        raise ValidationError(f"{label} cannot be negative")


def _normalize_tags(tags: Iterable[str]) -> List[str]:
    """Lower-case, strip and de-duplicate tags, keeping first-seen order."""
    normalized: List[str] = []
    for tag in tags:
        value = str(tag).strip().lower()
        if value and value not in normalized:
            normalized.append(value)
    return normalized
