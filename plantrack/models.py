"""Data models for PlanTrack.

This module contains the closed enumerations and the record types used
throughout the system: entity references, dependency edges, the five
planning entities and the results returned by the lifecycle services.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

from .errors import ValidationError

E = TypeVar("E", bound=Enum)


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string with millisecond precision."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.isoformat(timespec="milliseconds") + "Z"


def parse_enum(enum_type: Type[E], value: Any, field_name: str = "value") -> E:
    """Parse ``value`` into ``enum_type``; unknown members raise ValidationError."""
    if isinstance(value, enum_type):
        return value
    if isinstance(value, str):
        for member in enum_type:
            if member.value == value:
                return member
    allowed = [member.value for member in enum_type]
    raise ValidationError(f"Invalid {field_name}: {value!r}. Allowed: {allowed}")


# ---------------------------------------------------------------------------
# Closed enumerations
# ---------------------------------------------------------------------------


class EntityKind(str, Enum):
    """Entity types that can take part in a dependency."""

    PLAN = "plan"
    GOAL = "goal"
    OBJECTIVE = "objective"
    MILESTONE = "milestone"
    TASK = "task"


class DependencyType(str, Enum):
    BLOCKS = "blocks"
    REQUIRED_BY = "required_by"
    RELATED_TO = "related_to"


class ChainDirection(str, Enum):
    """Upstream follows what an entity depends on, downstream what depends on it."""

    UPSTREAM = "upstream"
    DOWNSTREAM = "downstream"


class TaskStatus(str, Enum):
    BACKLOG = "backlog"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PlanStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class GoalStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ObjectiveStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    MISSED = "missed"
    CANCELLED = "cancelled"


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


STATUS_TYPES: Dict[EntityKind, Type[Enum]] = {
    EntityKind.PLAN: PlanStatus,
    EntityKind.GOAL: GoalStatus,
    EntityKind.OBJECTIVE: ObjectiveStatus,
    EntityKind.MILESTONE: MilestoneStatus,
    EntityKind.TASK: TaskStatus,
}

# A blocker in one of these statuses no longer prevents its dependents from starting.
RESOLVED_STATUSES: Dict[EntityKind, frozenset] = {
    EntityKind.PLAN: frozenset({PlanStatus.COMPLETED, PlanStatus.ARCHIVED}),
    EntityKind.GOAL: frozenset({GoalStatus.COMPLETED, GoalStatus.CANCELLED}),
    EntityKind.OBJECTIVE: frozenset({ObjectiveStatus.COMPLETED, ObjectiveStatus.SKIPPED}),
    EntityKind.MILESTONE: frozenset(
        {MilestoneStatus.COMPLETED, MilestoneStatus.MISSED, MilestoneStatus.CANCELLED}
    ),
    EntityKind.TASK: frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED}),
}


# ---------------------------------------------------------------------------
# Graph records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EntityRef:
    """A ``(kind, id)`` pair identifying any plan, goal, objective, milestone or task."""

    kind: EntityKind
    id: str

    @classmethod
    def of(cls, kind: EntityKind | str, entity_id: str) -> "EntityRef":
        """Build a reference, validating the kind and id."""
        if not entity_id or not str(entity_id).strip():
            raise ValidationError("Entity id cannot be empty")
        return cls(parse_enum(EntityKind, kind, "entity kind"), str(entity_id))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.kind.value, "id": self.id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityRef":
        return cls.of(data["type"], data["id"])


@dataclass(slots=True)
class Dependency:
    """A directed edge: ``source`` blocks (or relates to) ``target``."""

    id: str
    source: EntityRef
    target: EntityRef
    dependency_type: DependencyType
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_type": self.source.kind.value,
            "source_id": self.source.id,
            "target_type": self.target.kind.value,
            "target_id": self.target.id,
            "dependency_type": self.dependency_type.value,
            "created_at": self.created_at,
        }


@dataclass(slots=True)
class DependencyChainItem:
    """One entity reached by a dependency chain traversal."""

    entity: EntityRef
    dependency_type: DependencyType
    depth: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity.to_dict(),
            "dependency_type": self.dependency_type.value,
            "depth": self.depth,
        }


# ---------------------------------------------------------------------------
# Planning entities
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class TaskContext:
    """Free-form context preserved for a task."""

    acceptance_criteria: List[str] = field(default_factory=list)
    notes: str = ""
    files_involved: List[str] = field(default_factory=list)
    session_history: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "acceptance_criteria": list(self.acceptance_criteria),
            "notes": self.notes,
            "files_involved": list(self.files_involved),
            "session_history": list(self.session_history),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TaskContext":
        """Create from dictionary representation; missing keys take defaults.

        Anything other than a mapping (a stray JSON list or scalar) loads as
        an empty context.
        """
        if not isinstance(data, Mapping):
            data = {}
        return cls(
            acceptance_criteria=list(data.get("acceptance_criteria", [])),
            notes=data.get("notes", "") or "",
            files_involved=list(data.get("files_involved", [])),
            session_history=list(data.get("session_history", [])),
        )

    def with_note(self, note: str) -> str:
        """Return the notes log with ``note`` appended as a new paragraph."""
        if not self.notes:
            return note
        return f"{self.notes}\n\n{note}"


@dataclass(slots=True)
class Plan:
    id: str
    project_path: str
    name: str
    description: str = ""
    status: PlanStatus = PlanStatus.DRAFT
    start_date: Optional[str] = None
    target_date: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def ref(self) -> EntityRef:
        return EntityRef(EntityKind.PLAN, self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_path": self.project_path,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "start_date": self.start_date,
            "target_date": self.target_date,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class Goal:
    id: str
    plan_id: str
    title: str
    description: str = ""
    parent_goal_id: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    status: GoalStatus = GoalStatus.NOT_STARTED
    target_date: Optional[str] = None
    sequence_order: int = 0
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def ref(self) -> EntityRef:
        return EntityRef(EntityKind.GOAL, self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "parent_goal_id": self.parent_goal_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "status": self.status.value,
            "target_date": self.target_date,
            "sequence_order": self.sequence_order,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class Objective:
    id: str
    goal_id: str
    title: str
    description: str = ""
    status: ObjectiveStatus = ObjectiveStatus.PENDING
    sequence_order: int = 0
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def ref(self) -> EntityRef:
        return EntityRef(EntityKind.OBJECTIVE, self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "goal_id": self.goal_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "sequence_order": self.sequence_order,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class Milestone:
    id: str
    objective_id: str
    title: str
    description: str = ""
    status: MilestoneStatus = MilestoneStatus.PENDING
    due_date: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def ref(self) -> EntityRef:
        return EntityRef(EntityKind.MILESTONE, self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "objective_id": self.objective_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "due_date": self.due_date,
            "completed_at": self.completed_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class Task:
    """Actionable work item; the only entity with an enforced lifecycle besides plans."""

    id: str
    plan_id: str
    title: str
    description: str = ""
    goal_id: Optional[str] = None
    milestone_id: Optional[str] = None
    parent_task_id: Optional[str] = None
    status: TaskStatus = TaskStatus.BACKLOG
    priority: Priority = Priority.MEDIUM
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    assignee: Optional[str] = None
    due_date: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    context: TaskContext = field(default_factory=TaskContext)
    tags: List[str] = field(default_factory=list)
    sequence_order: int = 0
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def ref(self) -> EntityRef:
        return EntityRef(EntityKind.TASK, self.id)

    def is_resolved(self) -> bool:
        """Check if the task no longer blocks its dependents."""
        return self.status in RESOLVED_STATUSES[EntityKind.TASK]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "goal_id": self.goal_id,
            "milestone_id": self.milestone_id,
            "parent_task_id": self.parent_task_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "assignee": self.assignee,
            "due_date": self.due_date,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "context": self.context.to_dict(),
            "tags": list(self.tags),
            "sequence_order": self.sequence_order,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def summary(self) -> Dict[str, Any]:
        """Short form used in dependency listings."""
        return {"id": self.id, "title": self.title, "status": self.status.value}


@dataclass(slots=True)
class Comment:
    """A free-text note attached to a task."""

    id: str
    task_id: str
    content: str
    author: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "content": self.content,
            "author": self.author,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def is_resolved(kind: EntityKind, status: Enum) -> bool:
    """Check whether an entity of ``kind`` in ``status`` has resolved."""
    return status in RESOLVED_STATUSES[kind]


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class TransitionResult:
    """Outcome of validating one status change; never persisted."""

    success: bool
    new_status: Optional[Enum] = None
    error: Optional[str] = None
    code: Optional[str] = None


@dataclass(slots=True)
class TaskOperationResult:
    """Outcome of a task lifecycle operation.

    A rejected operation carries the message in ``error`` and the error code
    of the matching ``PlanTrackError`` (``E_NOT_FOUND`` or
    ``E_INVALID_TRANSITION``) in ``code``.
    """

    success: bool
    task: Optional[Task] = None
    error: Optional[str] = None
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.task is not None:
            data["task"] = self.task.to_dict()
        if self.error is not None:
            data["error"] = self.error
        if self.code is not None:
            data["code"] = self.code
        return data


@dataclass(slots=True)
class PlanOperationResult:
    success: bool
    plan: Optional[Plan] = None
    error: Optional[str] = None
    trigger: Optional[str] = None
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.plan is not None:
            data["plan"] = self.plan.to_dict()
        if self.trigger is not None:
            data["trigger"] = self.trigger
        if self.error is not None:
            data["error"] = self.error
        if self.code is not None:
            data["code"] = self.code
        return data


@dataclass(slots=True)
class ProgressStats:
    """Task counts for a plan."""

    total: int = 0
    completed: int = 0
    in_progress: int = 0
    review: int = 0
    blocked: int = 0
    ready: int = 0
    backlog: int = 0
    cancelled: int = 0

    @property
    def percent_complete(self) -> float:
        if self.total == 0:
            return 0.0
        return (self.completed / self.total) * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "in_progress": self.in_progress,
            "review": self.review,
            "blocked": self.blocked,
            "ready": self.ready,
            "backlog": self.backlog,
            "cancelled": self.cancelled,
            "percent_complete": self.percent_complete,
        }
