"""PlanTrack - lifecycle state machines and dependency graph for project planning."""

from .config import PlanTrackConfig
from .database import Database
from .dependencies import DependencyGraph
from .plan_service import PlanService
from .repositories import EntityStore
from .task_service import TaskService
from .workflow import PlanningManager

__all__ = [
    "PlanningManager",
    "TaskService",
    "PlanService",
    "DependencyGraph",
    "EntityStore",
    "Database",
    "PlanTrackConfig",
]
