"""Unit tests for the entity store."""

import pytest

from plantrack.database import Database
from plantrack.errors import ValidationError
from plantrack.models import (
    EntityKind,
    EntityRef,
    MilestoneStatus,
    PlanStatus,
    Priority,
    TaskContext,
    TaskStatus,
)
from plantrack.repositories import MAX_SEARCH_LIMIT, EntityStore


@pytest.fixture
def store():
    db = Database()
    yield EntityStore(db)
    db.close()


@pytest.fixture
def plan(store):
    return store.create_plan("Release 1.0", "/tmp/project", "First release")


class TestCreateAndFind:
    """Test cases for entity creation and point lookups."""

    def test_create_plan(self, store, plan):
        """Test that a created plan loads back in draft."""
        found = store.find_by_id(EntityKind.PLAN, plan.id)

        assert found == plan
        assert found.status == PlanStatus.DRAFT
        assert found.project_path == "/tmp/project"

    def test_find_missing_returns_none(self, store):
        """Test that lookups of missing entities return None."""
        assert store.find_by_id("task", "nope") is None
        assert store.find_ref(EntityRef(EntityKind.GOAL, "nope")) is None

    def test_unknown_kind_raises(self, store):
        """Test that an unknown entity kind is rejected."""
        with pytest.raises(ValidationError, match="entity kind"):
            store.find_by_id("epic", "x")

    def test_empty_names_rejected(self, store, plan):
        """Test that blank plan names and task titles are rejected."""
        with pytest.raises(ValidationError):
            store.create_plan("   ", "/tmp")
        with pytest.raises(ValidationError):
            store.create_task(plan.id, "")

    def test_hierarchy(self, store, plan):
        """Test creating a goal, objective and milestone."""
        goal = store.create_goal(plan.id, "Ship it", priority="high")
        objective = store.create_objective(goal.id, "Pass QA")
        milestone = store.create_milestone(objective.id, "Beta", due_date="2026-12-01")

        assert store.find_by_id(EntityKind.GOAL, goal.id).priority == Priority.HIGH
        assert store.find_by_id(EntityKind.OBJECTIVE, objective.id).goal_id == goal.id
        assert store.find_by_id(EntityKind.MILESTONE, milestone.id).due_date == "2026-12-01"

    def test_task_sequence_order_increments_per_plan(self, store, plan):
        """Test that task sequence numbers count up within each plan."""
        other = store.create_plan("Other", "/tmp")
        first = store.create_task(plan.id, "First")
        second = store.create_task(plan.id, "Second")
        elsewhere = store.create_task(other.id, "Elsewhere")

        assert (first.sequence_order, second.sequence_order) == (0, 1)
        assert elsewhere.sequence_order == 0

    def test_tags_are_normalized(self, store, plan):
        """Test that tags are stripped, lower-cased and de-duplicated."""
        task = store.create_task(plan.id, "Tagged", tags=[" Backend", "backend", "API"])

        assert store.find_by_id(EntityKind.TASK, task.id).tags == ["backend", "api"]

    def test_negative_estimate_rejected(self, store, plan):
        """Test that a negative estimate is rejected on creation."""
        with pytest.raises(ValidationError):
            store.create_task(plan.id, "Bad", estimated_hours=-1)


class TestUpdate:
    """Test cases for partial updates."""

    def test_update_missing_returns_none(self, store):
        """Test that updating a missing entity returns None."""
        assert store.update(EntityKind.TASK, "nope", {"title": "x"}) is None

    def test_unknown_field_rejected(self, store, plan):
        """Test that fields outside the updatable set are rejected."""
        task = store.create_task(plan.id, "Task")

        with pytest.raises(ValidationError, match="Cannot update task fields"):
            store.update(EntityKind.TASK, task.id, {"plan_id": "other"})

    def test_invalid_status_rejected(self, store, plan):
        """Test that an unknown status value is rejected."""
        task = store.create_task(plan.id, "Task")

        with pytest.raises(ValidationError):
            store.update(EntityKind.TASK, task.id, {"status": "done"})

    def test_negative_hours_rejected(self, store, plan):
        """Test that updates cannot set negative estimated or actual hours."""
        task = store.create_task(plan.id, "Task", estimated_hours=4)

        with pytest.raises(ValidationError, match="Estimated hours cannot be negative"):
            store.update(EntityKind.TASK, task.id, {"estimated_hours": -1})
        with pytest.raises(ValidationError, match="Actual hours cannot be negative"):
            store.update(EntityKind.TASK, task.id, {"actual_hours": -0.5})

        loaded = store.find_by_id(EntityKind.TASK, task.id)
        assert loaded.estimated_hours == 4
        assert loaded.actual_hours is None

    def test_zero_hours_allowed(self, store, plan):
        """Test that zero hours are accepted."""
        task = store.create_task(plan.id, "Task")

        updated = store.update(EntityKind.TASK, task.id, {"actual_hours": 0})

        assert updated.actual_hours == 0

    def test_started_at_is_write_once(self, store, plan):
        """Test that re-entering in_progress keeps the first start timestamp."""
        task = store.create_task(plan.id, "Task")

        started = store.update(EntityKind.TASK, task.id, {"status": TaskStatus.IN_PROGRESS})
        assert started.started_at is not None

        store.update(EntityKind.TASK, task.id, {"status": TaskStatus.BLOCKED})
        resumed = store.update(EntityKind.TASK, task.id, {"status": TaskStatus.IN_PROGRESS})

        assert resumed.started_at == started.started_at

    def test_completed_at_set_on_completion(self, store, plan):
        """Test that completing a task stamps completed_at only."""
        task = store.create_task(plan.id, "Task")
        assert task.completed_at is None

        done = store.update(EntityKind.TASK, task.id, {"status": "completed"})

        assert done.completed_at is not None
        assert done.started_at is None

    def test_milestone_completed_at(self, store, plan):
        """Test that completing a milestone stamps completed_at."""
        goal = store.create_goal(plan.id, "Goal")
        objective = store.create_objective(goal.id, "Objective")
        milestone = store.create_milestone(objective.id, "Milestone")

        updated = store.update(EntityKind.MILESTONE, milestone.id, {"status": MilestoneStatus.COMPLETED})

        assert updated.completed_at is not None

    def test_context_dict_merges(self, store, plan):
        """Test that a context dict is merged into the stored context."""
        task = store.create_task(plan.id, "Task")
        store.update(EntityKind.TASK, task.id, {"context": {"acceptance_criteria": ["fast"]}})

        updated = store.update(EntityKind.TASK, task.id, {"context": {"notes": "hello"}})

        assert updated.context.acceptance_criteria == ["fast"]
        assert updated.context.notes == "hello"

    def test_context_object_replaces(self, store, plan):
        """Test that a TaskContext replaces the stored context."""
        task = store.create_task(plan.id, "Task")
        store.update(EntityKind.TASK, task.id, {"context": {"notes": "old"}})

        updated = store.update(EntityKind.TASK, task.id, {"context": TaskContext(files_involved=["a.py"])})

        assert updated.context.notes == ""
        assert updated.context.files_involved == ["a.py"]

    def test_malformed_context_loads_empty(self, store, plan):
        """Test that unparseable context JSON loads as an empty context."""
        task = store.create_task(plan.id, "Task")
        store.db.execute("UPDATE tasks SET context = ? WHERE id = ?", ("{not json", task.id))

        loaded = store.find_by_id(EntityKind.TASK, task.id)

        assert loaded.context == TaskContext()

    def test_non_object_context_loads_empty(self, store, plan):
        """Test that a context stored as a JSON list loads as an empty context."""
        task = store.create_task(plan.id, "Task")
        store.db.execute("UPDATE tasks SET context = ? WHERE id = ?", ('["x"]', task.id))

        loaded = store.find_by_id(EntityKind.TASK, task.id)

        assert loaded.context == TaskContext()


class TestQueries:
    """Test cases for task queries and plan scope helpers."""

    def test_find_tasks_by_plan_filters(self, store, plan):
        """Test the status, priority and assignee filters."""
        a = store.create_task(plan.id, "A", priority="high", assignee="sam")
        b = store.create_task(plan.id, "B", priority="low")
        store.update(EntityKind.TASK, b.id, {"status": "ready"})

        assert [t.id for t in store.find_tasks_by_plan(plan.id)] == [a.id, b.id]
        assert [t.id for t in store.find_tasks_by_plan(plan.id, statuses=["ready"])] == [b.id]
        assert [t.id for t in store.find_tasks_by_plan(plan.id, priorities=["high"])] == [a.id]
        assert [t.id for t in store.find_tasks_by_plan(plan.id, assignee="sam")] == [a.id]

    def test_count_tasks_by_status(self, store, plan):
        """Test that every status is counted, including zeros."""
        store.create_task(plan.id, "A")
        b = store.create_task(plan.id, "B")
        store.update(EntityKind.TASK, b.id, {"status": "ready"})

        counts = store.count_tasks_by_status(plan.id)

        assert counts[TaskStatus.BACKLOG] == 1
        assert counts[TaskStatus.READY] == 1
        assert counts[TaskStatus.COMPLETED] == 0

    def test_find_subtask_ids(self, store, plan):
        """Test collecting subtasks at every depth."""
        parent = store.create_task(plan.id, "Parent")
        child = store.create_task(plan.id, "Child", parent_task_id=parent.id)
        grandchild = store.create_task(plan.id, "Grandchild", parent_task_id=child.id)

        assert store.find_subtask_ids(parent.id) == [child.id, grandchild.id]
        assert store.find_subtask_ids(grandchild.id) == []

    def test_plan_id_of_walks_the_hierarchy(self, store, plan):
        """Test resolving the owning plan of nested entities."""
        goal = store.create_goal(plan.id, "Goal")
        objective = store.create_objective(goal.id, "Objective")
        milestone = store.create_milestone(objective.id, "Milestone")

        assert store.plan_id_of(plan.ref) == plan.id
        assert store.plan_id_of(objective.ref) == plan.id
        assert store.plan_id_of(milestone.ref) == plan.id
        assert store.plan_id_of(EntityRef(EntityKind.TASK, "missing")) is None

    def test_refs_in_plan(self, store, plan):
        """Test listing every entity a plan owns."""
        goal = store.create_goal(plan.id, "Goal")
        objective = store.create_objective(goal.id, "Objective")
        task = store.create_task(plan.id, "Task")
        store.create_task(store.create_plan("Other", "/tmp").id, "Not mine")

        refs = store.refs_in_plan(plan.id)

        assert set(refs) == {plan.ref, goal.ref, objective.ref, task.ref}

    def test_delete_cascades_children(self, store, plan):
        """Test that deleting a plan deletes its tasks."""
        task = store.create_task(plan.id, "Task")

        assert store.delete(EntityKind.PLAN, plan.id)
        assert store.find_by_id(EntityKind.TASK, task.id) is None
        assert not store.delete(EntityKind.PLAN, plan.id)

    def test_list_plans(self, store, plan):
        """Test listing plans in creation order, optionally by status."""
        other = store.create_plan("Other", "/tmp")
        store.update(EntityKind.PLAN, other.id, {"status": "active"})

        assert [p.id for p in store.list_plans()] == [plan.id, other.id]
        assert [p.id for p in store.list_plans("active")] == [other.id]


class TestTagQueries:
    """Test cases for tag lookups."""

    def test_find_tasks_by_tag(self, store, plan):
        """Test finding tasks by a tag regardless of case."""
        a = store.create_task(plan.id, "A", tags=["api"])
        store.create_task(plan.id, "B", tags=["ui"])

        assert [t.id for t in store.find_tasks_by_tag(plan.id, " API ")] == [a.id]
        assert store.find_tasks_by_tag(plan.id, "  ") == []

    def test_all_tags(self, store, plan):
        """Test listing the distinct tags of a plan, sorted."""
        store.create_task(plan.id, "A", tags=["ui", "api"])
        store.create_task(plan.id, "B", tags=["api", "db"])
        store.create_task(store.create_plan("Other", "/tmp").id, "C", tags=["other"])

        assert store.all_tags(plan.id) == ["api", "db", "ui"]


class TestSearch:
    """Test cases for cross-plan search."""

    def test_query_is_case_insensitive_substring(self, store, plan):
        """Test that the text query matches anywhere in the title."""
        a = store.create_task(plan.id, "Fix LOGIN redirect")
        store.create_task(plan.id, "Other")

        assert [t.id for t in store.search_tasks(query="login")] == [a.id]

    def test_without_filters_skips_finished_tasks(self, store, plan):
        """Test that completed tasks are skipped unless requested."""
        open_task = store.create_task(plan.id, "Open")
        done = store.create_task(plan.id, "Done")
        store.update(EntityKind.TASK, done.id, {"status": "completed"})

        assert [t.id for t in store.search_tasks()] == [open_task.id]
        assert {t.id for t in store.search_tasks(include_completed=True)} == {open_task.id, done.id}

    def test_newest_first_within_the_same_rank(self, store, plan):
        """Test that equal-priority undated tasks come newest first."""
        first = store.create_task(plan.id, "First")
        second = store.create_task(plan.id, "Second")

        assert [t.id for t in store.search_tasks(plan_id=plan.id)] == [second.id, first.id]

    def test_requires_every_tag(self, store, plan):
        """Test that a task must carry all requested tags."""
        both = store.create_task(plan.id, "Both", tags=["api", "auth"])
        store.create_task(plan.id, "One", tags=["api"])

        assert [t.id for t in store.search_tasks(tags=["api", "auth"])] == [both.id]

    def test_limit_is_capped(self, store, plan):
        """Test that the limit must be positive and is capped."""
        for i in range(3):
            store.create_task(plan.id, f"Task {i}")

        assert len(store.search_tasks(limit=2)) == 2
        assert len(store.search_tasks(limit=MAX_SEARCH_LIMIT * 10)) == 3
        with pytest.raises(ValidationError):
            store.search_tasks(limit=0)

    def test_bad_filter_values(self, store):
        """Test that unknown statuses and priorities are rejected."""
        with pytest.raises(ValidationError):
            store.search_tasks(statuses=["done"])
        with pytest.raises(ValidationError):
            store.search_tasks(priorities=["urgent"])
