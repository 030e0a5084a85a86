"""Unit tests for PlanTrack models.

This module tests the enumerations, entity references, the task context
log and the result types.
"""

import re

import pytest

from plantrack.errors import InvalidTransition, NotFound, PlanTrackError, ValidationError
from plantrack.models import (
    Comment,
    EntityKind,
    EntityRef,
    GoalStatus,
    MilestoneStatus,
    Plan,
    PlanOperationResult,
    Priority,
    ProgressStats,
    Task,
    TaskContext,
    TaskOperationResult,
    TaskStatus,
    is_resolved,
    parse_enum,
    utc_now,
)
from plantrack.state_machine import PLAN_STATE_MACHINE, TASK_STATE_MACHINE


class TestParseEnum:
    """Test cases for parse_enum."""

    def test_parses_value(self):
        """Test parsing a member from its value."""
        assert parse_enum(Priority, "high") is Priority.HIGH

    def test_passes_members_through(self):
        """Test that enum members are returned unchanged."""
        assert parse_enum(TaskStatus, TaskStatus.REVIEW) is TaskStatus.REVIEW

    def test_rejects_unknown_value(self):
        """Test that unknown values raise ValidationError naming the field."""
        with pytest.raises(ValidationError, match="Invalid priority"):
            parse_enum(Priority, "urgent", "priority")

    def test_is_case_sensitive(self):
        """Test that values are matched case-sensitively."""
        with pytest.raises(ValidationError):
            parse_enum(TaskStatus, "READY")

    def test_validation_error_is_a_value_error(self):
        """Test that ValidationError can be caught as ValueError."""
        with pytest.raises(ValueError):
            parse_enum(EntityKind, "epic")


class TestEntityRef:
    """Test cases for EntityRef."""

    def test_identity_is_the_pair(self):
        """Test that equality and hashing use the kind and id together."""
        assert EntityRef(EntityKind.TASK, "1") == EntityRef.of("task", "1")
        assert EntityRef(EntityKind.TASK, "1") != EntityRef(EntityKind.GOAL, "1")
        assert len({EntityRef(EntityKind.TASK, "1"), EntityRef.of("task", "1")}) == 1

    def test_str_and_dict(self):
        """Test the string and dictionary forms of a reference."""
        ref = EntityRef(EntityKind.MILESTONE, "m-1")

        assert str(ref) == "milestone:m-1"
        assert ref.to_dict() == {"type": "milestone", "id": "m-1"}
        assert EntityRef.from_dict(ref.to_dict()) == ref

    def test_empty_id_rejected(self):
        """Test that a blank id is rejected."""
        with pytest.raises(ValidationError):
            EntityRef.of("task", " ")

    def test_entity_ref_property(self):
        """Test the ref property of tasks and plans."""
        task = Task(id="t-1", plan_id="p-1", title="Task")
        plan = Plan(id="p-1", project_path="/tmp", name="Plan")

        assert task.ref == EntityRef(EntityKind.TASK, "t-1")
        assert plan.ref == EntityRef(EntityKind.PLAN, "p-1")


class TestTaskContext:
    """Test cases for TaskContext."""

    def test_from_dict_handles_none_and_missing_keys(self):
        """Test loading a context from None or a dict with null values."""
        assert TaskContext.from_dict(None) == TaskContext()
        assert TaskContext.from_dict({"notes": None}).notes == ""

    def test_from_dict_ignores_non_mapping_json(self):
        """Test that a JSON list or scalar loads as an empty context."""
        assert TaskContext.from_dict(["x"]) == TaskContext()
        assert TaskContext.from_dict("notes") == TaskContext()
        assert TaskContext.from_dict(42) == TaskContext()

    def test_with_note(self):
        """Test appending notes as paragraphs."""
        assert TaskContext().with_note("Started: go") == "Started: go"
        assert TaskContext(notes="first").with_note("second") == "first\n\nsecond"

    def test_round_trip(self):
        """Test that to_dict output loads back into an equal context."""
        context = TaskContext(acceptance_criteria=["fast"], notes="n", files_involved=["a.py"])

        assert TaskContext.from_dict(context.to_dict()) == context


class TestResolution:
    """Test cases for resolved statuses."""

    def test_task_resolution(self):
        """Test that completed and cancelled tasks are resolved."""
        assert Task(id="t", plan_id="p", title="x", status=TaskStatus.COMPLETED).is_resolved()
        assert Task(id="t", plan_id="p", title="x", status=TaskStatus.CANCELLED).is_resolved()
        assert not Task(id="t", plan_id="p", title="x", status=TaskStatus.REVIEW).is_resolved()

    def test_other_kinds(self):
        """Test resolution of goals and milestones."""
        assert is_resolved(EntityKind.GOAL, GoalStatus.COMPLETED)
        assert is_resolved(EntityKind.MILESTONE, MilestoneStatus.MISSED)
        assert not is_resolved(EntityKind.MILESTONE, MilestoneStatus.IN_PROGRESS)


class TestResults:
    """Test cases for operation result types."""

    def test_rejected_transition_carries_code(self):
        """Test that a rejected transition reports the invalid transition code."""
        result = TASK_STATE_MACHINE.transition(TaskStatus.BACKLOG, TaskStatus.COMPLETED)

        assert result.success is False
        assert result.code == InvalidTransition.code
        assert result.error == "Invalid transition from backlog to completed"

    def test_accepted_transition_has_no_code(self):
        """Test that an accepted transition has a new status and no code."""
        result = PLAN_STATE_MACHINE.transition("draft", "active")

        assert result.success is True
        assert result.new_status.value == "active"
        assert result.code is None

    def test_task_operation_result_to_dict(self):
        """Test serializing a successful task result."""
        task = Task(id="t-1", plan_id="p-1", title="Task")

        data = TaskOperationResult(True, task).to_dict()

        assert data["task"]["id"] == "t-1"
        assert data["task"]["status"] == "backlog"
        assert "error" not in data
        assert "code" not in data

    def test_failed_task_operation_result_includes_code(self):
        """Test that a failed task result serializes its error and code."""
        data = TaskOperationResult(False, error="Task not found", code=NotFound.code).to_dict()

        assert data == {"success": False, "error": "Task not found", "code": "E_NOT_FOUND"}

    def test_plan_operation_result_to_dict(self):
        """Test serializing plan results with and without a code."""
        plan = Plan(id="p-1", project_path="/tmp", name="Plan")

        data = PlanOperationResult(True, plan, trigger="activate").to_dict()
        failed = PlanOperationResult(False, error="nope", code="E_INVALID_TRANSITION").to_dict()

        assert data["trigger"] == "activate"
        assert data["plan"]["name"] == "Plan"
        assert failed["code"] == "E_INVALID_TRANSITION"

    def test_comment_to_dict(self):
        """Test serializing a comment."""
        comment = Comment(id="c-1", task_id="t-1", content="Looks good", author="ana")

        data = comment.to_dict()

        assert data["content"] == "Looks good"
        assert data["author"] == "ana"
        assert data["task_id"] == "t-1"

    def test_progress_percent(self):
        """Test the completion percentage of progress stats."""
        assert ProgressStats().percent_complete == 0.0
        assert ProgressStats(total=8, completed=2).to_dict()["percent_complete"] == 25.0


class TestErrors:
    """Test cases for the error taxonomy."""

    def test_codes(self):
        """Test the stable error codes and the code override."""
        assert NotFound("task", "t-1").code == "E_NOT_FOUND"
        assert InvalidTransition("backlog", "completed").code == "E_INVALID_TRANSITION"
        assert PlanTrackError("x", code="E_CUSTOM").code == "E_CUSTOM"

    def test_messages(self):
        """Test error messages and their dictionary form."""
        error = InvalidTransition("backlog", "completed")

        assert error.message == "Invalid transition from backlog to completed"
        assert str(error) == "E_INVALID_TRANSITION: Invalid transition from backlog to completed"
        assert NotFound("task", "t-1").to_dict() == {"code": "E_NOT_FOUND", "message": "Task not found: t-1"}


def test_utc_now_format():
    """Test that timestamps are ISO-8601 with milliseconds and a Z suffix."""
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z", utc_now())
