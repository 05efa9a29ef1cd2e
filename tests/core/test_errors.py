"""Tests for blockflow.core.errors module."""

import pytest

from blockflow.core.errors import (
    BlockflowError,
    CheckpointNotFoundError,
    CronValidationError,
    CycleDetectedError,
    DanglingEdgeError,
    DuplicateNodeError,
    ErrorCategory,
    ErrorContext,
    ExecutionStateNotFoundError,
    NodeExecutionError,
    ScheduleBusyError,
    ScheduleCompletedError,
    ScheduleNotFoundError,
    StorageError,
    TemplateNotFoundError,
    ValidationError,
    WorkflowError,
    categorize_error,
    is_retryable,
)


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_create_empty_context(self):
        ctx = ErrorContext()
        assert ctx.execution_id is None
        assert ctx.metadata == {}
        assert ctx.to_dict() == {}

    def test_to_dict_includes_set_fields(self):
        """to_dict includes only non-None fields."""
        ctx = ErrorContext(execution_id="exec_1", node_id="A", metadata={"attempt": 2})
        d = ctx.to_dict()
        assert d == {"execution_id": "exec_1", "node_id": "A", "attempt": 2}
        assert "schedule_id" not in d


class TestBlockflowError:
    """Test the base error."""

    def test_defaults(self):
        error = BlockflowError("boom")
        assert error.message == "boom"
        assert str(error) == "boom"
        assert error.category == ErrorCategory.INTERNAL
        assert error.retryable is False

    def test_overrides(self):
        error = BlockflowError("boom", category=ErrorCategory.TIMEOUT, retryable=True)
        assert error.category == ErrorCategory.TIMEOUT
        assert error.retryable is True

    def test_cause_is_chained(self):
        cause = OSError("disk")
        error = StorageError("write failed", cause=cause)
        assert error.cause is cause
        assert error.__cause__ is cause

    def test_with_context_is_fluent(self):
        error = StorageError("write failed").with_context(key="schedules", attempt=3)
        assert error.context.key == "schedules"
        assert error.context.metadata == {"attempt": 3}

    def test_to_dict(self):
        error = StorageError("write failed", cause=OSError("disk")).with_context(key="k")
        assert error.to_dict() == {
            "error_type": "StorageError",
            "message": "write failed",
            "category": "STORAGE",
            "retryable": True,
            "context": {"key": "k"},
            "cause": "disk",
        }

    def test_repr(self):
        assert repr(ValidationError("bad")) == "ValidationError('bad', category=VALIDATION)"


class TestMessages:
    """User-visible messages are stable."""

    def test_template_not_found(self):
        error = TemplateNotFoundError("tpl_9")
        assert str(error) == "Template with ID tpl_9 not found"
        assert isinstance(error, ValidationError)

    def test_cron_validation(self):
        error = CronValidationError("0 25 * * *", "hour value 25 out of range")
        assert error.expression == "0 25 * * *"
        assert error.reason == "hour value 25 out of range"
        assert "'0 25 * * *'" in str(error)

    def test_cycle(self):
        error = CycleDetectedError(["a", "b", "a"])
        assert str(error) == "Cycle detected in workflow graph: a -> b -> a"
        assert error.category == ErrorCategory.STRUCTURE

    def test_dangling_edge(self):
        error = DanglingEdgeError("A", "Z", "Z")
        assert str(error) == "Edge A -> Z references missing node: Z"
        assert isinstance(error, WorkflowError)

    def test_duplicate_node(self):
        assert str(DuplicateNodeError("A")) == "Duplicate node id: A"

    def test_schedule_errors_carry_schedule_id(self):
        for cls in (ScheduleNotFoundError, ScheduleCompletedError, ScheduleBusyError):
            error = cls("s1")
            assert error.schedule_id == "s1"
            assert error.context.schedule_id == "s1"
            assert error.category == ErrorCategory.SCHEDULE

    def test_state_errors(self):
        assert str(ExecutionStateNotFoundError("exec_1")) == "Execution state not found: exec_1"
        error = CheckpointNotFoundError("exec_1", "cp_1")
        assert error.context.to_dict() == {"execution_id": "exec_1", "checkpoint_id": "cp_1"}

    def test_node_execution_error(self):
        error = NodeExecutionError("A", "failed", attempts=3, cause=RuntimeError("x"))
        assert error.node_id == "A"
        assert error.attempts == 3
        assert error.context.node_id == "A"


class TestRetryability:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (ValidationError("bad"), False),
            (CycleDetectedError(["a", "a"]), False),
            (StorageError("disk"), True),
            (ScheduleBusyError("s1"), True),
            (NodeExecutionError("A", "x"), True),
            (RuntimeError("flaky"), True),
            (TimeoutError(), True),
        ],
    )
    def test_is_retryable(self, error, expected):
        assert is_retryable(error) is expected

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (TemplateNotFoundError("x"), ErrorCategory.VALIDATION),
            (TimeoutError(), ErrorCategory.TIMEOUT),
            (ValueError("x"), ErrorCategory.EXECUTION),
            (KeyError("x"), ErrorCategory.UNKNOWN),
        ],
    )
    def test_categorize_error(self, error, expected):
        assert categorize_error(error) == expected
