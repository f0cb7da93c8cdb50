"""
Hubflow Automation Errors

Exception hierarchy for the workflow orchestration core.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from hubflow.automation.execution.retry import RetryAttemptRecord


class AutomationError(Exception):
    """Base class for automation errors."""

    kind: str = "automation_error"

    def __init__(self, message: str, execution_id: Optional[str] = None):
        self.message = message
        self.execution_id = execution_id
        super().__init__(message)


class InvalidWorkflowError(AutomationError):
    """Raised when a workflow fails structural validation."""

    kind = "invalid_workflow"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid workflow: {reason}")


class MissingParameterError(AutomationError):
    """Raised when a required template parameter has no value."""

    kind = "missing_parameter"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Missing required parameter: {name}")


class InvalidParameterError(AutomationError):
    """Raised when a template parameter value fails its validation pattern."""

    kind = "invalid_parameter"

    def __init__(self, name: str, value: str, pattern: str):
        self.name = name
        self.value = value
        self.pattern = pattern
        super().__init__(f"Parameter '{name}' value {value!r} does not match {pattern!r}")


class StepFailedError(AutomationError):
    """Raised when a step fails with no failure branch under stop-on-error."""

    kind = "step_failed"

    def __init__(self, step_name: str, cause: Optional[str] = None):
        self.step_name = step_name
        self.cause = cause
        message = f"Step '{step_name}' failed"
        if cause:
            message = f"{message}: {cause}"
        super().__init__(message)


class ExecutionTimeoutError(AutomationError):
    """Raised when a workflow or step exceeds its timeout."""

    kind = "execution_timeout"

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        if timeout is not None:
            message = f"Workflow execution timed out after {timeout}s"
        else:
            message = "Workflow execution timed out"
        super().__init__(message)


class WorkflowExecutionError(AutomationError):
    """Raised when a workflow run aborts on an error outside this hierarchy."""

    kind = "workflow_execution_error"

    def __init__(self, cause: BaseException, execution_id: Optional[str] = None):
        self.cause = cause
        super().__init__(f"Workflow execution failed: {cause}", execution_id)


class WorkflowNotFoundError(AutomationError):
    """Raised when a workflow id cannot be resolved."""

    kind = "workflow_not_found"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class InvalidConfigurationError(AutomationError):
    """Raised when the automation system is used in an invalid state."""

    kind = "invalid_configuration"

    def __init__(self, message: str):
        super().__init__(f"Invalid configuration: {message}")


# === Retry signals ===


class ActionFailedError(AutomationError):
    """Raised inside the retry loop when an action reports failure."""

    kind = "action_failed"

    def __init__(self, error: Optional[str], metadata: Optional[dict] = None):
        self.error = error
        self.metadata = dict(metadata or {})
        super().__init__(error or "Action failed")


class RetryError(AutomationError):
    """Base class for retry outcomes that carry attempt history."""

    kind = "retry_error"

    def __init__(
        self,
        message: str,
        underlying_error: BaseException,
        attempts: List["RetryAttemptRecord"],
    ):
        self.underlying_error = underlying_error
        self.attempts = attempts
        super().__init__(message)


class RetryExhaustedError(RetryError):
    """Raised when every allowed attempt failed."""

    kind = "retries_exhausted"

    def __init__(self, underlying_error: BaseException, attempts: List["RetryAttemptRecord"]):
        super().__init__(
            f"All {len(attempts)} retry attempts exhausted. Last error: {underlying_error}",
            underlying_error,
            attempts,
        )


class NonRetryableError(RetryError):
    """Raised when an attempt failed with an error the policy does not retry."""

    kind = "non_retryable"

    def __init__(self, underlying_error: BaseException, attempts: List["RetryAttemptRecord"]):
        super().__init__(
            f"Non-retryable error after {len(attempts)} attempts: {underlying_error}",
            underlying_error,
            attempts,
        )


def error_kind(error: BaseException) -> str:
    """Return the classification name used by retry policies."""
    if isinstance(error, AutomationError):
        return error.kind
    return type(error).__name__
