"""
Hubflow Workflow Execution

Execution infrastructure:
- Execution context and variable resolution
- State management
- Retry with backoff
"""

from hubflow.automation.execution.context import (
    AutomationEvent,
    ExecutionContext,
    ExecutionSource,
)
from hubflow.automation.execution.retry import (
    RetryAttemptRecord,
    RetryExecutor,
    RetryStatistics,
    run_with_timeout,
)
from hubflow.automation.execution.state import (
    ExecutionStatistics,
    WorkflowStateManager,
)

__all__ = [
    "AutomationEvent",
    "ExecutionContext",
    "ExecutionSource",
    "RetryAttemptRecord",
    "RetryExecutor",
    "RetryStatistics",
    "run_with_timeout",
    "ExecutionStatistics",
    "WorkflowStateManager",
]
