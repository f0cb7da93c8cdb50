"""
Hubflow Workflow Automation System

Interpreter and scheduler for declarative workflows.

Core Features:
- Ordered steps with conditions and success/failure branches
- Retry with fixed, linear or exponential backoff
- Workflow and step timeouts
- Cooperative pause/resume/cancel
- Sequential, parallel and conditional composition
- Parameterized workflow templates
"""

from hubflow.automation.types import (
    # Enums
    ExecutionStatus,
    ActionStatus,
    ActionKind,
    ConditionType,
    ErrorHandlingPolicy,
    BackoffStrategy,
    CompositionMode,
    AutomationStatus,
    ParameterType,
    # Actions
    CommandAction,
    DataPipelineAction,
    AIQueryAction,
    TestAction,
    DeployAction,
    MacroAction,
    CustomAction,
    WorkflowAction,
    # Workflow
    RetryPolicy,
    WorkflowCondition,
    WorkflowStep,
    Workflow,
    # Execution
    ActionResult,
    ExecutionError,
    Execution,
    WorkflowResult,
    # Templates
    WorkflowParameter,
    WorkflowTemplate,
)
from hubflow.automation.errors import (
    AutomationError,
    InvalidWorkflowError,
    MissingParameterError,
    InvalidParameterError,
    StepFailedError,
    ExecutionTimeoutError,
    WorkflowExecutionError,
    WorkflowNotFoundError,
    InvalidConfigurationError,
)
from hubflow.automation.execution.context import (
    AutomationEvent,
    ExecutionContext,
    ExecutionSource,
)
from hubflow.automation.execution.retry import RetryExecutor
from hubflow.automation.execution.state import ExecutionStatistics, WorkflowStateManager
from hubflow.automation.actions.executor import ActionExecutor, BaseActionHandler
from hubflow.automation.actions.command import CommandResult, CommandRunner, ShellCommandRunner
from hubflow.automation.conditions.evaluator import ConditionEvaluator
from hubflow.automation.templates.manager import TemplateManager
from hubflow.automation.engine import WorkflowExecutionEngine
from hubflow.automation.coordinator import AutomationCoordinator

__all__ = [
    # Enums
    "ExecutionStatus",
    "ActionStatus",
    "ActionKind",
    "ConditionType",
    "ErrorHandlingPolicy",
    "BackoffStrategy",
    "CompositionMode",
    "AutomationStatus",
    "ParameterType",
    # Actions
    "CommandAction",
    "DataPipelineAction",
    "AIQueryAction",
    "TestAction",
    "DeployAction",
    "MacroAction",
    "CustomAction",
    "WorkflowAction",
    # Workflow
    "RetryPolicy",
    "WorkflowCondition",
    "WorkflowStep",
    "Workflow",
    # Execution
    "ActionResult",
    "ExecutionError",
    "Execution",
    "WorkflowResult",
    "AutomationEvent",
    "ExecutionContext",
    "ExecutionSource",
    # Templates
    "WorkflowParameter",
    "WorkflowTemplate",
    "TemplateManager",
    # Errors
    "AutomationError",
    "InvalidWorkflowError",
    "MissingParameterError",
    "InvalidParameterError",
    "StepFailedError",
    "ExecutionTimeoutError",
    "WorkflowExecutionError",
    "WorkflowNotFoundError",
    "InvalidConfigurationError",
    # Components
    "RetryExecutor",
    "ExecutionStatistics",
    "WorkflowStateManager",
    "ActionExecutor",
    "BaseActionHandler",
    "CommandResult",
    "CommandRunner",
    "ShellCommandRunner",
    "ConditionEvaluator",
    "WorkflowExecutionEngine",
    "AutomationCoordinator",
]
