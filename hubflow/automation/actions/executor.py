"""
Hubflow Action Executor

Dispatches workflow actions to the handler registered for their kind.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Dict, Optional

import structlog

from hubflow.automation.types import (
    ActionKind,
    ActionResult,
    ActionStatus,
    AIQueryAction,
    CustomAction,
    DataPipelineAction,
    DeployAction,
    MacroAction,
    TestAction,
    WorkflowAction,
)

if TYPE_CHECKING:
    from hubflow.automation.actions.command import CommandRunner
    from hubflow.automation.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)


class ActionExecutor:
    """
    Executes workflow actions.

    Supports:
    - Commands (through the injected CommandRunner)
    - Data pipelines
    - AI queries
    - Test runs
    - Deployments
    - Macros
    - Custom actions

    Every kind except command ships with a placeholder handler that reports
    success; real backends replace them with register_handler().
    """

    def __init__(self, command_runner: Optional["CommandRunner"] = None):
        self._handlers: Dict[ActionKind, "BaseActionHandler"] = {}
        self._register_builtin_handlers(command_runner)

    def _register_builtin_handlers(self, command_runner: Optional["CommandRunner"]) -> None:
        from hubflow.automation.actions.command import CommandActionHandler, ShellCommandRunner

        self._handlers[ActionKind.COMMAND] = CommandActionHandler(
            command_runner or ShellCommandRunner()
        )
        self._handlers[ActionKind.DATA_PIPELINE] = DataPipelineActionHandler()
        self._handlers[ActionKind.AI_QUERY] = AIQueryActionHandler()
        self._handlers[ActionKind.TEST] = TestActionHandler()
        self._handlers[ActionKind.DEPLOY] = DeployActionHandler()
        self._handlers[ActionKind.MACRO] = MacroActionHandler()
        self._handlers[ActionKind.CUSTOM] = CustomActionHandler()

    async def execute(
        self,
        action: WorkflowAction,
        context: "ExecutionContext",
    ) -> ActionResult:
        """
        Execute an action.

        Args:
            action: Action payload, already resolved against the context
            context: Execution context

        Returns:
            Action result
        """
        handler = self._handlers.get(action.kind)
        if not handler:
            raise ValueError(f"Unknown action kind: {action.kind}")

        start = time.monotonic()
        result = await handler.execute(action, context)

        if result.duration is None:
            result.duration = time.monotonic() - start

        output_variable = getattr(action, "output_variable", None)
        if output_variable:
            result.metadata.setdefault("output_variable", output_variable)

        logger.debug(
            "action_executed",
            action_kind=action.kind.value,
            status=result.status.value,
        )
        return result

    def register_handler(
        self,
        action_kind: ActionKind,
        handler: "BaseActionHandler",
    ) -> None:
        """Register a custom action handler."""
        self._handlers[action_kind] = handler
        logger.info("handler_registered", action_kind=action_kind.value)

    def get_handler(
        self,
        action_kind: ActionKind,
    ) -> Optional["BaseActionHandler"]:
        """Get a handler by action kind."""
        return self._handlers.get(action_kind)


class BaseActionHandler:
    """Base class for action handlers."""

    async def execute(
        self,
        action: WorkflowAction,
        context: "ExecutionContext",
    ) -> ActionResult:
        """Execute the action."""
        raise NotImplementedError


# === Placeholder Handlers ===


class DataPipelineActionHandler(BaseActionHandler):
    """Placeholder for data pipeline actions."""

    async def execute(
        self,
        action: DataPipelineAction,
        context: "ExecutionContext",
    ) -> ActionResult:
        return ActionResult(
            status=ActionStatus.SUCCESS,
            output=f"Pipeline {action.pipeline_type.value} completed",
            metadata={"pipeline_type": action.pipeline_type.value},
        )


class AIQueryActionHandler(BaseActionHandler):
    """Placeholder for AI query actions."""

    async def execute(
        self,
        action: AIQueryAction,
        context: "ExecutionContext",
    ) -> ActionResult:
        return ActionResult(
            status=ActionStatus.SUCCESS,
            output=f"AI query processed: {action.query}",
            metadata={"response_format": action.response_format.value},
        )


class TestActionHandler(BaseActionHandler):
    """Placeholder for test actions."""

    __test__ = False  # not a pytest class

    async def execute(
        self,
        action: TestAction,
        context: "ExecutionContext",
    ) -> ActionResult:
        return ActionResult(
            status=ActionStatus.SUCCESS,
            output=f"{action.test_type.value} tests passed",
            metadata={
                "test_type": action.test_type.value,
                "report_format": action.report_format.value,
            },
        )


class DeployActionHandler(BaseActionHandler):
    """Placeholder for deploy actions."""

    async def execute(
        self,
        action: DeployAction,
        context: "ExecutionContext",
    ) -> ActionResult:
        return ActionResult(
            status=ActionStatus.SUCCESS,
            output=f"Deployed {action.target} to {action.environment}",
            metadata={"target": action.target, "environment": action.environment},
        )


class MacroActionHandler(BaseActionHandler):
    """Placeholder for macro actions."""

    async def execute(
        self,
        action: MacroAction,
        context: "ExecutionContext",
    ) -> ActionResult:
        return ActionResult(
            status=ActionStatus.SUCCESS,
            output=f"Macro {action.macro_id} executed",
            metadata={"macro_id": action.macro_id},
        )


class CustomActionHandler(BaseActionHandler):
    """Placeholder for custom actions."""

    async def execute(
        self,
        action: CustomAction,
        context: "ExecutionContext",
    ) -> ActionResult:
        return ActionResult(
            status=ActionStatus.SUCCESS,
            output=f"Custom action {action.identifier} executed",
            metadata={"identifier": action.identifier},
        )
