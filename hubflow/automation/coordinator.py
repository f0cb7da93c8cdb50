"""
Hubflow Automation Coordinator

Facade owning the state manager, the execution engine and the command
backend. Manages lifecycle and republishes live status for observers.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

import structlog

from hubflow.automation.actions.command import CommandRunner, ShellCommandRunner
from hubflow.automation.engine import WorkflowExecutionEngine
from hubflow.automation.errors import (
    InvalidConfigurationError,
    InvalidWorkflowError,
    WorkflowNotFoundError,
)
from hubflow.automation.execution.context import ExecutionContext
from hubflow.automation.execution.state import ExecutionStatistics, WorkflowStateManager
from hubflow.automation.types import (
    AutomationStatus,
    CommandAction,
    Execution,
    ExecutionStatus,
    ReportFormat,
    TestAction,
    TestConfig,
    TestType,
    Workflow,
    WorkflowResult,
    WorkflowStep,
)
from hubflow.core.config import AutomationConfig, get_config

logger = structlog.get_logger(__name__)


class AutomationCoordinator:
    """
    Central coordinator for the automation system.

    Features:
    - Lifecycle (initialize/shutdown) with a readiness check
    - Workflow execution and a registry for execution by ID
    - Pause, resume and cancel of running executions
    - Periodically refreshed ``active_workflows`` and ``system_status``
    - One-step command and test workflows
    """

    def __init__(
        self,
        command_runner: Optional[CommandRunner] = None,
        config: Optional[AutomationConfig] = None,
    ):
        self.config = config or get_config().automation

        self.command_runner = command_runner or ShellCommandRunner(self.config.command_timeout)
        self.state_manager = WorkflowStateManager(self.config.max_history_size)
        self.engine = WorkflowExecutionEngine(
            state_manager=self.state_manager,
            command_runner=self.command_runner,
            config=self.config,
        )

        # Published state
        self.active_workflows: Dict[str, Execution] = {}
        self.system_status = AutomationStatus.IDLE

        self._workflows: Dict[str, Workflow] = {}

        self._refresh_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Initialize the automation coordinator."""
        if self._initialized:
            return

        logger.info("Initializing automation coordinator")

        self._shutdown_event.clear()
        self._refresh_task = asyncio.create_task(self._refresh_loop())
        self.system_status = AutomationStatus.IDLE

        self._initialized = True
        logger.info("Automation coordinator initialized")

    async def shutdown(self) -> None:
        """Shutdown the coordinator, cancelling every active execution."""
        logger.info("Shutting down automation coordinator")

        for execution in await self.state_manager.get_active_executions():
            await self.engine.cancel(execution.id)

        self._shutdown_event.set()
        if self._refresh_task:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None

        await self.refresh()
        self.system_status = AutomationStatus.IDLE
        self._initialized = False
        logger.info("Automation coordinator shutdown complete")

    # === Workflow Management ===

    async def register_workflow(self, workflow: Workflow) -> str:
        """Register a workflow for execution by ID."""
        errors = workflow.validate()
        if errors:
            raise InvalidWorkflowError("; ".join(errors))

        self._workflows[workflow.id] = workflow
        logger.info("workflow_registered", workflow_id=workflow.id, name=workflow.name)
        return workflow.id

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        return self._workflows.get(workflow_id)

    async def list_workflows(self) -> List[Workflow]:
        return list(self._workflows.values())

    async def unregister_workflow(self, workflow_id: str) -> bool:
        return self._workflows.pop(workflow_id, None) is not None

    # === Workflow Execution ===

    async def execute_workflow(
        self,
        workflow: Workflow,
        context: Optional[ExecutionContext] = None,
    ) -> WorkflowResult:
        """
        Execute a workflow.

        Raises:
            InvalidConfigurationError: The coordinator is not initialized
        """
        if not self._initialized:
            raise InvalidConfigurationError("Automation system not initialized")

        logger.info("executing_workflow", workflow_id=workflow.id, name=workflow.name)
        self.system_status = AutomationStatus.RUNNING

        try:
            result = await self.engine.execute(workflow, context or ExecutionContext())
        except Exception as e:
            logger.error("workflow_failed", workflow_id=workflow.id, error=str(e))
            self.system_status = AutomationStatus.ERROR
            await self.refresh()
            raise

        await self.refresh()
        logger.info(
            "workflow_finished",
            workflow_id=workflow.id,
            execution_id=result.execution_id,
            status=result.status.value,
        )
        return result

    async def execute_workflow_by_id(
        self,
        workflow_id: str,
        context: Optional[ExecutionContext] = None,
    ) -> WorkflowResult:
        """Execute a registered workflow."""
        workflow = self._workflows.get(workflow_id)
        if not workflow:
            raise WorkflowNotFoundError(workflow_id)
        return await self.execute_workflow(workflow, context)

    # === Workflow Control ===

    async def pause_workflow(self, execution_id: str) -> bool:
        paused = await self.engine.pause(execution_id)
        await self.refresh()
        return paused

    async def resume_workflow(self, execution_id: str) -> bool:
        resumed = await self.engine.resume(execution_id)
        await self.refresh()
        return resumed

    async def cancel_workflow(self, execution_id: str) -> bool:
        cancelled = await self.engine.cancel(execution_id)
        await self.refresh()
        return cancelled

    async def get_workflow_status(self, execution_id: str) -> Optional[Execution]:
        return await self.state_manager.get_execution(execution_id)

    # === Workflow Queries ===

    async def get_active_workflows(self) -> List[Execution]:
        return await self.state_manager.get_active_executions()

    async def get_workflow_history(self, limit: Optional[int] = None) -> List[Execution]:
        return await self.state_manager.get_history(limit)

    async def get_statistics(self) -> ExecutionStatistics:
        return await self.state_manager.get_statistics()

    # === Convenience Workflows ===

    async def execute_command(
        self,
        pattern: str,
        parameters: Optional[Dict[str, str]] = None,
        requires_sudo: bool = False,
    ) -> WorkflowResult:
        """Run a single command pattern as a one-step workflow."""
        step = WorkflowStep(
            name=f"Execute {pattern}",
            action=CommandAction(
                pattern=pattern,
                parameters=dict(parameters or {}),
                requires_sudo=requires_sudo,
                capture_output=True,
                output_variable="output",
            ),
        )
        workflow = Workflow(
            name=f"Command: {pattern}",
            description=f"Execute command pattern {pattern}",
            steps=[step],
        )
        return await self.execute_workflow(workflow)

    async def execute_tests(
        self,
        test_type: TestType = TestType.UNIT,
        target: Optional[str] = None,
    ) -> WorkflowResult:
        """Run a test suite as a one-step workflow."""
        step = WorkflowStep(
            name=f"Run {test_type.value} tests",
            action=TestAction(
                test_type=test_type,
                config=TestConfig(target=target, parallel=True, coverage=False),
                report_format=ReportFormat.TEXT,
            ),
        )
        workflow = Workflow(
            name=f"Tests: {test_type.value}",
            description=f"Execute {test_type.value} tests",
            steps=[step],
        )
        return await self.execute_workflow(workflow)

    # === Status Publishing ===

    async def refresh(self) -> None:
        """Republish active_workflows and system_status."""
        executions = await self.state_manager.get_active_executions()
        self.active_workflows = {e.id: e for e in executions}

        running = any(e.status == ExecutionStatus.RUNNING for e in executions)
        paused = any(e.status == ExecutionStatus.PAUSED for e in executions)

        if running:
            self.system_status = AutomationStatus.RUNNING
        elif paused:
            self.system_status = AutomationStatus.PAUSED
        elif self.system_status != AutomationStatus.ERROR:
            self.system_status = AutomationStatus.IDLE

    async def _refresh_loop(self) -> None:
        """Background refresh of published status."""
        while not self._shutdown_event.is_set():
            try:
                await asyncio.sleep(self.config.status_refresh_interval)
                await self.refresh()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("status_refresh_error", error=str(e))
