"""
Hubflow Workflow Execution Engine

Interprets workflows: step iteration, conditions, variable substitution,
retry, branching, composition, templates, pause/resume and timeouts.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import structlog

from hubflow.automation.actions.command import CommandRunner
from hubflow.automation.actions.executor import ActionExecutor
from hubflow.automation.conditions.evaluator import ConditionEvaluator
from hubflow.automation.errors import (
    ActionFailedError,
    AutomationError,
    ExecutionTimeoutError,
    InvalidWorkflowError,
    NonRetryableError,
    RetryError,
    StepFailedError,
    WorkflowExecutionError,
)
from hubflow.automation.execution.context import ExecutionContext
from hubflow.automation.execution.retry import RetryExecutor, RetryStatistics, run_with_timeout
from hubflow.automation.execution.state import WorkflowStateManager
from hubflow.automation.templates.manager import TemplateManager
from hubflow.automation.types import (
    ActionResult,
    ActionStatus,
    BackoffStrategy,
    CompositionMode,
    CustomAction,
    ErrorHandlingPolicy,
    Execution,
    ExecutionError,
    ExecutionStatus,
    RetryPolicy,
    Workflow,
    WorkflowCondition,
    WorkflowParameter,
    WorkflowResult,
    WorkflowStep,
    WorkflowTemplate,
)
from hubflow.core.config import AutomationConfig, get_config

logger = structlog.get_logger(__name__)

EXECUTE_WORKFLOW_ACTION = "execute_workflow"


class WorkflowExecutionEngine:
    """
    Main workflow execution engine.

    Features:
    - Ordered step walk with conditions and success/failure branches
    - ${var} substitution into action payloads
    - Per-step retry with backoff and per-attempt timeouts
    - Workflow-level timeout
    - Cooperative pause/resume/cancel between steps
    - Sequential, parallel and conditional composition
    - Template creation and instantiation

    All execution state lives in the WorkflowStateManager; the engine only
    keeps a pause gate per running execution.
    """

    def __init__(
        self,
        state_manager: Optional[WorkflowStateManager] = None,
        command_runner: Optional[CommandRunner] = None,
        action_executor: Optional[ActionExecutor] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        template_manager: Optional[TemplateManager] = None,
        config: Optional[AutomationConfig] = None,
    ):
        self.config = config or get_config().automation

        # Components
        self.state = state_manager or WorkflowStateManager(self.config.max_history_size)
        self.executor = action_executor or ActionExecutor(command_runner)
        self.evaluator = condition_evaluator or ConditionEvaluator()
        self.templates = template_manager or TemplateManager()

        # Pause gates for running executions (set = may proceed)
        self._pause_gates: Dict[str, asyncio.Event] = {}

    def default_retry_policy(self) -> RetryPolicy:
        """Policy used when neither the step nor the workflow defines one."""
        return RetryPolicy(
            max_attempts=self.config.default_max_attempts,
            backoff_strategy=BackoffStrategy(self.config.default_backoff_strategy),
            base_delay=self.config.default_base_delay,
            max_delay=self.config.default_max_delay,
            backoff_multiplier=self.config.default_backoff_multiplier,
        )

    # === Execution ===

    async def execute(
        self,
        workflow: Workflow,
        context: Optional[ExecutionContext] = None,
    ) -> WorkflowResult:
        """
        Execute a workflow.

        Args:
            workflow: Workflow to execute
            context: Initial execution context

        Returns:
            Snapshot of the finished execution

        Raises:
            InvalidWorkflowError: The workflow has no name or no steps
            StepFailedError: A step failed under stop-on-error with no branch
            ExecutionTimeoutError: The workflow or a step timed out
            WorkflowExecutionError: Any other error aborted the run
        """
        errors = workflow.validate()
        if errors:
            raise InvalidWorkflowError("; ".join(errors))

        execution = Execution(
            workflow=workflow,
            context=(context or ExecutionContext()).copy(),
            status=ExecutionStatus.RUNNING,
        )
        await self.state.register_execution(execution)

        gate = asyncio.Event()
        gate.set()
        self._pause_gates[execution.id] = gate

        logger.info(
            "execution_started",
            execution_id=execution.id,
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            steps=len(workflow.steps),
        )

        try:
            walk = self._run_steps(workflow.steps, workflow, execution.id)
            if workflow.timeout is not None:
                await run_with_timeout(walk, workflow.timeout)
            else:
                await walk

            # Hold completion while paused
            await self._wait_if_paused(execution.id)

        except asyncio.CancelledError:
            await self.state.cancel_execution(execution.id)
            raise

        except AutomationError as e:
            if e.execution_id is None:
                e.execution_id = execution.id
            await self._fail_execution(execution.id, e)
            raise

        except Exception as e:
            logger.exception("workflow_execution_error", execution_id=execution.id)
            await self._fail_execution(execution.id, e)
            raise WorkflowExecutionError(e, execution.id) from e

        finally:
            self._pause_gates.pop(execution.id, None)

        return await self._complete_execution(execution)

    async def _run_steps(
        self,
        steps: Sequence[WorkflowStep],
        workflow: Workflow,
        execution_id: str,
    ) -> None:
        """Run a list of steps; used for the main sequence and for branches."""
        for step in steps:
            await self._wait_if_paused(execution_id)

            if await self._is_cancelled(execution_id):
                logger.info("execution_stopped", execution_id=execution_id, step_id=step.id)
                return

            await self._run_step(step, workflow, execution_id)

    async def _run_step(
        self,
        step: WorkflowStep,
        workflow: Workflow,
        execution_id: str,
    ) -> None:
        await self.state.update_current_step(execution_id, step.id)

        snapshot = await self.state.get_execution(execution_id)
        context = snapshot.context if snapshot else ExecutionContext()

        logger.debug(
            "executing_step",
            execution_id=execution_id,
            step_id=step.id,
            step_name=step.name,
            action_kind=step.action.kind.value,
        )

        if not await self.evaluator.evaluate(step.condition, context):
            result = ActionResult(
                status=ActionStatus.SKIPPED,
                metadata={"reason": "condition_not_met"},
            )
            await self.state.add_step_result(execution_id, step.id, result)
            return

        result = await self._execute_step_with_retry(step, workflow.retry_policy, context)

        # Result of an action that finished after cancel is discarded
        if await self._is_cancelled(execution_id):
            logger.info(
                "step_result_discarded",
                execution_id=execution_id,
                step_id=step.id,
                status=result.status.value,
            )
            return

        await self.state.add_step_result(execution_id, step.id, result)

        logger.info(
            "step_completed",
            execution_id=execution_id,
            step_id=step.id,
            status=result.status.value,
            duration=result.duration,
        )

        await self._handle_step_result(step, result, workflow, execution_id)

    async def _handle_step_result(
        self,
        step: WorkflowStep,
        result: ActionResult,
        workflow: Workflow,
        execution_id: str,
    ) -> None:
        if result.status == ActionStatus.SUCCESS:
            if step.on_success_step_ids:
                branch = self._resolve_steps(workflow, step.on_success_step_ids)
                await self._run_steps(branch, workflow, execution_id)
            return

        if result.status == ActionStatus.SKIPPED:
            return

        # failure or timeout
        if step.on_failure_step_ids:
            branch = self._resolve_steps(workflow, step.on_failure_step_ids)
            await self._run_steps(branch, workflow, execution_id)
            return

        if workflow.error_handling == ErrorHandlingPolicy.STOP_ON_ERROR:
            if result.status == ActionStatus.TIMEOUT:
                raise ExecutionTimeoutError(step.timeout)
            raise StepFailedError(step.name, result.error)

    def _resolve_steps(self, workflow: Workflow, step_ids: List[str]) -> List[WorkflowStep]:
        steps = []
        for step_id in step_ids:
            step = workflow.get_step(step_id)
            if step is None:
                logger.warning("branch_step_not_found", workflow_id=workflow.id, step_id=step_id)
                continue
            steps.append(step)
        return steps

    async def _execute_step_with_retry(
        self,
        step: WorkflowStep,
        workflow_policy: Optional[RetryPolicy],
        context: ExecutionContext,
    ) -> ActionResult:
        """
        Run a step's action under its retry policy.

        Never raises: exhaustion and unexpected errors come back as failure
        results carrying diagnostics in their metadata.
        """
        policy = step.retry_policy or workflow_policy or self.default_retry_policy()
        action = step.action.map_strings(context.resolve)
        retry = RetryExecutor(policy, name=step.name or step.id)

        async def attempt() -> ActionResult:
            result = await self.executor.execute(action, context)
            if result.status == ActionStatus.FAILURE:
                raise ActionFailedError(result.error, result.metadata)
            if result.status == ActionStatus.TIMEOUT:
                raise ExecutionTimeoutError(step.timeout)
            return result

        try:
            result = await retry.execute(attempt, timeout=step.timeout)
        except RetryError as e:
            return self._retry_failure_result(e, policy)
        except Exception as e:
            logger.error("step_unexpected_error", step_id=step.id, error=str(e))
            return ActionResult(
                status=ActionStatus.FAILURE,
                error=str(e),
                metadata={"unexpected_error": "true"},
            )

        stats = retry.statistics()
        if stats.total_attempts > 1:
            result.metadata.update({
                "retry_attempts": str(stats.total_attempts - 1),
                "total_attempts": str(stats.total_attempts),
                "retry_success": "true",
                "total_execution_time": str(stats.total_execution_time),
                "total_delay_time": str(stats.total_delay_time),
            })

        return result

    @staticmethod
    def _retry_failure_result(error: RetryError, policy: RetryPolicy) -> ActionResult:
        underlying = error.underlying_error
        stats = RetryStatistics.from_attempts(error.attempts)

        metadata: Dict[str, str] = {}
        if isinstance(underlying, ActionFailedError):
            metadata.update(underlying.metadata)

        metadata.update({
            "retry_attempts": str(stats.total_attempts),
            "total_attempts": str(stats.total_attempts),
            "retry_exhausted": "false" if isinstance(error, NonRetryableError) else "true",
            "backoff_strategy": policy.backoff_strategy.value,
            "total_execution_time": str(stats.total_execution_time),
            "total_delay_time": str(stats.total_delay_time),
            "success_rate": str(stats.success_rate),
            "final_error": str(underlying),
        })
        if isinstance(error, NonRetryableError):
            metadata["non_retryable"] = "true"

        if isinstance(underlying, ExecutionTimeoutError):
            status = ActionStatus.TIMEOUT
        else:
            status = ActionStatus.FAILURE

        return ActionResult(
            status=status,
            error=str(underlying),
            duration=stats.total_execution_time + stats.total_delay_time,
            metadata=metadata,
        )

    # === Bookkeeping ===

    async def _complete_execution(self, execution: Execution) -> WorkflowResult:
        snapshot = await self.state.get_execution(execution.id) or execution

        if not snapshot.is_terminal():
            snapshot.status = ExecutionStatus.COMPLETED
            snapshot.end_time = datetime.now()
            await self.state.update_execution(snapshot)
            snapshot = await self.state.get_execution(execution.id) or snapshot

        logger.info(
            "execution_finished",
            execution_id=snapshot.id,
            status=snapshot.status.value,
            duration=snapshot.duration,
        )
        return WorkflowResult.from_execution(snapshot)

    async def _fail_execution(self, execution_id: str, error: BaseException) -> None:
        snapshot = await self.state.get_execution(execution_id)
        if snapshot is None or snapshot.is_terminal():
            return

        # Only running executions may fail
        if snapshot.status == ExecutionStatus.PAUSED:
            await self.state.resume_execution(execution_id)
            snapshot = await self.state.get_execution(execution_id)
            if snapshot is None or snapshot.is_terminal():
                return

        snapshot.errors.append(ExecutionError.from_exception(error, step_id=snapshot.current_step_id))
        snapshot.status = ExecutionStatus.FAILED
        snapshot.end_time = datetime.now()
        await self.state.update_execution(snapshot)

        logger.error(
            "execution_failed",
            execution_id=execution_id,
            step_id=snapshot.current_step_id,
            error=str(error),
        )

    async def _is_cancelled(self, execution_id: str) -> bool:
        snapshot = await self.state.get_execution(execution_id)
        return snapshot is None or snapshot.status == ExecutionStatus.CANCELLED

    async def _wait_if_paused(self, execution_id: str) -> None:
        gate = self._pause_gates.get(execution_id)
        if gate is None:
            return

        while not gate.is_set():
            try:
                await asyncio.wait_for(gate.wait(), timeout=self.config.pause_poll_interval)
            except asyncio.TimeoutError:
                if await self._is_cancelled(execution_id):
                    return

    # === Pause / Resume / Cancel ===

    async def pause(self, execution_id: str) -> bool:
        """Hold the execution before its next step. Returns False if not running."""
        gate = self._pause_gates.get(execution_id)
        if gate is None:
            return False

        paused = await self.state.pause_execution(execution_id)
        if paused:
            gate.clear()
            logger.info("execution_paused", execution_id=execution_id)
        return paused

    async def resume(self, execution_id: str) -> bool:
        """Let a paused execution continue."""
        resumed = await self.state.resume_execution(execution_id)

        gate = self._pause_gates.get(execution_id)
        if gate is not None and resumed:
            gate.set()
            logger.info("execution_resumed", execution_id=execution_id)
        return resumed

    async def cancel(self, execution_id: str) -> bool:
        """Cancel an execution; an action already in flight runs to completion."""
        cancelled = await self.state.cancel_execution(execution_id)

        gate = self._pause_gates.get(execution_id)
        if gate is not None:
            gate.set()
        return cancelled

    # === Composition ===

    async def execute_chain(
        self,
        workflows: Sequence[Workflow],
        context: Optional[ExecutionContext] = None,
    ) -> List[WorkflowResult]:
        """
        Run workflows one after another, threading step results forward.

        Stops after the first run that does not complete unless the
        context has continue_on_error set.
        """
        running = (context or ExecutionContext()).copy()
        results: List[WorkflowResult] = []

        for workflow in workflows:
            result = await self._execute_recovering(workflow, running)
            results.append(result)

            for step_result in result.step_results.values():
                running = running.with_result(step_result)

            if result.status != ExecutionStatus.COMPLETED and not running.continue_on_error:
                logger.info(
                    "chain_stopped",
                    workflow_id=workflow.id,
                    status=result.status.value,
                    completed=len(results),
                    total=len(workflows),
                )
                break

        return results

    async def execute_parallel(
        self,
        workflows: Sequence[Workflow],
        context: Optional[ExecutionContext] = None,
    ) -> List[WorkflowResult]:
        """Run workflows concurrently; results come back in input order."""
        for workflow in workflows:
            errors = workflow.validate()
            if errors:
                raise InvalidWorkflowError("; ".join(errors))

        base = context or ExecutionContext()
        semaphore = asyncio.Semaphore(self.config.max_parallel_tasks)

        async def run(workflow: Workflow) -> WorkflowResult:
            async with semaphore:
                return await self._execute_recovering(workflow, base.copy())

        return list(await asyncio.gather(*(run(w) for w in workflows)))

    async def execute_steps_parallel(
        self,
        steps: Sequence[WorkflowStep],
        context: ExecutionContext,
        execution_id: str,
    ) -> Dict[str, ActionResult]:
        """
        Run steps concurrently within one execution.

        Each result is stored with the state manager as soon as it
        completes. Branches are not followed.
        """
        snapshot = await self.state.get_execution(execution_id)
        workflow_policy = snapshot.workflow.retry_policy if snapshot else None
        semaphore = asyncio.Semaphore(self.config.max_parallel_tasks)

        async def run(step: WorkflowStep):
            async with semaphore:
                if await self.evaluator.evaluate(step.condition, context):
                    result = await self._execute_step_with_retry(step, workflow_policy, context)
                else:
                    result = ActionResult(
                        status=ActionStatus.SKIPPED,
                        metadata={"reason": "condition_not_met"},
                    )
                await self.state.add_step_result(execution_id, step.id, result)
                return step.id, result

        pairs = await asyncio.gather(*(run(step) for step in steps))
        return dict(pairs)

    async def _execute_recovering(
        self,
        workflow: Workflow,
        context: ExecutionContext,
    ) -> WorkflowResult:
        """Execute, turning a raised workflow error into its failed result."""
        try:
            return await self.execute(workflow, context)
        except InvalidWorkflowError:
            raise
        except AutomationError as e:
            snapshot = await self.state.get_execution(e.execution_id) if e.execution_id else None
            if snapshot is None:
                raise
            return WorkflowResult.from_execution(snapshot)

    def compose_workflow(
        self,
        name: str,
        description: str,
        sub_workflows: Sequence[Workflow],
        mode: CompositionMode = CompositionMode.SEQUENTIAL,
        conditions: Optional[Dict[str, WorkflowCondition]] = None,
    ) -> Workflow:
        """
        Build a composite workflow whose steps reference sub-workflows.

        Args:
            name: Composite workflow name
            description: Composite workflow description
            sub_workflows: Workflows to orchestrate, in order
            mode: How execute_composite_workflow runs them
            conditions: Optional step conditions keyed by sub-workflow ID,
                used by conditional mode
        """
        conditions = conditions or {}
        steps = [
            WorkflowStep(
                name=f"Execute {sub.name}",
                action=CustomAction(
                    identifier=EXECUTE_WORKFLOW_ACTION,
                    parameters={"workflow_id": sub.id, "workflow_name": sub.name},
                ),
                condition=conditions.get(sub.id),
            )
            for sub in sub_workflows
        ]

        return Workflow(
            name=name,
            description=description,
            steps=steps,
            metadata={
                "composition_mode": mode.value,
                "sub_workflow_count": str(len(sub_workflows)),
                "is_composite": "true",
            },
        )

    async def execute_composite_workflow(
        self,
        workflow: Workflow,
        sub_workflows: Dict[str, Workflow],
        context: Optional[ExecutionContext] = None,
    ) -> WorkflowResult:
        """
        Execute a composite workflow and aggregate its sub-results.

        Args:
            workflow: Workflow built by compose_workflow
            sub_workflows: Sub-workflows keyed by ID
            context: Initial execution context
        """
        if not workflow.is_composite:
            raise InvalidWorkflowError("Not a composite workflow")

        context = context or ExecutionContext()
        mode = CompositionMode(workflow.metadata.get("composition_mode", CompositionMode.SEQUENTIAL.value))

        if mode == CompositionMode.CONDITIONAL:
            results = await self._execute_conditional_composition(workflow, sub_workflows, context)
        else:
            ordered = []
            for step in workflow.steps:
                sub = self._sub_workflow_for(step, sub_workflows)
                if sub is not None:
                    ordered.append(sub)

            if mode == CompositionMode.PARALLEL:
                results = await self.execute_parallel(ordered, context)
            else:
                results = await self.execute_chain(ordered, context)

        logger.info(
            "composite_executed",
            workflow_id=workflow.id,
            mode=mode.value,
            sub_results=len(results),
        )
        return self._aggregate_results(results)

    async def _execute_conditional_composition(
        self,
        workflow: Workflow,
        sub_workflows: Dict[str, Workflow],
        context: ExecutionContext,
    ) -> List[WorkflowResult]:
        current = context.copy()
        results: List[WorkflowResult] = []

        for step in workflow.steps:
            if not await self.evaluator.evaluate(step.condition, current):
                continue

            sub = self._sub_workflow_for(step, sub_workflows)
            if sub is None:
                continue

            result = await self._execute_recovering(sub, current)
            results.append(result)

            for step_result in result.step_results.values():
                current = current.with_result(step_result)

        return results

    @staticmethod
    def _sub_workflow_for(step: WorkflowStep, sub_workflows: Dict[str, Workflow]) -> Optional[Workflow]:
        action = step.action
        if not isinstance(action, CustomAction) or action.identifier != EXECUTE_WORKFLOW_ACTION:
            return None

        workflow_id = action.parameters.get("workflow_id")
        sub = sub_workflows.get(workflow_id) if workflow_id else None
        if sub is None:
            logger.warning("sub_workflow_not_found", step_id=step.id, workflow_id=workflow_id)
        return sub

    @staticmethod
    def _aggregate_results(results: List[WorkflowResult]) -> WorkflowResult:
        now = datetime.now()
        start_time = min((r.start_time for r in results), default=now)
        end_time = max((r.end_time for r in results), default=now)

        statuses = [r.status for r in results]
        if all(s == ExecutionStatus.COMPLETED for s in statuses):
            status = ExecutionStatus.COMPLETED
        elif ExecutionStatus.FAILED in statuses:
            status = ExecutionStatus.FAILED
        elif ExecutionStatus.CANCELLED in statuses:
            status = ExecutionStatus.CANCELLED
        else:
            status = ExecutionStatus.FAILED

        step_results: Dict[str, ActionResult] = {}
        errors: List[ExecutionError] = []
        for result in results:
            step_results.update(result.step_results)
            errors.extend(result.errors)

        return WorkflowResult(
            execution_id=str(uuid.uuid4()),
            status=status,
            start_time=start_time,
            end_time=end_time,
            duration=(end_time - start_time).total_seconds(),
            step_results=step_results,
            errors=errors,
        )

    # === Templates ===

    async def create_workflow_template(
        self,
        workflow: Workflow,
        name: str,
        parameters: Optional[List[WorkflowParameter]] = None,
        description: str = "",
    ) -> WorkflowTemplate:
        """Snapshot a workflow as a registered, parameterized template."""
        return await self.templates.create_template(workflow, name, parameters, description)

    async def instantiate_from_template(
        self,
        template: WorkflowTemplate,
        parameter_values: Optional[Dict[str, str]] = None,
    ) -> Workflow:
        """Create a new workflow from a template and parameter values."""
        return await self.templates.instantiate(template, parameter_values)
