"""
Tests for workflow chaining, parallel runs and composite workflows.
"""

import asyncio
import random

import pytest

from hubflow.automation.actions.executor import BaseActionHandler
from hubflow.automation.engine import EXECUTE_WORKFLOW_ACTION
from hubflow.automation.errors import InvalidWorkflowError
from hubflow.automation.execution.context import ExecutionContext
from hubflow.automation.types import (
    ActionKind,
    ActionResult,
    ActionStatus,
    CommandAction,
    CompositionMode,
    ConditionType,
    CustomAction,
    Execution,
    ExecutionStatus,
    RetryPolicy,
    Workflow,
    WorkflowCondition,
    WorkflowStep,
)


class SleepyHandler(BaseActionHandler):
    """Custom handler that sleeps for the ``delay`` parameter."""

    def __init__(self):
        self.in_flight = 0
        self.max_in_flight = 0

    async def execute(self, action, context):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(float(action.parameters.get("delay", "0")))
        finally:
            self.in_flight -= 1
        return ActionResult(status=ActionStatus.SUCCESS, output=action.identifier)


def echo_workflow(name: str, *messages: str) -> Workflow:
    return Workflow(
        name=name,
        steps=[
            WorkflowStep(name=f"echo {m}", action=CommandAction(pattern=f"echo {m}"))
            for m in messages
        ],
    )


def failing_workflow(name: str = "failing") -> Workflow:
    return Workflow(
        name=name,
        steps=[WorkflowStep(
            name="false",
            action=CommandAction(pattern="false"),
            retry_policy=RetryPolicy.no_retry(),
        )],
    )


class TestChain:
    """Tests for sequential chaining."""

    @pytest.mark.asyncio
    async def test_chain_runs_in_order(self, engine, echo_runner):
        """Test that chained workflows run one after another."""
        results = await engine.execute_chain([
            echo_workflow("a", "one"),
            echo_workflow("b", "two"),
        ])

        assert [r.status for r in results] == [ExecutionStatus.COMPLETED] * 2
        assert echo_runner.calls == ["echo one", "echo two"]

    @pytest.mark.asyncio
    async def test_chain_threads_results_forward(self, engine, echo_runner):
        """Test that a later workflow sees the previous one's results."""
        second = Workflow(
            name="b",
            steps=[WorkflowStep(name="show", action=CommandAction(pattern="echo ${last_status}"))],
        )

        await engine.execute_chain([echo_workflow("a", "one"), second])

        assert echo_runner.calls == ["echo one", "echo success"]

    @pytest.mark.asyncio
    async def test_chain_stops_on_failure(self, engine, echo_runner):
        """Test that the chain stops after a failed workflow."""
        results = await engine.execute_chain([
            echo_workflow("a", "one"),
            failing_workflow(),
            echo_workflow("c", "three"),
        ])

        assert len(results) == 2
        assert results[1].status == ExecutionStatus.FAILED
        assert results[1].errors[0].kind == "step_failed"
        assert "echo three" not in echo_runner.calls

    @pytest.mark.asyncio
    async def test_chain_continue_on_error(self, engine, echo_runner):
        """Test that continue_on_error runs the whole chain."""
        context = ExecutionContext(continue_on_error=True)

        results = await engine.execute_chain(
            [echo_workflow("a", "one"), failing_workflow(), echo_workflow("c", "three")],
            context,
        )

        assert [r.status for r in results] == [
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.COMPLETED,
        ]
        assert echo_runner.calls[-1] == "echo three"

    @pytest.mark.asyncio
    async def test_chain_rejects_invalid_workflow(self, engine):
        """Test that structural errors still raise."""
        with pytest.raises(InvalidWorkflowError):
            await engine.execute_chain([Workflow(name="empty")])


class TestParallel:
    """Tests for parallel workflow execution."""

    @pytest.mark.asyncio
    async def test_results_in_input_order(self, engine):
        """Test that results line up with inputs despite random finish order."""
        engine.executor.register_handler(ActionKind.CUSTOM, SleepyHandler())

        workflows = []
        for index in range(6):
            delay = f"{random.uniform(0.0, 0.05):.3f}"
            step = WorkflowStep(
                name=f"sleep {index}",
                action=CustomAction(identifier=f"w{index}", parameters={"delay": delay}),
            )
            workflows.append(Workflow(name=f"w{index}", steps=[step]))

        results = await engine.execute_parallel(workflows)

        assert len(results) == len(workflows)
        for workflow, result in zip(workflows, results):
            step_id = workflow.steps[0].id
            assert list(result.step_results) == [step_id]
            assert result.step_results[step_id].output == workflow.name

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, engine, fast_config):
        """Test that max_parallel_tasks bounds concurrent workflows."""
        fast_config.max_parallel_tasks = 2
        handler = SleepyHandler()
        engine.executor.register_handler(ActionKind.CUSTOM, handler)

        workflows = [
            Workflow(name=f"w{i}", steps=[WorkflowStep(
                name="sleep",
                action=CustomAction(identifier="sleep", parameters={"delay": "0.02"}),
            )])
            for i in range(5)
        ]

        await engine.execute_parallel(workflows)

        assert handler.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_failure_does_not_cancel_siblings(self, engine, echo_runner):
        """Test that one failed workflow leaves the others to finish."""
        results = await engine.execute_parallel([
            echo_workflow("a", "one"),
            failing_workflow(),
            echo_workflow("c", "three"),
        ])

        assert [r.status for r in results] == [
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_hook_error_does_not_cancel_siblings(self, engine, echo_runner):
        """Test that a raising condition hook fails only its own workflow."""
        def hook(expression, context):
            if expression == "explode":
                raise RuntimeError("hook exploded")
            return True

        engine.evaluator.set_custom_hook(hook)
        exploding = Workflow(name="b", steps=[WorkflowStep(
            name="gated",
            action=CommandAction(pattern="echo two"),
            condition=WorkflowCondition(condition_type=ConditionType.CUSTOM, expression="explode"),
        )])

        results = await engine.execute_parallel([
            echo_workflow("a", "one"),
            exploding,
            echo_workflow("c", "three"),
        ])

        assert [r.status for r in results] == [
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.COMPLETED,
        ]
        assert sorted(echo_runner.calls) == ["echo one", "echo three"]

    @pytest.mark.asyncio
    async def test_invalid_workflow_rejected_upfront(self, engine, echo_runner):
        """Test that validation happens before anything runs."""
        with pytest.raises(InvalidWorkflowError):
            await engine.execute_parallel([echo_workflow("a", "one"), Workflow(name="empty")])

        assert echo_runner.calls == []

    @pytest.mark.asyncio
    async def test_parallel_steps(self, engine, state_manager):
        """Test running steps concurrently inside one execution."""
        steps = [
            WorkflowStep(name="a", action=CommandAction(pattern="echo a")),
            WorkflowStep(
                name="b",
                action=CommandAction(pattern="echo b"),
                condition=WorkflowCondition(
                    condition_type=ConditionType.IF_VARIABLE,
                    expression="mode == full",
                ),
            ),
        ]
        execution = Execution(
            workflow=Workflow(name="host", steps=steps),
            context=ExecutionContext(),
            status=ExecutionStatus.RUNNING,
        )
        await state_manager.register_execution(execution)

        results = await engine.execute_steps_parallel(steps, ExecutionContext(), execution.id)

        assert results[steps[0].id].status == ActionStatus.SUCCESS
        assert results[steps[1].id].status == ActionStatus.SKIPPED

        stored = await state_manager.get_execution(execution.id)
        assert set(stored.results) == {steps[0].id, steps[1].id}


class TestComposite:
    """Tests for composite workflows."""

    def test_compose_workflow_shape(self, engine):
        """Test the composite workflow's steps and metadata."""
        a = echo_workflow("a", "one")
        b = echo_workflow("b", "two")

        composite = engine.compose_workflow("combo", "both", [a, b], CompositionMode.PARALLEL)

        assert composite.is_composite
        assert composite.metadata["composition_mode"] == "parallel"
        assert composite.metadata["sub_workflow_count"] == "2"
        assert [s.name for s in composite.steps] == ["Execute a", "Execute b"]
        action = composite.steps[0].action
        assert action.identifier == EXECUTE_WORKFLOW_ACTION
        assert action.parameters == {"workflow_id": a.id, "workflow_name": "a"}

    @pytest.mark.asyncio
    async def test_sequential_composite_aggregates(self, engine, echo_runner):
        """Test that sub-results are merged into one result."""
        a = echo_workflow("a", "one")
        b = echo_workflow("b", "two", "three")
        composite = engine.compose_workflow("combo", "", [a, b])

        result = await engine.execute_composite_workflow(composite, {a.id: a, b.id: b})

        assert result.status == ExecutionStatus.COMPLETED
        assert len(result.step_results) == 3
        assert echo_runner.calls == ["echo one", "echo two", "echo three"]
        assert result.end_time >= result.start_time
        assert result.duration == pytest.approx((result.end_time - result.start_time).total_seconds())

        history_ids = {e.id for e in await engine.state.get_history()}
        assert result.execution_id not in history_ids

    @pytest.mark.asyncio
    async def test_sequential_composite_stops_on_failure(self, engine, echo_runner):
        """Test that a failed sub-workflow fails the composite."""
        a = failing_workflow("a")
        b = echo_workflow("b", "two")
        composite = engine.compose_workflow("combo", "", [a, b])

        result = await engine.execute_composite_workflow(composite, {a.id: a, b.id: b})

        assert result.status == ExecutionStatus.FAILED
        assert len(result.errors) == 1
        assert "echo two" not in echo_runner.calls

    @pytest.mark.asyncio
    async def test_parallel_composite(self, engine, echo_runner):
        """Test that parallel composition runs every sub-workflow."""
        a = failing_workflow("a")
        b = echo_workflow("b", "two")
        composite = engine.compose_workflow("combo", "", [a, b], CompositionMode.PARALLEL)

        result = await engine.execute_composite_workflow(composite, {a.id: a, b.id: b})

        assert result.status == ExecutionStatus.FAILED
        assert "echo two" in echo_runner.calls

    @pytest.mark.asyncio
    async def test_conditional_composite(self, engine, echo_runner):
        """Test that conditional composition skips sub-workflows whose condition fails."""
        a = echo_workflow("a", "one")
        recovery = echo_workflow("recovery", "fix")
        c = echo_workflow("c", "three")
        composite = engine.compose_workflow(
            "combo",
            "",
            [a, recovery, c],
            CompositionMode.CONDITIONAL,
            conditions={
                recovery.id: WorkflowCondition(condition_type=ConditionType.IF_FAILURE),
                c.id: WorkflowCondition(condition_type=ConditionType.IF_SUCCESS),
            },
        )

        result = await engine.execute_composite_workflow(
            composite,
            {a.id: a, recovery.id: recovery, c.id: c},
        )

        assert result.status == ExecutionStatus.COMPLETED
        assert echo_runner.calls == ["echo one", "echo three"]
        assert len(result.step_results) == 2

    @pytest.mark.asyncio
    async def test_missing_sub_workflows_are_skipped(self, engine, echo_runner):
        """Test that unknown sub-workflow IDs are skipped."""
        a = echo_workflow("a", "one")
        b = echo_workflow("b", "two")
        composite = engine.compose_workflow("combo", "", [a, b])

        result = await engine.execute_composite_workflow(composite, {b.id: b})

        assert result.status == ExecutionStatus.COMPLETED
        assert echo_runner.calls == ["echo two"]

    @pytest.mark.asyncio
    async def test_empty_composite_completes(self, engine):
        """Test that a composite with nothing to run completes."""
        composite = engine.compose_workflow("combo", "", [echo_workflow("a", "one")])

        result = await engine.execute_composite_workflow(composite, {})

        assert result.status == ExecutionStatus.COMPLETED
        assert result.step_results == {}

    @pytest.mark.asyncio
    async def test_non_composite_rejected(self, engine):
        """Test that plain workflows are rejected."""
        with pytest.raises(InvalidWorkflowError):
            await engine.execute_composite_workflow(echo_workflow("a", "one"), {})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
