"""
Tests for action dispatch and the command backend.
"""

import asyncio

import pytest

from hubflow.automation.actions.command import (
    CommandActionHandler,
    CommandResult,
    CommandRunner,
    ShellCommandRunner,
)
from hubflow.automation.actions.executor import ActionExecutor, BaseActionHandler
from hubflow.automation.errors import ExecutionTimeoutError
from hubflow.automation.execution.context import ExecutionContext
from hubflow.automation.execution.retry import run_with_timeout
from hubflow.automation.types import (
    ActionKind,
    ActionResult,
    ActionStatus,
    AIQueryAction,
    CommandAction,
    DataPipelineAction,
    MacroAction,
    PipelineType,
    TestAction,
)


class BrokenRunner(CommandRunner):
    """Runner that always raises."""

    def __init__(self, error: Exception):
        self.error = error

    async def execute(self, pattern, parameters, working_directory=None):
        raise self.error


class FixedRunner(CommandRunner):
    """Runner that returns a fixed result."""

    def __init__(self, result: CommandResult):
        self.result = result

    async def execute(self, pattern, parameters, working_directory=None):
        return self.result


class TestCommandActionHandler:
    """Tests for mapping runner results to action results."""

    @pytest.mark.asyncio
    async def test_success(self):
        """Test a zero exit code."""
        handler = CommandActionHandler(FixedRunner(CommandResult(stdout="ok\n", duration=0.2)))

        result = await handler.execute(CommandAction(pattern="true"), ExecutionContext())

        assert result.status == ActionStatus.SUCCESS
        assert result.output == "ok\n"
        assert result.duration == 0.2
        assert result.metadata["exit_code"] == "0"

    @pytest.mark.asyncio
    async def test_non_zero_exit(self):
        """Test that a failed command carries exit code and stderr."""
        handler = CommandActionHandler(FixedRunner(CommandResult(stderr="nope", exit_code=2)))

        result = await handler.execute(
            CommandAction(pattern="x", requires_sudo=True),
            ExecutionContext(),
        )

        assert result.status == ActionStatus.FAILURE
        assert result.error == "Command failed with exit code 2: nope"
        assert result.metadata["exit_code"] == "2"
        assert result.metadata["stderr"] == "nope"
        assert result.metadata["requires_sudo"] == "true"

    @pytest.mark.asyncio
    async def test_capture_output_disabled(self):
        """Test that output is dropped when not captured."""
        handler = CommandActionHandler(FixedRunner(CommandResult(stdout="noise")))

        result = await handler.execute(
            CommandAction(pattern="x", capture_output=False),
            ExecutionContext(),
        )

        assert result.output is None

    @pytest.mark.asyncio
    async def test_runner_error_becomes_failure(self):
        """Test that runner exceptions are reported, not raised."""
        handler = CommandActionHandler(BrokenRunner(OSError("no shell")))

        result = await handler.execute(CommandAction(pattern="x"), ExecutionContext())

        assert result.status == ActionStatus.FAILURE
        assert result.error == "no shell"

    @pytest.mark.asyncio
    async def test_runner_timeout_propagates(self):
        """Test that runner timeouts reach the retry loop."""
        handler = CommandActionHandler(BrokenRunner(ExecutionTimeoutError(1.0)))

        with pytest.raises(ExecutionTimeoutError):
            await handler.execute(CommandAction(pattern="x"), ExecutionContext())


class TestShellCommandRunner:
    """Tests for the shell backend."""

    def test_render_quotes_parameters(self):
        """Test placeholder rendering."""
        runner = ShellCommandRunner(timeout=5)

        rendered = runner.render("grep {term} {file} {missing}", {"term": "a b", "file": "log.txt"})

        assert rendered == "grep 'a b' log.txt {missing}"

    @pytest.mark.asyncio
    async def test_runs_command(self):
        """Test a real shell command."""
        runner = ShellCommandRunner(timeout=5)

        result = await runner.execute("echo {msg}", {"msg": "hello world"})

        assert result.is_success
        assert result.stdout == "hello world\n"

    @pytest.mark.asyncio
    async def test_exit_code(self):
        """Test a failing shell command."""
        runner = ShellCommandRunner(timeout=5)

        result = await runner.execute("echo oops >&2; exit 3", {})

        assert result.exit_code == 3
        assert not result.is_success
        assert result.stderr == "oops\n"

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        """Test that a slow command raises ExecutionTimeoutError."""
        runner = ShellCommandRunner(timeout=0.1)

        with pytest.raises(ExecutionTimeoutError):
            await runner.execute("sleep 5", {})

    @pytest.mark.asyncio
    async def test_outer_cancel_kills_process(self, tmp_path):
        """Test that cancelling a running command stops the shell."""
        runner = ShellCommandRunner(timeout=5)
        marker = tmp_path / "finished"

        with pytest.raises(ExecutionTimeoutError):
            await run_with_timeout(
                runner.execute("sleep 0.5 && touch {path}", {"path": str(marker)}),
                0.1,
            )

        await asyncio.sleep(0.8)
        assert not marker.exists()


class TestActionExecutor:
    """Tests for handler dispatch."""

    @pytest.mark.asyncio
    async def test_placeholder_backends(self):
        """Test that built-in placeholders report success."""
        executor = ActionExecutor(FixedRunner(CommandResult()))
        context = ExecutionContext()

        actions = [
            DataPipelineAction(pipeline_type=PipelineType.CRAWL),
            AIQueryAction(query="status?"),
            TestAction(),
            MacroAction(macro_id="m1"),
        ]
        for action in actions:
            result = await executor.execute(action, context)
            assert result.status == ActionStatus.SUCCESS
            assert result.duration is not None

    @pytest.mark.asyncio
    async def test_output_variable_tagged(self):
        """Test that output_variable is copied into metadata."""
        executor = ActionExecutor(FixedRunner(CommandResult(stdout="v")))

        result = await executor.execute(
            CommandAction(pattern="x", output_variable="answer"),
            ExecutionContext(),
        )

        assert result.metadata["output_variable"] == "answer"

    @pytest.mark.asyncio
    async def test_register_handler(self):
        """Test replacing a backend."""
        class MacroHandler(BaseActionHandler):
            async def execute(self, action, context):
                return ActionResult(status=ActionStatus.FAILURE, error=f"no macro {action.macro_id}")

        executor = ActionExecutor(FixedRunner(CommandResult()))
        handler = MacroHandler()
        executor.register_handler(ActionKind.MACRO, handler)

        assert executor.get_handler(ActionKind.MACRO) is handler
        result = await executor.execute(MacroAction(macro_id="m2"), ExecutionContext())
        assert result.error == "no macro m2"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
