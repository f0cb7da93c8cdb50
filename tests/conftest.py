"""
Shared fixtures for Hubflow tests.
"""

from typing import Dict, List, Optional

import pytest

from hubflow.automation.actions.command import CommandResult, CommandRunner
from hubflow.automation.engine import WorkflowExecutionEngine
from hubflow.automation.execution.state import WorkflowStateManager
from hubflow.core.config import AutomationConfig


class EchoRunner(CommandRunner):
    """
    In-memory command backend.

    ``echo <text>`` succeeds with ``<text>\\n``. Queued results, when
    present, are returned first in order.
    """

    def __init__(self):
        self.calls: List[str] = []
        self.queued: List[CommandResult] = []

    async def execute(
        self,
        pattern: str,
        parameters: Dict[str, str],
        working_directory: Optional[str] = None,
    ) -> CommandResult:
        self.calls.append(pattern)

        if self.queued:
            return self.queued.pop(0)

        if pattern.startswith("echo "):
            return CommandResult(stdout=pattern[len("echo "):] + "\n", duration=0.001)

        if pattern == "false":
            return CommandResult(stderr="failed", exit_code=1, duration=0.001)

        return CommandResult(stdout="", duration=0.001)


@pytest.fixture
def fast_config():
    """Automation config with no backoff delay and quick pause polling."""
    return AutomationConfig(
        default_base_delay=0.0,
        default_max_delay=0.0,
        pause_poll_interval=0.01,
        status_refresh_interval=0.05,
    )


@pytest.fixture
def echo_runner():
    return EchoRunner()


@pytest.fixture
def state_manager():
    return WorkflowStateManager(max_history_size=1000)


@pytest.fixture
def engine(fast_config, echo_runner, state_manager):
    return WorkflowExecutionEngine(
        state_manager=state_manager,
        command_runner=echo_runner,
        config=fast_config,
    )
