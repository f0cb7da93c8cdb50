"""
Hubflow Command Actions

Contract for the command backend and the handler that maps its results
onto ActionResults.
"""

from __future__ import annotations

import asyncio
import re
import shlex
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional

import structlog

from hubflow.automation.actions.executor import BaseActionHandler
from hubflow.automation.errors import ExecutionTimeoutError
from hubflow.automation.types import ActionResult, ActionStatus, CommandAction
from hubflow.core.config import get_config

if TYPE_CHECKING:
    from hubflow.automation.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)


@dataclass
class CommandResult:
    """Outcome of running one command."""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration: float = 0.0

    @property
    def is_success(self) -> bool:
        return self.exit_code == 0


class CommandRunner(ABC):
    """Backend that actually runs command patterns."""

    @abstractmethod
    async def execute(
        self,
        pattern: str,
        parameters: Dict[str, str],
        working_directory: Optional[str] = None,
    ) -> CommandResult:
        """Run a command pattern with its parameters."""


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


class ShellCommandRunner(CommandRunner):
    """
    Runs commands through the system shell.

    ``{name}`` placeholders in the pattern are replaced by the shell-quoted
    value of the matching parameter. Unknown placeholders are left alone.
    """

    PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else get_config().automation.command_timeout

    def render(self, pattern: str, parameters: Dict[str, str]) -> str:
        def replace(match: re.Match) -> str:
            name = match.group(1)
            if name in parameters:
                return shlex.quote(parameters[name])
            return match.group(0)

        return self.PLACEHOLDER_PATTERN.sub(replace, pattern)

    async def execute(
        self,
        pattern: str,
        parameters: Dict[str, str],
        working_directory: Optional[str] = None,
    ) -> CommandResult:
        command = self.render(pattern, parameters)
        start = time.monotonic()

        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=working_directory,
        )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await _kill(process)
            logger.warning("command_timeout", command=command, timeout=self.timeout)
            raise ExecutionTimeoutError(self.timeout)
        except BaseException:
            # cancelled by an outer timeout or a cancelled execution
            await _kill(process)
            logger.warning("command_interrupted", command=command)
            raise

        result = CommandResult(
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            exit_code=process.returncode,
            duration=time.monotonic() - start,
        )

        logger.debug(
            "command_executed",
            command=command,
            exit_code=result.exit_code,
            duration=result.duration,
        )
        return result


class CommandActionHandler(BaseActionHandler):
    """Handler for command actions."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    async def execute(
        self,
        action: CommandAction,
        context: "ExecutionContext",
    ) -> ActionResult:
        """Execute a command action."""
        try:
            result = await self.runner.execute(
                action.pattern,
                action.parameters,
                action.working_directory,
            )
        except ExecutionTimeoutError:
            raise
        except Exception as e:
            logger.error("command_error", pattern=action.pattern, error=str(e))
            return ActionResult(status=ActionStatus.FAILURE, error=str(e))

        metadata = {
            "exit_code": str(result.exit_code),
            "duration": str(result.duration),
        }
        if action.requires_sudo:
            metadata["requires_sudo"] = "true"

        if result.is_success:
            return ActionResult(
                status=ActionStatus.SUCCESS,
                output=result.stdout if action.capture_output else None,
                duration=result.duration,
                metadata=metadata,
            )

        metadata["stderr"] = result.stderr
        return ActionResult(
            status=ActionStatus.FAILURE,
            output=result.stdout if action.capture_output else None,
            error=f"Command failed with exit code {result.exit_code}: {result.stderr}",
            duration=result.duration,
            metadata=metadata,
        )
