"""
Hubflow Workflow Actions

Action dispatch for workflow execution:
- Command execution through a pluggable runner
- Placeholder backends for pipelines, AI queries, tests, deploys,
  macros and custom actions
"""

from hubflow.automation.actions.executor import ActionExecutor, BaseActionHandler
from hubflow.automation.actions.command import (
    CommandActionHandler,
    CommandResult,
    CommandRunner,
    ShellCommandRunner,
)

__all__ = [
    "ActionExecutor",
    "BaseActionHandler",
    "CommandActionHandler",
    "CommandResult",
    "CommandRunner",
    "ShellCommandRunner",
]
