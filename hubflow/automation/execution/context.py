"""
Hubflow Execution Context

The variable bag threaded through a workflow run.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import structlog

from hubflow.automation.types import ActionResult

logger = structlog.get_logger(__name__)


class ExecutionSource(str, Enum):
    """What started an execution."""
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    TRIGGER = "trigger"
    API = "api"


@dataclass
class AutomationEvent:
    """An external event that triggered an execution."""
    event_type: str
    source: str = ""
    data: Dict[str, str] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "source": self.source,
            "data": dict(self.data),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ExecutionContext:
    """
    Execution context for workflows.

    Features:
    - String variable storage
    - ${name} resolution against the variables
    - Copy-on-write folding of step results (last_status, last_output,
      last_duration)
    """

    # Expression pattern for ${ variable }
    EXPRESSION_PATTERN = re.compile(r"\$\{\s*([^}]+?)\s*\}")

    source: ExecutionSource = ExecutionSource.MANUAL
    source_id: Optional[str] = None
    variables: Dict[str, str] = field(default_factory=dict)
    event: Optional[AutomationEvent] = None
    continue_on_error: bool = False

    # === Data Access ===

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.variables.get(key, default)

    def set(self, key: str, value: str) -> None:
        self.variables[key] = value
        logger.debug("context_set", key=key)

    def has(self, key: str) -> bool:
        return key in self.variables

    # === Expression Resolution ===

    def resolve(self, value: str) -> str:
        """
        Replace ${name} tokens with their variable values.

        Tokens naming an unknown variable are left as written.
        """
        if "${" not in value:
            return value

        def replace_token(match: re.Match) -> str:
            name = match.group(1)
            if name in self.variables:
                return self.variables[name]
            return match.group(0)

        return self.EXPRESSION_PATTERN.sub(replace_token, value)

    # === Result Folding ===

    def update_variables(self, result: ActionResult) -> None:
        """Fold a step result into the variables in place."""
        if result.output is not None:
            self.variables["last_output"] = result.output
            output_variable = result.metadata.get("output_variable")
            if output_variable:
                self.variables[output_variable] = result.output

        self.variables["last_status"] = result.status.value

        if result.duration is not None:
            self.variables["last_duration"] = str(result.duration)

    def with_result(self, result: ActionResult) -> "ExecutionContext":
        """Return a new context with the result folded in."""
        context = self.copy()
        context.update_variables(result)
        return context

    def copy(self) -> "ExecutionContext":
        return replace(self, variables=dict(self.variables))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.value,
            "source_id": self.source_id,
            "variables": dict(self.variables),
            "event": self.event.to_dict() if self.event else None,
            "continue_on_error": self.continue_on_error,
        }
