"""
Hubflow Condition Evaluator

Evaluates step conditions against an execution context.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Union

import structlog

from hubflow.automation.conditions.operators import ConditionOperator, compare
from hubflow.automation.types import ActionStatus, ConditionType, WorkflowCondition

if TYPE_CHECKING:
    from hubflow.automation.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)

CustomConditionHook = Callable[
    [str, "ExecutionContext"],
    Union[bool, Awaitable[bool]],
]


class ConditionEvaluator:
    """
    Evaluates workflow conditions.

    Features:
    - always / if_success / if_failure on the last step status
    - if_variable expressions (exists, empty, comparison operators)
    - Pluggable hook for custom expressions
    """

    def __init__(self, custom_hook: Optional[CustomConditionHook] = None):
        self._custom_hook = custom_hook

    def set_custom_hook(self, hook: Optional[CustomConditionHook]) -> None:
        """Install the evaluator used for custom conditions."""
        self._custom_hook = hook

    async def evaluate(
        self,
        condition: Optional[WorkflowCondition],
        context: "ExecutionContext",
    ) -> bool:
        """
        Evaluate a condition against a context.

        Args:
            condition: Condition to evaluate; None always passes
            context: Execution context for variable lookup

        Returns:
            Boolean result
        """
        if condition is None:
            return True

        condition_type = condition.condition_type

        if condition_type == ConditionType.ALWAYS:
            result = True
        elif condition_type == ConditionType.IF_SUCCESS:
            result = context.get("last_status") == ActionStatus.SUCCESS.value
        elif condition_type == ConditionType.IF_FAILURE:
            result = context.get("last_status") == ActionStatus.FAILURE.value
        elif condition_type == ConditionType.IF_VARIABLE:
            result = self.evaluate_expression(condition.expression, context)
        else:
            result = await self._evaluate_custom(condition.expression, context)

        logger.debug(
            "condition_evaluated",
            condition_type=condition_type.value,
            expression=condition.expression,
            result=result,
        )
        return result

    def evaluate_expression(self, expression: str, context: "ExecutionContext") -> bool:
        """
        Evaluate an if_variable expression.

        Forms:
        - ``<name> exists``
        - ``<name> empty`` (an absent variable counts as empty)
        - ``<name> <op> <value...>`` with op in == != contains > < >= <=
        """
        tokens = expression.split()

        if len(tokens) == 2:
            name, keyword = tokens
            if keyword == "exists":
                return context.has(name)
            if keyword == "empty":
                return not context.get(name)
            return False

        if len(tokens) < 3:
            return False

        name, op_token = tokens[0], tokens[1]
        expected = " ".join(tokens[2:])

        value = context.get(name)
        if value is None:
            return False

        operator = ConditionOperator.parse(op_token)
        if operator is None:
            logger.debug("unknown_operator", operator=op_token)
            return False

        return compare(value, operator, expected)

    async def _evaluate_custom(self, expression: str, context: "ExecutionContext") -> bool:
        if self._custom_hook is None:
            return True

        result = self._custom_hook(expression, context)
        if asyncio.iscoroutine(result):
            result = await result
        return bool(result)
