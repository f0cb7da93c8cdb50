"""
Hubflow Condition Operators

Comparison operators for if_variable conditions.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Optional


class ConditionOperator(str, Enum):
    """Operators accepted in ``<name> <op> <value>`` expressions."""
    EQUALS = "=="
    NOT_EQUALS = "!="
    CONTAINS = "contains"
    GREATER_THAN = ">"
    LESS_THAN = "<"
    GREATER_EQUAL = ">="
    LESS_EQUAL = "<="

    @classmethod
    def parse(cls, token: str) -> Optional["ConditionOperator"]:
        """Return the operator for a token, or None if it is unknown."""
        try:
            return cls(token)
        except ValueError:
            return None


class OperatorRegistry:
    """
    Registry of comparison operators.

    Operands are always strings. Ordering operators parse both sides as
    floats and are false when either side is not numeric.
    """

    def __init__(self):
        self._operators: Dict[ConditionOperator, Callable[[str, str], bool]] = {}
        self._register_builtin_operators()

    def _register_builtin_operators(self) -> None:
        """Register built-in operators."""
        self._operators[ConditionOperator.EQUALS] = self._equals
        self._operators[ConditionOperator.NOT_EQUALS] = self._not_equals
        self._operators[ConditionOperator.CONTAINS] = self._contains
        self._operators[ConditionOperator.GREATER_THAN] = self._numeric(lambda a, b: a > b)
        self._operators[ConditionOperator.LESS_THAN] = self._numeric(lambda a, b: a < b)
        self._operators[ConditionOperator.GREATER_EQUAL] = self._numeric(lambda a, b: a >= b)
        self._operators[ConditionOperator.LESS_EQUAL] = self._numeric(lambda a, b: a <= b)

    def register(
        self,
        operator: ConditionOperator,
        func: Callable[[str, str], bool],
    ) -> None:
        """Register a custom operator implementation."""
        self._operators[operator] = func

    def evaluate(
        self,
        operator: ConditionOperator,
        left: str,
        right: str,
    ) -> bool:
        """Evaluate an operator."""
        func = self._operators.get(operator)
        if not func:
            raise ValueError(f"Unknown operator: {operator}")

        return func(left, right)

    # === Operator Implementations ===

    @staticmethod
    def _equals(left: str, right: str) -> bool:
        return left == right

    @staticmethod
    def _not_equals(left: str, right: str) -> bool:
        return left != right

    @staticmethod
    def _contains(left: str, right: str) -> bool:
        return right in left

    @staticmethod
    def _numeric(op: Callable[[float, float], bool]) -> Callable[[str, str], bool]:
        def compare_numbers(left: str, right: str) -> bool:
            try:
                return op(float(left), float(right))
            except (ValueError, TypeError):
                return False

        return compare_numbers


# Global operator registry
_operator_registry = OperatorRegistry()


def compare(
    left: str,
    operator: ConditionOperator,
    right: str,
) -> bool:
    """
    Compare two values using an operator.

    Args:
        left: Variable value
        operator: Comparison operator
        right: Literal from the expression

    Returns:
        Comparison result
    """
    return _operator_registry.evaluate(operator, left, right)
