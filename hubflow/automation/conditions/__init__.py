"""
Hubflow Workflow Conditions

Condition evaluation for step gating:
- Last-status checks
- Variable expressions
- Comparison operators
"""

from hubflow.automation.conditions.evaluator import ConditionEvaluator
from hubflow.automation.conditions.operators import (
    ConditionOperator,
    OperatorRegistry,
    compare,
)

__all__ = [
    "ConditionEvaluator",
    "ConditionOperator",
    "OperatorRegistry",
    "compare",
]
