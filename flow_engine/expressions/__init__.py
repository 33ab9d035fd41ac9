"""Sandboxed condition expressions for decision nodes."""

from flow_engine.expressions.evaluator import (
    ConditionEvaluator,
    ExpressionError,
    evaluate_condition,
    validate_expression,
)

__all__ = [
    "ConditionEvaluator",
    "ExpressionError",
    "evaluate_condition",
    "validate_expression",
]
