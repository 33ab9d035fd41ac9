"""
Sandboxed condition evaluation engine.

Evaluates decision conditions such as ``age >= 18 and plan == 'gold'``
against a run's variables without eval/exec.
"""

import ast
import operator
import re
from collections.abc import Mapping, Sequence
from typing import Any, Optional


class ExpressionError(Exception):
    """Raised when an expression cannot be parsed or evaluated."""

    def __init__(self, message: str, expression: str, position: Optional[int] = None):
        self.expression = expression
        self.position = position
        super().__init__(message)


class ConditionEvaluator:
    """
    Evaluates boolean expressions safely.

    Supports:
    - Comparisons: == != < <= > >= in, not in, is, is not
    - Boolean logic: and / or / not (also && / || / !)
    - Arithmetic: + - * / %
    - Variable access: ``age``, ``patient.age``, ``tags[0]``, ``meta["k"]``
    - Literals: numbers, strings, lists, true/false/null
    - Helpers: len, str, int, float, abs, min, max, lower, upper

    Security:
    - No eval/exec
    - Only whitelisted AST nodes are accepted
    - Dotted access only walks mapping keys, never object attributes
    """

    MAX_LENGTH = 1000

    # Quoted string literals are left untouched by operator rewriting
    STRING_PATTERN = re.compile(r"(\"(?:[^\"\\]|\\.)*\"|'(?:[^'\\]|\\.)*')")

    # Editor users write JavaScript-style operators
    OPERATOR_REWRITES: list[tuple[re.Pattern, str]] = [
        (re.compile(r"!=="), "!="),
        (re.compile(r"==="), "=="),
        (re.compile(r"&&"), " and "),
        (re.compile(r"\|\|"), " or "),
        (re.compile(r"!(?!=)"), " not "),
    ]

    LITERALS: dict[str, Any] = {
        "true": True,
        "false": False,
        "null": None,
        "none": None,
        "True": True,
        "False": False,
        "None": None,
    }

    FUNCTIONS: dict[str, Any] = {
        "len": len,
        "str": str,
        "int": int,
        "float": float,
        "abs": abs,
        "min": min,
        "max": max,
        "lower": lambda value: str(value).lower(),
        "upper": lambda value: str(value).upper(),
    }

    ALLOWED_NODES = (
        ast.Expression,
        ast.BoolOp, ast.And, ast.Or,
        ast.UnaryOp, ast.Not, ast.USub, ast.UAdd,
        ast.Compare, ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE,
        ast.In, ast.NotIn, ast.Is, ast.IsNot,
        ast.BinOp, ast.Add, ast.Sub, ast.Mult, ast.Div, ast.Mod,
        ast.Name, ast.Load, ast.Constant, ast.Attribute, ast.Subscript,
        ast.List, ast.Tuple, ast.Call,
    )

    BINARY_OPERATORS = {
        ast.Add: operator.add,
        ast.Sub: operator.sub,
        ast.Mult: operator.mul,
        ast.Div: operator.truediv,
        ast.Mod: operator.mod,
    }

    COMPARISON_OPERATORS = {
        ast.Eq: operator.eq,
        ast.NotEq: operator.ne,
        ast.Lt: operator.lt,
        ast.LtE: operator.le,
        ast.Gt: operator.gt,
        ast.GtE: operator.ge,
        ast.In: lambda left, right: left in right,
        ast.NotIn: lambda left, right: left not in right,
        ast.Is: operator.is_,
        ast.IsNot: operator.is_not,
    }

    def __init__(self, variables: Optional[Mapping[str, Any]] = None):
        self.variables = variables or {}

    # ==================== Parsing ====================

    @classmethod
    def normalize(cls, expression: str) -> str:
        """Rewrite JavaScript-style operators outside of string literals."""
        parts = cls.STRING_PATTERN.split(expression)
        for index in range(0, len(parts), 2):
            segment = parts[index]
            for pattern, replacement in cls.OPERATOR_REWRITES:
                segment = pattern.sub(replacement, segment)
            parts[index] = segment
        return "".join(parts).strip()

    @classmethod
    def parse(cls, expression: str) -> ast.Expression:
        """
        Parse and vet an expression.

        Raises:
            ExpressionError: If the expression is empty, too long, not valid
                syntax or uses a construct outside the whitelist.
        """
        if not isinstance(expression, str) or not expression.strip():
            raise ExpressionError("Expression is empty", str(expression))
        if len(expression) > cls.MAX_LENGTH:
            raise ExpressionError(
                f"Expression exceeds {cls.MAX_LENGTH} characters", expression
            )

        source = cls.normalize(expression)
        try:
            tree = ast.parse(source, mode="eval")
        except SyntaxError as e:
            raise ExpressionError(
                f"Invalid expression syntax: {e.msg}", expression, e.offset
            ) from None

        for node in ast.walk(tree):
            if not isinstance(node, cls.ALLOWED_NODES):
                raise ExpressionError(
                    f"Unsupported construct: {type(node).__name__}",
                    expression,
                    getattr(node, "col_offset", None),
                )
            if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
                raise ExpressionError(
                    f"Access to '{node.attr}' is not allowed", expression, node.col_offset
                )
            if isinstance(node, ast.Call):
                if not isinstance(node.func, ast.Name) or node.func.id not in cls.FUNCTIONS:
                    raise ExpressionError(
                        "Only helper functions may be called: "
                        f"{sorted(cls.FUNCTIONS)}",
                        expression,
                        node.col_offset,
                    )
                if node.keywords:
                    raise ExpressionError(
                        "Keyword arguments are not supported", expression, node.col_offset
                    )
        return tree

    # ==================== Evaluation ====================

    def evaluate(self, expression: str) -> bool:
        """Evaluate an expression to a boolean."""
        tree = self.parse(expression)
        return bool(self.evaluate_value(tree.body, expression))

    def evaluate_value(self, node: ast.AST, expression: str) -> Any:
        try:
            return self._eval(node, expression)
        except ExpressionError:
            raise
        except (TypeError, ValueError, ArithmeticError, KeyError, IndexError) as e:
            raise ExpressionError(
                f"Cannot evaluate expression: {e}", expression, getattr(node, "col_offset", None)
            ) from None

    def _eval(self, node: ast.AST, expression: str) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.Name):
            if node.id in self.variables:
                return self.variables[node.id]
            if node.id in self.LITERALS:
                return self.LITERALS[node.id]
            raise ExpressionError(
                f"Unknown variable '{node.id}'", expression, node.col_offset
            )

        if isinstance(node, ast.Attribute):
            base = self._eval(node.value, expression)
            if isinstance(base, Mapping) and node.attr in base:
                return base[node.attr]
            raise ExpressionError(
                f"Unknown field '{node.attr}'", expression, node.col_offset
            )

        if isinstance(node, ast.Subscript):
            base = self._eval(node.value, expression)
            key = self._eval(node.slice, expression)
            if isinstance(base, (Mapping, Sequence)):
                return base[key]
            raise ExpressionError(
                f"Value of type {type(base).__name__} is not subscriptable",
                expression,
                node.col_offset,
            )

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result: Any = True
                for value in node.values:
                    result = self._eval(value, expression)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self._eval(value, expression)
                if result:
                    return result
            return result

        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, expression)
            if isinstance(node.op, ast.Not):
                return not operand
            if isinstance(node.op, ast.USub):
                return -operand
            return +operand

        if isinstance(node, ast.Compare):
            left = self._eval(node.left, expression)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, expression)
                if not self.COMPARISON_OPERATORS[type(op)](left, right):
                    return False
                left = right
            return True

        if isinstance(node, ast.BinOp):
            left = self._eval(node.left, expression)
            right = self._eval(node.right, expression)
            return self.BINARY_OPERATORS[type(node.op)](left, right)

        if isinstance(node, ast.List):
            return [self._eval(element, expression) for element in node.elts]

        if isinstance(node, ast.Tuple):
            return tuple(self._eval(element, expression) for element in node.elts)

        if isinstance(node, ast.Call):
            func = self.FUNCTIONS[node.func.id]
            args = [self._eval(arg, expression) for arg in node.args]
            return func(*args)

        raise ExpressionError(
            f"Unsupported construct: {type(node).__name__}", expression
        )


def evaluate_condition(expression: str, variables: Mapping[str, Any]) -> bool:
    """
    Evaluate a decision condition against run variables.

    Raises:
        ExpressionError: If the expression is invalid or references
            unknown variables.
    """
    return ConditionEvaluator(variables).evaluate(expression)


def validate_expression(expression: str) -> None:
    """Check an expression's syntax without evaluating it."""
    ConditionEvaluator.parse(expression)
