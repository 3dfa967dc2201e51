"""Arithmetic built-in tool.

Expressions are parsed with ``ast`` and walked over a tiny whitelist of
nodes, so nothing the model sends is ever evaluated as Python.
"""

from __future__ import annotations

import ast
import math
import operator
import re

from apsara.tools.base import ApsaraTool, ToolParam, ToolResult

_ALLOWED_CHARS = re.compile(r"^[\d\s+\-*/().]+$")

_BINARY = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}

_UNARY = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def _eval(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _eval(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY:
        return _BINARY[type(node.op)](_eval(node.left), _eval(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY:
        return _UNARY[type(node.op)](_eval(node.operand))
    raise ValueError("unsupported expression")


def evaluate(expression: str) -> float:
    """Evaluate ``+ - * / ( )`` arithmetic. Raises ValueError on bad input."""
    if not _ALLOWED_CHARS.match(expression):
        raise ValueError(
            "Invalid expression. Only numbers and +, -, *, /, () are allowed."
        )
    try:
        tree = ast.parse(expression.strip(), mode="eval")
        result = _eval(tree)
    except ZeroDivisionError:
        raise ValueError("Result is not a finite number (division by zero?).")
    except SyntaxError as e:
        raise ValueError(f"Calculation error: {e.msg}")

    if not math.isfinite(result):
        raise ValueError("Result is not a finite number (division by zero?).")
    result = round(result, 10)
    return int(result) if float(result).is_integer() else result


class CalculateTool(ApsaraTool):
    name = "calculate"
    description = (
        "Performs a basic arithmetic calculation. Supports addition, "
        "subtraction, multiplication, and division. Use this when the user "
        "asks for a math calculation."
    )
    parameters = [
        ToolParam(
            name="expression",
            type="string",
            description=(
                'A simple arithmetic expression to evaluate, e.g. "2 + 3 * 4" or '
                '"100 / 7". Only supports +, -, *, / and parentheses.'
            ),
        ),
    ]

    async def execute(self, expression: str, **_) -> ToolResult:
        try:
            result = evaluate(str(expression))
        except ValueError as e:
            return ToolResult.fail(str(e))
        return ToolResult.success(expression=expression, result=result)
