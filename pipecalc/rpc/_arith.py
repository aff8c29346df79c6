# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Evaluation of arithmetic requests.

Integer semantics follow the C conventions the wire format comes from:
``div`` truncates toward zero.  Every result must fit the int32 ``result``
field of the response record; anything outside that range is reported as an
error instead of being wrapped.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Final

from pipecalc.rpc._wire import INT32_MAX, INT32_MIN, OPERATIONS, Request, Response

__all__ = [
    "DIVISION_BY_ZERO",
    "INTEGER_OVERFLOW",
    "INVALID_OPERATION",
    "evaluate",
    "is_valid_operation",
]

DIVISION_BY_ZERO: Final[str] = "Division by zero"
INVALID_OPERATION: Final[str] = "Invalid operation"
INTEGER_OVERFLOW: Final[str] = "Integer overflow"


def _truncating_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


_OPERATORS: Final[dict[str, Callable[[int, int], int]]] = {
    "add": lambda a, b: a + b,
    "sub": lambda a, b: a - b,
    "mul": lambda a, b: a * b,
    "div": _truncating_div,
}
assert tuple(_OPERATORS) == OPERATIONS


def is_valid_operation(operation: str) -> bool:
    """Return whether *operation* is one of ``add``, ``sub``, ``mul``, ``div``."""
    return operation in _OPERATORS


def evaluate(request: Request) -> Response:
    """Compute the response for *request*.

    Unknown operators and division by zero produce error responses rather
    than exceptions: they are normal round trips carrying a failure payload.
    """
    operator = _OPERATORS.get(request.operation)
    if operator is None:
        return Response.failure(INVALID_OPERATION)
    if request.operation == "div" and request.operand2 == 0:
        return Response.failure(DIVISION_BY_ZERO)
    result = operator(request.operand1, request.operand2)
    if not INT32_MIN <= result <= INT32_MAX:
        return Response.failure(INTEGER_OVERFLOW)
    return Response.success(result)
