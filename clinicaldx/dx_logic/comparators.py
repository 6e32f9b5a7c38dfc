#!/usr/bin/env python3
"""
Comparator library shared by every criterion kind and by counting expressions.

Numeric:  >  <  >=  <=  ==  !=   against a fixed threshold
Boolean:  is_true  is_false      against a fixed target

Unknown operator strings fail at compile time (UnknownOperator), never default.
"""
from __future__ import annotations

import operator
from typing import Any, Callable, Optional

from clinicaldx.dx_logic.model import CriterionStatus
from clinicaldx.utils.exceptions import UnknownOperator

NUMERIC_OPERATORS = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}

BOOLEAN_OPERATORS = {
    "is_true": True,
    "is_false": False,
}

ALL_OPERATORS = tuple(NUMERIC_OPERATORS) + tuple(BOOLEAN_OPERATORS)


def is_boolean_operator(op: Any) -> bool:
    return op in BOOLEAN_OPERATORS


def validate_operator(op: Any) -> str:
    """Return ``op`` if it is known, else raise UnknownOperator."""
    if not isinstance(op, str) or op not in ALL_OPERATORS:
        raise UnknownOperator(
            f"Unknown operator: {op!r} (expected one of {', '.join(ALL_OPERATORS)})"
        )
    return op


def numeric_comparator(op: str, threshold: float) -> Callable[[float], bool]:
    """``value -> value <op> threshold`` for one of the six numeric operators."""
    fn = NUMERIC_OPERATORS.get(op) if isinstance(op, str) else None
    if fn is None:
        raise UnknownOperator(
            f"Unknown numeric operator: {op!r} (expected one of {', '.join(NUMERIC_OPERATORS)})"
        )
    return lambda n: fn(n, threshold)


def boolean_comparator(op: str) -> Callable[[Any], bool]:
    """``value -> value is <target>`` for is_true / is_false."""
    if op not in BOOLEAN_OPERATORS:
        raise UnknownOperator(
            f"Unknown boolean operator: {op!r} (expected is_true or is_false)"
        )
    target = BOOLEAN_OPERATORS[op]
    return lambda v: v == target


def compile_check(op: str, threshold: Optional[float]) -> Callable[[Any], CriterionStatus]:
    """
    Absent-aware comparison: ``None`` -> UNKNOWN, otherwise MET / NOT_MET.

    ``threshold`` is ignored for boolean operators and required for numeric ones
    (callers validate its presence so they can name the offending criterion).
    """
    if is_boolean_operator(op):
        test = boolean_comparator(op)
    else:
        test = numeric_comparator(op, threshold)

    def check(value: Any) -> CriterionStatus:
        if value is None:
            return CriterionStatus.UNKNOWN
        return CriterionStatus.MET if test(value) else CriterionStatus.NOT_MET

    return check
