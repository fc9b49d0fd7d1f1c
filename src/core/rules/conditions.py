"""
Field comparisons shared by filter rules and routing conditions.
"""

import re
from typing import Any

from src.core.records import get_path
from src.observability.logger import get_logger

logger = get_logger(__name__)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _compare_numbers(value: Any, operand: Any, op) -> bool:
    left = _as_number(value)
    right = _as_number(operand)
    if left is None or right is None:
        return False
    return op(left, right)


def _regex_match(value: Any, pattern: Any) -> bool:
    try:
        return re.search(str(pattern), str(value)) is not None
    except re.error as e:
        logger.warning(
            "Invalid regex in condition",
            extra={"pattern": str(pattern), "error": str(e)}
        )
        return False


def _in_array(value: Any, operand: Any) -> bool:
    return isinstance(operand, list | tuple | set) and value in operand


_OPERATORS = {
    "equals": lambda v, o: v == o,
    "not_equals": lambda v, o: v != o,
    "contains": lambda v, o: str(o).lower() in str(v).lower(),
    "starts_with": lambda v, o: str(v).lower().startswith(str(o).lower()),
    "ends_with": lambda v, o: str(v).lower().endswith(str(o).lower()),
    "greater_than": lambda v, o: _compare_numbers(v, o, lambda a, b: a > b),
    "less_than": lambda v, o: _compare_numbers(v, o, lambda a, b: a < b),
    "greater_than_or_equal": lambda v, o: _compare_numbers(v, o, lambda a, b: a >= b),
    "less_than_or_equal": lambda v, o: _compare_numbers(v, o, lambda a, b: a <= b),
    "in_array": _in_array,
    "regex": _regex_match,
}

# Operators that are meaningful for a null field value
_NULL_AWARE = {"exists", "not_exists", "not_equals"}


def check_value(value: Any, operator: str, operand: Any) -> bool:
    """
    Compare a field value with an operand.

    A null value matches only ``exists``-style checks and ``not_equals``
    against a non-null operand. An unknown operator never matches and is
    logged as a warning.

    Args:
        value: Field value read from the record
        operator: Operator name
        operand: Configured comparison value

    Returns:
        True if the comparison holds
    """
    if operator == "exists":
        return value is not None
    if operator == "not_exists":
        return value is None

    compare = _OPERATORS.get(operator)
    if compare is None:
        logger.warning("Unknown condition operator", extra={"operator": operator})
        return False

    if value is None and operator not in _NULL_AWARE:
        return False
    return compare(value, operand)


def evaluate_condition(record: dict[str, Any], field: str, operator: str, operand: Any) -> bool:
    """Read a dotted field from the record and compare it."""
    return check_value(get_path(record, field), operator, operand)


SUPPORTED_OPERATORS = tuple(_OPERATORS) + ("exists", "not_exists")
