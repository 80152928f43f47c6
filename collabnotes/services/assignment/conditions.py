"""
Rule conditions.

A condition set maps a task attribute to ``{"operator": ..., "value": ...}``.
Every condition must hold for the set to match; an empty set matches any task.
"""
import enum
import logging
from typing import Any, Mapping

logger = logging.getLogger(__name__)


class Operator(str, enum.Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    IN = "in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    NOT_EMPTY = "not_empty"


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _contains(value: Any, needle: Any) -> bool:
    if not isinstance(needle, str):
        return False
    needle = needle.lower()
    if isinstance(value, str):
        return needle in value.lower()
    # list attributes such as skills: any element may contain the needle
    if isinstance(value, (list, tuple)):
        return any(isinstance(v, str) and needle in v.lower() for v in value)
    return False


def evaluate_condition(attribute: str, condition: Mapping[str, Any], task: Mapping[str, Any]) -> bool:
    value = task.get(attribute)
    operator = condition.get("operator")
    expected = condition.get("value")

    if operator == Operator.EQUALS:
        return value == expected
    if operator == Operator.CONTAINS:
        return _contains(value, expected)
    if operator == Operator.IN:
        if not isinstance(expected, (list, tuple)):
            return False
        if isinstance(value, (list, tuple)):
            return any(v in expected for v in value)
        return value in expected
    if operator in (Operator.GREATER_THAN, Operator.LESS_THAN):
        left, right = _as_number(value), _as_number(expected)
        if left is None or right is None:
            return False
        return left > right if operator == Operator.GREATER_THAN else left < right
    if operator == Operator.NOT_EMPTY:
        if value is None:
            return False
        if isinstance(value, (str, list, tuple, dict)):
            return len(value) > 0
        return True

    logger.warning(f"Unknown condition operator {operator!r} on {attribute!r}")
    return False


def evaluate_conditions(conditions: Mapping[str, Mapping[str, Any]] | None, task: Mapping[str, Any]) -> bool:
    if not conditions:
        return True
    return all(evaluate_condition(attr, cond or {}, task) for attr, cond in conditions.items())
