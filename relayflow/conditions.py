"""Condition evaluation for workflow branching."""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, Literal, Mapping, Optional

from .models import ConditionConfig
from .templating import get_nested_value

logger = logging.getLogger(__name__)


def evaluate_condition(config: ConditionConfig, lookup: Mapping[str, Any]) -> bool:
    """Evaluate ``config`` against the context lookup.

    Never raises: unknown operators and incomparable values evaluate to
    ``False`` so branching stays deterministic.
    """
    actual = get_nested_value(lookup, config.field)
    operator = _OPERATORS.get(config.operator)
    if operator is None:
        logger.warning(f"Unknown condition operator: {config.operator}")
        return False
    try:
        result = operator(actual, config.value)
    except Exception as exc:
        logger.error(f"Condition evaluation error for {config.field} {config.operator}: {exc}")
        return False
    logger.debug(
        f"Condition {config.field} {config.operator} {config.value!r} "
        f"(actual {actual!r}) -> {result}"
    )
    return result


def evaluate_conditions(
    configs: Iterable[ConditionConfig],
    lookup: Mapping[str, Any],
    logic: Literal["and", "or"] = "and",
) -> bool:
    """Combine several conditions. An empty list is ``True``."""
    configs = list(configs)
    if not configs:
        return True
    results = (evaluate_condition(c, lookup) for c in configs)
    return all(results) if logic == "and" else any(results)


_LABELS = {
    "equals": "equals",
    "not_equals": "does not equal",
    "contains": "contains",
    "not_contains": "does not contain",
    "starts_with": "starts with",
    "ends_with": "ends with",
    "gt": "is greater than",
    "gte": "is greater than or equal to",
    "lt": "is less than",
    "lte": "is less than or equal to",
    "is_empty": "is empty",
    "is_not_empty": "is not empty",
    "in": "is one of",
    "not_in": "is not one of",
}


def describe_condition(config: ConditionConfig) -> str:
    """Human-readable rendering, e.g. ``task.priority equals "critical"``."""
    label = _LABELS.get(config.operator, config.operator)
    if config.operator in ("is_empty", "is_not_empty"):
        return f"{config.field} {label}"
    if isinstance(config.value, list):
        value = "[" + ", ".join(str(v) for v in config.value) + "]"
    else:
        value = repr(config.value) if not isinstance(config.value, str) else f'"{config.value}"'
    return f"{config.field} {label} {value}"


# ----------------------------------------------------------------------
# Operators


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    if isinstance(value, str) and value.strip():
        try:
            number = float(value)
        except ValueError:
            return None
        return None if math.isnan(number) else number
    return None


def _to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _equals(actual: Any, expected: Any) -> bool:
    if actual is None:
        return expected is None
    if isinstance(actual, bool):
        if expected in (True, "true"):
            return actual is True
        if expected in (False, "false"):
            return actual is False
        return False
    if isinstance(actual, (dict, list)) or isinstance(expected, (dict, list)):
        return actual == expected
    if isinstance(actual, str) and isinstance(expected, str):
        return actual.lower() == expected.lower()
    if isinstance(actual, (int, float)) or isinstance(expected, (int, float)):
        if isinstance(expected, bool):
            return False
        left, right = _to_number(actual), _to_number(expected)
        return left is not None and right is not None and left == right
    return actual == expected


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str) and isinstance(expected, str):
        return expected.lower() in actual.lower()
    if isinstance(actual, list):
        return any(_equals(item, expected) for item in actual)
    return False


def _starts_with(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str) and isinstance(expected, str):
        return actual.lower().startswith(expected.lower())
    return False


def _ends_with(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str) and isinstance(expected, str):
        return actual.lower().endswith(expected.lower())
    return False


def _compare(actual: Any, expected: Any) -> Optional[int]:
    """Return -1/0/1 for comparable values, ``None`` otherwise."""
    left, right = _to_number(actual), _to_number(expected)
    if left is not None and right is not None:
        return (left > right) - (left < right)
    left_dt, right_dt = _to_datetime(actual), _to_datetime(expected)
    if left_dt is not None and right_dt is not None:
        return (left_dt > right_dt) - (left_dt < right_dt)
    if isinstance(actual, str) and isinstance(expected, str):
        return (actual > expected) - (actual < expected)
    return None


def _ordering(predicate: Callable[[int], bool]) -> Callable[[Any, Any], bool]:
    def _op(actual: Any, expected: Any) -> bool:
        result = _compare(actual, expected)
        return result is not None and predicate(result)

    return _op


def _is_empty(actual: Any, _expected: Any = None) -> bool:
    if actual is None:
        return True
    if isinstance(actual, str):
        return actual.strip() == ""
    if isinstance(actual, (list, tuple, dict)):
        return len(actual) == 0
    return False


def _is_in(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, list):
        return False
    return any(_equals(actual, item) for item in expected)


def _negate(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    return lambda actual, expected: not op(actual, expected)


def _not_in(actual: Any, expected: Any) -> bool:
    # a non-array value is a type mismatch, not a vacuous "not in"
    if not isinstance(expected, list):
        return False
    return not _is_in(actual, expected)


_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "not_equals": _negate(_equals),
    "contains": _contains,
    "not_contains": _negate(_contains),
    "starts_with": _starts_with,
    "ends_with": _ends_with,
    "gt": _ordering(lambda c: c > 0),
    "gte": _ordering(lambda c: c >= 0),
    "lt": _ordering(lambda c: c < 0),
    "lte": _ordering(lambda c: c <= 0),
    "is_empty": _is_empty,
    "is_not_empty": _negate(_is_empty),
    "in": _is_in,
    "not_in": _not_in,
}
