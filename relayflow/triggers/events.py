"""Event trigger matching."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from ..contracts import WorkflowEvent
from ..models import EventTriggerConfig
from ..templating import get_nested_value

logger = logging.getLogger(__name__)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _numeric(predicate: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def _op(actual: Any, expected: Any) -> bool:
        left, right = _number(actual), _number(expected)
        return left is not None and right is not None and predicate(left, right)

    return _op


def _equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    if actual == expected:
        return True
    if isinstance(actual, str) and isinstance(expected, str):
        return actual.casefold() == expected.casefold()
    return False


def _contains(actual: Any, expected: Any) -> bool:
    return isinstance(actual, str) and str(expected) in actual


def _exists(actual: Any, expected: Any) -> bool:
    return bool(expected) == (actual is not None)


FILTER_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "$in": lambda actual, expected: any(_equals(actual, v) for v in (expected or [])),
    "$ne": lambda actual, expected: not _equals(actual, expected),
    "$gt": _numeric(lambda a, b: a > b),
    "$gte": _numeric(lambda a, b: a >= b),
    "$lt": _numeric(lambda a, b: a < b),
    "$lte": _numeric(lambda a, b: a <= b),
    "$contains": _contains,
    "$exists": _exists,
}


def _is_operator_filter(expected: Any) -> bool:
    return (
        isinstance(expected, Mapping)
        and bool(expected)
        and all(key in FILTER_OPERATORS for key in expected)
    )


def matches_filters(filters: Mapping[str, Any], data: Mapping[str, Any]) -> bool:
    """True when every filter key matches ``data``.

    Keys are dot paths into ``data``. A plain value must equal the field
    (strings also match case-insensitively); a mapping of ``$``-operators
    must satisfy every operator it names.
    """
    for path, expected in filters.items():
        actual = get_nested_value(data, path)
        if _is_operator_filter(expected):
            for operator, operand in expected.items():
                if not FILTER_OPERATORS[operator](actual, operand):
                    return False
        elif not _equals(actual, expected):
            return False
    return True


def matches_event(config: EventTriggerConfig, event: WorkflowEvent) -> bool:
    if config.event_types and event.event_type not in config.event_types:
        return False
    if config.entity_type and config.entity_type != event.entity_type:
        return False
    if config.filters and not matches_filters(config.filters, event.entity_data):
        logger.debug(f"Event {event.event_id} rejected by filters {config.filters}")
        return False
    return True
