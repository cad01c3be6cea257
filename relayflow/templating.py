"""Variable interpolation for workflow configuration.

Strings may contain ``{{path.to.field}}`` tokens which are replaced with the
value found at that dot path in the run's context lookup. A path that does
not resolve renders as an empty string and is reported as a warning; it never
aborts the run.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .constants import MAX_TEMPLATE_DEPTH

logger = logging.getLogger(__name__)

TEMPLATE_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")
_BRACKET_INDEX = re.compile(r"\[(\d+)\]")

_MISSING = object()


@dataclass
class RenderResult:
    value: Any
    warnings: List[str] = field(default_factory=list)


def _lookup(obj: Any, path: str) -> Any:
    current = obj
    for key in _BRACKET_INDEX.sub(r".\1", path).split("."):
        if current is None:
            return _MISSING
        if isinstance(current, Mapping):
            if key in current:
                current = current[key]
            elif key.isdigit() and int(key) in current:
                current = current[int(key)]
            else:
                return _MISSING
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            if not key.isdigit() or int(key) >= len(current):
                return _MISSING
            current = current[int(key)]
        else:
            return _MISSING
    return current


def get_nested_value(obj: Any, path: str) -> Any:
    """Return the value at ``path`` in ``obj`` or ``None``.

    Supports dot notation and bracket indices: ``items[0].name`` is the same
    as ``items.0.name``.
    """
    if not path:
        return None
    value = _lookup(obj, path.strip())
    return None if value is _MISSING else value


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def render_string(
    template: str, lookup: Mapping[str, Any], depth: int = 0
) -> RenderResult:
    """Interpolate every token in ``template``.

    Substituted values that contain tokens themselves are rendered again, up
    to ``MAX_TEMPLATE_DEPTH`` passes.
    """
    if not isinstance(template, str) or "{{" not in template:
        return RenderResult(template)
    if depth > MAX_TEMPLATE_DEPTH:
        logger.warning("Max template depth exceeded, returning as-is")
        return RenderResult(template)

    warnings: List[str] = []

    def _replace(match: re.Match[str]) -> str:
        path = match.group(1).strip()
        value = _lookup(lookup, path)
        if value is _MISSING:
            warnings.append(f"Unresolved template variable: {path}")
            return ""
        return stringify(value)

    rendered = TEMPLATE_PATTERN.sub(_replace, template)
    if rendered != template and TEMPLATE_PATTERN.search(rendered):
        nested = render_string(rendered, lookup, depth + 1)
        return RenderResult(nested.value, warnings + nested.warnings)
    return RenderResult(rendered, warnings)


def render_value(obj: Any, lookup: Mapping[str, Any]) -> RenderResult:
    """Interpolate every string leaf of ``obj``; other leaves pass through."""
    if isinstance(obj, str):
        return render_string(obj, lookup)
    if isinstance(obj, Mapping):
        warnings: List[str] = []
        rendered = {}
        for key, value in obj.items():
            result = render_value(value, lookup)
            rendered[key] = result.value
            warnings.extend(result.warnings)
        return RenderResult(rendered, warnings)
    if isinstance(obj, (list, tuple)):
        warnings = []
        items = []
        for value in obj:
            result = render_value(value, lookup)
            items.append(result.value)
            warnings.extend(result.warnings)
        return RenderResult(items, warnings)
    return RenderResult(obj)


def has_template_variables(value: Any) -> bool:
    return isinstance(value, str) and TEMPLATE_PATTERN.search(value) is not None


def extract_template_variables(value: Any) -> List[str]:
    """Return the distinct token paths in ``value``, searching nested containers."""
    found: List[str] = []

    def _walk(item: Any) -> None:
        if isinstance(item, str):
            for match in TEMPLATE_PATTERN.finditer(item):
                path = match.group(1).strip()
                if path not in found:
                    found.append(path)
        elif isinstance(item, Mapping):
            for nested in item.values():
                _walk(nested)
        elif isinstance(item, (list, tuple)):
            for nested in item:
                _walk(nested)

    _walk(value)
    return found


def validate_template_variables(
    config: Any, available_fields: Iterable[str]
) -> List[str]:
    """Return token paths in ``config`` not rooted at an available field."""
    fields = list(available_fields)
    return [
        variable
        for variable in extract_template_variables(config)
        if not any(variable == f or variable.startswith(f"{f}.") for f in fields)
    ]


STANDARD_CONTEXT_FIELDS = [
    "trigger",
    "trigger.type",
    "trigger.event_type",
    "trigger.entity_type",
    "trigger.entity_id",
    "trigger.data",
    "contact",
    "opportunity",
    "task",
    "project",
    "company",
    "steps",
    "organization_id",
    "triggered_by_user_id",
    "triggered_at",
    "loop",
    "loop.index",
    "loop.item",
    "loop.collection_length",
]

_ENTITY_FIELDS = {
    "contact": [
        "id",
        "first_name",
        "last_name",
        "email",
        "phone",
        "company_id",
        "lead_status",
        "pipeline_stage",
    ],
    "task": [
        "id",
        "title",
        "description",
        "status",
        "priority",
        "assignee_id",
        "project_id",
        "due_date",
    ],
    "opportunity": ["id", "name", "value", "status", "company_id"],
    "project": ["id", "name", "description", "status", "owner_id", "company_id"],
}


def context_fields_for(entity_type: Optional[str] = None) -> List[str]:
    """Context paths available to templates for a given triggering entity."""
    fields = list(STANDARD_CONTEXT_FIELDS)
    for name in _ENTITY_FIELDS.get(entity_type or "", []):
        fields.append(f"{entity_type}.{name}")
    return fields
