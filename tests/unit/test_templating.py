"""Template rendering and variable checks."""

from relayflow.templating import (
    context_fields_for,
    extract_template_variables,
    get_nested_value,
    render_string,
    render_value,
    validate_template_variables,
)

LOOKUP = {
    "task": {"title": "Ship it", "tags": ["a", "b"], "done": False, "estimate": 3},
    "steps": {"1": {"task_id": "t-9"}},
    "contact": {"first_name": "Ada", "nickname": "{{contact.first_name}}"},
}


def test_plain_string_is_returned_unchanged():
    result = render_string("nothing to see here", LOOKUP)
    assert result.value == "nothing to see here"
    assert result.warnings == []


def test_missing_path_renders_empty_with_warning():
    result = render_string("{{nonexistent.path}}", LOOKUP)
    assert result.value == ""
    assert result.warnings == ["Unresolved template variable: nonexistent.path"]


def test_values_are_stringified():
    assert render_string("{{task.title}}!", LOOKUP).value == "Ship it!"
    assert render_string("{{task.done}}", LOOKUP).value == "false"
    assert render_string("{{task.estimate}}h", LOOKUP).value == "3h"
    assert render_string("{{task.tags}}", LOOKUP).value == '["a", "b"]'
    assert render_string("{{ steps.1.task_id }}", LOOKUP).value == "t-9"


def test_substituted_tokens_are_rendered_again():
    assert render_string("Hi {{contact.nickname}}", LOOKUP).value == "Hi Ada"


def test_self_referencing_template_stops():
    lookup = {"loop": "{{loop}}"}
    assert render_string("{{loop}}", lookup).value == "{{loop}}"


def test_render_value_walks_nested_structures():
    config = {"title": "{{task.title}}", "meta": {"ids": ["{{steps.1.task_id}}", 4]}, "n": 5}
    result = render_value(config, LOOKUP)
    assert result.value == {"title": "Ship it", "meta": {"ids": ["t-9", 4]}, "n": 5}


def test_get_nested_value_supports_indices():
    assert get_nested_value(LOOKUP, "task.tags[1]") == "b"
    assert get_nested_value(LOOKUP, "task.tags.0") == "a"
    assert get_nested_value(LOOKUP, "task.tags.5") is None
    assert get_nested_value(LOOKUP, "task.title.length") is None
    assert get_nested_value(LOOKUP, "") is None


def test_unknown_variables_are_reported():
    config = {"message": "{{task.title}} by {{owner.name}}", "to": "{{steps.2.email}}"}
    assert extract_template_variables(config) == ["task.title", "owner.name", "steps.2.email"]
    assert validate_template_variables(config, context_fields_for("task")) == ["owner.name"]
    assert "task.assignee_id" in context_fields_for("task")
