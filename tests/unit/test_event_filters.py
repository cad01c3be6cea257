"""Event trigger matching."""

import pytest

from relayflow.contracts import WorkflowEvent
from relayflow.models import EventTriggerConfig
from relayflow.triggers import matches_event, matches_filters


def _event(**data):
    return WorkflowEvent(
        event_type="contact_updated",
        entity_type="contact",
        entity_id="c-1",
        entity_data=data,
        organization_id="org-1",
    )


def test_filter_requires_exact_value():
    config = EventTriggerConfig(event_types=["contact_updated"], filters={"status": "new"})
    assert not matches_event(config, _event(status="open"))
    assert matches_event(config, _event(status="new"))
    assert matches_event(config, _event(status="NEW"))


def test_every_filter_key_must_match():
    filters = {"status": "new", "source": "web"}
    assert not matches_filters(filters, {"status": "new", "source": "email"})
    assert not matches_filters(filters, {"status": "new"})
    assert matches_filters(filters, {"status": "new", "source": "web"})


def test_event_type_and_entity_type():
    config = EventTriggerConfig(event_types=["contact_created"], entity_type="contact")
    assert not matches_event(config, _event())
    config = EventTriggerConfig(event_types=["contact_updated"], entity_type="task")
    assert not matches_event(config, _event())
    assert matches_event(EventTriggerConfig(event_types=["contact_updated"]), _event())


def test_filters_use_dot_paths():
    data = {"company": {"tier": "gold"}}
    assert matches_filters({"company.tier": "gold"}, data)
    assert not matches_filters({"company.tier": "silver"}, data)


@pytest.mark.parametrize(
    "filter_value, expected",
    [
        ({"$in": ["a", "b"]}, True),
        ({"$in": ["c"]}, False),
        ({"$ne": "b"}, True),
        ({"$gt": 10}, True),
        ({"$gte": 12, "$lt": 13}, True),
        ({"$lte": 11}, False),
        ({"$exists": True}, True),
    ],
)
def test_operator_filters(filter_value, expected):
    data = {"letter": "a", "score": 12}
    key = "score" if any(op in filter_value for op in ("$gt", "$gte", "$lt", "$lte")) else "letter"
    assert matches_filters({key: filter_value}, data) is expected


def test_contains_and_exists_filters():
    data = {"email": "ada@example.com", "phone": None}
    assert matches_filters({"email": {"$contains": "@example."}}, data)
    assert not matches_filters({"email": {"$contains": "@other."}}, data)
    assert matches_filters({"phone": {"$exists": False}}, data)
    assert not matches_filters({"phone": {"$exists": True}}, data)


def test_plain_mapping_filter_compares_by_equality():
    data = {"address": {"city": "Oslo"}}
    assert matches_filters({"address": {"city": "Oslo"}}, data)
    assert not matches_filters({"address": {"city": "Bergen"}}, data)


def test_booleans_do_not_equal_numbers():
    assert not matches_filters({"flag": 1}, {"flag": True})
    assert matches_filters({"flag": True}, {"flag": True})
