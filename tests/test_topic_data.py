# tests/test_topic_data.py
from typing import Any

import pytest

from forum_topics.db.time import now_ms
from forum_topics.models import Category, User
from forum_topics.services import TopicServices
from forum_topics.services.hooks import HookRegistry
from forum_topics.services.topic_data import coerce_tid, project_topic, tag_objects

NOW = 1_700_000_000_000


def test_project_topic_returns_none_for_missing_records() -> None:
    assert project_topic(None, [], NOW) is None
    assert project_topic({"tid": None, "title": None}, ["title"], NOW) is None


def test_project_topic_full_record() -> None:
    raw = {
        "tid": "4",
        "cid": "2",
        "uid": "9",
        "title": "<b>Hello</b>",
        "timestamp": str(NOW + 1000),
        "lastposttime": "0",
        "postcount": "3",
        "upvotes": "5",
        "downvotes": "2",
        "pinExpiry": "0",
        "tags": "python,web dev",
    }

    topic = project_topic(raw, [], NOW)

    assert topic is not None
    assert topic["tid"] == 4
    assert topic["postcount"] == 3
    assert topic["viewcount"] == 0
    assert topic["titleRaw"] == "<b>Hello</b>"
    assert topic["title"] == "&lt;b&gt;Hello&lt;/b&gt;"
    assert topic["scheduled"] is True
    assert topic["votes"] == 3
    assert topic["teaserPid"] is None
    assert topic["lastposttimeISO"] == "1970-01-01T00:00:00.000Z"
    assert "pinExpiryISO" not in topic
    assert [tag["value"] for tag in topic["tags"]] == ["python", "web dev"]


def test_project_topic_partial_fields() -> None:
    raw = {"tid": "4", "cid": "2", "postcount": None, "pinExpiry": str(NOW)}

    topic = project_topic(raw, ["cid", "postcount", "pinExpiry"], NOW)

    assert topic == {
        "tid": 4,
        "cid": 2,
        "postcount": 0,
        "pinExpiry": NOW,
        "pinExpiryISO": "2023-11-14T22:13:20.000Z",
    }


def test_tag_objects_escape_and_encode() -> None:
    assert tag_objects("a b,<x>,") == [
        {"value": "a b", "escaped": "a b", "encoded": "a%20b", "class": "a-b"},
        {
            "value": "<x>",
            "escaped": "&lt;x&gt;",
            "encoded": "%26lt%3Bx%26gt%3B",
            "class": "&lt;x&gt;",
        },
    ]
    assert tag_objects(None) == []


@pytest.mark.parametrize("value, expected", [(3, 3), ("12", 12)])
def test_coerce_tid_accepts_ints_and_digit_strings(value: Any, expected: int) -> None:
    assert coerce_tid(value) == expected


@pytest.mark.parametrize("value", ["abc", None, True, 1.5])
def test_coerce_tid_rejects_everything_else(value: Any) -> None:
    with pytest.raises(TypeError):
        coerce_tid(value)


@pytest.mark.asyncio
async def test_get_topics_fields_handles_empty_and_missing(services: TopicServices, topic: int) -> None:
    assert await services.fields.get_topics_fields([]) == []

    topics = await services.fields.get_topics_fields([topic, 999], ["title"])

    assert topics[0]["title"] == "Test topic"
    assert topics[1] is None


@pytest.mark.asyncio
async def test_derived_fields_pull_their_sources(
    services: TopicServices, forum, category: Category, owner: User
) -> None:
    tid = await forum.create_topic(category.cid, owner.uid, timestamp=now_ms() + 3_600_000)

    topic = await services.fields.get_topic_fields(tid, ["scheduled", "votes"])

    assert topic["scheduled"] is True
    assert topic["votes"] == 0
    assert await services.fields.get_topic_field(tid, "scheduled") is True


@pytest.mark.asyncio
async def test_get_fields_filter_hook_can_rewrite_records(
    services: TopicServices, hooks: HookRegistry, topic: int
) -> None:
    async def retitle(payload: dict[str, Any]) -> dict[str, Any]:
        for record in payload["topics"]:
            if record:
                record["title"] = "Hooked"
        return payload

    hooks.add_filter("filter:topic.getFields", retitle)

    assert await services.fields.get_topic_field(topic, "title") == "Hooked"


@pytest.mark.asyncio
async def test_ownership_and_category_lookup(
    services: TopicServices, topic: int, owner: User, other: User, category: Category
) -> None:
    assert await services.fields.is_owner(topic, owner.uid)
    assert not await services.fields.is_owner(topic, other.uid)
    assert not await services.fields.is_owner(topic, 0)

    data = await services.fields.get_category_data(topic)
    assert data == {"cid": category.cid, "name": "General", "disabled": False}


@pytest.mark.asyncio
async def test_field_writes_and_deletes(services: TopicServices, topic: int) -> None:
    await services.fields.set_topic_fields(topic, {"locked": 1, "note": "x"})
    await services.fields.delete_topic_field(topic, "note")

    assert await services.fields.get_topic_field(topic, "locked") == 1
    assert await services.fields.get_topic_field(topic, "note") is None
    assert await services.fields.exists_many([topic, 999]) == [True, False]
