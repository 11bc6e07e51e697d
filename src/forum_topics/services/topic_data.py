"""Typed access to topic records stored as ``topic:<tid>`` hashes.

Reading is split in two steps: the raw fetch from the keyed store, and
``project_topic``, a pure function that coerces integer fields and derives
``scheduled``, ISO mirrors, ``votes``, ``teaserPid`` and tag objects.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

from forum_topics.db.store import KeyValueStore, iter_keys
from forum_topics.db.time import now_ms, to_iso
from forum_topics.schemas.topic import TagObject
from forum_topics.services.categories import CategoryService
from forum_topics.services.hooks import HookRegistry

logger = logging.getLogger(__name__)

INT_FIELDS = (
    "tid",
    "cid",
    "uid",
    "mainPid",
    "postcount",
    "viewcount",
    "postercount",
    "deleted",
    "locked",
    "pinned",
    "pinExpiry",
    "timestamp",
    "upvotes",
    "downvotes",
    "lastposttime",
    "deleterUid",
    "instructorcount",
    "anonymous",
)

_WHITESPACE = re.compile(r"\s")


def coerce_tid(tid: Any) -> int:
    """Return ``tid`` as an int, accepting digit strings.

    Raises:
        TypeError: If ``tid`` is neither an int nor a string of digits.
    """
    if isinstance(tid, bool):
        raise TypeError(f"tid must be an integer, got {tid!r}")
    if isinstance(tid, int):
        return tid
    if isinstance(tid, str) and tid.isdigit():
        return int(tid)
    raise TypeError(f"tid must be an integer, got {tid!r}")


def check_uid(uid: Any) -> int:
    """Return ``uid`` unchanged if it is an int.

    Raises:
        TypeError: If ``uid`` is not an int.
    """
    if isinstance(uid, bool) or not isinstance(uid, int):
        raise TypeError(f"uid must be an integer, got {uid!r}")
    return uid


def tag_objects(raw_tags: str | None) -> list[dict[str, str]]:
    """Expand a comma separated tag string into display/link objects."""
    tags: list[dict[str, str]] = []
    for tag in (raw_tags or "").split(","):
        if not tag:
            continue
        escaped = html.escape(tag, quote=True)
        tags.append(
            TagObject(
                value=tag,
                escaped=escaped,
                encoded=quote(escaped, safe=""),
                css_class=_WHITESPACE.sub("-", escaped),
            ).model_dump(by_alias=True)
        )
    return tags


def project_topic(
    raw: dict[str, str | None] | None,
    fields: Sequence[str],
    now: int,
) -> dict[str, Any] | None:
    """Turn a raw topic hash into the typed topic dict callers consume.

    Args:
        raw: Hash values as read from the store; None for a missing topic.
        fields: Fields the caller asked for; empty means the whole record.
        now: Current time in epoch milliseconds, used for ``scheduled``.

    Returns:
        The projected topic, or None when the record does not exist.
    """
    if not raw or raw.get("tid") is None:
        return None

    topic: dict[str, Any] = dict(raw)
    everything = not fields

    for name in INT_FIELDS:
        if everything or name in fields:
            value = topic.get(name)
            try:
                topic[name] = int(value) if value not in (None, "") else 0
            except ValueError:
                topic[name] = 0
    topic["tid"] = int(raw["tid"])

    if topic.get("title") is not None:
        topic["titleRaw"] = topic["title"]
        topic["title"] = html.escape(str(topic["title"]), quote=True)

    if "timestamp" in topic:
        topic["timestampISO"] = to_iso(topic["timestamp"])
        if everything or "scheduled" in fields:
            topic["scheduled"] = int(topic["timestamp"]) > now

    if "lastposttime" in topic:
        topic["lastposttimeISO"] = to_iso(topic["lastposttime"])

    if topic.get("pinExpiry"):
        topic["pinExpiryISO"] = to_iso(topic["pinExpiry"])

    if "upvotes" in topic and "downvotes" in topic:
        topic["votes"] = int(topic["upvotes"] or 0) - int(topic["downvotes"] or 0)

    if everything or "teaserPid" in fields:
        teaser = topic.get("teaserPid")
        topic["teaserPid"] = int(teaser) if teaser else None

    if everything or "tags" in fields:
        topic["tags"] = tag_objects(topic.get("tags"))

    return topic


class TopicFields:
    """Field store adapter over ``topic:<tid>`` hashes."""

    def __init__(
        self,
        store: KeyValueStore,
        hooks: HookRegistry,
        categories: CategoryService,
    ) -> None:
        self.store = store
        self.hooks = hooks
        self.categories = categories

    async def get_topics_fields(
        self, tids: Sequence[int | str], fields: Sequence[str] = ()
    ) -> list[dict[str, Any] | None]:
        """Fetch and project a batch of topics; unknown tids map to None."""
        if not tids:
            return []
        wanted = list(fields)
        fetch: list[str] | None = None
        if wanted:
            fetch = [f for f in wanted if f not in ("scheduled", "votes")]
            if "scheduled" in wanted and "timestamp" not in fetch:
                fetch.append("timestamp")
            if "votes" in wanted:
                fetch.extend(f for f in ("upvotes", "downvotes") if f not in fetch)
            # tid identifies missing records in a partial fetch
            if "tid" not in fetch:
                fetch.append("tid")

        keys = iter_keys("topic:", tids)
        raw = await self.store.get_objects(keys, fetch)
        result = await self.hooks.fire_filter(
            "filter:topic.getFields",
            {"tids": list(tids), "topics": raw, "fields": wanted, "keys": keys},
        )
        now = now_ms()
        return [project_topic(topic, wanted, now) for topic in result["topics"]]

    async def get_topic_fields(self, tid: int | str, fields: Sequence[str] = ()) -> dict[str, Any] | None:
        topics = await self.get_topics_fields([tid], fields)
        return topics[0] if topics else None

    async def get_topic_field(self, tid: int | str, field: str) -> Any:
        topic = await self.get_topic_fields(tid, [field])
        return topic.get(field) if topic else None

    async def get_topic_data(self, tid: int | str) -> dict[str, Any] | None:
        return await self.get_topic_fields(tid, [])

    async def get_topics_data(self, tids: Sequence[int | str]) -> list[dict[str, Any] | None]:
        return await self.get_topics_fields(tids, [])

    async def get_category_data(self, tid: int | str) -> dict[str, Any] | None:
        """Return the owning category's record for a topic."""
        cid = await self.get_topic_field(tid, "cid")
        if not cid:
            return None
        categories = await self.categories.get_categories_fields([cid], ["cid", "name", "disabled"])
        return categories[0]

    async def set_topic_field(self, tid: int | str, field: str, value: Any) -> None:
        await self.store.set_object_field(f"topic:{tid}", field, value)

    async def set_topic_fields(self, tid: int | str, data: dict[str, Any]) -> None:
        await self.store.set_object(f"topic:{tid}", data)

    async def delete_topic_field(self, tid: int | str, field: str) -> None:
        await self.store.delete_object_field(f"topic:{tid}", field)

    async def delete_topic_fields(self, tid: int | str, fields: Sequence[str]) -> None:
        await self.store.delete_object_fields(f"topic:{tid}", fields)

    async def exists(self, tid: int | str) -> bool:
        return await self.store.exists(f"topic:{tid}")

    async def exists_many(self, tids: Sequence[int | str]) -> list[bool]:
        return await self.store.exists_many(iter_keys("topic:", tids))

    async def is_owner(self, tid: int | str, uid: int) -> bool:
        """Return True when ``uid`` is a registered user who created the topic."""
        if uid <= 0:
            return False
        owner = await self.get_topic_field(tid, "uid")
        return owner == uid

    async def get_topic_tags(self, tid: int | str) -> list[str]:
        """Return the topic's raw tag values."""
        tags = await self.store.get_object_field(f"topic:{tid}", "tags")
        return [tag for tag in (tags or "").split(",") if tag]
