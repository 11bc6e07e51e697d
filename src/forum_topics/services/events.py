"""Audit logs: per-topic event timelines and the site-wide system event log."""

from __future__ import annotations

import logging
from typing import Any

from forum_topics.db.store import KeyValueStore
from forum_topics.db.time import now_ms, to_iso
from forum_topics.schemas.topic import TopicEvent

logger = logging.getLogger(__name__)

# Fields every topic event carries; anything else is event-specific context.
_BASE_FIELDS = ("id", "type", "uid", "timestamp")


def _coerce_uid(value: str | None) -> int | str:
    if value is None:
        return 0
    return int(value) if value.lstrip("-").isdigit() else value


class TopicEventLog:
    """Append-only timeline of lifecycle events attached to each topic."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def log(self, tid: int, event_type: str, uid: int | str, **context: Any) -> list[TopicEvent]:
        """Append an event to the topic's timeline.

        Args:
            tid: Topic the event belongs to.
            event_type: Event type such as ``lock`` or ``move``.
            uid: Acting user id, or ``"system"`` for scheduled work.
            **context: Extra fields stored with the event (``fromCid``, ``href`` ...).

        Returns:
            The topic's full timeline after the append, oldest first.
        """
        eid = await self.store.incr_object_field_by("global", "nextTopicEventId", 1)
        timestamp = now_ms()
        await self.store.set_object(
            f"topicEvent:{eid}",
            {"type": event_type, "uid": uid, "timestamp": timestamp, **context},
        )
        await self.store.sorted_set_add(f"topic:{tid}:events", timestamp, eid)
        return await self.get(tid)

    async def get(self, tid: int) -> list[TopicEvent]:
        """Return the events recorded for a topic, oldest first."""
        eids = await self.store.get_sorted_set_range(f"topic:{tid}:events", 0, -1)
        if not eids:
            return []
        records = await self.store.get_objects([f"topicEvent:{eid}" for eid in eids])
        events: list[TopicEvent] = []
        for eid, record in zip(eids, records):
            if not record:
                continue
            timestamp = int(record.get("timestamp") or 0)
            extra = {k: v for k, v in record.items() if k not in _BASE_FIELDS}
            events.append(
                TopicEvent(
                    id=int(eid),
                    type=record.get("type") or "",
                    uid=_coerce_uid(record.get("uid")),
                    timestamp=timestamp,
                    timestamp_iso=to_iso(timestamp),
                    **extra,
                )
            )
        # Members sort as strings within one millisecond; ids restore append order.
        events.sort(key=lambda event: (event.timestamp, event.id))
        return events

    async def purge(self, tid: int) -> None:
        """Remove a topic's whole timeline."""
        eids = await self.store.get_sorted_set_members(f"topic:{tid}:events")
        await self.store.delete_all([f"topicEvent:{eid}" for eid in eids])
        await self.store.delete(f"topic:{tid}:events")


class SystemEventLog:
    """Site-wide audit log for administrative actions."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def log(self, event_type: str, uid: int | str, **context: Any) -> int:
        """Record an administrative event and return its id."""
        eid = await self.store.incr_object_field_by("global", "nextEid", 1)
        timestamp = now_ms()
        await self.store.set_object(
            f"event:{eid}",
            {"eid": eid, "type": event_type, "uid": uid, "timestamp": timestamp, **context},
        )
        await self.store.sorted_set_add("events:time", timestamp, eid)
        logger.info("System event %s recorded for uid %s", event_type, uid)
        return eid

    async def recent(self, limit: int = 20) -> list[dict[str, str]]:
        """Return the newest system events first."""
        eids = await self.store.get_sorted_set_rev_range("events:time", 0, limit - 1)
        records = await self.store.get_objects([f"event:{eid}" for eid in eids])
        return [record for record in records if record]
