"""Bulk dispatcher used by request handlers to run one lifecycle action on many topics."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from forum_topics.core.errors import TopicError, TopicNotFoundError
from forum_topics.db.store import KeyValueStore
from forum_topics.services.categories import CategoryService
from forum_topics.services.events import SystemEventLog
from forum_topics.services.topic_data import TopicFields, coerce_tid
from forum_topics.services.topic_tools import TopicTools

logger = logging.getLogger(__name__)

Notifier = Callable[[str, dict[str, Any], list[int]], Awaitable[None]]

TOPIC_ACTIONS = frozenset({"delete", "restore", "purge", "lock", "unlock", "pin", "unpin"})
# Actions that also leave a trace in the site-wide event log. Purge writes its
# own entry, with the caller ip, before the topic hash is removed.
LOGGED_ACTIONS = frozenset({"delete", "restore"})


@dataclass(frozen=True)
class Caller:
    """The user on whose behalf a request is handled."""

    uid: int
    ip: str | None = None


async def _no_notifier(event: str, payload: dict[str, Any], uids: list[int]) -> None:
    return None


class TopicActions:
    """Runs ``TopicTools`` actions for a list of topics and notifies online readers."""

    def __init__(
        self,
        store: KeyValueStore,
        fields: TopicFields,
        tools: TopicTools,
        categories: CategoryService,
        system_events: SystemEventLog,
        notifier: Notifier | None = None,
    ) -> None:
        self.store = store
        self.fields = fields
        self.tools = tools
        self.categories = categories
        self.system_events = system_events
        self.notifier = notifier or _no_notifier

    async def online_uids(self) -> list[int]:
        return [int(uid) for uid in await self.store.get_sorted_set_range("users:online", 0, -1)]

    async def do_topic_action(
        self, action: str, event: str, caller: Caller, tids: Any
    ) -> list[dict[str, Any]] | None:
        """Apply ``action`` to every topic in ``tids``.

        Args:
            action: Name of a ``TopicTools`` transition, e.g. ``"lock"``.
            event: Event name handed to the notifier.
            caller: Acting user.
            tids: Topic ids; anything other than a list is rejected.

        Returns:
            The serialised result of each transition, or None for an unknown action.

        Raises:
            TopicError: ``invalid-tid`` for malformed input.
            TopicNotFoundError: If any of the topics does not exist.
        """
        if not isinstance(tids, list):
            raise TopicError("invalid-tid")
        ids = [coerce_tid(tid) for tid in tids]
        exists = await self.fields.exists_many(ids)
        if not all(exists):
            raise TopicNotFoundError()
        if action not in TOPIC_ACTIONS:
            logger.warning("Ignoring unknown topic action %r", action)
            return None

        uids = await self.online_uids()
        results: list[dict[str, Any]] = []
        for tid in ids:
            title = await self._title(tid)
            if action == "purge":
                outcome = await self.tools.purge(tid, caller.uid, ip=caller.ip)
            else:
                outcome = await getattr(self.tools, action)(tid, caller.uid)
            data = outcome.model_dump()
            notify_uids = await self.categories.filter_uids("topics:read", data["cid"], uids)
            await self.notifier(event, data, notify_uids)
            if action in LOGGED_ACTIONS:
                await self.system_events.log(
                    f"topic-{action}", caller.uid, ip=caller.ip, tid=tid, title=title
                )
            results.append(data)
        return results

    async def _title(self, tid: int) -> str:
        topic = await self.fields.get_topic_fields(tid, ["title"])
        return str((topic or {}).get("titleRaw") or "")
