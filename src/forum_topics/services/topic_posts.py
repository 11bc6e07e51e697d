"""Keeps topic aggregates and ordering indices in step with the posts attached to a topic.

Every composite update here is a sequence of single atomic store primitives;
counters are always re-read from the store (or recomputed from set
cardinality) rather than derived from cached values.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any

from forum_topics.core.settings import settings
from forum_topics.db.store import KeyValueStore
from forum_topics.db.time import now_ms, to_iso
from forum_topics.schemas.topic import PostReplies
from forum_topics.services.events import TopicEventLog
from forum_topics.services.hooks import HookRegistry
from forum_topics.services.posts import PostService
from forum_topics.services.topic_data import TopicFields, coerce_tid
from forum_topics.services.users import UserService

logger = logging.getLogger(__name__)

# Five repliers are shown; a sixth only flips ``has_more``.
REPLY_PREVIEW_USERS = 5


def backlink_pattern(site_url: str) -> re.Pattern[str]:
    """Match links to ``/topic/<tid>`` either absolute on this site or relative."""
    return re.compile(rf"(?:{re.escape(site_url.rstrip('/'))}|\b|\s)/topic/(\d+)(?:/\w+)?")


class TopicPosts:
    """Aggregation and index maintenance for posts attached to topics."""

    def __init__(
        self,
        store: KeyValueStore,
        hooks: HookRegistry,
        fields: TopicFields,
        posts: PostService,
        users: UserService,
        events: TopicEventLog,
    ) -> None:
        self.store = store
        self.hooks = hooks
        self.fields = fields
        self.posts = posts
        self.users = users
        self.events = events

    # --- attach / detach ----------------------------------------------------
    async def on_new_post_made(self, post: dict[str, Any]) -> None:
        """Entry point for the post layer once a post has been created."""
        await self.update_last_post_time(post["tid"], int(post["timestamp"]))
        await self.add_post_to_topic(post["tid"], post)

    async def add_post_to_topic(self, tid: int | str, post: dict[str, Any]) -> None:
        """Attach a post to a topic and refresh every aggregate it affects.

        The first post attached becomes ``mainPid`` and gets no reply-index
        entry; later posts are indexed by timestamp and by vote score.
        """
        tid = coerce_tid(tid)
        pid = int(post["pid"])
        main_pid = await self.fields.get_topic_field(tid, "mainPid")
        if not main_pid:
            await self.fields.set_topic_field(tid, "mainPid", pid)
        else:
            votes = int(post.get("upvotes") or 0) - int(post.get("downvotes") or 0)
            await self.store.sorted_sets_add(
                [f"tid:{tid}:posts", f"tid:{tid}:posts:votes"],
                [int(post["timestamp"]), votes],
                pid,
            )

        await self.increase_post_count(tid)
        if await self.users.is_instructor(int(post["uid"])):
            await self.store.sorted_set_add(f"tid:{tid}:instructor_pids", int(post["timestamp"]), pid)
            await self.increase_instructor_count(tid)

        await self.store.sorted_set_incr_by(f"tid:{tid}:posters", 1, post["uid"])
        await self._sync_poster_count(tid)
        await self.update_teaser(tid)

    async def remove_post_from_topic(self, tid: int | str, post: dict[str, Any]) -> None:
        """Detach a post from a topic; the mirror of ``add_post_to_topic``.

        The instructor tally is decremented only when this post was counted
        as an instructor post when it was attached, so later role changes of
        its author cannot make the counter drift.
        """
        tid = coerce_tid(tid)
        pid = int(post["pid"])
        await self.store.sorted_sets_remove([f"tid:{tid}:posts", f"tid:{tid}:posts:votes"], pid)
        await self.decrease_post_count(tid)
        if await self.store.is_sorted_set_member(f"tid:{tid}:instructor_pids", pid):
            await self.store.sorted_set_remove(f"tid:{tid}:instructor_pids", pid)
            await self.decrease_instructor_count(tid)

        await self.store.sorted_set_incr_by(f"tid:{tid}:posters", -1, post["uid"])
        await self._sync_poster_count(tid)
        await self.update_teaser(tid)

    async def _sync_poster_count(self, tid: int) -> int:
        key = f"tid:{tid}:posters"
        await self.store.sorted_sets_remove_range_by_score([key], "-inf", 0)
        count = await self.store.sorted_set_card(key)
        await self.fields.set_topic_field(tid, "postercount", count)
        return count

    # --- counters -----------------------------------------------------------
    async def _increment_counter(self, tid: int, field: str, by: int) -> int:
        value = await self.store.incr_object_field_by(f"topic:{tid}", field, by)
        if value < 0:
            await self.fields.set_topic_field(tid, field, 0)
            value = 0
        return value

    async def increase_post_count(self, tid: int | str) -> int:
        return await self._change_post_count(coerce_tid(tid), 1)

    async def decrease_post_count(self, tid: int | str) -> int:
        return await self._change_post_count(coerce_tid(tid), -1)

    async def _change_post_count(self, tid: int, by: int) -> int:
        value = await self._increment_counter(tid, "postcount", by)
        await self.store.sorted_set_add("topics:posts", value, tid)
        topic = await self.fields.get_topic_fields(tid, ["cid", "pinned"])
        if topic and topic["cid"] and not topic["pinned"]:
            await self.store.sorted_set_add(f"cid:{topic['cid']}:tids:posts", value, tid)
        return value

    async def increase_view_count(self, tid: int | str) -> int:
        tid = coerce_tid(tid)
        value = await self._increment_counter(tid, "viewcount", 1)
        await self.store.sorted_set_add("topics:views", value, tid)
        topic = await self.fields.get_topic_fields(tid, ["cid", "pinned"])
        if topic and topic["cid"] and not topic["pinned"]:
            await self.store.sorted_set_add(f"cid:{topic['cid']}:tids:views", value, tid)
        return value

    async def increase_instructor_count(self, tid: int | str) -> int:
        return await self._increment_counter(coerce_tid(tid), "instructorcount", 1)

    async def decrease_instructor_count(self, tid: int | str) -> int:
        return await self._increment_counter(coerce_tid(tid), "instructorcount", -1)

    async def get_post_count(self, tid: int | str) -> int:
        value = await self.store.get_object_field(f"topic:{tid}", "postcount")
        return int(value or 0)

    async def update_last_post_time(self, tid: int | str, lastposttime: int) -> None:
        """Record a new reply time and move the topic up the time-ordered feeds."""
        tid = coerce_tid(tid)
        await self.fields.set_topic_field(tid, "lastposttime", lastposttime)
        topic = await self.fields.get_topic_fields(tid, ["cid", "deleted", "pinned"])
        if topic is None:
            return
        await self.store.sorted_set_add(f"cid:{topic['cid']}:tids:lastposttime", lastposttime, tid)
        if not topic["deleted"]:
            await self.store.sorted_set_add("topics:recent", lastposttime, tid)
        if not topic["pinned"]:
            await self.store.sorted_set_add(f"cid:{topic['cid']}:tids", lastposttime, tid)

    # --- post lookups -------------------------------------------------------
    async def get_pids(self, tid: int | str) -> list[int]:
        """Return the main post followed by replies in timestamp order."""
        main_pid = await self.fields.get_topic_field(tid, "mainPid")
        pids = [int(pid) for pid in await self.store.get_sorted_set_range(f"tid:{tid}:posts", 0, -1)]
        if main_pid:
            pids.insert(0, main_pid)
        return pids

    async def get_latest_undeleted_reply(self, tid: int | str) -> int | None:
        index = 0
        while True:
            pids = await self.store.get_sorted_set_rev_range(f"tid:{tid}:posts", index, index)
            if not pids:
                return None
            if not await self.posts.get_post_field(int(pids[0]), "deleted"):
                return int(pids[0])
            index += 1

    async def get_latest_undeleted_pid(self, tid: int | str) -> int | None:
        """Latest live reply, falling back to the main post when it is not deleted."""
        pid = await self.get_latest_undeleted_reply(tid)
        if pid:
            return pid
        main_pid = await self.fields.get_topic_field(tid, "mainPid")
        if not main_pid:
            return None
        main_post = await self.posts.get_post_fields(main_pid, ["pid", "deleted"])
        if main_post and main_post["pid"] and not main_post["deleted"]:
            return main_post["pid"]
        return None

    async def update_teaser(self, tid: int | str) -> int | None:
        pid = await self.get_latest_undeleted_pid(tid)
        if pid:
            await self.fields.set_topic_field(tid, "teaserPid", pid)
        else:
            await self.fields.delete_topic_field(tid, "teaserPid")
        return pid

    async def get_topic_data_by_pid(self, pid: int) -> dict[str, Any] | None:
        tid = await self.posts.get_post_field(pid, "tid")
        if not tid:
            return None
        return await self.fields.get_topic_data(tid)

    async def get_topic_field_by_pid(self, field: str, pid: int) -> Any:
        tid = await self.posts.get_post_field(pid, "tid")
        if not tid:
            return None
        return await self.fields.get_topic_field(tid, field)

    @staticmethod
    def calculate_post_indices(posts: Sequence[dict[str, Any] | None], start: int) -> None:
        """Number replies in place; the main post is index 0."""
        for offset, post in enumerate(posts):
            if post is not None:
                post["index"] = start + offset + 1

    # --- derived views ------------------------------------------------------
    async def get_post_replies(self, pids: Sequence[int], caller_uid: int) -> list[PostReplies]:
        """Summarise who replied to each post.

        Args:
            pids: Parent posts to summarise.
            caller_uid: User the preview is built for; passed to the
                ``filter:topics.getPostReplies`` hook.

        Returns:
            One ``PostReplies`` per parent pid, in input order.
        """
        reply_sets = await self.store.get_sorted_sets_members([f"pid:{pid}:replies" for pid in pids])
        unique_pids = list(dict.fromkeys(pid for replies in reply_sets for pid in replies))
        reply_data = [
            post
            for post in await self.posts.get_posts_fields(unique_pids, ["pid", "uid", "timestamp"])
            if post
        ]
        result = await self.hooks.fire_filter(
            "filter:topics.getPostReplies", {"uid": caller_uid, "replies": reply_data}
        )
        reply_data = [post for post in result["replies"] if post]

        unique_uids = list(dict.fromkeys(post["uid"] for post in reply_data))
        users = await self.users.get_users_fields(
            unique_uids, ["uid", "username", "userslug", "picture"]
        )
        uid_map = dict(zip(unique_uids, users))
        pid_map = {str(post["pid"]): post for post in reply_data}

        previews: list[PostReplies] = []
        for replies in reply_sets:
            kept = [pid for pid in replies if pid in pid_map]
            first_timestamp = pid_map[kept[0]]["timestamp"] if kept else None
            kept.sort(key=int)
            seen: set[int] = set()
            shown: list[dict[str, Any]] = []
            for pid in kept:
                uid = pid_map[pid]["uid"]
                if uid in seen or len(shown) > REPLY_PREVIEW_USERS:
                    continue
                seen.add(uid)
                shown.append(uid_map.get(uid) or {"uid": uid})
            has_more = len(shown) > REPLY_PREVIEW_USERS
            previews.append(
                PostReplies(
                    has_more=has_more,
                    users=shown[:REPLY_PREVIEW_USERS],
                    count=len(kept),
                    timestamp_iso=to_iso(first_timestamp) if first_timestamp is not None else None,
                )
            )
        return previews

    async def sync_backlinks(self, post: dict[str, Any] | None) -> int:
        """Reconcile ``pid:<pid>:backlinks`` with the topic links found in a post.

        Newly linked topics get a ``backlink`` event; links that disappeared
        from the content are dropped. Links to the post's own topic or to
        topics that do not exist are ignored.

        Returns:
            Number of backlinks the post holds after reconciliation.
        """
        if not post:
            raise ValueError("invalid-data")

        pid, uid, tid = int(post["pid"]), int(post["uid"]), int(post["tid"])
        linked = list(
            dict.fromkeys(
                int(match.group(1))
                for match in backlink_pattern(settings.site_url).finditer(post.get("content") or "")
            )
        )
        key = f"pid:{pid}:backlinks"
        exists = await self.fields.exists_many(linked)
        current = [int(t) for t in await self.store.get_sorted_set_members(key)]
        remove = [t for t in current if t not in linked]
        add = [
            t
            for t, found in zip(linked, exists)
            if found and t not in current and t != tid
        ]

        await self.store.sorted_set_remove(key, remove)
        now = now_ms()
        await self.store.sorted_set_add_many(key, [now] * len(add), add)
        for target in add:
            await self.events.log(target, "backlink", uid, href=f"/post/{pid}")
        if add or remove:
            logger.debug("Post %s backlinks: +%s -%s", pid, add, remove)
        return len(add) + len(current) - len(remove)
