"""Guarded lifecycle transitions for topics.

Every transition follows the same order: validate arguments, load the topic
(``no-topic`` if it is gone), check the guard, mutate fields and indices,
append one audit event, then fire one ``action:*`` hook. Steps are
independent store writes; a failure part-way leaves earlier steps applied.
"""

from __future__ import annotations

import logging
from typing import Any

from forum_topics.core.actor import SYSTEM, Actor, SystemActor, UserActor
from forum_topics.core.errors import PrivilegeError, TopicNotFoundError, TopicStateError
from forum_topics.db.store import KeyValueStore
from forum_topics.db.time import now_ms
from forum_topics.schemas.topic import (
    DeleteResult,
    LockResult,
    MoveResult,
    PinExpiryResult,
    PinnedOrderResult,
    PinResult,
    PurgeResult,
    UserSummary,
)
from forum_topics.services.categories import CategoryService
from forum_topics.services.events import SystemEventLog, TopicEventLog
from forum_topics.services.hooks import HookRegistry
from forum_topics.services.posts import PostService
from forum_topics.services.topic_data import TopicFields, check_uid, coerce_tid
from forum_topics.services.topic_posts import TopicPosts
from forum_topics.services.topic_privileges import TopicPrivileges
from forum_topics.services.users import UserService

logger = logging.getLogger(__name__)

# Global feeds a deleted topic drops out of.
GLOBAL_SORTED_SETS = ("topics:recent", "topics:posts", "topics:views", "topics:votes")


def _category_feeds(cid: int) -> list[str]:
    return [
        f"cid:{cid}:tids",
        f"cid:{cid}:tids:posts",
        f"cid:{cid}:tids:votes",
        f"cid:{cid}:tids:views",
    ]


class TopicTools:
    """Lock, pin, delete, purge and move topics."""

    def __init__(
        self,
        store: KeyValueStore,
        hooks: HookRegistry,
        fields: TopicFields,
        topic_posts: TopicPosts,
        privileges: TopicPrivileges,
        categories: CategoryService,
        users: UserService,
        posts: PostService,
        events: TopicEventLog,
        system_events: SystemEventLog,
    ) -> None:
        self.store = store
        self.hooks = hooks
        self.fields = fields
        self.topic_posts = topic_posts
        self.privileges = privileges
        self.categories = categories
        self.users = users
        self.posts = posts
        self.events = events
        self.system_events = system_events

    async def _load(self, tid: int) -> dict[str, Any]:
        topic = await self.fields.get_topic_data(tid)
        if topic is None:
            raise TopicNotFoundError()
        return topic

    # --- delete / restore ---------------------------------------------------
    async def delete(self, tid: int | str, uid: int) -> DeleteResult:
        return await self._toggle_delete(coerce_tid(tid), check_uid(uid), True)

    async def restore(self, tid: int | str, uid: int) -> DeleteResult:
        return await self._toggle_delete(coerce_tid(tid), check_uid(uid), False)

    async def _toggle_delete(self, tid: int, uid: int, is_delete: bool) -> DeleteResult:
        topic = await self._load(tid)
        if topic["scheduled"]:
            raise TopicStateError("invalid-data")

        can_delete = await self.privileges.can_delete(tid, uid)
        hook = "delete" if is_delete else "restore"
        data = await self.hooks.fire_filter(
            f"filter:topic.{hook}",
            {
                "topicData": topic,
                "uid": uid,
                "isDelete": is_delete,
                "canDelete": can_delete,
                "canRestore": can_delete,
            },
        )
        if (data["isDelete"] and not data["canDelete"]) or (
            not data["isDelete"] and not data["canRestore"]
        ):
            raise PrivilegeError()

        topic = data["topicData"]
        if topic["deleted"] and data["isDelete"]:
            raise TopicStateError("topic-already-deleted")
        if not topic["deleted"] and not data["isDelete"]:
            raise TopicStateError("topic-already-restored")

        if data["isDelete"]:
            await self._mark_deleted(topic, uid)
        else:
            await self._mark_restored(topic)

        events = await self.events.log(tid, hook, uid)
        topic["deleted"] = 1 if data["isDelete"] else 0
        logger.info("Topic %s %sd by uid %s", tid, hook, uid)
        await self.hooks.fire_action(f"action:topic.{hook}", {"topic": dict(topic), "uid": uid})

        user = await self.users.get_user_fields(uid, ["username", "userslug"])
        return DeleteResult(
            tid=tid,
            cid=topic["cid"],
            uid=uid,
            is_delete=data["isDelete"],
            user=UserSummary(**user) if user else None,
            events=events,
        )

    async def _mark_deleted(self, topic: dict[str, Any], uid: int) -> None:
        tid, cid = topic["tid"], topic["cid"]
        pids = await self.topic_posts.get_pids(tid)
        await self.store.sorted_set_remove(f"cid:{cid}:pids", pids)
        await self.fields.set_topic_fields(
            tid, {"deleted": 1, "deleterUid": uid, "deletedTimestamp": now_ms()}
        )
        await self.store.sorted_sets_remove(list(GLOBAL_SORTED_SETS), tid)

    async def _mark_restored(self, topic: dict[str, Any]) -> None:
        tid, cid = topic["tid"], topic["cid"]
        await self.fields.delete_topic_fields(tid, ["deleterUid", "deletedTimestamp"])
        pids = await self.topic_posts.get_pids(tid)
        posts = [p for p in await self.posts.get_posts_fields(pids, ["pid", "timestamp", "deleted"]) if p]
        live = [p for p in posts if not p["deleted"]]
        await self.store.sorted_set_add_many(
            f"cid:{cid}:pids", [p["timestamp"] for p in live], [p["pid"] for p in live]
        )
        await self.fields.set_topic_field(tid, "deleted", 0)

        current = await self.fields.get_topic_fields(
            tid, ["lastposttime", "postcount", "viewcount", "votes"]
        )
        if current is None:
            return
        await self.store.sorted_set_add_bulk(
            [
                ("topics:recent", current["lastposttime"], tid),
                ("topics:posts", current["postcount"], tid),
                ("topics:views", current["viewcount"], tid),
                ("topics:votes", current["votes"], tid),
            ]
        )

    # --- purge --------------------------------------------------------------
    async def purge(self, tid: int | str, uid: int, *, ip: str | None = None) -> PurgeResult:
        """Remove a topic, its posts and every index entry; terminal.

        The site-wide log entry carries ``ip`` and the title read before removal.

        Raises:
            TopicNotFoundError: If the topic does not exist.
            PrivilegeError: If ``uid`` may not purge the topic.
        """
        tid = coerce_tid(tid)
        uid = check_uid(uid)
        topic = await self._load(tid)
        if not await self.privileges.can_purge(tid, uid):
            raise PrivilegeError()

        await self._purge_posts_and_topic(topic, uid, ip)
        logger.info("Topic %s purged by uid %s", tid, uid)
        return PurgeResult(tid=tid, cid=topic["cid"], uid=uid)

    async def _purge_posts_and_topic(
        self, topic: dict[str, Any], uid: int, ip: str | None
    ) -> None:
        tid, cid, owner = topic["tid"], topic["cid"], topic["uid"]
        pids = await self.topic_posts.get_pids(tid)
        tags = await self.fields.get_topic_tags(tid)
        await self.posts.purge(pids, cid)

        await self.store.delete_all(
            [
                f"tid:{tid}:posts",
                f"tid:{tid}:posts:votes",
                f"tid:{tid}:posters",
                f"tid:{tid}:instructor_pids",
                f"tid:{tid}:followers",
                f"tid:{tid}:ignorers",
                f"tid:{tid}:bookmarks",
            ]
        )
        await self.store.sorted_sets_remove(
            ["topics:tid", *GLOBAL_SORTED_SETS, "topics:scheduled"], tid
        )
        await self.store.sorted_sets_remove(
            [
                *_category_feeds(cid),
                f"cid:{cid}:tids:pinned",
                f"cid:{cid}:tids:lastposttime",
                f"cid:{cid}:recent_tids",
                f"cid:{cid}:uid:{owner}:tids",
                f"uid:{owner}:topics",
                *(f"cid:{cid}:tag:{tag}:topics" for tag in tags),
                *(f"tag:{tag}:topics" for tag in tags),
            ],
            tid,
        )
        await self.categories.update_category_tags_count([cid], tags)
        await self.events.purge(tid)

        await self.categories.increment_category_field_by(cid, "topic_count", -1)
        await self.categories.increment_category_field_by(cid, "post_count", -len(pids))
        await self.store.incr_object_field_by("global", "topicCount", -1)
        await self.store.incr_object_field_by("global", "postCount", -len(pids))

        await self.system_events.log(
            "topic-purge",
            uid,
            ip=ip,
            tid=tid,
            cid=cid,
            title=topic.get("titleRaw") or topic.get("title") or "",
        )
        await self.hooks.fire_action(
            "action:topic.purge", {"topic": {**topic, "tags": tags}, "uid": uid}
        )
        await self.store.delete(f"topic:{tid}")
        await self.categories.update_recent_tid_for_cid(cid)

    # --- lock ---------------------------------------------------------------
    async def lock(self, tid: int | str, uid: int) -> LockResult:
        return await self._toggle_lock(coerce_tid(tid), check_uid(uid), True)

    async def unlock(self, tid: int | str, uid: int) -> LockResult:
        return await self._toggle_lock(coerce_tid(tid), check_uid(uid), False)

    async def _toggle_lock(self, tid: int, uid: int, lock: bool) -> LockResult:
        topic = await self.fields.get_topic_fields(tid, ["tid", "uid", "cid"])
        if topic is None or not topic["cid"]:
            raise TopicNotFoundError()
        # Instructors are not moderators here; only pinning is extended to them.
        if not await self.categories.is_admin_or_mod(topic["cid"], uid):
            raise PrivilegeError()

        await self.fields.set_topic_field(tid, "locked", 1 if lock else 0)
        events = await self.events.log(tid, "lock" if lock else "unlock", uid)
        result = LockResult(tid=tid, uid=topic["uid"], cid=topic["cid"], locked=lock, events=events)
        logger.info("Topic %s %s by uid %s", tid, "locked" if lock else "unlocked", uid)
        await self.hooks.fire_action(
            "action:topic.lock", {"topic": result.model_dump(), "uid": uid}
        )
        return result

    # --- pin ----------------------------------------------------------------
    async def pin(self, tid: int | str, uid: int) -> PinResult:
        return await self.toggle_pin(coerce_tid(tid), UserActor(check_uid(uid)), True)

    async def unpin(self, tid: int | str, uid: int) -> PinResult:
        return await self.toggle_pin(coerce_tid(tid), UserActor(check_uid(uid)), False)

    async def toggle_pin(self, tid: int, actor: Actor, pin: bool) -> PinResult:
        """Pin or unpin a topic on behalf of ``actor``.

        Administrators, moderators of the topic's category and instructors
        may toggle pins. ``SystemActor`` skips the check; it is only used by
        the expiry sweep.

        Raises:
            TopicNotFoundError: If the topic does not exist.
            TopicStateError: ``cant-pin-scheduled`` for a scheduled topic.
            PrivilegeError: If a user actor lacks the role.
        """
        topic = await self._load(tid)
        if topic["scheduled"]:
            raise TopicStateError("cant-pin-scheduled")
        if isinstance(actor, UserActor):
            allowed = await self.privileges.is_admin_or_mod(tid, actor.uid)
            if not allowed and not await self.users.is_instructor(actor.uid):
                raise PrivilegeError()
        elif not isinstance(actor, SystemActor):
            raise TypeError(f"unsupported actor {actor!r}")

        cid = topic["cid"]
        await self.fields.set_topic_field(tid, "pinned", 1 if pin else 0)
        if pin:
            await self.store.sorted_set_add(f"cid:{cid}:tids:pinned", now_ms(), tid)
            await self.store.sorted_sets_remove(_category_feeds(cid), tid)
        else:
            await self.store.sorted_set_remove(f"cid:{cid}:tids:pinned", tid)
            await self.fields.delete_topic_field(tid, "pinExpiry")
            # Re-read counters so the topic re-enters the feeds at its current position.
            current = await self.fields.get_topic_fields(
                tid, ["lastposttime", "postcount", "votes", "viewcount"]
            )
            current = current or topic
            await self.store.sorted_set_add_bulk(
                [
                    (f"cid:{cid}:tids", current["lastposttime"], tid),
                    (f"cid:{cid}:tids:posts", current["postcount"], tid),
                    (f"cid:{cid}:tids:votes", current.get("votes") or 0, tid),
                    (f"cid:{cid}:tids:views", current["viewcount"], tid),
                ]
            )
            topic.pop("pinExpiry", None)
            topic.pop("pinExpiryISO", None)

        events = await self.events.log(tid, "pin" if pin else "unpin", actor.event_uid)
        topic["pinned"] = 1 if pin else 0
        topic["events"] = [event.model_dump() for event in events]
        logger.info("Topic %s %s by %s", tid, "pinned" if pin else "unpinned", actor.event_uid)
        await self.hooks.fire_action("action:topic.pin", {"topic": dict(topic), "uid": actor.event_uid})
        return PinResult(
            tid=tid,
            uid=topic["uid"],
            cid=cid,
            pinned=pin,
            pin_expiry=topic.get("pinExpiry") or None,
            events=events,
            topic=topic,
        )

    async def set_pin_expiry(self, tid: int | str, expiry: Any, uid: int) -> PinExpiryResult:
        """Schedule an automatic unpin for a pinned topic.

        Raises:
            TopicStateError: ``invalid-data`` if ``expiry`` is not a future
                timestamp or the topic is not pinned.
            TopicNotFoundError: If the topic does not exist.
            PrivilegeError: If ``uid`` is not an admin or moderator of the category.
        """
        tid = coerce_tid(tid)
        uid = check_uid(uid)
        try:
            expiry = int(expiry)
        except (TypeError, ValueError) as err:
            raise TopicStateError("invalid-data") from err
        if expiry <= now_ms():
            raise TopicStateError("invalid-data")

        topic = await self.fields.get_topic_fields(tid, ["tid", "uid", "cid", "pinned"])
        if topic is None:
            raise TopicNotFoundError()
        if not await self.categories.is_admin_or_mod(topic["cid"], uid):
            raise PrivilegeError()
        if not topic["pinned"]:
            raise TopicStateError("invalid-data")

        await self.fields.set_topic_field(tid, "pinExpiry", expiry)
        logger.info("Topic %s pin expires at %s (set by uid %s)", tid, expiry, uid)
        await self.hooks.fire_action(
            "action:topic.setPinExpiry", {"topic": {**topic, "pinExpiry": expiry}, "uid": uid}
        )
        return PinExpiryResult(tid=tid, cid=topic["cid"], uid=uid, pin_expiry=expiry)

    async def check_pin_expiry(self, tids: list[int | str]) -> list[int]:
        """Unpin topics whose pin has expired and return the ones still pinned.

        The unpin runs as the system actor and bypasses privilege checks.
        """
        if not isinstance(tids, (list, tuple)):
            raise TypeError("tids must be a list of topic ids")
        ids = [coerce_tid(tid) for tid in tids]
        topics = await self.fields.get_topics_fields(ids, ["pinExpiry"])
        now = now_ms()
        still_pinned: list[int] = []
        for tid, topic in zip(ids, topics):
            expiry = topic["pinExpiry"] if topic else 0
            if expiry and expiry <= now:
                await self.toggle_pin(tid, SYSTEM, False)
                continue
            still_pinned.append(tid)
        return still_pinned

    async def order_pinned_topics(self, uid: int, tid: int | str, order: int) -> PinnedOrderResult:
        """Move a pinned topic to rank ``order`` counted from the top of the list.

        Pinned topics are stored ascending, so rank 0 from the top is the last
        stored position. After the move every score is rewritten as the
        topic's position.

        Raises:
            TopicNotFoundError: If the topic does not exist.
            TopicStateError: ``invalid-data`` if ``order`` is negative.
            PrivilegeError: If ``uid`` is not an admin or moderator of the category.
        """
        uid = check_uid(uid)
        tid = coerce_tid(tid)
        if isinstance(order, bool) or not isinstance(order, int):
            raise TypeError(f"order must be an integer, got {order!r}")
        cid = await self.fields.get_topic_field(tid, "cid")
        if not cid:
            raise TopicNotFoundError()
        if order < 0:
            raise TopicStateError("invalid-data")
        if not await self.categories.is_admin_or_mod(cid, uid):
            raise PrivilegeError()

        key = f"cid:{cid}:tids:pinned"
        pinned = await self.store.get_sorted_set_range(key, 0, -1)
        if str(tid) not in pinned:
            return PinnedOrderResult(cid=cid, tids=[int(t) for t in pinned], moved=False)

        if len(pinned) > 1:
            new_index = max(0, len(pinned) - order - 1)
            pinned.remove(str(tid))
            pinned.insert(new_index, str(tid))
        await self.store.sorted_set_add_many(key, list(range(len(pinned))), pinned)
        logger.info("Pinned topic %s in category %s moved to rank %s", tid, cid, order)
        return PinnedOrderResult(cid=cid, tids=[int(t) for t in pinned], moved=True)

    # --- move ---------------------------------------------------------------
    async def move(self, tid: int | str, cid: int, uid: int) -> MoveResult:
        """Move a topic to another category, carrying over its pinned state.

        Authorization is the caller's responsibility.

        Raises:
            TopicNotFoundError: If the topic does not exist.
            TopicStateError: ``cant-move-topic-to-same-category`` for a no-op
                move, ``invalid-data`` for an unknown target category.
        """
        tid = coerce_tid(tid)
        uid = check_uid(uid)
        if isinstance(cid, bool) or not isinstance(cid, int):
            raise TypeError(f"cid must be an integer, got {cid!r}")
        topic = await self._load(tid)
        old_cid = topic["cid"]
        if cid == old_cid:
            raise TopicStateError("cant-move-topic-to-same-category")
        if not await self.categories.exists(cid):
            raise TopicStateError("invalid-data")

        tags = await self.fields.get_topic_tags(tid)
        owner = topic["uid"]
        await self.store.sorted_sets_remove(
            [
                *_category_feeds(old_cid),
                f"cid:{old_cid}:tids:pinned",
                f"cid:{old_cid}:tids:lastposttime",
                f"cid:{old_cid}:recent_tids",
                f"cid:{old_cid}:uid:{owner}:tids",
                *(f"cid:{old_cid}:tag:{tag}:topics" for tag in tags),
            ],
            tid,
        )

        bulk: list[tuple[str, float, int]] = [
            (f"cid:{cid}:tids:lastposttime", topic["lastposttime"], tid),
            (f"cid:{cid}:uid:{owner}:tids", topic["timestamp"], tid),
            *((f"cid:{cid}:tag:{tag}:topics", topic["timestamp"], tid) for tag in tags),
        ]
        if topic["pinned"]:
            bulk.append((f"cid:{cid}:tids:pinned", now_ms(), tid))
        else:
            bulk.extend(
                [
                    (f"cid:{cid}:tids", topic["lastposttime"], tid),
                    (f"cid:{cid}:tids:posts", topic["postcount"], tid),
                    (f"cid:{cid}:tids:votes", topic["votes"], tid),
                    (f"cid:{cid}:tids:views", topic["viewcount"], tid),
                ]
            )
        await self.store.sorted_set_add_bulk(bulk)

        pids = await self.topic_posts.get_pids(tid)
        await self.categories.move_recent_replies(pids, old_cid, cid)
        await self.categories.increment_category_field_by(old_cid, "topic_count", -1)
        await self.categories.increment_category_field_by(cid, "topic_count", 1)
        await self.fields.set_topic_fields(tid, {"cid": cid, "oldCid": old_cid})
        await self.categories.update_recent_tid_for_cid(cid)
        await self.categories.update_recent_tid_for_cid(old_cid)
        await self.categories.update_category_tags_count([old_cid, cid], tags)

        events = await self.events.log(tid, "move", uid, fromCid=old_cid)
        logger.info("Topic %s moved from category %s to %s by uid %s", tid, old_cid, cid, uid)
        await self.hooks.fire_action(
            "action:topic.move", {"tid": tid, "uid": uid, "cid": cid, "fromCid": old_cid, "toCid": cid}
        )
        return MoveResult(tid=tid, uid=uid, from_cid=old_cid, to_cid=cid, events=events)
