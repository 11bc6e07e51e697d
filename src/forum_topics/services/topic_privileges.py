"""Privilege resolution for topics.

Combines category ACL grants, user roles, ownership and topic state into the
set of actions a user may take. Nothing here mutates state. Independent role
lookups are issued together with ``asyncio.gather`` and joined before any
decision is made.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from forum_topics.core.errors import ReplyThresholdError, TopicNotFoundError
from forum_topics.core.settings import settings
from forum_topics.schemas.topic import TopicPrivilegeSet
from forum_topics.services.categories import CategoryService
from forum_topics.services.hooks import HookRegistry
from forum_topics.services.topic_data import TopicFields, check_uid, coerce_tid
from forum_topics.services.users import UserService

logger = logging.getLogger(__name__)

TOPIC_PRIVILEGES = (
    "topics:reply",
    "topics:read",
    "topics:schedule",
    "topics:tag",
    "topics:delete",
    "posts:edit",
    "posts:history",
    "posts:delete",
    "posts:view_deleted",
    "read",
    "purge",
)


def can_view_deleted_scheduled(
    topic: Any,
    privileges: Mapping[str, Any] | None = None,
    view_deleted: Any = False,
    view_scheduled: Any = False,
) -> bool:
    """Decide whether a deleted or scheduled topic is visible.

    A scheduled topic is judged only by the schedule-view permission, even if
    it is also deleted. ``view_deleted``/``view_scheduled`` entries in
    ``privileges`` take precedence over the positional flags.

    Args:
        topic: Topic mapping with optional ``deleted`` and ``scheduled`` flags.
        privileges: Optional privilege mapping.
        view_deleted: Whether deleted topics may be seen.
        view_scheduled: Whether scheduled topics may be seen.

    Returns:
        True when the topic is visible; False for malformed input.
    """
    if privileges is None:
        privileges = {}
    if not isinstance(topic, Mapping) or not isinstance(privileges, Mapping):
        return False
    if not isinstance(view_deleted, bool) or not isinstance(view_scheduled, bool):
        return False

    can_view_deleted = privileges.get("view_deleted", view_deleted)
    can_view_scheduled = privileges.get("view_scheduled", view_scheduled)

    if topic.get("scheduled"):
        return bool(can_view_scheduled)
    if topic.get("deleted"):
        return bool(can_view_deleted)
    return True


class TopicPrivileges:
    """Answers "may this user do that to this topic?" questions."""

    def __init__(
        self,
        fields: TopicFields,
        categories: CategoryService,
        users: UserService,
        hooks: HookRegistry,
    ) -> None:
        self.fields = fields
        self.categories = categories
        self.users = users
        self.hooks = hooks

    async def get(self, tid: int | str, uid: int) -> TopicPrivilegeSet:
        """Resolve every topic privilege for ``uid``.

        Raises:
            TopicNotFoundError: If the topic does not exist.
        """
        tid = coerce_tid(tid)
        uid = check_uid(uid)
        topic = await self.fields.get_topic_fields(tid, ["cid", "uid", "locked", "deleted", "scheduled"])
        if topic is None:
            raise TopicNotFoundError()
        cid = topic["cid"]

        acl, is_admin, is_mod, is_instructor, disabled = await asyncio.gather(
            self.categories.are_allowed_to(TOPIC_PRIVILEGES, uid, cid),
            self.users.is_administrator(uid),
            self.users.is_moderator(uid, cid),
            self.users.is_instructor(uid),
            self.categories.get_category_field(cid, "disabled"),
        )

        is_owner = uid > 0 and uid == topic["uid"]
        is_admin_or_mod = is_admin or is_mod
        editable = is_admin_or_mod or is_instructor
        deletable = (acl["topics:delete"] and (is_owner or is_mod)) or is_admin
        may_reply = can_view_deleted_scheduled(topic, {}, False, acl["topics:schedule"])
        locked = bool(topic["locked"])

        result = await self.hooks.fire_filter(
            "filter:privileges.topics.get",
            {
                "topics:reply": (acl["topics:reply"] and ((not locked and may_reply) or is_mod))
                or is_admin,
                "topics:read": acl["topics:read"] or is_admin,
                "topics:schedule": acl["topics:schedule"] or is_admin,
                "topics:tag": acl["topics:tag"] or is_admin,
                "topics:delete": deletable,
                "posts:edit": (acl["posts:edit"] and (not locked or is_mod)) or is_admin,
                "posts:history": acl["posts:history"] or is_admin,
                "posts:delete": (acl["posts:delete"] and (not locked or is_mod)) or is_admin,
                "posts:view_deleted": acl["posts:view_deleted"] or is_admin,
                "read": acl["read"] or is_admin,
                "purge": (acl["purge"] and (is_owner or is_mod)) or is_admin,
                "view_thread_tools": editable or deletable,
                "editable": editable,
                "deletable": deletable,
                "view_deleted": is_admin_or_mod or is_owner or acl["posts:view_deleted"],
                "view_scheduled": acl["topics:schedule"] or is_admin,
                "is_admin_or_mod": is_admin_or_mod,
                "is_instructor": is_instructor,
                "is_owner": is_owner,
                "disabled": bool(disabled),
                "tid": tid,
                "uid": uid,
            },
        )
        return TopicPrivilegeSet.model_validate(result)

    async def can(self, privilege: str, tid: int | str, uid: int) -> bool:
        """Check a single privilege against the topic's category."""
        tid = coerce_tid(tid)
        uid = check_uid(uid)
        cid = await self.fields.get_topic_field(tid, "cid")
        if not cid:
            return False
        return await self.categories.can(privilege, cid, uid)

    async def filter_tids(self, privilege: str, tids: Sequence[int | str], uid: int) -> list[int]:
        """Return the tids ``uid`` may use ``privilege`` on, in input order.

        Category grants are resolved once per distinct category.
        """
        if not isinstance(tids, (list, tuple)) or not tids:
            return []
        uid = check_uid(uid)
        topics = [
            t
            for t in await self.fields.get_topics_fields(
                [coerce_tid(t) for t in tids], ["tid", "cid", "deleted", "scheduled"]
            )
            if t is not None
        ]
        cids = list(dict.fromkeys(t["cid"] for t in topics))
        base = await self.categories.get_base(privilege, cids, uid)

        allowed_cids = {
            cid
            for cid, category, allowed in zip(cids, base.categories, base.allowed_to)
            if category is not None and not category["disabled"] and (allowed or base.is_admin)
        }
        view_deleted = dict(zip(cids, base.view_deleted))
        view_scheduled = dict(zip(cids, base.view_scheduled))

        kept = [
            t["tid"]
            for t in topics
            if t["cid"] in allowed_cids
            and (
                base.is_admin
                or can_view_deleted_scheduled(t, {}, view_deleted[t["cid"]], view_scheduled[t["cid"]])
            )
        ]
        data = await self.hooks.fire_filter(
            "filter:privileges.topics.filter", {"privilege": privilege, "uid": uid, "tids": kept}
        )
        return list(data["tids"]) if data else []

    async def filter_uids(self, privilege: str, tid: int | str, uids: Sequence[int]) -> list[int]:
        """Return the distinct uids allowed ``privilege`` on a topic.

        On a scheduled topic only holders of ``topics:schedule`` remain; a
        disabled category admits nobody.
        """
        if not isinstance(uids, (list, tuple)) or not uids:
            return []
        tid = coerce_tid(tid)
        candidates = list(dict.fromkeys(uids))
        topic = await self.fields.get_topic_fields(tid, ["tid", "cid", "deleted", "scheduled"])
        if topic is None:
            return []
        cid = topic["cid"]

        disabled, allowed, admins = await asyncio.gather(
            self.categories.get_category_field(cid, "disabled"),
            self.categories.is_users_allowed_to(privilege, candidates, cid),
            self.users.are_administrators(candidates),
        )
        rows = list(zip(candidates, allowed, admins))
        if topic["scheduled"]:
            can_schedule = await self.categories.is_users_allowed_to("topics:schedule", candidates, cid)
            rows = [row for row, ok in zip(rows, can_schedule) if ok]
        if disabled or disabled is None:
            return []
        return [
            uid
            for uid, ok, is_admin in rows
            if (ok and (topic["scheduled"] or not topic["deleted"])) or is_admin
        ]

    async def can_purge(self, tid: int | str, uid: int) -> bool:
        tid = coerce_tid(tid)
        uid = check_uid(uid)
        cid = await self.fields.get_topic_field(tid, "cid")
        if not cid:
            return False
        purge, owner, is_admin, is_mod = await asyncio.gather(
            self.categories.is_user_allowed_to("purge", uid, cid),
            self.fields.is_owner(tid, uid),
            self.users.is_administrator(uid),
            self.users.is_moderator(uid, cid),
        )
        return (purge and (owner or is_mod)) or is_admin

    async def can_delete(self, tid: int | str, uid: int) -> bool:
        """Return whether ``uid`` may delete or restore the topic.

        Raises:
            TopicNotFoundError: If the topic does not exist.
            ReplyThresholdError: If the topic has reached the configured
                reply limit and ``uid`` is not a moderator.
        """
        tid = coerce_tid(tid)
        uid = check_uid(uid)
        topic = await self.fields.get_topic_fields(tid, ["uid", "cid", "postcount", "deleterUid"])
        if topic is None:
            raise TopicNotFoundError()
        is_mod, is_admin, is_owner, allowed = await asyncio.gather(
            self.users.is_moderator(uid, topic["cid"]),
            self.users.is_administrator(uid),
            self.fields.is_owner(tid, uid),
            self.categories.is_allowed_to("topics:delete", uid, topic["cid"]),
        )
        if is_admin:
            return True

        threshold = settings.prevent_topic_delete_after_replies
        if not is_mod and threshold and (topic["postcount"] - 1) >= threshold:
            raise ReplyThresholdError.for_threshold(threshold)

        deleter_uid = topic["deleterUid"]
        return allowed and (
            (is_owner and (deleter_uid == 0 or deleter_uid == topic["uid"])) or is_mod
        )

    async def can_edit(self, tid: int | str, uid: int) -> bool:
        return await self.is_owner_or_admin_or_mod(tid, uid)

    async def is_owner_or_admin_or_mod(self, tid: int | str, uid: int) -> bool:
        is_owner, is_admin_or_mod = await asyncio.gather(
            self.fields.is_owner(coerce_tid(tid), check_uid(uid)),
            self.is_admin_or_mod(tid, uid),
        )
        return is_owner or is_admin_or_mod

    async def is_admin_or_mod(self, tid: int | str, uid: int) -> bool:
        """Return True for site administrators and moderators of the topic's category."""
        tid = coerce_tid(tid)
        uid = check_uid(uid)
        if uid <= 0:
            return False
        cid = await self.fields.get_topic_field(tid, "cid")
        if not cid:
            return False
        return await self.categories.is_admin_or_mod(cid, uid)
