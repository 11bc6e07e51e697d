"""Category ACL oracle and the per-category counters kept in the keyed store.

Category rows, moderators and privilege grants live in the relational
database; topic counts, the recent-topic pointer and tag tallies live next to
the topic indices in the keyed store.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from forum_topics.db.store import KeyValueStore
from forum_topics.db.time import now_ms
from forum_topics.models import Category, CategoryPrivilege
from forum_topics.services.posts import PostService
from forum_topics.services.users import UserService

logger = logging.getLogger(__name__)

RECENT_TIDS_LIMIT = 10
CATEGORY_FIELDS = ("cid", "name", "disabled")


@dataclass
class CategoryBase:
    """Per-category flags resolved once for a batch of categories."""

    categories: list[dict[str, Any] | None] = field(default_factory=list)
    allowed_to: list[bool] = field(default_factory=list)
    view_deleted: list[bool] = field(default_factory=list)
    view_scheduled: list[bool] = field(default_factory=list)
    is_admin: bool = False


class CategoryService:
    """Answers ACL questions for categories and maintains category counters."""

    def __init__(
        self,
        db: Session,
        store: KeyValueStore,
        users: UserService,
        posts: PostService,
    ) -> None:
        self.db = db
        self.store = store
        self.users = users
        self.posts = posts

    # --- category records ---------------------------------------------------
    async def exists(self, cid: int) -> bool:
        return self.db.get(Category, cid) is not None

    async def get_category_field(self, cid: int, field_name: str) -> Any:
        category = self.db.get(Category, cid)
        if category is None or field_name not in CATEGORY_FIELDS:
            return None
        return getattr(category, field_name)

    async def get_categories_fields(
        self, cids: Sequence[int], fields: Sequence[str]
    ) -> list[dict[str, Any] | None]:
        """Return the requested columns per cid, None for unknown categories."""
        rows: dict[int, Category] = {}
        if cids:
            rows = {c.cid: c for c in self.db.scalars(select(Category).where(Category.cid.in_(cids)))}
        results: list[dict[str, Any] | None] = []
        for cid in cids:
            category = rows.get(cid)
            if category is None:
                results.append(None)
            else:
                results.append({f: getattr(category, f) for f in fields if f in CATEGORY_FIELDS})
        return results

    async def get_all_cids(self) -> list[int]:
        return list(self.db.scalars(select(Category.cid).order_by(Category.cid)))

    # --- privilege grants ---------------------------------------------------
    def _granted(self, privileges: Sequence[str], uid: int, cids: Sequence[int]) -> set[tuple[int, str]]:
        """Return the ``(cid, privilege)`` pairs granted to ``uid``."""
        if not privileges or not cids:
            return set()
        holder = CategoryPrivilege.uid == uid
        if uid > 0:
            holder = or_(holder, CategoryPrivilege.uid.is_(None))
        rows = self.db.execute(
            select(CategoryPrivilege.cid, CategoryPrivilege.privilege).where(
                CategoryPrivilege.cid.in_(cids),
                CategoryPrivilege.privilege.in_(privileges),
                holder,
            )
        )
        return {(row.cid, row.privilege) for row in rows}

    async def is_allowed_to(self, privilege: str, uid: int, cid: int) -> bool:
        return (cid, privilege) in self._granted([privilege], uid, [cid])

    async def are_allowed_to(
        self, privileges: Sequence[str], uid: int, cid: int
    ) -> dict[str, bool]:
        """Resolve several privileges for one user in one category."""
        granted = self._granted(privileges, uid, [cid])
        return {privilege: (cid, privilege) in granted for privilege in privileges}

    async def is_allowed_in(self, privilege: str, uid: int, cids: Sequence[int]) -> list[bool]:
        """Resolve one privilege for one user across several categories."""
        granted = self._granted([privilege], uid, cids)
        return [(cid, privilege) in granted for cid in cids]

    async def is_users_allowed_to(
        self, privilege: str, uids: Sequence[int], cid: int
    ) -> list[bool]:
        """Resolve one privilege in one category for several users."""
        rows = self.db.scalars(
            select(CategoryPrivilege.uid).where(
                CategoryPrivilege.cid == cid,
                CategoryPrivilege.privilege == privilege,
            )
        )
        holders = set(rows)
        registered = None in holders
        return [uid in holders or (registered and uid > 0) for uid in uids]

    async def is_user_allowed_to(self, privilege: str, uid: int, cid: int) -> bool:
        """Return True only for a grant made to this user explicitly."""
        row = self.db.scalar(
            select(CategoryPrivilege.id).where(
                CategoryPrivilege.cid == cid,
                CategoryPrivilege.privilege == privilege,
                CategoryPrivilege.uid == uid,
            )
        )
        return row is not None

    async def get_base(self, privilege: str, cids: Sequence[int], uid: int) -> CategoryBase:
        """Resolve the flags ``filter_tids``-style checks need for a batch of categories."""
        categories, allowed_to, view_deleted, view_scheduled, is_admin = await asyncio.gather(
            self.get_categories_fields(cids, ["disabled"]),
            self.is_allowed_in(privilege, uid, cids),
            self.is_allowed_in("posts:view_deleted", uid, cids),
            self.is_allowed_in("topics:schedule", uid, cids),
            self.users.is_administrator(uid),
        )
        return CategoryBase(
            categories=categories,
            allowed_to=allowed_to,
            view_deleted=view_deleted,
            view_scheduled=view_scheduled,
            is_admin=is_admin,
        )

    async def can(self, privilege: str, cid: int, uid: int) -> bool:
        """Return True if ``uid`` may use ``privilege`` in ``cid``; never in a disabled one."""
        disabled, is_admin, allowed = await asyncio.gather(
            self.get_category_field(cid, "disabled"),
            self.users.is_administrator(uid),
            self.is_allowed_to(privilege, uid, cid),
        )
        if disabled is None or disabled:
            return False
        return allowed or is_admin

    async def is_admin_or_mod(self, cid: int, uid: int) -> bool:
        if uid <= 0:
            return False
        is_admin, is_mod = await asyncio.gather(
            self.users.is_administrator(uid),
            self.users.is_moderator(uid, cid),
        )
        return is_admin or is_mod

    async def filter_uids(self, privilege: str, cid: int, uids: Sequence[int]) -> list[int]:
        """Return the distinct uids holding ``privilege`` in ``cid`` (admins always pass)."""
        unique = list(dict.fromkeys(uids))
        allowed, admins = await asyncio.gather(
            self.is_users_allowed_to(privilege, unique, cid),
            self.users.are_administrators(unique),
        )
        return [uid for uid, ok, admin in zip(unique, allowed, admins) if ok or admin]

    # --- counters and pointers in the keyed store ---------------------------
    async def get_category_counters(self, cid: int) -> dict[str, int]:
        data = await self.store.get_object(f"category:{cid}") or {}
        return {key: int(value) for key, value in data.items() if value.lstrip("-").isdigit()}

    async def increment_category_field_by(self, cid: int, field_name: str, by: int) -> int:
        return await self.store.incr_object_field_by(f"category:{cid}", field_name, by)

    async def update_recent_tid(self, cid: int, tid: int) -> None:
        """Record ``tid`` as the category's most recent topic, keeping a bounded history."""
        key = f"cid:{cid}:recent_tids"
        await self.store.sorted_set_add(key, now_ms(), tid)
        count = await self.store.sorted_set_card(key)
        if count > RECENT_TIDS_LIMIT:
            stale = await self.store.get_sorted_set_range(key, 0, count - RECENT_TIDS_LIMIT - 1)
            await self.store.sorted_set_remove(key, stale)
        await self.store.set_object_field(f"category:{cid}", "recent_tid", tid)

    async def update_recent_tid_for_cid(self, cid: int) -> int | None:
        """Point the category at its newest visible topic.

        Walks the category's topics by last post time and skips deleted,
        scheduled or vanished ones.

        Returns:
            The chosen tid, or None when the category has no visible topic.
        """
        tids = await self.store.get_sorted_set_rev_range(f"cid:{cid}:tids:lastposttime", 0, -1)
        now = now_ms()
        for tid in tids:
            topic = await self.store.get_objects(
                [f"topic:{tid}"], ["tid", "deleted", "timestamp"]
            )
            record = topic[0] or {}
            if record.get("tid") is None or record.get("deleted") == "1":
                continue
            if int(record.get("timestamp") or 0) > now:
                continue
            await self.update_recent_tid(cid, int(tid))
            return int(tid)
        await self.store.delete_object_field(f"category:{cid}", "recent_tid")
        return None

    async def move_recent_replies(
        self, pids: Sequence[int | str], old_cid: int, cid: int
    ) -> None:
        """Move a topic's posts from the old category's post indices to the new one."""
        if not pids:
            return
        posts = [p for p in await self.posts.get_posts_fields(pids, ["pid", "uid", "timestamp", "votes"]) if p]
        remove: list[tuple[str, int]] = []
        add: list[tuple[str, float, int]] = []
        for post in posts:
            remove.append((f"cid:{old_cid}:uid:{post['uid']}:pids", post["pid"]))
            remove.append((f"cid:{old_cid}:uid:{post['uid']}:pids:votes", post["pid"]))
            add.append((f"cid:{cid}:uid:{post['uid']}:pids", post["timestamp"], post["pid"]))
            if post["votes"]:
                add.append((f"cid:{cid}:uid:{post['uid']}:pids:votes", post["votes"], post["pid"]))
        await self.store.sorted_set_remove(f"cid:{old_cid}:pids", [p["pid"] for p in posts])
        await self.store.sorted_set_add_many(
            f"cid:{cid}:pids", [p["timestamp"] for p in posts], [p["pid"] for p in posts]
        )
        for key, pid in remove:
            await self.store.sorted_set_remove(key, pid)
        await self.store.sorted_set_add_bulk(add)
        await self.increment_category_field_by(old_cid, "post_count", -len(posts))
        await self.increment_category_field_by(cid, "post_count", len(posts))

    async def update_category_tags_count(self, cids: Sequence[int], tags: Sequence[str]) -> None:
        """Recompute ``cid:<cid>:tags`` tallies for the given tags."""
        if not tags:
            return
        for cid in cids:
            for tag in tags:
                count = await self.store.sorted_set_card(f"cid:{cid}:tag:{tag}:topics")
                if count > 0:
                    await self.store.sorted_set_add(f"cid:{cid}:tags", count, tag)
                else:
                    await self.store.sorted_set_remove(f"cid:{cid}:tags", tag)
