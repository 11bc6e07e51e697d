"""Access to post records (``post:<pid>``) owned by the post layer.

The topic engine never creates posts; it reads their identity and vote fields
to maintain topic aggregates, and removes them when a topic is purged.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from forum_topics.db.store import KeyValueStore, iter_keys

logger = logging.getLogger(__name__)

POST_INT_FIELDS = frozenset(
    {
        "pid",
        "uid",
        "tid",
        "toPid",
        "timestamp",
        "edited",
        "deleted",
        "deleterUid",
        "upvotes",
        "downvotes",
        "replies",
    }
)


def _normalise_post(raw: dict[str, str | None] | None) -> dict[str, Any] | None:
    if not raw or all(value is None for value in raw.values()):
        return None
    post: dict[str, Any] = {}
    for field, value in raw.items():
        if field in POST_INT_FIELDS:
            post[field] = int(value) if value not in (None, "") else 0
        else:
            post[field] = value
    if "upvotes" in post and "downvotes" in post:
        post["votes"] = post["upvotes"] - post["downvotes"]
    return post


class PostService:
    """Reads and purges post records in the keyed store."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def exists(self, pid: int) -> bool:
        return await self.store.exists(f"post:{pid}")

    async def get_post_fields(self, pid: int, fields: Sequence[str] = ()) -> dict[str, Any] | None:
        posts = await self.get_posts_fields([pid], fields)
        return posts[0]

    async def get_posts_fields(
        self, pids: Sequence[int | str], fields: Sequence[str] = ()
    ) -> list[dict[str, Any] | None]:
        """Return integer-coerced post fields; unknown posts come back as None."""
        if not pids:
            return []
        wanted = list(fields)
        if wanted and "votes" in wanted:
            wanted = [f for f in wanted if f != "votes"] + ["upvotes", "downvotes"]
        raw = await self.store.get_objects(iter_keys("post:", pids), wanted or None)
        return [_normalise_post(post) for post in raw]

    async def get_post_field(self, pid: int, field: str) -> Any:
        post = await self.get_post_fields(pid, [field])
        return post.get(field) if post else None

    async def purge(self, pids: Sequence[int | str], cid: int) -> None:
        """Delete post records together with their per-post sets and index entries."""
        if not pids:
            return
        posts = await self.get_posts_fields(pids, ["pid", "uid"])
        keys: list[str] = []
        for pid in pids:
            keys.extend(
                [
                    f"post:{pid}",
                    f"pid:{pid}:replies",
                    f"pid:{pid}:backlinks",
                    f"pid:{pid}:upvote",
                    f"pid:{pid}:downvote",
                ]
            )
        await self.store.sorted_set_remove("posts:pid", pids)
        await self.store.sorted_set_remove("posts:votes", pids)
        await self.store.sorted_set_remove(f"cid:{cid}:pids", pids)
        for post in posts:
            if post is None:
                continue
            await self.store.sorted_sets_remove(
                [
                    f"uid:{post['uid']}:posts",
                    f"cid:{cid}:uid:{post['uid']}:pids",
                    f"cid:{cid}:uid:{post['uid']}:pids:votes",
                ],
                post["pid"],
            )
        await self.store.delete_all(keys)
        logger.debug("Purged %d posts from category %s", len(pids), cid)
