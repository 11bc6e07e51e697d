"""User-role oracle backed by the relational database."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from forum_topics.models import CategoryModerator, User

# Columns callers may request through ``get_user_fields``.
USER_FIELDS = ("uid", "username", "userslug", "picture", "account_type")


class UserService:
    """Answers role questions about users: admin, moderator, instructor."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _get(self, uid: int) -> User | None:
        if uid <= 0:
            return None
        return self.db.get(User, uid)

    async def exists(self, uid: int) -> bool:
        return self._get(uid) is not None

    async def is_administrator(self, uid: int) -> bool:
        user = self._get(uid)
        return bool(user and user.is_administrator)

    async def are_administrators(self, uids: Sequence[int]) -> list[bool]:
        """Batch form of ``is_administrator`` preserving input order."""
        wanted = [uid for uid in uids if uid > 0]
        admins: set[int] = set()
        if wanted:
            admins = set(
                self.db.scalars(
                    select(User.uid).where(User.uid.in_(wanted), User.is_administrator.is_(True))
                )
            )
        return [uid in admins for uid in uids]

    async def is_global_moderator(self, uid: int) -> bool:
        user = self._get(uid)
        return bool(user and user.is_global_moderator)

    async def is_moderator(self, uid: int, cid: int) -> bool:
        """Return True when ``uid`` moderates ``cid``, directly or globally."""
        user = self._get(uid)
        if user is None:
            return False
        if user.is_global_moderator:
            return True
        if cid is None:
            return False
        return self.db.get(CategoryModerator, (cid, uid)) is not None

    async def is_instructor(self, uid: int) -> bool:
        user = self._get(uid)
        return bool(user and user.is_instructor)

    async def get_user_fields(self, uid: int, fields: Sequence[str]) -> dict[str, Any] | None:
        """Return the requested columns of one user, or None if unknown."""
        user = self._get(uid)
        if user is None:
            return None
        return {field: getattr(user, field) for field in fields if field in USER_FIELDS}

    async def get_users_fields(
        self, uids: Sequence[int], fields: Sequence[str]
    ) -> list[dict[str, Any] | None]:
        """Batch form of ``get_user_fields`` preserving input order."""
        wanted = {uid for uid in uids if uid > 0}
        users: dict[int, User] = {}
        if wanted:
            users = {u.uid: u for u in self.db.scalars(select(User).where(User.uid.in_(wanted)))}
        results: list[dict[str, Any] | None] = []
        for uid in uids:
            user = users.get(uid)
            if user is None:
                results.append(None)
            else:
                results.append({f: getattr(user, f) for f in fields if f in USER_FIELDS})
        return results
