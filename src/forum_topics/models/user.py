# src/forum_topics/models/user.py
"""SQLAlchemy model for forum users and their roles."""

from __future__ import annotations

from sqlalchemy import Boolean, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from forum_topics.db.session import Base

ACCOUNT_TYPE_STUDENT = "student"
ACCOUNT_TYPE_INSTRUCTOR = "instructor"


class User(Base):
    """Registered forum user.

    Role flags are independent: an instructor is not a moderator, and an
    administrator need not be an instructor.
    """

    __tablename__ = "forum_user"

    uid: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    userslug: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    picture: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "student" or "instructor"
    account_type: Mapped[str] = mapped_column(Text, nullable=False, default=ACCOUNT_TYPE_STUDENT)
    is_administrator: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Global moderators moderate every category.
    is_global_moderator: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @property
    def is_instructor(self) -> bool:
        """Return True when the account type grants instructor capabilities."""
        return self.account_type == ACCOUNT_TYPE_INSTRUCTOR
