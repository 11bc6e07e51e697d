# src/forum_topics/models/category.py
"""SQLAlchemy models for categories, their moderators and privilege grants."""

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from forum_topics.db.session import Base


class Category(Base):
    """Category metadata consulted by privilege checks."""

    __tablename__ = "category"

    cid: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class CategoryModerator(Base):
    """Join table naming the moderators of a category."""

    __tablename__ = "category_moderator"

    cid: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("category.cid", ondelete="CASCADE"),
        primary_key=True,
    )
    uid: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("forum_user.uid", ondelete="CASCADE"),
        primary_key=True,
    )


class CategoryPrivilege(Base):
    """A single privilege granted within a category.

    ``uid`` NULL grants the privilege to every registered user (uid > 0);
    uid 0 addresses guests explicitly.
    """

    __tablename__ = "category_privilege"
    __table_args__ = (
        UniqueConstraint("cid", "privilege", "uid", name="uq_category_privilege"),
        Index("ix_category_privilege_cid", "cid"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cid: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("category.cid", ondelete="CASCADE"),
        nullable=False,
    )
    # e.g. "topics:reply", "posts:view_deleted", "purge"
    privilege: Mapped[str] = mapped_column(Text, nullable=False)
    uid: Mapped[int | None] = mapped_column(Integer, nullable=True)
