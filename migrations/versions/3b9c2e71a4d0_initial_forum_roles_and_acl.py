"""initial forum roles and category acl

Revision ID: 3b9c2e71a4d0
Revises:
Create Date: 2026-10-17 09:12:44.512031

"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b9c2e71a4d0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, categories, moderators and privilege grants."""
    op.create_table(
        "forum_user",
        sa.Column("uid", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("username", sa.Text(), nullable=False),
        sa.Column("userslug", sa.Text(), nullable=False),
        sa.Column("picture", sa.Text(), nullable=True),
        sa.Column("account_type", sa.Text(), nullable=False),
        sa.Column("is_administrator", sa.Boolean(), nullable=False),
        sa.Column("is_global_moderator", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("uid"),
        sa.UniqueConstraint("username"),
        sa.UniqueConstraint("userslug"),
    )
    op.create_table(
        "category",
        sa.Column("cid", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("disabled", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("cid"),
    )
    op.create_table(
        "category_moderator",
        sa.Column("cid", sa.Integer(), nullable=False),
        sa.Column("uid", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["cid"], ["category.cid"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["uid"], ["forum_user.uid"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("cid", "uid"),
    )
    op.create_table(
        "category_privilege",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("cid", sa.Integer(), nullable=False),
        sa.Column("privilege", sa.Text(), nullable=False),
        sa.Column("uid", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["cid"], ["category.cid"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cid", "privilege", "uid", name="uq_category_privilege"),
    )
    op.create_index("ix_category_privilege_cid", "category_privilege", ["cid"])


def downgrade() -> None:
    """Drop the role and ACL tables."""
    op.drop_index("ix_category_privilege_cid", table_name="category_privilege")
    op.drop_table("category_privilege")
    op.drop_table("category_moderator")
    op.drop_table("category")
    op.drop_table("forum_user")
