# src/forum_topics/models/__init__.py
"""SQLAlchemy models backing the user-role and category ACL oracles."""

from .category import Category, CategoryModerator, CategoryPrivilege
from .user import ACCOUNT_TYPE_INSTRUCTOR, ACCOUNT_TYPE_STUDENT, User

__all__ = [
    "Category", "CategoryModerator", "CategoryPrivilege",
    "User", "ACCOUNT_TYPE_INSTRUCTOR", "ACCOUNT_TYPE_STUDENT",
]
