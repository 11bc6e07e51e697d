# src/forum_topics/services/__init__.py
"""Topic lifecycle and privilege services.

``build_topic_services`` wires every service for one database session and
keyed store; request handlers and the pin-expiry sweeper both go through it.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from forum_topics.db.store import KeyValueStore

from .categories import CategoryService
from .events import SystemEventLog, TopicEventLog
from .hooks import HookRegistry
from .posts import PostService
from .topic_actions import Notifier, TopicActions
from .topic_data import TopicFields
from .topic_posts import TopicPosts
from .topic_privileges import TopicPrivileges, can_view_deleted_scheduled
from .topic_tools import TopicTools
from .users import UserService


@dataclass
class TopicServices:
    """Every topic service bound to one session and store."""

    hooks: HookRegistry
    users: UserService
    categories: CategoryService
    posts: PostService
    events: TopicEventLog
    system_events: SystemEventLog
    fields: TopicFields
    topic_posts: TopicPosts
    privileges: TopicPrivileges
    tools: TopicTools
    actions: TopicActions


def build_topic_services(
    db: Session,
    store: KeyValueStore,
    hooks: HookRegistry | None = None,
    notifier: Notifier | None = None,
) -> TopicServices:
    """Wire the topic services together.

    Args:
        db: Session used by the role and ACL oracles.
        store: Keyed store holding topic records and indices.
        hooks: Hook registry; a fresh empty one when omitted.
        notifier: Receives ``(event, payload, uids)`` from bulk actions.

    Returns:
        The wired ``TopicServices`` container.
    """
    hooks = hooks or HookRegistry()
    users = UserService(db)
    posts = PostService(store)
    categories = CategoryService(db, store, users, posts)
    events = TopicEventLog(store)
    system_events = SystemEventLog(store)
    fields = TopicFields(store, hooks, categories)
    topic_posts = TopicPosts(store, hooks, fields, posts, users, events)
    privileges = TopicPrivileges(fields, categories, users, hooks)
    tools = TopicTools(
        store,
        hooks,
        fields,
        topic_posts,
        privileges,
        categories,
        users,
        posts,
        events,
        system_events,
    )
    actions = TopicActions(store, fields, tools, categories, system_events, notifier)
    return TopicServices(
        hooks=hooks,
        users=users,
        categories=categories,
        posts=posts,
        events=events,
        system_events=system_events,
        fields=fields,
        topic_posts=topic_posts,
        privileges=privileges,
        tools=tools,
        actions=actions,
    )


__all__ = [
    "CategoryService",
    "HookRegistry",
    "PostService",
    "SystemEventLog",
    "TopicActions",
    "TopicEventLog",
    "TopicFields",
    "TopicPosts",
    "TopicPrivileges",
    "TopicServices",
    "TopicTools",
    "UserService",
    "build_topic_services",
    "can_view_deleted_scheduled",
]
