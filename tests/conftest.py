# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import AsyncIterator, Callable, Generator, Iterator, Sequence
from itertools import count
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

os.environ.setdefault("STORE_BACKEND", "memory")

from forum_topics.api.v1.dependencies import get_hooks, get_store_dep
from forum_topics.core.security import create_access_token
from forum_topics.db.session import Base
from forum_topics.db.session import get_db as app_get_session
from forum_topics.db.store import MemoryStore
from forum_topics.db.time import now_ms
from forum_topics.main import app as fastapi_app
from forum_topics.models import (
    ACCOUNT_TYPE_INSTRUCTOR,
    Category,
    CategoryModerator,
    CategoryPrivilege,
    User,
)
from forum_topics.services import TopicServices, build_topic_services
from forum_topics.services.hooks import HookRegistry

TEST_DB_URL = "sqlite://"

# What every registered user may do in a freshly created category.
REGISTERED_PRIVILEGES = (
    "read",
    "topics:read",
    "topics:reply",
    "topics:tag",
    "topics:delete",
    "posts:edit",
    "posts:history",
    "posts:delete",
)

_USER_COUNTER = count(1)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, autoflush=False, expire_on_commit=False)
    try:
        yield session
    finally:
        session.close()
        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def hooks() -> HookRegistry:
    return HookRegistry()


@pytest.fixture()
def services(db_session: Session, store: MemoryStore, hooks: HookRegistry) -> TopicServices:
    return build_topic_services(db_session, store, hooks)


# --- users -------------------------------------------------------------------
@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    """Return a factory persisting users with the given roles."""

    def _make_user(
        username: str | None = None,
        *,
        account_type: str = "student",
        is_administrator: bool = False,
        is_global_moderator: bool = False,
    ) -> User:
        name = username or f"user{next(_USER_COUNTER)}"
        user = User(
            username=name,
            userslug=name.lower(),
            account_type=account_type,
            is_administrator=is_administrator,
            is_global_moderator=is_global_moderator,
        )
        db_session.add(user)
        db_session.flush()
        return user

    return _make_user


@pytest.fixture()
def owner(make_user: Callable[..., User]) -> User:
    """Student who creates the topics under test."""
    return make_user("owner")


@pytest.fixture()
def other(make_user: Callable[..., User]) -> User:
    """A second, unprivileged student."""
    return make_user("other")


@pytest.fixture()
def instructor(make_user: Callable[..., User]) -> User:
    return make_user("instructor", account_type=ACCOUNT_TYPE_INSTRUCTOR)


@pytest.fixture()
def admin(make_user: Callable[..., User]) -> User:
    return make_user("admin", is_administrator=True)


# --- categories --------------------------------------------------------------
@pytest.fixture()
def make_category(db_session: Session) -> Callable[..., Category]:
    """Return a factory persisting categories with the default registered-user grants."""

    def _make_category(
        name: str = "General",
        *,
        disabled: bool = False,
        privileges: Sequence[str] = REGISTERED_PRIVILEGES,
    ) -> Category:
        category = Category(name=name, disabled=disabled)
        db_session.add(category)
        db_session.flush()
        for privilege in privileges:
            db_session.add(CategoryPrivilege(cid=category.cid, privilege=privilege, uid=None))
        db_session.flush()
        return category

    return _make_category


@pytest.fixture()
def grant(db_session: Session) -> Callable[[int, str, int | None], None]:
    """Return a helper granting one privilege in a category."""

    def _grant(cid: int, privilege: str, uid: int | None = None) -> None:
        db_session.add(CategoryPrivilege(cid=cid, privilege=privilege, uid=uid))
        db_session.flush()

    return _grant


@pytest.fixture()
def category(make_category: Callable[..., Category]) -> Category:
    return make_category("General")


@pytest.fixture()
def other_category(make_category: Callable[..., Category]) -> Category:
    return make_category("Off Topic")


@pytest.fixture()
def moderator(
    db_session: Session,
    make_user: Callable[..., User],
    category: Category,
) -> User:
    """Moderator of ``category`` only."""
    user = make_user("moderator")
    db_session.add(CategoryModerator(cid=category.cid, uid=user.uid))
    db_session.flush()
    return user


# --- topics and posts --------------------------------------------------------
class ForumFactory:
    """Seeds topics and posts into the keyed store the way the post layer writes them."""

    def __init__(self, services: TopicServices, store: MemoryStore) -> None:
        self.services = services
        self.store = store

    async def create_topic(
        self,
        cid: int,
        uid: int,
        title: str = "Test topic",
        *,
        timestamp: int | None = None,
        tags: Sequence[str] = (),
        content: str = "Main post",
    ) -> int:
        tid = await self.store.incr_object_field_by("global", "nextTid", 1)
        ts = timestamp if timestamp is not None else now_ms() - 60_000
        data: dict[str, Any] = {
            "tid": tid,
            "cid": cid,
            "uid": uid,
            "title": title,
            "slug": f"{tid}/test-topic",
            "timestamp": ts,
            "lastposttime": 0,
            "postcount": 0,
            "viewcount": 0,
            "postercount": 0,
            "deleted": 0,
            "locked": 0,
            "pinned": 0,
            "upvotes": 0,
            "downvotes": 0,
        }
        if tags:
            data["tags"] = ",".join(tags)
        await self.store.set_object(f"topic:{tid}", data)
        await self.store.sorted_set_add_bulk(
            [
                ("topics:tid", ts, tid),
                (f"cid:{cid}:tids", ts, tid),
                (f"cid:{cid}:tids:posts", 0, tid),
                (f"cid:{cid}:tids:votes", 0, tid),
                (f"cid:{cid}:tids:views", 0, tid),
                (f"cid:{cid}:uid:{uid}:tids", ts, tid),
                (f"uid:{uid}:topics", ts, tid),
                *((f"tag:{tag}:topics", ts, tid) for tag in tags),
                *((f"cid:{cid}:tag:{tag}:topics", ts, tid) for tag in tags),
            ]
        )
        if ts > now_ms():
            await self.store.sorted_set_add("topics:scheduled", ts, tid)
        await self.store.incr_object_field_by(f"category:{cid}", "topic_count", 1)
        await self.store.incr_object_field_by("global", "topicCount", 1)
        await self.services.categories.update_category_tags_count([cid], list(tags))
        await self.create_post(tid, uid, content, timestamp=ts)
        return tid

    async def create_post(
        self,
        tid: int,
        uid: int,
        content: str = "Reply",
        *,
        timestamp: int | None = None,
    ) -> dict[str, Any]:
        pid = await self.store.incr_object_field_by("global", "nextPid", 1)
        cid = int(await self.store.get_object_field(f"topic:{tid}", "cid") or 0)
        ts = timestamp if timestamp is not None else now_ms()
        post = {
            "pid": pid,
            "tid": tid,
            "uid": uid,
            "content": content,
            "timestamp": ts,
            "deleted": 0,
            "upvotes": 0,
            "downvotes": 0,
        }
        await self.store.set_object(f"post:{pid}", post)
        await self.store.sorted_set_add_bulk(
            [
                ("posts:pid", ts, pid),
                (f"cid:{cid}:pids", ts, pid),
                (f"uid:{uid}:posts", ts, pid),
                (f"cid:{cid}:uid:{uid}:pids", ts, pid),
            ]
        )
        await self.store.incr_object_field_by(f"category:{cid}", "post_count", 1)
        await self.store.incr_object_field_by("global", "postCount", 1)
        await self.services.topic_posts.on_new_post_made(post)
        return post


@pytest.fixture()
def forum(services: TopicServices, store: MemoryStore) -> ForumFactory:
    return ForumFactory(services, store)


@pytest_asyncio.fixture()
async def topic(forum: ForumFactory, category: Category, owner: User) -> int:
    """A plain topic by ``owner`` in ``category`` with only its main post."""
    return await forum.create_topic(category.cid, owner.uid)


# --- HTTP --------------------------------------------------------------------
@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI,
    db_session: Session,
    store: MemoryStore,
    hooks: HookRegistry,
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_store_dep] = lambda: store
    app.dependency_overrides[get_hooks] = lambda: hooks
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_store_dep, None)
        app.dependency_overrides.pop(get_hooks, None)


@pytest_asyncio.fixture()
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def auth_headers() -> Callable[[User], dict[str, str]]:
    """Return a helper building authorization headers for a user."""

    def _auth_headers(user: User) -> dict[str, str]:
        token = create_access_token(user.uid)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
