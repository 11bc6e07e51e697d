# tests/test_topic_privileges.py
from collections.abc import Callable
from typing import Any

import pytest

from forum_topics.core.errors import ReplyThresholdError, TopicNotFoundError
from forum_topics.core.settings import settings
from forum_topics.db.time import now_ms
from forum_topics.models import Category, User
from forum_topics.services import TopicServices, can_view_deleted_scheduled
from forum_topics.services.hooks import HookRegistry


@pytest.mark.parametrize(
    "topic, privileges, view_deleted, view_scheduled, expected",
    [
        ({"tid": 1}, {}, False, False, True),
        ({}, {}, False, False, True),
        ({"deleted": 1}, {}, True, False, True),
        ({"deleted": 1}, {}, False, False, False),
        ({"deleted": 1}, {"view_deleted": True}, False, False, True),
        # A scheduled topic is judged by the schedule permission alone.
        ({"deleted": 1, "scheduled": True}, {}, False, True, True),
        ({"deleted": 1, "scheduled": True}, {}, True, False, False),
        ({"scheduled": True}, {"view_scheduled": True}, False, False, True),
    ],
)
def test_can_view_deleted_scheduled(
    topic: dict[str, Any],
    privileges: dict[str, Any],
    view_deleted: bool,
    view_scheduled: bool,
    expected: bool,
) -> None:
    assert can_view_deleted_scheduled(topic, privileges, view_deleted, view_scheduled) is expected


@pytest.mark.parametrize(
    "args",
    [
        ("not a topic",),
        (None,),
        ({"deleted": 1}, ["view_deleted"]),
        ({"deleted": 1}, {}, "yes", False),
        ({"deleted": 1}, {}, False, 1),
    ],
)
def test_can_view_deleted_scheduled_rejects_malformed_input(args: tuple[Any, ...]) -> None:
    assert can_view_deleted_scheduled(*args) is False


@pytest.mark.asyncio
async def test_owner_privileges(services: TopicServices, topic: int, owner: User) -> None:
    privileges = await services.privileges.get(topic, owner.uid)

    assert privileges.topics_reply is True
    assert privileges.topics_delete is True
    assert privileges.deletable is True
    assert privileges.view_thread_tools is True
    assert privileges.editable is False
    assert privileges.purge is False
    assert privileges.is_owner is True
    assert privileges.view_deleted is True
    assert privileges.view_scheduled is False
    assert privileges.allows("posts:edit") is True
    assert privileges.tid == topic
    assert privileges.uid == owner.uid


@pytest.mark.asyncio
async def test_other_student_privileges(services: TopicServices, topic: int, other: User) -> None:
    privileges = await services.privileges.get(topic, other.uid)

    assert privileges.topics_reply is True
    assert privileges.deletable is False
    assert privileges.view_thread_tools is False
    assert privileges.view_deleted is False
    assert privileges.is_owner is False


@pytest.mark.asyncio
async def test_guest_is_not_covered_by_registered_user_grants(
    services: TopicServices, topic: int
) -> None:
    privileges = await services.privileges.get(topic, 0)

    assert privileges.topics_read is False
    assert privileges.is_owner is False
    assert privileges.is_admin_or_mod is False


@pytest.mark.asyncio
async def test_locked_topic_only_moderators_may_reply(
    services: TopicServices, topic: int, owner: User, moderator: User
) -> None:
    await services.fields.set_topic_field(topic, "locked", 1)

    as_owner = await services.privileges.get(topic, owner.uid)
    as_moderator = await services.privileges.get(topic, moderator.uid)

    assert as_owner.topics_reply is False
    assert as_owner.posts_edit is False
    assert as_owner.posts_delete is False
    assert as_moderator.topics_reply is True
    assert as_moderator.posts_edit is True
    assert as_moderator.is_admin_or_mod is True
    assert as_moderator.editable is True


@pytest.mark.asyncio
async def test_deleted_topic_blocks_replies_for_owner(
    services: TopicServices, topic: int, owner: User
) -> None:
    await services.fields.set_topic_field(topic, "deleted", 1)

    privileges = await services.privileges.get(topic, owner.uid)

    assert privileges.topics_reply is False


@pytest.mark.asyncio
async def test_instructor_can_edit_but_is_not_a_moderator(
    services: TopicServices, topic: int, instructor: User
) -> None:
    privileges = await services.privileges.get(topic, instructor.uid)

    assert privileges.is_instructor is True
    assert privileges.editable is True
    assert privileges.view_thread_tools is True
    assert privileges.is_admin_or_mod is False
    assert privileges.deletable is False


@pytest.mark.asyncio
async def test_admin_needs_no_grants(
    services: TopicServices,
    forum,
    make_category: Callable[..., Category],
    owner: User,
    admin: User,
) -> None:
    locked_down = make_category("Staff", privileges=())
    tid = await forum.create_topic(locked_down.cid, owner.uid)

    privileges = await services.privileges.get(tid, admin.uid)

    assert privileges.model_dump(by_alias=True) | {"tid": 0, "uid": 0} == {
        "topics:reply": True,
        "topics:read": True,
        "topics:schedule": True,
        "topics:tag": True,
        "topics:delete": True,
        "posts:edit": True,
        "posts:history": True,
        "posts:delete": True,
        "posts:view_deleted": True,
        "read": True,
        "purge": True,
        "view_thread_tools": True,
        "editable": True,
        "deletable": True,
        "view_deleted": True,
        "view_scheduled": True,
        "is_admin_or_mod": True,
        "is_instructor": False,
        "is_owner": False,
        "disabled": False,
        "tid": 0,
        "uid": 0,
    }


@pytest.mark.asyncio
async def test_get_raises_for_missing_topic(services: TopicServices, owner: User) -> None:
    with pytest.raises(TopicNotFoundError):
        await services.privileges.get(999, owner.uid)


@pytest.mark.asyncio
async def test_get_filter_hook_can_revoke(
    services: TopicServices, hooks: HookRegistry, topic: int, owner: User
) -> None:
    async def read_only(payload: dict[str, Any]) -> dict[str, Any]:
        return {**payload, "topics:reply": False}

    hooks.add_filter("filter:privileges.topics.get", read_only)

    privileges = await services.privileges.get(topic, owner.uid)

    assert privileges.topics_reply is False
    assert privileges.topics_read is True


@pytest.mark.asyncio
async def test_can_checks_the_topic_category(
    services: TopicServices,
    forum,
    make_category: Callable[..., Category],
    topic: int,
    owner: User,
) -> None:
    archive = make_category("Archive", disabled=True)
    archived = await forum.create_topic(archive.cid, owner.uid)

    assert await services.privileges.can("topics:reply", topic, owner.uid) is True
    assert await services.privileges.can("topics:schedule", topic, owner.uid) is False
    assert await services.privileges.can("topics:reply", archived, owner.uid) is False
    assert await services.privileges.can("topics:reply", 999, owner.uid) is False


@pytest.mark.asyncio
async def test_filter_tids_respects_state_and_category(
    services: TopicServices,
    forum,
    make_category: Callable[..., Category],
    category: Category,
    owner: User,
    admin: User,
) -> None:
    archive = make_category("Archive", disabled=True)
    visible = await forum.create_topic(category.cid, owner.uid)
    deleted = await forum.create_topic(category.cid, owner.uid)
    await services.fields.set_topic_field(deleted, "deleted", 1)
    scheduled = await forum.create_topic(category.cid, owner.uid, timestamp=now_ms() + 3_600_000)
    archived = await forum.create_topic(archive.cid, owner.uid)
    tids = [archived, scheduled, deleted, visible, 999]

    assert await services.privileges.filter_tids("topics:read", tids, owner.uid) == [visible]
    assert await services.privileges.filter_tids("topics:read", tids, admin.uid) == [
        scheduled,
        deleted,
        visible,
    ]
    assert await services.privileges.filter_tids("topics:read", [], owner.uid) == []
    assert await services.privileges.filter_tids("topics:read", visible, owner.uid) == []


@pytest.mark.asyncio
async def test_filter_tids_hook_sees_the_result(
    services: TopicServices, hooks: HookRegistry, topic: int, owner: User, mocker
) -> None:
    listener = mocker.AsyncMock(return_value={"tids": []})
    hooks.add_filter("filter:privileges.topics.filter", listener)

    assert await services.privileges.filter_tids("topics:read", [topic], owner.uid) == []
    listener.assert_awaited_once_with({"privilege": "topics:read", "uid": owner.uid, "tids": [topic]})


@pytest.mark.asyncio
async def test_filter_uids(
    services: TopicServices,
    forum,
    grant: Callable[..., None],
    make_category: Callable[..., Category],
    category: Category,
    owner: User,
    other: User,
    instructor: User,
    admin: User,
) -> None:
    plain = await forum.create_topic(category.cid, owner.uid)
    deleted = await forum.create_topic(category.cid, owner.uid)
    await services.fields.set_topic_field(deleted, "deleted", 1)
    scheduled = await forum.create_topic(category.cid, owner.uid, timestamp=now_ms() + 3_600_000)
    grant(category.cid, "topics:schedule", instructor.uid)
    archive = make_category("Archive", disabled=True)
    archived = await forum.create_topic(archive.cid, owner.uid)
    filter_uids = services.privileges.filter_uids

    assert await filter_uids("topics:read", plain, [owner.uid, other.uid, owner.uid, 0]) == [
        owner.uid,
        other.uid,
    ]
    assert await filter_uids("topics:read", deleted, [owner.uid, admin.uid]) == [admin.uid]
    assert await filter_uids(
        "topics:read", scheduled, [owner.uid, instructor.uid, admin.uid]
    ) == [instructor.uid]
    assert await filter_uids("topics:read", archived, [owner.uid, admin.uid]) == []
    assert await filter_uids("topics:read", plain, []) == []


@pytest.mark.asyncio
async def test_can_delete_reply_threshold(
    services: TopicServices,
    forum,
    category: Category,
    owner: User,
    other: User,
    moderator: User,
    monkeypatch,
) -> None:
    tid = await forum.create_topic(category.cid, owner.uid)
    await forum.create_post(tid, other.uid)
    monkeypatch.setattr(settings, "prevent_topic_delete_after_replies", 1)

    with pytest.raises(ReplyThresholdError) as excinfo:
        await services.privileges.can_delete(tid, owner.uid)
    assert excinfo.value.code == "cant-delete-topic-has-reply"
    assert excinfo.value.params == ()

    assert await services.privileges.can_delete(tid, moderator.uid) is True

    await forum.create_post(tid, other.uid)
    monkeypatch.setattr(settings, "prevent_topic_delete_after_replies", 2)
    with pytest.raises(ReplyThresholdError) as excinfo:
        await services.privileges.can_delete(tid, owner.uid)
    assert excinfo.value.to_dict() == {"code": "cant-delete-topic-has-replies", "params": [2]}


@pytest.mark.asyncio
async def test_owner_cannot_undo_a_moderator_delete(
    services: TopicServices, topic: int, owner: User, other: User, moderator: User, admin: User
) -> None:
    assert await services.privileges.can_delete(topic, owner.uid) is True
    assert await services.privileges.can_delete(topic, other.uid) is False

    await services.tools.delete(topic, moderator.uid)

    assert await services.privileges.can_delete(topic, owner.uid) is False
    assert await services.privileges.can_delete(topic, moderator.uid) is True
    assert await services.privileges.can_delete(topic, admin.uid) is True


@pytest.mark.asyncio
async def test_can_delete_missing_topic(services: TopicServices, owner: User) -> None:
    with pytest.raises(TopicNotFoundError):
        await services.privileges.can_delete(999, owner.uid)


@pytest.mark.asyncio
async def test_can_purge_needs_an_explicit_grant(
    services: TopicServices,
    grant: Callable[..., None],
    category: Category,
    topic: int,
    owner: User,
    other: User,
    admin: User,
) -> None:
    grant(category.cid, "purge", None)
    assert await services.privileges.can_purge(topic, owner.uid) is False

    grant(category.cid, "purge", owner.uid)
    grant(category.cid, "purge", other.uid)
    assert await services.privileges.can_purge(topic, owner.uid) is True
    assert await services.privileges.can_purge(topic, other.uid) is False
    assert await services.privileges.can_purge(topic, admin.uid) is True
    assert await services.privileges.can_purge(999, admin.uid) is False


@pytest.mark.asyncio
async def test_role_helpers(
    services: TopicServices,
    topic: int,
    owner: User,
    other: User,
    instructor: User,
    moderator: User,
    make_user: Callable[..., User],
) -> None:
    global_moderator = make_user("global", is_global_moderator=True)

    assert await services.privileges.is_admin_or_mod(topic, moderator.uid) is True
    assert await services.privileges.is_admin_or_mod(topic, global_moderator.uid) is True
    assert await services.privileges.is_admin_or_mod(topic, instructor.uid) is False
    assert await services.privileges.is_admin_or_mod(topic, 0) is False
    assert await services.privileges.can_edit(topic, owner.uid) is True
    assert await services.privileges.can_edit(topic, other.uid) is False
    assert await services.privileges.is_owner_or_admin_or_mod(topic, moderator.uid) is True
