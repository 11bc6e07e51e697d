"""Topic-related Pydantic schemas.

Result snapshots returned by the privilege resolver and the lifecycle
commands. Field aliases keep the privilege names used by category ACLs
(``topics:reply`` ...) when serialised.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


class TagObject(BaseModel):
    """A topic tag expanded for display and linking."""

    value: str
    escaped: str
    encoded: str
    css_class: str = Field(..., alias="class")

    model_config = ConfigDict(populate_by_name=True)


class TopicEvent(BaseModel):
    """An audit entry attached to a topic's event log."""

    id: int
    type: str
    uid: int | str
    timestamp: int
    timestamp_iso: str

    # Extra context such as ``from_cid`` or ``href`` is kept as-is.
    model_config = ConfigDict(extra="allow")


class UserSummary(BaseModel):
    """Minimal identity of the acting user."""

    username: str
    userslug: str


class TopicPrivilegeSet(BaseModel):
    """Every action a user may take on a topic, plus the flags they derive from."""

    topics_reply: bool = Field(..., alias="topics:reply")
    topics_read: bool = Field(..., alias="topics:read")
    topics_schedule: bool = Field(..., alias="topics:schedule")
    topics_tag: bool = Field(..., alias="topics:tag")
    topics_delete: bool = Field(..., alias="topics:delete")
    posts_edit: bool = Field(..., alias="posts:edit")
    posts_history: bool = Field(..., alias="posts:history")
    posts_delete: bool = Field(..., alias="posts:delete")
    posts_view_deleted: bool = Field(..., alias="posts:view_deleted")
    read: bool
    purge: bool
    view_thread_tools: bool
    editable: bool
    deletable: bool
    view_deleted: bool
    view_scheduled: bool
    is_admin_or_mod: bool
    is_instructor: bool
    is_owner: bool
    disabled: bool
    tid: int
    uid: int

    model_config = ConfigDict(populate_by_name=True)

    def allows(self, privilege: str) -> bool:
        """Look a privilege up by its ACL name, e.g. ``"topics:reply"``."""
        field_name = privilege.replace(":", "_")
        if field_name not in type(self).model_fields:
            raise KeyError(privilege)
        return bool(getattr(self, field_name))


class DeleteResult(BaseModel):
    """Outcome of a delete or restore transition."""

    tid: int
    cid: int
    uid: int
    is_delete: bool
    user: UserSummary | None
    events: list[TopicEvent]


class LockResult(BaseModel):
    """Outcome of a lock or unlock transition. ``uid`` is the topic owner."""

    tid: int
    uid: int
    cid: int
    locked: bool
    events: list[TopicEvent]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_locked(self) -> bool:
        """Legacy mirror of ``locked``."""
        return self.locked


class PinResult(BaseModel):
    """Outcome of a pin or unpin transition. ``uid`` is the topic owner."""

    tid: int
    uid: int
    cid: int
    pinned: bool
    pin_expiry: int | None = None
    events: list[TopicEvent]
    topic: dict[str, Any] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_pinned(self) -> bool:
        """Legacy mirror of ``pinned``."""
        return self.pinned


class PinExpiryResult(BaseModel):
    """Outcome of scheduling an automatic unpin."""

    tid: int
    cid: int
    uid: int
    pin_expiry: int


class PinnedOrderResult(BaseModel):
    """Pinned topics of a category in stored (ascending) order after a reorder."""

    cid: int
    tids: list[int]
    moved: bool


class PurgeResult(BaseModel):
    """Outcome of a purge; the topic no longer exists afterwards."""

    tid: int
    cid: int
    uid: int


class MoveResult(BaseModel):
    """Outcome of moving a topic between categories."""

    tid: int
    uid: int
    from_cid: int
    to_cid: int
    events: list[TopicEvent]


class PostReplies(BaseModel):
    """Preview of who replied to a post."""

    has_more: bool = False
    users: list[dict[str, Any]] = Field(default_factory=list)
    count: int = 0
    timestamp_iso: str | None = None


class PinExpiryRequest(BaseModel):
    """Request body for scheduling a pin expiry."""

    expiry: int = Field(..., description="Epoch milliseconds at which the pin lapses")


class PinnedOrderRequest(BaseModel):
    """Request body for moving a pinned topic to a rank counted from the top."""

    tid: int
    order: int = Field(..., ge=0)


class MoveRequest(BaseModel):
    """Request body for moving a topic."""

    cid: int
