"""Topic lifecycle endpoints.

Handlers are thin: they authenticate the caller and delegate to the topic
services. ``TopicError`` raised by a service is turned into a JSON error by
the application-level handler.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from forum_topics.api.v1.dependencies import CurrentUidDep, TopicServicesDep
from forum_topics.core.errors import PrivilegeError, TopicNotFoundError
from forum_topics.schemas.topic import (
    DeleteResult,
    LockResult,
    MoveRequest,
    MoveResult,
    PinExpiryRequest,
    PinExpiryResult,
    PinnedOrderRequest,
    PinnedOrderResult,
    PinResult,
    PurgeResult,
    TopicPrivilegeSet,
)

router = APIRouter(prefix="/topics", tags=["topics"])


@router.put("/pinned/order", response_model=PinnedOrderResult)
async def order_pinned_topic(
    payload: PinnedOrderRequest,
    uid: CurrentUidDep,
    services: TopicServicesDep,
) -> PinnedOrderResult:
    """Move a pinned topic to a rank counted from the top of its category."""
    return await services.tools.order_pinned_topics(uid, payload.tid, payload.order)


@router.get("/{tid}/privileges", response_model=TopicPrivilegeSet)
async def get_topic_privileges(
    tid: int,
    uid: CurrentUidDep,
    services: TopicServicesDep,
) -> TopicPrivilegeSet:
    """Return every action the caller may take on the topic."""
    return await services.privileges.get(tid, uid)


@router.delete("/{tid}/state", response_model=DeleteResult)
async def delete_topic(tid: int, uid: CurrentUidDep, services: TopicServicesDep) -> DeleteResult:
    """Soft-delete a topic."""
    return await services.tools.delete(tid, uid)


@router.put("/{tid}/state", response_model=DeleteResult)
async def restore_topic(tid: int, uid: CurrentUidDep, services: TopicServicesDep) -> DeleteResult:
    """Restore a soft-deleted topic."""
    return await services.tools.restore(tid, uid)


@router.delete("/{tid}", response_model=PurgeResult)
async def purge_topic(
    tid: int, request: Request, uid: CurrentUidDep, services: TopicServicesDep
) -> PurgeResult:
    """Permanently remove a topic and its posts."""
    ip = request.client.host if request.client else None
    return await services.tools.purge(tid, uid, ip=ip)


@router.put("/{tid}/lock", response_model=LockResult)
async def lock_topic(tid: int, uid: CurrentUidDep, services: TopicServicesDep) -> LockResult:
    return await services.tools.lock(tid, uid)


@router.delete("/{tid}/lock", response_model=LockResult)
async def unlock_topic(tid: int, uid: CurrentUidDep, services: TopicServicesDep) -> LockResult:
    return await services.tools.unlock(tid, uid)


@router.put("/{tid}/pin", response_model=PinResult)
async def pin_topic(tid: int, uid: CurrentUidDep, services: TopicServicesDep) -> PinResult:
    return await services.tools.pin(tid, uid)


@router.delete("/{tid}/pin", response_model=PinResult)
async def unpin_topic(tid: int, uid: CurrentUidDep, services: TopicServicesDep) -> PinResult:
    return await services.tools.unpin(tid, uid)


@router.put("/{tid}/pin/expiry", response_model=PinExpiryResult)
async def set_pin_expiry(
    tid: int,
    payload: PinExpiryRequest,
    uid: CurrentUidDep,
    services: TopicServicesDep,
) -> PinExpiryResult:
    """Schedule an automatic unpin for a pinned topic."""
    return await services.tools.set_pin_expiry(tid, payload.expiry, uid)


@router.put("/{tid}/move", response_model=MoveResult)
async def move_topic(
    tid: int,
    payload: MoveRequest,
    uid: CurrentUidDep,
    services: TopicServicesDep,
) -> MoveResult:
    """Move a topic to another category.

    Only administrators and moderators of the topic's current category may
    move it.
    """
    if not await services.fields.exists(tid):
        raise TopicNotFoundError()
    if not await services.privileges.is_admin_or_mod(tid, uid):
        raise PrivilegeError()
    return await services.tools.move(tid, payload.cid, uid)
