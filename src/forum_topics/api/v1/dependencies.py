"""Shared API dependencies for authentication and service wiring."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from forum_topics.core.security import decode_access_token
from forum_topics.db.session import get_db
from forum_topics.db.store import KeyValueStore, get_store
from forum_topics.services import TopicServices, build_topic_services
from forum_topics.services.hooks import HookRegistry

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Plugins register their listeners here at startup.
hook_registry = HookRegistry()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_store_dep() -> KeyValueStore:
    """Return the process-wide keyed store."""
    return get_store()


def get_hooks() -> HookRegistry:
    """Return the application hook registry."""
    return hook_registry


StoreDep = Annotated[KeyValueStore, Depends(get_store_dep)]
HooksDep = Annotated[HookRegistry, Depends(get_hooks)]


def get_current_uid(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> int:
    """Get the authenticated user id from the bearer token.

    Raises:
        HTTPException: If the token is invalid or expired.
    """
    try:
        return decode_access_token(credentials.credentials)
    except ValueError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err


def get_topic_services(db: SessionDep, store: StoreDep, hooks: HooksDep) -> TopicServices:
    """Wire the topic services for the current request."""
    return build_topic_services(db, store, hooks)


# Type aliases for the current user id and topic services
CurrentUidDep = Annotated[int, Depends(get_current_uid)]
TopicServicesDep = Annotated[TopicServices, Depends(get_topic_services)]
