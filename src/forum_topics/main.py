# src/forum_topics/main.py
"""Main entry point for the forum topics service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from forum_topics.api.v1 import topics_router
from forum_topics.api.v1.dependencies import hook_registry
from forum_topics.core.errors import (
    PrivilegeError,
    ReplyThresholdError,
    TopicError,
    TopicNotFoundError,
)
from forum_topics.core.settings import settings
from forum_topics.db.store import close_store
from forum_topics.services.pin_expiry import PinExpirySweeper

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Topic lifecycle and privilege API for discussion forums",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Include API routers
app.include_router(topics_router, prefix="/api/v1")


def _status_for(error: TopicError) -> int:
    if isinstance(error, TopicNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, (PrivilegeError, ReplyThresholdError)):
        return status.HTTP_403_FORBIDDEN
    if error.code in ("topic-already-deleted", "topic-already-restored"):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(TopicError)
async def topic_error_handler(request: Request, exc: TopicError) -> JSONResponse:
    """Return domain errors as ``{"code": ..., "params": [...]}``."""
    return JSONResponse(status_code=_status_for(exc), content=exc.to_dict())


@app.on_event("startup")
async def on_startup() -> None:
    if settings.pin_expiry_sweep_enabled:
        sweeper = PinExpirySweeper(hooks=hook_registry)
        await sweeper.start()
        app.state.pin_expiry_sweeper = sweeper
        logger.info(
            "Pin expiry sweep running every %ss", settings.pin_expiry_sweep_interval_seconds
        )
    else:
        app.state.pin_expiry_sweeper = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    sweeper: PinExpirySweeper | None = getattr(app.state, "pin_expiry_sweeper", None)
    if sweeper:
        await sweeper.stop()
    await close_store()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("forum_topics.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
