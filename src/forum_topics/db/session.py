"""Relational session wiring for users, categories and category ACLs.

Topic state lives in the keyed store; this engine only backs the role and
ACL oracles.
"""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from forum_topics.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base for the role and ACL tables."""


# Models must be registered on Base.metadata before alembic autogenerate inspects it.
import forum_topics.models  # noqa: E402,F401


def _engine_options(url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"pool_pre_ping": True, "echo": settings.sql_debug}
    if url.startswith("sqlite"):
        # Request handlers run in FastAPI's threadpool.
        options["connect_args"] = {"check_same_thread": False}
    return options


engine = create_engine(
    settings.effective_database_url,
    **_engine_options(settings.effective_database_url),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a session scoped to one request; it is closed afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
