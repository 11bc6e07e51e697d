"""Background worker that unpins topics whose pin expiry has passed."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from forum_topics.core.errors import TopicError
from forum_topics.core.settings import settings
from forum_topics.db.session import SessionLocal
from forum_topics.db.store import KeyValueStore, get_store
from forum_topics.services import build_topic_services
from forum_topics.services.hooks import HookRegistry

logger = logging.getLogger(__name__)


class PinExpirySweeper:
    """Periodically runs ``check_pin_expiry`` over every category's pinned topics."""

    def __init__(
        self,
        store: KeyValueStore | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
        hooks: HookRegistry | None = None,
    ) -> None:
        """Initialize the sweeper.

        Args:
            store: Keyed store to sweep. Defaults to the process-wide store.
            session_factory: Opens a database session for each sweep.
            hooks: Hook registry shared with request handling, if any.
        """
        self.store = store or get_store()
        self.session_factory = session_factory
        self.hooks = hooks
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep loop and wait for it to finish."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def sweep_once(self) -> int:
        """Unpin every expired topic once.

        Returns:
            Number of topics unpinned.
        """
        db = self.session_factory()
        try:
            services = build_topic_services(db, self.store, self.hooks)
            unpinned = 0
            for cid in await services.categories.get_all_cids():
                tids = await self.store.get_sorted_set_range(f"cid:{cid}:tids:pinned", 0, -1)
                if not tids:
                    continue
                remaining = await services.tools.check_pin_expiry(tids)
                unpinned += len(tids) - len(remaining)
        finally:
            db.close()
        if unpinned:
            logger.info("Pin expiry sweep unpinned %d topics", unpinned)
        return unpinned

    async def _run(self) -> None:
        interval = max(0.1, float(settings.pin_expiry_sweep_interval_seconds))

        while not self._stopping.is_set():
            try:
                await self.sweep_once()
            except TopicError as e:
                logger.warning("PinExpirySweeper encountered TopicError: %s", e)
            except (RedisError, OSError, ConnectionError, TimeoutError) as e:
                logger.warning("PinExpirySweeper encountered store error: %s", e)
            except SQLAlchemyError as e:
                logger.error("PinExpirySweeper encountered database error: %s", e, exc_info=True)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except TimeoutError:
                continue
