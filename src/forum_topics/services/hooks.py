"""Filter and action hooks that let plugins observe or reshape topic operations.

Filter hooks receive a payload, may return a replacement and are chained in
registration order; their errors propagate to the caller. Action hooks are
notifications fired after a transition has been persisted; a failing listener
is logged and never undoes the transition.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

FilterListener = Callable[[Any], Awaitable[Any]]
ActionListener = Callable[[dict[str, Any]], Awaitable[None]]


class HookRegistry:
    """Registry of async filter and action listeners keyed by hook name."""

    def __init__(self) -> None:
        self._filters: dict[str, list[FilterListener]] = defaultdict(list)
        self._actions: dict[str, list[ActionListener]] = defaultdict(list)

    def add_filter(self, hook: str, listener: FilterListener) -> None:
        """Register a listener for a ``filter:*`` hook."""
        self._filters[hook].append(listener)

    def add_action(self, hook: str, listener: ActionListener) -> None:
        """Register a listener for an ``action:*`` hook."""
        self._actions[hook].append(listener)

    def has_listeners(self, hook: str) -> bool:
        return bool(self._filters.get(hook) or self._actions.get(hook))

    async def fire_filter(self, hook: str, payload: Any) -> Any:
        """Pass ``payload`` through every listener of ``hook``.

        A listener returning ``None`` leaves the payload unchanged.

        Args:
            hook: Hook name, e.g. ``filter:topic.delete``.
            payload: Value handed to the first listener.

        Returns:
            The payload after the last listener ran.
        """
        for listener in self._filters.get(hook, []):
            result = await listener(payload)
            if result is not None:
                payload = result
        return payload

    async def fire_action(self, hook: str, payload: dict[str, Any]) -> None:
        """Notify every listener of ``hook``; listener failures are logged only."""
        for listener in self._actions.get(hook, []):
            try:
                await listener(payload)
            except Exception:
                logger.error("Action hook %s listener %r failed", hook, listener, exc_info=True)
