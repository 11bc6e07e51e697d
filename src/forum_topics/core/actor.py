"""Actors that may drive a topic transition."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True)
class UserActor:
    """A real user acting through a request handler."""

    uid: int

    @property
    def event_uid(self) -> int:
        return self.uid


@dataclass(frozen=True)
class SystemActor:
    """Internal scheduler acting without a user; bypasses privilege guards."""

    @property
    def event_uid(self) -> str:
        return "system"


Actor = UserActor | SystemActor

SYSTEM: Final[SystemActor] = SystemActor()
