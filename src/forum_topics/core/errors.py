"""Domain errors raised by the topic engine.

Every error carries a stable machine-readable ``code``; localisation and
display belong to the calling layer.
"""

from __future__ import annotations

from typing import Any


class TopicError(Exception):
    """Base class for rejected topic operations."""

    code: str = "topic-error"

    def __init__(self, code: str | None = None, *params: Any) -> None:
        self.code = code or self.code
        self.params = params
        super().__init__(self.code, *params)

    def __str__(self) -> str:
        if not self.params:
            return self.code
        return f"{self.code}, {', '.join(str(p) for p in self.params)}"

    def to_dict(self) -> dict[str, Any]:
        """Return the error as a serialisable payload."""
        return {"code": self.code, "params": list(self.params)}


class TopicNotFoundError(TopicError):
    """Raised when the target topic does not exist."""

    code = "no-topic"


class PrivilegeError(TopicError):
    """Raised when the actor is not allowed to perform the action."""

    code = "no-privileges"


class TopicStateError(TopicError):
    """Raised when the transition is invalid for the topic's current state."""

    code = "invalid-data"


class ReplyThresholdError(TopicError):
    """Raised when the configured reply threshold blocks a topic deletion."""

    code = "cant-delete-topic-has-replies"

    @classmethod
    def for_threshold(cls, threshold: int) -> ReplyThresholdError:
        """Build the error for the configured reply threshold."""
        if threshold > 1:
            return cls("cant-delete-topic-has-replies", threshold)
        return cls("cant-delete-topic-has-reply")
