"""Exception hierarchy for topic lifecycle operations."""

from __future__ import annotations

from typing import Any


class TopicProviderError(Exception):
    """Base class for all topic provider errors."""


class ValidationError(TopicProviderError, ValueError):
    """Raised when a desired state is invalid. Never reaches the remote side."""


class ReplacementRequiredError(ValidationError):
    """Raised when an in-place update is asked to change a replace-only field."""

    def __init__(self, topic: str, fields: list[str]) -> None:
        self.topic = topic
        self.fields = fields
        super().__init__(
            f"topic {topic!r} cannot be updated in place, "
            f"changed fields force replacement: {', '.join(fields)}"
        )


class RemoteOperationError(TopicProviderError):
    """Raised when the remote operator returns a definitive failure."""

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        status_code: int | None = None,
        payload: Any = None,
    ) -> None:
        self.kind = kind
        self.status_code = status_code
        self.payload = payload
        detail = f"{message} (operation={kind}, status={status_code})"
        if payload is not None:
            detail += f": {payload}"
        super().__init__(detail)


class NotFoundError(RemoteOperationError):
    """The remote operator reports the topic as absent."""


class WaitTimeoutError(TopicProviderError, TimeoutError):
    """Raised when a poll loop reaches its deadline without settling."""

    def __init__(
        self,
        description: str,
        *,
        timeout: float,
        attempts: int,
        last_state: str | None = None,
        last_payload: Any = None,
    ) -> None:
        self.timeout = timeout
        self.attempts = attempts
        self.last_state = last_state
        self.last_payload = last_payload
        super().__init__(
            f"timed out after {timeout}s waiting for {description} "
            f"({attempts} poll(s), last state={last_state!r}, "
            f"last payload={last_payload!r})"
        )
