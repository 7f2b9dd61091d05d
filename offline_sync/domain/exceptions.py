"""Sync engine exceptions.

Storage and forced-sync errors propagate to callers. Per-action failures are
recorded on the queued action and aggregated into one error event per drain.
"""

from __future__ import annotations

from typing import Any


class SyncEngineError(Exception):
    """Base exception for all sync engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StorageUnavailableError(SyncEngineError):
    """Raised when the local persistent store cannot be opened or used."""


class OfflineError(SyncEngineError):
    """Raised when a forced sync is requested while disconnected."""

    def __init__(self, message: str = "Cannot sync while offline") -> None:
        super().__init__(message)


class InvalidActionError(SyncEngineError):
    """Raised when an action cannot be enqueued as given."""


class ActionNotFoundError(SyncEngineError):
    """Raised when a queued or dead-lettered action does not exist."""

    def __init__(self, action_id: str) -> None:
        super().__init__(f"Action {action_id} not found", {"action_id": action_id})
        self.action_id = action_id


class InvalidStateTransitionError(SyncEngineError):
    """Raised when an action is moved into a state it cannot enter."""


class ActionApplyError(SyncEngineError):
    """Raised when a single queued action fails against the remote service."""

    def __init__(
        self,
        message: str,
        *,
        action_id: str,
        retryable: bool = True,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, {"action_id": action_id, **(details or {})})
        self.action_id = action_id
        self.retryable = retryable


class MaxRetriesExceededError(SyncEngineError):
    """Describes an action dropped after exhausting its retry budget."""

    def __init__(self, action_id: str, retry_count: int, last_error: str | None) -> None:
        super().__init__(
            f"Action {action_id} dropped after {retry_count} failed attempts",
            {"action_id": action_id, "retry_count": retry_count, "last_error": last_error},
        )
        self.action_id = action_id
        self.retry_count = retry_count
        self.last_error = last_error


class ReconnectExhaustedError(SyncEngineError):
    """Describes a connection monitor pinned to error after its last reconnect attempt."""

    def __init__(self, attempts: int) -> None:
        super().__init__(
            f"Reconnect gave up after {attempts} attempts",
            {"attempts": attempts},
        )
        self.attempts = attempts
