"""Offline sync domain models.

Plain dataclasses and enums with no storage or transport concerns. Records
round-trip through ``to_record``/``from_record`` as JSON-compatible dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from offline_sync.domain.exceptions import InvalidStateTransitionError

T = TypeVar("T")

LOCAL_ID_KEY = "_local_id"


class ActionKind(str, Enum):
    """Remote write performed by a queued action."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def requires_remote_id(self) -> bool:
        return self is not ActionKind.CREATE


class ActionState(str, Enum):
    """Lifecycle state of a queued action."""

    PENDING = "pending"
    IN_FLIGHT = "in-flight"
    FAILED = "failed"


@dataclass
class PendingAction:
    """A durable record of one intended remote write."""

    id: str
    kind: ActionKind
    target: str
    payload: dict[str, Any]
    enqueued_at: float
    state: ActionState = ActionState.PENDING
    retry_count: int = 0
    last_error: str | None = None

    @property
    def remote_id(self) -> Any | None:
        return self.payload.get("id")

    @property
    def local_id(self) -> str | None:
        value = self.payload.get(LOCAL_ID_KEY)
        return str(value) if value is not None else None

    def mark_in_flight(self) -> None:
        """Claim the action for a drain cycle.

        Raises:
            InvalidStateTransitionError: If another cycle already claimed it.
        """
        if self.state is ActionState.IN_FLIGHT:
            raise InvalidStateTransitionError(
                f"Action {self.id} is already in flight",
                {"action_id": self.id},
            )
        self.state = ActionState.IN_FLIGHT

    def record_failure(self, error: str) -> None:
        self.retry_count += 1
        self.last_error = error
        self.state = ActionState.FAILED

    def reset_to_pending(self) -> None:
        self.state = ActionState.PENDING

    def has_exhausted(self, max_retries: int) -> bool:
        return self.retry_count >= max_retries

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "target": self.target,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at,
            "state": self.state.value,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> PendingAction:
        return cls(
            id=str(record["id"]),
            kind=ActionKind(record["kind"]),
            target=str(record["target"]),
            payload=dict(record.get("payload") or {}),
            enqueued_at=float(record["enqueued_at"]),
            state=ActionState(record.get("state", ActionState.PENDING.value)),
            retry_count=int(record.get("retry_count", 0)),
            last_error=record.get("last_error"),
        )


@dataclass
class DeadLetter:
    """An action removed from the active queue after exhausting its retries."""

    action: PendingAction
    dropped_at: float

    def to_record(self) -> dict[str, Any]:
        return {"action": self.action.to_record(), "dropped_at": self.dropped_at}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> DeadLetter:
        return cls(
            action=PendingAction.from_record(record["action"]),
            dropped_at=float(record["dropped_at"]),
        )


@dataclass
class CachedEntity(Generic[T]):
    """TTL-bounded cache entry; ``expires_at = cached_at + ttl``."""

    data: T
    cached_at: float
    expires_at: float

    @classmethod
    def create(cls, data: T, *, now: float, ttl_seconds: float) -> CachedEntity[T]:
        return cls(data=data, cached_at=now, expires_at=now + ttl_seconds)

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at

    def to_record(self) -> dict[str, Any]:
        return {"data": self.data, "cached_at": self.cached_at, "expires_at": self.expires_at}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> CachedEntity[Any]:
        return cls(
            data=record["data"],
            cached_at=float(record["cached_at"]),
            expires_at=float(record["expires_at"]),
        )


class ConnectionStatus(str, Enum):
    """Fused connection status reported to observers."""

    CONNECTED = "connected"
    CONNECTING = "connecting"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ChannelSignal(str, Enum):
    """Outcome reported by the realtime channel transport for a subscription."""

    SUBSCRIBED = "subscribed"
    CHANNEL_ERROR = "channel-error"
    TIMED_OUT = "timed-out"


class SyncStatus(str, Enum):
    """Status of the sync orchestrator."""

    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


def derive_connection_status(
    network_online: bool,
    channel_status: ConnectionStatus,
    authenticated: bool,
) -> ConnectionStatus:
    """Fuse network reachability, channel health and session presence.

    Without network or without a session nothing can reach the remote
    service, so the channel's own view only matters when both are present.
    """
    if not network_online or not authenticated:
        return ConnectionStatus.DISCONNECTED
    return channel_status


@dataclass(frozen=True)
class FailureOutcome:
    """Result of recording a failed attempt on a queued action."""

    action: PendingAction
    dropped: bool
    error: Exception | None = None


@dataclass(frozen=True)
class DrainReport:
    """Summary of one completed drain cycle."""

    cycle_id: str
    total: int
    succeeded: int
    failed: int
    dropped: int
    started_at: float
    finished_at: float
    dropped_action_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.failed == 0


@dataclass(frozen=True)
class SyncFailure:
    """Aggregated error delivered to ``on_error`` observers.

    Carries counts only; per-action diagnostics stay on the stored actions.
    """

    message: str
    failed_count: int
    dropped_count: int = 0
    report: DrainReport | None = None
    cause: Exception | None = None
