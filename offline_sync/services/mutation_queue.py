"""Persistent FIFO queue of intended remote writes.

Actions enqueued here survive restarts. ``list_pending`` defines the drain
order, and ``mark_failed`` enforces the bounded retry policy: once an action
has failed ``max_retries`` times it leaves the active queue and is archived
in the dead-letter partition instead of being retried again.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Mapping
from typing import Any

from offline_sync.core.time_utils import epoch_now
from offline_sync.db.store import Partition, PersistentStore
from offline_sync.domain.exceptions import ActionNotFoundError, InvalidActionError, MaxRetriesExceededError
from offline_sync.domain.models import (
    ActionKind,
    ActionState,
    DeadLetter,
    FailureOutcome,
    PendingAction,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3

# Smallest step used to keep enqueue timestamps strictly increasing.
_TIMESTAMP_EPSILON = 1e-6


def _new_action_id() -> str:
    return uuid.uuid4().hex


class MutationQueue:
    """Enqueue/dequeue, retry bookkeeping and dead-lettering for queued writes."""

    def __init__(
        self,
        store: PersistentStore,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Callable[[], float] = epoch_now,
        id_factory: Callable[[], str] = _new_action_id,
    ) -> None:
        if max_retries < 1:
            msg = "max_retries must be at least 1"
            raise ValueError(msg)
        self._store = store
        self._max_retries = max_retries
        self._clock = clock
        self._id_factory = id_factory
        self._last_enqueued_at: float | None = None
        self._timestamp_lock = asyncio.Lock()

    @property
    def max_retries(self) -> int:
        return self._max_retries

    # ------------------------------------------------------------------
    # Enqueue / inspect
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        kind: ActionKind | str,
        target: str,
        payload: Mapping[str, Any],
    ) -> str:
        """Persist a new pending action and return its id.

        Never touches the network.

        Raises:
            InvalidActionError: If the kind is unknown, the target is empty, or an
                update/delete payload has no ``id``.
            StorageUnavailableError: If the offline store cannot be opened.
        """
        try:
            action_kind = ActionKind(kind)
        except ValueError as exc:
            msg = f"Unknown action kind: {kind!r}"
            raise InvalidActionError(msg, {"kind": str(kind)}) from exc
        if not target or not target.strip():
            msg = "Action target must be a non-empty table name"
            raise InvalidActionError(msg)
        if action_kind.requires_remote_id and payload.get("id") is None:
            msg = f"{action_kind.value.capitalize()} action requires id in payload"
            raise InvalidActionError(msg, {"kind": action_kind.value, "target": target})

        action = PendingAction(
            id=self._id_factory(),
            kind=action_kind,
            target=target.strip(),
            payload=dict(payload),
            enqueued_at=await self._next_timestamp(),
        )
        await self._save(action)
        logger.info(
            "action_enqueued",
            extra={"action_id": action.id, "kind": action.kind.value, "target": action.target},
        )
        return action.id

    async def get(self, action_id: str) -> PendingAction | None:
        record = await self._store.get(Partition.PENDING_ACTIONS, action_id)
        return PendingAction.from_record(record) if record is not None else None

    async def list_all(self) -> list[PendingAction]:
        records = await self._store.get_all(Partition.PENDING_ACTIONS)
        actions = [PendingAction.from_record(record) for record in records]
        actions.sort(key=lambda action: action.enqueued_at)
        return actions

    async def list_pending(self) -> list[PendingAction]:
        """All actions not currently in flight, oldest first. This is the drain order."""
        return [action for action in await self.list_all() if action.state is not ActionState.IN_FLIGHT]

    async def count_pending(self) -> int:
        return await self._store.count(Partition.PENDING_ACTIONS)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def mark_in_flight(self, action_id: str) -> PendingAction:
        action = await self._require(action_id)
        action.mark_in_flight()
        await self._save(action)
        return action

    async def mark_failed(self, action_id: str, error: str) -> FailureOutcome:
        """Record a failed attempt, dropping the action once its budget is spent.

        Returns:
            The outcome; ``dropped`` is True when the action left the queue.
        """
        action = await self._require(action_id)
        action.record_failure(error)

        if not action.has_exhausted(self._max_retries):
            await self._save(action)
            logger.warning(
                "action_failed",
                extra={
                    "action_id": action.id,
                    "retry_count": action.retry_count,
                    "max_retries": self._max_retries,
                    "error": error,
                },
            )
            return FailureOutcome(action=action, dropped=False)

        # Archive before deleting so a crash in between cannot lose the write.
        dead_letter = DeadLetter(action=action, dropped_at=self._clock())
        await self._store.put(
            Partition.DEAD_LETTERS,
            action.id,
            dead_letter.to_record(),
            sort_key=dead_letter.dropped_at,
        )
        await self._store.delete(Partition.PENDING_ACTIONS, action.id)
        exhausted = MaxRetriesExceededError(action.id, action.retry_count, action.last_error)
        logger.error(
            "action_dropped_max_retries",
            extra={
                "action_id": action.id,
                "kind": action.kind.value,
                "target": action.target,
                "retry_count": action.retry_count,
                "error": error,
            },
        )
        return FailureOutcome(action=action, dropped=True, error=exhausted)

    async def remove(self, action_id: str) -> bool:
        removed = await self._store.delete(Partition.PENDING_ACTIONS, action_id)
        if removed:
            logger.debug("action_removed", extra={"action_id": action_id})
        return removed

    async def recover_in_flight(self) -> int:
        """Return actions stranded in flight by a previous process to the pending state."""
        recovered = 0
        for action in await self.list_all():
            if action.state is ActionState.IN_FLIGHT:
                action.reset_to_pending()
                await self._save(action)
                recovered += 1
        if recovered:
            logger.warning("in_flight_actions_recovered", extra={"count": recovered})
        return recovered

    # ------------------------------------------------------------------
    # Dead letters
    # ------------------------------------------------------------------

    async def list_dead_letters(self) -> list[DeadLetter]:
        records = await self._store.get_all(Partition.DEAD_LETTERS)
        return [DeadLetter.from_record(record) for record in records]

    async def requeue_dead_letter(self, action_id: str) -> PendingAction:
        """Put a dropped action back at the end of the queue with a fresh retry budget."""
        record = await self._store.get(Partition.DEAD_LETTERS, action_id)
        if record is None:
            raise ActionNotFoundError(action_id)
        action = DeadLetter.from_record(record).action
        action.state = ActionState.PENDING
        action.retry_count = 0
        action.last_error = None
        action.enqueued_at = await self._next_timestamp()
        await self._save(action)
        await self._store.delete(Partition.DEAD_LETTERS, action_id)
        logger.info("dead_letter_requeued", extra={"action_id": action_id})
        return action

    async def purge_dead_letters(self) -> int:
        purged = await self._store.clear(Partition.DEAD_LETTERS)
        if purged:
            logger.info("dead_letters_purged", extra={"count": purged})
        return purged

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _require(self, action_id: str) -> PendingAction:
        action = await self.get(action_id)
        if action is None:
            raise ActionNotFoundError(action_id)
        return action

    async def _save(self, action: PendingAction) -> None:
        await self._store.put(
            Partition.PENDING_ACTIONS,
            action.id,
            action.to_record(),
            sort_key=action.enqueued_at,
        )

    async def _next_timestamp(self) -> float:
        async with self._timestamp_lock:
            if self._last_enqueued_at is None:
                existing = await self.list_all()
                self._last_enqueued_at = existing[-1].enqueued_at if existing else float("-inf")
            timestamp = self._clock()
            if timestamp <= self._last_enqueued_at:
                timestamp = self._last_enqueued_at + _TIMESTAMP_EPSILON
            self._last_enqueued_at = timestamp
            return timestamp
