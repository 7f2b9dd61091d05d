"""Write-now-or-queue helper for feature code.

Online writes go straight to the remote service. Offline writes, and online
writes that fail with a transient error, are enqueued for the next drain.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from offline_sync.adapters.remote import RemoteCallError, RemoteTableClient
from offline_sync.core.observers import ObserverList
from offline_sync.domain.exceptions import InvalidActionError
from offline_sync.domain.models import LOCAL_ID_KEY, ActionKind

if TYPE_CHECKING:
    from offline_sync.connection.monitor import ConnectionMonitor
    from offline_sync.services.id_resolution import IdResolver
    from offline_sync.services.mutation_queue import MutationQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MutationResult:
    queued: bool
    data: dict[str, Any] | None = None
    error: Exception | None = None
    action_id: str | None = None


class OfflineMutationExecutor:
    def __init__(
        self,
        queue: MutationQueue,
        monitor: ConnectionMonitor,
        remote: RemoteTableClient,
        id_resolver: IdResolver,
        *,
        remote_call_timeout: float = 30.0,
    ) -> None:
        self._queue = queue
        self._monitor = monitor
        self._remote = remote
        self._ids = id_resolver
        self._remote_call_timeout = remote_call_timeout
        self.on_queued: ObserverList[[str]] = ObserverList("mutation_queued")

    async def mutate(
        self,
        kind: ActionKind | str,
        target: str,
        payload: Mapping[str, Any],
    ) -> MutationResult:
        """Apply a write now if possible, otherwise queue it.

        Non-retryable remote errors (validation, permissions) are returned in
        the result and never queued.

        Raises:
            InvalidActionError: If the kind is unknown.
            StorageUnavailableError: If queuing is needed but the store is unavailable.
        """
        try:
            action_kind = ActionKind(kind)
        except ValueError as exc:
            msg = f"Unknown action kind: {kind!r}"
            raise InvalidActionError(msg, {"kind": str(kind)}) from exc
        data = dict(payload)

        if action_kind.requires_remote_id and data.get("id") is None:
            error = InvalidActionError(f"{action_kind.value.capitalize()} requires an id")
            return MutationResult(queued=False, error=error)

        if not self._monitor.is_online:
            return await self._enqueue(action_kind, target, data, reason="offline")

        try:
            result = await asyncio.wait_for(
                self._apply(action_kind, target, data), timeout=self._remote_call_timeout
            )
        except TimeoutError as exc:
            logger.warning("direct_write_timed_out", extra={"target": target, "kind": action_kind.value})
            return await self._enqueue(action_kind, target, data, reason="timeout", error=exc)
        except RemoteCallError as exc:
            if exc.retryable:
                return await self._enqueue(action_kind, target, data, reason="retryable_error", error=exc)
            logger.warning(
                "direct_write_rejected",
                extra={"target": target, "kind": action_kind.value, "status_code": exc.status_code},
            )
            return MutationResult(queued=False, error=exc)
        return MutationResult(queued=False, data=result)

    async def _apply(
        self, kind: ActionKind, target: str, data: dict[str, Any]
    ) -> dict[str, Any] | None:
        data = await self._ids.resolve_payload(data)
        if kind is ActionKind.CREATE:
            document = {k: v for k, v in data.items() if k != LOCAL_ID_KEY}
            row = await self._remote.insert(target, document)
            local_id = data.get(LOCAL_ID_KEY)
            if local_id is not None and row and row.get("id") is not None:
                await self._ids.record(str(local_id), row["id"])
            return row
        if kind is ActionKind.UPDATE:
            patch = {k: v for k, v in data.items() if k not in ("id", LOCAL_ID_KEY)}
            await self._remote.update_by_id(target, data["id"], patch)
            return data
        await self._remote.delete_by_id(target, data["id"])
        return data

    async def _enqueue(
        self,
        kind: ActionKind,
        target: str,
        data: dict[str, Any],
        *,
        reason: str,
        error: Exception | None = None,
    ) -> MutationResult:
        action_id = await self._queue.enqueue(kind, target, data)
        logger.info(
            "mutation_queued",
            extra={"action_id": action_id, "target": target, "kind": kind.value, "reason": reason},
        )
        self.on_queued.notify(action_id)
        return MutationResult(queued=True, data=data, error=error, action_id=action_id)
