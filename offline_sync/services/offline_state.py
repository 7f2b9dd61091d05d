"""Read-only projection of connectivity, queue depth and sync status.

While online the projection follows orchestrator events. While offline no
events arrive, so the pending-action count is polled on a fixed interval
instead; polling stops as soon as the connection comes back.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING

from offline_sync.core.async_utils import cancel_task
from offline_sync.core.observers import ObserverList, Unsubscribe
from offline_sync.core.time_utils import from_epoch
from offline_sync.domain.exceptions import StorageUnavailableError
from offline_sync.domain.models import DrainReport, SyncFailure, SyncStatus

if TYPE_CHECKING:
    from offline_sync.connection.monitor import ConnectionMonitor
    from offline_sync.services.entity_cache import EntityCache
    from offline_sync.services.mutation_queue import MutationQueue
    from offline_sync.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 15.0


@dataclass(frozen=True)
class OfflineSnapshot:
    is_online: bool
    pending_actions_count: int
    last_sync_time: datetime | None
    sync_status: SyncStatus

    @property
    def is_offline_mode(self) -> bool:
        return not self.is_online

    @property
    def has_pending_actions(self) -> bool:
        return self.pending_actions_count > 0


class OfflineStateFacade:
    """Observable offline state for UI-facing code."""

    def __init__(
        self,
        queue: MutationQueue,
        cache: EntityCache,
        monitor: ConnectionMonitor,
        orchestrator: SyncOrchestrator,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._queue = queue
        self._cache = cache
        self._monitor = monitor
        self._orchestrator = orchestrator
        self._poll_interval = poll_interval
        self._sleep = sleep

        self._snapshot = OfflineSnapshot(
            is_online=monitor.is_online,
            pending_actions_count=0,
            last_sync_time=None,
            sync_status=orchestrator.status,
        )
        self._observers: ObserverList[[OfflineSnapshot]] = ObserverList("offline_state")
        self._unsubscribers: list[Unsubscribe] = []
        self._poll_task: asyncio.Task[None] | None = None
        self._refresh_tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.refresh()
        self._unsubscribers = [
            self._monitor.subscribe_online(self._on_online_change),
            self._orchestrator.on_status_change.subscribe(self._on_sync_status),
            self._orchestrator.on_success.subscribe(self._on_sync_success),
            self._orchestrator.on_error.subscribe(self._on_sync_error),
        ]

    async def dispose(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        poll_task, self._poll_task = self._poll_task, None
        await cancel_task(poll_task, logger=logger)
        for task in list(self._refresh_tasks):
            await cancel_task(task, logger=logger)
        self._observers.clear()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def snapshot(self) -> OfflineSnapshot:
        return self._snapshot

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def subscribe(self, callback: Callable[[OfflineSnapshot], None]) -> Unsubscribe:
        """Deliver the current snapshot now, then every changed snapshot."""
        unsubscribe = self._observers.subscribe(callback)
        callback(self._snapshot)
        return unsubscribe

    async def refresh(self) -> OfflineSnapshot:
        """Re-read the pending count and last sync time from the store."""
        count = await self._queue.count_pending()
        last_sync = await self._cache.get_last_sync_time()
        self._update(pending_actions_count=count, last_sync_time=from_epoch(last_sync))
        return self._snapshot

    async def force_sync(self) -> DrainReport | None:
        """Drain immediately and refresh.

        Raises:
            OfflineError: If the connection is not online.
        """
        report = await self._orchestrator.force_sync()
        await self.refresh()
        return report

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_online_change(self, online: bool) -> None:
        self._update(is_online=online)
        if online:
            self._stop_polling()
            self._spawn_refresh()
        else:
            self._start_polling()

    def _on_sync_status(self, status: SyncStatus) -> None:
        self._update(sync_status=status)

    def _on_sync_success(self, report: DrainReport) -> None:
        self._spawn_refresh()

    def _on_sync_error(self, failure: SyncFailure) -> None:
        self._spawn_refresh()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _update(self, **changes: object) -> None:
        updated = replace(self._snapshot, **changes)
        if updated == self._snapshot:
            return
        self._snapshot = updated
        self._observers.notify(updated)

    def _spawn_refresh(self) -> None:
        task = asyncio.create_task(self._safe_refresh(), name="offline-state-refresh")
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _safe_refresh(self) -> None:
        try:
            await self.refresh()
        except (StorageUnavailableError, TimeoutError) as exc:
            logger.warning("offline_state_refresh_failed", extra={"error": str(exc)})

    def _start_polling(self) -> None:
        if self.is_polling:
            return
        self._poll_task = asyncio.create_task(self._poll(), name="offline-state-poll")
        logger.debug("offline_polling_started", extra={"interval_sec": self._poll_interval})

    def _stop_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
            logger.debug("offline_polling_stopped")

    async def _poll(self) -> None:
        while True:
            await self._sleep(self._poll_interval)
            await self._safe_refresh()
