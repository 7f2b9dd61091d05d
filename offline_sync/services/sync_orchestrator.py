"""Sync orchestrator: drains the mutation queue against the remote service.

Drains are single-flight. A trigger that arrives while a drain is running is
a silent no-op, so at most one cycle ever holds actions in flight. Within a
cycle actions are applied strictly in enqueue order; a failing action is
recorded and the cycle moves on to the next one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any

from offline_sync.adapters.remote import RemoteCallError, RemoteTableClient
from offline_sync.core.logging_utils import generate_correlation_id
from offline_sync.core.observers import ObserverList, Unsubscribe
from offline_sync.core.time_utils import epoch_now
from offline_sync.domain.exceptions import (
    ActionApplyError,
    ActionNotFoundError,
    InvalidStateTransitionError,
    OfflineError,
    StorageUnavailableError,
)
from offline_sync.domain.models import (
    LOCAL_ID_KEY,
    ActionKind,
    DrainReport,
    PendingAction,
    SyncFailure,
    SyncStatus,
)

if TYPE_CHECKING:
    from offline_sync.connection.monitor import ConnectionMonitor
    from offline_sync.services.entity_cache import EntityCache
    from offline_sync.services.id_resolution import IdResolver
    from offline_sync.services.mutation_queue import MutationQueue

logger = logging.getLogger(__name__)

TRIGGER_SYNC_MESSAGE = "trigger-sync"
USER_DATA_SYNC_KEY = "user_data_cache"


class DrainPhase(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"


class SingleFlightGuard:
    """Explicit idle/draining state for the one drain allowed at a time.

    ``try_acquire`` has no await point, so check-and-set is atomic on the
    event loop.
    """

    def __init__(self) -> None:
        self._phase = DrainPhase.IDLE
        self._cycle_id: str | None = None

    @property
    def phase(self) -> DrainPhase:
        return self._phase

    @property
    def cycle_id(self) -> str | None:
        return self._cycle_id

    @property
    def is_busy(self) -> bool:
        return self._phase is DrainPhase.DRAINING

    def try_acquire(self, cycle_id: str) -> bool:
        if self._phase is DrainPhase.DRAINING:
            return False
        self._phase = DrainPhase.DRAINING
        self._cycle_id = cycle_id
        return True

    def release(self) -> None:
        self._phase = DrainPhase.IDLE
        self._cycle_id = None


class SyncOrchestrator:
    """Serializes queue drains and reports their progress to observers."""

    def __init__(
        self,
        queue: MutationQueue,
        cache: EntityCache,
        monitor: ConnectionMonitor,
        remote: RemoteTableClient,
        id_resolver: IdResolver,
        *,
        remote_call_timeout: float = 30.0,
        auto_sync: bool = True,
        clock: Callable[[], float] = epoch_now,
    ) -> None:
        self._queue = queue
        self._cache = cache
        self._monitor = monitor
        self._remote = remote
        self._ids = id_resolver
        self._remote_call_timeout = remote_call_timeout
        self._auto_sync = auto_sync
        self._clock = clock

        self._guard = SingleFlightGuard()
        self._status = SyncStatus.IDLE
        self._was_online: bool | None = None
        self._monitor_unsubscribe: Unsubscribe | None = None
        self._scheduled: set[asyncio.Task[DrainReport | None]] = set()

        self.on_status_change: ObserverList[[SyncStatus]] = ObserverList("sync_status")
        self.on_progress: ObserverList[[int, int]] = ObserverList("sync_progress")
        self.on_success: ObserverList[[DrainReport]] = ObserverList("sync_success")
        self.on_error: ObserverList[[SyncFailure]] = ObserverList("sync_error")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Recover actions stranded in flight and start following the monitor."""
        await self._queue.recover_in_flight()
        if self._monitor_unsubscribe is None:
            self._monitor_unsubscribe = self._monitor.subscribe_online(self._on_online_change)
        logger.info(
            "sync_orchestrator_started",
            extra={"auto_sync": self._auto_sync, "online": self._monitor.is_online},
        )

    async def dispose(self) -> None:
        if self._monitor_unsubscribe is not None:
            self._monitor_unsubscribe()
            self._monitor_unsubscribe = None
        if self._scheduled:
            await asyncio.gather(*self._scheduled, return_exceptions=True)
        for observers in (self.on_status_change, self.on_progress, self.on_success, self.on_error):
            observers.clear()
        logger.info("sync_orchestrator_disposed")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def is_syncing(self) -> bool:
        return self._guard.is_busy

    @property
    def is_online(self) -> bool:
        return self._monitor.is_online

    @property
    def auto_sync(self) -> bool:
        return self._auto_sync

    def set_auto_sync(self, enabled: bool) -> None:
        self._auto_sync = enabled
        logger.info("auto_sync_toggled", extra={"enabled": enabled})

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def force_sync(self) -> DrainReport | None:
        """Drain now.

        Returns None when another drain was already running.

        Raises:
            OfflineError: If the monitor does not report the connection as online.
            StorageUnavailableError: If the offline store cannot be used.
        """
        if not self._monitor.is_online:
            raise OfflineError
        return await self.sync_pending()

    def handle_worker_message(self, message: Mapping[str, Any]) -> bool:
        """Handle a message posted by a background worker; returns whether a drain was scheduled."""
        if message.get("type") != TRIGGER_SYNC_MESSAGE:
            logger.debug("worker_message_ignored", extra={"message_type": message.get("type")})
            return False
        if not self._monitor.is_online:
            logger.info("worker_sync_trigger_while_offline")
            return False
        self._schedule_drain("worker")
        return True

    def _on_online_change(self, online: bool) -> None:
        was_online, self._was_online = self._was_online, online
        if not online:
            if not self._guard.is_busy:
                self._set_status(SyncStatus.IDLE)
            return
        # The first call only reports the current state.
        if was_online is False and self._auto_sync:
            logger.info("connectivity_restored_auto_sync")
            self._schedule_drain("reconnect")

    def _schedule_drain(self, reason: str) -> None:
        task = asyncio.create_task(self.sync_pending(), name=f"sync-drain-{reason}")
        self._scheduled.add(task)
        task.add_done_callback(self._on_scheduled_done)

    def _on_scheduled_done(self, task: asyncio.Task[DrainReport | None]) -> None:
        self._scheduled.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "scheduled_sync_failed",
                extra={"task": task.get_name(), "error": str(exc)},
            )

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    async def sync_pending(self) -> DrainReport | None:
        """Run one drain cycle unless one is already running or we are offline."""
        if not self._monitor.is_online:
            logger.info("sync_skipped_offline")
            return None
        cycle_id = generate_correlation_id()
        if not self._guard.try_acquire(cycle_id):
            logger.debug(
                "sync_already_in_progress",
                extra={"cycle_id": self._guard.cycle_id},
            )
            return None
        try:
            return await self._drain(cycle_id)
        finally:
            self._guard.release()

    async def _drain(self, cycle_id: str) -> DrainReport:
        started_at = self._clock()
        succeeded = failed = 0
        dropped_ids: list[str] = []
        self._set_status(SyncStatus.SYNCING)
        try:
            # Only one drain runs at a time, so anything still in flight is left
            # over from an aborted cycle.
            await self._queue.recover_in_flight()
            actions = await self._queue.list_pending()
            total = len(actions)
            logger.info("sync_started", extra={"cycle_id": cycle_id, "pending": total})

            for index, action in enumerate(actions):
                self.on_progress.notify(index + 1, total)
                try:
                    await self._queue.mark_in_flight(action.id)
                except (ActionNotFoundError, InvalidStateTransitionError) as exc:
                    logger.warning(
                        "action_skipped",
                        extra={"cycle_id": cycle_id, "action_id": action.id, "error": str(exc)},
                    )
                    continue
                try:
                    await self._apply(action)
                except ActionApplyError as exc:
                    failed += 1
                    outcome = await self._queue.mark_failed(action.id, exc.message)
                    if outcome.dropped:
                        dropped_ids.append(action.id)
                    continue
                await self._queue.remove(action.id)
                succeeded += 1
                logger.debug("action_synced", extra={"cycle_id": cycle_id, "action_id": action.id})

            finished_at = self._clock()
            await self._cache.set_last_sync_time(finished_at)
        except (StorageUnavailableError, TimeoutError) as exc:
            logger.exception("sync_aborted", extra={"cycle_id": cycle_id, "error": str(exc)})
            self._set_status(SyncStatus.ERROR)
            self.on_error.notify(
                SyncFailure(
                    message=f"Sync failed: {exc}",
                    failed_count=failed,
                    dropped_count=len(dropped_ids),
                    cause=exc,
                )
            )
            raise

        report = DrainReport(
            cycle_id=cycle_id,
            total=total,
            succeeded=succeeded,
            failed=failed,
            dropped=len(dropped_ids),
            started_at=started_at,
            finished_at=finished_at,
            dropped_action_ids=tuple(dropped_ids),
        )
        logger.info(
            "sync_completed",
            extra={
                "cycle_id": cycle_id,
                "succeeded": succeeded,
                "failed": failed,
                "dropped": report.dropped,
                "duration_ms": int((finished_at - started_at) * 1000),
            },
        )
        if report.ok:
            self._set_status(SyncStatus.SUCCESS)
            self.on_success.notify(report)
        else:
            self._set_status(SyncStatus.ERROR)
            self.on_error.notify(
                SyncFailure(
                    message=f"{failed} actions failed to sync",
                    failed_count=failed,
                    dropped_count=report.dropped,
                    report=report,
                )
            )
        return report

    async def _apply(self, action: PendingAction) -> None:
        """Apply one action remotely.

        Raises:
            ActionApplyError: For any remote failure, including the per-call timeout.
        """
        payload = await self._ids.resolve_payload(action.payload)
        try:
            row = await asyncio.wait_for(
                self._dispatch(action, payload), timeout=self._remote_call_timeout
            )
        except TimeoutError as exc:
            msg = (
                f"Action {action.id} ({action.kind.value} on {action.target}): "
                f"timed out after {self._remote_call_timeout}s"
            )
            raise ActionApplyError(msg, action_id=action.id, retryable=True) from exc
        except RemoteCallError as exc:
            msg = f"Action {action.id} ({action.kind.value} on {action.target}): {exc.message}"
            raise ActionApplyError(
                msg,
                action_id=action.id,
                retryable=exc.retryable,
                details={"status_code": exc.status_code},
            ) from exc
        except ActionApplyError:
            raise
        except Exception as exc:
            msg = f"Action {action.id} ({action.kind.value} on {action.target}): {exc}"
            raise ActionApplyError(msg, action_id=action.id) from exc

        if action.kind is ActionKind.CREATE and action.local_id and row and row.get("id") is not None:
            await self._ids.record(action.local_id, row["id"])

    async def _dispatch(
        self, action: PendingAction, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        if action.kind is ActionKind.CREATE:
            document = {k: v for k, v in payload.items() if k != LOCAL_ID_KEY}
            return await self._remote.insert(action.target, document)

        row_id = payload.get("id")
        if row_id is None:
            msg = f"{action.kind.value.capitalize()} action requires id in payload"
            raise ActionApplyError(msg, action_id=action.id, retryable=False)
        if action.kind is ActionKind.UPDATE:
            patch = {k: v for k, v in payload.items() if k not in ("id", LOCAL_ID_KEY)}
            await self._remote.update_by_id(action.target, row_id, patch)
        else:
            await self._remote.delete_by_id(action.target, row_id)
        return None

    # ------------------------------------------------------------------
    # Cache warming
    # ------------------------------------------------------------------

    async def cache_user_data(self, user_id: str, organization_id: str | None = None) -> bool:
        """Refresh cached profile and organization data; returns False when offline."""
        if not self._monitor.is_online:
            logger.info("cache_user_data_skipped_offline", extra={"user_id": user_id})
            return False

        profiles = await self._remote.select("profiles", {"id": user_id}, limit=1)
        if profiles:
            await self._cache.cache_profile(user_id, profiles[0])

        if organization_id:
            organizations = await self._remote.select(
                "organizations", {"id": organization_id}, limit=1
            )
            if organizations:
                await self._cache.cache_organization(organization_id, organizations[0])

            subscriptions = await self._remote.select(
                "subscriptions",
                {"organization_id": organization_id},
                order_by="created_at",
                descending=True,
                limit=1,
            )
            if subscriptions:
                await self._cache.cache_subscription(organization_id, subscriptions[0])

            members = await self._remote.select(
                "organization_members", {"organization_id": organization_id}
            )
            await self._cache.cache_team_members(organization_id, members)

        await self._cache.set_last_sync_time(self._clock(), key=USER_DATA_SYNC_KEY)
        logger.info(
            "user_data_cached",
            extra={"user_id": user_id, "organization_id": organization_id},
        )
        return True

    def _set_status(self, status: SyncStatus) -> None:
        self._status = status
        self.on_status_change.notify(status)
