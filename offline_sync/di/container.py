"""Composition root for the sync engine.

Every service is constructed explicitly here and handed its collaborators, so
tests can build an engine around a fake remote, a temporary database and an
injected clock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from offline_sync.adapters.remote import RemoteTableClient, RestTableClient
from offline_sync.connection.monitor import ConnectionMonitor, ReconnectHook
from offline_sync.core.time_utils import epoch_now
from offline_sync.db.session import StoreSessionManager
from offline_sync.db.store import PersistentStore
from offline_sync.domain.exceptions import SyncEngineError
from offline_sync.services.entity_cache import EntityCache
from offline_sync.services.id_resolution import IdResolver
from offline_sync.services.mutation_queue import MutationQueue
from offline_sync.services.offline_mutation import OfflineMutationExecutor
from offline_sync.services.offline_state import OfflineStateFacade
from offline_sync.services.sync_orchestrator import SyncOrchestrator

if TYPE_CHECKING:
    from offline_sync.config import AppConfig

logger = logging.getLogger(__name__)


class SyncEngine:
    """Wires store, queue, cache, monitor, orchestrator and facade together.

    Example:
        ```python
        engine = build_sync_engine(load_config(), remote=client)
        await engine.start()
        engine.monitor.handle_auth_change(True)
        await engine.queue.enqueue("update", "orders", {"id": "O1", "status": "delivered"})
        await engine.orchestrator.force_sync()
        await engine.dispose()
        ```

    """

    def __init__(
        self,
        config: AppConfig,
        remote: RemoteTableClient,
        *,
        reconnect: ReconnectHook | None = None,
        clock: Callable[[], float] = epoch_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        owns_remote: bool = False,
    ) -> None:
        self.config = config
        self.remote = remote
        self._owns_remote = owns_remote
        self._started = False

        self.session = StoreSessionManager(
            path=config.storage.db_path,
            operation_timeout=config.storage.operation_timeout,
            max_retries=config.storage.max_retries,
        )
        self.store = PersistentStore(self.session)
        self.queue = MutationQueue(self.store, max_retries=config.sync.max_retries, clock=clock)
        self.cache = EntityCache(self.store, ttl_seconds=config.sync.cache_ttl_seconds, clock=clock)
        self.id_resolver = IdResolver(self.store)
        self.monitor = ConnectionMonitor(
            base_delay=config.sync.reconnect_base_delay,
            max_attempts=config.sync.reconnect_max_attempts,
            reconnect=reconnect,
            sleep=sleep,
        )
        self.orchestrator = SyncOrchestrator(
            self.queue,
            self.cache,
            self.monitor,
            remote,
            self.id_resolver,
            remote_call_timeout=config.sync.remote_call_timeout,
            auto_sync=config.sync.auto_sync,
            clock=clock,
        )
        self.offline_state = OfflineStateFacade(
            self.queue,
            self.cache,
            self.monitor,
            self.orchestrator,
            poll_interval=config.sync.offline_poll_interval,
            sleep=sleep,
        )
        self.mutations = OfflineMutationExecutor(
            self.queue,
            self.monitor,
            remote,
            self.id_resolver,
            remote_call_timeout=config.sync.remote_call_timeout,
        )

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Open the store, then start the monitor, orchestrator and facade in that order."""
        if self._started:
            return
        if self._owns_remote and isinstance(self.remote, RestTableClient):
            await self.remote.__aenter__()
        await self.store.initialize()
        self.monitor.start()
        await self.orchestrator.start()
        await self.offline_state.start()
        self._started = True
        logger.info("sync_engine_started", extra={"db_path": self.config.storage.db_path})

    async def dispose(self) -> None:
        """Stop everything in reverse order and close the store."""
        if not self._started:
            return
        self._started = False
        await self.offline_state.dispose()
        await self.orchestrator.dispose()
        await self.monitor.dispose()
        await self.store.close()
        if self._owns_remote and isinstance(self.remote, RestTableClient):
            await self.remote.__aexit__(None, None, None)
        logger.info("sync_engine_disposed")


def build_sync_engine(
    config: AppConfig,
    remote: RemoteTableClient | None = None,
    *,
    reconnect: ReconnectHook | None = None,
    clock: Callable[[], float] = epoch_now,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> SyncEngine:
    """Build an engine, creating a ``RestTableClient`` from config when no remote is given.

    Raises:
        SyncEngineError: If no remote is given and ``REMOTE_API_URL`` is not configured.
    """
    owns_remote = False
    if remote is None:
        if not config.remote.is_configured:
            msg = "REMOTE_API_URL must be configured when no remote client is supplied"
            raise SyncEngineError(msg)
        remote = RestTableClient(
            config.remote.api_url,
            config.remote.api_key,
            timeout=config.remote.timeout_sec,
        )
        owns_remote = True
    return SyncEngine(
        config,
        remote,
        reconnect=reconnect,
        clock=clock,
        sleep=sleep,
        owns_remote=owns_remote,
    )
