"""Tests for the offline-state facade."""

from __future__ import annotations

import asyncio
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from sync_fakes import FakeClock, FakeRemote, settle

from offline_sync.connection.monitor import ConnectionMonitor
from offline_sync.db.session import StoreSessionManager
from offline_sync.db.store import PersistentStore
from offline_sync.domain.exceptions import OfflineError
from offline_sync.domain.models import SyncStatus
from offline_sync.services.entity_cache import EntityCache
from offline_sync.services.id_resolution import IdResolver
from offline_sync.services.mutation_queue import MutationQueue
from offline_sync.services.offline_state import OfflineSnapshot, OfflineStateFacade
from offline_sync.services.sync_orchestrator import SyncOrchestrator


class TestOfflineStateFacade(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = TemporaryDirectory()
        self.clock = FakeClock()
        self.remote = FakeRemote()
        self.poll_sleeps = 0
        self.poll_release = asyncio.Event()

        async def fake_sleep(_: float) -> None:
            self.poll_sleeps += 1
            # Let one poll tick through per release.
            await self.poll_release.wait()
            self.poll_release.clear()

        store = PersistentStore(StoreSessionManager(path=str(Path(self._tmp.name) / "offline.db")))
        self.queue = MutationQueue(store, clock=self.clock)
        self.cache = EntityCache(store, clock=self.clock)
        self.monitor = ConnectionMonitor(authenticated=True)
        self.orchestrator = SyncOrchestrator(
            self.queue,
            self.cache,
            self.monitor,
            self.remote,
            IdResolver(store),
            auto_sync=False,
            clock=self.clock,
        )
        self.facade = OfflineStateFacade(
            self.queue,
            self.cache,
            self.monitor,
            self.orchestrator,
            poll_interval=15.0,
            sleep=fake_sleep,
        )
        await self.orchestrator.start()
        await self.facade.start()

    async def asyncTearDown(self) -> None:
        await self.facade.dispose()
        await self.orchestrator.dispose()
        await self.monitor.dispose()
        self._tmp.cleanup()

    async def test_initial_snapshot(self) -> None:
        snapshot = self.facade.snapshot()

        self.assertTrue(snapshot.is_online)
        self.assertFalse(snapshot.is_offline_mode)
        self.assertFalse(snapshot.has_pending_actions)
        self.assertEqual(snapshot.pending_actions_count, 0)
        self.assertIsNone(snapshot.last_sync_time)
        self.assertIs(snapshot.sync_status, SyncStatus.IDLE)
        self.assertFalse(self.facade.is_polling)

    async def test_polls_pending_count_only_while_offline(self) -> None:
        self.monitor.handle_network_offline()
        self.assertTrue(self.facade.is_polling)
        self.assertTrue(self.facade.snapshot().is_offline_mode)

        await self.queue.enqueue("create", "orders", {"n": 1})
        await settle(lambda: self.poll_sleeps == 1)
        self.assertEqual(self.facade.snapshot().pending_actions_count, 0)

        self.poll_release.set()
        await settle(lambda: self.facade.snapshot().pending_actions_count == 1)
        self.assertTrue(self.facade.snapshot().has_pending_actions)

        self.monitor.handle_network_online()
        self.assertFalse(self.facade.is_polling)
        sleeps = self.poll_sleeps
        self.poll_release.set()
        await asyncio.sleep(0.01)
        self.assertEqual(self.poll_sleeps, sleeps)

    async def test_force_sync_refreshes_count_and_last_sync(self) -> None:
        await self.queue.enqueue("update", "orders", {"id": "O1", "status": "delivered"})
        await self.facade.refresh()
        self.assertEqual(self.facade.snapshot().pending_actions_count, 1)

        report = await self.facade.force_sync()

        self.assertEqual(report.succeeded, 1)
        snapshot = self.facade.snapshot()
        self.assertEqual(snapshot.pending_actions_count, 0)
        self.assertIs(snapshot.sync_status, SyncStatus.SUCCESS)
        self.assertIsNotNone(snapshot.last_sync_time)
        self.assertEqual(snapshot.last_sync_time.timestamp(), self.clock.now)

    async def test_force_sync_offline_raises(self) -> None:
        self.monitor.handle_network_offline()

        with self.assertRaises(OfflineError):
            await self.facade.force_sync()

    async def test_subscribers_only_see_changed_snapshots(self) -> None:
        seen: list[OfflineSnapshot] = []
        self.facade.subscribe(seen.append)

        await self.facade.refresh()
        await self.facade.refresh()
        self.assertEqual(len(seen), 1)

        self.monitor.handle_network_offline()

        self.assertEqual(len(seen), 2)
        self.assertFalse(seen[-1].is_online)
