"""Tests for the partitioned offline store."""

from __future__ import annotations

import asyncio

import pytest

from offline_sync.db.session import StoreSessionManager
from offline_sync.db.store import Partition, PersistentStore
from offline_sync.domain.exceptions import StorageUnavailableError


@pytest.mark.asyncio
async def test_put_get_roundtrip_and_upsert(store: PersistentStore) -> None:
    await store.put(Partition.PROFILES, "u1", {"name": "Awa"})
    assert await store.get(Partition.PROFILES, "u1") == {"name": "Awa"}

    await store.put(Partition.PROFILES, "u1", {"name": "Awa", "phone": "+225"})
    assert await store.get(Partition.PROFILES, "u1") == {"name": "Awa", "phone": "+225"}
    assert await store.count(Partition.PROFILES) == 1


@pytest.mark.asyncio
async def test_get_missing_key_returns_none(store: PersistentStore) -> None:
    assert await store.get(Partition.PROFILES, "nobody") is None


@pytest.mark.asyncio
async def test_partitions_are_isolated(store: PersistentStore) -> None:
    await store.put(Partition.PROFILES, "k", {"from": "profiles"})
    await store.put(Partition.ORGANIZATIONS, "k", {"from": "organizations"})

    assert await store.get(Partition.PROFILES, "k") == {"from": "profiles"}
    assert await store.get(Partition.ORGANIZATIONS, "k") == {"from": "organizations"}

    assert await store.clear(Partition.PROFILES) == 1
    assert await store.get(Partition.ORGANIZATIONS, "k") == {"from": "organizations"}


@pytest.mark.asyncio
async def test_get_all_orders_by_sort_key_then_key(store: PersistentStore) -> None:
    await store.put(Partition.PENDING_ACTIONS, "c", {"v": 3}, sort_key=30.0)
    await store.put(Partition.PENDING_ACTIONS, "b", {"v": 1}, sort_key=10.0)
    await store.put(Partition.PENDING_ACTIONS, "a", {"v": 2}, sort_key=10.0)

    values = await store.get_all(Partition.PENDING_ACTIONS)

    assert values == [{"v": 2}, {"v": 1}, {"v": 3}]


@pytest.mark.asyncio
async def test_delete_reports_whether_row_existed(store: PersistentStore) -> None:
    await store.put(Partition.SYNC_META, "global", {"value": 1})

    assert await store.delete(Partition.SYNC_META, "global") is True
    assert await store.delete(Partition.SYNC_META, "global") is False


@pytest.mark.asyncio
async def test_values_survive_reopening(db_path: str) -> None:
    first = PersistentStore(StoreSessionManager(path=db_path))
    await first.put(Partition.ID_MAP, "local-1", {"remote_id": "srv-9"})
    await first.close()

    second = PersistentStore(StoreSessionManager(path=db_path))
    assert await second.get(Partition.ID_MAP, "local-1") == {"remote_id": "srv-9"}
    await second.close()


@pytest.mark.asyncio
async def test_concurrent_initialization_shares_one_handle(db_path: str) -> None:
    session = StoreSessionManager(path=db_path)

    await asyncio.gather(*(session.ensure_ready() for _ in range(5)))

    assert session.is_ready
    model = session.entry_model
    await session.ensure_ready()
    assert session.entry_model is model


@pytest.mark.asyncio
async def test_unopenable_store_raises_storage_unavailable(tmp_path) -> None:
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("occupied")
    store = PersistentStore(StoreSessionManager(path=str(blocker / "offline.db")))

    with pytest.raises(StorageUnavailableError) as exc_info:
        await store.put(Partition.PENDING_ACTIONS, "a1", {"id": "a1"})

    assert exc_info.value.__cause__ is not None
    with pytest.raises(StorageUnavailableError):
        await store.get(Partition.PENDING_ACTIONS, "a1")
    assert not store.session.is_ready


@pytest.mark.asyncio
async def test_stores_on_different_files_do_not_interfere(tmp_path) -> None:
    left = PersistentStore(StoreSessionManager(path=str(tmp_path / "left.db")))
    right = PersistentStore(StoreSessionManager(path=str(tmp_path / "right.db")))

    await left.put(Partition.PROFILES, "u1", {"side": "left"})

    assert await right.get(Partition.PROFILES, "u1") is None
    assert await left.get(Partition.PROFILES, "u1") == {"side": "left"}
