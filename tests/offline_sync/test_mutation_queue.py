"""Tests for the persistent mutation queue."""

from __future__ import annotations

import asyncio

import pytest

from offline_sync.db.store import Partition, PersistentStore
from offline_sync.domain.exceptions import (
    ActionNotFoundError,
    InvalidActionError,
    InvalidStateTransitionError,
    MaxRetriesExceededError,
)
from offline_sync.domain.models import ActionKind, ActionState
from offline_sync.services.mutation_queue import MutationQueue


@pytest.fixture
def queue(store: PersistentStore, clock) -> MutationQueue:
    return MutationQueue(store, clock=clock)


@pytest.mark.asyncio
async def test_enqueue_persists_pending_action(queue: MutationQueue, clock) -> None:
    action_id = await queue.enqueue("update", "orders", {"id": "O1", "status": "delivered"})

    action = await queue.get(action_id)
    assert action is not None
    assert action.kind is ActionKind.UPDATE
    assert action.target == "orders"
    assert action.payload == {"id": "O1", "status": "delivered"}
    assert action.state is ActionState.PENDING
    assert action.retry_count == 0
    assert action.last_error is None
    assert action.enqueued_at == clock.now


@pytest.mark.asyncio
async def test_enqueue_generates_unique_ids(queue: MutationQueue) -> None:
    ids = [await queue.enqueue("create", "orders", {"n": n}) for n in range(10)]

    assert len(set(ids)) == 10


@pytest.mark.asyncio
async def test_list_pending_is_fifo_even_with_identical_timestamps(queue: MutationQueue) -> None:
    # The fake clock never moves, so ordering relies on the strictly increasing watermark.
    ids = [await queue.enqueue("create", "orders", {"n": n}) for n in range(5)]

    pending = await queue.list_pending()

    assert [action.id for action in pending] == ids
    stamps = [action.enqueued_at for action in pending]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)


@pytest.mark.asyncio
async def test_concurrent_enqueues_keep_distinct_timestamps(queue: MutationQueue) -> None:
    await asyncio.gather(*(queue.enqueue("create", "orders", {"n": n}) for n in range(8)))

    stamps = [action.enqueued_at for action in await queue.list_pending()]
    assert len(set(stamps)) == 8


@pytest.mark.asyncio
async def test_fifo_order_survives_a_new_queue_instance(store: PersistentStore, clock) -> None:
    first = MutationQueue(store, clock=clock)
    a = await first.enqueue("create", "orders", {"n": 1})

    second = MutationQueue(store, clock=clock)
    b = await second.enqueue("create", "orders", {"n": 2})

    assert [action.id for action in await second.list_pending()] == [a, b]


@pytest.mark.asyncio
async def test_enqueue_rejects_unknown_kind_and_blank_target(queue: MutationQueue) -> None:
    with pytest.raises(InvalidActionError):
        await queue.enqueue("upsert", "orders", {})
    with pytest.raises(InvalidActionError):
        await queue.enqueue("create", "  ", {})
    with pytest.raises(InvalidActionError, match="requires id"):
        await queue.enqueue("update", "orders", {"status": "delivered"})
    with pytest.raises(InvalidActionError, match="requires id"):
        await queue.enqueue("delete", "orders", {"id": None})

    assert await queue.count_pending() == 0


@pytest.mark.asyncio
async def test_in_flight_actions_are_excluded_from_pending(queue: MutationQueue) -> None:
    first = await queue.enqueue("create", "orders", {"n": 1})
    second = await queue.enqueue("create", "orders", {"n": 2})

    await queue.mark_in_flight(first)

    assert [action.id for action in await queue.list_pending()] == [second]
    assert await queue.count_pending() == 2


@pytest.mark.asyncio
async def test_mark_in_flight_twice_is_rejected(queue: MutationQueue) -> None:
    action_id = await queue.enqueue("delete", "orders", {"id": "O1"})
    await queue.mark_in_flight(action_id)

    with pytest.raises(InvalidStateTransitionError):
        await queue.mark_in_flight(action_id)


@pytest.mark.asyncio
async def test_mark_failed_increments_until_cap_then_dead_letters(queue: MutationQueue, clock) -> None:
    action_id = await queue.enqueue("update", "orders", {"id": "O1", "status": "paid"})

    for attempt in (1, 2):
        await queue.mark_in_flight(action_id)
        outcome = await queue.mark_failed(action_id, f"boom {attempt}")
        assert outcome.dropped is False
        assert outcome.action.retry_count == attempt
        stored = await queue.get(action_id)
        assert stored is not None
        assert stored.state is ActionState.FAILED
        assert stored.last_error == f"boom {attempt}"

    clock.advance(60)
    await queue.mark_in_flight(action_id)
    outcome = await queue.mark_failed(action_id, "boom 3")

    assert outcome.dropped is True
    assert isinstance(outcome.error, MaxRetriesExceededError)
    assert outcome.error.retry_count == 3
    assert await queue.get(action_id) is None
    assert await queue.list_pending() == []

    dead_letters = await queue.list_dead_letters()
    assert len(dead_letters) == 1
    assert dead_letters[0].action.id == action_id
    assert dead_letters[0].action.last_error == "boom 3"
    assert dead_letters[0].dropped_at == clock.now


@pytest.mark.asyncio
async def test_failed_actions_stay_in_drain_order(queue: MutationQueue) -> None:
    first = await queue.enqueue("create", "orders", {"n": 1})
    second = await queue.enqueue("create", "orders", {"n": 2})
    await queue.mark_in_flight(first)
    await queue.mark_failed(first, "transient")

    assert [action.id for action in await queue.list_pending()] == [first, second]


@pytest.mark.asyncio
async def test_custom_retry_cap(store: PersistentStore) -> None:
    queue = MutationQueue(store, max_retries=1)
    action_id = await queue.enqueue("create", "orders", {})

    outcome = await queue.mark_failed(action_id, "nope")

    assert outcome.dropped is True


@pytest.mark.asyncio
async def test_requeue_dead_letter_restores_fresh_budget_at_the_back(queue: MutationQueue, clock) -> None:
    dropped = await queue.enqueue("create", "orders", {"n": 1})
    for _ in range(3):
        await queue.mark_failed(dropped, "down")
    survivor = await queue.enqueue("create", "orders", {"n": 2})

    clock.advance(5)
    requeued = await queue.requeue_dead_letter(dropped)

    assert requeued.retry_count == 0
    assert requeued.state is ActionState.PENDING
    assert requeued.last_error is None
    assert [action.id for action in await queue.list_pending()] == [survivor, dropped]
    assert await queue.list_dead_letters() == []


@pytest.mark.asyncio
async def test_requeue_unknown_dead_letter_raises(queue: MutationQueue) -> None:
    with pytest.raises(ActionNotFoundError):
        await queue.requeue_dead_letter("missing")


@pytest.mark.asyncio
async def test_purge_dead_letters(queue: MutationQueue, store: PersistentStore) -> None:
    action_id = await queue.enqueue("create", "orders", {})
    for _ in range(3):
        await queue.mark_failed(action_id, "down")

    assert await queue.purge_dead_letters() == 1
    assert await store.count(Partition.DEAD_LETTERS) == 0


@pytest.mark.asyncio
async def test_recover_in_flight_resets_stranded_actions(queue: MutationQueue) -> None:
    stranded = await queue.enqueue("create", "orders", {"n": 1})
    untouched = await queue.enqueue("create", "orders", {"n": 2})
    await queue.mark_in_flight(stranded)

    assert await queue.recover_in_flight() == 1

    pending = await queue.list_pending()
    assert [action.id for action in pending] == [stranded, untouched]
    assert all(action.state is ActionState.PENDING for action in pending)


@pytest.mark.asyncio
async def test_remove_and_unknown_ids(queue: MutationQueue) -> None:
    action_id = await queue.enqueue("delete", "orders", {"id": "O9"})

    assert await queue.remove(action_id) is True
    assert await queue.remove(action_id) is False
    with pytest.raises(ActionNotFoundError):
        await queue.mark_failed(action_id, "gone")


def test_max_retries_must_be_positive(store: PersistentStore) -> None:
    with pytest.raises(ValueError, match="max_retries"):
        MutationQueue(store, max_retries=0)
