"""Tests for observers, JSON logging and id resolution helpers."""

from __future__ import annotations

import json
import logging

import pytest

from offline_sync.core.logging_utils import JsonLogFormatter, generate_correlation_id
from offline_sync.core.observers import ObserverList
from offline_sync.db.store import PersistentStore
from offline_sync.services.id_resolution import IdResolver


def test_observer_list_notifies_in_order_and_unsubscribes() -> None:
    calls: list[tuple[str, int]] = []
    observers: ObserverList[[int]] = ObserverList("test")
    observers.subscribe(lambda value: calls.append(("a", value)))
    unsubscribe_b = observers.subscribe(lambda value: calls.append(("b", value)))

    observers.notify(1)
    unsubscribe_b()
    unsubscribe_b()
    observers.notify(2)

    assert calls == [("a", 1), ("b", 1), ("a", 2)]
    assert len(observers) == 1


def test_observer_may_unsubscribe_itself_while_notified() -> None:
    observers: ObserverList[[]] = ObserverList("self_removing")
    seen: list[str] = []

    def once() -> None:
        seen.append("once")
        unsubscribe()

    unsubscribe = observers.subscribe(once)
    observers.subscribe(lambda: seen.append("always"))

    observers.notify()
    observers.notify()

    assert seen == ["once", "always", "always"]


def test_failing_observer_is_logged_and_skipped(caplog) -> None:
    observers: ObserverList[[str]] = ObserverList("flaky")
    seen: list[str] = []

    def broken(_: str) -> None:
        raise RuntimeError("boom")

    observers.subscribe(broken)
    observers.subscribe(seen.append)

    with caplog.at_level(logging.ERROR):
        observers.notify("event")

    assert seen == ["event"]
    assert any(record.getMessage() == "observer_callback_failed" for record in caplog.records)


def test_json_formatter_groups_sync_fields() -> None:
    record = logging.LogRecord("offline_sync.test", logging.INFO, __file__, 10, "sync_completed", None, None)
    record.cycle_id = "abc123"
    record.custom = "value"

    payload = json.loads(JsonLogFormatter(include_location=False).format(record))

    assert payload["message"] == "sync_completed"
    assert payload["sync"]["cycle_id"] == "abc123"
    assert payload["extra"]["custom"] == "value"


def test_correlation_ids_are_short_and_unique() -> None:
    ids = {generate_correlation_id() for _ in range(50)}

    assert len(ids) == 50
    assert all(len(value) == 12 for value in ids)


@pytest.mark.asyncio
async def test_id_resolver_rewrites_known_placeholders(store: PersistentStore) -> None:
    resolver = IdResolver(store)
    await resolver.record("tmp-1", "srv-1")

    resolved = await resolver.resolve_payload(
        {"_local_id": "tmp-1", "order_id": "tmp-1", "note": "tmp-2", "qty": 3}
    )

    assert resolved == {"_local_id": "tmp-1", "order_id": "srv-1", "note": "tmp-2", "qty": 3}
    assert await resolver.lookup("tmp-2") is None
    assert await resolver.forget_all() == 1
