"""Test doubles for the offline sync engine."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from typing import Any

from offline_sync.adapters.remote import RemoteCallError


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRemote:
    """In-memory stand-in for the remote table service.

    Every write is recorded in ``calls``. ``error`` (or ``error_for``, keyed by
    table) makes writes fail; ``gate`` blocks every write until it is set.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.error: Exception | None = None
        self.error_for: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.delay: float = 0.0
        self._next_id = 0

    async def _before_write(self, table: str) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        error = self.error_for.get(table, self.error)
        if error is not None:
            raise error

    async def insert(self, table: str, document: Mapping[str, Any]) -> dict[str, Any] | None:
        self.calls.append(("insert", table, dict(document)))
        await self._before_write(table)
        self._next_id += 1
        row = {"id": f"srv-{self._next_id}", **document}
        self.tables.setdefault(table, []).append(row)
        return row

    async def update_by_id(self, table: str, row_id: Any, patch: Mapping[str, Any]) -> None:
        self.calls.append(("update", table, row_id, dict(patch)))
        await self._before_write(table)

    async def delete_by_id(self, table: str, row_id: Any) -> None:
        self.calls.append(("delete", table, row_id))
        await self._before_write(table)

    async def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self.calls.append(("select", table, dict(filters or {})))
        rows = [
            row
            for row in self.tables.get(table, [])
            if all(row.get(col) == value for col, value in (filters or {}).items())
        ]
        if order_by:
            rows.sort(key=lambda row: row.get(order_by), reverse=descending)
        return rows[:limit] if limit is not None else rows

    def writes(self) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] != "select"]


def rejected(status_code: int = 400) -> RemoteCallError:
    return RemoteCallError("rejected by remote", status_code=status_code, retryable=False)


async def settle(predicate: Callable[[], bool], *, rounds: int = 2000) -> None:
    """Yield to the loop until ``predicate`` holds."""
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0.001)
    raise AssertionError("condition not reached")


