"""Durable keyed storage scoped into named partitions."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

from offline_sync.core.time_utils import utc_now

if TYPE_CHECKING:
    from offline_sync.db.models import PartitionEntry
    from offline_sync.db.session import StoreSessionManager


class Partition(str, Enum):
    """One partition per entity family."""

    PENDING_ACTIONS = "pending_actions"
    DEAD_LETTERS = "dead_letters"
    PROFILES = "profiles"
    ORGANIZATIONS = "organizations"
    SUBSCRIPTIONS = "subscriptions"
    TEAM_MEMBERS = "team_members"
    AUTH_SESSION = "auth_session"
    SYNC_META = "sync_meta"
    ID_MAP = "id_map"


class PersistentStore:
    """Async put/get/get_all/delete over the partitioned offline database.

    ``put`` has upsert semantics and every write is atomic per key. All
    methods raise ``StorageUnavailableError`` when the database cannot be
    opened.
    """

    def __init__(self, session: StoreSessionManager) -> None:
        self._session = session

    @property
    def session(self) -> StoreSessionManager:
        return self._session

    async def initialize(self) -> None:
        await self._session.ensure_ready()

    async def put(
        self,
        partition: Partition,
        key: str,
        value: Any,
        *,
        sort_key: float = 0.0,
    ) -> None:
        def _put(model: type[PartitionEntry]) -> None:
            model.insert(
                partition=partition.value,
                key=key,
                value=value,
                sort_key=sort_key,
                updated_at=utc_now(),
            ).on_conflict(
                conflict_target=[model.partition, model.key],
                preserve=[model.value, model.sort_key, model.updated_at],
            ).execute()

        await self._session.run(_put, operation_name=f"put:{partition.value}")

    async def get(self, partition: Partition, key: str) -> Any | None:
        def _get(model: type[PartitionEntry]) -> Any | None:
            row = model.get_or_none(
                (model.partition == partition.value) & (model.key == key)
            )
            return row.value if row is not None else None

        return await self._session.run(
            _get, operation_name=f"get:{partition.value}", read_only=True
        )

    async def get_all(self, partition: Partition) -> list[Any]:
        """Return every value of ``partition`` ordered by sort key, then key."""

        def _get_all(model: type[PartitionEntry]) -> list[Any]:
            query = (
                model.select(model.value)
                .where(model.partition == partition.value)
                .order_by(model.sort_key, model.key)
            )
            return [row.value for row in query]

        return await self._session.run(
            _get_all, operation_name=f"get_all:{partition.value}", read_only=True
        )

    async def delete(self, partition: Partition, key: str) -> bool:
        """Delete one key; returns whether a row was removed."""

        def _delete(model: type[PartitionEntry]) -> bool:
            deleted = (
                model.delete()
                .where((model.partition == partition.value) & (model.key == key))
                .execute()
            )
            return deleted > 0

        return await self._session.run(_delete, operation_name=f"delete:{partition.value}")

    async def clear(self, partition: Partition) -> int:
        def _clear(model: type[PartitionEntry]) -> int:
            return model.delete().where(model.partition == partition.value).execute()

        return await self._session.run(_clear, operation_name=f"clear:{partition.value}")

    async def count(self, partition: Partition) -> int:
        def _count(model: type[PartitionEntry]) -> int:
            return model.select().where(model.partition == partition.value).count()

        return await self._session.run(
            _count, operation_name=f"count:{partition.value}", read_only=True
        )

    async def close(self) -> None:
        await self._session.close()
