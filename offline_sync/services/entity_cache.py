"""TTL-bounded cache of reference entities plus sync metadata.

Entries are wrapped in ``CachedEntity`` records. Reads at or past
``expires_at`` are misses; expired rows are left in place and overwritten by
the next successful fetch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from offline_sync.config.sync import SEVEN_DAYS_SECONDS
from offline_sync.core.time_utils import epoch_now
from offline_sync.db.store import Partition, PersistentStore
from offline_sync.domain.models import CachedEntity

logger = logging.getLogger(__name__)

AUTH_SESSION_KEY = "current"
GLOBAL_SYNC_KEY = "global"

CACHE_PARTITIONS: tuple[Partition, ...] = (
    Partition.PROFILES,
    Partition.ORGANIZATIONS,
    Partition.SUBSCRIPTIONS,
    Partition.TEAM_MEMBERS,
    Partition.AUTH_SESSION,
    Partition.SYNC_META,
)


@dataclass(frozen=True)
class CacheStats:
    """Presence flags per cached entity family."""

    has_profile: bool
    has_organization: bool
    has_subscription: bool
    has_team_members: bool
    has_auth_session: bool
    last_sync_at: float | None


class EntityCache:
    """Read-through cache for profile, organization, subscription and team data."""

    def __init__(
        self,
        store: PersistentStore,
        *,
        ttl_seconds: float = SEVEN_DAYS_SECONDS,
        clock: Callable[[], float] = epoch_now,
    ) -> None:
        if ttl_seconds <= 0:
            msg = "ttl_seconds must be positive"
            raise ValueError(msg)
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    # ------------------------------------------------------------------
    # Generic operations
    # ------------------------------------------------------------------

    async def put(
        self,
        partition: Partition,
        key: str,
        data: Any,
        *,
        expires_at: float | None = None,
    ) -> CachedEntity[Any]:
        now = self._clock()
        entry = CachedEntity.create(data, now=now, ttl_seconds=self._ttl_seconds)
        if expires_at is not None:
            entry.expires_at = expires_at
        await self._store.put(partition, key, entry.to_record(), sort_key=now)
        logger.debug(
            "entity_cached",
            extra={"partition": partition.value, "key": key, "expires_at": entry.expires_at},
        )
        return entry

    async def get(self, partition: Partition, key: str) -> Any | None:
        """Return cached data, or None when absent or expired."""
        record = await self._store.get(partition, key)
        if record is None:
            return None
        entry = CachedEntity.from_record(record)
        if not entry.is_valid(self._clock()):
            logger.debug("cache_entry_expired", extra={"partition": partition.value, "key": key})
            return None
        return entry.data

    async def invalidate(self, partition: Partition, key: str) -> bool:
        return await self._store.delete(partition, key)

    # ------------------------------------------------------------------
    # Entity families
    # ------------------------------------------------------------------

    async def cache_profile(self, user_id: str, profile: Mapping[str, Any]) -> None:
        await self.put(Partition.PROFILES, user_id, dict(profile))

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        return await self.get(Partition.PROFILES, user_id)

    async def clear_profile(self, user_id: str) -> bool:
        return await self.invalidate(Partition.PROFILES, user_id)

    async def cache_organization(self, organization_id: str, organization: Mapping[str, Any]) -> None:
        await self.put(Partition.ORGANIZATIONS, organization_id, dict(organization))

    async def get_organization(self, organization_id: str) -> dict[str, Any] | None:
        return await self.get(Partition.ORGANIZATIONS, organization_id)

    async def cache_subscription(self, organization_id: str, subscription: Mapping[str, Any]) -> None:
        await self.put(Partition.SUBSCRIPTIONS, organization_id, dict(subscription))

    async def get_subscription(self, organization_id: str) -> dict[str, Any] | None:
        return await self.get(Partition.SUBSCRIPTIONS, organization_id)

    async def cache_team_members(
        self, organization_id: str, members: list[Mapping[str, Any]]
    ) -> None:
        await self.put(Partition.TEAM_MEMBERS, organization_id, [dict(m) for m in members])

    async def get_team_members(self, organization_id: str) -> list[dict[str, Any]] | None:
        return await self.get(Partition.TEAM_MEMBERS, organization_id)

    async def cache_auth_session(self, session: Mapping[str, Any], user: Mapping[str, Any]) -> None:
        """Cache the current session until its own expiry.

        ``session["expires_at"]`` is epoch seconds; without it the default
        TTL applies.
        """
        session_expiry = session.get("expires_at")
        expires_at = float(session_expiry) if session_expiry else None
        await self.put(
            Partition.AUTH_SESSION,
            AUTH_SESSION_KEY,
            {"session": dict(session), "user": dict(user)},
            expires_at=expires_at,
        )

    async def get_auth_session(self) -> dict[str, Any] | None:
        return await self.get(Partition.AUTH_SESSION, AUTH_SESSION_KEY)

    async def clear_auth_session(self) -> bool:
        return await self.invalidate(Partition.AUTH_SESSION, AUTH_SESSION_KEY)

    # ------------------------------------------------------------------
    # Sync metadata
    # ------------------------------------------------------------------

    async def set_last_sync_time(self, timestamp: float, key: str = GLOBAL_SYNC_KEY) -> None:
        await self._store.put(
            Partition.SYNC_META,
            key,
            {"key": key, "value": timestamp},
            sort_key=timestamp,
        )

    async def get_last_sync_time(self, key: str = GLOBAL_SYNC_KEY) -> float | None:
        record = await self._store.get(Partition.SYNC_META, key)
        if not record or record.get("value") is None:
            return None
        return float(record["value"])

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def clear_all(self) -> int:
        """Drop every cached entity and sync metadata. The mutation queue is untouched."""
        cleared = 0
        for partition in CACHE_PARTITIONS:
            cleared += await self._store.clear(partition)
        logger.info("offline_cache_cleared", extra={"count": cleared})
        return cleared

    async def stats(self) -> CacheStats:
        return CacheStats(
            has_profile=await self._store.count(Partition.PROFILES) > 0,
            has_organization=await self._store.count(Partition.ORGANIZATIONS) > 0,
            has_subscription=await self._store.count(Partition.SUBSCRIPTIONS) > 0,
            has_team_members=await self._store.count(Partition.TEAM_MEMBERS) > 0,
            has_auth_session=await self._store.count(Partition.AUTH_SESSION) > 0,
            last_sync_at=await self.get_last_sync_time(),
        )
