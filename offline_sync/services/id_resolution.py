"""Local-id to remote-id resolution for records created while offline.

A create may carry a client-generated placeholder under ``_local_id``. Once
the remote insert returns the real id, later queued actions that still
reference the placeholder are rewritten before they are dispatched.
"""

from __future__ import annotations

import logging
from typing import Any

from offline_sync.db.store import Partition, PersistentStore
from offline_sync.domain.models import LOCAL_ID_KEY

logger = logging.getLogger(__name__)


class IdResolver:
    """Persistent mapping of local placeholders to remote identifiers."""

    def __init__(self, store: PersistentStore) -> None:
        self._store = store

    async def record(self, local_id: str, remote_id: Any) -> None:
        await self._store.put(Partition.ID_MAP, local_id, {"remote_id": remote_id})
        logger.info("local_id_resolved", extra={"local_id": local_id, "remote_id": remote_id})

    async def lookup(self, local_id: str) -> Any | None:
        record = await self._store.get(Partition.ID_MAP, local_id)
        return record["remote_id"] if record else None

    async def resolve_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of ``payload`` with known placeholders replaced.

        Only top-level string values are considered; ``_local_id`` itself is
        kept so the create that introduced it can still be matched.
        """
        resolved = dict(payload)
        for key, value in payload.items():
            if key == LOCAL_ID_KEY or not isinstance(value, str):
                continue
            remote_id = await self.lookup(value)
            if remote_id is not None:
                resolved[key] = remote_id
        return resolved

    async def forget_all(self) -> int:
        return await self._store.clear(Partition.ID_MAP)
