"""Lazy SQLite session management for the offline store.

This module provides the StoreSessionManager class, which owns the single
database handle shared by every partition. It handles:
- Lazy, idempotent and concurrency-safe initialization
- Mapping open failures to ``StorageUnavailableError``
- Async wrappers with timeout, write serialization and locked/busy retries
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import peewee
from playhouse.sqlite_ext import SqliteExtDatabase

from offline_sync.db.models import PartitionEntry, bind_partition_entry
from offline_sync.domain.exceptions import StorageUnavailableError

DB_OPERATION_TIMEOUT = 30.0
DB_MAX_RETRIES = 3


@dataclass
class StoreSessionManager:
    """Peewee-backed session manager for one offline database file.

    Attributes:
        path: Path to the SQLite database file
        operation_timeout: Default timeout for database operations in seconds
        max_retries: Maximum retries for locked/busy database errors
    """

    path: str
    operation_timeout: float = field(default=DB_OPERATION_TIMEOUT)
    max_retries: int = field(default=DB_MAX_RETRIES)
    _logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    _database: SqliteExtDatabase | None = field(default=None, init=False)
    _entry_model: type[PartitionEntry] | None = field(default=None, init=False)
    _init_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _write_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    @property
    def is_ready(self) -> bool:
        return self._database is not None

    @property
    def entry_model(self) -> type[PartitionEntry]:
        if self._entry_model is None:
            msg = "Offline store used before ensure_ready()"
            raise StorageUnavailableError(msg, {"path": self.path})
        return self._entry_model

    async def ensure_ready(self) -> None:
        """Open the database and create tables once.

        Safe to call concurrently: callers share one handle. A failed open is
        not cached, so the next call tries again.

        Raises:
            StorageUnavailableError: If the storage engine cannot be opened.
        """
        if self._database is not None:
            return
        async with self._init_lock:
            if self._database is not None:
                return
            try:
                database, model = await asyncio.to_thread(self._open)
            except (peewee.PeeweeException, sqlite3.Error, OSError) as exc:
                self._logger.exception(
                    "offline_store_open_failed",
                    extra={"path": self.path, "error": str(exc)},
                )
                msg = f"Offline store at {self.path} cannot be opened: {exc}"
                raise StorageUnavailableError(msg, {"path": self.path}) from exc
            self._database = database
            self._entry_model = model
            self._logger.info("offline_store_ready", extra={"path": self.path})

    def _open(self) -> tuple[SqliteExtDatabase, type[PartitionEntry]]:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        database = SqliteExtDatabase(
            self.path,
            pragmas={
                "journal_mode": "wal",
                "synchronous": "normal",
            },
            check_same_thread=False,
        )
        model = bind_partition_entry(database)
        with database.connection_context():
            database.create_tables([model], safe=True)
        return database, model

    async def close(self) -> None:
        database = self._database
        self._database = None
        self._entry_model = None
        if database is not None and not database.is_closed():
            await asyncio.to_thread(database.close)

    async def run(
        self,
        operation: Any,
        *args: Any,
        timeout: float | None = None,
        operation_name: str = "store_operation",
        read_only: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Execute a blocking store operation in a worker thread.

        Writes are serialized; reads run unlocked and rely on SQLite WAL.

        Args:
            operation: Callable receiving the bound entry model first
            *args: Positional arguments for the operation
            timeout: Timeout in seconds (default: self.operation_timeout)
            operation_name: Name for logging purposes
            read_only: Whether the operation only reads
            **kwargs: Keyword arguments for the operation

        Raises:
            StorageUnavailableError: If the store cannot be opened or keeps failing
            TimeoutError: If the operation times out
        """
        await self.ensure_ready()
        database = self._database
        model = self.entry_model
        if timeout is None:
            timeout = self.operation_timeout

        def _op_wrapper() -> Any:
            with database.connection_context():
                return operation(model, *args, **kwargs)

        async def _run() -> Any:
            if read_only:
                return await asyncio.to_thread(_op_wrapper)
            async with self._write_lock:
                return await asyncio.to_thread(_op_wrapper)

        retries = 0
        while True:
            try:
                return await asyncio.wait_for(_run(), timeout=timeout)
            except TimeoutError:
                self._logger.exception(
                    "store_operation_timeout",
                    extra={"operation": operation_name, "timeout": timeout},
                )
                raise
            except peewee.OperationalError as exc:
                error_msg = str(exc).lower()
                if ("locked" in error_msg or "busy" in error_msg) and retries < self.max_retries:
                    retries += 1
                    wait_time = 0.1 * (2**retries)
                    self._logger.warning(
                        "store_locked_retrying",
                        extra={
                            "operation": operation_name,
                            "retry": retries,
                            "max_retries": self.max_retries,
                            "wait_time": wait_time,
                        },
                    )
                    await asyncio.sleep(wait_time)
                    continue
                self._logger.exception(
                    "store_operational_error",
                    extra={"operation": operation_name, "retries": retries, "error": str(exc)},
                )
                msg = f"Offline store operation {operation_name} failed: {exc}"
                raise StorageUnavailableError(msg, {"operation": operation_name}) from exc
