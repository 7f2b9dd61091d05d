"""Peewee models for the offline store."""

from __future__ import annotations

import datetime as _dt

import peewee
from playhouse.sqlite_ext import JSONField

from offline_sync.core.time_utils import utc_now


def _utcnow() -> _dt.datetime:
    return utc_now()


class BaseModel(peewee.Model):
    """Unbound base model; concrete stores bind their own subclass."""

    class Meta:
        legacy_table_names = False


class PartitionEntry(BaseModel):
    """One keyed value inside a named partition (pending actions, cached profile, ...)."""

    id = peewee.AutoField()
    partition = peewee.TextField()
    key = peewee.TextField()
    value = JSONField()
    sort_key = peewee.DoubleField(default=0.0)
    updated_at = peewee.DateTimeField(default=_utcnow)

    class Meta:
        table_name = "partition_entries"
        indexes = (
            (("partition", "key"), True),
            # get_all() returns a partition ordered by sort_key
            (("partition", "sort_key"), False),
        )


def bind_partition_entry(database: peewee.Database) -> type[PartitionEntry]:
    """Return a PartitionEntry subclass bound to ``database``.

    Each store binds its own class so several stores can live in one process
    without sharing a global database proxy.
    """
    bound_database = database

    class BoundPartitionEntry(PartitionEntry):
        class Meta:
            database = bound_database
            table_name = "partition_entries"

    return BoundPartitionEntry
