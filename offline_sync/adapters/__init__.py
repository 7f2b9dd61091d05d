"""Adapters for the remote table service.

Re-exports the client contract so callers can write
``from offline_sync.adapters import RestTableClient``.
"""

from .remote import RemoteCallError, RemoteTableClient, RestTableClient

__all__ = ["RemoteCallError", "RemoteTableClient", "RestTableClient"]
