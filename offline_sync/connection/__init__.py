"""Connection-state monitoring and reconnect backoff."""

from offline_sync.connection.monitor import ConnectionMonitor

__all__ = ["ConnectionMonitor"]
