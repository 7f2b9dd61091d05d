from __future__ import annotations

from .remote import RemoteConfig
from .settings import AppConfig, RuntimeConfig, Settings, load_config
from .storage import StorageConfig
from .sync import SEVEN_DAYS_SECONDS, SyncConfig

__all__ = [
    "SEVEN_DAYS_SECONDS",
    "AppConfig",
    "RemoteConfig",
    "RuntimeConfig",
    "Settings",
    "StorageConfig",
    "SyncConfig",
    "load_config",
]
