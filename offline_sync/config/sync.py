from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

SEVEN_DAYS_SECONDS = 7 * 24 * 60 * 60


class SyncConfig(BaseModel):
    """Retry, reconnect, cache and polling policy of the sync engine."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_retries: int = Field(
        default=3,
        validation_alias="SYNC_MAX_RETRIES",
        description="Failed attempts after which a queued action is dropped",
    )
    cache_ttl_seconds: int = Field(
        default=SEVEN_DAYS_SECONDS,
        validation_alias="CACHE_TTL_SECONDS",
        description="Lifetime of cached reference entities",
    )
    reconnect_base_delay: float = Field(
        default=1.0,
        validation_alias="RECONNECT_BASE_DELAY_SEC",
        description="Delay before the first reconnect attempt; doubles per attempt",
    )
    reconnect_max_attempts: int = Field(
        default=5,
        validation_alias="RECONNECT_MAX_ATTEMPTS",
        description="Reconnect attempts before the monitor pins itself to error",
    )
    offline_poll_interval: float = Field(
        default=15.0,
        validation_alias="OFFLINE_POLL_INTERVAL_SEC",
        description="Pending-count polling interval while offline",
    )
    remote_call_timeout: float = Field(
        default=30.0,
        validation_alias="REMOTE_CALL_TIMEOUT_SEC",
        description="Timeout applied to each queued remote write",
    )
    auto_sync: bool = Field(
        default=True,
        validation_alias="AUTO_SYNC_ENABLED",
        description="Drain the queue automatically when connectivity returns",
    )

    @field_validator("max_retries", "reconnect_max_attempts", mode="before")
    @classmethod
    def _validate_attempts(cls, value: Any, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = int(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a valid integer"
            raise ValueError(msg) from exc
        if parsed < 1 or parsed > 50:
            msg = f"{info.field_name.replace('_', ' ').capitalize()} must be between 1 and 50"
            raise ValueError(msg)
        return parsed

    @field_validator("cache_ttl_seconds", mode="before")
    @classmethod
    def _validate_ttl(cls, value: Any) -> int:
        try:
            parsed = int(str(value if value not in (None, "") else SEVEN_DAYS_SECONDS))
        except ValueError as exc:
            msg = "Cache TTL must be a valid integer"
            raise ValueError(msg) from exc
        if parsed <= 0:
            msg = "Cache TTL must be positive"
            raise ValueError(msg)
        return parsed

    @field_validator(
        "reconnect_base_delay",
        "offline_poll_interval",
        "remote_call_timeout",
        mode="before",
    )
    @classmethod
    def _validate_seconds(cls, value: Any, info: ValidationInfo) -> float:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = float(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a valid number"
            raise ValueError(msg) from exc
        if parsed <= 0 or parsed > 3600:
            msg = f"{info.field_name.replace('_', ' ').capitalize()} must be between 0 and 3600 seconds"
            raise ValueError(msg)
        return parsed
