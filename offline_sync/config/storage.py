from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class StorageConfig(BaseModel):
    """Local persistent store location and operation limits."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    db_path: str = Field(
        default="data/offline.db",
        validation_alias="OFFLINE_DB_PATH",
        description="SQLite file backing the offline partitions",
    )
    operation_timeout: float = Field(
        default=30.0,
        validation_alias="DB_OPERATION_TIMEOUT",
        description="Database operation timeout in seconds",
    )
    max_retries: int = Field(
        default=3,
        validation_alias="DB_MAX_RETRIES",
        description="Maximum retries for locked/busy database errors",
    )

    @field_validator("db_path", mode="before")
    @classmethod
    def _validate_path(cls, value: Any) -> str:
        path = str(value or "data/offline.db").strip()
        if not path:
            return "data/offline.db"
        if "\x00" in path:
            msg = "Database path contains invalid characters"
            raise ValueError(msg)
        if path == ":memory:":
            msg = "In-memory databases cannot be shared across worker threads; use a file path"
            raise ValueError(msg)
        return path

    @field_validator("operation_timeout", mode="before")
    @classmethod
    def _validate_timeout(cls, value: Any) -> float:
        if value in (None, ""):
            return 30.0
        try:
            parsed = float(str(value))
        except ValueError as exc:
            msg = "Database operation timeout must be a valid number"
            raise ValueError(msg) from exc
        if parsed <= 0:
            msg = "Database operation timeout must be positive"
            raise ValueError(msg)
        if parsed > 3600:
            msg = "Database operation timeout must be 3600 seconds or less"
            raise ValueError(msg)
        return parsed

    @field_validator("max_retries", mode="before")
    @classmethod
    def _validate_retries(cls, value: Any, info: ValidationInfo) -> int:
        if value in (None, ""):
            return int(cls.model_fields[info.field_name].default)
        try:
            parsed = int(str(value))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a valid integer"
            raise ValueError(msg) from exc
        if parsed < 0 or parsed > 10:
            msg = "Database max retries must be between 0 and 10"
            raise ValueError(msg)
        return parsed
