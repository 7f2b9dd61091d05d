from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RemoteConfig(BaseModel):
    """Connection settings for the remote table API."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    api_url: str = Field(default="", validation_alias="REMOTE_API_URL")
    api_key: str = Field(default="", validation_alias="REMOTE_API_KEY")
    timeout_sec: float = Field(default=30.0, validation_alias="REMOTE_TIMEOUT_SEC")

    @field_validator("api_url", mode="before")
    @classmethod
    def _validate_url(cls, value: Any) -> str:
        url = str(value or "").strip()
        if url and not url.startswith(("http://", "https://")):
            msg = "Remote API URL must start with http:// or https://"
            raise ValueError(msg)
        return url.rstrip("/")

    @field_validator("api_key", mode="before")
    @classmethod
    def _validate_key(cls, value: Any) -> str:
        key = str(value or "").strip()
        if len(key) > 2000:
            msg = "Remote API key appears to be too long"
            raise ValueError(msg)
        return key

    @field_validator("timeout_sec", mode="before")
    @classmethod
    def _validate_timeout(cls, value: Any) -> float:
        try:
            parsed = float(str(value if value not in (None, "") else 30.0))
        except ValueError as exc:
            msg = "Remote timeout must be a valid number"
            raise ValueError(msg) from exc
        if parsed <= 0 or parsed > 600:
            msg = "Remote timeout must be between 0 and 600 seconds"
            raise ValueError(msg)
        return parsed

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url)
