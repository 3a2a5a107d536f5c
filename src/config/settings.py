"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["local", "dev", "test", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")
    port: int = Field(default=3978)

    # Speech recognition / synthesis
    speech_provider: Literal["azure", "whisper"] = Field(default="azure")
    speech_service_key: str | None = Field(default=None)
    speech_service_region: str | None = Field(default=None)
    speech_language: str = Field(default="en-US")
    speech_voice_name: str = Field(default="en-US-JennyNeural")
    recognition_stop_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Upper bound on how long stop() waits for the engine to confirm shutdown.",
    )

    # Offline recognition
    whisper_model_size: str = Field(default="Systran/faster-whisper-small")
    whisper_compute_type: str = Field(default="auto")  # e.g. float16, int8_float16
    whisper_device: str = Field(default="auto")

    # Calling platform
    bot_callback_uri: str | None = Field(
        default=None,
        description="Public URL the platform posts call notifications to (…/api/calling/callback).",
    )
    graph_base_url: str = Field(default="https://graph.microsoft.com/v1.0")
    graph_timeout_seconds: float = Field(default=10.0, gt=0.0)
    media_subscription_path: str = Field(
        default="/communications/calls/{call_id}/subscribeToTone",
        description="Path template used by subscribe_to_media, relative to graph_base_url.",
    )
    subscribe_media_on_established: bool = Field(
        default=False,
        description="If true, an established call triggers a media subscription request.",
    )

    # Identity provider (OAuth2 client credentials)
    client_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("client_id", "MicrosoftAppId"),
    )
    client_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("client_secret", "MicrosoftAppPassword"),
    )
    identity_tenant_id: str | None = Field(
        default=None,
        description="Tenant used when a notification does not carry its own tenantId.",
    )
    login_base_url: str = Field(default="https://login.microsoftonline.com")
    token_scope: str = Field(default="https://graph.microsoft.com/.default")
    token_timeout_seconds: float = Field(default=10.0, gt=0.0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
