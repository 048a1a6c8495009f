"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    log_level: str = Field(default="INFO")

    # Realtime agent platform
    openai_api_key: str | None = Field(default=None)
    openai_base_url: str = Field(default="https://api.openai.com/v1")
    openai_realtime_ws_url: str = Field(default="wss://api.openai.com/v1/realtime")
    openai_realtime_model: str = Field(default="gpt-realtime")
    realtime_prompt_id: str = Field(
        default="pmpt_68da7434aefc8195aec2c1e07cfc24a7053b8ea30d848663",
        description="Stored prompt pinned to the deployed agent behaviour.",
    )
    realtime_prompt_version: str = Field(default="18")
    realtime_transcription_model: str = Field(default="whisper-1")
    session_timeout_seconds: float = Field(default=10.0, gt=0)

    # Server VAD. Telephony uses a shorter trailing silence to keep barge-in snappy.
    vad_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    vad_prefix_padding_ms: int = Field(default=300, ge=0)
    telephony_silence_duration_ms: int = Field(default=200, ge=0)
    browser_silence_duration_ms: int = Field(default=400, ge=0)

    # SIP inbound webhook
    sip_enable_tools: bool = Field(
        default=False,
        description="If true, SIP-accepted calls also get the card activation tool.",
    )
    webhook_accept_timeout_seconds: float = Field(default=5.0, gt=0)

    # Bank card activation backend
    activation_api_url: str = Field(
        default="https://soatest.ubl.com.pk:7857/debitcardmanagementservice/v1/activation"
    )
    activation_channel: str = Field(default="IVR")
    activation_username: str = Field(default="voicebot")
    activation_password: str | None = Field(default=None, description="Base64-encoded password.")
    activation_auth_key: str | None = Field(default=None, description="Base64-encoded auth key.")
    activation_bic_code: str = Field(default="UNILPKKA")
    activation_country_code: str = Field(default="PAKISTAN")
    activation_pan_prefix: str = Field(default="540375", min_length=6, max_length=6)
    activation_timeout_seconds: float = Field(default=15.0, gt=0)
    activation_connect_retries: int = Field(
        default=1,
        ge=0,
        description="Retries when the backend could not be reached at all; never after a request was sent.",
    )

    # Call summaries
    summary_model: str = Field(default="gpt-4o-mini")

    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for Twilio webhooks (e.g. https://<tunnel>.trycloudflare.com).",
    )

    data_dir: Path = Field(default=Path("./data"))
    calls_dir: Path = Field(default=Path("./data/calls"))

    @field_validator("data_dir", "calls_dir")
    @classmethod
    def ensure_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
