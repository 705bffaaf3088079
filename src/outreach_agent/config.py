"""Typed settings for the dispatcher, loaded through Dynaconf."""

from __future__ import annotations

import os
import socket
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Async SQLAlchemy engine options."""

    url: str = "sqlite+aiosqlite:///data/outreach_agent.db"
    echo: bool = False


class SchedulerSettings(BaseModel):
    """Dispatch loop configuration."""

    reminders_enabled: bool = True
    campaigns_enabled: bool = True

    # Reminder loop: every minute, first tick shortly after startup
    reminder_interval_seconds: float = 60.0
    reminder_startup_delay_seconds: float = 5.0

    # Campaign loop: every five minutes
    campaign_interval_seconds: float = 300.0
    campaign_startup_delay_seconds: float = 10.0

    # Candidate scan window around "now" for reminders
    reminder_lookback_minutes: int = 60
    reminder_lookahead_hours: int = 24

    default_timezone: str = "America/Los_Angeles"

    # Graceful stop
    stop_timeout_seconds: float = 30.0


class CallControlSettings(BaseModel):
    """Call-control REST provider (announce-and-gather path)."""

    api_url: str = "https://api.telnyx.com/v2"
    api_key: str = ""
    connection_id: str = ""
    from_number: str = ""
    voice: str = "female"
    language: str = "en-US"
    answering_machine_detection: bool = True
    timeout_seconds: float = 15.0


class RoomSettings(BaseModel):
    """Room/agent provider (conversational path)."""

    url: str = ""
    api_key: str = ""
    api_secret: str = ""
    sip_trunk_id: str = ""
    agent_name: str = "outreach-agent"
    timeout_seconds: float = 15.0

    @property
    def configured(self) -> bool:
        """Whether every credential needed for dispatch is present."""
        return bool(self.url and self.api_key and self.api_secret and self.sip_trunk_id)


class WebhookSettings(BaseModel):
    """How inbound call events are authenticated."""

    validate_signatures: bool = True
    # Base64 Ed25519 public key published by the call-control provider
    public_key: str = ""
    # Optional shared secret for HMAC-signed relays
    hmac_secret: str = ""
    timestamp_tolerance_seconds: int = 300


class TelephonySettings(BaseModel):
    """Which voice provider dials, and its credentials."""

    # call_control | rooms
    provider: str = "call_control"
    call_control: CallControlSettings = Field(default_factory=CallControlSettings)
    rooms: RoomSettings = Field(default_factory=RoomSettings)
    webhooks: WebhookSettings = Field(default_factory=WebhookSettings)


class ConversationSettings(BaseModel):
    """Realtime conversation and transcript analysis."""

    enabled: bool = False

    gemini_api_key: str = ""
    gemini_model: str = "models/gemini-2.0-flash-live-001"
    gemini_ws_url: str = (
        "wss://generativelanguage.googleapis.com/ws/"
        "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
    )
    voice: str = "Aoede"
    connect_timeout_seconds: float = 10.0

    groq_api_key: str = ""
    groq_model: str = "llama-3.3-70b-versatile"


class Settings(BaseSettings):
    """Root settings object; see get_settings for how sources are layered."""

    model_config = SettingsConfigDict(
        env_prefix="OUTREACH_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    instance_id: str = ""

    environment: str = "development"
    debug: bool = True

    log_level: str = "INFO"
    log_json: bool = False

    # HTTP listener
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Public base URLs handed to providers for callbacks and media streams
    api_url: str = "http://localhost:8080"
    ws_url: str = "ws://localhost:8080"

    # Shared secret for agent callbacks (empty disables the check)
    internal_api_key: str = ""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    telephony: TelephonySettings = Field(default_factory=TelephonySettings)
    conversation: ConversationSettings = Field(default_factory=ConversationSettings)

    @property
    def call_events_url(self) -> str:
        """Webhook URL handed to the call-control provider on dial."""
        return f"{self.api_url.rstrip('/')}/api/webhooks/call-events"

    @property
    def media_stream_url(self) -> str:
        """Websocket URL the provider streams call audio to."""
        return f"{self.ws_url.rstrip('/')}/media-stream"


CONFIG_DIR = Path("configs")
PRODUCTION_ENVIRONMENTS = frozenset({"production", "staging", "prod"})


def _lower_keys(value: Any) -> Any:
    """Dynaconf upper-cases keys from env overrides; pydantic wants them lower."""
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


@lru_cache
def get_settings() -> Settings:
    """Settings merged from configs/default.yaml, configs/<env>.yaml and
    ``OUTREACH_*`` environment variables, later sources winning.

    The environment name comes from ``OUTREACH_ENV``. Cached for the
    process; tests clear it with ``get_settings.cache_clear()``.
    """
    from dynaconf import Dynaconf

    env = os.getenv("OUTREACH_ENV", "development")
    layers = [CONFIG_DIR / "default.yaml", CONFIG_DIR / f"{env}.yaml"]

    loaded = Dynaconf(
        envvar_prefix="OUTREACH",
        settings_files=[str(path) for path in layers if path.exists()],
        load_dotenv=True,
    )
    values: dict[str, Any] = {
        key.lower(): _lower_keys(loaded[key]) for key in loaded.keys() if not key.startswith("_")
    }
    values["environment"] = env
    # Distinguishes dispatcher processes in logs and claim records
    values["instance_id"] = values.get("instance_id") or f"{socket.gethostname()}-{os.getpid()}"
    return Settings(**values)


def validate_production_settings(settings: Settings) -> list[str]:
    """Problems that must block a production or staging start.

    Returns an empty list outside those environments.
    """
    if settings.environment not in PRODUCTION_ENVIRONMENTS:
        return []

    problems: list[str] = []
    telephony = settings.telephony
    webhooks = telephony.webhooks

    if not settings.internal_api_key:
        problems.append("OUTREACH_INTERNAL_API_KEY must be set in production")
    if webhooks.validate_signatures and not (webhooks.public_key or webhooks.hmac_secret):
        problems.append(
            "OUTREACH_TELEPHONY__WEBHOOKS__PUBLIC_KEY must be set when signatures are validated"
        )

    if telephony.provider == "call_control":
        missing = [
            name
            for name, value in (
                ("API_KEY", telephony.call_control.api_key),
                ("CONNECTION_ID", telephony.call_control.connection_id),
            )
            if not value
        ]
        problems.extend(f"OUTREACH_TELEPHONY__CALL_CONTROL__{name} must be set" for name in missing)
    elif telephony.provider == "rooms":
        if not telephony.rooms.configured:
            problems.append(
                "OUTREACH_TELEPHONY__ROOMS__{URL,API_KEY,API_SECRET,SIP_TRUNK_ID} must be set"
            )
    else:
        problems.append(f"Unknown telephony provider: {telephony.provider}")

    if settings.conversation.enabled and not settings.conversation.gemini_api_key:
        problems.append(
            "OUTREACH_CONVERSATION__GEMINI_API_KEY must be set when conversation is enabled"
        )
    return problems


def require_valid_settings() -> Settings:
    """Return the settings, or raise ValueError listing every production problem."""
    settings = get_settings()
    problems = validate_production_settings(settings)
    if problems:
        bullet = "\n  - "
        raise ValueError(f"Production configuration errors:{bullet}{bullet.join(problems)}")
    return settings
