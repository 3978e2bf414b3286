"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars (and .env / .env.local
files, the latter taking precedence). Variable names are unprefixed so the
relay reads the same WEBSOCKET_* / REDIS_* settings as the rest of the
tournament deployment.

Learn: Two deployment profiles exist:
- resilient (default): a missing or unreachable broker is not fatal, the
  relay runs on the spool directory until Redis comes back.
- strict: broker configuration is mandatory and a failed initial connect
  stops the process with a non-zero exit status.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tourney_relay.errors import ConfigError


class Settings(BaseSettings):
    """All relay configuration."""

    # Server
    websocket_host: str = "0.0.0.0"
    websocket_port: int = 8081
    websocket_path: str = "/ws/tournaments"

    # Spool directory (fallback transport)
    websocket_events_dir: str = "var/websocket_events"
    spool_prefix: str = "tournament_"
    spool_suffix: str = ".json"
    spool_poll_interval: float = 0.5  # seconds between scans
    spool_grace_period: float = 0.05  # files younger than this may be mid-write

    # Redis (primary transport)
    redis_enabled: bool = True
    redis_url: str = ""  # overrides host/port when set
    redis_host: str = "127.0.0.1"
    redis_port: int = 6379
    redis_channel: str = "tournament_events"
    redis_retry_interval: float = 5.0  # backoff base
    redis_retry_max: float = 30.0  # backoff ceiling
    redis_health_check_interval: float = 10.0

    # Dispatch
    dispatch_queue_size: int = 1000
    broadcast_send_timeout: float = 5.0  # per-client send bound

    # Deployment profile
    relay_profile: Literal["resilient", "strict"] = "resilient"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def broker_url(self) -> Optional[str]:
        """Redis URL to connect to, or None when the broker is disabled."""
        if not self.redis_enabled:
            return None
        if self.redis_url:
            return self.redis_url
        if not self.redis_host:
            return None
        return f"redis://{self.redis_host}:{self.redis_port}/0"

    @property
    def strict(self) -> bool:
        return self.relay_profile == "strict"

    @model_validator(mode="after")
    def validate_profile(self):
        """Strict deployments must be able to reach a broker."""
        if self.strict and self.broker_url is None:
            raise ValueError(
                "RELAY_PROFILE=strict requires REDIS_ENABLED=true and "
                "REDIS_URL or REDIS_HOST to be set"
            )
        if self.redis_retry_interval <= 0 or self.redis_retry_max < self.redis_retry_interval:
            raise ValueError(
                "REDIS_RETRY_INTERVAL must be positive and not exceed REDIS_RETRY_MAX"
            )
        if self.spool_poll_interval <= 0:
            raise ValueError("SPOOL_POLL_INTERVAL must be positive")
        if self.broadcast_send_timeout <= 0:
            raise ValueError("BROADCAST_SEND_TIMEOUT must be positive")
        return self


def load_settings(**overrides) -> Settings:
    """Build Settings, turning validation failures into ConfigError."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigError(str(e)) from e


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, loaded on first use."""
    return load_settings()
