"""
Configuration management for the pinrelay service.

Loads configuration from environment variables and .env file.
"""

import logging
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class RelayConfig(BaseSettings):
    """Configuration settings for the relay."""

    # Data directories
    data_dir: Path = Field(
        default=Path.home() / ".pinrelay",
        description="Base directory for all relay data"
    )
    state_dir: Optional[Path] = Field(None, description="Directory for per-stream state")
    telemetry_file: Optional[Path] = Field(None, description="JSONL file for telemetry records")

    # Routing
    routes_config_path: Optional[Path] = Field(None, description="Path to routes YAML")
    topic_mobile: str = Field("", description="Forum topic for the mobile-app stream")
    topic_forum: str = Field("", description="Forum topic for the forum-polish stream")

    # Inbound endpoint
    inbound_token: Optional[str] = Field(None, description="Shared secret expected from webhook callers")

    # Telegram Configuration
    telegram_bot_token: Optional[str] = Field(None, description="Telegram bot token")
    telegram_chat_id: Optional[str] = Field(None, description="Forum supergroup chat ID")
    telegram_base_url: str = Field("https://api.telegram.org", description="Telegram Bot API base URL")

    # Gateway behaviour
    gateway_timeout: float = Field(10.0, gt=0, description="Timeout per Telegram call in seconds")
    gateway_retry: int = Field(3, ge=0, description="Retries for transient Telegram failures")
    gateway_backoff_base: float = Field(0.5, ge=0, description="First backoff delay in seconds")
    gateway_backoff_max: float = Field(8.0, ge=0, description="Upper bound for a backoff delay")
    pin_retries: int = Field(1, ge=0, description="Compensating re-pin attempts after a failed pin")
    step_timeout: float = Field(60.0, gt=0, description="Bound on one gateway step, retries included")

    # State store
    store_timeout: float = Field(5.0, gt=0, description="Timeout per state store call in seconds")

    # Telemetry / rollback monitor
    deployment_version: str = Field("dev", description="Version tag attached to telemetry")
    rollback_p99_threshold_ms: float = Field(500.0, gt=0, description="p99 latency that signals rollback")
    rollback_window_hours: float = Field(24.0, gt=0, description="Rolling window for the p99")
    rollback_min_samples: int = Field(20, ge=1, description="Samples required before signalling")

    # Logging
    log_level: str = Field("INFO", description="Root log level")

    model_config = {
        "env_prefix": "PINRELAY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    def model_post_init(self, __context) -> None:
        """Initialize derived paths after loading config."""
        if self.state_dir is None:
            self.state_dir = self.data_dir / "state"
        if self.telemetry_file is None:
            self.telemetry_file = self.data_dir / "telemetry" / "events.jsonl"
        if self.routes_config_path is None:
            self.routes_config_path = self.data_dir / "config" / "routes.yaml"

    def ensure_directories(self) -> None:
        """Create all necessary directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.telemetry_file.parent.mkdir(parents=True, exist_ok=True)
        self.routes_config_path.parent.mkdir(parents=True, exist_ok=True)

    def redacted(self) -> dict:
        """Config dump safe for logs."""
        data = self.model_dump(mode="json")
        for secret in ("telegram_bot_token", "inbound_token"):
            if data.get(secret):
                data[secret] = "***"
        return data


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # httpx logs every request at INFO, including the bot token in the URL
    logging.getLogger("httpx").setLevel(logging.WARNING)


# Global config instance - loaded from environment
config = RelayConfig()
