"""
CaneAID Telemetry Configuration
===============================

This module handles configuration loading for the telemetry client.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    CANEAID_SERVER_URL           -> link.url
    CANEAID_FALLBACK_URLS        -> link.fallback_urls (comma separated)
    CANEAID_CLIENT_ID            -> link.client_id
    CANEAID_AUTO_CONNECT         -> link.auto_connect
    CANEAID_CONNECT_TIMEOUT      -> reconnect.connect_timeout_seconds
    CANEAID_RECONNECT_ATTEMPTS   -> reconnect.max_attempts
    CANEAID_RECONNECT_BASE_DELAY -> reconnect.base_delay_seconds
    CANEAID_RECONNECT_MAX_DELAY  -> reconnect.max_delay_seconds
    CANEAID_HEARTBEAT_INTERVAL   -> reconnect.heartbeat_interval_seconds
    CANEAID_FRESHNESS_THRESHOLD  -> quality.freshness_threshold_seconds
    CANEAID_HISTORY_SIZE         -> history.max_samples
    CANEAID_API_PORT             -> server.port
    CANEAID_LOG_LEVEL            -> logging.level
    PORT                         -> server.port (container platforms)

Example:
    from caneaid.config import settings

    print(settings.link.url)
    print(settings.reconnect.delay_for(3))
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, model_validator


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class LinkConfig(BaseModel):
    """Bridge server connection configuration."""

    url: str = Field(
        default="ws://192.168.0.102:8765",
        description="WebSocket URL of the bridge server",
    )
    fallback_urls: List[str] = Field(
        default_factory=list,
        description="Alternative URLs tried in rotation while reconnecting",
    )
    client_id: str = Field(
        default="caneaid-client",
        description="Identifier sent in heartbeat frames",
    )
    auto_connect: bool = Field(
        default=True,
        description="Connect as soon as the client starts",
    )
    ping_interval_seconds: Optional[float] = Field(
        default=20.0,
        gt=0,
        description="WebSocket protocol ping interval (None disables pings)",
    )
    close_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Time allowed for the closing handshake",
    )


class ReconnectPolicy(BaseModel):
    """
    Reconnect and heartbeat timing.

    Constant for the lifetime of a connection manager. Delays grow
    exponentially from base_delay_seconds and are capped at
    max_delay_seconds.
    """

    base_delay_seconds: float = Field(
        default=3.0,
        gt=0,
        description="Delay before the first reconnect attempt",
    )
    max_delay_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound on the reconnect delay",
    )
    max_attempts: int = Field(
        default=5,
        ge=0,
        description="Reconnect attempts before giving up (0 = never reconnect)",
    )
    heartbeat_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Interval between outbound heartbeat frames",
    )
    connect_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Time allowed for the transport to open",
    )

    @model_validator(mode="after")
    def _check_delays(self) -> "ReconnectPolicy":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        return self

    def delay_for(self, attempt: int) -> float:
        """
        Backoff delay for the given 1-based reconnect attempt.

        delay(n) = clamp(base * 2^(n-1), base, max)
        """
        if attempt < 1:
            raise ValueError("attempt must be >= 1")

        # Exponent capped so huge attempt counts cannot overflow
        raw = self.base_delay_seconds * (2 ** min(attempt - 1, 32))
        return min(max(raw, self.base_delay_seconds), self.max_delay_seconds)


class QualityConfig(BaseModel):
    """Connection quality derivation."""

    freshness_threshold_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Maximum age of the last sample still considered live",
    )


class HistoryConfig(BaseModel):
    """In-memory sample window."""

    max_samples: int = Field(
        default=100,
        ge=1,
        description="Number of recent sensor records kept in memory",
    )


class ServerConfig(BaseModel):
    """HTTP API configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")
    stream_queue_size: int = Field(
        default=50,
        ge=1,
        description="Per-client queue size for WebSocket fan-out",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for the CaneAID telemetry client.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    link: LinkConfig = Field(default_factory=LinkConfig)
    reconnect: ReconnectPolicy = Field(default_factory=ReconnectPolicy)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.debug("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Link settings
    if env_url := os.environ.get("CANEAID_SERVER_URL"):
        config_data.setdefault("link", {})["url"] = env_url
    if env_fallback := os.environ.get("CANEAID_FALLBACK_URLS"):
        config_data.setdefault("link", {})["fallback_urls"] = [
            url.strip() for url in env_fallback.split(",") if url.strip()
        ]
    if env_client := os.environ.get("CANEAID_CLIENT_ID"):
        config_data.setdefault("link", {})["client_id"] = env_client
    if env_auto := os.environ.get("CANEAID_AUTO_CONNECT"):
        config_data.setdefault("link", {})["auto_connect"] = env_auto.lower() in ("1", "true", "yes")

    # Reconnect policy
    if env_timeout := os.environ.get("CANEAID_CONNECT_TIMEOUT"):
        config_data.setdefault("reconnect", {})["connect_timeout_seconds"] = float(env_timeout)
    if env_attempts := os.environ.get("CANEAID_RECONNECT_ATTEMPTS"):
        config_data.setdefault("reconnect", {})["max_attempts"] = int(env_attempts)
    if env_base := os.environ.get("CANEAID_RECONNECT_BASE_DELAY"):
        config_data.setdefault("reconnect", {})["base_delay_seconds"] = float(env_base)
    if env_max := os.environ.get("CANEAID_RECONNECT_MAX_DELAY"):
        config_data.setdefault("reconnect", {})["max_delay_seconds"] = float(env_max)
    if env_hb := os.environ.get("CANEAID_HEARTBEAT_INTERVAL"):
        config_data.setdefault("reconnect", {})["heartbeat_interval_seconds"] = float(env_hb)

    # Consumers
    if env_fresh := os.environ.get("CANEAID_FRESHNESS_THRESHOLD"):
        config_data.setdefault("quality", {})["freshness_threshold_seconds"] = float(env_fresh)
    if env_hist := os.environ.get("CANEAID_HISTORY_SIZE"):
        config_data.setdefault("history", {})["max_samples"] = int(env_hist)

    # Server settings (container platforms use PORT)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("CANEAID_API_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("CANEAID_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Default Settings Instance
# =============================================================================

# Loaded on import; the application passes it explicitly to the client it builds
settings = load_config()
setup_logging(settings)
