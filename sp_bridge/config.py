"""Configuration loaded from the environment (.env supported)."""

__version__ = "0.1.0"

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from sp_bridge.errors import ConfigError

load_dotenv()

DEFAULT_SERVICE_URL = "https://bsky.social"
DEFAULT_COMMAND_PREFIX = "~"


def _require(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigError(f"{name} is not set")
    return value


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {value}")
    return value


@dataclass
class DiscordConfig:
    token: str = ""
    command_prefix: str = DEFAULT_COMMAND_PREFIX


@dataclass
class AtprotoConfig:
    service_url: str = DEFAULT_SERVICE_URL
    handle: str = ""
    app_password: str = ""
    session_ttl_seconds: int = 7200  # used when the access JWT carries no exp


@dataclass
class RetryConfig:
    max_attempts: int = 5
    base_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.1


@dataclass
class DispatchConfig:
    max_workers: int = 8
    shutdown_timeout: float = 10.0
    max_text_length: int = 300


@dataclass
class BridgeConfig:
    """Typed configuration for the whole bridge."""

    channel_mappings: str = ""
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    atproto: AtprotoConfig = field(default_factory=AtprotoConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Create BridgeConfig from environment variables.

        Raises ConfigError when a required variable is missing or a number
        does not parse.
        """
        return cls(
            channel_mappings=_require("CHANNEL_MAPPINGS"),
            discord=DiscordConfig(
                token=_require("DISCORD_TOKEN"),
                command_prefix=os.getenv("DISCORD_COMMAND_PREFIX", DEFAULT_COMMAND_PREFIX),
            ),
            atproto=AtprotoConfig(
                service_url=os.getenv("ATP_SERVICE_URL", DEFAULT_SERVICE_URL).strip().rstrip("/")
                or DEFAULT_SERVICE_URL,
                handle=_require("ATP_HANDLE"),
                app_password=_require("ATP_APP_PASSWORD"),
                session_ttl_seconds=_env_int("ATP_SESSION_TTL_SECONDS", 7200),
            ),
            retry=RetryConfig(
                max_attempts=_env_int("BRIDGE_MAX_ATTEMPTS", 5),
                base_delay=_env_float("BRIDGE_RETRY_BASE_SECONDS", 0.5),
                max_delay=_env_float("BRIDGE_RETRY_MAX_SECONDS", 30.0),
            ),
            dispatch=DispatchConfig(
                max_workers=_env_int("BRIDGE_MAX_WORKERS", 8),
                shutdown_timeout=_env_float("BRIDGE_SHUTDOWN_TIMEOUT", 10.0),
                max_text_length=_env_int("BRIDGE_MAX_TEXT_LENGTH", 300, minimum=20),
            ),
        )
