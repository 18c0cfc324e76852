"""Configuration management for the TrueNAS SDK.

``ClientConfig`` holds everything the client needs to reach and log in to an
appliance, plus the timing knobs of the session core. All durations are in
seconds. Validation runs when the config is built, so a missing host or API
key is reported before any connection is attempted.
"""

import os
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from .error import ConfigError


DEFAULT_SECURE_PORT = 443
DEFAULT_PLAIN_PORT = 80


class LogLevel(str, Enum):
    """Supported log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ClientConfig(BaseModel):
    """Connection, authentication and timing settings for a TrueNASClient."""

    # Endpoint
    host: str = Field(description="Appliance host name or address")
    api_key: str = Field(description="API key used to log in")
    port: Optional[int] = Field(default=None, ge=1, le=65535, description="Port override")
    secure: bool = Field(default=True, description="Use wss:// instead of ws://")
    verify_ssl: bool = Field(default=False, description="Verify the server certificate")
    path: str = Field(default="/websocket", description="Websocket endpoint path")

    # Timeouts
    request_timeout: float = Field(default=30.0, gt=0, description="Per-call deadline")
    auth_timeout: float = Field(default=10.0, gt=0, description="Login deadline")
    handshake_timeout: float = Field(default=10.0, gt=0, description="Opening handshake deadline")
    handshake_settle_delay: float = Field(default=1.0, ge=0, description="Max wait for the connected ack")
    fallback_auth_grace: float = Field(default=1.0, ge=0, description="Grace delay of the fallback login")

    # Reconnection
    max_reconnect_attempts: int = Field(default=5, ge=0, description="Background reconnect bound")
    reconnect_backoff: float = Field(default=2.0, ge=0, description="Reconnect delay per attempt")
    connect_retry_attempts: int = Field(default=3, ge=1, description="Ensure-ready connect bound")
    connect_retry_backoff: float = Field(default=1.0, ge=0, description="Ensure-ready delay per attempt")
    auto_connect: bool = Field(default=True, description="Operations connect on demand")

    # Resources
    vm_restart_settle_delay: float = Field(default=1.0, ge=0, description="Pause between VM stop and start")

    # Websocket
    ping_interval: Optional[float] = Field(default=20.0, gt=0, description="Keepalive ping interval")
    max_message_size: int = Field(default=16 * 1024 * 1024, gt=0, description="Inbound frame size cap")

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Require a bare, non-empty host."""
        v = v.strip()
        if not v:
            raise ValueError("host must not be empty")
        if "://" in v:
            raise ValueError("host must not include a scheme; use ClientConfig.from_url")
        return v

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Require a non-empty API key."""
        v = v.strip()
        if not v:
            raise ValueError("api_key must not be empty")
        return v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            v = "/" + v
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: Any) -> Any:
        """Normalize log level case."""
        if isinstance(v, str):
            return v.upper()
        return v

    @property
    def effective_port(self) -> int:
        """The explicit port, or the default for the chosen transport."""
        if self.port is not None:
            return self.port
        return DEFAULT_SECURE_PORT if self.secure else DEFAULT_PLAIN_PORT

    @property
    def url(self) -> str:
        """Websocket URL of the appliance endpoint."""
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.host}:{self.effective_port}{self.path}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientConfig":
        """Create configuration from a dictionary.

        Raises:
            ConfigError: If a required setting is missing or invalid
        """
        if data.get("url") and not data.get("host"):
            data = dict(data)
            url = data.pop("url")
            return cls.from_url(url, **data)
        try:
            return cls(**data)
        except ValidationError as e:
            missing = [err["loc"][0] for err in e.errors() if err["type"] == "missing"]
            if missing:
                raise ConfigError.missing_field(str(missing[0])) from e
            raise ConfigError("invalid client configuration", cause=e) from e

    @classmethod
    def from_url(cls, url: str, api_key: Optional[str] = None, **overrides: Any) -> "ClientConfig":
        """Create configuration from an appliance address.

        Accepts the forms users usually copy from a browser, for example
        ``https://nas.local:8443`` or ``http://192.168.1.100/api/v2.0``. The
        scheme selects ``secure`` and an explicit port is kept; any path is
        ignored since the websocket endpoint lives at ``/websocket``.

        Args:
            url: Appliance address, with or without scheme
            api_key: API key used to log in
            **overrides: Any other ClientConfig field

        Raises:
            ConfigError: If the address has no host or a setting is invalid
        """
        if "://" not in url:
            url = f"https://{url}"
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https", "ws", "wss"):
            raise ConfigError(f"unsupported scheme in {url!r}")

        try:
            port = parts.port
        except ValueError as e:
            raise ConfigError(f"invalid port in {url!r}", cause=e) from e
        if not parts.hostname:
            raise ConfigError.missing_field("host")

        data: Dict[str, Any] = {
            "host": parts.hostname,
            "secure": parts.scheme in ("https", "wss"),
        }
        if port is not None:
            data["port"] = port
        if api_key is not None:
            data["api_key"] = api_key
        data.update(overrides)
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "ClientConfig":
        """Create configuration from ``TRUENAS_*`` environment variables.

        Args:
            env_file: Optional dotenv file loaded first; real environment
                variables take precedence over its values.

        Raises:
            ConfigError: If a required variable is missing or invalid
        """
        if env_file:
            load_dotenv(env_file, override=False)

        data: Dict[str, Any] = {}
        host = get_env_var("TRUENAS_HOST")
        if host:
            data["host"] = host
        else:
            url = get_env_var("TRUENAS_URL")
            if url:
                data["url"] = url
        api_key = get_env_var("TRUENAS_API_KEY")
        if api_key:
            data["api_key"] = api_key

        port = get_env_var("TRUENAS_PORT")
        if port:
            try:
                data["port"] = int(port)
            except ValueError as e:
                raise ConfigError(f"TRUENAS_PORT is not a number: {port!r}", cause=e) from e

        if os.getenv("TRUENAS_SECURE") is not None:
            data["secure"] = get_env_bool("TRUENAS_SECURE", True)
        if os.getenv("TRUENAS_VERIFY_SSL") is not None:
            data["verify_ssl"] = get_env_bool("TRUENAS_VERIFY_SSL", False)
        log_level = get_env_var("TRUENAS_LOG_LEVEL")
        if log_level:
            data["log_level"] = log_level

        if "host" not in data and "url" not in data:
            raise ConfigError.missing_env_var("TRUENAS_HOST")
        if "api_key" not in data:
            raise ConfigError.missing_env_var("TRUENAS_API_KEY")
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary with the API key masked."""
        data = self.model_dump(mode="json")
        data["api_key"] = "[REDACTED]"
        return data


def get_env_var(name: str, default: Optional[str] = None) -> Optional[str]:
    """Get an environment variable, treating blank values as unset."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean environment variable.

    Args:
        name: Environment variable name
        default: Default value if not found

    Returns:
        Boolean value
    """
    value = os.getenv(name)
    if value is None:
        return default

    return value.strip().lower() in ("true", "1", "yes", "on")
