"""Configuration schema using Pydantic.

Single data model with defaults for both ends of the bridge, persisted to
~/.lcapbridge/config.json.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings

from lcapbridge.host.context import origin_of
from lcapbridge.protocol import DEFAULT_ROOT


class ClientConfig(BaseModel):
    """Client bridge settings (the tab that opens the platform popup)."""
    platform_url: str = ""  # Any page on the platform origin; it only has to load the listener
    target_origin: str = ""  # Exact origin of the platform, e.g. "https://platform.example.com"
    window_name: str = "lcap-dev-bridge"  # Stable name so reloads can reattach to the same popup
    timeout_mins: float = 60.0  # Remote operations may be long-running
    auto_attach: bool = True
    default_root: str = DEFAULT_ROOT  # Root reported for bare (undotted) names
    hello_interval_ms: int = 400
    hello_burst_ms: int = 5000
    mode: Literal["bridge", "local"] = "bridge"  # local: call the function table in-process

    def resolve_target_origin(self) -> str:
        """Exact platform origin: ``target_origin``, else the origin of ``platform_url``."""
        if self.target_origin:
            return self.target_origin
        origin = origin_of(self.platform_url)
        if origin == "null":
            raise ValueError("client.targetOrigin or client.platformUrl must be set to the platform origin")
        return origin


class ServerConfig(BaseModel):
    """Listener settings for the privileged context."""
    trusted_origin: str = "http://localhost:3000"  # MUST match the client app origin exactly
    allowed_roots: list[str] = Field(
        default_factory=lambda: [DEFAULT_ROOT, "rbf_getViewPage", "getColumnsBySectionName"]
    )

    @field_validator("allowed_roots")
    @classmethod
    def _strip_roots(cls, value: list[str]) -> list[str]:
        return [root.strip() for root in value if root and root.strip()]


class ReadinessConfig(BaseModel):
    """Handshake wait budgets."""
    connect_timeout_ms: int = 15000
    silent_timeout_ms: int = 1200  # Short probe on reload when the tab was already connected


class CallbackConfig(BaseModel):
    """Client-side callback registry lifecycle."""
    max_entries: int = 1024
    ttl_seconds: float | None = None  # None keeps registrations until evicted


class RelayConfig(BaseModel):
    """Websocket relay hub."""
    host: str = "127.0.0.1"
    port: int = 8765
    url: str = "ws://127.0.0.1:8765"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: bool = False  # Also write ~/.lcapbridge/logs/<command>.log


class BridgeConfig(BaseSettings):
    """Root configuration for lcapbridge."""
    client: ClientConfig = Field(default_factory=ClientConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)
    callbacks: CallbackConfig = Field(default_factory=CallbackConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(
        env_prefix="LCAP_",
        env_nested_delimiter="__"
    )
