"""
InsForge MCP Configuration
--------------------------
Centralized configuration for the MCP adapter. Loads from environment
variables; command-line flags are applied on top via `with_overrides()`.
"""

import os
import logging
from typing import Optional
from pydantic import BaseModel, Field

logger = logging.getLogger("InsForge.Config")

DEFAULT_API_BASE_URL = "http://localhost:7130"
DEFAULT_REQUEST_TIMEOUT_SEC = 30.0
DEFAULT_VERSION_CACHE_TTL_SEC = 300.0
# Backends older than this do not ship the fetch-docs workflow, so tool
# responses get the instructions document appended.
DEFAULT_LEGACY_CONTEXT_VERSION = "1.1.7"
DEFAULT_USAGE_QUEUE_SIZE = 256
DEFAULT_HTTP_PORT = 3000
DEFAULT_SESSION_IDLE_TTL_SEC = 1800.0


def env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_positive_float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
        if value <= 0:
            raise ValueError
        return value
    except ValueError:
        logger.warning(
            "Invalid %s value '%s'; expected positive number. Using %s.",
            name,
            raw,
            default,
        )
        return default


def _parse_positive_int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
        if value <= 0:
            raise ValueError
        return value
    except ValueError:
        logger.warning(
            "Invalid %s value '%s'; expected positive integer. Using %d.",
            name,
            raw,
            default,
        )
        return default


class BackendConfig(BaseModel):
    """Target backend and credentials."""
    api_key: str = ""
    api_base_url: str = DEFAULT_API_BASE_URL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SEC


class RegistryConfig(BaseModel):
    """Tool registration, version gating and usage tracking."""
    version_cache_ttl_seconds: float = DEFAULT_VERSION_CACHE_TTL_SEC
    legacy_context_max_version: str = DEFAULT_LEGACY_CONTEXT_VERSION
    usage_tracking_enabled: bool = True
    usage_queue_size: int = DEFAULT_USAGE_QUEUE_SIZE


class HttpServerConfig(BaseModel):
    """Streamable HTTP transport configuration."""
    host: str = "127.0.0.1"
    port: int = DEFAULT_HTTP_PORT
    session_idle_ttl_seconds: float = DEFAULT_SESSION_IDLE_TTL_SEC


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[str] = None


class McpConfig(BaseModel):
    """Root configuration for the adapter."""
    backend: BackendConfig = Field(default_factory=BackendConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    http: HttpServerConfig = Field(default_factory=HttpServerConfig)
    log: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> "McpConfig":
        """
        Load configuration from environment variables.

        - API_KEY / API_BASE_URL: credentials and target backend
        - INSFORGE_MCP_REQUEST_TIMEOUT: seconds per backend request
        - INSFORGE_MCP_VERSION_CACHE_TTL: seconds a resolved backend version stays fresh
        - INSFORGE_MCP_LEGACY_CONTEXT_VERSION: backends below this get instructions appended
        - INSFORGE_MCP_USAGE_TRACKING / INSFORGE_MCP_USAGE_QUEUE_SIZE: usage reporting
        - INSFORGE_MCP_HTTP_HOST / INSFORGE_MCP_HTTP_PORT: HTTP transport binding
        - INSFORGE_MCP_SESSION_IDLE_TTL: seconds before an idle HTTP session is closed
        - INSFORGE_MCP_LOG_LEVEL / INSFORGE_MCP_LOG_FILE: operator log
        """
        return cls(
            backend=BackendConfig(
                api_key=os.environ.get("API_KEY", ""),
                api_base_url=os.environ.get("API_BASE_URL") or DEFAULT_API_BASE_URL,
                request_timeout=_parse_positive_float_env(
                    "INSFORGE_MCP_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SEC
                ),
            ),
            registry=RegistryConfig(
                version_cache_ttl_seconds=_parse_positive_float_env(
                    "INSFORGE_MCP_VERSION_CACHE_TTL", DEFAULT_VERSION_CACHE_TTL_SEC
                ),
                legacy_context_max_version=os.environ.get(
                    "INSFORGE_MCP_LEGACY_CONTEXT_VERSION", DEFAULT_LEGACY_CONTEXT_VERSION
                ),
                usage_tracking_enabled=env_flag("INSFORGE_MCP_USAGE_TRACKING", True),
                usage_queue_size=_parse_positive_int_env(
                    "INSFORGE_MCP_USAGE_QUEUE_SIZE", DEFAULT_USAGE_QUEUE_SIZE
                ),
            ),
            http=HttpServerConfig(
                host=os.environ.get("INSFORGE_MCP_HTTP_HOST", "127.0.0.1"),
                port=_parse_positive_int_env("INSFORGE_MCP_HTTP_PORT", DEFAULT_HTTP_PORT),
                session_idle_ttl_seconds=_parse_positive_float_env(
                    "INSFORGE_MCP_SESSION_IDLE_TTL", DEFAULT_SESSION_IDLE_TTL_SEC
                ),
            ),
            log=LoggingConfig(
                level=os.environ.get("INSFORGE_MCP_LOG_LEVEL", "INFO").upper(),
                file=os.environ.get("INSFORGE_MCP_LOG_FILE") or None,
            ),
        )

    def with_overrides(
        self,
        api_key: Optional[str] = None,
        api_base_url: Optional[str] = None,
    ) -> "McpConfig":
        """Return a copy with per-process or per-session credentials applied."""
        backend = self.backend.model_copy(
            update={
                k: v
                for k, v in (("api_key", api_key), ("api_base_url", api_base_url))
                if v
            }
        )
        return self.model_copy(update={"backend": backend})
