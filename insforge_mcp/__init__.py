"""
InsForge MCP: drive an InsForge backend from MCP-capable agents.
"""

from insforge_mcp.core.config import McpConfig
from insforge_mcp.core.errors import (
    BackendRejected,
    BackendUnreachable,
    ConfigError,
    ErrorKind,
    InsForgeError,
    LocalIOError,
    VersionIncompatible,
)
from insforge_mcp.version import __version__

__all__ = [
    "__version__",
    "McpConfig",
    "ErrorKind",
    "InsForgeError",
    "ConfigError",
    "BackendUnreachable",
    "BackendRejected",
    "VersionIncompatible",
    "LocalIOError",
]
