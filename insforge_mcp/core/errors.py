"""
InsForge MCP exceptions.

Every failure a tool can hit maps onto one ErrorKind. Handlers raise these;
only the registry boundary turns them into text for the client.
"""

from __future__ import annotations

import enum
from typing import Any, Optional


class ErrorKind(str, enum.Enum):
    CONFIG = "config"
    BACKEND_UNREACHABLE = "backend_unreachable"
    BACKEND_REJECTED = "backend_rejected"
    VERSION_INCOMPATIBLE = "version_incompatible"
    LOCAL_IO = "local_io"


class InsForgeError(RuntimeError):
    """Base class for tool-level errors."""

    kind: ErrorKind = ErrorKind.CONFIG


class ConfigError(InsForgeError):
    """Raised when credentials or call inputs are missing or unusable."""

    kind = ErrorKind.CONFIG


class BackendUnreachable(InsForgeError):
    """Raised when a backend request cannot be completed."""

    kind = ErrorKind.BACKEND_UNREACHABLE

    def __init__(self, detail: str, *, url: Optional[str] = None) -> None:
        self.url = url
        super().__init__(detail)


class BackendRejected(InsForgeError):
    """Raised when the backend answers with a success=false envelope."""

    kind = ErrorKind.BACKEND_REJECTED

    def __init__(
        self,
        code: str,
        message: str,
        *,
        next_action: Optional[str] = None,
        status_code: Optional[int] = None,
        payload: Optional[Any] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.next_action = next_action
        self.status_code = status_code
        self.payload = payload
        text = f"[{code}] {message}"
        if next_action:
            text = f"{text}. {next_action}"
        super().__init__(text)


class VersionIncompatible(InsForgeError):
    """Raised when a tool is invoked against a backend outside its supported range."""

    kind = ErrorKind.VERSION_INCOMPATIBLE

    def __init__(
        self,
        tool_name: str,
        detail: str,
        *,
        current_version: Optional[str] = None,
        min_version: Optional[str] = None,
        max_version: Optional[str] = None,
    ) -> None:
        self.tool_name = tool_name
        self.current_version = current_version
        self.min_version = min_version
        self.max_version = max_version
        super().__init__(detail)


class LocalIOError(InsForgeError):
    """Raised when a local file or directory needed by a tool cannot be read."""

    kind = ErrorKind.LOCAL_IO

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        super().__init__(detail)


class DuplicateToolError(ValueError):
    """Raised at startup when two tool definitions share a name."""


class ToolArgumentsError(ValueError):
    """Raised when tools/call arguments do not match the tool's input schema."""

    def __init__(self, tool_name: str, detail: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Invalid arguments for tool '{tool_name}': {detail}")
