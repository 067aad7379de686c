"""
Tool registry: version-gated registration and the tools/call boundary.

One registry serves one MCP session. It owns the backend client, the version
resolver (and its cache) and the usage tracker, so sessions never share
mutable state.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import requests
from pydantic import ValidationError

from insforge_mcp.backend.client import BackendClient
from insforge_mcp.backend.usage import UsageTracker
from insforge_mcp.backend.version import (
    TOOL_VERSION_REQUIREMENTS,
    VersionCache,
    VersionRequirement,
    VersionResolver,
    compare_versions,
    skip_reason,
)
from insforge_mcp.core.config import McpConfig
from insforge_mcp.core.errors import (
    ConfigError,
    DuplicateToolError,
    InsForgeError,
    ToolArgumentsError,
    VersionIncompatible,
)

from .definitions import (
    DESTRUCTIVE_TOOLS,
    IDEMPOTENT_TOOLS,
    READ_ONLY_TOOLS,
    TOOL_SPECS,
    ToolSpec,
)
from .handlers import fetch_documentation, text_result
from .protocol import JSON_SCHEMA_2020_12

logger = logging.getLogger("InsForge.mcp.registry")

MISSING_API_KEY_MESSAGE = "API key is required. Pass --api_key when starting the MCP server."
LEGACY_CONTEXT_BANNER = "\n\n---\n🔧 INSFORGE DEVELOPMENT RULES (Auto-loaded):\n"


@dataclass(frozen=True)
class RegistrationSummary:
    tool_count: int
    backend_version: str
    api_key: str
    api_base_url: str


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ())) or "arguments"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


class ToolRegistry:
    def __init__(
        self,
        config: McpConfig,
        *,
        client: Optional[BackendClient] = None,
        http_session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        tool_specs: Iterable[ToolSpec] = TOOL_SPECS,
        requirements: Mapping[str, VersionRequirement] = TOOL_VERSION_REQUIREMENTS,
        tracker: Optional[UsageTracker] = None,
    ):
        self.config = config
        self.client = client or BackendClient(
            config.backend.api_base_url,
            api_key=config.backend.api_key,
            timeout=config.backend.request_timeout,
            session=http_session,
        )
        self.resolver = VersionResolver(
            self.client,
            VersionCache(config.registry.version_cache_ttl_seconds, clock=clock),
        )
        # Separate session for the usage worker thread.
        self._usage_client = BackendClient(
            self.client.base_url,
            api_key=config.backend.api_key,
            timeout=config.backend.request_timeout,
            session=http_session,
        )
        self.tracker = tracker or UsageTracker(
            self._usage_client,
            config.backend.api_key,
            enabled=config.registry.usage_tracking_enabled,
            max_queue_size=config.registry.usage_queue_size,
        )
        self.tool_specs = tuple(tool_specs)
        self.requirements = requirements
        self.backend_version: Optional[str] = None
        self._tools: Dict[str, ToolSpec] = {}

    # --- registration ---------------------------------------------------------

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise DuplicateToolError(f"Tool '{spec.name}' is already registered")
        self._tools[spec.name] = spec

    def register_all(self) -> RegistrationSummary:
        """
        Resolve the backend version once and register every eligible tool.

        Raises BackendUnreachable when the health probe fails; the caller
        decides whether that is fatal. Skipped tools are invisible to the
        client and only reported on the operator log.
        """
        seen = set()
        for spec in self.tool_specs:
            if spec.name in seen:
                raise DuplicateToolError(f"Tool '{spec.name}' is declared more than once")
            seen.add(spec.name)

        self._tools.clear()
        version = self.resolver.resolve()
        self.backend_version = version
        logger.info("Backend version: %s", version)

        for spec in self.tool_specs:
            reason = skip_reason(spec.name, version, self.requirements)
            if reason:
                logger.info("Skipping tool '%s': %s (current: %s)", spec.name, reason, version)
                continue
            self.register(spec)

        return RegistrationSummary(
            tool_count=len(self._tools),
            backend_version=version,
            api_key=self.config.backend.api_key,
            api_base_url=self.client.base_url,
        )

    @property
    def tool_names(self) -> List[str]:
        return list(self._tools)

    def list_tools(self) -> List[Dict[str, Any]]:
        tools = []
        for name, spec in self._tools.items():
            schema = spec.arguments.model_json_schema()
            schema.setdefault("type", "object")
            schema.setdefault("properties", {})
            schema["$schema"] = JSON_SCHEMA_2020_12
            read_only = name in READ_ONLY_TOOLS
            tools.append({
                "name": name,
                "description": spec.description,
                "inputSchema": schema,
                "annotations": {
                    "readOnlyHint": read_only,
                    "destructiveHint": name in DESTRUCTIVE_TOOLS,
                    "idempotentHint": name in IDEMPOTENT_TOOLS or read_only,
                    "openWorldHint": True,
                },
            })
        return tools

    # --- context used by handlers --------------------------------------------

    def get_api_key(self, tool_api_key: Optional[str] = None) -> str:
        api_key = self.config.backend.api_key or tool_api_key
        if not api_key:
            raise ConfigError(MISSING_API_KEY_MESSAGE)
        return api_key

    def check_tool_version(self, tool_name: str) -> None:
        """Hard per-call gate for tools whose endpoints older backends lack."""
        requirement = self.requirements.get(tool_name)
        if requirement is None:
            return
        try:
            version = self.resolver.resolve()
        except InsForgeError as exc:
            raise VersionIncompatible(
                tool_name,
                f"Unable to verify backend version for '{tool_name}': {exc}. "
                "Please make sure your InsForge backend is running and up to date.",
                min_version=requirement.min_version,
                max_version=requirement.max_version,
            ) from exc

        reason = skip_reason(tool_name, version, self.requirements)
        if reason is None:
            return
        if requirement.min_version and compare_versions(version, requirement.min_version) < 0:
            advice = "Please upgrade your InsForge backend to use this tool."
        else:
            advice = "This tool is no longer supported by your InsForge backend."
        raise VersionIncompatible(
            tool_name,
            f"Tool '{tool_name}' {reason} (current: {version}). {advice}",
            current_version=version,
            min_version=requirement.min_version,
            max_version=requirement.max_version,
        )

    # --- invocation -----------------------------------------------------------

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """
        Run one tool call and return its MCP result.

        Returns None for tools that are not registered. Raises
        ToolArgumentsError for arguments that do not match the schema; every
        other failure becomes an ``isError`` text result.
        """
        spec = self._tools.get(name)
        if spec is None:
            return None

        try:
            args = spec.arguments.model_validate(arguments or {})
        except ValidationError as exc:
            raise ToolArgumentsError(name, _format_validation_error(exc)) from exc

        try:
            output = self._run_tracked(spec, args)
        except InsForgeError as exc:
            logger.warning("Tool '%s' failed (%s): %s", name, exc.kind.value, exc)
            return text_result(f"Error {spec.error_label}: {exc}", is_error=True)
        except Exception as exc:
            logger.exception("Tool '%s' raised an unexpected error", name)
            return text_result(f"Error {spec.error_label}: {exc}", is_error=True)

        if isinstance(output, str):
            return self.add_background_context(text_result(output))
        return output

    def _run_tracked(self, spec: ToolSpec, args: Any) -> Any:
        try:
            output = spec.handler(self, args)
        except Exception:
            self.tracker.track(spec.name, False)
            raise
        self.tracker.track(spec.name, True)
        return output

    def add_background_context(self, result: Dict[str, Any]) -> Dict[str, Any]:
        """Append the instructions document for backends that predate fetch-docs."""
        if result.get("isError"):
            return result
        threshold = self.config.registry.legacy_context_max_version
        try:
            version = self.resolver.resolve()
            if compare_versions(version, threshold) >= 0:
                return result
            context = fetch_documentation(self, "instructions")
        except Exception as exc:
            logger.warning("Skipping legacy instructions context: %s", exc)
            return result

        content = result.get("content")
        if isinstance(content, list):
            content.append({"type": "text", "text": f"{LEGACY_CONTEXT_BANNER}{context}"})
        return result

    def close(self) -> None:
        self.tracker.close()
        self._usage_client.close()
        self.client.close()
