"""
Backend version discovery and tool version gating.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

from insforge_mcp.core.config import DEFAULT_VERSION_CACHE_TTL_SEC
from insforge_mcp.core.errors import BackendUnreachable

logger = logging.getLogger("InsForge.backend.version")


@dataclass(frozen=True)
class VersionRequirement:
    min_version: Optional[str] = None
    max_version: Optional[str] = None


TOOL_VERSION_REQUIREMENTS: Dict[str, VersionRequirement] = {
    "upsert-schedule": VersionRequirement(min_version="1.1.1"),
    "get-schedules": VersionRequirement(min_version="1.1.1"),
    "get-schedule-logs": VersionRequirement(min_version="1.1.1"),
    "delete-schedule": VersionRequirement(min_version="1.1.1"),
    "create-deployment": VersionRequirement(min_version="1.4.7"),
}


def _version_parts(version: str) -> list:
    value = version
    if value.startswith("v"):
        value = value[1:]
    value = value.split("-", 1)[0]
    parts = []
    for piece in value.split("."):
        try:
            parts.append(int(piece))
        except ValueError:
            parts.append(0)
    return parts


def compare_versions(a: str, b: str) -> int:
    """
    Compare two dotted version strings.

    A leading ``v`` and any ``-prerelease`` suffix are ignored; shorter
    versions are zero padded, so ``1.2`` equals ``1.2.0``.
    """
    left = _version_parts(a)
    right = _version_parts(b)
    width = max(len(left), len(right))
    left += [0] * (width - len(left))
    right += [0] * (width - len(right))
    for x, y in zip(left, right):
        if x != y:
            return 1 if x > y else -1
    return 0


def skip_reason(
    tool_name: str,
    backend_version: str,
    requirements: Mapping[str, VersionRequirement] = TOOL_VERSION_REQUIREMENTS,
) -> Optional[str]:
    """Why `tool_name` cannot run on `backend_version`, or None when it can."""
    requirement = requirements.get(tool_name)
    if requirement is None:
        return None
    if requirement.min_version and compare_versions(backend_version, requirement.min_version) < 0:
        return f"requires backend >= {requirement.min_version}"
    if requirement.max_version and compare_versions(backend_version, requirement.max_version) > 0:
        return f"deprecated after backend {requirement.max_version}"
    return None


def should_register_tool(
    tool_name: str,
    backend_version: str,
    requirements: Mapping[str, VersionRequirement] = TOOL_VERSION_REQUIREMENTS,
) -> bool:
    return skip_reason(tool_name, backend_version, requirements) is None


class VersionCache:
    """Single-slot memo of the last fetched backend version."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_VERSION_CACHE_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._version: Optional[str] = None
        self._fetched_at = 0.0

    def get(self) -> Optional[str]:
        with self._lock:
            if self._version is None:
                return None
            if self._clock() - self._fetched_at >= self.ttl_seconds:
                return None
            return self._version

    def put(self, version: str) -> None:
        with self._lock:
            self._version = version
            self._fetched_at = self._clock()

    def clear(self) -> None:
        with self._lock:
            self._version = None
            self._fetched_at = 0.0


class VersionResolver:
    """Resolves the backend version through ``GET /api/health``."""

    def __init__(self, client, cache: Optional[VersionCache] = None):
        self.client = client
        self.cache = cache or VersionCache()

    def resolve(self) -> str:
        cached = self.cache.get()
        if cached is not None:
            return cached

        response = self.client.request("GET", "/api/health")
        if not response.ok:
            raise BackendUnreachable(
                f"Health check failed with status {response.status_code}",
                url=self.client.url("/api/health"),
            )
        try:
            health = response.json()
        except ValueError as exc:
            raise BackendUnreachable(
                "Health check returned a non-JSON body",
                url=self.client.url("/api/health"),
            ) from exc
        version = health.get("version") if isinstance(health, dict) else None
        if not version:
            raise BackendUnreachable(
                "Health check response did not include a version",
                url=self.client.url("/api/health"),
            )

        version = str(version)
        # Concurrent first fetches may both write; they saw the same backend.
        self.cache.put(version)
        logger.debug("Resolved backend version %s", version)
        return version
