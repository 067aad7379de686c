"""
Backend HTTP plumbing: client, envelope normalization, version gating, usage.
"""

from insforge_mcp.backend.client import BackendClient
from insforge_mcp.backend.response import format_success_message, unwrap
from insforge_mcp.backend.usage import UsageEvent, UsageTracker
from insforge_mcp.backend.version import VersionCache, VersionResolver, compare_versions

__all__ = [
    "BackendClient",
    "UsageEvent",
    "UsageTracker",
    "VersionCache",
    "VersionResolver",
    "compare_versions",
    "format_success_message",
    "unwrap",
]
