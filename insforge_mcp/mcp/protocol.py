"""
InsForge MCP Protocol Constants
"""

from typing import Optional

SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")
JSON_SCHEMA_2020_12 = "https://json-schema.org/draft/2020-12/schema"

SERVER_NAME = "insforge-mcp"

# Standard JSON-RPC / MCP Error Codes
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
PARSE_ERROR = -32700


def negotiate_protocol_version(version: Optional[str]) -> Optional[str]:
    if not version:
        return SUPPORTED_PROTOCOL_VERSIONS[0]
    if version in SUPPORTED_PROTOCOL_VERSIONS:
        return version
    return None
