"""Shared stubs for InsForge MCP tests."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Tuple
from urllib.parse import urlparse

import pytest
import requests

from insforge_mcp.core.config import BackendConfig, McpConfig, RegistryConfig

BASE_URL = "http://backend.test"


def requests_response(status_code: int, payload: Any, url: str = BASE_URL) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    if isinstance(payload, (dict, list)):
        raw = json.dumps(payload).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    else:
        raw = str(payload).encode("utf-8")
        response.headers["Content-Type"] = "text/plain"
    response._content = raw
    response.url = url
    return response


def health_response(version: str) -> requests.Response:
    return requests_response(
        200,
        {"status": "ok", "version": version, "service": "insforge", "timestamp": "2026-01-01T00:00:00Z"},
    )


def envelope(data: Any) -> Dict[str, Any]:
    return {"success": True, "data": data}


class StubSession:
    """
    Stand-in for `requests.Session` keyed by (METHOD, path).

    A mapped value may be a response, an exception to raise, or a list of
    either consumed in order (the last entry repeats).
    """

    def __init__(self, mapping: Dict[Tuple[str, str], Any]):
        self.mapping = dict(mapping)
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def request(
        self,
        *,
        method: str,
        url: str,
        headers: Any = None,
        json: Any = None,
        params: Any = None,
        data: Any = None,
        files: Any = None,
        timeout: Any = None,
    ):
        parsed = urlparse(url)
        key = (method.upper(), parsed.path)
        self.calls.append(
            {
                "method": method.upper(),
                "url": url,
                "host": parsed.netloc,
                "path": parsed.path,
                "headers": dict(headers or {}),
                "json": json,
                "params": params,
                "data": data,
                "files": files,
                "timeout": timeout,
            }
        )
        if key not in self.mapping:
            raise AssertionError(f"unexpected request {key}")
        result = self.mapping[key]
        if isinstance(result, list):
            result = result.pop(0) if len(result) > 1 else result[0]
        if isinstance(result, Exception):
            raise result
        return result

    def calls_to(self, method: str, path: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method and c["path"] == path]

    def close(self) -> None:
        self.closed = True


def make_config(api_key: str = "ik_test", **registry: Any) -> McpConfig:
    registry.setdefault("usage_tracking_enabled", False)
    return McpConfig(
        backend=BackendConfig(api_key=api_key, api_base_url=BASE_URL, request_timeout=5.0),
        registry=RegistryConfig(**registry),
    )


@pytest.fixture
def config() -> McpConfig:
    return make_config()
