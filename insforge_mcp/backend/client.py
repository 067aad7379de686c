"""
HTTP client for the InsForge backend REST API.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote, urlparse

import requests

from insforge_mcp.core.config import DEFAULT_REQUEST_TIMEOUT_SEC
from insforge_mcp.core.errors import BackendUnreachable

logger = logging.getLogger("InsForge.backend.client")


def _normalize_base_url(base_url: str) -> str:
    value = base_url.rstrip("/")
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Invalid InsForge base URL: {base_url!r}")
    return value


def path_segment(value: Any) -> str:
    """Quote a caller-supplied value for use as a single URL path segment."""
    return quote(str(value), safe="")


class BackendClient:
    """
    Thin wrapper over a `requests.Session` bound to one backend.

    Every method raises `BackendUnreachable` when the request cannot be
    completed; HTTP status handling is left to the caller (see
    `insforge_mcp.backend.response.unwrap`). Requests are never retried.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SEC,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = _normalize_base_url(base_url)
        self.api_key = api_key
        self.timeout = timeout
        self._owns_session = session is None
        self._session = session or requests.Session()

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> "BackendClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def url(self, path: str) -> str:
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    def request(
        self,
        method: str,
        path: str,
        *,
        api_key: Optional[str] = None,
        json_body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        """Send one request to `<base_url><path>` with the API key header."""
        headers: Dict[str, str] = {}
        if api_key:
            headers["x-api-key"] = api_key
        if json_body is not None or (data is None and files is None and method.upper() != "GET"):
            headers["Content-Type"] = "application/json"
        return self._send(
            method,
            self.url(path),
            headers=headers,
            json_body=json_body,
            params=params,
            data=data,
            files=files,
            timeout=timeout,
        )

    def upload(
        self,
        url: str,
        *,
        data: Dict[str, Any],
        files: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> requests.Response:
        """POST a multipart form to an absolute (presigned) URL without credentials."""
        return self._send("POST", url, headers={}, data=data, files=files, timeout=timeout)

    def _send(
        self,
        method: str,
        url: str,
        *,
        headers: Dict[str, str],
        json_body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        logger.debug("%s %s", method.upper(), url)
        try:
            return self._session.request(
                method=method.upper(),
                url=url,
                headers=headers,
                json=json_body,
                params=params,
                data=data,
                files=files,
                timeout=timeout or self.timeout,
            )
        except requests.RequestException as exc:
            raise BackendUnreachable(
                f"Failed to reach InsForge backend at {self.base_url}: {exc}",
                url=url,
            ) from exc
