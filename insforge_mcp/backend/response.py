"""
Backend response envelope handling.

InsForge endpoints answer with ``{success, data, error, meta, nextAction}``.
Older backends return the payload bare; those bodies are passed through.
"""

from __future__ import annotations

import json
from typing import Any

import requests

from insforge_mcp.core.errors import BackendRejected


def _json_text(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def unwrap(response: requests.Response) -> Any:
    """Return the payload of a backend response or raise `BackendRejected`."""
    try:
        body = response.json()
    except ValueError as exc:
        text = (response.text or "").strip() or response.reason or "Empty response body"
        raise BackendRejected(
            f"HTTP_{response.status_code}",
            text,
            status_code=response.status_code,
        ) from exc

    if not isinstance(body, dict) or "success" not in body:
        return body

    if body["success"]:
        return body.get("data")

    error = body.get("error")
    if not isinstance(error, dict):
        error = {}
    # details wins over message.
    message = error.get("details")
    if message is None or message == "":
        message = error.get("message")
    if message is None or message == "":
        message = "Unknown error"
    if not isinstance(message, str):
        message = json.dumps(message, ensure_ascii=False)

    raise BackendRejected(
        str(error.get("code") or "UNKNOWN_ERROR"),
        message,
        next_action=body.get("nextAction") or None,
        status_code=response.status_code,
        payload=body,
    )


def format_success_message(operation: str, data: Any) -> str:
    if isinstance(data, dict) and "message" in data:
        return f"{data['message']}\n{_json_text(data)}"
    return f"{operation} completed successfully:\n{_json_text(data)}"
