"""
JSON-RPC dispatch for one MCP client session.

Transport-agnostic: every outbound message goes through the ``emit`` callback
the transport passes in. Messages for one session are handled one at a time.
"""

import time
import logging
import threading
import uuid
from typing import Any, Callable, Dict, Optional

from insforge_mcp.core.errors import ToolArgumentsError
from insforge_mcp.version import __version__

from .protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    SERVER_NAME,
    negotiate_protocol_version,
)

logger = logging.getLogger("InsForge.mcp.session")

Emit = Callable[[Dict[str, Any]], None]

NOT_INITIALIZED_MESSAGE = "Server not initialized. Send initialize then notifications/initialized."


def rpc_result(msg_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": msg_id, "result": result}


def rpc_error(msg_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": msg_id, "error": {"code": code, "message": message}}


class McpSession:
    def __init__(self, registry, session_id: Optional[str] = None):
        self.registry = registry
        self.session_id = session_id or uuid.uuid4().hex
        self.negotiated = False
        self.initialized = False
        self.protocol_version: Optional[str] = None
        self.client_info: Dict[str, Any] = {}
        self.closed = False
        self._lock = threading.Lock()

    def dispatch_payload(self, payload: Any, emit: Emit) -> None:
        """Dispatch a single message or a JSON-RPC batch."""
        if isinstance(payload, list):
            if not payload:
                emit(rpc_error(None, INVALID_REQUEST, "Invalid Request: empty batch"))
                return
            for item in payload:
                self.dispatch(item, emit)
            return
        self.dispatch(payload, emit)

    def dispatch(self, msg: Any, emit: Emit) -> None:
        if not isinstance(msg, dict):
            emit(rpc_error(None, INVALID_REQUEST, "Invalid Request: message must be an object"))
            return
        msg_id = msg.get("id")
        with self._lock:
            try:
                self._dispatch(msg, emit)
            except Exception:
                logger.exception("An unexpected error occurred during RPC dispatch.")
                if msg_id is not None:
                    emit(rpc_error(msg_id, INTERNAL_ERROR, "Internal error during request dispatch."))

    def _dispatch(self, msg: Dict[str, Any], emit: Emit) -> None:
        """
        Handle one parsed JSON-RPC message.

        Unknown request methods (with id) return -32601; unknown notifications
        (no id) are ignored. Tool methods require the initialized notification.
        """
        msg_id = msg.get("id")
        method = msg.get("method")
        params = msg.get("params")

        if not isinstance(method, str):
            if msg_id is not None:
                emit(rpc_error(msg_id, INVALID_REQUEST, "Invalid Request: missing method"))
            return

        if method == "initialize":
            if msg_id is None:
                logger.debug("Ignoring initialize notification without id")
                return
            self._handle_initialize(msg_id, {} if params is None else params, emit)
            return

        if method == "notifications/initialized":
            if self.negotiated:
                self.initialized = True
                logger.info("Client initialized session %s", self.session_id)
            else:
                logger.warning("Ignored notifications/initialized before successful initialize")
            return

        if method == "ping":
            if msg_id is not None:
                emit(rpc_result(msg_id, {}))
            return

        if method in ("tools/list", "tools/call"):
            if not self.initialized:
                if msg_id is not None:
                    emit(rpc_error(msg_id, INVALID_REQUEST, NOT_INITIALIZED_MESSAGE))
                return
            if msg_id is None:
                logger.debug("Ignoring %s notification without id", method)
                return
            validated = {} if params is None else params
            if not isinstance(validated, dict):
                emit(rpc_error(msg_id, INVALID_PARAMS, f"Invalid params: {method} params must be an object"))
                return
            if method == "tools/list":
                emit(rpc_result(msg_id, {"tools": self.registry.list_tools()}))
            else:
                self._handle_call_tool(msg_id, validated, emit)
            return

        if msg_id is not None:
            emit(rpc_error(msg_id, METHOD_NOT_FOUND, f"Method not found: {method}"))
        else:
            logger.debug("Ignoring unknown notification method: %s", method)

    def _handle_initialize(self, msg_id: Any, params: Any, emit: Emit) -> None:
        if not isinstance(params, dict):
            emit(rpc_error(msg_id, INVALID_PARAMS, "Invalid params: initialize params must be an object"))
            return

        requested = params.get("protocolVersion")
        negotiated = negotiate_protocol_version(requested)
        if not negotiated:
            emit(rpc_error(msg_id, INVALID_PARAMS, f"Unsupported protocol version {requested}"))
            return

        self.negotiated = True
        self.protocol_version = negotiated
        client_info = params.get("clientInfo")
        self.client_info = client_info if isinstance(client_info, dict) else {}
        logger.info(
            "Session %s negotiated protocol %s with client %s",
            self.session_id,
            negotiated,
            self.client_info.get("name", "unknown"),
        )

        emit(rpc_result(msg_id, {
            "protocolVersion": negotiated,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
            "instructions": self._instructions(),
        }))

    def _instructions(self) -> str:
        lines = [
            "InsForge MCP server. Tools act on the configured InsForge backend.",
            'Call fetch-docs with docType "instructions" before building on the backend.',
        ]
        version = getattr(self.registry, "backend_version", None)
        if version:
            lines.append(f"Backend version: {version}.")
        return "\n".join(lines)

    def _handle_call_tool(self, msg_id: Any, params: Dict[str, Any], emit: Emit) -> None:
        name = params.get("name")
        if not isinstance(name, str) or not name.strip():
            emit(rpc_error(msg_id, INVALID_PARAMS, "Invalid params: tools/call requires non-empty string name"))
            return
        name = name.strip()
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            emit(rpc_error(msg_id, INVALID_PARAMS, "Invalid params: tools/call arguments must be an object"))
            return

        started = time.monotonic()
        outcome = "error"
        try:
            result = self.registry.call_tool(name, arguments)
            if result is None:
                outcome = "not_found"
                emit(rpc_error(msg_id, METHOD_NOT_FOUND, f"Method not found: {name}"))
                return
            outcome = "tool_error" if result.get("isError") else "success"
            emit(rpc_result(msg_id, result))
        except ToolArgumentsError as exc:
            outcome = "invalid_params"
            emit(rpc_error(msg_id, INVALID_PARAMS, str(exc)))
        finally:
            elapsed_ms = (time.monotonic() - started) * 1000.0
            logger.info(
                "Tool call telemetry: name=%s id=%r outcome=%s elapsed_ms=%.1f",
                name, msg_id, outcome, elapsed_ms,
            )

    def close(self) -> None:
        """Tear down the session once in-flight work has finished."""
        with self._lock:
            if self.closed:
                return
            self.closed = True
        self.registry.close()
        logger.info("Session %s closed", self.session_id)
