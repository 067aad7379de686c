"""
Streamable HTTP transport.

Each client gets its own MCP session (and tool registry) keyed by the
``Mcp-Session-Id`` header. Credentials come from the initialize request's
``Authorization: Bearer`` and ``X-Base-URL`` headers.
"""

import json
import logging
import threading
import time
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from insforge_mcp.core.config import McpConfig
from insforge_mcp.core.errors import InsForgeError
from insforge_mcp.mcp.protocol import PARSE_ERROR
from insforge_mcp.mcp.registry import ToolRegistry
from insforge_mcp.mcp.session import McpSession, rpc_error
from insforge_mcp.version import __version__

logger = logging.getLogger("InsForge.http")

SESSION_HEADER = "Mcp-Session-Id"

MISSING_AUTH_MESSAGE = "Missing required Authorization header. Expected: Authorization: Bearer <API_KEY>"
MISSING_BASE_URL_MESSAGE = "Missing required X-Base-URL header. Expected: X-Base-URL: <BACKEND_URL>"
SESSION_REQUIRED_MESSAGE = (
    "Session required. Send initialize request first or provide Mcp-Session-Id header."
)

RegistryFactory = Callable[[McpConfig], ToolRegistry]


def _is_initialize_request(payload: Any) -> bool:
    if isinstance(payload, dict):
        return payload.get("method") == "initialize"
    if isinstance(payload, list):
        return any(isinstance(item, dict) and item.get("method") == "initialize" for item in payload)
    return False


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return None


def _dispatch_collect(session: McpSession, payload: Any) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []
    session.dispatch_payload(payload, messages.append)
    return messages


class SessionStore:
    """
    Thread-safe map of live sessions.

    `get()` refreshes a session's last-seen time; `evict_idle()` removes
    sessions unseen for longer than `idle_ttl` seconds and hands them back
    for closing.
    """

    def __init__(self, idle_ttl: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.idle_ttl = idle_ttl
        self._clock = clock
        self._sessions: Dict[str, McpSession] = {}
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get(self, session_id: Optional[str]) -> Optional[McpSession]:
        if not session_id:
            return None
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._last_seen[session_id] = self._clock()
            return session

    def add(self, session: McpSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session
            self._last_seen[session.session_id] = self._clock()

    def pop(self, session_id: str) -> Optional[McpSession]:
        with self._lock:
            self._last_seen.pop(session_id, None)
            return self._sessions.pop(session_id, None)

    def evict_idle(self) -> List[McpSession]:
        if not self.idle_ttl:
            return []
        cutoff = self._clock() - self.idle_ttl
        with self._lock:
            expired = [sid for sid, seen in self._last_seen.items() if seen <= cutoff]
            for sid in expired:
                self._last_seen.pop(sid, None)
            return [self._sessions.pop(sid) for sid in expired if sid in self._sessions]

    def drain(self) -> List[McpSession]:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._last_seen.clear()
        return sessions


def create_app(
    config: Optional[McpConfig] = None,
    registry_factory: Optional[RegistryFactory] = None,
    clock: Callable[[], float] = time.monotonic,
) -> FastAPI:
    config = config or McpConfig.from_env()
    make_registry: RegistryFactory = registry_factory or ToolRegistry
    sessions = SessionStore(idle_ttl=config.http.session_idle_ttl_seconds, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("InsForge MCP HTTP server starting...")
        try:
            yield
        finally:
            logger.info("Shutting down InsForge MCP HTTP server...")
            for session in sessions.drain():
                try:
                    await run_in_threadpool(session.close)
                except Exception as exc:
                    logger.error("Error closing session %s: %s", session.session_id, exc)
            logger.info("InsForge MCP HTTP server stopped.")

    app = FastAPI(
        title="InsForge MCP Server",
        description="Model Context Protocol adapter for InsForge backends (Streamable HTTP)",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.sessions = sessions

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type", "Accept", "Authorization", "X-Base-URL", SESSION_HEADER, "Last-Event-ID",
        ],
        expose_headers=[SESSION_HEADER],
    )

    def _open_session(api_key: str, base_url: str) -> McpSession:
        registry = make_registry(config.with_overrides(api_key=api_key, api_base_url=base_url))
        try:
            summary = registry.register_all()
        except Exception:
            registry.close()
            raise
        session = McpSession(registry)
        logger.info(
            "Session %s registered %d tools against %s (backend %s)",
            session.session_id,
            summary.tool_count,
            summary.api_base_url,
            summary.backend_version,
        )
        return session

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok",
            "server": "insforge-mcp-streamable",
            "version": __version__,
            "protocol": "Streamable HTTP",
            "sessions": len(sessions),
            "authentication": "per-request via headers",
            "requiredHeaders": {
                "Authorization": "Bearer <API_KEY>",
                "X-Base-URL": "<BACKEND_URL> (e.g. http://localhost:7130)",
            },
        }

    @app.post("/mcp")
    async def handle_post(request: Request):
        for idle in sessions.evict_idle():
            logger.info("Closing idle session %s", idle.session_id)
            await run_in_threadpool(idle.close)

        session_id = request.headers.get(SESSION_HEADER)
        logger.debug("POST /mcp - Session: %s", session_id or "none")

        raw = await request.body()
        try:
            payload = json.loads(raw or b"null")
        except (UnicodeDecodeError, json.JSONDecodeError):
            return JSONResponse(rpc_error(None, PARSE_ERROR, "Parse error"), status_code=400)

        session = sessions.get(session_id)
        is_new = False
        if session is None:
            if not _is_initialize_request(payload):
                return JSONResponse({"error": SESSION_REQUIRED_MESSAGE}, status_code=400)
            api_key = _bearer_token(request)
            if not api_key:
                return JSONResponse({"error": MISSING_AUTH_MESSAGE}, status_code=401)
            base_url = request.headers.get("x-base-url")
            if not base_url:
                return JSONResponse({"error": MISSING_BASE_URL_MESSAGE}, status_code=400)
            try:
                session = await run_in_threadpool(_open_session, api_key, base_url)
            except ValueError as exc:
                return JSONResponse({"error": str(exc)}, status_code=400)
            except InsForgeError as exc:
                logger.warning("Session registration failed for %s: %s", base_url, exc)
                return JSONResponse({"error": f"Failed to register tools: {exc}"}, status_code=502)
            is_new = True

        messages = await run_in_threadpool(_dispatch_collect, session, payload)

        if is_new:
            if not session.negotiated:
                await run_in_threadpool(session.close)
                return JSONResponse(messages[0] if len(messages) == 1 else messages, status_code=400)
            sessions.add(session)
            logger.info("Session initialized: %s", session.session_id)

        headers = {SESSION_HEADER: session.session_id}
        if not messages:
            return Response(status_code=202, headers=headers)
        body = messages if isinstance(payload, list) else messages[0]
        return JSONResponse(body, headers=headers)

    @app.get("/mcp")
    async def handle_get(request: Request):
        session_id = request.headers.get(SESSION_HEADER)
        if sessions.get(session_id) is None:
            return JSONResponse(
                {"error": "Session not found. Initialize first with POST request."},
                status_code=404,
            )
        # No server-initiated stream is offered; responses come back on POST.
        return JSONResponse(
            {"error": "Server-sent event streams are not supported. Use POST /mcp."},
            status_code=405,
            headers={"Allow": "POST, DELETE"},
        )

    @app.delete("/mcp")
    async def handle_delete(request: Request):
        session_id = request.headers.get(SESSION_HEADER)
        session = sessions.pop(session_id) if session_id else None
        if session is None:
            return JSONResponse({"error": "Session not found."}, status_code=404)
        await run_in_threadpool(session.close)
        return JSONResponse({"status": "closed", "sessionId": session_id})

    return app


def run_server(config: McpConfig) -> None:
    app = create_app(config)
    logger.info(
        "Starting InsForge MCP HTTP server on http://%s:%d/mcp",
        config.http.host,
        config.http.port,
    )
    uvicorn.run(
        app,
        host=config.http.host,
        port=config.http.port,
        log_level=config.log.level.lower(),
    )
