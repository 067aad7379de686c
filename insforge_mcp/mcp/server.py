import sys
import json
import logging
import threading
from typing import Any, BinaryIO, Dict, Optional, TextIO

from .protocol import PARSE_ERROR
from .session import McpSession, rpc_error

logger = logging.getLogger("InsForge.mcp.server")

_UNPARSEABLE = object()


class StdioServer:
    """
    JSON-RPC over stdio for a single client session.

    Messages are dispatched in receipt order on the reading thread, so tool
    calls never overlap. stdout carries protocol output only.
    """

    def __init__(
        self,
        session: McpSession,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[TextIO] = None,
    ):
        self.session = session
        self.stdin = stdin if stdin is not None else sys.stdin.buffer
        self.stdout = stdout if stdout is not None else sys.stdout
        self.transport_closed = threading.Event()
        self.write_lock = threading.Lock()

    def send_rpc(self, message: Dict[str, Any]) -> None:
        """Serialize and send a JSON-RPC message to stdout."""
        if self.transport_closed.is_set():
            return
        try:
            serialized = json.dumps(message, ensure_ascii=False)
            with self.write_lock:
                if self.transport_closed.is_set():
                    return
                self.stdout.write(serialized + "\n")
                self.stdout.flush()
        except (BrokenPipeError, OSError) as exc:
            self.transport_closed.set()
            logger.warning("MCP stdio transport closed while sending: %s", exc)

    def serve_forever(self) -> None:
        logger.info("stdio transport ready")
        try:
            while not self.transport_closed.is_set():
                msg = self.read_message(self.stdin)
                if msg is None:
                    logger.info("stdin closed; stopping stdio transport")
                    break
                if msg is _UNPARSEABLE:
                    self.send_rpc(rpc_error(None, PARSE_ERROR, "Parse error"))
                    continue
                self.session.dispatch_payload(msg, self.send_rpc)
        finally:
            self.transport_closed.set()
            self.session.close()

    def read_message(self, stream: BinaryIO) -> Any:
        """
        Read one inbound JSON-RPC payload from a binary stream.

        Supports Content-Length framing and newline-delimited JSON. Returns
        None at end of stream.
        """
        while True:
            line = stream.readline()
            if not line:
                return None
            if not line.strip():
                continue

            if line.lower().startswith(b"content-length:"):
                try:
                    content_length = int(line.split(b":", 1)[1].strip())
                    if content_length <= 0:
                        raise ValueError("content length must be positive")
                except ValueError:
                    logger.warning("Invalid Content-Length header: %r", line)
                    if not self._consume_framing_headers(stream):
                        return None
                    continue

                if not self._consume_framing_headers(stream):
                    return None
                payload = stream.read(content_length)
                if not payload or len(payload) != content_length:
                    return None
                return self._decode(payload)

            return self._decode(line)

    def _decode(self, raw: bytes) -> Any:
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("Discarding unparseable message: %r", raw[:200])
            return _UNPARSEABLE

    def _consume_framing_headers(self, stream: BinaryIO) -> bool:
        while True:
            header_line = stream.readline()
            if not header_line:
                return False
            if header_line in (b"\r\n", b"\n"):
                return True
