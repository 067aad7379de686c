"""
Best-effort tool usage reporting.

Events are queued and posted by a daemon thread so a tool result is never
held up by, or changed by, the usage endpoint.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("InsForge.backend.usage")

USAGE_PATH = "/api/usage/mcp"


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class UsageEvent:
    tool_name: str
    success: bool
    timestamp: str = field(default_factory=_utc_timestamp)

    def to_payload(self) -> dict:
        return {
            "tool_name": self.tool_name,
            "success": self.success,
            "timestamp": self.timestamp,
        }


class UsageTracker:
    """
    Fire-and-forget usage reporter.

    `track()` only enqueues. A full queue drops the event; a failed POST is
    logged and forgotten. Nothing is retried or persisted.
    """

    _STOP = object()

    def __init__(
        self,
        client,
        api_key: str = "",
        *,
        enabled: bool = True,
        max_queue_size: int = 256,
    ):
        self.client = client
        self.api_key = api_key
        self.enabled = bool(enabled and api_key)
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=max_queue_size)
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._closed = False

    def track(self, tool_name: str, success: bool) -> None:
        if not self.enabled or self._closed:
            return
        try:
            self._ensure_worker()
            self._queue.put_nowait(UsageEvent(tool_name=tool_name, success=success))
        except queue.Full:
            logger.debug("Usage queue full; dropping event for %s", tool_name)
        except Exception as exc:
            logger.debug("Usage tracking for %s not queued: %s", tool_name, exc)

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until queued events have been sent. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def close(self, timeout: float = 2.0) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            worker = self._worker
        if worker is None:
            return
        try:
            self._queue.put(self._STOP, timeout=timeout)
        except queue.Full:
            logger.debug("Usage queue full at shutdown; worker left to exit with the process")
            return
        worker.join(timeout=timeout)

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is not None or self._closed:
                return
            self._worker = threading.Thread(
                target=self._run,
                name="insforge-usage-tracker",
                daemon=True,
            )
            self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                self._send(item)
            finally:
                self._queue.task_done()

    def _send(self, event: UsageEvent) -> None:
        try:
            response = self.client.request(
                "POST",
                USAGE_PATH,
                api_key=self.api_key,
                json_body=event.to_payload(),
            )
            if not response.ok:
                logger.debug(
                    "Usage tracking for %s rejected with status %s",
                    event.tool_name,
                    response.status_code,
                )
        except Exception as exc:
            logger.debug("Usage tracking for %s failed: %s", event.tool_name, exc)
