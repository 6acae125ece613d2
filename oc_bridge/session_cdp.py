"""CDP command/response correlation over a raw WebSocket session."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from .errors import BrowserError, BrowserTimeoutError
from .ws_raw import RawWebSocket

logger = logging.getLogger("oc_bridge.session_cdp")


class CdpConnection:
    """Low-level CDP connection bound to one target's debugger socket.

    Commands are strictly sequential: ``send`` does not return until the
    matching response, an error, or the deadline.
    """

    def __init__(self, transport: RawWebSocket, timeout: float = 30.0):
        self.transport = transport
        self.timeout = float(timeout)
        self._next_id = 1

    @classmethod
    def open(cls, ws_url: str, *, timeout: float = 30.0, connect_timeout: float = 10.0) -> CdpConnection:
        transport = RawWebSocket.connect(ws_url, timeout=connect_timeout, read_timeout=timeout)
        return cls(transport, timeout=timeout)

    @property
    def ws_url(self) -> str:
        return self.transport.url

    @property
    def closed(self) -> bool:
        return self.transport.closed

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send CDP command and wait for response."""
        msg_id = self._next_id
        self._next_id += 1

        # CDP rejects a JSON array for params; an empty object is always accepted.
        msg = {"id": msg_id, "method": method, "params": params or {}}
        logger.debug("cdp_send id=%d method=%s", msg_id, method)
        self.transport.send_text(json.dumps(msg))
        return self._recv_until(msg_id, method)

    def _recv_until(self, expected_id: int, method: str) -> dict[str, Any]:
        """Wait for response with specific ID."""
        deadline = time.monotonic() + self.timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise BrowserTimeoutError(f"Timeout waiting for CDP response to {method}")

            try:
                raw = self.transport.receive(timeout=remaining)
            except BrowserTimeoutError as exc:
                raise BrowserTimeoutError(f"Timeout waiting for CDP response to {method}") from exc

            if raw is None:
                raise BrowserError(f"WebSocket closed while waiting for CDP response to {method}")

            try:
                data = json.loads(raw)
            except (json.JSONDecodeError, UnicodeDecodeError):
                continue
            if not isinstance(data, dict):
                continue

            # CDP event notification: no id, ignore.
            if isinstance(data.get("method"), str) and "id" not in data:
                continue

            if data.get("id") != expected_id:
                continue

            if "error" in data:
                error = data["error"]
                msg = error.get("message") if isinstance(error, dict) else None
                raise BrowserError(f"CDP error for {method}: {msg or json.dumps(error)}")
            result = data.get("result")
            return result if isinstance(result, dict) else {}

    def close(self) -> None:
        """Close the WebSocket connection."""
        self.transport.close()

    def __enter__(self) -> CdpConnection:
        return self

    def __exit__(self, *args) -> None:
        self.close()


__all__ = ["CdpConnection"]
