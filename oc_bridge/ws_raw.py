"""Raw WebSocket client session over a plain TCP socket.

Used for the browser's per-tab debugger socket, where no WebSocket library
is involved: the HTTP Upgrade handshake and framing are done here on top of
``ws_frame``.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
import socket
import time
from contextlib import suppress
from urllib.parse import urlsplit

from .errors import BrowserError, BrowserTimeoutError, FrameError
from .ws_frame import (
    CLOSE_NORMAL,
    MAX_PAYLOAD,
    Opcode,
    close_payload,
    decode,
    encode,
    parse_close_payload,
)

logger = logging.getLogger("oc_bridge.ws_raw")

_WS_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"
_MAX_HEADER_BYTES = 65536


def accept_key(key: str) -> str:
    """Expected Sec-WebSocket-Accept value for a handshake key."""
    digest = hashlib.sha1((key + _WS_GUID).encode("ascii")).digest()
    return base64.b64encode(digest).decode("ascii")


class RawWebSocket:
    """One upgraded TCP connection speaking WebSocket frames.

    Pings are answered with pongs transparently inside ``receive()``.
    A close frame, EOF or read timeout ends the session.
    """

    def __init__(
        self,
        sock: socket.socket,
        *,
        read_timeout: float = 30.0,
        url: str = "",
        max_message_size: int = MAX_PAYLOAD,
    ) -> None:
        self._sock = sock
        self._rfile = sock.makefile("rb")
        self.read_timeout = float(read_timeout)
        self.url = url
        self.max_message_size = int(max_message_size)
        self._closed = False

    @classmethod
    def connect(cls, ws_url: str, *, timeout: float = 10.0, read_timeout: float = 30.0) -> RawWebSocket:
        parts = urlsplit(ws_url)
        if parts.scheme != "ws":
            raise BrowserError(f"Unsupported debugger URL scheme: {parts.scheme or 'unknown'}")
        host = parts.hostname or "localhost"
        port = parts.port or 9222
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"

        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as exc:
            raise BrowserError(f"WebSocket TCP connect failed: {exc}") from exc

        conn = cls(sock, read_timeout=read_timeout, url=ws_url)
        try:
            conn.handshake(f"{host}:{port}", path)
        except BaseException:
            conn._release()
            raise
        logger.info("ws_connected url=%s", ws_url)
        return conn

    @property
    def closed(self) -> bool:
        return self._closed

    def handshake(self, host: str, path: str) -> None:
        """Perform the HTTP Upgrade exchange and validate the 101 response."""
        key = base64.b64encode(os.urandom(16)).decode("ascii")
        request = "\r\n".join(
            [
                f"GET {path} HTTP/1.1",
                f"Host: {host}",
                "Upgrade: websocket",
                "Connection: Upgrade",
                f"Sec-WebSocket-Key: {key}",
                "Sec-WebSocket-Version: 13",
                "",
                "",
            ]
        )
        try:
            self._sock.sendall(request.encode("ascii"))
            status_line, headers = self._read_http_head()
        except TimeoutError as exc:
            raise BrowserTimeoutError("WebSocket handshake timed out") from exc
        except OSError as exc:
            raise BrowserError(f"WebSocket handshake failed: {exc}") from exc

        fields = status_line.split(" ", 2)
        if len(fields) < 2 or fields[1] != "101":
            raise BrowserError(f"WebSocket handshake failed: {status_line or 'empty response'}")

        accept = headers.get("sec-websocket-accept")
        if accept is not None and accept != accept_key(key):
            raise BrowserError("WebSocket handshake failed: Sec-WebSocket-Accept mismatch")

    def _read_http_head(self) -> tuple[str, dict[str, str]]:
        status_line = ""
        headers: dict[str, str] = {}
        total = 0
        while True:
            line = self._rfile.readline(_MAX_HEADER_BYTES)
            if not line:
                raise BrowserError("WebSocket handshake failed: connection closed during handshake")
            total += len(line)
            if total > _MAX_HEADER_BYTES:
                raise BrowserError("WebSocket handshake failed: response headers too large")
            text = line.decode("latin-1").rstrip("\r\n")
            if not text:
                return status_line, headers
            if not status_line:
                status_line = text
                continue
            name, _, value = text.partition(":")
            headers[name.strip().lower()] = value.strip()

    def send_text(self, text: str) -> None:
        self._send(Opcode.TEXT, text.encode("utf-8"))

    def _send(self, opcode: Opcode, payload: bytes) -> None:
        if self._closed:
            raise BrowserError("WebSocket is closed")
        try:
            self._sock.sendall(encode(opcode, payload, mask=True))
        except OSError as exc:
            self._release()
            raise BrowserError(f"Failed to write WebSocket frame: {exc}") from exc

    def _read_exact(self, n: int) -> bytes | None:
        data = self._rfile.read(n)
        if data is None or len(data) < n:
            return None
        return data

    def receive(self, timeout: float | None = None) -> bytes | None:
        """Return the next text/binary message payload, or None once closed.

        ``timeout`` bounds the whole call, pings and fragments included.
        """
        if self._closed:
            return None

        wait = self.read_timeout if timeout is None else timeout
        deadline = time.monotonic() + wait
        message_opcode: Opcode | None = None
        chunks: list[bytes] = []
        size = 0

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._release()
                raise BrowserTimeoutError("WebSocket read timed out")
            try:
                self._sock.settimeout(remaining)
                frame = decode(self._read_exact, max_payload=self.max_message_size)
            except TimeoutError as exc:
                # A partial frame may have been consumed; the stream cannot be trusted anymore.
                self._release()
                raise BrowserTimeoutError("WebSocket read timed out") from exc
            except FrameError:
                self.close()
                raise
            except OSError as exc:
                self._release()
                raise BrowserError(f"WebSocket read failed: {exc}") from exc

            if frame is None:
                logger.debug("ws_eof url=%s", self.url)
                self._release()
                return None

            if frame.opcode == Opcode.PING:
                logger.debug("ws_ping len=%d", len(frame.payload))
                self._send(Opcode.PONG, frame.payload)
                continue
            if frame.opcode == Opcode.PONG:
                continue
            if frame.opcode == Opcode.CLOSE:
                code, reason = parse_close_payload(frame.payload)
                logger.debug("ws_close_received code=%s reason=%s", code, reason)
                self.close()
                return None

            if frame.opcode == Opcode.CONTINUATION:
                if message_opcode is None:
                    self.close()
                    raise FrameError("Continuation frame without a message in progress")
            else:
                if message_opcode is not None:
                    self.close()
                    raise FrameError("Data frame interleaved with a fragmented message")
                message_opcode = frame.opcode
            chunks.append(frame.payload)
            size += len(frame.payload)
            if size > self.max_message_size:
                self.close()
                raise FrameError(f"Message of {size} bytes exceeds the {self.max_message_size} byte limit")

            if frame.fin:
                return b"".join(chunks)

    def close(self) -> None:
        """Send a close frame and release the socket. Safe to call repeatedly."""
        if self._closed:
            return
        with suppress(OSError):
            self._sock.sendall(encode(Opcode.CLOSE, close_payload(CLOSE_NORMAL), mask=True))
        self._release()

    def _release(self) -> None:
        self._closed = True
        with suppress(OSError):
            self._rfile.close()
        with suppress(OSError):
            self._sock.close()

    def __enter__(self) -> RawWebSocket:
        return self

    def __exit__(self, *args) -> None:
        self.close()


__all__ = ["RawWebSocket", "accept_key"]
