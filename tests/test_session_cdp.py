from __future__ import annotations

import json
import socket
import threading
import time
from collections import deque
from typing import Any

import pytest

from oc_bridge.errors import BrowserError, BrowserTimeoutError
from oc_bridge.session_cdp import CdpConnection
from oc_bridge.ws_frame import Opcode, decode, encode
from oc_bridge.ws_raw import RawWebSocket


class FakeTransport:
    """Scripted stand-in for RawWebSocket: replays queued messages."""

    def __init__(self, messages: list[Any] | None = None) -> None:
        self.inbox: deque[Any] = deque(messages or [])
        self.sent: list[dict[str, Any]] = []
        self.url = "ws://127.0.0.1:9222/devtools/page/T1"
        self.closed = False

    def send_text(self, text: str) -> None:
        self.sent.append(json.loads(text))

    def receive(self, timeout: float | None = None) -> bytes | None:
        if not self.inbox:
            time.sleep(timeout or 0)
            raise BrowserTimeoutError("WebSocket read timed out")
        item = self.inbox.popleft()
        if item is None:
            return None
        if isinstance(item, (bytes, str)):
            return item.encode() if isinstance(item, str) else item
        return json.dumps(item).encode()

    def close(self) -> None:
        self.closed = True


def test_send_returns_matching_result() -> None:
    transport = FakeTransport([{"id": 1, "result": {"frameId": "F"}}])
    conn = CdpConnection(transport, timeout=1.0)
    assert conn.send("Page.navigate", {"url": "https://example.com"}) == {"frameId": "F"}
    assert transport.sent == [{"id": 1, "method": "Page.navigate", "params": {"url": "https://example.com"}}]


def test_params_default_to_empty_object() -> None:
    transport = FakeTransport([{"id": 1, "result": {}}])
    CdpConnection(transport, timeout=1.0).send("Page.getLayoutMetrics")
    assert transport.sent[0]["params"] == {}


def test_ids_increase_per_command() -> None:
    transport = FakeTransport([{"id": 1, "result": {}}, {"id": 2, "result": {"ok": 1}}])
    conn = CdpConnection(transport, timeout=1.0)
    conn.send("A.one")
    assert conn.send("A.two") == {"ok": 1}
    assert [m["id"] for m in transport.sent] == [1, 2]


def test_events_other_ids_and_junk_are_skipped() -> None:
    transport = FakeTransport(
        [
            {"method": "Page.loadEventFired", "params": {"timestamp": 1}},
            "not json",
            b"\xff\xfe",
            [1, 2, 3],
            {"id": 99, "result": {"stale": True}},
            {"id": 1, "result": {"data": "abc"}},
        ]
    )
    conn = CdpConnection(transport, timeout=1.0)
    assert conn.send("Page.captureScreenshot") == {"data": "abc"}


def test_missing_result_becomes_empty_dict() -> None:
    conn = CdpConnection(FakeTransport([{"id": 1}]), timeout=1.0)
    assert conn.send("Page.enable") == {}


def test_error_response_raises_browser_error() -> None:
    transport = FakeTransport([{"id": 1, "error": {"code": -32000, "message": "Cannot navigate"}}])
    conn = CdpConnection(transport, timeout=1.0)
    with pytest.raises(BrowserError, match="CDP error for Page.navigate: Cannot navigate"):
        conn.send("Page.navigate", {"url": "bogus"})


def test_closed_socket_raises_browser_error() -> None:
    conn = CdpConnection(FakeTransport([None]), timeout=1.0)
    with pytest.raises(BrowserError, match="closed while waiting") as info:
        conn.send("Page.enable")
    assert not isinstance(info.value, BrowserTimeoutError)


def test_timeout_is_not_reported_early() -> None:
    conn = CdpConnection(FakeTransport([{"method": "Page.frameNavigated"}]), timeout=0.3)
    started = time.monotonic()
    with pytest.raises(BrowserTimeoutError, match="Timeout waiting for CDP response to Page.enable"):
        conn.send("Page.enable")
    assert time.monotonic() - started >= 0.29


def test_close_closes_transport() -> None:
    transport = FakeTransport()
    with CdpConnection(transport) as conn:
        assert conn.ws_url.endswith("/T1")
    assert transport.closed
    assert conn.closed


def test_command_over_raw_socket() -> None:
    client_sock, server_sock = socket.socketpair()
    server_sock.settimeout(2.0)

    def _serve() -> None:
        rfile = server_sock.makefile("rb")
        frame = decode(rfile.read)
        assert frame is not None
        request = json.loads(frame.payload)
        server_sock.sendall(encode(Opcode.TEXT, b'{"method":"Page.loadEventFired","params":{}}', mask=False))
        reply = {"id": request["id"], "result": {"echo": request["method"]}}
        server_sock.sendall(encode(Opcode.TEXT, json.dumps(reply).encode(), mask=False))

    t = threading.Thread(target=_serve, daemon=True)
    t.start()
    conn = CdpConnection(RawWebSocket(client_sock, read_timeout=2.0), timeout=2.0)
    assert conn.send("Runtime.enable") == {"echo": "Runtime.enable"}
    t.join(2)
    conn.close()
    server_sock.close()


def test_steady_pings_do_not_extend_the_command_deadline() -> None:
    client_sock, server_sock = socket.socketpair()
    stop = threading.Event()

    def _ping_forever() -> None:
        while not stop.is_set():
            try:
                server_sock.sendall(encode(Opcode.PING, b"hb", mask=False))
            except OSError:
                return
            stop.wait(0.1)

    t = threading.Thread(target=_ping_forever, daemon=True)
    t.start()
    conn = CdpConnection(RawWebSocket(client_sock, read_timeout=0.5), timeout=0.5)
    started = time.monotonic()
    try:
        with pytest.raises(BrowserTimeoutError, match="Page.enable"):
            conn.send("Page.enable")
        elapsed = time.monotonic() - started
    finally:
        stop.set()
        t.join(2)
        conn.close()
        server_sock.close()
    assert 0.49 <= elapsed < 2.0
    assert conn.closed
