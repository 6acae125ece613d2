"""Client for the agent gateway's request/event protocol.

Each call opens its own WebSocket connection and walks the same states:

    connect -> connect.challenge -> connect (auth) -> chat.send -> events -> close

``send_message`` blocks until the run's final event. ``stream_message``
yields ``Delta`` events as they arrive and ends with exactly one
``Complete`` or ``Error``.

Memory continuity: calls with the same memory id (and agent) derive the same
session key, so the gateway agent keeps the accumulated context between
them. The run id doubles as the ``chat.send`` idempotency key, which makes a
caller-side retry of the same run a no-op on the peer.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import suppress
from typing import Any

import websocket

from .config import DEFAULT_AGENT, DEFAULT_CLIENT_NAME, DEFAULT_GATEWAY_URL, DEFAULT_SESSION_PREFIX, BridgeConfig
from .errors import GatewayConnectionError, GatewayError, GatewayTimeoutError, OcBridgeError
from .gateway_protocol import (
    ClientIdentity,
    Complete,
    Delta,
    Error,
    EventBody,
    GatewayFrame,
    GatewayResponse,
    Run,
    StreamEvent,
    build_chat_request,
    build_connect_request,
    extract_text,
)
from .session_key import derive_session_key

logger = logging.getLogger("oc_bridge.gateway")


class GatewayClient:
    def __init__(
        self,
        url: str = DEFAULT_GATEWAY_URL,
        token: str = "",
        *,
        timeout: float = 600,
        session_prefix: str = DEFAULT_SESSION_PREFIX,
        default_agent: str = DEFAULT_AGENT,
        client_name: str = DEFAULT_CLIENT_NAME,
        connect_timeout: float = 10.0,
        challenge_timeout: float = 10.0,
        ack_timeout: float = 30.0,
        idle_timeout: float = 30.0,
        keepalive_interval: float = 25.0,
    ) -> None:
        self.url = url
        self.token = token
        self.timeout = float(timeout)
        self.session_prefix = session_prefix
        self.default_agent = default_agent
        self.identity = ClientIdentity(display_name=client_name)
        self.connect_timeout = float(connect_timeout)
        self.challenge_timeout = float(challenge_timeout)
        self.ack_timeout = float(ack_timeout)
        self.idle_timeout = float(idle_timeout)
        self.keepalive_interval = float(keepalive_interval)

    @classmethod
    def from_config(cls, config: BridgeConfig, **kwargs: Any) -> GatewayClient:
        return cls(
            config.gateway_url,
            config.gateway_token,
            timeout=config.gateway_timeout,
            session_prefix=config.session_prefix,
            default_agent=config.default_agent,
            client_name=config.client_name,
            **kwargs,
        )

    def session_key(self, memory_id: str | None = None, agent_id: str | None = None) -> str:
        return derive_session_key(
            memory_id,
            agent_id,
            default_agent=self.default_agent,
            prefix=self.session_prefix,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────────

    def send_message(self, message: str, memory_id: str | None = None, agent_id: str | None = None) -> GatewayResponse:
        """Send a message and wait for the agent's complete reply.

        Args:
            message: Prompt for the agent
            memory_id: Conversation id; equal ids share agent memory across calls
            agent_id: Agent to route to (default agent when None)

        Raises:
            GatewayConnectionError: gateway unreachable or handshake rejected
            GatewayError: chat.send rejected or the agent reported an error
            GatewayTimeoutError: no final event before the response deadline
        """
        run = self._start_run(memory_id, agent_id)
        ws = self._connect()
        try:
            self._handshake(ws, run)
            self._send_chat(ws, run, message)
            text = self._wait_for_final(ws, run)
        finally:
            self._close(ws)

        logger.info("run_complete run=%s session=%s chars=%d", run.run_id, run.session_key, len(text))
        return GatewayResponse(text=text, session_key=run.session_key)

    def stream_message(
        self,
        message: str,
        memory_id: str | None = None,
        agent_id: str | None = None,
        on_idle: Callable[[], None] | None = None,
    ) -> Iterator[StreamEvent]:
        """Yield the agent's reply as stream events.

        Connection and handshake failures raise from the first ``next()``.
        Once the request is accepted, agent errors and the response deadline
        arrive as a terminal ``Error`` event instead of an exception.

        ``on_idle`` runs whenever no frame arrives within ``idle_timeout`` and
        whenever ``keepalive_interval`` passes without a delta, so callers can
        keep their own downstream connection alive.
        """
        run = self._start_run(memory_id, agent_id)
        ws = self._connect()
        try:
            self._handshake(ws, run)
            self._send_chat(ws, run, message)
            yield from self._stream_events(ws, run, on_idle)
        finally:
            self._close(ws)

    def test_connection(self) -> bool:
        """Return True if the gateway accepts a connect handshake."""
        run = self._start_run(None, None)
        try:
            ws = self._connect()
        except GatewayConnectionError as exc:
            logger.info("gateway_unreachable url=%s error=%s", self.url, exc)
            return False
        try:
            self._handshake(ws, run)
        except OcBridgeError as exc:
            logger.info("gateway_handshake_failed url=%s error=%s", self.url, exc)
            return False
        finally:
            self._close(ws)
        return True

    # ─────────────────────────────────────────────────────────────────────────
    # Protocol steps
    # ─────────────────────────────────────────────────────────────────────────

    def _start_run(self, memory_id: str | None, agent_id: str | None) -> Run:
        agent = self.default_agent if agent_id is None else agent_id
        run = Run.start(self.session_key(memory_id, agent_id), agent)
        logger.info("run_start run=%s session=%s", run.run_id, run.session_key)
        return run

    def _connect(self) -> websocket.WebSocket:
        try:
            return websocket.create_connection(self.url, timeout=self.connect_timeout)
        except (websocket.WebSocketException, OSError) as exc:
            raise GatewayConnectionError(f"Gateway connect failed ({self.url}): {exc}") from exc

    def _close(self, ws: websocket.WebSocket) -> None:
        with suppress(Exception):
            ws.close(timeout=1.0)

    def _send(self, ws: websocket.WebSocket, payload: dict[str, Any]) -> None:
        try:
            ws.send(json.dumps(payload))
        except (websocket.WebSocketException, OSError) as exc:
            raise GatewayConnectionError(f"Gateway send failed: {exc}") from exc

    def _receive(self, ws: websocket.WebSocket, timeout: float) -> str | bytes | None:
        """Read one frame; None when nothing arrived within ``timeout``."""
        try:
            ws.settimeout(max(0.001, timeout))
            return ws.recv()
        except (websocket.WebSocketTimeoutException, TimeoutError):
            return None
        except (websocket.WebSocketException, OSError) as exc:
            raise GatewayConnectionError(f"Gateway connection lost: {exc}") from exc

    def _handshake(self, ws: websocket.WebSocket, run: Run) -> None:
        self._await_challenge(ws)
        self._send(ws, build_connect_request(run.connect_request_id, self.token, self.identity))
        self._await_ack(ws, run.connect_request_id, "auth", GatewayConnectionError)

    def _await_challenge(self, ws: websocket.WebSocket) -> None:
        deadline = time.monotonic() + self.challenge_timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise GatewayConnectionError("Gateway: no nonce challenge received")
            frame = GatewayFrame.parse(self._receive(ws, remaining))
            if frame is not None and frame.is_challenge:
                return

    def _await_ack(
        self,
        ws: websocket.WebSocket,
        request_id: str,
        label: str,
        error_cls: type[OcBridgeError],
    ) -> None:
        deadline = time.monotonic() + self.ack_timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise error_cls(f"Gateway {label}: no acknowledgement received")
            frame = GatewayFrame.parse(self._receive(ws, remaining))
            if frame is None or frame.is_event or frame.id != request_id:
                continue
            if not frame.ok:
                raise error_cls(f"Gateway {label} failed: {frame.describe_error()}")
            return

    def _send_chat(self, ws: websocket.WebSocket, run: Run, message: str) -> None:
        self._send(ws, build_chat_request(run.chat_request_id, run.session_key, message, run.run_id))
        self._await_ack(ws, run.chat_request_id, "chat.send", GatewayError)

    def _run_event(self, raw: str | bytes, run: Run) -> EventBody | None:
        """Return the event body when the frame is an event for this run."""
        frame = GatewayFrame.parse(raw)
        if frame is None or not frame.is_event:
            return None
        if frame.body.run_id != run.run_id:
            logger.debug("event_skipped run=%s other=%s", run.run_id, frame.body.run_id)
            return None
        return frame.body

    def _wait_for_final(self, ws: websocket.WebSocket, run: Run) -> str:
        deadline = time.monotonic() + self.timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise GatewayTimeoutError("Gateway response timeout")
            raw = self._receive(ws, remaining)
            if raw is None:
                continue
            body = self._run_event(raw, run)
            if body is None:
                continue
            if body.state == "error":
                raise GatewayError(f"Agent error: {body.error_message or 'agent error'}")
            if body.state == "final":
                return extract_text(body)

    def _stream_events(
        self,
        ws: websocket.WebSocket,
        run: Run,
        on_idle: Callable[[], None] | None,
    ) -> Iterator[StreamEvent]:
        deadline = time.monotonic() + self.timeout
        last_keepalive = time.monotonic()
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break

            raw = self._receive(ws, min(self.idle_timeout, remaining))
            now = time.monotonic()
            if raw is None:
                if on_idle is not None:
                    on_idle()
                    last_keepalive = now
                continue

            if on_idle is not None and now - last_keepalive >= self.keepalive_interval:
                on_idle()
                last_keepalive = now

            body = self._run_event(raw, run)
            if body is None:
                continue

            if body.stream == "assistant":
                last_keepalive = now
                yield Delta(delta=body.delta, text=body.text)
                continue
            if body.state == "error":
                logger.info("run_error run=%s", run.run_id)
                yield Error(message=body.error_message or "agent error")
                return
            if body.state == "final":
                logger.info("run_complete run=%s session=%s", run.run_id, run.session_key)
                yield Complete(text=extract_text(body), session_key=run.session_key)
                return

        logger.warning("run_timeout run=%s timeout=%.0fs", run.run_id, self.timeout)
        yield Error(message="Gateway response timeout")


__all__ = ["GatewayClient"]
