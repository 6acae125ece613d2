"""Gateway wire protocol: request builders, frame parsing and stream events.

Peer frames are loosely typed JSON. ``GatewayFrame.parse`` is the single
place that reads them; the rest of the package works on the parsed
structures.

Event bodies arrive under ``data``, under ``payload`` (older gateways), or
inline in the frame itself. All three shapes are accepted.
"""

from __future__ import annotations

import json
import sys
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

PROTOCOL_VERSION = 3
CHALLENGE_EVENT = "connect.challenge"
NO_RESPONSE_TEXT = "No response generated"
CLIENT_ID = "gateway-client"
CLIENT_VERSION = "1.0.0"


def _platform_name() -> str:
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform == "darwin":
        return "darwin"
    if sys.platform.startswith("win"):
        return "win32"
    return sys.platform


@dataclass(frozen=True)
class ClientIdentity:
    display_name: str
    id: str = CLIENT_ID
    mode: str = "backend"
    version: str = CLIENT_VERSION
    platform: str = field(default_factory=_platform_name)

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "mode": self.mode,
            "version": self.version,
            "platform": self.platform,
        }


@dataclass(frozen=True)
class Run:
    """One request lifecycle on the gateway, keyed by a unique run id."""

    run_id: str
    session_key: str
    agent_id: str

    @classmethod
    def start(cls, session_key: str, agent_id: str) -> Run:
        return cls(run_id=str(uuid.uuid4()), session_key=session_key, agent_id=agent_id)

    @property
    def connect_request_id(self) -> str:
        return f"connect-{self.run_id}"

    @property
    def chat_request_id(self) -> str:
        return f"chat-{self.run_id}"


def build_connect_request(request_id: str, token: str, identity: ClientIdentity) -> dict[str, Any]:
    return {
        "type": "req",
        "method": "connect",
        "id": request_id,
        "params": {
            "minProtocol": PROTOCOL_VERSION,
            "maxProtocol": PROTOCOL_VERSION,
            "role": "operator",
            "auth": {"token": token},
            "client": identity.to_dict(),
        },
    }


def build_chat_request(request_id: str, session_key: str, message: str, idempotency_key: str) -> dict[str, Any]:
    return {
        "type": "req",
        "method": "chat.send",
        "id": request_id,
        "params": {
            "sessionKey": session_key,
            "message": message,
            "idempotencyKey": idempotency_key,
        },
    }


@dataclass
class EventBody:
    run_id: str | None = None
    stream: str | None = None
    state: str | None = None
    delta: str = ""
    text: str = ""
    error_message: str | None = None
    has_message: bool = False
    content: list[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventBody:
        inner = data.get("data")
        inner = inner if isinstance(inner, dict) else {}
        message = data.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        run_id = data.get("runId")
        return cls(
            run_id=str(run_id) if run_id is not None else None,
            stream=data.get("stream") if isinstance(data.get("stream"), str) else None,
            state=data.get("state") if isinstance(data.get("state"), str) else None,
            delta=str(inner.get("delta") or ""),
            text=str(inner.get("text") or ""),
            error_message=str(data["errorMessage"]) if data.get("errorMessage") else None,
            has_message=bool(message),
            content=content if isinstance(content, list) else [],
        )


@dataclass
class GatewayFrame:
    type: str = ""
    id: str | None = None
    ok: bool = False
    error_message: str | None = None
    event: str | None = None
    body: EventBody = field(default_factory=EventBody)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_event(self) -> bool:
        return self.type == "event"

    @property
    def is_challenge(self) -> bool:
        return self.event == CHALLENGE_EVENT

    @classmethod
    def parse(cls, raw: str | bytes | None) -> GatewayFrame | None:
        """Parse one text frame; None for anything that is not a JSON object."""
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
            return None
        if not isinstance(data, dict):
            return None

        body = data.get("data")
        if not isinstance(body, dict):
            body = data.get("payload")
        if not isinstance(body, dict):
            body = data

        error = data.get("error")
        error_message = None
        if isinstance(error, dict) and error.get("message"):
            error_message = str(error["message"])
        elif error:
            error_message = json.dumps(error)

        frame_id = data.get("id")
        return cls(
            type=str(data.get("type") or ""),
            id=str(frame_id) if frame_id is not None else None,
            ok=data.get("ok") is True,
            error_message=error_message,
            event=data.get("event") if isinstance(data.get("event"), str) else None,
            body=EventBody.from_dict(body),
            raw=data,
        )

    def describe_error(self) -> str:
        return self.error_message or json.dumps(self.raw)


def extract_text(body: EventBody) -> str:
    """Join the text blocks of a final message with blank lines."""
    if not body.has_message:
        return NO_RESPONSE_TEXT
    texts = [
        str(block.get("text") or "")
        for block in body.content
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "\n\n".join(texts) or NO_RESPONSE_TEXT


class StreamEventType(str, Enum):
    DELTA = "delta"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class Delta:
    """A new chunk arrived; ``text`` is the cumulative reply so far."""

    delta: str
    text: str
    type: StreamEventType = StreamEventType.DELTA
    is_terminal = False

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "delta": self.delta, "text": self.text}


@dataclass(frozen=True)
class Complete:
    text: str
    session_key: str
    type: StreamEventType = StreamEventType.COMPLETE
    is_terminal = True

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "text": self.text, "session_key": self.session_key}


@dataclass(frozen=True)
class Error:
    message: str
    type: StreamEventType = StreamEventType.ERROR
    is_terminal = True

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "message": self.message}


StreamEvent = Union[Delta, Complete, Error]


@dataclass(frozen=True)
class GatewayResponse:
    """The agent's complete reply and the session key it was sent under."""

    text: str
    session_key: str


__all__ = [
    "CHALLENGE_EVENT",
    "NO_RESPONSE_TEXT",
    "PROTOCOL_VERSION",
    "ClientIdentity",
    "Complete",
    "Delta",
    "Error",
    "EventBody",
    "GatewayFrame",
    "GatewayResponse",
    "Run",
    "StreamEvent",
    "StreamEventType",
    "build_chat_request",
    "build_connect_request",
    "extract_text",
]
