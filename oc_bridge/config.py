from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import urlparse

DEFAULT_GATEWAY_URL = "ws://127.0.0.1:18789"
DEFAULT_BROWSER_URL = "http://127.0.0.1:9222"
DEFAULT_SESSION_PREFIX = "market-studies"
DEFAULT_AGENT = "main"
DEFAULT_CLIENT_NAME = "Market Studies Bridge"


def normalize_gateway_url(raw: str | None) -> str:
    """Return a ws:// or wss:// URL for the gateway.

    http(s) URLs are mapped to their WebSocket scheme and a bare ``host:port``
    gets ``ws://``.
    """
    value = (raw or "").strip()
    if not value:
        return DEFAULT_GATEWAY_URL

    parsed = urlparse(value)
    if parsed.scheme in {"ws", "wss"}:
        return value
    if parsed.scheme in {"http", "https"}:
        ws_scheme = "wss" if parsed.scheme == "https" else "ws"
        return f"{ws_scheme}://{parsed.netloc}{parsed.path or '/'}"
    if "://" not in value:
        return f"ws://{value}"
    raise ValueError(f"Unsupported gateway URL scheme: {parsed.scheme or 'unknown'}")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name) or default)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name) or default)
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    value = (os.environ.get(name) or "").strip()
    return value or default


@dataclass
class BridgeConfig:
    gateway_url: str = DEFAULT_GATEWAY_URL
    gateway_token: str = ""
    gateway_timeout: int = 600
    session_prefix: str = DEFAULT_SESSION_PREFIX
    default_agent: str = DEFAULT_AGENT
    browser_url: str = DEFAULT_BROWSER_URL
    client_name: str = DEFAULT_CLIENT_NAME
    http_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> BridgeConfig:
        timeout = _env_int("OC_GATEWAY_TIMEOUT", 600)
        http_timeout = _env_float("OC_HTTP_TIMEOUT", 10.0)
        return cls(
            gateway_url=normalize_gateway_url(os.environ.get("OC_GATEWAY_URL")),
            gateway_token=(os.environ.get("OC_GATEWAY_TOKEN") or "").strip(),
            gateway_timeout=timeout if timeout > 0 else 600,
            session_prefix=_env_str("OC_SESSION_PREFIX", DEFAULT_SESSION_PREFIX),
            default_agent=_env_str("OC_DEFAULT_AGENT", DEFAULT_AGENT),
            browser_url=_env_str("OC_BROWSER_URL", DEFAULT_BROWSER_URL).rstrip("/"),
            client_name=_env_str("OC_CLIENT_NAME", DEFAULT_CLIENT_NAME),
            http_timeout=http_timeout if http_timeout > 0 else 10.0,
        )
