"""Error taxonomy shared by the gateway and browser clients.

Catch ``OcBridgeError`` to handle any failure raised by this package::

    try:
        client.send_message("hello")
    except OcBridgeError as exc:
        ...
"""

from __future__ import annotations


class OcBridgeError(Exception):
    """Base class for every error raised by oc_bridge."""


class GatewayConnectionError(OcBridgeError):
    """The gateway could not be reached or refused the handshake.

    Raised for socket connect failures, a missing ``connect.challenge`` and
    rejected or unacknowledged ``connect`` requests.
    """


class GatewayError(OcBridgeError):
    """A request failed on an otherwise healthy gateway connection."""


class GatewayTimeoutError(GatewayError):
    """The gateway did not produce a terminal event before the deadline."""


class BrowserError(OcBridgeError):
    """A browser debugging operation failed."""


class BrowserTimeoutError(BrowserError):
    """A browser command or socket read did not complete in time."""


class FrameError(BrowserError):
    """A WebSocket frame violated the protocol."""


__all__ = [
    "BrowserError",
    "BrowserTimeoutError",
    "FrameError",
    "GatewayConnectionError",
    "GatewayError",
    "GatewayTimeoutError",
    "OcBridgeError",
]
