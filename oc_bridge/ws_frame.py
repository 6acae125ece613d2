"""WebSocket frame codec (RFC 6455 subset).

Supports text, binary, continuation, close, ping and pong frames with
7/16/64-bit payload lengths. No extensions: the RSV bits must be zero.
Client frames are masked with a fresh random key; frames coming from a
server are expected unmasked.
"""

from __future__ import annotations

import os
import struct
from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum

from .errors import FrameError

MAX_CONTROL_PAYLOAD = 125
MAX_PAYLOAD = 64 * 1024 * 1024
CLOSE_NORMAL = 1000

ReadExact = Callable[[int], "bytes | None"]


class Opcode(IntEnum):
    CONTINUATION = 0x0
    TEXT = 0x1
    BINARY = 0x2
    CLOSE = 0x8
    PING = 0x9
    PONG = 0xA


@dataclass(slots=True)
class Frame:
    opcode: Opcode
    payload: bytes = b""
    fin: bool = True
    masked: bool = False

    @property
    def is_control(self) -> bool:
        return self.opcode >= Opcode.CLOSE


def mask_payload(payload: bytes, key: bytes) -> bytes:
    """XOR payload with the repeating 4-byte key (masking is its own inverse)."""
    if not payload:
        return b""
    repeated = (key * (len(payload) // 4 + 1))[: len(payload)]
    return (int.from_bytes(payload, "big") ^ int.from_bytes(repeated, "big")).to_bytes(len(payload), "big")


def encode(opcode: Opcode | int, payload: bytes = b"", mask: bool = True, fin: bool = True) -> bytes:
    """Serialize one frame to wire bytes."""
    op = Opcode(opcode)
    if op >= Opcode.CLOSE and (len(payload) > MAX_CONTROL_PAYLOAD or not fin):
        raise FrameError(f"Invalid control frame: {op.name} length={len(payload)} fin={fin}")

    head = bytearray([(0x80 if fin else 0x00) | int(op)])
    mask_bit = 0x80 if mask else 0x00
    length = len(payload)
    if length <= 125:
        head.append(mask_bit | length)
    elif length <= 0xFFFF:
        head.append(mask_bit | 126)
        head += struct.pack("!H", length)
    else:
        head.append(mask_bit | 127)
        head += struct.pack("!Q", length)

    if not mask:
        return bytes(head) + payload

    key = os.urandom(4)
    return bytes(head) + key + mask_payload(payload, key)


def decode(
    read_exact: ReadExact,
    *,
    require_unmasked: bool = False,
    max_payload: int = MAX_PAYLOAD,
) -> Frame | None:
    """Read one frame through ``read_exact(n)``.

    Returns None when the stream ends before a whole frame was read.
    A declared length above ``max_payload`` raises ``FrameError`` before
    any payload byte is read.
    """
    header = _read(read_exact, 2)
    if header is None:
        return None

    first, second = header[0], header[1]
    if first & 0x70:
        raise FrameError("Reserved bits set without a negotiated extension")
    try:
        opcode = Opcode(first & 0x0F)
    except ValueError as exc:
        raise FrameError(f"Unknown opcode 0x{first & 0x0F:x}") from exc
    fin = bool(first & 0x80)
    masked = bool(second & 0x80)
    length = second & 0x7F

    if opcode >= Opcode.CLOSE and (length > MAX_CONTROL_PAYLOAD or not fin):
        raise FrameError(f"Invalid control frame: {opcode.name} length={length} fin={fin}")
    if masked and require_unmasked:
        raise FrameError("Server frames must not be masked")

    if length == 126:
        ext = _read(read_exact, 2)
        if ext is None:
            return None
        (length,) = struct.unpack("!H", ext)
    elif length == 127:
        ext = _read(read_exact, 8)
        if ext is None:
            return None
        (length,) = struct.unpack("!Q", ext)
        if length >> 63:
            raise FrameError("64-bit payload length must have the high bit clear")
    if length > max_payload:
        raise FrameError(f"Frame payload of {length} bytes exceeds the {max_payload} byte limit")

    key = None
    if masked:
        key = _read(read_exact, 4)
        if key is None:
            return None

    payload = b""
    if length:
        payload = _read(read_exact, length)
        if payload is None:
            return None
        if key is not None:
            payload = mask_payload(payload, key)

    return Frame(opcode=opcode, payload=payload, fin=fin, masked=masked)


def close_payload(code: int = CLOSE_NORMAL, reason: str = "") -> bytes:
    return struct.pack("!H", code) + reason.encode("utf-8")


def parse_close_payload(payload: bytes) -> tuple[int | None, str]:
    if len(payload) < 2:
        return None, ""
    (code,) = struct.unpack("!H", payload[:2])
    return code, payload[2:].decode("utf-8", errors="replace")


def _read(read_exact: ReadExact, n: int) -> bytes | None:
    data = read_exact(n)
    if data is None or len(data) < n:
        return None
    return data


__all__ = [
    "CLOSE_NORMAL",
    "MAX_PAYLOAD",
    "Frame",
    "Opcode",
    "close_payload",
    "decode",
    "encode",
    "mask_payload",
    "parse_close_payload",
]
