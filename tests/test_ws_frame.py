from __future__ import annotations

import io
import struct

import pytest

from oc_bridge.errors import FrameError
from oc_bridge.ws_frame import (
    CLOSE_NORMAL,
    MAX_PAYLOAD,
    Frame,
    Opcode,
    close_payload,
    decode,
    encode,
    mask_payload,
    parse_close_payload,
)


def _reader(data: bytes):
    return io.BytesIO(data).read


@pytest.mark.parametrize("size", [0, 1, 125, 126, 65535, 65536])
@pytest.mark.parametrize("mask", [True, False])
def test_roundtrip_across_length_boundaries(size: int, mask: bool) -> None:
    payload = bytes(i % 251 for i in range(size))
    wire = encode(Opcode.BINARY, payload, mask=mask)
    frame = decode(_reader(wire))
    assert frame is not None
    assert frame.opcode == Opcode.BINARY
    assert frame.payload == payload
    assert frame.fin is True
    assert frame.masked is mask


def test_length_field_encoding() -> None:
    assert encode(Opcode.TEXT, b"x" * 125, mask=False)[1] == 125
    wire16 = encode(Opcode.TEXT, b"x" * 126, mask=False)
    assert wire16[1] == 126
    assert struct.unpack("!H", wire16[2:4])[0] == 126
    wire64 = encode(Opcode.TEXT, b"x" * 65536, mask=False)
    assert wire64[1] == 127
    assert struct.unpack("!Q", wire64[2:10])[0] == 65536


def test_client_frames_are_masked() -> None:
    payload = b'{"id":1,"method":"Page.enable"}'
    wire = encode(Opcode.TEXT, payload)
    assert wire[0] == 0x81
    assert wire[1] & 0x80
    key = wire[2:6]
    assert mask_payload(wire[6:], key) == payload


def test_mask_payload_is_its_own_inverse() -> None:
    key = b"\x01\x02\x03\x04"
    data = b"hello websocket"
    assert mask_payload(mask_payload(data, key), key) == data
    assert mask_payload(b"", key) == b""


def test_fin_bit_cleared_for_fragments() -> None:
    wire = encode(Opcode.TEXT, b"part", mask=False, fin=False)
    assert wire[0] == 0x01
    frame = decode(_reader(wire))
    assert frame == Frame(opcode=Opcode.TEXT, payload=b"part", fin=False, masked=False)


def test_truncated_input_yields_none() -> None:
    wire = encode(Opcode.TEXT, b"x" * 300, mask=True)
    for cut in (0, 1, 3, 7, len(wire) - 1):
        assert decode(_reader(wire[:cut])) is None


def test_control_frames() -> None:
    ping = decode(_reader(encode(Opcode.PING, b"hb", mask=False)))
    assert ping is not None and ping.is_control and ping.payload == b"hb"
    text = decode(_reader(encode(Opcode.TEXT, b"t", mask=False)))
    assert text is not None and not text.is_control


def test_encode_rejects_invalid_control_frames() -> None:
    with pytest.raises(FrameError):
        encode(Opcode.PING, b"x" * 126)
    with pytest.raises(FrameError):
        encode(Opcode.CLOSE, b"", fin=False)


def test_decode_rejects_protocol_violations() -> None:
    with pytest.raises(FrameError):
        decode(_reader(bytes([0xC1, 0x00])))  # RSV1 set
    with pytest.raises(FrameError):
        decode(_reader(bytes([0x83, 0x00])))  # reserved opcode
    with pytest.raises(FrameError):
        decode(_reader(bytes([0x09, 0x00])))  # fragmented ping
    with pytest.raises(FrameError):
        decode(_reader(bytes([0x89, 126, 0x00, 0x7E])))  # oversize ping
    with pytest.raises(FrameError):
        decode(_reader(bytes([0x82, 127]) + struct.pack("!Q", 1 << 63)))


def test_require_unmasked_rejects_masked_server_frames() -> None:
    wire = encode(Opcode.TEXT, b"hi", mask=True)
    with pytest.raises(FrameError):
        decode(_reader(wire), require_unmasked=True)
    assert decode(_reader(wire)).payload == b"hi"


def test_close_payload_helpers() -> None:
    payload = close_payload(CLOSE_NORMAL, "bye")
    assert parse_close_payload(payload) == (1000, "bye")
    assert parse_close_payload(b"") == (None, "")
    frame = decode(_reader(encode(Opcode.CLOSE, payload, mask=True)))
    assert frame is not None
    assert frame.opcode == Opcode.CLOSE
    assert parse_close_payload(frame.payload) == (1000, "bye")


def test_payload_limit_is_checked_before_reading() -> None:
    stream = io.BytesIO(bytes([0x81, 0x7F]) + struct.pack("!Q", 2**62))
    reads: list[int] = []

    def read_exact(n: int) -> bytes:
        reads.append(n)
        return stream.read(n)

    with pytest.raises(FrameError, match="exceeds"):
        decode(read_exact)
    assert reads == [2, 8]
    assert MAX_PAYLOAD == 64 * 1024 * 1024


def test_custom_payload_limit() -> None:
    wire = encode(Opcode.BINARY, b"x" * 200, mask=False)
    with pytest.raises(FrameError, match="exceeds"):
        decode(_reader(wire), max_payload=199)
    frame = decode(_reader(wire), max_payload=200)
    assert frame is not None and len(frame.payload) == 200
