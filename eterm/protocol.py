"""Wire format shared by the multiplexer daemon and its client.

Every message starts with a one-byte header.  Integer fields are 32-bit
little-endian values sent base64 encoded (eight bytes on the wire).
"""

from __future__ import annotations

import base64
import binascii
import struct
from enum import Enum

UUID_LENGTH = 36
INT_FIELD_LENGTH = 8


class Header(bytes, Enum):
    """One-byte message headers."""

    INSERT_KEYS = b"1"
    INIT_STATE = b"2"
    CLIENT_CLOSE_PANE = b"3"
    APPEND_TO_PANE = b"4"
    NEW_TAB = b"5"
    SERVER_CLOSE_PANE = b"8"
    NEW_SPLIT = b"9"
    RESIZE_PANE = b"A"
    DEBUG_LOG = b"B"
    INSERT_DEBUG_KEYS = b"C"
    SESSION_END = b"D"


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def encode_int(value: int) -> bytes:
    """Encode a signed 32-bit integer as a base64 field."""
    return base64.b64encode(struct.pack("<i", value))


def decode_int(data: bytes) -> int:
    """Decode a base64 integer field produced by :func:`encode_int`."""
    try:
        raw = base64.b64decode(data, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"invalid integer field: {data!r}") from exc
    if len(raw) != 4:
        raise ValueError(f"integer field must hold 4 bytes, got {len(raw)}")
    return struct.unpack("<i", raw)[0]


def encoded_length(data: str | bytes) -> int:
    """Length of the padded base64 encoding of ``data``."""
    return 4 * ((len(_as_bytes(data)) + 2) // 3)


def append_to_pane_message(pane_id: str | bytes, data: bytes) -> bytes:
    """Build a message carrying terminal output for a pane."""
    pane = _as_bytes(pane_id)
    return b"".join(
        (
            Header.APPEND_TO_PANE.value,
            encode_int(encoded_length(data) + len(pane)),
            pane,
            base64.b64encode(data),
        )
    )


def server_close_pane_message(pane_id: str | bytes) -> bytes:
    """Build a message telling the client that a pane has closed."""
    pane = _as_bytes(pane_id)
    return b"".join((Header.SERVER_CLOSE_PANE.value, encode_int(len(pane)), pane))


def debug_log_message(text: str | bytes) -> bytes:
    """Build a message carrying a debug text for the client to display."""
    raw = _as_bytes(text)
    return b"".join(
        (Header.DEBUG_LOG.value, encode_int(encoded_length(raw)), base64.b64encode(raw))
    )