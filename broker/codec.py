"""Wire framing for sink messages: magic byte, 4-byte schema id, payload."""

from __future__ import annotations

import struct
from typing import Tuple

MAGIC_BYTE = 0
_HEADER = struct.Struct(">bI")


class DecodeError(ValueError):
    pass


def encode(schema_id: int, payload: bytes) -> bytes:
    return _HEADER.pack(MAGIC_BYTE, schema_id) + payload


def decode(data: bytes) -> Tuple[int, bytes]:
    if len(data) < _HEADER.size:
        raise DecodeError("Message is shorter than the wire header.")
    magic, schema_id = _HEADER.unpack_from(data)
    if magic != MAGIC_BYTE:
        raise DecodeError(f"Unexpected magic byte {magic}.")
    return schema_id, data[_HEADER.size:]
