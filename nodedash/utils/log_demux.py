"""Decoder for the container runtime's multiplexed log/exec stream.

Each frame is an 8-byte header followed by a payload::

    [stream type: 1 byte][reserved: 3 bytes][payload length: 4 bytes, big-endian]

Stream types are 0 (stdin), 1 (stdout) and 2 (stderr). TTY-attached
containers emit raw bytes with no framing at all.
"""
from __future__ import annotations

import struct

HEADER_SIZE = 8
MAX_STREAM_TYPE = 2

_HEADER = struct.Struct('>BxxxL')


def demultiplex(buffer: bytes) -> str:
    """Concatenate the payloads of every frame in ``buffer`` as text.

    A short trailing header, an unknown stream type, or a payload longer than
    what remains all end decoding; whatever is left is appended verbatim.
    """
    chunks = []
    offset = 0
    length = len(buffer)

    while offset < length:
        if length - offset < HEADER_SIZE:
            chunks.append(buffer[offset:])
            break

        stream_type, payload_size = _HEADER.unpack_from(buffer, offset)
        if stream_type > MAX_STREAM_TYPE:
            chunks.append(buffer[offset:])
            break

        offset += HEADER_SIZE
        end = offset + payload_size
        if end > length:
            chunks.append(buffer[offset:])
            break

        chunks.append(buffer[offset:end])
        offset = end

    return b''.join(chunks).decode('utf-8', errors='replace')
