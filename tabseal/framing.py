import asyncio
import struct
from typing import Optional

from .errors import FrameEncodingError, FrameError

"""
framing.py - carry envelopes over asyncio streams.

Protocol (simple on purpose):
- Each frame = 4-byte little-endian unsigned length (N) + N bytes of UTF-8.
- The body is one envelope, untouched; framing never looks inside it.
- Hard cap at 4 MiB so a buggy peer can't make us allocate silly amounts.

Envelopes obfuscated with a wrong key can contain lone surrogates, so the
body is encoded with 'surrogatepass' to move any str across unchanged.
"""

MAX_FRAME_SIZE = 4 * 1024 * 1024  # 4 MiB hard limit
LENGTH_STRUCT = struct.Struct("<I")  # little-endian unsigned 32-bit length


def encode_frame(envelope: str) -> bytes:
    body = envelope.encode("utf-8", "surrogatepass")
    if len(body) > MAX_FRAME_SIZE:
        raise FrameError(f"Frame too large: {len(body)} > {MAX_FRAME_SIZE}")
    return LENGTH_STRUCT.pack(len(body)) + body


async def read_envelope(reader: asyncio.StreamReader) -> Optional[str]:
    """
    Read one framed envelope.

    Returns None on a clean EOF between frames. A stream that ends mid-frame
    raises asyncio.IncompleteReadError; an oversized frame raises FrameError.
    A complete frame whose body is not UTF-8 raises FrameEncodingError, and
    the stream is still positioned at the next frame.
    """
    try:
        len_bytes = await reader.readexactly(LENGTH_STRUCT.size)
    except asyncio.IncompleteReadError as exc:
        if not exc.partial:
            return None
        raise
    (length,) = LENGTH_STRUCT.unpack(len_bytes)

    if length > MAX_FRAME_SIZE:
        raise FrameError(f"Frame too large: {length} > {MAX_FRAME_SIZE}")

    body = await reader.readexactly(length)
    try:
        return body.decode("utf-8", "surrogatepass")
    except UnicodeDecodeError as exc:
        raise FrameEncodingError(f"Invalid UTF-8 frame: {exc}") from exc


async def write_envelope(writer: asyncio.StreamWriter, envelope: str) -> None:
    """Write one envelope as a frame and wait for the transport to drain."""
    writer.write(encode_frame(envelope))
    await writer.drain()
