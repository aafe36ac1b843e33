"""RIFF/WAVE container walking.

Finds where the raw audio begins inside a sample buffer. Buffers that are not
RIFF/WAVE are treated as headerless raw audio and streamed as-is.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

RIFF_HEADER = struct.Struct("<4sI4s")
SUBCHUNK_HEADER = struct.Struct("<4sI")

WAVE_FORMAT = b"WAVE"
DATA_CHUNK = b"data"
METADATA_CHUNK = b"txts"


@dataclass(frozen=True, slots=True)
class ChunkInfo:
    chunk_id: str
    size: int
    # Offset of the 8-byte subchunk header within the buffer.
    offset: int
    # Decoded body of txts metadata chunks; None for every other chunk.
    text: str | None = None


def _chunk_name(raw: bytes) -> str:
    return raw.decode("ascii", errors="replace")


def locate_payload(data: bytes) -> tuple[int, list[ChunkInfo]]:
    """Return the byte offset of the audio samples and the chunks visited on the way.

    Offset 0 means "not a WAVE container, stream everything". A truncated
    container is not an error: the walk stops and the offset accumulated so
    far is returned.
    Only the format tag decides; the outer RIFF identifier is not checked.
    """

    trace: list[ChunkInfo] = []
    if len(data) < RIFF_HEADER.size:
        return 0, trace

    _riff_id, _riff_size, fmt = RIFF_HEADER.unpack_from(data, 0)
    if fmt != WAVE_FORMAT:
        return 0, trace

    offset = RIFF_HEADER.size
    while offset + SUBCHUNK_HEADER.size <= len(data):
        chunk_id, size = SUBCHUNK_HEADER.unpack_from(data, offset)
        body = offset + SUBCHUNK_HEADER.size

        if chunk_id == DATA_CHUNK:
            trace.append(ChunkInfo(_chunk_name(chunk_id), size, offset))
            return body, trace

        text = None
        if chunk_id == METADATA_CHUNK:
            text = data[body : body + size].decode("utf-8", errors="replace")
        trace.append(ChunkInfo(_chunk_name(chunk_id), size, offset, text))
        offset = body + size

    return offset, trace
