from __future__ import annotations

import struct
from pathlib import Path
from typing import Callable

import pytest

from asr_harness.audio.samples import AudioSample


def build_wave(pcm: bytes, *, extra_chunks: list[tuple[bytes, bytes]] | None = None) -> bytes:
    """Assemble a minimal RIFF/WAVE buffer: optional subchunks, then data."""

    body = b""
    for chunk_id, chunk_body in extra_chunks or []:
        body += struct.pack("<4sI", chunk_id, len(chunk_body)) + chunk_body
    body += struct.pack("<4sI", b"data", len(pcm)) + pcm
    return struct.pack("<4sI4s", b"RIFF", 4 + len(body), b"WAVE") + body


def fmt_chunk() -> tuple[bytes, bytes]:
    # PCM, mono, 16 kHz, 16-bit
    return b"fmt ", struct.pack("<HHIIHH", 1, 1, 16000, 32000, 2, 16)


@pytest.fixture
def make_wave() -> Callable[..., bytes]:
    return build_wave


@pytest.fixture
def make_sample(tmp_path: Path) -> Callable[[str, bytes], AudioSample]:
    def _make(name: str, pcm: bytes) -> AudioSample:
        path = tmp_path / name
        path.write_bytes(build_wave(pcm, extra_chunks=[fmt_chunk()]))
        return AudioSample.load(path)

    return _make
