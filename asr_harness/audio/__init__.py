"""Audio sample loading and RIFF/WAVE payload location."""

from asr_harness.audio.samples import AudioSample, discover_samples, expected_label, labels_match, load_samples
from asr_harness.audio.wave_container import ChunkInfo, locate_payload

__all__ = [
    "AudioSample",
    "ChunkInfo",
    "discover_samples",
    "expected_label",
    "labels_match",
    "load_samples",
    "locate_payload",
]
