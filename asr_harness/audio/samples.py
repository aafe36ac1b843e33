from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from asr_harness.harness_logging import get_logger

log = get_logger("HARNESS.Samples")

AUDIO_PATTERNS = ("*.wav", "*.raw")


def expected_label(path: str | Path) -> str:
    """hello_world.wav -> "hello world"."""

    return Path(path).stem.replace("_", " ")


def labels_match(transcript: str, expected: str) -> bool:
    return transcript.lower() == expected.lower()


@dataclass(frozen=True, slots=True)
class AudioSample:
    path: Path
    data: bytes
    expected: str

    @classmethod
    def load(cls, path: str | Path) -> "AudioSample":
        p = Path(path)
        return cls(path=p, data=p.read_bytes(), expected=expected_label(p))


def discover_samples(folder: str | Path) -> list[Path]:
    """Glob a folder for .wav and .raw audio, sorted by name."""

    root = Path(folder)
    found: set[Path] = set()
    for pattern in AUDIO_PATTERNS:
        found.update(p for p in root.glob(pattern) if p.is_file())
    return sorted(found)


def load_samples(paths: Iterable[str | Path]) -> tuple[AudioSample, ...]:
    """Read every sample into memory. Missing files are logged and skipped."""

    samples: list[AudioSample] = []
    for path in paths:
        p = Path(path)
        if not p.is_file():
            log.warning("HARNESS.Samples.NotFound", extra={"fields": {"path": str(p)}})
            continue
        sample = AudioSample.load(p)
        log.info(
            "HARNESS.Samples.Loaded",
            extra={"fields": {"path": str(p), "bytes": len(sample.data), "expected": sample.expected}},
        )
        samples.append(sample)
    return tuple(samples)
