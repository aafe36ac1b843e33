from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from asr_harness.protocol.session import ACK_SKIP_EVERY, REPLAY_DELAY_S

DEFAULT_ENDPOINT = "127.0.0.1:9350"

KNOWN_ENVIRONMENTS = """
    Known Environments
    ------------------

    CAT    dev    tap01.dev.exm-platform.com:9350
    CAT    prd    cat-ap.prod.exm-platform.com:9350
    KB4    dev    kb4-dev.exm-platform.com:9350
    KB4    ecs    websocket-server.aws-kb4-dev.exm-platform.com:443
    KB4    lt     52.221.181.65:9350
    BLD    dev    127.0.0.1:9350

"""


def env_str(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def env_int(name: str, default: int) -> int:
    v = os.environ.get(name)
    if v is None or v.strip() == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def env_bool(name: str, default: bool) -> bool:
    v = os.environ.get(name)
    if v is None or v.strip() == "":
        return default
    return v.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class HarnessConfig:
    samples: tuple[Path, ...] = field(default_factory=tuple)
    endpoint: str = DEFAULT_ENDPOINT
    ssl: bool = True
    iterations: int = 1
    parallel: int = 1
    ack_skip_every: int = ACK_SKIP_EVERY
    replay_delay_s: float = REPLAY_DELAY_S
    log_level: str = "INFO"

    @property
    def scheme(self) -> str:
        return "wss" if self.ssl else "ws"

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.endpoint}"

    def validate(self) -> None:
        if not self.endpoint:
            raise ValueError("You must specify a target endpoint")
        if not self.samples:
            raise ValueError("Folder has no audio files (.[raw|wav])")
        if self.iterations < 1:
            raise ValueError("iterations must be >= 1")
        if self.parallel < 1:
            raise ValueError("parallel must be >= 1")
        if self.ack_skip_every < 1:
            raise ValueError("ack_skip_every must be >= 1")
