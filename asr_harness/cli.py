from __future__ import annotations

import argparse
import asyncio
import os
import signal
import sys
from pathlib import Path

from asr_harness.audio.samples import discover_samples, load_samples
from asr_harness.config import (
    DEFAULT_ENDPOINT,
    KNOWN_ENVIRONMENTS,
    HarnessConfig,
    env_bool,
    env_int,
    env_str,
)
from asr_harness.harness_logging import configure, get_logger
from asr_harness.orchestrator import run_harness
from asr_harness.protocol.session import ACK_SKIP_EVERY, TransportError

log = get_logger("HARNESS")

EXIT_FAILURE = 255


def _positive_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from exc
    if n < 1:
        raise argparse.ArgumentTypeError("must be >= 1")
    return n


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="asr-harness",
        description="Stream labelled audio to a websocket ASR service and tally matching transcripts",
    )
    p.add_argument(
        "--wave-folder",
        default=env_str("ASR_HARNESS_WAVE_FOLDER") or None,
        help="Folder to glob for .wav and .raw audio",
    )
    p.add_argument(
        "--wav",
        action="append",
        default=[],
        metavar="FILE",
        help="Audio file to test (repeatable, appended after folder results)",
    )
    p.add_argument(
        "--endpoint",
        default=env_str("ASR_HARNESS_ENDPOINT", DEFAULT_ENDPOINT),
        help="Websocket server address (host:port)",
    )
    p.add_argument(
        "--ssl",
        action=argparse.BooleanOptionalAction,
        default=env_bool("ASR_HARNESS_SSL", True),
        help="Use an SSL (wss) connection",
    )
    p.add_argument(
        "--iterations",
        type=_positive_int,
        default=env_int("ASR_HARNESS_ITERATIONS", 1),
        help="Number of iterations per audio file",
    )
    p.add_argument(
        "--parallel",
        type=_positive_int,
        default=env_int("ASR_HARNESS_PARALLEL", 1),
        help="Number of parallel clients to spawn",
    )
    p.add_argument(
        "--ack-skip-every",
        type=_positive_int,
        default=env_int("ASR_HARNESS_ACK_SKIP_EVERY", ACK_SKIP_EVERY),
        help="Withhold the ack on every Nth iteration and read the replay instead",
    )
    p.add_argument("--log-level", default=env_str("ASR_HARNESS_LOG_LEVEL", "INFO"))
    p.add_argument("--env", action="store_true", help="Help on known environments (for endpoint)")
    return p


def config_from_args(args: argparse.Namespace) -> HarnessConfig:
    paths: list[Path] = []
    if args.wave_folder:
        paths.extend(discover_samples(args.wave_folder))
    paths.extend(Path(p) for p in args.wav)
    return HarnessConfig(
        samples=tuple(paths),
        endpoint=(args.endpoint or "").strip(),
        ssl=bool(args.ssl),
        iterations=args.iterations,
        parallel=args.parallel,
        ack_skip_every=args.ack_skip_every,
        log_level=args.log_level,
    )


def _abort(signum: int, _frame: object) -> None:
    log.error("HARNESS.Run.Interrupted", extra={"fields": {"signal": signal.Signals(signum).name}})
    sys.stdout.flush()
    os._exit(EXIT_FAILURE)


def install_abort_handlers() -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _abort)
        except (ValueError, OSError):
            # Not on the main thread, or the platform lacks the signal.
            pass


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.env:
        print(KNOWN_ENVIRONMENTS)
        return EXIT_FAILURE

    config = config_from_args(args)
    configure(config.log_level)
    try:
        config.validate()
    except ValueError as exc:
        log.error("HARNESS.Config.Invalid", extra={"fields": {"error": str(exc)}})
        return EXIT_FAILURE

    samples = load_samples(config.samples)
    if not samples:
        log.error("HARNESS.Config.Invalid", extra={"fields": {"error": "none of the audio files could be read"}})
        return EXIT_FAILURE

    install_abort_handlers()
    try:
        result = asyncio.run(
            run_harness(
                samples,
                url=config.url,
                iterations=config.iterations,
                parallel=config.parallel,
                ack_skip_every=config.ack_skip_every,
                replay_delay_s=config.replay_delay_s,
            )
        )
    except TransportError as exc:
        log.error("HARNESS.Run.Failed", extra={"fields": {"error": str(exc)}})
        return EXIT_FAILURE

    print(result.summary())
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
