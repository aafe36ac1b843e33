"""Validation and load-test client for websocket streaming ASR services."""

from asr_harness.orchestrator import AggregateResult, run_harness

__version__ = "0.1.0"

__all__ = [
    "AggregateResult",
    "run_harness",
    "__version__",
]
