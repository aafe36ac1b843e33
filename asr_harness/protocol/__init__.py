"""Streaming recognition protocol: wire messages and per-connection sessions."""

from asr_harness.protocol.messages import FramedReply, ReplyParseError
from asr_harness.protocol.session import (
    ExchangeResult,
    ExchangeState,
    StreamingSession,
    TransportError,
    Verdict,
    connect,
)

__all__ = [
    "ExchangeResult",
    "ExchangeState",
    "FramedReply",
    "ReplyParseError",
    "StreamingSession",
    "TransportError",
    "Verdict",
    "connect",
]
