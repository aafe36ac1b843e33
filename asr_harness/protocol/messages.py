"""Wire messages for the streaming ASR protocol.

Outbound control messages are compact JSON text frames. Inbound replies come
in two shapes:

- unframed: a bare JSON object ``{"result": {"r0": "...", ...}}``
- framed: ``DXTL<header>\\n<json>`` where the header fields are separated by
  ``:`` or ``;`` and field 2 carries the sequence number to acknowledge.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass

FRAME_TAG = b"DXTL"
SEQUENCE_FIELD = 2

_HEADER_SPLIT = re.compile(rb"[:;]")


class ReplyParseError(ValueError):
    """Raised when a reply cannot be decoded into a transcript."""


@dataclass(frozen=True, slots=True)
class FramedReply:
    fields: tuple[str, ...]
    sequence: int
    body: bytes


def _send_msg(payload: dict[str, object]) -> str:
    return json.dumps(payload, separators=(",", ":"))


def audio_start() -> str:
    return _send_msg({"messageType": "audio-start"})


def audio_end() -> str:
    return _send_msg({"messageType": "audio-end"})


def chat_ack(sequence: int) -> str:
    return _send_msg({"messageType": "chat-ack", "sequence": int(sequence)})


def as_bytes(message: str | bytes) -> bytes:
    if isinstance(message, str):
        return message.encode("utf-8")
    return bytes(message)


def is_framed(reply: bytes) -> bool:
    return reply[: len(FRAME_TAG)] == FRAME_TAG


def parse_framed(reply: bytes) -> FramedReply:
    if not is_framed(reply):
        raise ReplyParseError("reply does not start with the DXTL frame tag")

    newline = reply.find(b"\n")
    if newline < 0:
        raise ReplyParseError("framed reply has no header terminator")

    header = reply[:newline]
    fields = tuple(
        f.decode("utf-8", errors="replace") for f in _HEADER_SPLIT.split(header) if f
    )
    if len(fields) <= SEQUENCE_FIELD:
        raise ReplyParseError(f"framed header has {len(fields)} fields, need at least {SEQUENCE_FIELD + 1}")

    raw_seq = fields[SEQUENCE_FIELD].strip()
    try:
        sequence = int(raw_seq)
    except ValueError as exc:
        raise ReplyParseError(f"invalid sequence tag {raw_seq!r}") from exc

    return FramedReply(fields=fields, sequence=sequence, body=reply[newline:])


def extract_transcript(body: bytes | str) -> str:
    """Return ``result["r0"]`` from a JSON reply body."""

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ReplyParseError(f"reply body is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise ReplyParseError("reply body is not a JSON object")
    result = payload.get("result")
    if not isinstance(result, dict):
        raise ReplyParseError("reply has no 'result' mapping")
    transcript = result.get("r0")
    if not isinstance(transcript, str):
        raise ReplyParseError("reply result has no string 'r0'")
    return transcript
