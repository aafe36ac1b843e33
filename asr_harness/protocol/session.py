"""One websocket connection driving sequential recognition exchanges."""

from __future__ import annotations

import asyncio
import contextlib
import enum
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol, Sequence

import websockets
from websockets.exceptions import WebSocketException

from asr_harness.audio.samples import AudioSample, labels_match
from asr_harness.audio.wave_container import locate_payload
from asr_harness.harness_logging import get_logger
from asr_harness.protocol import messages
from asr_harness.protocol.messages import ReplyParseError

log = get_logger("HARNESS.Session")

ACK_SKIP_EVERY = 100
REPLAY_DELAY_S = 0.010

_TRANSPORT_ERRORS = (WebSocketException, OSError, asyncio.TimeoutError)


class TransportError(RuntimeError):
    """Raised when the websocket cannot be opened, read or written. Fatal to the run."""


class Connection(Protocol):
    async def send(self, message: str | bytes) -> None:
        ...

    async def recv(self) -> str | bytes:
        ...


class Verdict(enum.Enum):
    SUCCESS = "success"
    MISMATCH = "mismatch"
    ERROR = "error"

    @property
    def score(self) -> int:
        return 1 if self is Verdict.SUCCESS else 0


class ExchangeState(enum.Enum):
    IDLE = "idle"
    START_SENT = "start_sent"
    STREAMING = "streaming"
    END_SENT = "end_sent"
    AWAITING_REPLY = "awaiting_reply"
    ACKED = "acked"
    SKIPPED_ACK = "skipped_ack"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class ExchangeResult:
    session_id: int
    index: int
    expected: str
    verdict: Verdict
    transcript: str | None = None
    sequence: int | None = None
    acked: bool = False
    reply: str = ""


Reporter = Callable[[ExchangeResult], Awaitable[None]]


class StreamingSession:
    """Drives exchanges over a connection it exclusively owns.

    Exchanges are strictly sequential; the connection is reused for every
    sample and iteration.
    """

    def __init__(
        self,
        ws: Connection,
        *,
        session_id: int = 0,
        ack_skip_every: int = ACK_SKIP_EVERY,
        replay_delay_s: float = REPLAY_DELAY_S,
    ) -> None:
        if ack_skip_every < 1:
            raise ValueError("ack_skip_every must be >= 1")
        if replay_delay_s < 0:
            raise ValueError("replay_delay_s must be >= 0")
        self._ws = ws
        self.session_id = session_id
        self._ack_skip_every = ack_skip_every
        self._replay_delay_s = replay_delay_s
        self.state = ExchangeState.IDLE

    def _enter(self, state: ExchangeState) -> None:
        self.state = state
        log.debug(
            "HARNESS.Exchange.State",
            extra={"fields": {"session": self.session_id, "state": state.value}},
        )

    async def _send(self, message: str | bytes) -> None:
        try:
            await self._ws.send(message)
        except _TRANSPORT_ERRORS as exc:
            raise TransportError(f"session {self.session_id}: send failed: {exc!r}") from exc

    async def _recv(self) -> bytes:
        try:
            message = await self._ws.recv()
        except _TRANSPORT_ERRORS as exc:
            raise TransportError(f"session {self.session_id}: receive failed: {exc!r}") from exc
        return messages.as_bytes(message)

    def skips_ack(self, index: int) -> bool:
        return index % self._ack_skip_every == 0

    async def exchange(self, sample: AudioSample, index: int) -> ExchangeResult:
        """Run one start/audio/end/reply cycle for ``sample``.

        ``index`` is the 1-based iteration number; every ``ack_skip_every``-th
        exchange withholds the ack and reads the server's replay instead.
        """

        fields: dict[str, Any] = {"session": self.session_id, "index": index, "path": str(sample.path)}
        self._enter(ExchangeState.IDLE)

        await self._send(messages.audio_start())
        self._enter(ExchangeState.START_SENT)

        offset, trace = locate_payload(sample.data)
        for chunk in trace:
            if chunk.text is not None:
                log.info("HARNESS.Exchange.Metadata", extra={"fields": {**fields, "metadata": chunk.text}})
        log.debug(
            "HARNESS.Exchange.Payload",
            extra={"fields": {**fields, "offset": offset, "chunks": [c.chunk_id for c in trace]}},
        )
        await self._send(sample.data[offset:])
        self._enter(ExchangeState.STREAMING)

        await self._send(messages.audio_end())
        self._enter(ExchangeState.END_SENT)

        self._enter(ExchangeState.AWAITING_REPLY)
        reply = await self._recv()
        reply_text = reply.decode("utf-8", errors="replace")

        body = reply
        sequence: int | None = None
        acked = False
        if messages.is_framed(reply):
            try:
                framed = messages.parse_framed(reply)
            except ReplyParseError as exc:
                log.error("HARNESS.Exchange.BadFrame", extra={"fields": {**fields, "error": str(exc), "reply": reply_text}})
                self._enter(ExchangeState.DONE)
                return ExchangeResult(self.session_id, index, sample.expected, Verdict.ERROR, reply=reply_text)

            sequence = framed.sequence
            body = framed.body
            fields["header"] = list(framed.fields)
            if self.skips_ack(index):
                log.info("HARNESS.Ack.Skipped", extra={"fields": {**fields, "sequence": sequence}})
                self._enter(ExchangeState.SKIPPED_ACK)
                await asyncio.sleep(self._replay_delay_s)
                replay = await self._recv()
                log.info(
                    "HARNESS.Ack.Replay",
                    extra={"fields": {**fields, "reply": replay.decode("utf-8", errors="replace")}},
                )
            else:
                await self._send(messages.chat_ack(sequence))
                acked = True
                log.debug("HARNESS.Ack.Sent", extra={"fields": {**fields, "sequence": sequence}})
                self._enter(ExchangeState.ACKED)

        self._enter(ExchangeState.DONE)
        try:
            transcript = messages.extract_transcript(body)
        except ReplyParseError as exc:
            log.error("HARNESS.Exchange.BadReply", extra={"fields": {**fields, "error": str(exc), "reply": reply_text}})
            return ExchangeResult(
                self.session_id, index, sample.expected, Verdict.ERROR, sequence=sequence, acked=acked, reply=reply_text
            )

        if labels_match(transcript, sample.expected):
            verdict = Verdict.SUCCESS
            log.info("HARNESS.Exchange.Success", extra={"fields": {**fields, "transcript": transcript}})
        else:
            verdict = Verdict.MISMATCH
            log.warning(
                "HARNESS.Exchange.Mismatch",
                extra={"fields": {**fields, "expected": sample.expected, "reply": reply_text}},
            )
        return ExchangeResult(
            self.session_id,
            index,
            sample.expected,
            verdict,
            transcript=transcript,
            sequence=sequence,
            acked=acked,
            reply=reply_text,
        )

    async def run(self, samples: Sequence[AudioSample], iterations: int, report: Reporter) -> int:
        """Run every sample ``iterations`` times in order, reporting each result.

        Returns the number of exchanges performed.
        """

        if iterations < 1:
            raise ValueError("iterations must be >= 1")
        done = 0
        for sample in samples:
            log.info(
                "HARNESS.Session.Sample",
                extra={"fields": {"session": self.session_id, "path": str(sample.path), "expected": sample.expected}},
            )
            for index in range(1, iterations + 1):
                result = await self.exchange(sample, index)
                await report(result)
                done += 1
        return done


@contextlib.asynccontextmanager
async def connect(
    url: str,
    *,
    session_id: int = 0,
    ack_skip_every: int = ACK_SKIP_EVERY,
    replay_delay_s: float = REPLAY_DELAY_S,
) -> AsyncIterator[StreamingSession]:
    log.info("HARNESS.Session.Connecting", extra={"fields": {"session": session_id, "url": url}})
    try:
        ws = await websockets.connect(url, max_size=None)
    except _TRANSPORT_ERRORS as exc:
        raise TransportError(f"session {session_id}: cannot connect to {url}: {exc!r}") from exc

    log.info("HARNESS.Session.Connected", extra={"fields": {"session": session_id, "url": url}})
    try:
        yield StreamingSession(
            ws,
            session_id=session_id,
            ack_skip_every=ack_skip_every,
            replay_delay_s=replay_delay_s,
        )
    finally:
        await ws.close()
