from __future__ import annotations

import asyncio
import json
from collections import deque

import pytest

from asr_harness.protocol.session import (
    ExchangeResult,
    ExchangeState,
    StreamingSession,
    TransportError,
    Verdict,
)


class FakeWs:
    """In-memory connection: records sends, serves scripted replies."""

    def __init__(self, replies: list[str | bytes] | None = None) -> None:
        self.sent: list[str | bytes] = []
        self._replies = deque(replies or [])

    async def send(self, message: str | bytes) -> None:
        self.sent.append(message)

    async def recv(self) -> str | bytes:
        if not self._replies:
            raise OSError("connection closed")
        return self._replies.popleft()

    def texts(self) -> list[dict]:
        return [json.loads(m) for m in self.sent if isinstance(m, str)]

    def acks(self) -> list[int]:
        return [m["sequence"] for m in self.texts() if m["messageType"] == "chat-ack"]


def _reply(text: str) -> str:
    return json.dumps({"result": {"r0": text}})


def _framed(seq: int, text: str) -> str:
    return f"DXTL host:chan:{seq}\n{_reply(text)}"


def _exchange(session: StreamingSession, sample, index: int = 1) -> ExchangeResult:
    return asyncio.run(session.exchange(sample, index))


def test_unframed_success_wire_sequence(make_sample) -> None:
    pcm = b"\x01\x02\x03\x04" * 8
    sample = make_sample("hello_world.wav", pcm)
    ws = FakeWs([_reply("Hello World")])
    session = StreamingSession(ws)

    result = _exchange(session, sample)

    assert result.verdict is Verdict.SUCCESS
    assert result.transcript == "Hello World"
    assert result.sequence is None
    assert not result.acked
    assert ws.sent[0] == '{"messageType":"audio-start"}'
    assert ws.sent[1] == pcm
    assert ws.sent[2] == '{"messageType":"audio-end"}'
    assert len(ws.sent) == 3
    assert session.state is ExchangeState.DONE


def test_raw_sample_streams_whole_buffer(tmp_path) -> None:
    from asr_harness.audio.samples import AudioSample

    path = tmp_path / "raw_audio.raw"
    path.write_bytes(b"\x09" * 20)
    ws = FakeWs([_reply("raw audio")])

    result = _exchange(StreamingSession(ws), AudioSample.load(path))

    assert ws.sent[1] == b"\x09" * 20
    assert result.verdict is Verdict.SUCCESS


def test_mismatch(make_sample) -> None:
    ws = FakeWs([_reply("goodbye")])

    result = _exchange(StreamingSession(ws), make_sample("hello_world.wav", b"\x00" * 4))

    assert result.verdict is Verdict.MISMATCH
    assert result.verdict.score == 0
    assert result.transcript == "goodbye"


def test_framed_reply_is_acked(make_sample) -> None:
    ws = FakeWs([_framed(42, "hi")])

    result = _exchange(StreamingSession(ws), make_sample("hi.wav", b"\x00" * 4), index=1)

    assert result.verdict is Verdict.SUCCESS
    assert result.sequence == 42
    assert result.acked
    assert ws.sent[-1] == '{"messageType":"chat-ack","sequence":42}'


def test_framed_bytes_reply(make_sample) -> None:
    ws = FakeWs([_framed(5, "HI").encode()])

    result = _exchange(StreamingSession(ws), make_sample("hi.wav", b"\x00" * 4))

    assert result.verdict is Verdict.SUCCESS
    assert ws.acks() == [5]


def test_skip_ack_reads_replay(make_sample) -> None:
    ws = FakeWs([_framed(9, "hi"), _framed(9, "hi")])
    session = StreamingSession(ws, replay_delay_s=0)

    result = _exchange(session, make_sample("hi.wav", b"\x00" * 4), index=100)

    assert result.verdict is Verdict.SUCCESS
    assert not result.acked
    assert ws.acks() == []
    # Both the reply and the replay were consumed.
    with pytest.raises(TransportError):
        _exchange(session, make_sample("hi.wav", b"\x00" * 4), index=101)


def test_ack_cadence_over_250_iterations(make_sample) -> None:
    sample = make_sample("hello.wav", b"\x00" * 4)
    replies: list[str] = []
    for i in range(1, 251):
        replies.append(_framed(1000 + i, "hello"))
        if i % 100 == 0:
            replies.append(_framed(1000 + i, "hello"))
    ws = FakeWs(replies)
    results: list[ExchangeResult] = []

    async def report(result: ExchangeResult) -> None:
        results.append(result)

    session = StreamingSession(ws, replay_delay_s=0)
    done = asyncio.run(session.run([sample], 250, report))

    assert done == 250
    skipped = [r.index for r in results if not r.acked]
    assert skipped == [100, 200]
    assert ws.acks() == [1000 + i for i in range(1, 251) if i not in (100, 200)]
    assert all(r.verdict is Verdict.SUCCESS for r in results)


def test_custom_ack_skip_interval(make_sample) -> None:
    ws = FakeWs([_framed(1, "a"), _framed(2, "a"), _framed(2, "a")])
    session = StreamingSession(ws, ack_skip_every=2, replay_delay_s=0)
    sample = make_sample("a.wav", b"\x00")

    assert session.skips_ack(2) and not session.skips_ack(3)
    _exchange(session, sample, index=1)
    _exchange(session, sample, index=2)

    assert ws.acks() == [1]


def test_bad_json_body_is_error_not_crash(make_sample) -> None:
    ws = FakeWs(["DXTL a:b:3\nnot json"])

    result = _exchange(StreamingSession(ws), make_sample("x.wav", b"\x00"))

    assert result.verdict is Verdict.ERROR
    assert result.sequence == 3
    # The ack is still sent before the body is inspected.
    assert ws.acks() == [3]


def test_missing_r0_is_error(make_sample) -> None:
    ws = FakeWs(['{"result": {"r1": "x"}}'])

    result = _exchange(StreamingSession(ws), make_sample("x.wav", b"\x00"))

    assert result.verdict is Verdict.ERROR
    assert result.transcript is None


def test_malformed_frame_header_sends_no_ack(make_sample) -> None:
    ws = FakeWs(['DXTL only-one-field\n{"result": {"r0": "x"}}'])

    result = _exchange(StreamingSession(ws), make_sample("x.wav", b"\x00"))

    assert result.verdict is Verdict.ERROR
    assert ws.acks() == []


def test_transport_failure_is_fatal(make_sample) -> None:
    ws = FakeWs([])

    with pytest.raises(TransportError):
        _exchange(StreamingSession(ws), make_sample("x.wav", b"\x00"))


def test_send_failure_is_fatal(make_sample) -> None:
    class BrokenWs(FakeWs):
        async def send(self, message: str | bytes) -> None:
            raise ConnectionResetError("peer reset")

    with pytest.raises(TransportError):
        _exchange(StreamingSession(BrokenWs()), make_sample("x.wav", b"\x00"))


def test_run_visits_samples_in_order(make_sample) -> None:
    a = make_sample("alpha.wav", b"\x01")
    b = make_sample("beta.wav", b"\x02")
    ws = FakeWs([_reply("alpha"), _reply("alpha"), _reply("beta"), _reply("nope")])
    results: list[ExchangeResult] = []

    async def report(result: ExchangeResult) -> None:
        results.append(result)

    asyncio.run(StreamingSession(ws).run([a, b], 2, report))

    assert [(r.expected, r.index, r.verdict) for r in results] == [
        ("alpha", 1, Verdict.SUCCESS),
        ("alpha", 2, Verdict.SUCCESS),
        ("beta", 1, Verdict.SUCCESS),
        ("beta", 2, Verdict.MISMATCH),
    ]


def test_invalid_settings() -> None:
    with pytest.raises(ValueError):
        StreamingSession(FakeWs(), ack_skip_every=0)
    with pytest.raises(ValueError):
        StreamingSession(FakeWs(), replay_delay_s=-1)


def test_skip_ack_waits_fixed_delay_before_replay(make_sample, monkeypatch: pytest.MonkeyPatch) -> None:
    import asr_harness.protocol.session as session_mod

    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr(session_mod.asyncio, "sleep", fake_sleep)
    sample = make_sample("hi.wav", b"\x00" * 4)
    ws = FakeWs([_framed(99, "hi"), _framed(100, "hi"), _framed(100, "hi")])
    session = StreamingSession(ws)

    _exchange(session, sample, index=99)
    assert delays == []

    _exchange(session, sample, index=100)
    assert delays == [0.010]
    assert ws.acks() == [99]
