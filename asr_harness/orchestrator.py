"""Fan out parallel sessions and tally their verdicts.

Every session gets the full sample tuple and its own connection. Verdicts
flow through a queue to a single aggregator task, which is the only writer
of the tally.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Sequence

from asr_harness.audio.samples import AudioSample
from asr_harness.harness_logging import get_logger
from asr_harness.protocol.session import ACK_SKIP_EVERY, REPLAY_DELAY_S, ExchangeResult, Verdict, connect

log = get_logger("HARNESS.Run")


@dataclass(frozen=True, slots=True)
class AggregateResult:
    successes: int
    attempted: int
    expected_total: int
    mismatches: int = 0
    errors: int = 0

    @property
    def failures(self) -> int:
        return self.attempted - self.successes

    @property
    def complete(self) -> bool:
        return self.attempted == self.expected_total

    def summary(self) -> str:
        return f"Successfully matched {self.successes} replies out of {self.attempted} requests"


class Aggregator:
    """Single consumer of exchange results."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ExchangeResult] = asyncio.Queue()
        self.successes = 0
        self.attempted = 0
        self.mismatches = 0
        self.errors = 0

    async def report(self, result: ExchangeResult) -> None:
        await self._queue.put(result)

    def _count(self, result: ExchangeResult) -> None:
        self.attempted += 1
        self.successes += result.verdict.score
        if result.verdict is Verdict.MISMATCH:
            self.mismatches += 1
        elif result.verdict is Verdict.ERROR:
            self.errors += 1

    async def consume(self) -> None:
        while True:
            result = await self._queue.get()
            try:
                self._count(result)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        await self._queue.join()

    def result(self, expected_total: int) -> AggregateResult:
        return AggregateResult(
            successes=self.successes,
            attempted=self.attempted,
            expected_total=expected_total,
            mismatches=self.mismatches,
            errors=self.errors,
        )


async def _session_worker(
    session_id: int,
    url: str,
    samples: Sequence[AudioSample],
    iterations: int,
    aggregator: Aggregator,
    *,
    ack_skip_every: int,
    replay_delay_s: float,
) -> int:
    async with connect(
        url,
        session_id=session_id,
        ack_skip_every=ack_skip_every,
        replay_delay_s=replay_delay_s,
    ) as session:
        done = await session.run(samples, iterations, aggregator.report)
    log.info("HARNESS.Session.Finished", extra={"fields": {"session": session_id, "exchanges": done}})
    return done


async def run_harness(
    samples: Sequence[AudioSample],
    *,
    url: str,
    iterations: int = 1,
    parallel: int = 1,
    ack_skip_every: int = ACK_SKIP_EVERY,
    replay_delay_s: float = REPLAY_DELAY_S,
) -> AggregateResult:
    """Run ``parallel`` sessions, each over every sample ``iterations`` times.

    The first TransportError cancels all remaining sessions and propagates;
    no partial result is returned in that case.
    """

    if not samples:
        raise ValueError("no audio samples to test")
    if iterations < 1:
        raise ValueError("iterations must be >= 1")
    if parallel < 1:
        raise ValueError("parallel must be >= 1")

    samples = tuple(samples)
    expected_total = parallel * iterations * len(samples)
    aggregator = Aggregator()
    consumer = asyncio.create_task(aggregator.consume())
    workers = [
        asyncio.create_task(
            _session_worker(
                i,
                url,
                samples,
                iterations,
                aggregator,
                ack_skip_every=ack_skip_every,
                replay_delay_s=replay_delay_s,
            )
        )
        for i in range(parallel)
    ]

    log.info(
        "HARNESS.Run.Started",
        extra={"fields": {"url": url, "parallel": parallel, "iterations": iterations, "samples": len(samples)}},
    )
    t0 = time.perf_counter()
    try:
        await asyncio.gather(*workers)
        await aggregator.drain()
    finally:
        for task in (*workers, consumer):
            task.cancel()
        await asyncio.gather(*workers, consumer, return_exceptions=True)

    result = aggregator.result(expected_total)
    log.info(
        "HARNESS.Run.Finished",
        extra={
            "fields": {
                "successes": result.successes,
                "attempted": result.attempted,
                "mismatches": result.mismatches,
                "errors": result.errors,
                "complete": result.complete,
                "wall_s": round(time.perf_counter() - t0, 3),
            }
        },
    )
    return result
