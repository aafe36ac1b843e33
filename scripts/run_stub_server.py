from __future__ import annotations

import argparse
import asyncio
import itertools
import json

import websockets


def _reply(transcript: str, *, framed: bool, seq: int) -> str:
    body = json.dumps({"result": {"r0": transcript}})
    if framed:
        return f"DXTL stub:{seq}:{seq}\n{body}"
    return body


async def main() -> int:
    p = argparse.ArgumentParser(description="Local stand-in ASR server for asr-harness smoke runs")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=9350)
    p.add_argument("--transcript", default="hello world", help="Transcript returned for every utterance")
    p.add_argument("--framed", action="store_true", help="Send DXTL-framed replies and expect acks")
    args = p.parse_args()

    counter = itertools.count(1)

    async def handler(ws) -> None:
        last = ""
        async for msg in ws:
            if isinstance(msg, bytes):
                continue
            kind = json.loads(msg).get("messageType")
            if kind == "audio-end":
                last = _reply(args.transcript, framed=args.framed, seq=next(counter))
                await ws.send(last)
                if args.framed:
                    # Redeliver if the client withholds its ack.
                    try:
                        ack = await asyncio.wait_for(ws.recv(), timeout=0.5)
                    except asyncio.TimeoutError:
                        await ws.send(last)
                        continue
                    print(f"ack {ack}", flush=True)

    async with websockets.serve(handler, args.host, args.port, max_size=None):
        print(f"stub ASR server on ws://{args.host}:{args.port}", flush=True)
        await asyncio.Future()
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
