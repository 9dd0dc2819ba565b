"""Print a side-by-side of the four IO strategies against a slow echo server.

Contract
- Starts a private `DelayedEchoServer` on localhost.
- Runs blocking, polling, threaded and event_loop once each, in that order.
- Prints one row per strategy: frames rendered while waiting, worst frame, round trip.

Usage:
    uv run python scripts/compare_strategies.py --delay-ms 250 --frame-rate 60
"""

from __future__ import annotations

import argparse
import logging

from gameio.config import load_settings
from gameio.demos import compare_strategies


def _parse_args() -> argparse.Namespace:
    settings = load_settings()
    p = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    p.add_argument("--delay-ms", type=int, default=settings.echo_delay_ms)
    p.add_argument("--frame-rate", type=float, default=settings.frame_rate)
    p.add_argument("--max-frames", type=int, default=600)
    p.add_argument("--payload", default="ping")
    return p.parse_args()


def main() -> None:
    args = _parse_args()
    logging.basicConfig(level=load_settings().log_level)

    reports = compare_strategies(
        delay_s=args.delay_ms / 1000.0,
        payload=args.payload.encode("utf-8"),
        frame_rate=args.frame_rate,
        max_frames=args.max_frames,
    )

    print(f"{'strategy':<12} {'frames':>7} {'worst ms':>9} {'stalled':>8} {'rtt ms':>8}")
    for rep in reports:
        rtt = f"{rep.round_trip_ms:.1f}" if rep.round_trip_ms is not None else "-"
        print(f"{rep.strategy.value:<12} {rep.frames:>7} {rep.longest_frame_ms:>9.1f} {rep.stalled_frames:>8} {rtt:>8}")


if __name__ == "__main__":
    main()
