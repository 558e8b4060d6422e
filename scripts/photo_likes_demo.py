#!/usr/bin/env python3
"""Console demo of optimistic, debounced photo likes.

Simulates a user clicking like/unlike on a grid of photos while a fake
backend commits batches with random latency and an optional failure rate.
Every change event reprints the grid:

    ♥  liked        ♡  not liked        *  locked (commit in flight)

Examples:
    python scripts/photo_likes_demo.py
    python scripts/photo_likes_demo.py --clicks 40 --failure-rate 0.3 -v
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
import sys
from pathlib import Path
from typing import Any

_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from optibatch import BatchConfig, ChangeEvent, OptimisticBatchEngine  # noqa: E402


class FakeBackend:
    """Commit function with random latency that fails some of the time."""

    def __init__(self, *, latency: tuple[float, float], failure_rate: float, rng: random.Random) -> None:
        self._latency = latency
        self._failure_rate = failure_rate
        self._rng = rng
        self.commits = 0
        self.failures = 0

    async def __call__(self, batch: list[dict[str, Any]]) -> None:
        self.commits += 1
        await asyncio.sleep(self._rng.uniform(*self._latency))
        if self._rng.random() < self._failure_rate:
            self.failures += 1
            raise ConnectionError(f"backend rejected {len(batch)} update(s)")


def _render(view: list[dict[str, Any]]) -> str:
    cells = []
    for photo in view:
        heart = "♥" if photo["liked"] else "♡"
        marker = "*" if photo["locked"] else " "
        cells.append(f"{photo['id']:>2}{heart}{marker}")
    return " ".join(cells)


async def _run(args: argparse.Namespace) -> int:
    rng = random.Random(args.seed)
    photos = [{"id": str(i), "liked": False} for i in range(1, args.photos + 1)]
    backend = FakeBackend(
        latency=(args.min_latency, args.max_latency),
        failure_rate=args.failure_rate,
        rng=rng,
    )
    config = BatchConfig.from_env(
        **{
            key: value
            for key, value in {"quiet_period_ms": args.quiet_period_ms, "max_wait_ms": args.max_wait_ms}.items()
            if value is not None
        }
    )

    async with OptimisticBatchEngine(photos, backend, config=config) as engine:

        def on_change(event: ChangeEvent) -> None:
            label = f"{event.reason.value:<10}"
            if event.batch_seq is not None:
                label += f" batch={event.batch_seq}"
            print(f"{_render(engine.current_view())}   {label}")

        engine.subscribe(on_change)

        for _ in range(args.clicks):
            photo = rng.choice(engine.current_view())
            engine.submit_update({"id": photo["id"], "liked": not photo["liked"]})
            await asyncio.sleep(rng.uniform(0.0, args.max_click_gap))

    print(f"\ncommit calls: {backend.commits}  failed: {backend.failures}")
    print(f"final: {_render(engine.current_view())}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--photos", type=int, default=9, help="Number of photos in the grid (default: 9)")
    parser.add_argument("--clicks", type=int, default=25, help="Simulated like/unlike clicks (default: 25)")
    parser.add_argument("--max-click-gap", type=float, default=0.4, help="Max seconds between clicks")
    parser.add_argument("--min-latency", type=float, default=1.5, help="Min commit latency in seconds")
    parser.add_argument("--max-latency", type=float, default=2.0, help="Max commit latency in seconds")
    parser.add_argument("--failure-rate", type=float, default=0.0, help="Probability a commit fails (0..1)")
    parser.add_argument("--quiet-period-ms", type=int, default=None, help="Debounce quiet period")
    parser.add_argument("--max-wait-ms", type=int, default=None, help="Debounce ceiling")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for a reproducible run")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable DEBUG logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
