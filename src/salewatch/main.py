"""Run the sale monitor.

Usage:
    salewatch                              # live watch of every configured market
    salewatch --replay-blocks 50000        # live watch + replay of the last 50k blocks
    salewatch --replay-range 100,200 --no-watch
"""

import argparse
import asyncio
import logging
import sys

from salewatch.config import Settings
from salewatch.container import Container
from salewatch.domain.models import BlockRange
from salewatch.exceptions import ExternalServiceError
from salewatch.monitor import SaleMonitor

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(asctime)s %(levelname)-5s %(name)s - %(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="salewatch", description="Watch marketplace contracts for sales.")
    parser.add_argument("--replay-blocks", type=int, help="Replay the last N blocks at startup")
    parser.add_argument("--replay-range", help="Replay the block range START,END at startup")
    parser.add_argument("--no-watch", action="store_true", help="Only run the replay, skip live watching")
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    overrides: dict = {}
    if args.replay_blocks is not None:
        overrides["replay_blocks"] = args.replay_blocks
    if args.replay_range is not None:
        overrides["replay_range"] = args.replay_range
    return settings.model_copy(update=overrides) if overrides else settings


async def _delayed_replay(monitor: SaleMonitor, block_range: int | BlockRange, delay: float) -> int:
    await asyncio.sleep(delay)
    try:
        return await monitor.replay(block_range)
    except ExternalServiceError:
        # Replay is a one-shot tool; leave the live watch running
        logger.exception("Replay of %s aborted, re-run with an adjusted range", block_range)
        return 0


async def run(container: Container, watch: bool = True) -> int:
    """Run replay and/or live watch. Returns the process exit code."""
    settings = container.settings()
    replay_range = settings.replay_block_range
    monitor = container.monitor()
    http = container.http_client()

    try:
        if not watch:
            if replay_range is not None:
                await monitor.replay(replay_range)
            else:
                logger.warning("Nothing to do: --no-watch without a replay range")
            return 0

        tasks = [asyncio.create_task(monitor.watch(), name="watch")]
        if replay_range is not None:
            tasks.append(asyncio.create_task(
                _delayed_replay(monitor, replay_range, settings.replay_delay_seconds), name="replay",
            ))
        try:
            await asyncio.gather(*tasks)
        finally:
            monitor.stop()
            for task in tasks:
                task.cancel()
        if monitor.failed:
            logger.error("Live watch ended, subscriptions gave up: %s", monitor.failed)
            return 1
        return 0
    finally:
        await http.close()


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    container = Container()
    settings = apply_overrides(container.settings(), args)
    container.settings.override(settings)
    _configure_logging(settings.log_level)

    try:
        exit_code = asyncio.run(run(container, watch=not args.no_watch))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return
    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
