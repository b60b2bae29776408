"""HistoricalBackfill — sequential, chunked log queries over a past block window."""

import logging
from collections.abc import Iterator

from salewatch.domain.models import BlockRange, EventDefinition, MarketDefinition, RawLog
from salewatch.infra.chain.base import ChainLogSource

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 10_000
DEFAULT_LOOKBACK_BLOCKS = 100_000


def iter_chunks(start_block: int, end_block: int, chunk_size: int) -> Iterator[tuple[int, int]]:
    """Split [start_block, end_block) into consecutive half-open windows of at most chunk_size."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    for from_block in range(start_block, end_block, chunk_size):
        yield from_block, min(from_block + chunk_size, end_block)


class HistoricalBackfill:
    """Replay tool: no partial results and no retries. A failed chunk aborts the whole call."""

    def __init__(self, source: ChainLogSource, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._source = source
        self._chunk_size = chunk_size

    async def resolve_range(self, block_range: int | BlockRange) -> tuple[int, int]:
        """An int N means the last N blocks; the head is fetched fresh on every call."""
        if isinstance(block_range, BlockRange):
            return block_range.start_block, block_range.end_block
        if block_range < 0:
            raise ValueError(f"Block count must be >= 0, got {block_range}")
        end_block = await self._source.current_block_height()
        return max(end_block - block_range, 0), end_block

    async def backfill(
        self,
        market: MarketDefinition,
        event: EventDefinition,
        block_range: int | BlockRange = DEFAULT_LOOKBACK_BLOCKS,
    ) -> list[RawLog]:
        start_block, end_block = await self.resolve_range(block_range)
        logger.info(
            "Backfilling <%s> on %s over [%d, %d)", event.name, market.name, start_block, end_block,
        )

        logs: list[RawLog] = []
        for from_block, to_block in iter_chunks(start_block, end_block, self._chunk_size):
            chunk = await self._source.get_logs(market.contract_address, event.topic, from_block, to_block)
            logger.debug("Chunk [%d, %d): %d logs", from_block, to_block, len(chunk))
            logs.extend(chunk)

        logger.info("Backfill of <%s> on %s found %d logs", event.name, market.name, len(logs))
        return logs
