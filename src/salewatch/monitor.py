"""SaleMonitor — wires subscriptions/backfill through the correlator into the sink."""

import asyncio
import logging
from collections.abc import Sequence

from salewatch.domain.models import BlockRange, EventDefinition, MarketDefinition, RawLog, SaleRecord
from salewatch.engine.backfill import HistoricalBackfill
from salewatch.engine.correlator import EventCorrelator
from salewatch.engine.multiplexer import LogStream, SubscriptionMultiplexer
from salewatch.exceptions import DecodeError, ExternalServiceError, SubscriptionError
from salewatch.markets import MarketRegistry
from salewatch.sinks import DispatchSink

logger = logging.getLogger(__name__)


class SaleMonitor:
    """Live watch and historical replay share the same correlate → dispatch path."""

    def __init__(
        self,
        registry: MarketRegistry,
        multiplexer: SubscriptionMultiplexer,
        backfill: HistoricalBackfill,
        correlator: EventCorrelator,
        sink: DispatchSink,
    ) -> None:
        self._registry = registry
        self._multiplexer = multiplexer
        self._backfill = backfill
        self._correlator = correlator
        self._sink = sink
        self._streams: list[LogStream] = []
        self.failed: list[tuple[str, str]] = []

    async def handle_logs(
        self,
        market: MarketDefinition,
        event: EventDefinition,
        logs: Sequence[RawLog],
    ) -> SaleRecord | None:
        """Correlate one batch and dispatch the result. Errors are logged and the batch skipped."""
        if not logs:
            return None
        tx_hash = logs[0].transaction_hash

        try:
            record = await self._correlator.correlate(market, event, logs)
        except DecodeError as e:
            logger.warning("Skipping <%s> on %s, TX %s: %s", event.name, market.name, tx_hash, e)
            return None
        except ExternalServiceError as e:
            logger.error("Chain error for <%s> on %s, TX %s: %s", event.name, market.name, tx_hash, e)
            return None
        except Exception:
            # One pair's bug must not take the other pairs' streams down
            logger.exception("Unexpected error correlating <%s> on %s, TX %s", event.name, market.name, tx_hash)
            return None

        if record is None:
            return None

        logger.info("New <%s> sale on %s, TX %s", event.name, market.name, tx_hash)
        try:
            await self._sink.on_sale_record(record)
        except Exception:
            logger.exception("Dispatch failed for <%s> on %s, TX %s", event.name, market.name, tx_hash)
            return None
        return record

    async def _consume(self, stream: LogStream) -> None:
        try:
            async for batch in stream:
                await self.handle_logs(stream.market, stream.event, batch)
        except SubscriptionError:
            self.failed.append((stream.market.name, stream.event.name))
            logger.exception("Stopped consuming <%s> on %s", stream.event.name, stream.market.name)

    async def watch(self) -> None:
        """Consume every pair's stream concurrently until all streams end (stop() or failure)."""
        self._streams = self._multiplexer.watch_all()
        try:
            await asyncio.gather(*(self._consume(stream) for stream in self._streams))
        finally:
            self.stop()

    def stop(self) -> None:
        for stream in self._streams:
            stream.cancel()

    async def replay(self, block_range: int | BlockRange) -> int:
        """Backfill every pair and push each log singly through handle_logs. Returns records dispatched."""
        logger.info("Replaying history: %s", block_range)
        dispatched = 0
        for market, event in self._registry.pairs():
            logs = await self._backfill.backfill(market, event, block_range)
            for log in logs:
                if await self.handle_logs(market, event, [log]) is not None:
                    dispatched += 1
        logger.info("Replay done, %d sales dispatched", dispatched)
        return dispatched
