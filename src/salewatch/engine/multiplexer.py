"""SubscriptionMultiplexer — one live log subscription per (market, event) pair."""

import asyncio
import logging
from collections.abc import Sequence

from salewatch.domain.models import EventDefinition, MarketDefinition, RawLog
from salewatch.exceptions import SubscriptionError
from salewatch.infra.chain.base import ChainLogSource, Subscription
from salewatch.markets import MarketRegistry

logger = logging.getLogger(__name__)

_CLOSED = object()


class LogStream:
    """Cancellable async stream of log batches for one (market, event) pair.

    Iterate with ``async for batch in stream``. If the underlying subscription
    dies, iteration raises SubscriptionError. ``cancel()`` is idempotent: the
    first call unsubscribes, discards batches not yet consumed and ends
    iteration, later calls do nothing.
    """

    def __init__(self, market: MarketDefinition, event: EventDefinition) -> None:
        self.market = market
        self.event = event
        self._queue: asyncio.Queue = asyncio.Queue()
        self._subscription: Subscription | None = None
        self._closed = False

    def _attach(self, subscription: Subscription) -> None:
        self._subscription = subscription

    def _push(self, logs: Sequence[RawLog]) -> None:
        if not self._closed:
            self._queue.put_nowait(list(logs))

    def _fail(self, exc: BaseException) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(exc)

    @property
    def closed(self) -> bool:
        return self._closed

    def cancel(self) -> None:
        if self._subscription is not None and not self._subscription.cancelled:
            self._subscription.cancel()
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)
        logger.info("Stopped watching <%s> on %s", self.event.name, self.market.name)

    async def next_batch(self) -> list[RawLog]:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            if self._subscription is not None:
                self._subscription.cancel()
            raise SubscriptionError(
                f"Subscription for <{self.event.name}> on {self.market.name} terminated: {item}"
            ) from item
        return item

    def __aiter__(self) -> "LogStream":
        return self

    async def __anext__(self) -> list[RawLog]:
        return await self.next_batch()


class SubscriptionMultiplexer:
    def __init__(self, source: ChainLogSource, registry: MarketRegistry) -> None:
        self._source = source
        self._registry = registry

    def watch(self, market: MarketDefinition, event: EventDefinition) -> LogStream:
        """Open one subscription on (market address, trigger-or-main topic)."""
        stream = LogStream(market, event)
        subscription = self._source.subscribe(
            market.contract_address,
            event.topic,
            on_batch=stream._push,
            on_error=stream._fail,
        )
        stream._attach(subscription)
        logger.info("Watching event <%s> on %s", event.name, market.name)
        return stream

    def watch_all(self) -> list[LogStream]:
        return [self.watch(market, event) for market, event in self._registry.pairs()]
