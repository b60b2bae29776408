"""JSON-RPC backed Chain Log Source with polling subscriptions."""

import asyncio
import logging

from salewatch.domain.models import RawLog, TransactionReceipt
from salewatch.exceptions import ExternalServiceError
from salewatch.infra.chain.base import BatchCallback, ChainLogSource, ErrorCallback, Subscription
from salewatch.infra.chain.rpc_client import EvmRPCClient

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 60.0


class PollingSubscription(Subscription):
    """Polls for new blocks and fetches matching logs for each new window.

    Starts at the head observed on the first poll, so only logs from later
    blocks are delivered. A catch-up window larger than `chunk_size` blocks is
    fetched in chunks, one batch per non-empty chunk. Chain errors are retried
    with exponential backoff from the last delivered block; after
    `max_failures` consecutive failures, or on any other error, `on_error` is
    called once and the subscription ends.
    """

    def __init__(
        self,
        source: ChainLogSource,
        address: str,
        topic: str,
        on_batch: BatchCallback,
        on_error: ErrorCallback,
        poll_interval: float,
        chunk_size: int = 10_000,
        max_failures: int = 5,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._source = source
        self._address = address
        self._topic = topic
        self._on_batch = on_batch
        self._on_error = on_error
        self._poll_interval = poll_interval
        self._chunk_size = chunk_size
        self._max_failures = max_failures
        self._next_block: int | None = None
        self._cancelled = False
        self._task: asyncio.Task | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"poll:{self._address}:{self._topic[:10]}")

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _poll(self) -> None:
        if self._next_block is None:
            self._next_block = await self._source.current_block_height() + 1
            return

        head = await self._source.current_block_height()
        while self._next_block <= head and not self._cancelled:
            end = min(self._next_block + self._chunk_size, head + 1)
            logs = await self._source.get_logs(self._address, self._topic, self._next_block, end)
            self._next_block = end
            if logs and not self._cancelled:
                self._on_batch(logs)

    def _backoff(self, failures: int) -> float:
        return min(self._poll_interval * 2 ** (failures - 1), MAX_BACKOFF_SECONDS)

    async def _run(self) -> None:
        failures = 0
        try:
            while not self._cancelled:
                try:
                    await self._poll()
                except ExternalServiceError as e:
                    failures += 1
                    if failures >= self._max_failures:
                        raise
                    delay = self._backoff(failures)
                    logger.warning(
                        "Poll %d/%d failed for %s / %s, retrying in %.1fs: %s",
                        failures, self._max_failures, self._address, self._topic, delay, e,
                    )
                    await asyncio.sleep(delay)
                    continue
                failures = 0
                await asyncio.sleep(self._poll_interval)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Subscription %s / %s failed: %s", self._address, self._topic, e)
            if not self._cancelled:
                self._on_error(e)


class JsonRpcLogSource(ChainLogSource):
    def __init__(
        self,
        rpc: EvmRPCClient,
        poll_interval: float = 4.0,
        chunk_size: int = 10_000,
        max_poll_failures: int = 5,
    ) -> None:
        self._rpc = rpc
        self._poll_interval = poll_interval
        self._chunk_size = chunk_size
        self._max_poll_failures = max_poll_failures

    async def current_block_height(self) -> int:
        return await self._rpc.get_block_number()

    async def get_logs(self, address: str, topic: str, from_block: int, to_block: int) -> list[RawLog]:
        if to_block <= from_block:
            return []
        raw_logs = await self._rpc.get_logs(address, topic, from_block, to_block - 1)
        return [RawLog.from_rpc(raw) for raw in raw_logs]

    def subscribe(
        self,
        address: str,
        topic: str,
        on_batch: BatchCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        subscription = PollingSubscription(
            self, address, topic, on_batch, on_error,
            poll_interval=self._poll_interval,
            chunk_size=self._chunk_size,
            max_failures=self._max_poll_failures,
        )
        subscription.start()
        logger.debug("Polling %s for topic %s every %.1fs", address, topic, self._poll_interval)
        return subscription

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt:
        raw = await self._rpc.get_transaction_receipt(tx_hash)
        return TransactionReceipt.from_rpc(raw)
