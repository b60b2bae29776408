"""Dispatch sinks — where correlated SaleRecords leave the engine."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable

from salewatch.domain.models import SaleRecord

logger = logging.getLogger(__name__)


class DispatchSink(ABC):
    """Receives each correlated sale exactly once."""

    @abstractmethod
    async def on_sale_record(self, record: SaleRecord) -> None:
        """Handle one sale."""


def format_address(address: str) -> str:
    """0x1234567890abcdef... → 0x1234...cdef"""
    if len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


class LoggingSink(DispatchSink):
    def __init__(self, explorer_tx_url: str = "", native_symbol: str = "ETH") -> None:
        self._explorer_tx_url = explorer_tx_url
        self._native_symbol = native_symbol

    def format_message(self, record: SaleRecord) -> str:
        line = (
            f"#{record.token_id} of {record.collection_address} was sold on {record.marketplace_name} | "
            f"From: {format_address(record.seller)} To: {format_address(record.buyer)} | "
            f"For: {record.value} {self._native_symbol}"
        )
        if self._explorer_tx_url:
            line += f" | {self._explorer_tx_url}{record.transaction_hash}"
        return line

    async def on_sale_record(self, record: SaleRecord) -> None:
        logger.info(self.format_message(record))


class CollectionFilterSink(DispatchSink):
    """Forwards only sales from an allow-list of collections (case-insensitive)."""

    def __init__(self, inner: DispatchSink, collections: Iterable[str]) -> None:
        self._inner = inner
        self._collections = frozenset(c.lower() for c in collections)

    async def on_sale_record(self, record: SaleRecord) -> None:
        if record.collection_address.lower() not in self._collections:
            logger.debug("Skipping sale from unsupported collection %s", record.collection_address)
            return
        await self._inner.on_sale_record(record)


def build_sink(explorer_tx_url: str, native_symbol: str, supported_collections: list[str]) -> DispatchSink:
    sink: DispatchSink = LoggingSink(explorer_tx_url=explorer_tx_url, native_symbol=native_symbol)
    if supported_collections:
        sink = CollectionFilterSink(sink, supported_collections)
    return sink
