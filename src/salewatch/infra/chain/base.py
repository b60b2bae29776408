"""Abstract Chain Log Source — the primitives the engine needs from a chain node."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

from salewatch.domain.models import RawLog, TransactionReceipt

BatchCallback = Callable[[Sequence[RawLog]], None]
ErrorCallback = Callable[[BaseException], None]


class Subscription(ABC):
    """Handle for one live log subscription."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop delivery and release resources. Safe to call more than once."""

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        """True once cancel() has been called."""


class ChainLogSource(ABC):
    """Strategy interface for reading logs from a chain.

    Implementations must tolerate concurrent use by many subscribers.
    Block ranges are half-open: [from_block, to_block).
    """

    @abstractmethod
    async def current_block_height(self) -> int:
        """Latest block number."""

    @abstractmethod
    async def get_logs(self, address: str, topic: str, from_block: int, to_block: int) -> list[RawLog]:
        """Logs emitted by `address` with topic0 `topic` in [from_block, to_block), in chain order."""

    @abstractmethod
    def subscribe(
        self,
        address: str,
        topic: str,
        on_batch: BatchCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        """Deliver new matching logs to `on_batch`; a fatal failure is reported once via `on_error`."""

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt:
        """Receipt with all logs of the transaction, in chain order."""
