from collections.abc import Sequence

import pytest
from eth_abi import encode

from salewatch.domain.abi import parse_event_signature
from salewatch.domain.models import EventDefinition, FieldMap, MarketDefinition, RawLog, TransactionReceipt
from salewatch.exceptions import ExternalServiceError
from salewatch.infra.chain.base import ChainLogSource, Subscription

MARKET_ADDRESS = "0x" + "c5" * 20
COLLECTION = "0x" + "aa" * 20
SELLER = "0x" + "bb" * 20
BUYER = "0x" + "cc" * 20
TX_HASH = "0x" + "11" * 32

OFFER_ACCEPTED = (
    "event OfferAccepted(address assetContract, uint256 assetId, address seller, "
    "address recipient, uint256 considerationAmount)"
)


class FakeSubscription(Subscription):
    def __init__(self, address, topic, on_batch, on_error) -> None:
        self.address = address
        self.topic = topic
        self._on_batch = on_batch
        self._on_error = on_error
        self._cancelled = False
        self.cancel_calls = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self.cancel_calls += 1
        self._cancelled = True

    def emit(self, logs: Sequence[RawLog]) -> None:
        self._on_batch(logs)

    def fail(self, exc: BaseException) -> None:
        self._on_error(exc)


class FakeLogSource(ChainLogSource):
    """In-memory chain: serves `logs` filtered by address/topic/range and `receipts` by TX hash."""

    def __init__(self) -> None:
        self.head = 0
        self.logs: list[RawLog] = []
        self.receipts: dict[str, TransactionReceipt] = {}
        self.get_logs_calls: list[tuple[str, str, int, int]] = []
        self.receipt_calls: list[str] = []
        self.subscriptions: list[FakeSubscription] = []
        self.fail_on_call: int | None = None

    async def current_block_height(self) -> int:
        return self.head

    async def get_logs(self, address: str, topic: str, from_block: int, to_block: int) -> list[RawLog]:
        self.get_logs_calls.append((address, topic, from_block, to_block))
        if self.fail_on_call is not None and len(self.get_logs_calls) == self.fail_on_call:
            raise ExternalServiceError("query returned more than 10000 results")
        matching = [
            log for log in self.logs
            if log.address.lower() == address.lower()
            and log.topics[0] == topic
            and from_block <= log.block_number < to_block
        ]
        return sorted(matching, key=lambda log: (log.block_number, log.log_index))

    def subscribe(self, address, topic, on_batch, on_error) -> FakeSubscription:
        sub = FakeSubscription(address, topic, on_batch, on_error)
        self.subscriptions.append(sub)
        return sub

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt:
        self.receipt_calls.append(tx_hash)
        return self.receipts[tx_hash]


@pytest.fixture()
def source() -> FakeLogSource:
    return FakeLogSource()


@pytest.fixture()
def make_log():
    """Factory: ABI-encode `args` for `signature` into a RawLog."""

    def _make_log(
        signature: str,
        args: dict,
        address: str = MARKET_ADDRESS,
        tx_hash: str = TX_HASH,
        block_number: int = 1,
        log_index: int = 0,
    ) -> RawLog:
        sig = parse_event_signature(signature)
        topics = [sig.topic]
        for param in sig.indexed_params:
            topics.append("0x" + encode([param.type], [args[param.name]]).hex())
        data_params = sig.data_params
        data = encode([p.type for p in data_params], [args[p.name] for p in data_params])
        return RawLog(
            address=address,
            topics=tuple(topics),
            data="0x" + data.hex(),
            transaction_hash=tx_hash,
            block_number=block_number,
            log_index=log_index,
        )

    return _make_log


@pytest.fixture()
def offer_event() -> EventDefinition:
    return EventDefinition(
        signature=OFFER_ACCEPTED,
        name="OfferAccepted",
        field_map=FieldMap(
            token_id="assetId",
            value="considerationAmount",
            seller="seller",
            buyer="recipient",
            collection="assetContract",
        ),
    )


@pytest.fixture()
def market(offer_event) -> MarketDefinition:
    return MarketDefinition(name="Facet NFT", contract_address=MARKET_ADDRESS, events=(offer_event,))


@pytest.fixture()
def offer_args() -> dict:
    return {
        "assetContract": COLLECTION,
        "assetId": 42,
        "seller": SELLER,
        "recipient": BUYER,
        "considerationAmount": 2_500_000_000_000_000_000,
    }
