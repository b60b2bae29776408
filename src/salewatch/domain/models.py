"""Core data types: market/event definitions, raw logs and sale records."""

from typing import Any

from eth_utils import is_hex_address
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from salewatch.domain.abi import EventSignature, parse_event_signature


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


def _check_address(value: str) -> str:
    if not is_hex_address(value):
        raise ValueError(f"Not a 20-byte hex address: {value!r}")
    return value


def _check_signature(value: str) -> str:
    parse_event_signature(value)  # raises SignatureError (a ValueError) on bad input
    return value


class FieldMap(_Frozen):
    """Decoded-argument name holding each logical sale role."""

    token_id: str
    value: str
    seller: str
    buyer: str
    collection: str

    def roles(self) -> dict[str, str]:
        return self.model_dump()


class EventTrigger(_Frozen):
    """Auxiliary event emitted in the same TX; its log address is where the main event is looked up."""

    signature: str
    address: str

    _validate_signature = field_validator("signature")(_check_signature)
    _validate_address = field_validator("address")(_check_address)

    @property
    def descriptor(self) -> EventSignature:
        return parse_event_signature(self.signature)


class EventDefinition(_Frozen):
    signature: str
    name: str
    field_map: FieldMap
    trigger: EventTrigger | None = None

    _validate_signature = field_validator("signature")(_check_signature)

    @property
    def descriptor(self) -> EventSignature:
        return parse_event_signature(self.signature)

    @property
    def topic_signature(self) -> str:
        """Signature actually subscribed to / queried: the trigger if configured, else the main event."""
        return self.trigger.signature if self.trigger is not None else self.signature

    @property
    def topic(self) -> str:
        return parse_event_signature(self.topic_signature).topic


class MarketDefinition(_Frozen):
    name: str
    contract_address: str
    events: tuple[EventDefinition, ...] = Field(min_length=1)
    url: str | None = None

    _validate_address = field_validator("contract_address")(_check_address)

    @property
    def address_key(self) -> str:
        """Lower-cased address used for comparisons."""
        return self.contract_address.lower()


class RawLog(_Frozen):
    address: str
    topics: tuple[str, ...]
    data: str = "0x"
    transaction_hash: str
    block_number: int
    log_index: int = 0

    @field_validator("topics")
    @classmethod
    def _lower_topics(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(t.lower() for t in v)

    @classmethod
    def from_rpc(cls, raw: dict[str, Any]) -> "RawLog":
        """Build from an eth_getLogs / receipt log object (hex-encoded quantities)."""
        return cls(
            address=raw["address"],
            topics=tuple(raw.get("topics") or ()),
            data=raw.get("data") or "0x",
            transaction_hash=raw["transactionHash"],
            block_number=_hex_to_int(raw.get("blockNumber")),
            log_index=_hex_to_int(raw.get("logIndex")),
        )


class TransactionReceipt(_Frozen):
    transaction_hash: str
    block_number: int
    logs: tuple[RawLog, ...] = ()

    @classmethod
    def from_rpc(cls, raw: dict[str, Any]) -> "TransactionReceipt":
        return cls(
            transaction_hash=raw["transactionHash"],
            block_number=_hex_to_int(raw.get("blockNumber")),
            logs=tuple(RawLog.from_rpc(log) for log in raw.get("logs") or ()),
        )


class SaleRecord(_Frozen):
    """Normalized sale, the correlator's output. Addresses are passed through as decoded."""

    collection_address: str
    token_id: str  # decimal string
    value: str  # 18-decimal fixed point, e.g. "2.5"
    value_wei: int  # raw integer amount
    seller: str
    buyer: str
    transaction_hash: str
    block_number: int
    marketplace_name: str
    event_name: str


class BlockRange(_Frozen):
    """Explicit half-open block window [start_block, end_block)."""

    start_block: int = Field(ge=0)
    end_block: int = Field(ge=0)

    @model_validator(mode="after")
    def _ordered(self) -> "BlockRange":
        if self.start_block > self.end_block:
            raise ValueError(f"start_block {self.start_block} is after end_block {self.end_block}")
        return self


def _hex_to_int(value: str | int | None) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return int(value, 16) if value.startswith("0x") else int(value)
