"""Event signature descriptors and log decoding.

A signature such as ``OfferAccepted(address assetContract, uint256 assetId)``
is parsed once into an ``EventSignature``; decoding a log is then a typed
operation over that descriptor:

* ``topics[0]`` must equal keccak256 of the canonical signature,
* indexed params are read from ``topics[1:]``,
* non-indexed params are ABI-decoded from ``data``.
"""

import functools
import re
from dataclasses import dataclass
from typing import Any

from eth_abi import decode as abi_decode
from eth_abi.exceptions import ABITypeError, DecodingError, ParseError
from eth_abi.grammar import normalize, parse
from eth_utils import keccak, to_checksum_address

from salewatch.exceptions import DecodeError, SignatureError

_SIGNATURE_RE = re.compile(r"^\s*(?:event\s+)?([A-Za-z_$][A-Za-z0-9_$]*)\s*\((.*)\)\s*(anonymous)?\s*;?\s*$")
_NAME_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")


@dataclass(frozen=True)
class EventParam:
    name: str
    type: str  # normalized ABI type, e.g. "uint256"
    indexed: bool = False

    @property
    def is_hashed_topic(self) -> bool:
        """Indexed dynamic and array values are stored in topics as their keccak hash."""
        abi_type = parse(self.type)
        return abi_type.is_dynamic or abi_type.is_array


@dataclass(frozen=True)
class EventSignature:
    """Parsed, validated event descriptor."""

    name: str
    params: tuple[EventParam, ...]

    @property
    def canonical(self) -> str:
        return f"{self.name}({','.join(p.type for p in self.params)})"

    @property
    def topic(self) -> str:
        """0x-prefixed keccak256 of the canonical signature (topic0 of matching logs)."""
        return "0x" + keccak(text=self.canonical).hex()

    @property
    def indexed_params(self) -> tuple[EventParam, ...]:
        return tuple(p for p in self.params if p.indexed)

    @property
    def data_params(self) -> tuple[EventParam, ...]:
        return tuple(p for p in self.params if not p.indexed)

    @property
    def arg_names(self) -> list[str]:
        return [p.name for p in self.params]

    def decode(self, log: Any) -> dict[str, Any]:
        """Decode a log's topics + data into {arg name: value}.

        Raises DecodeError when topic0, the indexed topic count or the data
        payload do not fit this signature.
        """
        topics = [t.lower() for t in log.topics]
        if not topics or topics[0] != self.topic:
            raise DecodeError(
                f"Log topic0 {topics[0] if topics else None} does not match {self.canonical} ({self.topic})"
            )

        indexed = self.indexed_params
        if len(topics) - 1 != len(indexed):
            raise DecodeError(
                f"{self.canonical} expects {len(indexed)} indexed topics, log has {len(topics) - 1}"
            )

        args: dict[str, Any] = {}
        for param, topic in zip(indexed, topics[1:]):
            if param.is_hashed_topic:
                args[param.name] = topic
                continue
            args[param.name] = _decode_values([param.type], _hex_to_bytes(topic))[0]

        data_params = self.data_params
        if data_params:
            values = _decode_values([p.type for p in data_params], _hex_to_bytes(log.data))
            for param, value in zip(data_params, values):
                args[param.name] = value

        return {name: _normalize_value(param_type, args[name]) for name, param_type in self._types().items()}

    def _types(self) -> dict[str, str]:
        return {p.name: p.type for p in self.params}


def _hex_to_bytes(value: str) -> bytes:
    raw = value[2:] if value.startswith(("0x", "0X")) else value
    try:
        return bytes.fromhex(raw)
    except ValueError as e:
        raise DecodeError(f"Invalid hex payload: {value[:20]}...") from e


def _decode_values(types: list[str], payload: bytes) -> tuple:
    try:
        return abi_decode(types, payload)
    except (DecodingError, OverflowError, ValueError) as e:
        raise DecodeError(f"Cannot decode {types}: {e}") from e


def _normalize_value(abi_type: str, value: Any) -> Any:
    """Addresses → EIP-55 checksum, bytes → 0x-hex, lists recursively."""
    if isinstance(value, (list, tuple)):
        inner = abi_type[: abi_type.rindex("[")] if abi_type.endswith("]") else abi_type
        return [_normalize_value(inner, v) for v in value]
    if abi_type == "address" and isinstance(value, str):
        return to_checksum_address(value)
    if isinstance(value, bytes):
        return "0x" + value.hex()
    return value


@functools.lru_cache(maxsize=None)
def parse_event_signature(text: str) -> EventSignature:
    """Parse ``[event] Name(type [indexed] [name], ...)`` into an EventSignature."""
    match = _SIGNATURE_RE.match(text)
    if match is None:
        raise SignatureError(f"Not an event signature: {text!r}")
    name, body, anonymous = match.groups()
    if anonymous:
        raise SignatureError(f"Anonymous events have no topic0 and cannot be subscribed to: {text!r}")

    params: list[EventParam] = []
    seen: set[str] = set()
    chunks = [c.strip() for c in body.split(",")] if body.strip() else []
    for position, chunk in enumerate(chunks):
        param = _parse_param(chunk, position, text)
        if param.name in seen:
            raise SignatureError(f"Duplicate parameter name '{param.name}' in {text!r}")
        seen.add(param.name)
        params.append(param)

    if sum(1 for p in params if p.indexed) > 3:
        raise SignatureError(f"At most 3 indexed parameters allowed: {text!r}")

    return EventSignature(name=name, params=tuple(params))


def _parse_param(chunk: str, position: int, text: str) -> EventParam:
    tokens = chunk.split()
    if not tokens:
        raise SignatureError(f"Empty parameter at position {position} in {text!r}")

    raw_type, rest = tokens[0], tokens[1:]
    if raw_type.startswith("(") or raw_type.startswith("tuple"):
        raise SignatureError(f"Tuple parameters are not supported: {text!r}")

    indexed = False
    if rest and rest[0] == "indexed":
        indexed = True
        rest = rest[1:]
    if len(rest) > 1:
        raise SignatureError(f"Cannot parse parameter {chunk!r} in {text!r}")

    param_name = rest[0] if rest else str(position)
    if rest and not _NAME_RE.match(param_name):
        raise SignatureError(f"Invalid parameter name {param_name!r} in {text!r}")

    try:
        abi_type = normalize(raw_type)
        parse(abi_type).validate()
    except (ParseError, ABITypeError) as e:
        raise SignatureError(f"Invalid ABI type {raw_type!r} in {text!r}: {e}") from e

    return EventParam(name=param_name, type=abi_type, indexed=indexed)
