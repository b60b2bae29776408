"""MarketRegistry — immutable list of marketplaces and the sale events they emit."""

import json
import logging
from collections.abc import Iterator
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from salewatch.domain.models import EventDefinition, FieldMap, MarketDefinition
from salewatch.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

FACET_PORT_SALE_SIGNATURE = (
    "event OfferAccepted(address assetContract, uint256 assetId, address seller, "
    "address recipient, uint256 considerationAmount)"
)

FACET_NFT = MarketDefinition(
    name="Facet NFT",
    url="https://facetnft.com",
    contract_address="0xC59DEC74518c6C86B90107C3644ac9dAcA149e70",
    events=(
        EventDefinition(
            signature=FACET_PORT_SALE_SIGNATURE,
            name="OfferAccepted",
            field_map=FieldMap(
                token_id="assetId",
                value="considerationAmount",
                seller="seller",
                buyer="recipient",
                collection="assetContract",
            ),
        ),
    ),
)

DEFAULT_MARKETS: tuple[MarketDefinition, ...] = (FACET_NFT,)

_markets_adapter = TypeAdapter(tuple[MarketDefinition, ...])


class MarketRegistry:
    """Read-only set of markets, built once at startup and injected where needed."""

    def __init__(self, markets: tuple[MarketDefinition, ...] | list[MarketDefinition]) -> None:
        names = [m.name for m in markets]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate market names: {duplicates}")
        self._markets = tuple(markets)

    def __iter__(self) -> Iterator[MarketDefinition]:
        return iter(self._markets)

    def __len__(self) -> int:
        return len(self._markets)

    @property
    def markets(self) -> tuple[MarketDefinition, ...]:
        return self._markets

    def pairs(self) -> Iterator[tuple[MarketDefinition, EventDefinition]]:
        """Every (market, event) pair, in configuration order."""
        for market in self._markets:
            for event in market.events:
                yield market, event

    def get(self, name: str) -> MarketDefinition | None:
        for market in self._markets:
            if market.name == name:
                return market
        return None


def load_markets(path: str | Path) -> tuple[MarketDefinition, ...]:
    """Load market definitions from a JSON file (list of MarketDefinition objects)."""
    try:
        raw = json.loads(Path(path).read_text())
        markets = _markets_adapter.validate_python(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise ConfigurationError(f"Cannot load markets from {path}: {e}") from e
    logger.info("Loaded %d markets from %s", len(markets), path)
    return markets


def build_registry(markets_file: str = "") -> MarketRegistry:
    """Registry from `markets_file` if given, else the built-in markets."""
    if markets_file:
        return MarketRegistry(load_markets(markets_file))
    return MarketRegistry(DEFAULT_MARKETS)
