"""EventCorrelator — raw log (+ receipt counterpart) → SaleRecord.

Two shapes of sale are supported:

* single-log: the subscribed log carries every field; decode and project.
* two-log: the subscribed log is a trigger. The settlement event is looked up
  in the same transaction's receipt (address == trigger.address, topic0 ==
  main event hash), decoded against the main signature and overlaid on the
  trigger's args. No counterpart means the sale never settled: drop it.
"""

import logging
from collections.abc import Sequence
from typing import Any

from salewatch.domain.models import EventDefinition, EventTrigger, MarketDefinition, RawLog, SaleRecord
from salewatch.domain.units import WEI_DECIMALS, format_units
from salewatch.exceptions import DecodeError, FieldMapError
from salewatch.infra.chain.base import ChainLogSource

logger = logging.getLogger(__name__)


class EventCorrelator:
    """Stateless; safe to call concurrently from many subscription consumers."""

    def __init__(self, source: ChainLogSource) -> None:
        self._source = source

    async def correlate(
        self,
        market: MarketDefinition,
        event: EventDefinition,
        logs: Sequence[RawLog],
    ) -> SaleRecord | None:
        """Correlate one logical event occurrence. Only logs[0] is used.

        Raises DecodeError / FieldMapError for malformed logs or a bad field map.
        Returns None when a trigger has no settlement counterpart.
        """
        if not logs:
            return None
        anchor = logs[0]

        trigger = event.trigger
        if trigger is None:
            args = event.descriptor.decode(anchor)
        else:
            args = await self._merge_with_counterpart(event, trigger, anchor)
            if args is None:
                logger.debug(
                    "No %s counterpart in TX %s for %s on %s, dropping",
                    event.name, anchor.transaction_hash, trigger.address, market.name,
                )
                return None

        return self._project(market, event, anchor, args)

    async def _merge_with_counterpart(
        self,
        event: EventDefinition,
        trigger: EventTrigger,
        anchor: RawLog,
    ) -> dict[str, Any] | None:
        trigger_args = trigger.descriptor.decode(anchor)
        receipt = await self._source.get_transaction_receipt(anchor.transaction_hash)

        main = event.descriptor
        counterpart_address = trigger.address.lower()
        matching = next(
            (
                log for log in receipt.logs
                if log.address.lower() == counterpart_address and log.topics and log.topics[0] == main.topic
            ),
            None,
        )
        if matching is None:
            return None

        return {**trigger_args, **main.decode(matching)}

    @staticmethod
    def _project(
        market: MarketDefinition,
        event: EventDefinition,
        anchor: RawLog,
        args: dict[str, Any],
    ) -> SaleRecord:
        picked: dict[str, Any] = {}
        for role, arg_name in event.field_map.roles().items():
            if arg_name not in args:
                raise FieldMapError(role, arg_name, sorted(args))
            picked[role] = args[arg_name]

        value_wei = picked["value"]
        if not isinstance(value_wei, int) or isinstance(value_wei, bool) or value_wei < 0:
            raise DecodeError(f"Value argument '{event.field_map.value}' is not an unsigned integer: {value_wei!r}")
        token_id = picked["token_id"]
        if isinstance(token_id, bool) or not isinstance(token_id, int):
            raise DecodeError(f"Token id argument '{event.field_map.token_id}' is not an integer: {token_id!r}")
        for role in ("collection", "seller", "buyer"):
            if not isinstance(picked[role], str):
                arg_name = getattr(event.field_map, role)
                raise DecodeError(f"Field map role '{role}' points at non-address argument '{arg_name}': {picked[role]!r}")

        return SaleRecord(
            collection_address=picked["collection"],
            token_id=str(token_id),
            value=format_units(value_wei, WEI_DECIMALS),
            value_wei=value_wei,
            seller=picked["seller"],
            buyer=picked["buyer"],
            transaction_hash=anchor.transaction_hash,
            block_number=anchor.block_number,
            marketplace_name=market.name,
            event_name=event.name,
        )
