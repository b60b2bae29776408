"""EVM JSON-RPC client — block height, log queries and transaction receipts."""

import itertools
import logging
from typing import Any

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from salewatch.exceptions import ExternalServiceError, ReceiptNotFoundError, RPCError
from salewatch.infra.http.rate_limited_client import RateLimitedClient

logger = logging.getLogger(__name__)


class EvmRPCClient:
    """Minimal EVM JSON-RPC client over a shared RateLimitedClient.

    Transport failures (network errors, HTTP 429/5xx, unreadable bodies) are
    retried; JSON-RPC error objects and other HTTP 4xx answers are raised as
    RPCError straight away since resending the same request (e.g. a too-wide
    log range) gives the same answer.
    """

    def __init__(self, rpc_url: str, http_client: RateLimitedClient) -> None:
        self._rpc_url = rpc_url
        self._http = http_client
        self._ids = itertools.count(1)

    @retry(
        retry=retry_if_exception_type(ExternalServiceError) & retry_if_not_exception_type(RPCError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _call(self, method: str, params: list) -> Any:
        """Execute a JSON-RPC call and return the result field."""
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            resp = await self._http.post(self._rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"RPC transport error ({method}): {e}") from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise ExternalServiceError(f"RPC HTTP {resp.status_code} ({method})")
        if resp.status_code >= 400:
            # Auth/forbidden/bad request: resending the same request gets the same answer
            raise RPCError(method, None, f"HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise ExternalServiceError(f"RPC returned a non-JSON body ({method}): {e}") from e
        if not isinstance(data, dict):
            raise ExternalServiceError(f"RPC returned an unexpected payload ({method}): {data!r}")
        if "error" in data:
            error = data["error"] or {}
            raise RPCError(method, error.get("code"), error.get("message", str(error)))

        return data.get("result")

    async def get_block_number(self) -> int:
        result = await self._call("eth_blockNumber", [])
        return int(result, 16)

    async def get_logs(self, address: str, topic: str, from_block: int, to_block: int) -> list[dict]:
        """eth_getLogs for one address + topic0 over the inclusive range [from_block, to_block]."""
        params = {
            "address": address,
            "topics": [topic],
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }
        result = await self._call("eth_getLogs", [params])
        if result is None:
            return []
        return result

    @retry(
        retry=retry_if_exception_type(ReceiptNotFoundError),
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def get_transaction_receipt(self, tx_hash: str) -> dict:
        """Fetch a receipt. A null result (TX not indexed yet) is retried before giving up."""
        result = await self._call("eth_getTransactionReceipt", [tx_hash])
        if result is None:
            raise ReceiptNotFoundError(f"No receipt for {tx_hash}")
        return result
