"""Tests for JsonRpcLogSource and its polling subscriptions."""

import asyncio
import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest

from salewatch.exceptions import ExternalServiceError
from salewatch.infra.chain.log_source import JsonRpcLogSource

ADDRESS = "0x" + "c5" * 20
TOPIC = "0x" + "ab" * 32


def _raw_log(block: int, index: int = 0) -> dict:
    return {
        "address": ADDRESS,
        "topics": [TOPIC],
        "data": "0x",
        "transactionHash": "0x" + f"{block:064x}",
        "blockNumber": hex(block),
        "logIndex": hex(index),
    }


@pytest.fixture()
def rpc():
    mock = MagicMock()
    mock.get_block_number = AsyncMock(return_value=100)
    mock.get_logs = AsyncMock(return_value=[])
    mock.get_transaction_receipt = AsyncMock()
    return mock


@pytest.fixture()
def log_source(rpc):
    return JsonRpcLogSource(rpc, poll_interval=0)


class TestQueries:
    async def test_get_logs_converts_half_open_range(self, log_source, rpc):
        rpc.get_logs.return_value = [_raw_log(10), _raw_log(11)]

        logs = await log_source.get_logs(ADDRESS, TOPIC, 10, 20)

        rpc.get_logs.assert_awaited_once_with(ADDRESS, TOPIC, 10, 19)
        assert [log.block_number for log in logs] == [10, 11]

    async def test_empty_range_skips_rpc(self, log_source, rpc):
        assert await log_source.get_logs(ADDRESS, TOPIC, 10, 10) == []
        rpc.get_logs.assert_not_awaited()

    async def test_receipt_converted(self, log_source, rpc):
        rpc.get_transaction_receipt.return_value = {
            "transactionHash": "0x01",
            "blockNumber": "0x5",
            "logs": [_raw_log(5, 0), _raw_log(5, 1)],
        }

        receipt = await log_source.get_transaction_receipt("0x01")

        assert receipt.block_number == 5
        assert [log.log_index for log in receipt.logs] == [0, 1]

    async def test_current_block_height(self, log_source):
        assert await log_source.current_block_height() == 100


class TestPollingSubscription:
    async def test_delivers_new_logs(self, log_source, rpc):
        rpc.get_block_number.side_effect = itertools.chain([100, 100, 102], itertools.repeat(102))
        rpc.get_logs.return_value = [_raw_log(101), _raw_log(102)]
        batches = []
        delivered = asyncio.Event()

        def on_batch(logs):
            batches.append(logs)
            delivered.set()

        sub = log_source.subscribe(ADDRESS, TOPIC, on_batch, on_error=MagicMock())
        await asyncio.wait_for(delivered.wait(), timeout=1)
        sub.cancel()

        # Starts after the head seen at subscribe time; inclusive RPC range [101, 102]
        rpc.get_logs.assert_awaited_once_with(ADDRESS, TOPIC, 101, 102)
        assert [log.block_number for log in batches[0]] == [101, 102]

    async def test_empty_window_not_delivered(self, log_source, rpc):
        rpc.get_block_number.side_effect = itertools.chain([100], itertools.repeat(101))
        polled = asyncio.Event()

        async def get_logs(*args):
            polled.set()
            return []

        rpc.get_logs.side_effect = get_logs
        on_batch = MagicMock()

        sub = log_source.subscribe(ADDRESS, TOPIC, on_batch, on_error=MagicMock())
        await asyncio.wait_for(polled.wait(), timeout=1)
        await asyncio.sleep(0)
        sub.cancel()

        on_batch.assert_not_called()

    async def test_gives_up_after_consecutive_failures(self, rpc):
        log_source = JsonRpcLogSource(rpc, poll_interval=0, max_poll_failures=3)
        cause = ExternalServiceError("node down")
        rpc.get_block_number.side_effect = itertools.chain([100], itertools.repeat(cause))
        failed = asyncio.Event()
        errors = []

        def on_error(exc):
            errors.append(exc)
            failed.set()

        sub = log_source.subscribe(ADDRESS, TOPIC, MagicMock(), on_error)
        await asyncio.wait_for(failed.wait(), timeout=1)
        await asyncio.sleep(0)

        assert errors == [cause]
        assert rpc.get_block_number.await_count == 4
        sub.cancel()

    async def test_cancel_idempotent(self, log_source):
        sub = log_source.subscribe(ADDRESS, TOPIC, MagicMock(), MagicMock())
        sub.cancel()
        sub.cancel()
        assert sub.cancelled

    async def test_recovers_after_failed_poll(self, log_source, rpc):
        rpc.get_block_number.side_effect = itertools.chain(
            [100, ExternalServiceError("node down"), 101], itertools.repeat(101),
        )
        rpc.get_logs.return_value = [_raw_log(101)]
        delivered = asyncio.Event()
        on_error = MagicMock()

        sub = log_source.subscribe(ADDRESS, TOPIC, lambda logs: delivered.set(), on_error)
        await asyncio.wait_for(delivered.wait(), timeout=1)
        sub.cancel()

        on_error.assert_not_called()
        rpc.get_logs.assert_awaited_once_with(ADDRESS, TOPIC, 101, 101)

    async def test_failed_window_refetched(self, log_source, rpc):
        rpc.get_block_number.side_effect = itertools.chain([100], itertools.repeat(102))
        rpc.get_logs.side_effect = [ExternalServiceError("timeout"), [_raw_log(101)]]
        delivered = asyncio.Event()

        sub = log_source.subscribe(ADDRESS, TOPIC, lambda logs: delivered.set(), MagicMock())
        await asyncio.wait_for(delivered.wait(), timeout=1)
        sub.cancel()

        assert [c.args for c in rpc.get_logs.await_args_list] == [
            (ADDRESS, TOPIC, 101, 102),
            (ADDRESS, TOPIC, 101, 102),
        ]

    async def test_catch_up_split_into_chunks(self, rpc):
        log_source = JsonRpcLogSource(rpc, poll_interval=0, chunk_size=2)
        rpc.get_block_number.side_effect = itertools.chain([100], itertools.repeat(105))
        rpc.get_logs.side_effect = [[_raw_log(101)], [], [_raw_log(105)]]
        batches = []
        done = asyncio.Event()

        def on_batch(logs):
            batches.append(logs)
            if len(batches) == 2:
                done.set()

        sub = log_source.subscribe(ADDRESS, TOPIC, on_batch, MagicMock())
        await asyncio.wait_for(done.wait(), timeout=1)
        sub.cancel()

        assert [c.args for c in rpc.get_logs.await_args_list] == [
            (ADDRESS, TOPIC, 101, 102),
            (ADDRESS, TOPIC, 103, 104),
            (ADDRESS, TOPIC, 105, 105),
        ]
        assert [[log.block_number for log in batch] for batch in batches] == [[101], [105]]

    async def test_unexpected_error_not_retried(self, log_source, rpc):
        rpc.get_block_number.side_effect = itertools.chain([100], itertools.repeat(101))
        rpc.get_logs.return_value = [{"address": ADDRESS}]  # malformed log
        failed = asyncio.Event()
        errors = []

        def on_error(exc):
            errors.append(exc)
            failed.set()

        sub = log_source.subscribe(ADDRESS, TOPIC, MagicMock(), on_error)
        await asyncio.wait_for(failed.wait(), timeout=1)
        sub.cancel()

        assert len(errors) == 1
        rpc.get_logs.assert_awaited_once()
