"""Tests for CLI argument handling and container wiring."""

from unittest.mock import AsyncMock, MagicMock

from dependency_injector import providers

from salewatch.config import Settings
from salewatch.container import Container
from salewatch.domain.models import BlockRange
from salewatch.main import apply_overrides, build_parser, run
from salewatch.monitor import SaleMonitor
from salewatch.sinks import CollectionFilterSink


class TestArgs:
    def test_defaults_keep_settings(self):
        settings = Settings(replay_blocks=0, replay_range="")
        args = build_parser().parse_args([])
        assert apply_overrides(settings, args) is settings
        assert args.no_watch is False

    def test_replay_flags_override(self):
        args = build_parser().parse_args(["--replay-range", "10,20", "--no-watch"])
        settings = apply_overrides(Settings(replay_range=""), args)
        assert settings.replay_block_range == BlockRange(start_block=10, end_block=20)
        assert args.no_watch is True

    def test_replay_blocks_flag(self):
        args = build_parser().parse_args(["--replay-blocks", "500"])
        assert apply_overrides(Settings(replay_blocks=0, replay_range=""), args).replay_block_range == 500


class TestContainer:
    async def test_builds_monitor(self):
        container = Container()
        container.settings.override(Settings(rpc_url="http://localhost:8545", supported_collections=["0x" + "aa" * 20]))

        monitor = container.monitor()

        assert isinstance(monitor, SaleMonitor)
        assert isinstance(container.sink(), CollectionFilterSink)
        assert container.correlator() is container.correlator()
        await container.http_client().close()


class TestRun:
    def _container(self, settings: Settings):
        container = Container()
        container.settings.override(settings)
        monitor = MagicMock()
        monitor.replay = AsyncMock(return_value=0)
        monitor.watch = AsyncMock()
        monitor.failed = []
        http = MagicMock()
        http.close = AsyncMock()
        container.monitor.override(providers.Object(monitor))
        container.http_client.override(providers.Object(http))
        return container, monitor, http

    async def test_replay_only(self):
        container, monitor, http = self._container(Settings(replay_blocks=250, replay_range=""))

        await run(container, watch=False)

        monitor.replay.assert_awaited_once_with(250)
        monitor.watch.assert_not_awaited()
        http.close.assert_awaited_once()

    async def test_watch_with_delayed_replay(self):
        container, monitor, http = self._container(
            Settings(replay_blocks=0, replay_range="5,9", replay_delay_seconds=0)
        )

        assert await run(container, watch=True) == 0

        monitor.watch.assert_awaited_once()
        monitor.replay.assert_awaited_once_with(BlockRange(start_block=5, end_block=9))
        http.close.assert_awaited_once()

    async def test_no_watch_without_replay(self):
        container, monitor, http = self._container(Settings(replay_blocks=0, replay_range=""))

        await run(container, watch=False)

        monitor.replay.assert_not_awaited()
        http.close.assert_awaited_once()

    async def test_exit_code_when_subscriptions_gave_up(self):
        container, monitor, http = self._container(Settings(replay_blocks=0, replay_range=""))
        monitor.failed = [("Facet NFT", "OfferAccepted")]

        assert await run(container, watch=True) == 1
        http.close.assert_awaited_once()
