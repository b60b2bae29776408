from dependency_injector import containers, providers

from salewatch.config import Settings
from salewatch.engine.backfill import HistoricalBackfill
from salewatch.engine.correlator import EventCorrelator
from salewatch.engine.multiplexer import SubscriptionMultiplexer
from salewatch.infra.chain.log_source import JsonRpcLogSource
from salewatch.infra.chain.rpc_client import EvmRPCClient
from salewatch.infra.http.rate_limited_client import RateLimitedClient
from salewatch.markets import build_registry
from salewatch.monitor import SaleMonitor
from salewatch.sinks import build_sink


class Container(containers.DeclarativeContainer):
    settings = providers.Singleton(Settings)

    http_client = providers.Singleton(
        RateLimitedClient,
        rate_per_second=settings.provided.rpc_rate_per_second,
        timeout=settings.provided.rpc_timeout,
        max_concurrency=settings.provided.rpc_max_concurrency,
    )

    rpc = providers.Singleton(
        EvmRPCClient,
        rpc_url=settings.provided.rpc_url,
        http_client=http_client,
    )

    log_source = providers.Singleton(
        JsonRpcLogSource,
        rpc=rpc,
        poll_interval=settings.provided.poll_interval_seconds,
        chunk_size=settings.provided.backfill_chunk_size,
        max_poll_failures=settings.provided.poll_max_failures,
    )

    registry = providers.Singleton(
        build_registry,
        markets_file=settings.provided.markets_file,
    )

    correlator = providers.Singleton(EventCorrelator, source=log_source)

    multiplexer = providers.Singleton(SubscriptionMultiplexer, source=log_source, registry=registry)

    backfill = providers.Singleton(
        HistoricalBackfill,
        source=log_source,
        chunk_size=settings.provided.backfill_chunk_size,
    )

    sink = providers.Singleton(
        build_sink,
        explorer_tx_url=settings.provided.explorer_tx_url,
        native_symbol=settings.provided.native_symbol,
        supported_collections=settings.provided.supported_collections,
    )

    monitor = providers.Singleton(
        SaleMonitor,
        registry=registry,
        multiplexer=multiplexer,
        backfill=backfill,
        correlator=correlator,
        sink=sink,
    )
