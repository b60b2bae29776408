from pydantic_settings import BaseSettings

from salewatch.domain.models import BlockRange
from salewatch.exceptions import ConfigurationError


class Settings(BaseSettings):
    rpc_url: str = "https://mainnet.facet.org"
    rpc_rate_per_second: float = 10.0
    rpc_timeout: float = 30.0
    rpc_max_concurrency: int = 8
    poll_interval_seconds: float = 4.0
    poll_max_failures: int = 5  # consecutive failed polls before a subscription gives up
    backfill_chunk_size: int = 10_000
    replay_blocks: int = 0  # >0 replays the trailing N blocks at startup
    replay_range: str = ""  # "start,end" replays [start, end) at startup
    replay_delay_seconds: float = 2.0
    markets_file: str = ""  # JSON list of markets; empty = built-in registry
    supported_collections: list[str] = []  # empty = dispatch every collection
    explorer_tx_url: str = "https://explorer.facet.org/tx/"
    native_symbol: str = "ETH"
    log_level: str = "INFO"

    @property
    def replay_block_range(self) -> int | BlockRange | None:
        """Replay requested at startup, or None. An explicit range wins over a block count."""
        if self.replay_range:
            parts = [p.strip() for p in self.replay_range.split(",")]
            if len(parts) != 2 or not all(p.isdigit() for p in parts):
                raise ConfigurationError(f"replay_range must be 'start,end', got {self.replay_range!r}")
            return BlockRange(start_block=int(parts[0]), end_block=int(parts[1]))
        if self.replay_blocks > 0:
            return self.replay_blocks
        return None

    class Config:
        env_file = ".env"


settings = Settings()
