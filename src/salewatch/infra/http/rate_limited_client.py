import asyncio
import time

import httpx


class RateLimitedClient:
    """Async JSON POST client shared by all subscriptions.

    Request starts are spaced at least 1/rate_per_second apart; up to
    `max_concurrency` requests may be in flight at once.
    """

    def __init__(self, rate_per_second: float = 10.0, timeout: float = 30.0, max_concurrency: int = 8) -> None:
        self._min_interval = 1.0 / rate_per_second
        self._last_request_time = 0.0
        self._lock = asyncio.Lock()
        self._in_flight = asyncio.Semaphore(max_concurrency)
        self._client = httpx.AsyncClient(timeout=timeout)

    async def _wait_for_slot(self) -> None:
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()

    async def post(self, url: str, json: dict | list | None = None) -> httpx.Response:
        async with self._in_flight:
            await self._wait_for_slot()
            return await self._client.post(url, json=json)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RateLimitedClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
