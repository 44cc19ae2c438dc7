"""
Moralis Solana gateway client for pump.fun discovery and token prices
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

import aiohttp

from tokensniper.core.logger import get_logger


logger = get_logger(__name__)


class MoralisClient:
    """
    Thin aiohttp client with request coalescing, a concurrency cap and a short price cache

    Errors are logged and surface as empty results, so one bad response
    never takes down a scan pass.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://solana-gateway.moralis.io",
        timeout_s: float = 10.0,
        max_concurrent_requests: int = 5,
        price_ttl_s: float = 8.0
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)

        self.min_request_interval = 0.2  # 5 requests per second
        self.last_request_time = 0.0

        self._inflight: Dict[str, asyncio.Task] = {}
        self._sem = asyncio.Semaphore(max_concurrent_requests)

        self.price_ttl_s = price_ttl_s
        self._price_cache: Dict[str, tuple] = {}

        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                headers={
                    "Accept": "application/json",
                    "X-API-Key": self.api_key
                },
                timeout=self.timeout
            )
        return self.session

    async def _rate_limit(self) -> None:
        since_last = time.monotonic() - self.last_request_time
        if since_last < self.min_request_interval:
            await asyncio.sleep(self.min_request_interval - since_last)
        self.last_request_time = time.monotonic()

    async def _make_request(self, url: str) -> Any:
        """GET with in-flight coalescing: identical concurrent requests share one call"""
        task = self._inflight.get(url)
        if task is None:
            async def _fetch():
                async with self._sem:
                    session = await self._get_session()
                    await self._rate_limit()
                    return await self._execute_request(session, url)

            task = asyncio.create_task(_fetch())
            self._inflight[url] = task
            task.add_done_callback(lambda done: self._release_inflight(url, done))

        # One caller giving up must not cancel the shared request
        return await asyncio.shield(task)

    def _release_inflight(self, url: str, task: asyncio.Task) -> None:
        if self._inflight.get(url) is task:
            del self._inflight[url]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("moralis_shared_request_failed", url=url, error=str(task.exception()))

    def _evict_expired_prices(self, now: float) -> None:
        expired = [mint for mint, (cached_at, _) in self._price_cache.items()
                   if now - cached_at >= self.price_ttl_s]
        for mint in expired:
            del self._price_cache[mint]

    async def _execute_request(self, session: aiohttp.ClientSession, url: str) -> Any:
        try:
            async with session.get(url) as response:
                if response.status == 200:
                    return await response.json()

                if response.status == 429:
                    logger.warning("moralis_rate_limited", url=url)
                elif response.status == 404:
                    logger.info("moralis_not_found", url=url)
                else:
                    body = await response.text()
                    logger.error("moralis_api_error", url=url, status=response.status, body=body[:200])
                return {}

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("moralis_request_failed", url=url, error=str(e))
            return {}

    async def get_new_pumpfun_tokens(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recently created pump.fun tokens (raw gateway records)"""
        url = f"{self.base_url}/token/mainnet/exchange/pumpfun/new?limit={limit}"
        data = await self._make_request(url)

        if isinstance(data, dict):
            result = data.get("result") or []
        elif isinstance(data, list):
            result = data
        else:
            result = []

        logger.debug("moralis_new_tokens", count=len(result))
        return result

    async def get_token_price(self, mint: str) -> Dict[str, Any]:
        """
        Current price for a token

        Returns:
            Dict with 'usd' and 'sol' prices (0.0 when unknown)
        """
        cached = self._price_cache.get(mint)
        if cached and time.monotonic() - cached[0] < self.price_ttl_s:
            return cached[1]

        url = f"{self.base_url}/token/mainnet/{mint}/price"
        data = await self._make_request(url)
        if not data:
            return {"usd": 0.0, "sol": 0.0}

        price = {
            "usd": _to_float(data.get("usdPrice")),
            "sol": _native_price(data.get("nativePrice")),
        }
        now = time.monotonic()
        self._evict_expired_prices(now)
        self._price_cache[mint] = (now, price)
        return price

    async def close(self) -> None:
        """Close the HTTP session"""
        if self.session:
            try:
                await self.session.close()
            except Exception as e:
                logger.debug("moralis_session_close_error", error=str(e))
            finally:
                self.session = None


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _native_price(native: Any) -> float:
    """nativePrice is {'value': <base units as string>, 'decimals': 9, ...}"""
    if not isinstance(native, dict):
        return _to_float(native)
    decimals = int(native.get("decimals") or 9)
    return _to_float(native.get("value")) / (10 ** decimals)
