"""
Spot exchange rates (asset -> USD) for converting verified crypto payments into credits.

Rates are cached per asset for a fixed TTL so repeated settlement checks do not
hit the upstream feed. When the feed is unreachable, a USD-pegged asset falls
back to its peg; a volatile asset reuses its last known rate or an operator
fallback, and otherwise fails with RateUnavailable.
"""

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from services.payment_errors import RateUnavailable
from utils.get_env import (
    env_float,
    get_bsc_coingecko_api_env,
    get_sol_usd_fallback_rate_env,
    get_solana_coingecko_api_env,
    get_usdt_usd_fallback_rate_env,
)

logger = logging.getLogger(__name__)

RATE_TTL_SECONDS = 60
FETCH_TIMEOUT_SECONDS = 4
COINGECKO_SIMPLE_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price?ids={ids}&vs_currencies=usd"


class PriceFeedError(Exception):
    """Upstream price feed timed out, returned an error status or a malformed payload."""


@dataclass(frozen=True)
class AssetFeed:
    asset_key: str
    url: str
    stable: bool = False
    fallback_rate: Optional[float] = None


@dataclass(frozen=True)
class CachedRate:
    value: float
    fetched_at: float
    expires_at: float


PriceFetcher = Callable[[str, float], Awaitable[Any]]


async def fetch_price_json(url: str, timeout_seconds: float) -> Any:
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as response:
                if response.status != 200:
                    text_payload = await response.text()
                    raise PriceFeedError(
                        f"Price feed error ({response.status}): {text_payload[:200]}"
                    )
                return await response.json(content_type=None)
    except asyncio.TimeoutError as exc:
        raise PriceFeedError("Price feed timed out") from exc
    except aiohttp.ClientError as exc:
        raise PriceFeedError(f"Price feed unreachable: {exc}") from exc
    except ValueError as exc:
        raise PriceFeedError("Price feed returned malformed JSON") from exc


def _extract_usd_rate(data: Any, asset_key: str) -> float:
    entry = data.get(asset_key) if isinstance(data, dict) else None
    rate = entry.get("usd") if isinstance(entry, dict) else None
    if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate <= 0:
        raise PriceFeedError(f"Invalid {asset_key}/USD rate from provider")
    return float(rate)


class PriceFeedCache:
    def __init__(
        self,
        feeds: Dict[str, AssetFeed],
        fetcher: PriceFetcher = fetch_price_json,
        clock: Callable[[], float] = time.monotonic,
        ttl_seconds: float = RATE_TTL_SECONDS,
        timeout_seconds: float = FETCH_TIMEOUT_SECONDS,
    ):
        self.feeds = {symbol.upper(): feed for symbol, feed in feeds.items()}
        self.fetcher = fetcher
        self.clock = clock
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self._cache: Dict[str, CachedRate] = {}
        self._last_success: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @classmethod
    def from_env(cls) -> "PriceFeedCache":
        usdt_fallback = env_float(get_usdt_usd_fallback_rate_env(), 0.0)
        sol_fallback = env_float(get_sol_usd_fallback_rate_env(), 0.0)
        return cls(
            {
                "USDT": AssetFeed(
                    asset_key="tether",
                    url=(get_bsc_coingecko_api_env() or "").strip()
                    or COINGECKO_SIMPLE_PRICE_URL.format(ids="tether"),
                    stable=True,
                    fallback_rate=usdt_fallback if usdt_fallback > 0 else None,
                ),
                "SOL": AssetFeed(
                    asset_key="solana",
                    url=(get_solana_coingecko_api_env() or "").strip()
                    or COINGECKO_SIMPLE_PRICE_URL.format(ids="solana"),
                    fallback_rate=sol_fallback if sol_fallback > 0 else None,
                ),
            }
        )

    def _cached(self, symbol: str, now: float) -> Optional[float]:
        cached = self._cache.get(symbol)
        if cached and cached.expires_at > now:
            return cached.value
        return None

    def _store(self, symbol: str, value: float, now: float) -> None:
        self._cache[symbol] = CachedRate(value=value, fetched_at=now, expires_at=now + self.ttl_seconds)

    async def get_rate(self, symbol: str) -> float:
        symbol = (symbol or "").upper()
        feed = self.feeds.get(symbol)
        if feed is None:
            raise RateUnavailable(f"No price feed configured for {symbol}.")

        cached = self._cached(symbol, self.clock())
        if cached is not None:
            return cached

        async with self._locks[symbol]:
            # Another waiter may have refreshed it.
            now = self.clock()
            cached = self._cached(symbol, now)
            if cached is not None:
                return cached
            try:
                data = await self.fetcher(feed.url, self.timeout_seconds)
                rate = _extract_usd_rate(data, feed.asset_key)
            except PriceFeedError as exc:
                return self._fallback(symbol, feed, now, exc)

            self._store(symbol, rate, now)
            self._last_success[symbol] = rate
            logger.info(f"Fetched {symbol}/USD rate: {rate}")
            return rate

    def _fallback(self, symbol: str, feed: AssetFeed, now: float, exc: PriceFeedError) -> float:
        if feed.stable:
            rate = feed.fallback_rate or 1.0
            self._store(symbol, rate, now)
            logger.warning(f"{exc}; assuming {symbol}/USD peg of {rate}")
            return rate

        last_known = self._last_success.get(symbol)
        if last_known is not None:
            logger.warning(f"{exc}; reusing last known {symbol}/USD rate {last_known}")
            return last_known
        if feed.fallback_rate:
            logger.warning(f"{exc}; using configured {symbol}/USD fallback {feed.fallback_rate}")
            return feed.fallback_rate

        logger.error(f"{exc}; no {symbol}/USD rate available")
        raise RateUnavailable(f"Unable to quote {symbol} in USD right now. Please try again shortly.")


_price_feed_cache: Optional[PriceFeedCache] = None


def get_price_feed_cache() -> PriceFeedCache:
    """Get or create the process-wide price feed cache"""
    global _price_feed_cache
    if _price_feed_cache is None:
        _price_feed_cache = PriceFeedCache.from_env()
    return _price_feed_cache
