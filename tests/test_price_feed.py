import asyncio

import pytest

from services.payment_errors import RateUnavailable
from services.price_feed import AssetFeed, PriceFeedCache, PriceFeedError


async def test_rate_is_cached_within_ttl(price_feed, price_fetcher, clock):
    assert await price_feed.get_rate("SOL") == 20.0
    price_fetcher.prices["solana"] = 25.0
    clock.advance(59)

    assert await price_feed.get_rate("sol") == 20.0
    assert price_fetcher.calls == 1


async def test_rate_refreshes_after_ttl(price_feed, price_fetcher, clock):
    await price_feed.get_rate("SOL")
    price_fetcher.prices["solana"] = 25.0
    clock.advance(61)

    assert await price_feed.get_rate("SOL") == 25.0
    assert price_fetcher.calls == 2


async def test_concurrent_requests_share_one_fetch(price_feed, price_fetcher):
    rates = await asyncio.gather(*(price_feed.get_rate("SOL") for _ in range(5)))

    assert rates == [20.0] * 5
    assert price_fetcher.calls == 1


async def test_stable_asset_falls_back_to_peg(price_feed, price_fetcher):
    price_fetcher.error = PriceFeedError("Price feed timed out")

    assert await price_feed.get_rate("USDT") == 1.0


async def test_volatile_asset_reuses_last_known_rate(price_feed, price_fetcher, clock):
    await price_feed.get_rate("SOL")
    clock.advance(120)
    price_fetcher.error = PriceFeedError("Price feed error (500)")

    assert await price_feed.get_rate("SOL") == 20.0


async def test_volatile_asset_uses_configured_fallback(price_fetcher, clock):
    price_fetcher.error = PriceFeedError("Price feed unreachable")
    feed = PriceFeedCache(
        {"SOL": AssetFeed(asset_key="solana", url="https://prices.test/sol", fallback_rate=150.0)},
        fetcher=price_fetcher,
        clock=clock,
    )

    assert await feed.get_rate("SOL") == 150.0


async def test_volatile_asset_without_any_rate_is_unavailable(price_feed, price_fetcher):
    price_fetcher.error = PriceFeedError("Price feed unreachable")

    with pytest.raises(RateUnavailable) as exc_info:
        await price_feed.get_rate("SOL")
    assert exc_info.value.status_code == 424


async def test_malformed_payload_is_treated_as_outage(price_feed, price_fetcher):
    price_fetcher.prices = {"solana": 0}

    with pytest.raises(RateUnavailable):
        await price_feed.get_rate("SOL")


async def test_unknown_asset_is_unavailable(price_feed):
    with pytest.raises(RateUnavailable):
        await price_feed.get_rate("BTC")


@pytest.mark.parametrize("payload", [{"tether": "1.0"}, {"tether": [1.0]}, ["tether"], None])
async def test_stable_asset_with_unusable_entry_falls_back_to_peg(clock, payload):
    async def fetcher(url, timeout_seconds):
        return payload

    feed = PriceFeedCache(
        {"USDT": AssetFeed(asset_key="tether", url="https://prices.test/usdt", stable=True)},
        fetcher=fetcher,
        clock=clock,
    )

    assert await feed.get_rate("USDT") == 1.0


async def test_volatile_asset_with_non_object_entry_is_unavailable(clock):
    async def fetcher(url, timeout_seconds):
        return {"solana": 20.0}

    feed = PriceFeedCache({"SOL": AssetFeed(asset_key="solana", url="https://prices.test/sol")}, fetcher=fetcher, clock=clock)

    with pytest.raises(RateUnavailable):
        await feed.get_rate("SOL")
