# tests/aggregator/test_derivatives.py
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.aggregator.derivatives import (
    DerivativesAggregator,
    classify_funding_bias,
    classify_funding_heat,
    classify_oi_trend,
    classify_position_bias,
    volume_weighted_funding,
)
from src.client.models import ExchangeDerivatives, OpenInterest
from src.collector.cache_seeder import CacheSeeder
from src.storage.cache import ONE_HOUR_MS, TimeSeriesCache

T0 = 1_700_000_000_000


def _ex(name, oi=100.0, oi_value=1e6, funding=0.0001, long=0.5, short=0.5, volume=1e6):
    return ExchangeDerivatives(name, oi, oi_value, funding, long, short, volume)


def test_funding_bias_boundaries_are_exclusive():
    assert classify_funding_bias(0.0001) == "neutral"
    assert classify_funding_bias(0.00011) == "long_paying"
    assert classify_funding_bias(-0.0001) == "neutral"
    assert classify_funding_bias(-0.00011) == "short_paying"


def test_funding_heat():
    assert classify_funding_heat(0.00005) == "normal"
    assert classify_funding_heat(-0.0002) == "elevated"
    assert classify_funding_heat(0.00031) == "extreme"


def test_position_bias():
    assert classify_position_bias(0.56, 0.44) == "long_heavy"
    assert classify_position_bias(0.44, 0.56) == "short_heavy"
    assert classify_position_bias(0.55, 0.45) == "balanced"


def test_oi_trend():
    assert classify_oi_trend(2.5) == "expanding"
    assert classify_oi_trend(-2.5) == "contracting"
    assert classify_oi_trend(2.0) == "stable"


def test_volume_weighted_funding():
    exchanges = [_ex("a", funding=0.0003, volume=3e6), _ex("b", funding=-0.0001, volume=1e6)]
    assert volume_weighted_funding(exchanges) == pytest.approx(0.0002)


def test_volume_weighted_funding_zero_volume():
    assert volume_weighted_funding([_ex("a", volume=0)]) == 0.0


async def test_aggregate_sums_and_averages():
    cache = TimeSeriesCache()
    aggregator = DerivativesAggregator(
        {
            "binance": AsyncMock(return_value=_ex("binance", oi=100, oi_value=5e6, long=0.6, short=0.4)),
            "bybit": AsyncMock(return_value=_ex("bybit", oi=50, oi_value=2.5e6, long=0.7, short=0.3)),
        },
        cache,
    )

    result = await aggregator.aggregate("BTCUSDT", now_ms=T0)

    assert result is not None
    assert result.total_oi == 150
    assert result.total_oi_value == 7.5e6
    assert result.avg_long_ratio == pytest.approx(0.65)
    assert result.position_bias == "long_heavy"
    assert result.oi_change_1h == 0.0
    assert result.oi_trend == "stable"
    assert [e.exchange for e in result.exchanges] == ["binance", "bybit"]


async def test_aggregate_discards_failed_sources():
    aggregator = DerivativesAggregator(
        {
            "binance": AsyncMock(side_effect=RuntimeError("timeout")),
            "bybit": AsyncMock(return_value=None),
            "okx": AsyncMock(return_value=_ex("okx", funding=0.0005)),
        },
        TimeSeriesCache(),
    )

    result = await aggregator.aggregate("BTCUSDT", now_ms=T0)

    assert result is not None
    assert len(result.exchanges) == 1
    assert result.funding_heat == "extreme"
    assert result.funding_bias == "long_paying"


async def test_aggregate_all_failed_returns_none():
    aggregator = DerivativesAggregator(
        {"binance": AsyncMock(side_effect=RuntimeError("down")), "okx": AsyncMock(return_value=None)},
        TimeSeriesCache(),
    )

    assert await aggregator.aggregate("BTCUSDT", now_ms=T0) is None


async def test_aggregate_oi_trend_from_cache():
    cache = TimeSeriesCache()
    source = AsyncMock(return_value=_ex("binance", oi_value=1e6))
    aggregator = DerivativesAggregator({"binance": source}, cache)

    await aggregator.aggregate("BTCUSDT", now_ms=T0)
    source.return_value = _ex("binance", oi_value=1.05e6)
    result = await aggregator.aggregate("BTCUSDT", now_ms=T0 + ONE_HOUR_MS)

    assert result.oi_change_1h == pytest.approx(5.0)
    assert result.oi_trend == "expanding"


async def _seeded_cache(oi_value: float) -> TimeSeriesCache:
    """Binance 过去 24h 持平的 OI 历史"""
    client = MagicMock()
    client.get_ticker_price = AsyncMock(return_value=100.0)
    client.get_open_interest = AsyncMock(
        return_value=OpenInterest("BTCUSDT", oi_value / 100, T0)
    )
    client.get_open_interest_hist = AsyncMock(
        return_value=[
            OpenInterest("BTCUSDT", oi_value / 100, T0 - h * ONE_HOUR_MS, oi_value)
            for h in range(24, 0, -1)
        ]
    )
    client.get_klines = AsyncMock(return_value=[])

    cache = TimeSeriesCache()
    await CacheSeeder(cache, client).seed(["BTCUSDT"], now_ms=T0)
    return cache


async def test_seeded_single_venue_history_does_not_inflate_total():
    cache = await _seeded_cache(100_000)
    aggregator = DerivativesAggregator(
        {
            name: AsyncMock(return_value=_ex(name, oi=1000, oi_value=100_000))
            for name in ("binance", "bybit", "okx")
        },
        cache,
    )

    result = await aggregator.aggregate("BTCUSDT", now_ms=T0 + 10 * 60_000)

    assert result.total_oi_value == 300_000
    assert result.oi_change_1h == pytest.approx(0.0)
    assert result.oi_change_24h == pytest.approx(0.0)
    assert result.oi_trend == "stable"


async def test_oi_change_uses_only_venues_with_history():
    cache = await _seeded_cache(100_000)
    sources = {
        "binance": AsyncMock(return_value=_ex("binance", oi_value=110_000)),
        "bybit": AsyncMock(return_value=_ex("bybit", oi_value=50_000)),
    }
    aggregator = DerivativesAggregator(sources, cache)

    first = await aggregator.aggregate("BTCUSDT", now_ms=T0 + 10 * 60_000)

    # bybit 还没有历史，只看 binance 100k -> 110k
    assert first.oi_change_1h == pytest.approx(10.0)

    sources["bybit"].return_value = _ex("bybit", oi_value=60_000)
    later = await aggregator.aggregate("BTCUSDT", now_ms=T0 + 70 * 60_000)

    # 1h 前: binance 110k + bybit 50k -> 现在 110k + 60k
    assert later.oi_change_1h == pytest.approx(6.25)
