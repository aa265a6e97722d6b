# tests/aggregator/test_pressure.py
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.aggregator.derivatives import AggregatedDerivatives
from src.aggregator.liquidation import AggregatedLiquidations, LiquidationCluster
from src.aggregator.pressure import MarketPressureCalculator, _trapped_side, evaluate_pressure


def _derivatives(long=0.5, short=0.5, funding=0.0) -> AggregatedDerivatives:
    return AggregatedDerivatives(
        symbol="BTCUSDT",
        timestamp=0,
        total_oi=1.0,
        total_oi_value=1.0,
        oi_change_1h=0.0,
        oi_change_24h=0.0,
        weighted_funding=funding,
        funding_bias="neutral",
        avg_long_ratio=long,
        avg_short_ratio=short,
        position_bias="balanced",
        funding_heat="normal",
        oi_trend="stable",
    )


def _cluster(pct, long_value=0.0, short_value=0.0) -> LiquidationCluster:
    return LiquidationCluster(
        price_level=100.0 * (1 + pct / 100),
        price_level_percent=pct,
        long_liquidations=1 if long_value else 0,
        short_liquidations=1 if short_value else 0,
        long_value=long_value,
        short_value=short_value,
        total_value=long_value + short_value,
        intensity=1.0,
    )


def _liquidations(clusters) -> AggregatedLiquidations:
    return AggregatedLiquidations(
        symbol="BTCUSDT",
        timestamp=0,
        long_liquidations_1h=0,
        short_liquidations_1h=0,
        long_value_1h=0,
        short_value_1h=0,
        long_liquidations_24h=0,
        short_liquidations_24h=0,
        long_value_24h=0,
        short_value_24h=0,
        pressure="balanced",
        pressure_intensity=0,
        clusters=clusters,
    )


def test_longs_trapped_with_value_at_risk():
    clusters = [
        _cluster(-2.0, long_value=800_000),
        _cluster(-4.0, long_value=700_000),
        _cluster(-7.0, long_value=5_000_000),  # 超出 5%
        _cluster(3.0, short_value=200_000),
    ]

    pressure = evaluate_pressure(
        "BTCUSDT", 100.0, _derivatives(long=0.6, short=0.4, funding=0.0002), _liquidations(clusters)
    )

    assert pressure.longs_trapped is True
    assert pressure.trapped_side == "longs"
    assert pressure.long_value_at_risk == 1_500_000
    assert pressure.short_value_at_risk == 200_000
    assert pressure.nearest_long_liquidation == pytest.approx(98.0)
    assert pressure.long_liq_distance == pytest.approx(-2.0)
    assert pressure.short_liq_distance == pytest.approx(3.0)
    # 40 + 10 + 2
    assert pressure.squeeze_probability == pytest.approx(52.0)
    assert pressure.squeeze_direction == "short"


def test_shorts_trapped_probability_capped():
    clusters = [_cluster(1.0, short_value=3_000_000)]

    pressure = evaluate_pressure(
        "BTCUSDT", 100.0, _derivatives(long=0.2, short=0.8, funding=-0.004), _liquidations(clusters)
    )

    assert pressure.trapped_side == "shorts"
    assert pressure.squeeze_probability == 90.0
    assert pressure.squeeze_direction == "long"


def test_trapped_without_enough_value_has_no_squeeze():
    pressure = evaluate_pressure(
        "BTCUSDT",
        100.0,
        _derivatives(long=0.6, short=0.4, funding=0.0002),
        _liquidations([_cluster(-1.0, long_value=999_999)]),
    )

    assert pressure.longs_trapped is True
    assert pressure.squeeze_probability == 0.0
    assert pressure.squeeze_direction is None


def test_no_liquidations():
    pressure = evaluate_pressure("BTCUSDT", 100.0, _derivatives(), None)

    assert pressure.trapped_side == "none"
    assert pressure.nearest_long_liquidation is None
    assert pressure.long_liq_distance is None
    assert pressure.long_value_at_risk == 0


async def test_calculator_returns_none_without_derivatives():
    derivatives = MagicMock()
    derivatives.aggregate = AsyncMock(return_value=None)
    liquidations = MagicMock()
    liquidations.aggregate = AsyncMock()

    calc = MarketPressureCalculator(derivatives, liquidations, AsyncMock(return_value=100.0))

    assert await calc.calculate("BTCUSDT") is None
    liquidations.aggregate.assert_not_called()


async def test_calculator_returns_none_without_price():
    derivatives = MagicMock()
    derivatives.aggregate = AsyncMock(return_value=_derivatives())
    calc = MarketPressureCalculator(derivatives, MagicMock(), AsyncMock(return_value=0.0))

    assert await calc.calculate("BTCUSDT") is None


async def test_calculator_passes_price_to_liquidations():
    derivatives = MagicMock()
    derivatives.aggregate = AsyncMock(return_value=_derivatives(long=0.6, short=0.4, funding=0.0002))
    liquidations = MagicMock()
    liquidations.aggregate = AsyncMock(
        return_value=_liquidations([_cluster(-1.0, long_value=2_000_000)])
    )

    calc = MarketPressureCalculator(derivatives, liquidations, AsyncMock(return_value=100.0))
    result = await calc.calculate("BTCUSDT")

    assert result is not None
    assert result.current_price == 100.0
    assert result.squeeze_direction == "short"
    liquidations.aggregate.assert_awaited_once_with("BTCUSDT", current_price=100.0)


@pytest.mark.parametrize(
    "longs, shorts, expected",
    [
        (True, True, "both"),
        (True, False, "longs"),
        (False, True, "shorts"),
        (False, False, "none"),
    ],
)
def test_trapped_side_values(longs, shorts, expected):
    assert _trapped_side(longs, shorts) == expected


def test_liquidation_distances_keep_sign():
    clusters = [_cluster(-3.0, long_value=1.0), _cluster(1.5, short_value=1.0)]

    pressure = evaluate_pressure("BTCUSDT", 100.0, _derivatives(), _liquidations(clusters))

    assert pressure.long_liq_distance == pytest.approx(-3.0)
    assert pressure.short_liq_distance == pytest.approx(1.5)
