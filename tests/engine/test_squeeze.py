# tests/engine/test_squeeze.py
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.aggregator.liquidation import AggregatedLiquidations, LiquidationCluster
from src.client.models import LongShortRatio, SqueezeSnapshot
from src.engine.squeeze import (
    SqueezeInput,
    SqueezeScanner,
    detect_squeeze,
    determine_strength,
    strength_rank,
)

NOW = 1_706_600_000_000


def _input(**overrides) -> SqueezeInput:
    data = dict(
        symbol="BTCUSDT",
        current_price=100_000.0,
        oi_change_24h=0.05,
        funding_rate=0.0004,
        long_ratio=0.62,
        short_ratio=0.38,
        buy_volume=200.0,
        sell_volume=50.0,
        price_change_24h=0.01,
    )
    data.update(overrides)
    return SqueezeInput(**data)


def _snapshot(symbol="BTCUSDT", **overrides) -> SqueezeSnapshot:
    data = dict(
        symbol=symbol,
        price=100_000.0,
        price_change_24h=0.01,
        oi_change_24h=0.05,
        funding=0.0004,
        long_ratio=0.62,
        short_ratio=0.38,
        buy_volume=200.0,
        sell_volume=50.0,
    )
    data.update(overrides)
    return SqueezeSnapshot(**data)


def test_long_squeeze_end_to_end():
    signal = detect_squeeze(_input(), now_ms=NOW)

    assert signal is not None
    assert signal.type == "LONG_SQUEEZE"
    assert signal.components["funding_extreme"].active
    assert signal.components["oi_rising"].active
    assert signal.components["volume_absorption"].active
    assert not signal.components["liquidation_cluster"].active
    # 0.2*0.625 + 0.2*0.0004/0.0006 + 0.2*0.62/0.65 + 0.15*0.8 + 0.1*0.7
    assert signal.probability == pytest.approx(63.9, abs=0.1)
    assert signal.probability >= 50
    assert strength_rank(signal.strength) >= strength_rank("BUILDING")
    assert signal.active_count == 5
    assert signal.nearest_liquidation_price == pytest.approx(95_000)
    assert signal.trigger_zone.low == pytest.approx(97_000)
    assert signal.trigger_zone.high == pytest.approx(100_000)
    assert signal.similar_setups == 0
    assert signal.timestamp == NOW


@pytest.mark.parametrize(
    "long_ratio,short_ratio",
    [(0.55, 0.45), (0.5, 0.5), (0.45, 0.55), (0.3, 0.3)],
)
def test_no_imbalance_no_squeeze(long_ratio, short_ratio):
    data = _input(
        long_ratio=long_ratio,
        short_ratio=short_ratio,
        oi_change_24h=0.5,
        funding_rate=0.01,
        nearby_long_liquidations=50,
        nearby_short_liquidations=50,
    )
    assert detect_squeeze(data) is None


def test_weak_setup_below_minimum_probability():
    data = _input(
        long_ratio=0.56,
        short_ratio=0.44,
        oi_change_24h=0.0,
        funding_rate=0.0,
        buy_volume=100.0,
        sell_volume=100.0,
    )
    assert detect_squeeze(data) is None


def test_short_squeeze_with_nearby_liquidations():
    data = _input(
        long_ratio=0.3,
        short_ratio=0.7,
        oi_change_24h=0.1,
        funding_rate=-0.0007,
        buy_volume=50.0,
        sell_volume=200.0,
        price_change_24h=-0.005,
        nearby_short_liquidations=10,
        nearest_short_liq_price=102_000.0,
    )

    signal = detect_squeeze(data)

    assert signal.type == "SHORT_SQUEEZE"
    assert signal.probability == pytest.approx(94.0)
    assert signal.strength == "ACTIVE"
    assert signal.nearest_liquidation_price == 102_000.0
    assert signal.estimated_liquidation_value == pytest.approx(10 * 100_000 * 100)
    assert signal.trigger_zone.low == pytest.approx(100_000)
    assert signal.trigger_zone.high == pytest.approx(103_000)


def test_funding_against_direction_inactive():
    # 多头拥挤但资金费率为负
    signal = detect_squeeze(_input(funding_rate=-0.0008))

    assert signal is not None
    assert not signal.components["funding_extreme"].active
    assert signal.components["funding_extreme"].contribution == 0.0


def test_price_moving_disables_absorption_and_rejection():
    signal = detect_squeeze(_input(price_change_24h=0.05, funding_rate=0.0007, oi_change_24h=0.1))

    assert signal is not None
    assert not signal.components["volume_absorption"].active
    assert not signal.components["price_rejection"].active


def test_determine_strength():
    assert determine_strength(85, 5) == "ACTIVE"
    assert determine_strength(85, 4) == "IMMINENT"
    assert determine_strength(66, 3) == "BUILDING"
    assert determine_strength(55, 2) == "LOADING"
    assert strength_rank("loading") < strength_rank("ACTIVE")


async def test_scanner_sorts_by_probability():
    snapshots = {
        "BTCUSDT": _snapshot("BTCUSDT"),
        "ETHUSDT": _snapshot("ETHUSDT", oi_change_24h=0.1, funding=0.0007),
        "SOLUSDT": _snapshot("SOLUSDT", long_ratio=0.5, short_ratio=0.5),
    }
    scanner = SqueezeScanner(AsyncMock(side_effect=lambda s: snapshots[s]))

    signals = await scanner.detect_squeeze_multi(["BTCUSDT", "ETHUSDT", "SOLUSDT"])

    assert [s.symbol for s in signals] == ["ETHUSDT", "BTCUSDT"]


async def test_scanner_secondary_ratios_override():
    secondary = AsyncMock(return_value=LongShortRatio("BTCUSDT", 0.5, 0.5, 1.0, NOW))
    scanner = SqueezeScanner(AsyncMock(return_value=_snapshot()), secondary)

    assert await scanner.detect_squeeze_multi(["BTCUSDT"]) == []


async def test_scanner_secondary_failure_falls_back_to_primary():
    secondary = AsyncMock(side_effect=RuntimeError("bybit down"))
    scanner = SqueezeScanner(AsyncMock(return_value=_snapshot()), secondary)

    signals = await scanner.detect_squeeze_multi(["BTCUSDT"])

    assert len(signals) == 1
    assert signals[0].type == "LONG_SQUEEZE"


async def test_scanner_skips_failed_symbols():
    primary = AsyncMock(side_effect=[RuntimeError("boom"), None, _snapshot("SOLUSDT")])
    scanner = SqueezeScanner(primary)

    signals = await scanner.detect_squeeze_multi(["BTCUSDT", "ETHUSDT", "SOLUSDT"])

    assert [s.symbol for s in signals] == ["SOLUSDT"]


async def test_scanner_uses_nearby_liquidation_clusters():
    clusters = [
        LiquidationCluster(97_000.0, -3.0, 4, 0, 400_000, 0, 400_000, 1.0),
        LiquidationCluster(99_000.0, -1.0, 2, 0, 100_000, 0, 100_000, 0.25),
        LiquidationCluster(90_000.0, -10.0, 9, 0, 900_000, 0, 900_000, 1.0),
    ]
    liquidations = MagicMock()
    liquidations.aggregate = AsyncMock(
        return_value=AggregatedLiquidations(
            "BTCUSDT", NOW, 0, 0, 0, 0, 15, 0, 1_400_000, 0, "long_pain", 80, clusters=clusters
        )
    )
    scanner = SqueezeScanner(AsyncMock(return_value=_snapshot()), liquidations=liquidations)

    signals = await scanner.detect_squeeze_multi(["BTCUSDT"])

    component = signals[0].components["liquidation_cluster"]
    assert component.active
    assert component.value == 6
    assert signals[0].nearest_liquidation_price == 99_000.0
    liquidations.aggregate.assert_awaited_once_with("BTCUSDT", current_price=100_000.0)
