# src/aggregator/pressure.py
import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from src.aggregator.derivatives import AggregatedDerivatives, DerivativesAggregator
from src.aggregator.liquidation import (
    AggregatedLiquidations,
    LiquidationAggregator,
    LiquidationCluster,
)

logger = logging.getLogger(__name__)

PriceSource = Callable[[str], Coroutine[Any, Any, float]]

TRAPPED_RATIO = 0.55
TRAPPED_FUNDING = 0.0001
AT_RISK_RANGE_PCT = 5.0
SQUEEZE_VALUE_AT_RISK = 1_000_000
MAX_SQUEEZE_PROBABILITY = 90.0


@dataclass
class MarketPressure:
    symbol: str
    current_price: float
    longs_trapped: bool
    shorts_trapped: bool
    trapped_side: str  # longs / shorts / both / none
    nearest_long_liquidation: float | None
    nearest_short_liquidation: float | None
    long_liq_distance: float | None  # 相对现价 %，带符号 (多头簇为负)
    short_liq_distance: float | None
    long_value_at_risk: float
    short_value_at_risk: float
    squeeze_probability: float
    squeeze_direction: str | None  # long / short
    derivatives: AggregatedDerivatives
    liquidations: AggregatedLiquidations | None


def _trapped_side(longs: bool, shorts: bool) -> str:
    if longs and shorts:
        return "both"
    if longs:
        return "longs"
    if shorts:
        return "shorts"
    return "none"


def _squeeze_odds(ratio: float, funding: float) -> float:
    return min(MAX_SQUEEZE_PROBABILITY, 40 + (ratio - 0.5) * 100 + abs(funding) * 10000)


def evaluate_pressure(
    symbol: str,
    current_price: float,
    derivatives: AggregatedDerivatives,
    liquidations: AggregatedLiquidations | None,
) -> MarketPressure:
    """根据持仓结构和爆仓簇判断被套方向"""
    funding = derivatives.weighted_funding
    longs_trapped = derivatives.avg_long_ratio > TRAPPED_RATIO and funding > TRAPPED_FUNDING
    shorts_trapped = derivatives.avg_short_ratio > TRAPPED_RATIO and funding < -TRAPPED_FUNDING

    clusters: list[LiquidationCluster] = liquidations.clusters if liquidations else []
    below = [c for c in clusters if c.price_level_percent < 0]
    above = [c for c in clusters if c.price_level_percent > 0]

    long_value_at_risk = sum(
        c.long_value for c in below if c.price_level_percent > -AT_RISK_RANGE_PCT
    )
    short_value_at_risk = sum(
        c.short_value for c in above if c.price_level_percent < AT_RISK_RANGE_PCT
    )

    nearest_long = max(below, key=lambda c: c.price_level_percent) if below else None
    nearest_short = min(above, key=lambda c: c.price_level_percent) if above else None

    probability = 0.0
    direction: str | None = None
    if longs_trapped and long_value_at_risk > SQUEEZE_VALUE_AT_RISK:
        probability = _squeeze_odds(derivatives.avg_long_ratio, funding)
        direction = "short"
    elif shorts_trapped and short_value_at_risk > SQUEEZE_VALUE_AT_RISK:
        probability = _squeeze_odds(derivatives.avg_short_ratio, funding)
        direction = "long"

    return MarketPressure(
        symbol=symbol,
        current_price=current_price,
        longs_trapped=longs_trapped,
        shorts_trapped=shorts_trapped,
        trapped_side=_trapped_side(longs_trapped, shorts_trapped),
        nearest_long_liquidation=nearest_long.price_level if nearest_long else None,
        nearest_short_liquidation=nearest_short.price_level if nearest_short else None,
        long_liq_distance=nearest_long.price_level_percent if nearest_long else None,
        short_liq_distance=nearest_short.price_level_percent if nearest_short else None,
        long_value_at_risk=long_value_at_risk,
        short_value_at_risk=short_value_at_risk,
        squeeze_probability=probability,
        squeeze_direction=direction,
        derivatives=derivatives,
        liquidations=liquidations,
    )


class MarketPressureCalculator:
    def __init__(
        self,
        derivatives: DerivativesAggregator,
        liquidations: LiquidationAggregator,
        price_source: PriceSource,
    ):
        self.derivatives = derivatives
        self.liquidations = liquidations
        self.price_source = price_source

    async def calculate(self, symbol: str) -> MarketPressure | None:
        derivatives, price = await asyncio.gather(
            self.derivatives.aggregate(symbol),
            self.price_source(symbol),
            return_exceptions=True,
        )

        if not isinstance(derivatives, AggregatedDerivatives):
            return None
        if isinstance(price, BaseException) or not price:
            logger.warning(f"No current price for {symbol}, skipping pressure")
            return None

        liquidations = await self.liquidations.aggregate(symbol, current_price=price)
        return evaluate_pressure(symbol, price, derivatives, liquidations)
