# src/aggregator/derivatives.py
import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

from src.client.models import ExchangeDerivatives
from src.storage.cache import ONE_DAY_MS, ONE_HOUR_MS, TimeSeriesCache, venue_key

logger = logging.getLogger(__name__)

DerivativesSource = Callable[[str], Coroutine[Any, Any, ExchangeDerivatives | None]]

FUNDING_BIAS_THRESHOLD = 0.0001
FUNDING_EXTREME = 0.0003
FUNDING_ELEVATED = 0.0001
POSITION_HEAVY = 0.55
OI_TREND_THRESHOLD = 2.0  # %


@dataclass
class AggregatedDerivatives:
    symbol: str
    timestamp: int
    total_oi: float
    total_oi_value: float
    oi_change_1h: float  # %
    oi_change_24h: float  # %
    weighted_funding: float
    funding_bias: str  # long_paying / short_paying / neutral
    avg_long_ratio: float
    avg_short_ratio: float
    position_bias: str  # long_heavy / short_heavy / balanced
    funding_heat: str  # normal / elevated / extreme
    oi_trend: str  # expanding / contracting / stable
    exchanges: list[ExchangeDerivatives] = field(default_factory=list)


def classify_funding_bias(funding: float) -> str:
    if funding > FUNDING_BIAS_THRESHOLD:
        return "long_paying"
    if funding < -FUNDING_BIAS_THRESHOLD:
        return "short_paying"
    return "neutral"


def classify_funding_heat(funding: float) -> str:
    if abs(funding) > FUNDING_EXTREME:
        return "extreme"
    if abs(funding) > FUNDING_ELEVATED:
        return "elevated"
    return "normal"


def classify_position_bias(long_ratio: float, short_ratio: float) -> str:
    if long_ratio > POSITION_HEAVY:
        return "long_heavy"
    if short_ratio > POSITION_HEAVY:
        return "short_heavy"
    return "balanced"


def classify_oi_trend(oi_change_1h: float) -> str:
    if oi_change_1h > OI_TREND_THRESHOLD:
        return "expanding"
    if oi_change_1h < -OI_TREND_THRESHOLD:
        return "contracting"
    return "stable"


def volume_weighted_funding(exchanges: list[ExchangeDerivatives]) -> float:
    total_volume = sum(e.volume_24h for e in exchanges)
    if total_volume <= 0:
        return 0.0
    return sum(e.funding * e.volume_24h for e in exchanges) / total_volume


class DerivativesAggregator:
    """跨交易所合并 OI / 资金费率 / 多空比"""

    def __init__(self, sources: dict[str, DerivativesSource], cache: TimeSeriesCache):
        self.sources = sources
        self.cache = cache

    async def aggregate(
        self, symbol: str, now_ms: int | None = None
    ) -> AggregatedDerivatives | None:
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        names = list(self.sources)
        results = await asyncio.gather(
            *(self.sources[name](symbol) for name in names), return_exceptions=True
        )

        exchanges: list[ExchangeDerivatives] = []
        keyed: list[tuple[str, ExchangeDerivatives]] = []
        for name, result in zip(names, results):
            if isinstance(result, ExchangeDerivatives):
                exchanges.append(result)
                keyed.append((venue_key(symbol, name), result))
            elif isinstance(result, BaseException):
                logger.warning(f"Derivatives source {name} failed for {symbol}: {result}")

        if not exchanges:
            logger.warning(f"No derivatives data for {symbol}")
            return None

        total_oi = sum(e.oi for e in exchanges)
        total_oi_value = sum(e.oi_value for e in exchanges)
        weighted_funding = volume_weighted_funding(exchanges)
        avg_long = sum(e.long_ratio for e in exchanges) / len(exchanges)
        avg_short = sum(e.short_ratio for e in exchanges) / len(exchanges)

        # 每个交易所单独成序列，首次调用时变化为 0
        for key, e in keyed:
            self.cache.record_oi(key, e.oi, e.oi_value, now_ms=now_ms)
        oi_change_1h = self._oi_change(keyed, ONE_HOUR_MS, now_ms)
        oi_change_24h = self._oi_change(keyed, ONE_DAY_MS, now_ms)

        return AggregatedDerivatives(
            symbol=symbol,
            timestamp=now_ms,
            total_oi=total_oi,
            total_oi_value=total_oi_value,
            oi_change_1h=oi_change_1h,
            oi_change_24h=oi_change_24h,
            weighted_funding=weighted_funding,
            funding_bias=classify_funding_bias(weighted_funding),
            avg_long_ratio=avg_long,
            avg_short_ratio=avg_short,
            position_bias=classify_position_bias(avg_long, avg_short),
            funding_heat=classify_funding_heat(weighted_funding),
            oi_trend=classify_oi_trend(oi_change_1h),
            exchanges=exchanges,
        )

    def _oi_change(
        self, keyed: list[tuple[str, ExchangeDerivatives]], period_ms: int, now_ms: int
    ) -> float:
        """当前值与历史值只累加同一组有历史数据的交易所"""
        current = 0.0
        historical = 0.0
        for key, e in keyed:
            past = self.cache.get_oi_value_at(key, period_ms, now_ms=now_ms)
            if past is None:
                continue
            current += e.oi_value
            historical += past

        if historical == 0:
            return 0.0
        return (current - historical) / historical * 100
