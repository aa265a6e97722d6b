# src/aggregator/liquidation.py
import asyncio
import logging
import math
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

from src.storage.models import Liquidation

logger = logging.getLogger(__name__)

LiquidationSource = Callable[[str], Coroutine[Any, Any, list[Liquidation]]]

HOUR_MS = 3600 * 1000
DAY_MS = 24 * HOUR_MS
LARGE_LIQUIDATION_USD = 100_000
MAX_RECENT_LARGE = 10
MAX_CLUSTERS = 20
CLUSTER_BUCKET_PCT = 0.01
LONG_PAIN_SHARE = 0.65
SHORT_PAIN_SHARE = 0.35


@dataclass
class LiqStats:
    long: float = 0.0
    short: float = 0.0
    long_count: int = 0
    short_count: int = 0

    @property
    def total(self) -> float:
        return self.long + self.short


@dataclass
class LiquidationCluster:
    price_level: float
    price_level_percent: float  # 相对当前价格的距离 (%)，负数在下方
    long_liquidations: int
    short_liquidations: int
    long_value: float
    short_value: float
    total_value: float
    intensity: float  # 0-1，相对最大簇


@dataclass
class AggregatedLiquidations:
    symbol: str
    timestamp: int
    long_liquidations_1h: int
    short_liquidations_1h: int
    long_value_1h: float
    short_value_1h: float
    long_liquidations_24h: int
    short_liquidations_24h: int
    long_value_24h: float
    short_value_24h: float
    pressure: str  # long_pain / short_pain / balanced
    pressure_intensity: float  # 0-100
    recent_large: list[Liquidation] = field(default_factory=list)
    clusters: list[LiquidationCluster] = field(default_factory=list)


def calculate_liquidations(liqs: list[Liquidation]) -> LiqStats:
    if not liqs:
        return LiqStats()

    longs = [liq for liq in liqs if liq.side == "long"]
    shorts = [liq for liq in liqs if liq.side == "short"]

    return LiqStats(
        long=sum(liq.value_usd for liq in longs),
        short=sum(liq.value_usd for liq in shorts),
        long_count=len(longs),
        short_count=len(shorts),
    )


def classify_pressure(stats: LiqStats) -> tuple[str, float]:
    """24h 多头爆仓占比判断哪一方在承压"""
    if stats.total <= 0:
        return "balanced", 0.0

    long_share = stats.long / stats.total
    if long_share > LONG_PAIN_SHARE:
        return "long_pain", min(100.0, (long_share - 0.5) * 200)
    if long_share < SHORT_PAIN_SHARE:
        return "short_pain", min(100.0, (0.5 - long_share) * 200)
    return "balanced", 0.0


def build_clusters(liqs: list[Liquidation], current_price: float) -> list[LiquidationCluster]:
    """按当前价格 1% 宽度分桶"""
    if current_price <= 0 or not liqs:
        return []

    bucket_size = current_price * CLUSTER_BUCKET_PCT
    buckets: dict[float, LiquidationCluster] = {}

    for liq in liqs:
        level = math.floor(liq.price / bucket_size) * bucket_size
        cluster = buckets.get(level)
        if cluster is None:
            cluster = LiquidationCluster(
                price_level=level,
                price_level_percent=(level - current_price) / current_price * 100,
                long_liquidations=0,
                short_liquidations=0,
                long_value=0.0,
                short_value=0.0,
                total_value=0.0,
                intensity=0.0,
            )
            buckets[level] = cluster

        if liq.side == "long":
            cluster.long_liquidations += 1
            cluster.long_value += liq.value_usd
        else:
            cluster.short_liquidations += 1
            cluster.short_value += liq.value_usd
        cluster.total_value += liq.value_usd

    clusters = sorted(buckets.values(), key=lambda c: c.total_value, reverse=True)
    max_value = max(clusters[0].total_value, 1.0)
    for cluster in clusters:
        cluster.intensity = cluster.total_value / max_value
    return clusters[:MAX_CLUSTERS]


class LiquidationAggregator:
    """多交易所爆仓汇总"""

    def __init__(self, sources: dict[str, LiquidationSource]):
        self.sources = sources

    async def aggregate(
        self,
        symbol: str,
        current_price: float = 0.0,
        now_ms: int | None = None,
    ) -> AggregatedLiquidations | None:
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        names = list(self.sources)
        results = await asyncio.gather(
            *(self.sources[name](symbol) for name in names), return_exceptions=True
        )

        events: list[Liquidation] = []
        answered = 0
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.warning(f"Liquidation source {name} failed for {symbol}: {result}")
                continue
            answered += 1
            events.extend(result)

        if answered == 0:
            return None

        one_hour_ago = now_ms - HOUR_MS
        one_day_ago = now_ms - DAY_MS
        events_24h = [e for e in events if e.timestamp >= one_day_ago]
        events_1h = [e for e in events_24h if e.timestamp >= one_hour_ago]

        stats_1h = calculate_liquidations(events_1h)
        stats_24h = calculate_liquidations(events_24h)
        pressure, intensity = classify_pressure(stats_24h)

        recent_large = sorted(
            (e for e in events_1h if e.value_usd >= LARGE_LIQUIDATION_USD),
            key=lambda e: e.timestamp,
            reverse=True,
        )[:MAX_RECENT_LARGE]

        return AggregatedLiquidations(
            symbol=symbol,
            timestamp=now_ms,
            long_liquidations_1h=stats_1h.long_count,
            short_liquidations_1h=stats_1h.short_count,
            long_value_1h=stats_1h.long,
            short_value_1h=stats_1h.short,
            long_liquidations_24h=stats_24h.long_count,
            short_liquidations_24h=stats_24h.short_count,
            long_value_24h=stats_24h.long,
            short_value_24h=stats_24h.short,
            pressure=pressure,
            pressure_intensity=intensity,
            recent_large=recent_large,
            clusters=build_clusters(events_24h, current_price),
        )
