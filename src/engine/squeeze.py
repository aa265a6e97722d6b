# src/engine/squeeze.py
"""轧多 / 轧空检测

必须先有明显的持仓倾斜 (一方 > 55%)，再对六个维度打分:
OI 上升、资金费率极端、多空失衡、附近爆仓簇、成交量吸收、价格滞涨。
"""

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

from src.aggregator.liquidation import LiquidationAggregator
from src.client.models import LongShortRatio, SqueezeSnapshot

logger = logging.getLogger(__name__)

SnapshotSource = Callable[[str], Coroutine[Any, Any, SqueezeSnapshot | None]]
PositioningSource = Callable[[str], Coroutine[Any, Any, LongShortRatio | None]]

OI_CHANGE_MIN = 0.03
OI_CHANGE_STRONG = 0.08
FUNDING_EXTREME = 0.0003
FUNDING_VERY_EXTREME = 0.0006
RATIO_IMBALANCE = 0.55
RATIO_EXTREME = 0.65
PRICE_CHANGE_MAX = 0.02
VOLUME_ABSORPTION_RATIO = 1.5

WEIGHTS = {
    "oi_rising": 0.20,
    "funding_extreme": 0.20,
    "directional_imbalance": 0.20,
    "liquidation_cluster": 0.15,
    "volume_absorption": 0.15,
    "price_rejection": 0.10,
}

MIN_PROBABILITY = 40
NEARBY_LIQUIDATION_PCT = 5.0

# (强度, 最低概率, 最少激活维度)，自上而下匹配
STRENGTH_LEVELS = (
    ("ACTIVE", 80, 5),
    ("IMMINENT", 65, 4),
    ("BUILDING", 50, 3),
)
STRENGTH_ORDER = ("LOADING", "BUILDING", "IMMINENT", "ACTIVE")


@dataclass
class SqueezeInput:
    symbol: str
    current_price: float
    oi_change_24h: float  # 小数
    funding_rate: float
    long_ratio: float
    short_ratio: float
    buy_volume: float
    sell_volume: float
    price_change_24h: float  # 小数
    nearby_long_liquidations: int = 0
    nearby_short_liquidations: int = 0
    nearest_long_liq_price: float | None = None
    nearest_short_liq_price: float | None = None

    @classmethod
    def from_snapshot(cls, snapshot: SqueezeSnapshot) -> "SqueezeInput":
        return cls(
            symbol=snapshot.symbol,
            current_price=snapshot.price,
            oi_change_24h=snapshot.oi_change_24h,
            funding_rate=snapshot.funding,
            long_ratio=snapshot.long_ratio,
            short_ratio=snapshot.short_ratio,
            buy_volume=snapshot.buy_volume,
            sell_volume=snapshot.sell_volume,
            price_change_24h=snapshot.price_change_24h,
        )


@dataclass
class SqueezeComponent:
    name: str
    active: bool
    value: float
    threshold: float
    contribution: float  # 0-1


@dataclass
class TriggerZone:
    low: float
    high: float


@dataclass
class SqueezeSignal:
    symbol: str
    type: str  # LONG_SQUEEZE / SHORT_SQUEEZE
    strength: str
    probability: float
    components: dict[str, SqueezeComponent]
    nearest_liquidation_price: float
    estimated_liquidation_value: float
    trigger_zone: TriggerZone
    timestamp: int
    # 没有历史样本库，固定为 0
    similar_setups: int = 0
    historical_win_rate: float = 0.0

    @property
    def active_count(self) -> int:
        return sum(1 for c in self.components.values() if c.active)


def analyze_component(
    name: str, value: float, threshold: float, strong: float, active: bool
) -> SqueezeComponent:
    intensity = min(value / strong, 1.0)
    return SqueezeComponent(name, active, value, threshold, intensity if active else 0.0)


def determine_strength(probability: float, active_count: int) -> str:
    for strength, min_probability, min_active in STRENGTH_LEVELS:
        if probability >= min_probability and active_count >= min_active:
            return strength
    return "LOADING"


def strength_rank(strength: str) -> int:
    return STRENGTH_ORDER.index(strength.upper())


def detect_squeeze(data: SqueezeInput, now_ms: int | None = None) -> SqueezeSignal | None:
    is_long_heavy = data.long_ratio > RATIO_IMBALANCE
    is_short_heavy = data.short_ratio > RATIO_IMBALANCE
    if not is_long_heavy and not is_short_heavy:
        return None

    is_long = is_long_heavy
    squeeze_type = "LONG_SQUEEZE" if is_long else "SHORT_SQUEEZE"

    oi_rising = data.oi_change_24h > OI_CHANGE_MIN
    oi = analyze_component(
        "Open Interest Rising", data.oi_change_24h, OI_CHANGE_MIN, OI_CHANGE_STRONG, oi_rising
    )

    funding_abs = abs(data.funding_rate)
    if is_long:
        funding_directional = data.funding_rate > FUNDING_EXTREME
    else:
        funding_directional = data.funding_rate < -FUNDING_EXTREME
    funding = analyze_component(
        "Extreme Funding Rate",
        funding_abs,
        FUNDING_EXTREME,
        FUNDING_VERY_EXTREME,
        funding_abs > FUNDING_EXTREME and funding_directional,
    )

    dominant = max(data.long_ratio, data.short_ratio)
    imbalance = analyze_component(
        "Directional Imbalance", dominant, RATIO_IMBALANCE, RATIO_EXTREME, dominant > RATIO_IMBALANCE
    )

    relevant = data.nearby_long_liquidations if is_long else data.nearby_short_liquidations
    liquidation = SqueezeComponent(
        name="Liquidation Cluster Nearby",
        active=relevant > 0,
        value=relevant,
        threshold=1,
        contribution=min(relevant / 10, 1.0) if relevant > 0 else 0.0,
    )

    # 价格几乎不动而单边成交放大 = 被吸收
    price_stalling = abs(data.price_change_24h) < PRICE_CHANGE_MAX
    volume_ratio = data.buy_volume / data.sell_volume if data.sell_volume > 0 else 1.0
    if is_long:
        absorbed = volume_ratio > VOLUME_ABSORPTION_RATIO and price_stalling
    else:
        absorbed = volume_ratio < 1 / VOLUME_ABSORPTION_RATIO and price_stalling
    volume = SqueezeComponent(
        "Volume Absorption", absorbed, volume_ratio, VOLUME_ABSORPTION_RATIO, 0.8 if absorbed else 0.0
    )

    rejected = price_stalling and oi_rising
    price = SqueezeComponent(
        "Price Rejection",
        rejected,
        abs(data.price_change_24h),
        PRICE_CHANGE_MAX,
        0.7 if rejected else 0.0,
    )

    components = {
        "oi_rising": oi,
        "funding_extreme": funding,
        "directional_imbalance": imbalance,
        "liquidation_cluster": liquidation,
        "volume_absorption": volume,
        "price_rejection": price,
    }

    probability = (
        sum(WEIGHTS[key] * c.contribution for key, c in components.items() if c.active) * 100
    )
    if probability < MIN_PROBABILITY:
        return None

    active_count = sum(1 for c in components.values() if c.active)
    p = data.current_price
    if is_long:
        nearest = data.nearest_long_liq_price or p * 0.95
        zone = TriggerZone(low=p * 0.97, high=p)
    else:
        nearest = data.nearest_short_liq_price or p * 1.05
        zone = TriggerZone(low=p, high=p * 1.03)

    return SqueezeSignal(
        symbol=data.symbol,
        type=squeeze_type,
        strength=determine_strength(probability, active_count),
        probability=probability,
        components=components,
        nearest_liquidation_price=nearest,
        # 粗略估算
        estimated_liquidation_value=relevant * p * 100,
        trigger_zone=zone,
        timestamp=now_ms if now_ms is not None else int(time.time() * 1000),
    )


class SqueezeScanner:
    """批量检测

    primary 提供 OI / 资金费率 / 成交量快照 (Binance)，
    secondary 提供账户多空比 (Bybit)，有则覆盖 primary 的比例。
    """

    def __init__(
        self,
        primary: SnapshotSource,
        secondary: PositioningSource | None = None,
        liquidations: LiquidationAggregator | None = None,
    ):
        self.primary = primary
        self.secondary = secondary
        self.liquidations = liquidations

    async def _positioning(self, symbol: str) -> LongShortRatio | None:
        if not self.secondary:
            return None
        try:
            return await self.secondary(symbol)
        except Exception as e:
            logger.warning(f"Secondary positioning failed for {symbol}: {e}")
            return None

    async def _apply_liquidations(self, data: SqueezeInput) -> None:
        if not self.liquidations:
            return
        result = await self.liquidations.aggregate(data.symbol, current_price=data.current_price)
        if not result:
            return

        nearby = [
            c for c in result.clusters if abs(c.price_level_percent) <= NEARBY_LIQUIDATION_PCT
        ]
        longs = [c for c in nearby if c.long_liquidations > 0]
        shorts = [c for c in nearby if c.short_liquidations > 0]

        data.nearby_long_liquidations = sum(c.long_liquidations for c in longs)
        data.nearby_short_liquidations = sum(c.short_liquidations for c in shorts)
        if longs:
            data.nearest_long_liq_price = min(
                longs, key=lambda c: abs(c.price_level_percent)
            ).price_level
        if shorts:
            data.nearest_short_liq_price = min(
                shorts, key=lambda c: abs(c.price_level_percent)
            ).price_level

    async def scan_symbol(self, symbol: str, now_ms: int | None = None) -> SqueezeSignal | None:
        snapshot, positioning = await asyncio.gather(
            self.primary(symbol), self._positioning(symbol)
        )
        if not snapshot:
            return None

        data = SqueezeInput.from_snapshot(snapshot)
        if positioning and positioning.long_ratio > 0 and positioning.short_ratio > 0:
            data.long_ratio = positioning.long_ratio
            data.short_ratio = positioning.short_ratio

        await self._apply_liquidations(data)
        return detect_squeeze(data, now_ms=now_ms)

    async def detect_squeeze_multi(
        self, symbols: list[str], now_ms: int | None = None
    ) -> list[SqueezeSignal]:
        signals = []
        for symbol in symbols:
            try:
                signal = await self.scan_symbol(symbol, now_ms=now_ms)
            except Exception as e:
                logger.error(f"Squeeze detection failed for {symbol}: {e}")
                continue
            if signal:
                signals.append(signal)

        signals.sort(key=lambda s: s.probability, reverse=True)
        return signals
