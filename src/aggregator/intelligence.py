# src/aggregator/intelligence.py
"""市场情报汇总: regime + 资金轮动 + 轧仓 + 持仓压力 + 稳定币流向"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

from src.aggregator.derivatives import AggregatedDerivatives, DerivativesAggregator
from src.aggregator.liquidation import AggregatedLiquidations, LiquidationAggregator
from src.aggregator.pressure import MarketPressure, MarketPressureCalculator
from src.client.macro import FearGreed, GlobalMarket, MacroClient
from src.engine.regime import RegimeAnalysis, RegimeEngine, RegimeInput
from src.engine.rotation import RotationSignal, quick_detect_rotation
from src.engine.squeeze import SqueezeScanner, SqueezeSignal
from src.storage.cache import ONE_DAY_MS, SEVEN_DAYS_MS, TimeSeriesCache

logger = logging.getLogger(__name__)

BTC = "BTCUSDT"
ETH = "ETHUSDT"
SOL = "SOLUSDT"


@dataclass
class StablecoinDelta:
    total: float
    change_24h: float  # %
    change_7d: float
    interpretation: str


@dataclass
class CapitalFlow:
    btc_dominance_change: float
    eth_btc_change: float
    defi_to_alt: bool
    risk_appetite: str  # high / medium / low


@dataclass
class IntelligenceReport:
    regime: RegimeAnalysis
    rotation: RotationSignal
    btc_pressure: MarketPressure | None
    eth_pressure: MarketPressure | None
    top_squeezes: list[SqueezeSignal]
    liquidations_24h: AggregatedLiquidations | None
    stablecoin_delta: StablecoinDelta
    capital_flow: CapitalFlow
    btc_derivatives: AggregatedDerivatives | None = None
    eth_derivatives: AggregatedDerivatives | None = None
    global_market: GlobalMarket | None = None
    fear_greed: FearGreed | None = None
    btc_change_24h: float = 0.0
    btc_change_7d: float = 0.0
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))


def interpret_stablecoin_flow(change_24h: float, change_7d: float) -> str:
    """24h 变化优先于 7d 变化 (百分比)"""
    if change_24h > 0.5:
        return "Capital entering crypto (bullish)"
    if change_24h < -0.5:
        return "Capital exiting crypto (bearish)"
    if change_7d > 2:
        return "Steady inflows over week (accumulation)"
    if change_7d < -2:
        return "Steady outflows over week (distribution)"
    return "Stable liquidity"


def assess_risk_appetite(fear_greed: int | None, funding_heat: str | None) -> str:
    appetite = "medium"
    if fear_greed is not None and fear_greed >= 70:
        appetite = "high"
    elif fear_greed is not None and fear_greed <= 30:
        appetite = "low"
    # 资金费率过热说明杠杆需求旺盛
    if funding_heat == "extreme":
        appetite = "high"
    return appetite


def _settled(name: str, result: Any) -> Any:
    if isinstance(result, BaseException):
        logger.warning(f"Intelligence input {name} failed: {result}")
        return None
    return result


class IntelligenceService:
    def __init__(
        self,
        cache: TimeSeriesCache,
        derivatives: DerivativesAggregator,
        liquidations: LiquidationAggregator,
        pressure: MarketPressureCalculator,
        macro: MacroClient,
        scanner: SqueezeScanner,
        squeeze_symbols: list[str] | None = None,
        ttl_seconds: int = 30,
        price_source: Callable[[str], Awaitable[float]] | None = None,
    ):
        self.cache = cache
        self.derivatives = derivatives
        self.liquidations = liquidations
        self.pressure = pressure
        self.macro = macro
        self.scanner = scanner
        self.price_source = price_source
        self.squeeze_symbols = squeeze_symbols or [BTC, ETH, SOL]
        self.ttl_ms = ttl_seconds * 1000
        self.regime_engine = RegimeEngine()
        self._cached: IntelligenceReport | None = None
        self._cached_at = 0

    async def get_report(self, now_ms: int | None = None) -> IntelligenceReport:
        """TTL 内直接返回上一次结果"""
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        if self._cached and now_ms - self._cached_at < self.ttl_ms:
            return self._cached

        report = await self.build(now_ms)
        self._cached = report
        self._cached_at = now_ms
        return report

    async def build(self, now_ms: int | None = None) -> IntelligenceReport:
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        names = ("btc_pressure", "eth_pressure", "global_market", "fear_greed", "stablecoins")
        results = await asyncio.gather(
            self.pressure.calculate(BTC),
            self.pressure.calculate(ETH),
            self.macro.get_global_market(),
            self.macro.get_fear_greed(),
            self.macro.get_stablecoin_supply(),
            return_exceptions=True,
        )
        btc_pressure, eth_pressure, global_market, fear_greed, stables = (
            _settled(name, r) for name, r in zip(names, results)
        )
        btc_deriv, eth_deriv, btc_liqs = await self._pressure_inputs(btc_pressure, eth_pressure)

        if btc_pressure:
            self.cache.record_price(BTC, btc_pressure.current_price, now_ms=now_ms)
        if eth_pressure:
            self.cache.record_price(ETH, eth_pressure.current_price, now_ms=now_ms)
        await self._record_price(SOL, now_ms)

        btc_24h = self.cache.get_price_change(BTC, ONE_DAY_MS, now_ms=now_ms)
        btc_7d = self.cache.get_price_change(BTC, SEVEN_DAYS_MS, now_ms=now_ms)
        eth_24h = self.cache.get_price_change(ETH, ONE_DAY_MS, now_ms=now_ms)
        sol_24h = self.cache.get_price_change(SOL, ONE_DAY_MS, now_ms=now_ms)

        regime = self.regime_engine.evaluate(
            RegimeInput(
                btc_price_change_24h=btc_24h,
                oi_change_24h=btc_deriv.oi_change_24h / 100 if btc_deriv else 0.0,
                avg_funding=btc_deriv.weighted_funding if btc_deriv else 0.0,
                stablecoin_change_24h=stables.change_24h / 100 if stables else 0.0,
                # 没有历史市占率数据
                btc_dominance_change_24h=0.0,
                long_liquidations_24h=btc_liqs.long_value_24h if btc_liqs else 0.0,
                short_liquidations_24h=btc_liqs.short_value_24h if btc_liqs else 0.0,
                fear_greed_index=fear_greed.value if fear_greed else 50,
            )
        )
        rotation = quick_detect_rotation(btc_24h, eth_24h, sol_24h, 0.0)

        try:
            squeezes = await self.scanner.detect_squeeze_multi(self.squeeze_symbols, now_ms=now_ms)
        except Exception as e:
            logger.error(f"Squeeze scan failed: {e}")
            squeezes = []

        return IntelligenceReport(
            regime=regime,
            rotation=rotation,
            btc_pressure=btc_pressure,
            eth_pressure=eth_pressure,
            top_squeezes=squeezes,
            liquidations_24h=btc_liqs,
            stablecoin_delta=StablecoinDelta(
                total=stables.total if stables else 0.0,
                change_24h=stables.change_24h if stables else 0.0,
                change_7d=stables.change_7d if stables else 0.0,
                interpretation=(
                    interpret_stablecoin_flow(stables.change_24h, stables.change_7d)
                    if stables
                    else "Stable liquidity"
                ),
            ),
            capital_flow=CapitalFlow(
                btc_dominance_change=0.0,
                eth_btc_change=rotation.eth_btc_ratio_change,
                defi_to_alt=False,
                risk_appetite=assess_risk_appetite(
                    fear_greed.value if fear_greed else None,
                    btc_deriv.funding_heat if btc_deriv else None,
                ),
            ),
            btc_derivatives=btc_deriv,
            eth_derivatives=eth_deriv,
            global_market=global_market,
            fear_greed=fear_greed,
            btc_change_24h=btc_24h,
            btc_change_7d=btc_7d,
            timestamp=now_ms,
        )

    async def _record_price(self, symbol: str, now_ms: int) -> None:
        """没有持仓压力结果的币种单独取价"""
        if self.price_source is None:
            return
        try:
            price = await self.price_source(symbol)
        except Exception as e:
            logger.warning(f"Price fetch for {symbol} failed: {e}")
            return
        if price:
            self.cache.record_price(symbol, price, now_ms=now_ms)

    async def _pressure_inputs(
        self, btc_pressure: MarketPressure | None, eth_pressure: MarketPressure | None
    ) -> tuple[
        AggregatedDerivatives | None, AggregatedDerivatives | None, AggregatedLiquidations | None
    ]:
        """持仓压力结果已带衍生品和爆仓汇总，缺失时才单独聚合"""
        pending: dict[str, Coroutine[Any, Any, Any]] = {}
        if btc_pressure is None:
            pending["btc_derivatives"] = self.derivatives.aggregate(BTC)
            pending["btc_liquidations"] = self.liquidations.aggregate(
                BTC, current_price=self.cache.get_cached_price(BTC) or 0.0
            )
        if eth_pressure is None:
            pending["eth_derivatives"] = self.derivatives.aggregate(ETH)

        results = await asyncio.gather(*pending.values(), return_exceptions=True)
        fetched = {name: _settled(name, r) for name, r in zip(pending, results)}

        if btc_pressure is not None:
            btc_deriv, btc_liqs = btc_pressure.derivatives, btc_pressure.liquidations
        else:
            btc_deriv, btc_liqs = fetched["btc_derivatives"], fetched["btc_liquidations"]
        if eth_pressure is not None:
            eth_deriv = eth_pressure.derivatives
        else:
            eth_deriv = fetched["eth_derivatives"]
        return btc_deriv, eth_deriv, btc_liqs
