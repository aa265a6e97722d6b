# src/engine/regime.py
"""市场状态 (regime) 判定

七个维度加权打分，score 大致落在 [-100, 100]，再按优先级规则归类。
"""

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

WEIGHTS = {
    "btc_trend": 0.25,
    "oi_change": 0.15,
    "funding_bias": 0.15,
    "stablecoin_flow": 0.15,
    "dominance_shift": 0.15,
    "liquidation_pressure": 0.05,
    "fear_greed": 0.10,
}

# (看多阈值, 看空阈值)，除恐惧贪婪指数外均为小数
THRESHOLDS = {
    "btc_trend": (0.02, -0.02),
    "oi_change": (0.03, -0.03),
    "funding": (0.0002, -0.0002),
    "stablecoin": (0.01, -0.01),
    "dominance": (0.01, -0.01),
}
LIQUIDATION_RATIO = 0.3
GREED = 60
FEAR = 40

REGIME_DESCRIPTIONS = {
    "RISK_ON": "Bullish momentum with expanding leverage and positive sentiment",
    "RISK_OFF": "Bearish momentum with deleveraging and negative sentiment",
    "DISTRIBUTION": "Smart money selling into strength, potential top forming",
    "ACCUMULATION": "Smart money buying into weakness, potential bottom forming",
    "SPECULATION": "Alt season with high leverage and risk appetite",
    "NEUTRAL": "Sideways consolidation with mixed signals",
}


@dataclass
class RegimeInput:
    btc_price_change_24h: float  # %
    oi_change_24h: float  # 小数
    avg_funding: float
    stablecoin_change_24h: float  # 小数
    btc_dominance_change_24h: float  # 小数
    long_liquidations_24h: float  # USD
    short_liquidations_24h: float
    fear_greed_index: float = 50


@dataclass
class RegimeComponent:
    name: str
    value: float
    signal: str  # bullish / bearish / neutral
    weight: float
    contribution: float


@dataclass
class RegimeAnalysis:
    regime: str
    previous: str
    confidence: float
    score: float
    components: dict[str, RegimeComponent] = field(default_factory=dict)
    drivers: list[str] = field(default_factory=list)
    is_transitioning: bool = False
    transition_to: str | None = None
    transition_progress: float = 0


def analyze_component(
    name: str, value: float, bullish: float, bearish: float, weight: float
) -> RegimeComponent:
    signal = "neutral"
    contribution = 0.0

    if value > bullish:
        signal = "bullish"
        contribution = min((value - bullish) / bullish, 1.0) * weight
    elif value < bearish:
        signal = "bearish"
        contribution = -min((bearish - value) / abs(bearish), 1.0) * weight

    return RegimeComponent(name, value, signal, weight, contribution)


def _liquidation_component(long_liq: float, short_liq: float) -> RegimeComponent:
    total = long_liq + short_liq
    ratio = (long_liq - short_liq) / total if total > 0 else 0.0
    weight = WEIGHTS["liquidation_pressure"]

    # 多头爆仓占优 = 看空
    if ratio > LIQUIDATION_RATIO:
        signal = "bearish"
    elif ratio < -LIQUIDATION_RATIO:
        signal = "bullish"
    else:
        signal = "neutral"
    return RegimeComponent("Liquidation Pressure", ratio, signal, weight, -ratio * weight)


def _fear_greed_component(index: float) -> RegimeComponent:
    weight = WEIGHTS["fear_greed"]
    if index > GREED:
        signal = "bullish"
    elif index < FEAR:
        signal = "bearish"
    else:
        signal = "neutral"
    return RegimeComponent("Fear & Greed Index", index, signal, weight, (index - 50) / 50 * weight)


# 状态判定规则，自上而下第一条命中生效
REGIME_RULES = (
    ("RISK_ON", lambda c, score, bull, bear: score > 30 and bull >= 4),
    ("RISK_OFF", lambda c, score, bull, bear: score < -30 and bear >= 4),
    (
        "DISTRIBUTION",
        lambda c, score, bull, bear: c["btc_trend"].signal == "bullish"
        and c["oi_change"].signal == "bearish"
        and c["funding_bias"].value > 0,
    ),
    (
        "ACCUMULATION",
        lambda c, score, bull, bear: c["btc_trend"].signal == "bearish"
        and c["stablecoin_flow"].signal == "bullish"
        and c["funding_bias"].value < 0,
    ),
    (
        "SPECULATION",
        lambda c, score, bull, bear: c["dominance_shift"].signal == "bearish"
        and c["oi_change"].signal == "bullish"
        and c["fear_greed"].value > GREED,
    ),
)

SIGNAL_DRIVERS = (
    ("btc_trend", "bullish", "BTC trending up"),
    ("btc_trend", "bearish", "BTC trending down"),
    ("oi_change", "bullish", "OI expanding"),
    ("oi_change", "bearish", "OI contracting"),
    ("funding_bias", "bullish", "Longs crowded"),
    ("funding_bias", "bearish", "Shorts crowded"),
    ("stablecoin_flow", "bullish", "Stablecoin inflows"),
    ("stablecoin_flow", "bearish", "Stablecoin outflows"),
    ("dominance_shift", "bearish", "BTC dominance falling"),
    ("fear_greed", "bullish", "Extreme Greed"),
    ("fear_greed", "bearish", "Extreme Fear"),
)

REGIME_DRIVERS = {
    "DISTRIBUTION": "Smart money selling into strength",
    "ACCUMULATION": "Smart money buying weakness",
    "SPECULATION": "Alt season indicators",
}


def build_components(data: RegimeInput) -> dict[str, RegimeComponent]:
    return {
        "btc_trend": analyze_component(
            "BTC Trend",
            data.btc_price_change_24h / 100,
            *THRESHOLDS["btc_trend"],
            WEIGHTS["btc_trend"],
        ),
        "oi_change": analyze_component(
            "Open Interest Change",
            data.oi_change_24h,
            *THRESHOLDS["oi_change"],
            WEIGHTS["oi_change"],
        ),
        "funding_bias": analyze_component(
            "Funding Rate Bias",
            data.avg_funding,
            *THRESHOLDS["funding"],
            WEIGHTS["funding_bias"],
        ),
        "stablecoin_flow": analyze_component(
            "Stablecoin Flow",
            data.stablecoin_change_24h,
            *THRESHOLDS["stablecoin"],
            WEIGHTS["stablecoin_flow"],
        ),
        "dominance_shift": analyze_component(
            "BTC Dominance Shift",
            data.btc_dominance_change_24h,
            *THRESHOLDS["dominance"],
            WEIGHTS["dominance_shift"],
        ),
        "liquidation_pressure": _liquidation_component(
            data.long_liquidations_24h, data.short_liquidations_24h
        ),
        "fear_greed": _fear_greed_component(data.fear_greed_index),
    }


def calculate_regime(data: RegimeInput, previous: str = "NEUTRAL") -> RegimeAnalysis:
    components = build_components(data)
    values = components.values()

    score = sum(c.contribution for c in values) * 100
    bull = sum(1 for c in values if c.signal == "bullish")
    bear = sum(1 for c in values if c.signal == "bearish")

    regime = next(
        (name for name, rule in REGIME_RULES if rule(components, score, bull, bear)),
        "NEUTRAL",
    )

    drivers = [text for key, signal, text in SIGNAL_DRIVERS if components[key].signal == signal]
    if regime in REGIME_DRIVERS:
        drivers.append(REGIME_DRIVERS[regime])

    confidence = min(abs(score) + max(bull, bear) / 7 * 30, 100.0)

    analysis = RegimeAnalysis(
        regime=regime,
        previous=previous,
        confidence=confidence,
        score=score,
        components=components,
        drivers=drivers,
    )

    funding_bull, _ = THRESHOLDS["funding"]
    if regime == "RISK_ON" and components["funding_bias"].value > funding_bull * 2:
        analysis.is_transitioning = True
        analysis.transition_to = "DISTRIBUTION"
        analysis.transition_progress = 30
    elif regime == "RISK_OFF" and components["stablecoin_flow"].signal == "bullish":
        analysis.is_transitioning = True
        analysis.transition_to = "ACCUMULATION"
        analysis.transition_progress = 40

    return analysis


def regime_description(regime: str) -> str:
    return REGIME_DESCRIPTIONS.get(regime, REGIME_DESCRIPTIONS["NEUTRAL"])


class RegimeEngine:
    """记住上一次判定结果，用于填充 previous"""

    def __init__(self) -> None:
        self.last_regime = "NEUTRAL"

    def evaluate(self, data: RegimeInput) -> RegimeAnalysis:
        analysis = calculate_regime(data, previous=self.last_regime)
        if analysis.regime != self.last_regime:
            logger.info(f"Regime changed: {self.last_regime} -> {analysis.regime}")
        self.last_regime = analysis.regime
        return analysis
