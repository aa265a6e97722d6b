# src/engine/rotation.py
"""资金轮动阶段判定 (BTC / ETH / 山寨 / 稳定币)

所有输入均为百分比变化。
"""

from collections.abc import Callable
from dataclasses import dataclass, field

DOMINANCE_CHANGE = 0.5
ETH_BTC_BREAKOUT = 2.0
SECTOR_SIGNIFICANT = 5.0
SECTOR_FLOW_SCALE = 1_000_000

SECTORS = ("DeFi", "L1", "Gaming", "Meme", "AI")


@dataclass
class RotationInput:
    total_mcap_change_24h: float
    alt_mcap_change_24h: float
    btc_dominance_change_24h: float
    stablecoin_dominance_change_24h: float
    btc_price_change_24h: float
    eth_price_change_24h: float
    eth_btc_change_24h: float
    defi_change_24h: float = 0.0
    l1_change_24h: float = 0.0
    gaming_change_24h: float = 0.0
    meme_change_24h: float = 0.0
    ai_change_24h: float = 0.0

    def sector_changes(self) -> list[tuple[str, float]]:
        return list(
            zip(
                SECTORS,
                (
                    self.defi_change_24h,
                    self.l1_change_24h,
                    self.gaming_change_24h,
                    self.meme_change_24h,
                    self.ai_change_24h,
                ),
            )
        )


@dataclass
class SectorFlow:
    sector: str
    inflow: float
    outflow: float
    net_flow: float


@dataclass
class RotationSignal:
    phase: str
    confidence: float
    btc_dominance_change: float
    eth_btc_ratio_change: float
    # 暂无外部数据源，固定为 0
    alt_oi_change: float = 0.0
    stablecoin_mcap_change: float = 0.0
    defi_tvl_change: float = 0.0
    sector_flows: list[SectorFlow] = field(default_factory=list)
    flowing_into: list[str] = field(default_factory=list)
    flowing_out_of: list[str] = field(default_factory=list)


@dataclass
class RotationOutcome:
    phase: str
    confidence: float
    flowing_into: list[str]
    flowing_out_of: list[str]


@dataclass
class RotationRule:
    phase: str
    predicate: Callable[[RotationInput], bool]
    build: Callable[[RotationInput], RotationOutcome]


def _btc_accumulation(d: RotationInput) -> RotationOutcome:
    if d.btc_price_change_24h > 2:
        # 强势拉升抽走山寨流动性
        return RotationOutcome("BTC_ACCUMULATION", 85, ["BTC"], ["Alts", "ETH"])
    return RotationOutcome("BTC_ACCUMULATION", 70, ["BTC"], ["Stablecoins"])


def _alt_rotation(d: RotationInput) -> RotationOutcome:
    if d.meme_change_24h > 10:
        return RotationOutcome("ALT_SPECULATION", 90, ["Memes", "Small Caps"], ["BTC", "ETH"])
    return RotationOutcome("LARGE_CAP_ROTATION", 75, ["L1s", "DeFi"], ["BTC"])


# 自上而下第一条命中生效
ROTATION_RULES: tuple[RotationRule, ...] = (
    RotationRule(
        "RISK_OFF_STABLES",
        lambda d: d.total_mcap_change_24h < -2 and d.stablecoin_dominance_change_24h > 0,
        lambda d: RotationOutcome("RISK_OFF_STABLES", 80, ["USDT", "USDC"], ["BTC", "ETH", "Alts"]),
    ),
    RotationRule(
        "BTC_ACCUMULATION",
        lambda d: d.btc_dominance_change_24h > DOMINANCE_CHANGE and d.btc_price_change_24h > -1,
        _btc_accumulation,
    ),
    RotationRule(
        "ETH_ROTATION",
        lambda d: d.eth_btc_change_24h > ETH_BTC_BREAKOUT,
        lambda d: RotationOutcome("ETH_ROTATION", 65 + d.eth_btc_change_24h, ["ETH"], ["BTC"]),
    ),
    RotationRule(
        "ALT_ROTATION",
        lambda d: d.btc_dominance_change_24h < -DOMINANCE_CHANGE
        and d.alt_mcap_change_24h > d.btc_price_change_24h + 2,
        _alt_rotation,
    ),
    RotationRule(
        "BTC_DISTRIBUTION",
        lambda d: d.btc_price_change_24h < -2 and d.stablecoin_dominance_change_24h < 0.1,
        lambda d: RotationOutcome("BTC_DISTRIBUTION", 60, ["Fiat"], ["BTC"]),
    ),
)


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def detect_rotation(data: RotationInput) -> RotationSignal:
    outcome = next(
        (rule.build(data) for rule in ROTATION_RULES if rule.predicate(data)),
        RotationOutcome("RISK_OFF_STABLES", 0, [], []),
    )
    flowing_into = list(outcome.flowing_into)
    flowing_out_of = list(outcome.flowing_out_of)

    sectors = data.sector_changes()
    ranked = sorted(sectors, key=lambda s: s[1], reverse=True)
    strongest, weakest = ranked[0], ranked[-1]
    if strongest[1] > SECTOR_SIGNIFICANT:
        flowing_into.append(strongest[0])
    if weakest[1] < -SECTOR_SIGNIFICANT:
        flowing_out_of.append(weakest[0])

    sector_flows = [
        SectorFlow(
            sector=name,
            inflow=change * SECTOR_FLOW_SCALE if change > 0 else 0.0,
            outflow=abs(change) * SECTOR_FLOW_SCALE if change < 0 else 0.0,
            net_flow=change * SECTOR_FLOW_SCALE,
        )
        for name, change in sectors
    ]

    return RotationSignal(
        phase=outcome.phase,
        confidence=min(outcome.confidence, 100),
        btc_dominance_change=data.btc_dominance_change_24h,
        eth_btc_ratio_change=data.eth_btc_change_24h,
        sector_flows=sector_flows,
        flowing_into=_dedupe(flowing_into),
        flowing_out_of=_dedupe(flowing_out_of),
    )


def quick_detect_rotation(
    btc_change: float, eth_change: float, alt_change: float, btc_dom_change: float
) -> RotationSignal:
    """只有少量行情时的降级版本，板块数据全部由单个山寨币涨跌推算"""
    return detect_rotation(
        RotationInput(
            total_mcap_change_24h=btc_change,
            alt_mcap_change_24h=alt_change,
            btc_dominance_change_24h=btc_dom_change,
            stablecoin_dominance_change_24h=0.5 if btc_change < 0 else -0.5,
            btc_price_change_24h=btc_change,
            eth_price_change_24h=eth_change,
            eth_btc_change_24h=eth_change - btc_change,
            defi_change_24h=alt_change * 0.9,
            l1_change_24h=alt_change,
            gaming_change_24h=alt_change * 1.1,
            meme_change_24h=alt_change * 1.5,
            ai_change_24h=alt_change * 1.2,
        )
    )


def calculate_dominance(asset_mcap: float, total_mcap: float) -> float:
    if total_mcap <= 0:
        return 0.0
    return asset_mcap / total_mcap * 100
