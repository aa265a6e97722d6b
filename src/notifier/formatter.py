# src/notifier/formatter.py
from datetime import UTC, datetime

from src.aggregator.derivatives import AggregatedDerivatives
from src.aggregator.intelligence import IntelligenceReport
from src.aggregator.pressure import MarketPressure
from src.engine.arbitrage import ArbAnalysis
from src.engine.squeeze import SqueezeSignal

SEPARATOR = "━━━━━━━━━━━━━━━━━━━━"

SQUEEZE_NAMES = {"LONG_SQUEEZE": "轧多 (多头踩踏)", "SHORT_SQUEEZE": "轧空 (空头回补)"}
STRENGTH_EMOJI = {"LOADING": "⚪", "BUILDING": "🟡", "IMMINENT": "🟠", "ACTIVE": "🔴"}
REGIME_NAMES = {
    "RISK_ON": "风险偏好",
    "RISK_OFF": "避险",
    "DISTRIBUTION": "派发",
    "ACCUMULATION": "吸筹",
    "SPECULATION": "投机",
    "NEUTRAL": "中性",
}
TRAPPED_NAMES = {"longs": "多头被套", "shorts": "空头被套", "both": "多空均被套", "none": "无"}
APPETITE_NAMES = {"high": "高", "medium": "中", "low": "低"}


def _format_usd(value: float) -> str:
    if abs(value) >= 1_000_000_000:
        return f"${value / 1_000_000_000:.1f}B"
    elif abs(value) >= 1_000_000:
        return f"${value / 1_000_000:.1f}M"
    elif abs(value) >= 1_000:
        return f"${value / 1_000:.1f}K"
    else:
        return f"${value:,.0f}"


def _format_usd_signed(value: float) -> str:
    sign = "+" if value >= 0 else "-"
    return f"{sign}{_format_usd(abs(value))}"


def _format_price(price: float) -> str:
    return f"${price:,.2f}" if price < 100 else f"${price:,.0f}"


def _time(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, UTC).strftime("%Y-%m-%d %H:%M UTC")


def format_squeeze_alert(signal: SqueezeSignal) -> str:
    emoji = STRENGTH_EMOJI.get(signal.strength, "⚪")
    active = [c.name for c in signal.components.values() if c.active]
    zone = signal.trigger_zone

    lines = [
        f"🚨 {signal.symbol} {SQUEEZE_NAMES.get(signal.type, signal.type)}",
        "",
        f"{emoji} 强度: {signal.strength} | 概率: {signal.probability:.0f}%",
        f"🎯 触发区间: {_format_price(zone.low)} - {_format_price(zone.high)}",
        f"💥 最近爆仓价: {_format_price(signal.nearest_liquidation_price)}",
        "",
        f"✅ 激活维度 ({len(active)}/{len(signal.components)}):",
    ]
    lines.extend(f"  • {name}" for name in active)
    lines.extend(["", f"⏰ {_time(signal.timestamp)}"])
    return "\n".join(lines)


def format_squeeze_list(signals: list[SqueezeSignal]) -> str:
    if not signals:
        return "🔍 当前没有检测到轧仓信号"

    lines = ["🔍 轧仓扫描", ""]
    for s in signals:
        emoji = STRENGTH_EMOJI.get(s.strength, "⚪")
        lines.append(
            f"{emoji} {s.symbol} {s.type} {s.probability:.0f}% "
            f"({s.strength}, {s.active_count}/6)"
        )
    return "\n".join(lines)


def format_pressure(pressure: MarketPressure | None) -> str:
    if pressure is None:
        return "  暂无数据"

    lines = [
        f"  被套方: {TRAPPED_NAMES.get(pressure.trapped_side, pressure.trapped_side)}",
        f"  5%内风险: 多{_format_usd(pressure.long_value_at_risk)}"
        f" / 空{_format_usd(pressure.short_value_at_risk)}",
    ]
    if pressure.squeeze_direction:
        direction = "向上" if pressure.squeeze_direction == "long" else "向下"
        lines.append(f"  挤压方向: {direction} ({pressure.squeeze_probability:.0f}%)")
    return "\n".join(lines)


def format_derivatives(d: AggregatedDerivatives | None) -> str:
    if d is None:
        return "  暂无数据"

    funding_desc = {"long_paying": "多头付费", "short_paying": "空头付费"}.get(
        d.funding_bias, "中性"
    )
    return "\n".join(
        [
            f"  OI: {_format_usd(d.total_oi_value)} ({d.oi_change_1h:+.1f}% 1h / {d.oi_change_24h:+.1f}% 24h)",
            f"  资金费率: {d.weighted_funding * 100:+.4f}% ({funding_desc}, {d.funding_heat})",
            f"  多空比: {d.avg_long_ratio:.0%} / {d.avg_short_ratio:.0%} ({d.position_bias})",
            f"  交易所: {', '.join(e.exchange for e in d.exchanges)}",
        ]
    )


def format_intelligence_report(report: IntelligenceReport, symbol: str = "BTC") -> str:
    regime = report.regime
    rotation = report.rotation
    symbol = symbol.upper()
    is_eth = symbol.startswith("ETH")
    derivatives = report.eth_derivatives if is_eth else report.btc_derivatives
    pressure = report.eth_pressure if is_eth else report.btc_pressure

    regime_line = f"{REGIME_NAMES.get(regime.regime, regime.regime)} ({regime.regime})"
    if regime.is_transitioning and regime.transition_to:
        regime_line += f" → {regime.transition_to} {regime.transition_progress:.0f}%"

    lines = [
        f"📊 市场情报 ({'ETH' if is_eth else 'BTC'})",
        f"⏰ {_time(report.timestamp)}",
        "",
        f"💵 BTC 24h: {report.btc_change_24h:+.1f}% | 7d: {report.btc_change_7d:+.1f}%",
        "",
        SEPARATOR,
        f"🧭 市场状态: {regime_line}",
        f"  得分 {regime.score:+.0f} | 置信度 {regime.confidence:.0f}%",
    ]
    if regime.drivers:
        lines.append(f"  驱动: {', '.join(regime.drivers)}")

    lines.extend(
        [
            "",
            SEPARATOR,
            f"🔄 资金轮动: {rotation.phase} ({rotation.confidence:.0f}%)",
            f"  流入: {', '.join(rotation.flowing_into) or '-'}",
            f"  流出: {', '.join(rotation.flowing_out_of) or '-'}",
            "",
            SEPARATOR,
            "📈 衍生品:",
            format_derivatives(derivatives),
            "",
            "⚖️ 持仓压力:",
            format_pressure(pressure),
        ]
    )

    liqs = report.liquidations_24h
    if liqs:
        lines.extend(
            [
                "",
                SEPARATOR,
                f"💥 BTC 24h 爆仓: 多{_format_usd(liqs.long_value_24h)} ({liqs.long_liquidations_24h})"
                f" / 空{_format_usd(liqs.short_value_24h)} ({liqs.short_liquidations_24h})",
                f"  压力: {liqs.pressure}",
            ]
        )

    stables = report.stablecoin_delta
    lines.extend(
        [
            "",
            SEPARATOR,
            f"🏦 稳定币: {_format_usd(stables.total)} ({stables.change_24h:+.2f}% 24h / {stables.change_7d:+.2f}% 7d)",
            f"  {stables.interpretation}",
            f"🎲 风险偏好: {APPETITE_NAMES.get(report.capital_flow.risk_appetite, '中')}",
        ]
    )
    if report.fear_greed:
        lines.append(f"😱 恐惧贪婪: {report.fear_greed.value} ({report.fear_greed.classification})")

    if report.top_squeezes:
        lines.extend(["", SEPARATOR, "🚨 轧仓信号:"])
        for s in report.top_squeezes[:3]:
            lines.append(f"  {s.symbol} {s.type} {s.probability:.0f}% ({s.strength})")

    return "\n".join(lines)


def format_arbitrage(analysis: ArbAnalysis) -> str:
    stats = analysis.market_stats
    lines = [
        f"💱 {analysis.symbol} 跨所套利 (规模 {_format_usd(analysis.trade_size)})",
        f"  交易所: {stats.exchange_count} | 平均价差: {stats.average_spread:.1f} bps"
        f" | 流动性: {stats.liquidity_score:.0f}/100",
        "",
    ]

    if not analysis.opportunities:
        lines.append("暂无价差机会")
        return "\n".join(lines)

    best = analysis.best_opportunity
    if best:
        lines.extend(
            [
                f"✅ 最佳: {best.buy_exchange} → {best.sell_exchange}",
                f"  净利润 {_format_usd_signed(best.net_profit)} ({best.net_profit_percent:+.3f}%)",
                f"  预计到账 {best.settlement_time}",
                "",
            ]
        )
    else:
        lines.extend(["⚠️ 扣除费用后没有可执行机会", ""])

    for opp in analysis.opportunities[:5]:
        mark = "✅" if opp.executable else "❌"
        lines.append(
            f"{mark} {opp.buy_exchange} → {opp.sell_exchange}: "
            f"{_format_usd_signed(opp.net_profit)} (费用 {_format_usd(opp.total_fees + opp.withdrawal_fee)})"
        )
        lines.extend(f"    {note}" for note in opp.execution_notes)

    return "\n".join(lines)
