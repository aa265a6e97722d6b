# src/engine/arbitrage.py
"""跨交易所现货套利

按盘口深度逐档吃单计算真实成交均价，再扣除分档手续费和提币费。
费率单位为基点 (bps)。
"""

import time
from dataclasses import dataclass, field

from src.client.models import ExchangeOrderbook, OrderbookLevel

DEFAULT_FEE_BPS = 10
DEFAULT_WITHDRAWAL_FEE = 0.0005
DEFAULT_SETTLEMENT_TIME = "~30 min"
LIQUIDITY_SLIPPAGE = 0.001
LIQUIDITY_FULL_SCORE_USD = 1_000_000


@dataclass
class FeeTier:
    volume: float  # 30 日成交额 USD
    maker: float
    taker: float


@dataclass
class FeeSchedule:
    maker: float
    taker: float
    withdrawal_fee: float  # 币本位
    withdrawal_time: str
    volume_tiers: list[FeeTier] = field(default_factory=list)


FEE_SCHEDULES: dict[str, FeeSchedule] = {
    "binance": FeeSchedule(
        maker=10,
        taker=10,
        withdrawal_fee=0.0005,
        withdrawal_time="~30 min (on-chain)",
        volume_tiers=[
            FeeTier(0, 10, 10),
            FeeTier(1_000_000, 9, 10),
            FeeTier(5_000_000, 8, 9),
            FeeTier(20_000_000, 7, 8),
            FeeTier(100_000_000, 5, 6),
        ],
    ),
    "bybit": FeeSchedule(
        maker=10,
        taker=10,
        withdrawal_fee=0.0005,
        withdrawal_time="~30 min (on-chain)",
        volume_tiers=[
            FeeTier(0, 10, 10),
            FeeTier(2_500_000, 8, 10),
            FeeTier(10_000_000, 6, 8),
        ],
    ),
    "okx": FeeSchedule(
        maker=8,
        taker=10,
        withdrawal_fee=0.0004,
        withdrawal_time="~20 min (on-chain)",
        volume_tiers=[
            FeeTier(0, 8, 10),
            FeeTier(5_000_000, 6, 8),
            FeeTier(25_000_000, 4, 6),
        ],
    ),
    "kucoin": FeeSchedule(maker=10, taker=10, withdrawal_fee=0.0005, withdrawal_time="~30 min (on-chain)"),
    "gateio": FeeSchedule(maker=15, taker=15, withdrawal_fee=0.001, withdrawal_time="~30 min (on-chain)"),
    "bitget": FeeSchedule(maker=10, taker=10, withdrawal_fee=0.0006, withdrawal_time="~30 min (on-chain)"),
    "kraken": FeeSchedule(
        maker=16,
        taker=26,
        withdrawal_fee=0.00015,
        withdrawal_time="~15 min (on-chain)",
        volume_tiers=[
            FeeTier(0, 16, 26),
            FeeTier(50_000, 14, 24),
            FeeTier(100_000, 12, 22),
            FeeTier(1_000_000, 8, 18),
        ],
    ),
}


@dataclass
class SlippageResult:
    average_price: float
    total_filled: float  # USD
    slippage_amount: float
    slippage_percent: float
    levels_consumed: int
    remaining_size: float  # 未成交的 USD，> 0 说明盘口太薄


@dataclass
class ArbOpportunity:
    buy_exchange: str
    sell_exchange: str
    buy_price: float
    sell_price: float
    raw_spread: float
    effective_spread: float
    buy_slippage: SlippageResult
    sell_slippage: SlippageResult
    buy_fee: float
    sell_fee: float
    total_fees: float
    withdrawal_fee: float
    gross_profit: float
    net_profit: float
    net_profit_percent: float
    executable: bool
    execution_notes: list[str]
    settlement_time: str
    timestamp: int


@dataclass
class MarketStats:
    exchange_count: int
    average_spread: float  # bps
    liquidity_score: float  # 0-100


@dataclass
class ArbAnalysis:
    trade_size: float
    symbol: str
    opportunities: list[ArbOpportunity]
    best_opportunity: ArbOpportunity | None
    market_stats: MarketStats
    timestamp: int


def calculate_slippage(levels: list[OrderbookLevel], size_usd: float, side: str) -> SlippageResult:
    """逐档吃单，返回成交均价与滑点"""
    if not levels:
        return SlippageResult(0.0, 0.0, 0.0, 0.0, 0, size_usd)

    best_price = levels[0].price
    remaining = size_usd
    filled_value = 0.0
    filled_qty = 0.0
    consumed = 0

    for level in levels:
        if remaining <= 0:
            break
        fill_value = min(remaining, level.price * level.size)
        filled_value += fill_value
        filled_qty += fill_value / level.price
        remaining -= fill_value
        consumed += 1

    average = filled_value / filled_qty if filled_qty > 0 else best_price
    slippage = average - best_price if side == "buy" else best_price - average
    slippage_pct = slippage / best_price * 100 if best_price > 0 else 0.0

    return SlippageResult(
        average_price=average,
        total_filled=filled_value,
        slippage_amount=abs(slippage),
        slippage_percent=abs(slippage_pct),
        levels_consumed=consumed,
        remaining_size=max(0.0, remaining),
    )


def get_fee_rate(exchange: str, side: str = "taker", volume_30d: float = 0) -> float:
    schedule = FEE_SCHEDULES.get(exchange)
    if not schedule:
        return DEFAULT_FEE_BPS

    if schedule.volume_tiers and volume_30d > 0:
        for tier in reversed(schedule.volume_tiers):
            if volume_30d >= tier.volume:
                return getattr(tier, side)

    return getattr(schedule, side)


def analyze_arb_pair(
    buy_book: ExchangeOrderbook,
    sell_book: ExchangeOrderbook,
    size_usd: float,
    current_price: float,
    volume_30d: float = 0,
) -> ArbOpportunity | None:
    """在 buy_book 买入、sell_book 卖出"""
    buy = calculate_slippage(buy_book.asks, size_usd, "buy")
    sell = calculate_slippage(sell_book.bids, size_usd, "sell")
    if buy.total_filled <= 0 or buy.average_price <= 0:
        return None

    notes = []
    if buy.remaining_size > 0:
        notes.append(f"Buy book too thin: {buy.remaining_size / size_usd * 100:.1f}% unfilled")
    if sell.remaining_size > 0:
        notes.append(f"Sell book too thin: {sell.remaining_size / size_usd * 100:.1f}% unfilled")

    buy_fee = get_fee_rate(buy_book.exchange, "taker", volume_30d) / 10_000 * size_usd
    sell_fee = get_fee_rate(sell_book.exchange, "taker", volume_30d) / 10_000 * size_usd
    total_fees = buy_fee + sell_fee

    schedule = FEE_SCHEDULES.get(buy_book.exchange)
    withdrawal_asset = schedule.withdrawal_fee if schedule else DEFAULT_WITHDRAWAL_FEE
    withdrawal_fee = withdrawal_asset * current_price

    raw_spread = sell_book.best_bid - buy_book.best_ask
    effective_spread = sell.average_price - buy.average_price

    gross_profit = size_usd / buy.average_price * effective_spread
    net_profit = gross_profit - total_fees - withdrawal_fee

    executable = net_profit > 0 and buy.remaining_size == 0 and sell.remaining_size == 0
    if net_profit <= 0 and raw_spread > 0:
        notes.append("Raw spread exists but fees/slippage eliminate profit")

    return ArbOpportunity(
        buy_exchange=buy_book.exchange,
        sell_exchange=sell_book.exchange,
        buy_price=buy.average_price,
        sell_price=sell.average_price,
        raw_spread=raw_spread,
        effective_spread=effective_spread,
        buy_slippage=buy,
        sell_slippage=sell,
        buy_fee=buy_fee,
        sell_fee=sell_fee,
        total_fees=total_fees,
        withdrawal_fee=withdrawal_fee,
        gross_profit=gross_profit,
        net_profit=net_profit,
        net_profit_percent=net_profit / size_usd * 100,
        executable=executable,
        execution_notes=notes,
        settlement_time=schedule.withdrawal_time if schedule else DEFAULT_SETTLEMENT_TIME,
        timestamp=int(time.time() * 1000),
    )


def _average_spread_bps(orderbooks: list[ExchangeOrderbook]) -> float:
    spreads = [
        (ob.best_ask - ob.best_bid) / ob.best_bid * 10_000
        for ob in orderbooks
        if ob.best_bid > 0 and ob.best_ask > 0
    ]
    return sum(spreads) / len(spreads) if spreads else 0.0


def _fillable_near_best(book: ExchangeOrderbook) -> float:
    """最优卖价 0.1% 以内可成交的 USD"""
    limit = book.best_ask * (1 + LIQUIDITY_SLIPPAGE)
    fillable = 0.0
    for level in book.asks:
        if level.price > limit:
            break
        fillable += level.price * level.size
    return fillable


def analyze_arbitrage(
    orderbooks: list[ExchangeOrderbook],
    size_usd: float,
    current_price: float,
    volume_30d: float = 0,
    symbol: str = "UNKNOWN",
) -> ArbAnalysis:
    opportunities = []
    for buy_book in orderbooks:
        for sell_book in orderbooks:
            if buy_book is sell_book:
                continue
            if sell_book.best_bid <= buy_book.best_ask:
                continue
            opp = analyze_arb_pair(buy_book, sell_book, size_usd, current_price, volume_30d)
            if opp:
                opportunities.append(opp)

    opportunities.sort(key=lambda o: o.net_profit, reverse=True)

    max_fillable = max((_fillable_near_best(ob) for ob in orderbooks), default=0.0)
    liquidity_score = min(100.0, max_fillable / LIQUIDITY_FULL_SCORE_USD * 100)

    return ArbAnalysis(
        trade_size=size_usd,
        symbol=symbol,
        opportunities=opportunities,
        best_opportunity=next((o for o in opportunities if o.executable), None),
        market_stats=MarketStats(
            exchange_count=len(orderbooks),
            average_spread=_average_spread_bps(orderbooks),
            liquidity_score=liquidity_score,
        ),
        timestamp=int(time.time() * 1000),
    )
