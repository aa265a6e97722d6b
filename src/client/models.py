"""交易所 API 数据模型"""

from dataclasses import dataclass, field


@dataclass
class Kline:
    """K 线数据"""

    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int


@dataclass
class Ticker:
    """24h 行情"""

    symbol: str
    last_price: float
    price_change_percent: float
    volume: float  # 基础币数量
    quote_volume: float  # USD 成交额


@dataclass
class OpenInterest:
    """持仓量数据"""

    symbol: str
    open_interest: float
    timestamp: int
    open_interest_value: float = 0.0


@dataclass
class PremiumIndex:
    """标记价格与当期资金费率"""

    symbol: str
    mark_price: float
    index_price: float
    last_funding_rate: float
    next_funding_time: int


@dataclass
class LongShortRatio:
    """多空比数据"""

    symbol: str
    long_ratio: float
    short_ratio: float
    long_short_ratio: float
    timestamp: int


@dataclass
class TakerRatio:
    """Taker 买卖比数据"""

    symbol: str
    buy_sell_ratio: float
    buy_vol: float
    sell_vol: float
    timestamp: int


@dataclass
class OrderbookLevel:
    price: float
    size: float  # 基础币数量


@dataclass
class ExchangeOrderbook:
    """单个交易所的盘口快照，bids 降序 / asks 升序"""

    exchange: str
    bids: list[OrderbookLevel] = field(default_factory=list)
    asks: list[OrderbookLevel] = field(default_factory=list)
    timestamp: int = 0

    @property
    def best_bid(self) -> float:
        return self.bids[0].price if self.bids else 0.0

    @property
    def best_ask(self) -> float:
        return self.asks[0].price if self.asks else 0.0


@dataclass
class ExchangeDerivatives:
    """单个交易所的衍生品快照"""

    exchange: str
    oi: float
    oi_value: float
    funding: float
    long_ratio: float
    short_ratio: float
    volume_24h: float


@dataclass
class SqueezeSnapshot:
    """轧空/轧多检测所需的单币种行情快照 (比例均为小数)"""

    symbol: str
    price: float
    price_change_24h: float
    oi_change_24h: float
    funding: float
    long_ratio: float
    short_ratio: float
    buy_volume: float
    sell_volume: float
