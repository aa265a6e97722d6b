# src/storage/models.py
from dataclasses import dataclass


@dataclass
class PriceSnapshot:
    price: float
    timestamp: int  # ms


@dataclass
class OISnapshot:
    symbol: str
    oi: float  # 合约张数/币数
    oi_value: float  # USD
    timestamp: int  # ms


@dataclass
class Liquidation:
    exchange: str
    symbol: str
    timestamp: int
    side: str  # long = 多头爆仓, short = 空头爆仓
    price: float
    quantity: float
    value_usd: float
