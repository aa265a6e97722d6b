# src/collector/orderbook.py
import asyncio
import logging
import time
from typing import Any

import ccxt.async_support as ccxt

from src.client.models import ExchangeOrderbook, OrderbookLevel

logger = logging.getLogger(__name__)


def to_spot_symbol(symbol: str) -> str:
    """BTCUSDT -> BTC/USDT"""
    symbol = symbol.upper()
    if "/" in symbol:
        return symbol.split(":")[0]
    return f"{symbol.removesuffix('USDT')}/USDT"


def _levels(raw: list[list[Any]]) -> list[OrderbookLevel]:
    return [OrderbookLevel(float(level[0]), float(level[1])) for level in raw if len(level) >= 2]


class OrderbookFetcher:
    """跨交易所现货盘口抓取 (用于套利分析)"""

    def __init__(self, exchanges: list[str], depth: int = 50):
        self.exchange_names = exchanges
        self.depth = depth
        self.exchanges: dict[str, Any] = {}

    async def init(self) -> None:
        for name in self.exchange_names:
            exchange_class = getattr(ccxt, name, None)
            if exchange_class is None:
                logger.warning(f"Unknown ccxt exchange: {name}")
                continue
            self.exchanges[name] = exchange_class()

    async def close(self) -> None:
        for ex in self.exchanges.values():
            await ex.close()

    async def _fetch_one(self, name: str, symbol: str) -> ExchangeOrderbook | None:
        ex = self.exchanges.get(name)
        if not ex:
            return None
        try:
            book: dict[str, Any] = await ex.fetch_order_book(to_spot_symbol(symbol), self.depth)
            return ExchangeOrderbook(
                exchange=name,
                bids=_levels(book.get("bids") or []),
                asks=_levels(book.get("asks") or []),
                timestamp=int(book.get("timestamp") or time.time() * 1000),
            )
        except Exception as e:
            logger.warning(f"Failed to fetch {name} orderbook for {symbol}: {e}")
            return None

    async def fetch_all(self, symbol: str) -> list[ExchangeOrderbook]:
        tasks = [self._fetch_one(name, symbol) for name in self.exchanges]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        return [r for r in results if isinstance(r, ExchangeOrderbook) and r.bids and r.asks]
