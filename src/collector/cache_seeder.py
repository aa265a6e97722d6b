# src/collector/cache_seeder.py
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from src.storage.cache import TimeSeriesCache, venue_key
from src.storage.models import OISnapshot, PriceSnapshot

if TYPE_CHECKING:
    from src.client.binance import BinanceClient

logger = logging.getLogger(__name__)

OI_HISTORY_LIMIT = 24  # 24 x 1h
PRICE_HISTORY_LIMIT = 168  # 7d x 1h
# 与 DerivativesAggregator 的 binance 数据源共用同一 OI 序列
VENUE = "binance"


class CacheSeedError(Exception):
    """所有币种都预热失败"""


@dataclass
class SeedResult:
    seeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class CacheSeeder:
    """时间序列缓存预热与定时刷新"""

    def __init__(self, cache: TimeSeriesCache, client: "BinanceClient"):
        self.cache = cache
        self.client = client
        self.last_result: SeedResult | None = None

    async def _seed_symbol(self, symbol: str, now_ms: int) -> None:
        price = await self.client.get_ticker_price(symbol)
        oi = await self.client.get_open_interest(symbol)
        oi_hist = await self.client.get_open_interest_hist(symbol, "1h", limit=OI_HISTORY_LIMIT)
        klines = await self.client.get_klines(symbol, "1h", limit=PRICE_HISTORY_LIMIT)

        # 只使用已收盘的 K 线
        oi_key = venue_key(symbol, VENUE)
        closed = [k for k in klines if k.close_time <= now_ms]
        self.cache.backfill_prices(
            symbol,
            [PriceSnapshot(price=k.close, timestamp=k.close_time) for k in closed],
            now_ms=now_ms,
        )
        self.cache.backfill_oi(
            oi_key,
            [
                OISnapshot(
                    symbol=symbol,
                    oi=h.open_interest,
                    oi_value=h.open_interest_value or h.open_interest * price,
                    timestamp=h.timestamp,
                )
                for h in oi_hist
            ],
            now_ms=now_ms,
        )

        self.cache.backfill_prices(symbol, [PriceSnapshot(price, now_ms)], now_ms=now_ms)
        self.cache.backfill_oi(
            oi_key,
            [OISnapshot(symbol, oi.open_interest, oi.open_interest * price, now_ms)],
            now_ms=now_ms,
        )

    async def seed(self, symbols: list[str], now_ms: int | None = None) -> SeedResult:
        """
        启动时预热缓存

        Returns:
            每个币种的预热结果；全部失败时抛出 CacheSeedError
        """
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        result = SeedResult()
        for symbol in symbols:
            try:
                await self._seed_symbol(symbol, now_ms)
                result.seeded.append(symbol)
            except Exception as e:
                logger.error(f"Failed to seed cache for {symbol}: {e}")
                result.failed[symbol] = str(e)

        self.last_result = result
        if symbols and not result.seeded:
            raise CacheSeedError(f"Cache seeding failed for all symbols: {result.failed}")

        logger.info(f"Cache seeded: {result.seeded} (failed: {list(result.failed)})")
        return result

    async def update(self, symbols: list[str], now_ms: int | None = None) -> int:
        """
        刷新当前价格和 OI

        Returns:
            成功写入的币种数
        """
        updated = 0
        for symbol in symbols:
            try:
                price = await self.client.get_ticker_price(symbol)
                oi = await self.client.get_open_interest(symbol)
            except Exception as e:
                logger.warning(f"Failed to update cache for {symbol}: {e}")
                continue

            self.cache.record_price(symbol, price, now_ms=now_ms)
            self.cache.record_oi(
                venue_key(symbol, VENUE), oi.open_interest, oi.open_interest * price, now_ms=now_ms
            )
            updated += 1
        return updated
