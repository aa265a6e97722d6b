# src/storage/cache.py
"""内存时间序列缓存

为价格和持仓量保存滚动快照，供 1h/4h/24h/7d 变化计算使用。
"""

import threading
import time
from dataclasses import dataclass

from src.storage.models import OISnapshot, PriceSnapshot

ONE_HOUR_MS = 60 * 60 * 1000
FOUR_HOURS_MS = 4 * ONE_HOUR_MS
ONE_DAY_MS = 24 * ONE_HOUR_MS
SEVEN_DAYS_MS = 7 * ONE_DAY_MS

MIN_SNAPSHOT_INTERVAL_MS = 5 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


def _percent_change(current: float, historical: float) -> float:
    if historical == 0:
        return 0.0
    return (current - historical) / historical * 100


def venue_key(symbol: str, exchange: str) -> str:
    """单交易所 OI 序列的键，如 BTCUSDT@BINANCE"""
    return f"{symbol}@{exchange}".upper()


def _pick_historical(timestamps: list[int], target: int) -> int:
    """返回 <= target 的最近一条下标，没有则返回最早一条 (0)"""
    idx = 0
    for i, ts in enumerate(timestamps):
        if ts <= target:
            idx = i
        else:
            break
    return idx


@dataclass
class CacheStats:
    price_symbols: int
    oi_symbols: int
    price_snapshots: dict[str, int]
    oi_snapshots: dict[str, int]


class TimeSeriesCache:
    """按 symbol 保存的价格/OI 快照

    每次写入都会生成新列表替换旧列表，读取方持有的旧列表不受影响。
    """

    def __init__(
        self,
        min_interval_ms: int = MIN_SNAPSHOT_INTERVAL_MS,
        price_retention_ms: int = SEVEN_DAYS_MS,
        oi_retention_ms: int = ONE_DAY_MS,
    ):
        self.min_interval_ms = min_interval_ms
        self.price_retention_ms = price_retention_ms
        self.oi_retention_ms = oi_retention_ms
        self._prices: dict[str, list[PriceSnapshot]] = {}
        self._oi: dict[str, list[OISnapshot]] = {}
        self._lock = threading.Lock()

    # ---------- price ----------

    def record_price(self, symbol: str, price: float, now_ms: int | None = None) -> bool:
        """记录价格，距上一条不足 min_interval 时丢弃并返回 False"""
        now = now_ms if now_ms is not None else _now_ms()
        key = symbol.upper()

        with self._lock:
            current = self._prices.get(key, [])
            if current and now - current[-1].timestamp < self.min_interval_ms:
                return False

            cutoff = now - self.price_retention_ms
            updated = [s for s in current if s.timestamp >= cutoff]
            updated.append(PriceSnapshot(price=price, timestamp=now))
            self._prices[key] = updated
            return True

    def backfill_prices(
        self, symbol: str, snapshots: list[PriceSnapshot], now_ms: int | None = None
    ) -> int:
        """合并历史价格点，返回实际保留的新增条数"""
        now = now_ms if now_ms is not None else _now_ms()
        key = symbol.upper()

        with self._lock:
            current = self._prices.get(key, [])
            merged = self._merge(current, snapshots, now - self.price_retention_ms)
            self._prices[key] = merged
            return len(merged) - len(current)

    def get_price_change(self, symbol: str, period_ms: int, now_ms: int | None = None) -> float:
        """价格变化百分比"""
        snapshots = self._prices.get(symbol.upper(), [])
        if len(snapshots) < 2:
            return 0.0

        now = now_ms if now_ms is not None else _now_ms()
        idx = _pick_historical([s.timestamp for s in snapshots], now - period_ms)
        return _percent_change(snapshots[-1].price, snapshots[idx].price)

    def get_cached_price(self, symbol: str) -> float | None:
        snapshots = self._prices.get(symbol.upper())
        if not snapshots:
            return None
        return snapshots[-1].price

    # ---------- open interest ----------

    def record_oi(
        self, symbol: str, oi: float, oi_value: float, now_ms: int | None = None
    ) -> bool:
        now = now_ms if now_ms is not None else _now_ms()
        key = symbol.upper()

        with self._lock:
            current = self._oi.get(key, [])
            if current and now - current[-1].timestamp < self.min_interval_ms:
                return False

            cutoff = now - self.oi_retention_ms
            updated = [s for s in current if s.timestamp >= cutoff]
            updated.append(OISnapshot(symbol=key, oi=oi, oi_value=oi_value, timestamp=now))
            self._oi[key] = updated
            return True

    def backfill_oi(
        self, symbol: str, snapshots: list[OISnapshot], now_ms: int | None = None
    ) -> int:
        now = now_ms if now_ms is not None else _now_ms()
        key = symbol.upper()

        with self._lock:
            current = self._oi.get(key, [])
            merged = self._merge(current, snapshots, now - self.oi_retention_ms)
            self._oi[key] = merged
            return len(merged) - len(current)

    def get_oi_change(self, symbol: str, period_ms: int, now_ms: int | None = None) -> float:
        """OI 价值 (USD) 变化百分比"""
        snapshots = self._oi.get(symbol.upper(), [])
        if len(snapshots) < 2:
            return 0.0

        now = now_ms if now_ms is not None else _now_ms()
        idx = _pick_historical([s.timestamp for s in snapshots], now - period_ms)
        return _percent_change(snapshots[-1].oi_value, snapshots[idx].oi_value)

    def get_oi_value_at(
        self, symbol: str, period_ms: int, now_ms: int | None = None
    ) -> float | None:
        """period 之前的 OI 价值，快照不足 2 条时返回 None"""
        snapshots = self._oi.get(symbol.upper(), [])
        if len(snapshots) < 2:
            return None

        now = now_ms if now_ms is not None else _now_ms()
        idx = _pick_historical([s.timestamp for s in snapshots], now - period_ms)
        return snapshots[idx].oi_value

    def get_latest_oi(self, symbol: str) -> OISnapshot | None:
        snapshots = self._oi.get(symbol.upper())
        if not snapshots:
            return None
        return snapshots[-1]

    # ---------- misc ----------

    def get_stats(self) -> CacheStats:
        prices = dict(self._prices)
        ois = dict(self._oi)
        return CacheStats(
            price_symbols=len(prices),
            oi_symbols=len(ois),
            price_snapshots={k: len(v) for k, v in prices.items()},
            oi_snapshots={k: len(v) for k, v in ois.items()},
        )

    def reset(self) -> None:
        with self._lock:
            self._prices = {}
            self._oi = {}

    def _merge(self, current: list, incoming: list, cutoff: int) -> list:
        """按时间合并，保持升序和最小间隔"""
        combined = sorted(
            (s for s in [*current, *incoming] if s.timestamp >= cutoff),
            key=lambda s: s.timestamp,
        )
        merged: list = []
        for snap in combined:
            # 间隔不足时保留较新的一条
            if merged and snap.timestamp - merged[-1].timestamp < self.min_interval_ms:
                merged[-1] = snap
                continue
            merged.append(snap)
        return merged
