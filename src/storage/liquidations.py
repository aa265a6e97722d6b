# src/storage/liquidations.py
import time
from collections import deque

from src.storage.models import Liquidation

DEFAULT_RETENTION_MS = 24 * 3600 * 1000


class LiquidationBuffer:
    """实时爆仓事件的内存滚动窗口 (默认 24h)"""

    def __init__(self, retention_ms: int = DEFAULT_RETENTION_MS, max_events: int = 50_000):
        self.retention_ms = retention_ms
        self.max_events = max_events
        self._events: dict[str, deque[Liquidation]] = {}

    async def add(self, liq: Liquidation) -> None:
        key = liq.symbol.upper()
        events = self._events.setdefault(key, deque(maxlen=self.max_events))
        events.append(liq)
        self._prune(events, liq.timestamp)

    def get(self, symbol: str, since_ms: int | None = None) -> list[Liquidation]:
        events = self._events.get(symbol.upper())
        if not events:
            return []
        if since_ms is None:
            since_ms = int(time.time() * 1000) - self.retention_ms
        return [e for e in events if e.timestamp >= since_ms]

    async def fetch(self, symbol: str) -> list[Liquidation]:
        """作为 LiquidationAggregator 数据源使用"""
        return self.get(symbol)

    def _prune(self, events: deque[Liquidation], now_ms: int) -> None:
        cutoff = now_ms - self.retention_ms
        while events and events[0].timestamp < cutoff:
            events.popleft()
