# src/collector/binance_liq.py
import json
import logging
from collections.abc import Callable, Coroutine
from typing import Any

import websockets

from src.storage.models import Liquidation

from .base import StreamCollector

logger = logging.getLogger(__name__)

BINANCE_FUTURES_WS = "wss://fstream.binance.com/stream"


class BinanceLiquidationCollector(StreamCollector):
    """订阅 Binance U 本位 forceOrder 强平推送"""

    def __init__(
        self,
        symbols: list[str],
        on_liquidation: Callable[[Liquidation], Coroutine[Any, Any, None]],
    ):
        super().__init__("binance-forceOrder")
        self.symbols = {s.upper() for s in symbols}
        self.on_liquidation = on_liquidation
        self.ws: Any = None

    @property
    def url(self) -> str:
        streams = "/".join(f"{s.lower()}@forceOrder" for s in sorted(self.symbols))
        return f"{BINANCE_FUTURES_WS}?streams={streams}"

    async def connect(self) -> None:
        self.ws = await websockets.connect(self.url, ping_interval=20)

    async def disconnect(self) -> None:
        ws, self.ws = self.ws, None
        if ws is not None:
            await ws.close()

    async def receive(self) -> str:
        if self.ws is None:
            raise ConnectionError("websocket not connected")
        return await self.ws.recv()

    def _parse_liquidation(self, data: dict[str, Any]) -> Liquidation | None:
        # 组合流外层为 {"stream": ..., "data": {...}}
        data = data.get("data", data)
        if data.get("e") != "forceOrder":
            return None

        order = data["o"]
        symbol = order["s"]
        if symbol not in self.symbols:
            return None

        quantity = float(order["q"])
        price = float(order["ap"]) or float(order["p"])
        return Liquidation(
            exchange="binance",
            symbol=symbol,
            timestamp=int(order["T"]),
            # SELL 强平单 = 多头爆仓
            side="long" if order["S"].upper() == "SELL" else "short",
            price=price,
            quantity=quantity,
            value_usd=quantity * price,
        )

    async def _process_message(self, message: str) -> None:
        try:
            liq = self._parse_liquidation(json.loads(message))
        except json.JSONDecodeError:
            logger.warning(f"Non-JSON forceOrder frame: {message[:100]}")
            return
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Malformed forceOrder event: {e}")
            return

        if liq:
            await self.on_liquidation(liq)
