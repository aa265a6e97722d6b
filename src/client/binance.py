"""Binance Futures API 客户端"""

import json
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from src.client.models import (
    Kline,
    LongShortRatio,
    OpenInterest,
    PremiumIndex,
    TakerRatio,
    Ticker,
)


class BinanceAPIError(Exception):
    """Binance API 错误"""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


@dataclass
class BinanceClient:
    """Binance Futures API 客户端"""

    base_url: str = "https://fapi.binance.com"
    ws_url: str = "wss://fstream.binance.com"
    timeout_seconds: float = 10.0
    _session: aiohttp.ClientSession | None = field(default=None, repr=False)

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """发送 HTTP 请求"""
        if self._session is None:
            raise RuntimeError("Session not initialized. Call init() or use 'async with'.")

        url = f"{self.base_url}{endpoint}"

        if method == "GET":
            request = self._session.get(url, params=params)
        else:
            request = self._session.post(url, data=params)

        async with request as response:
            if response.status != 200:
                error_text = await response.text()
                try:
                    error_data = json.loads(error_text)
                except json.JSONDecodeError:
                    raise BinanceAPIError(-1, error_text)
                raise BinanceAPIError(
                    error_data.get("code", -1), error_data.get("msg", error_text)
                )

            return await response.json()

    async def init(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "BinanceClient":
        await self.init()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def get_klines(
        self,
        symbol: str,
        interval: str,
        limit: int = 500,
    ) -> list[Kline]:
        """获取 K 线数据"""
        data = await self._request(
            "GET",
            "/fapi/v1/klines",
            {"symbol": symbol, "interval": interval, "limit": limit},
        )
        return [
            Kline(
                open_time=int(k[0]),
                open=float(k[1]),
                high=float(k[2]),
                low=float(k[3]),
                close=float(k[4]),
                volume=float(k[5]),
                close_time=int(k[6]),
            )
            for k in data
        ]

    async def get_ticker_24h(self, symbol: str) -> Ticker:
        """获取 24h 行情"""
        data = await self._request("GET", "/fapi/v1/ticker/24hr", {"symbol": symbol})
        return Ticker(
            symbol=data["symbol"],
            last_price=float(data["lastPrice"]),
            price_change_percent=float(data["priceChangePercent"]),
            volume=float(data["volume"]),
            quote_volume=float(data["quoteVolume"]),
        )

    async def get_ticker_price(self, symbol: str) -> float:
        """获取最新成交价"""
        data = await self._request("GET", "/fapi/v1/ticker/price", {"symbol": symbol})
        return float(data["price"])

    async def get_premium_index(self, symbol: str) -> PremiumIndex:
        """获取标记价格和当期资金费率"""
        data = await self._request("GET", "/fapi/v1/premiumIndex", {"symbol": symbol})
        return PremiumIndex(
            symbol=data["symbol"],
            mark_price=float(data["markPrice"]),
            index_price=float(data["indexPrice"]),
            last_funding_rate=float(data["lastFundingRate"]),
            next_funding_time=int(data["nextFundingTime"]),
        )

    async def get_open_interest(self, symbol: str) -> OpenInterest:
        """获取当前持仓量"""
        data = await self._request("GET", "/fapi/v1/openInterest", {"symbol": symbol})
        return OpenInterest(
            symbol=data["symbol"],
            open_interest=float(data["openInterest"]),
            timestamp=int(data["time"]),
        )

    async def get_open_interest_hist(
        self,
        symbol: str,
        period: str,
        limit: int = 30,
    ) -> list[OpenInterest]:
        """获取历史持仓量 (按时间升序)"""
        data = await self._request(
            "GET",
            "/futures/data/openInterestHist",
            {"symbol": symbol, "period": period, "limit": limit},
        )
        return [
            OpenInterest(
                symbol=d["symbol"],
                open_interest=float(d["sumOpenInterest"]),
                timestamp=int(d["timestamp"]),
                open_interest_value=float(d.get("sumOpenInterestValue", 0)),
            )
            for d in data
        ]

    async def get_long_short_ratio(
        self,
        symbol: str,
        period: str = "1h",
        limit: int = 1,
    ) -> list[LongShortRatio]:
        """获取全市场账户多空比"""
        data = await self._request(
            "GET",
            "/futures/data/globalLongShortAccountRatio",
            {"symbol": symbol, "period": period, "limit": limit},
        )
        return [
            LongShortRatio(
                symbol=d["symbol"],
                long_ratio=float(d["longAccount"]),
                short_ratio=float(d["shortAccount"]),
                long_short_ratio=float(d["longShortRatio"]),
                timestamp=int(d["timestamp"]),
            )
            for d in data
        ]

    async def get_taker_ratio(
        self,
        symbol: str,
        period: str = "1h",
        limit: int = 1,
    ) -> list[TakerRatio]:
        """获取 Taker 主动买卖比"""
        data = await self._request(
            "GET",
            "/futures/data/takerlongshortRatio",
            {"symbol": symbol, "period": period, "limit": limit},
        )
        return [
            TakerRatio(
                symbol=symbol,
                buy_sell_ratio=float(d["buySellRatio"]),
                buy_vol=float(d["buyVol"]),
                sell_vol=float(d["sellVol"]),
                timestamp=int(d["timestamp"]),
            )
            for d in data
        ]
