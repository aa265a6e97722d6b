"""宏观数据客户端: CoinGecko 全市场、恐惧贪婪指数、DefiLlama 稳定币供应"""

import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

COINGECKO_GLOBAL_URL = "https://api.coingecko.com/api/v3/global"
FEAR_GREED_URL = "https://api.alternative.me/fng/"
STABLECOINS_URL = "https://stablecoins.llama.fi/stablecoins"


class MacroAPIError(Exception):
    """宏观数据接口错误"""

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"HTTP {status}: {message}")


@dataclass
class GlobalMarket:
    total_market_cap: float
    btc_dominance: float  # 百分比
    eth_dominance: float
    market_cap_change_24h: float  # 百分比


@dataclass
class FearGreed:
    value: int
    classification: str


@dataclass
class StablecoinSupply:
    total: float  # USD
    change_24h: float  # 百分比
    change_7d: float


def _sum_pegged(assets: list[dict[str, Any]], key: str) -> float:
    total = 0.0
    for asset in assets:
        pegged = (asset.get(key) or {}).get("peggedUSD")
        if pegged:
            total += float(pegged)
    return total


def _pct(current: float, previous: float) -> float:
    if previous <= 0:
        return 0.0
    return (current - previous) / previous * 100


@dataclass
class MacroClient:
    timeout_seconds: float = 10.0
    _session: aiohttp.ClientSession | None = field(default=None, repr=False)

    async def init(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> Any:
        if self._session is None:
            raise RuntimeError("Session not initialized. Call init() first.")

        async with self._session.get(url, params=params) as response:
            if response.status != 200:
                raise MacroAPIError(response.status, await response.text())
            return await response.json()

    async def get_global_market(self) -> GlobalMarket:
        payload = await self._get(COINGECKO_GLOBAL_URL)
        data = payload["data"]
        return GlobalMarket(
            total_market_cap=float(data["total_market_cap"]["usd"]),
            btc_dominance=float(data["market_cap_percentage"]["btc"]),
            eth_dominance=float(data["market_cap_percentage"]["eth"]),
            market_cap_change_24h=float(data["market_cap_change_percentage_24h_usd"]),
        )

    async def get_fear_greed(self) -> FearGreed:
        payload = await self._get(FEAR_GREED_URL, {"limit": 1})
        latest = payload["data"][0]
        return FearGreed(
            value=int(latest["value"]),
            classification=latest["value_classification"],
        )

    async def get_stablecoin_supply(self) -> StablecoinSupply:
        payload = await self._get(STABLECOINS_URL, {"includePrices": "true"})
        assets = payload["peggedAssets"]

        total = _sum_pegged(assets, "circulating")
        prev_day = _sum_pegged(assets, "circulatingPrevDay")
        prev_week = _sum_pegged(assets, "circulatingPrevWeek")

        return StablecoinSupply(
            total=total,
            change_24h=_pct(total, prev_day),
            change_7d=_pct(total, prev_week),
        )
