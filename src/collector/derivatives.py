# src/collector/derivatives.py
import asyncio
import logging
from typing import Any

import ccxt.async_support as ccxt

from src.client.binance import BinanceClient
from src.client.models import ExchangeDerivatives, LongShortRatio, SqueezeSnapshot
from src.storage.models import Liquidation

logger = logging.getLogger(__name__)


def to_ccxt_symbol(symbol: str) -> str:
    """BTCUSDT -> BTC/USDT:USDT"""
    symbol = symbol.upper()
    if "/" in symbol:
        return symbol
    base = symbol.removesuffix("USDT")
    return f"{base}/USDT:USDT"


def _float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    return float(value)


class DerivativesFetcher:
    """多交易所衍生品数据抓取

    Binance 走自有 REST 客户端 (需要 futures/data 统计接口)，
    Bybit / OKX 走 ccxt 统一接口。每个方法失败时记录日志并返回 None / []。
    """

    def __init__(self, client: BinanceClient):
        self.client = client
        self.bybit: ccxt.bybit | None = None
        self.okx: ccxt.okx | None = None

    async def init(self) -> None:
        self.bybit = ccxt.bybit({"options": {"defaultType": "swap"}})
        self.okx = ccxt.okx({"options": {"defaultType": "swap"}})

    async def close(self) -> None:
        if self.bybit:
            await self.bybit.close()
        if self.okx:
            await self.okx.close()

    # ---------- 衍生品快照 ----------

    async def fetch_binance(self, symbol: str) -> ExchangeDerivatives | None:
        try:
            ticker, premium, oi, ratios = await asyncio.gather(
                self.client.get_ticker_24h(symbol),
                self.client.get_premium_index(symbol),
                self.client.get_open_interest(symbol),
                self.client.get_long_short_ratio(symbol, "1h", limit=1),
            )
            long_ratio = ratios[-1].long_ratio if ratios else 0.5
            short_ratio = ratios[-1].short_ratio if ratios else 0.5

            return ExchangeDerivatives(
                exchange="binance",
                oi=oi.open_interest,
                oi_value=oi.open_interest * ticker.last_price,
                funding=premium.last_funding_rate,
                long_ratio=long_ratio,
                short_ratio=short_ratio,
                volume_24h=ticker.quote_volume,
            )
        except Exception as e:
            logger.error(f"Failed to fetch binance derivatives for {symbol}: {e}")
            return None

    async def _fetch_ccxt(self, exchange: str, symbol: str) -> ExchangeDerivatives | None:
        ex = self.bybit if exchange == "bybit" else self.okx
        if not ex:
            return None

        market = to_ccxt_symbol(symbol)
        try:
            ticker: dict[str, Any] = await ex.fetch_ticker(market)
            funding: dict[str, Any] = await ex.fetch_funding_rate(market)
            oi_data: dict[str, Any] = await ex.fetch_open_interest(market)

            price = ticker.get("last")
            oi_amount = oi_data.get("openInterestAmount")
            if price is None or oi_amount is None:
                logger.warning(
                    f"Incomplete data from {exchange} for {symbol}: price={price}, oi={oi_amount}"
                )
                return None

            oi_value = oi_data.get("openInterestValue")
            if oi_value is None:
                oi_value = oi_amount * price

            volume = ticker.get("quoteVolume")
            if volume is None:
                volume = _float(ticker.get("baseVolume")) * price

            long_ratio, short_ratio = 0.5, 0.5
            if exchange == "bybit":
                positioning = await self.fetch_bybit_positioning(symbol)
                if positioning:
                    long_ratio, short_ratio = positioning.long_ratio, positioning.short_ratio

            return ExchangeDerivatives(
                exchange=exchange,
                oi=float(oi_amount),
                oi_value=float(oi_value),
                funding=_float(funding.get("fundingRate")),
                long_ratio=long_ratio,
                short_ratio=short_ratio,
                volume_24h=float(volume),
            )
        except Exception as e:
            logger.error(f"Failed to fetch {exchange} derivatives for {symbol}: {e}")
            return None

    async def fetch_bybit(self, symbol: str) -> ExchangeDerivatives | None:
        return await self._fetch_ccxt("bybit", symbol)

    async def fetch_okx(self, symbol: str) -> ExchangeDerivatives | None:
        return await self._fetch_ccxt("okx", symbol)

    # ---------- 持仓结构 ----------

    async def fetch_bybit_positioning(self, symbol: str) -> LongShortRatio | None:
        """Bybit 账户多空比 (buyRatio / sellRatio)"""
        if not self.bybit:
            return None
        try:
            history: list[dict[str, Any]] = await self.bybit.fetch_long_short_ratio_history(
                to_ccxt_symbol(symbol), "1h", None, 1
            )
            if not history:
                return None

            latest = history[-1]
            info = latest.get("info") or {}
            buy_ratio = info.get("buyRatio")
            sell_ratio = info.get("sellRatio")
            if buy_ratio is None or sell_ratio is None:
                logger.warning(f"Bybit positioning missing ratios for {symbol}")
                return None

            return LongShortRatio(
                symbol=symbol,
                long_ratio=float(buy_ratio),
                short_ratio=float(sell_ratio),
                long_short_ratio=_float(latest.get("longShortRatio")),
                timestamp=int(latest.get("timestamp") or 0),
            )
        except Exception as e:
            logger.warning(f"Failed to fetch bybit positioning for {symbol}: {e}")
            return None

    async def fetch_squeeze_snapshot(self, symbol: str) -> SqueezeSnapshot | None:
        """Binance 单币种快照: 24h OI 变化、资金费率、多空比、主动买卖量"""
        try:
            ticker, premium, oi_hist, ratios, taker = await asyncio.gather(
                self.client.get_ticker_24h(symbol),
                self.client.get_premium_index(symbol),
                self.client.get_open_interest_hist(symbol, "1h", limit=24),
                self.client.get_long_short_ratio(symbol, "1h", limit=1),
                self.client.get_taker_ratio(symbol, "1h", limit=1),
            )
        except Exception as e:
            logger.error(f"Failed to fetch squeeze data for {symbol}: {e}")
            return None

        oi_change = 0.0
        if len(oi_hist) >= 2 and oi_hist[0].open_interest > 0:
            first, last = oi_hist[0].open_interest, oi_hist[-1].open_interest
            oi_change = (last - first) / first

        return SqueezeSnapshot(
            symbol=symbol,
            price=ticker.last_price,
            price_change_24h=ticker.price_change_percent / 100,
            oi_change_24h=oi_change,
            funding=premium.last_funding_rate,
            long_ratio=ratios[-1].long_ratio if ratios else 0.5,
            short_ratio=ratios[-1].short_ratio if ratios else 0.5,
            buy_volume=taker[-1].buy_vol if taker else 0.0,
            sell_volume=taker[-1].sell_vol if taker else 0.0,
        )

    async def fetch_price(self, symbol: str) -> float:
        try:
            return await self.client.get_ticker_price(symbol)
        except Exception as e:
            logger.warning(f"Failed to fetch price for {symbol}: {e}")
            return 0.0

    # ---------- 爆仓 ----------

    def _parse_okx_liquidation(self, symbol: str, item: dict[str, Any]) -> Liquidation | None:
        info = item.get("info") or {}
        raw_side = str(info.get("side", "")).lower()
        if raw_side not in ("buy", "sell"):
            return None

        price = _float(item.get("price"))
        quantity = _float(item.get("baseValue") or item.get("contracts"))
        value = item.get("quoteValue")
        value_usd = float(value) if value is not None else price * quantity
        timestamp = item.get("timestamp")
        if price <= 0 or timestamp is None:
            return None

        return Liquidation(
            exchange="okx",
            symbol=symbol,
            timestamp=int(timestamp),
            # sell = 多头被强平
            side="long" if raw_side == "sell" else "short",
            price=price,
            quantity=quantity,
            value_usd=value_usd,
        )

    async def fetch_okx_liquidations(self, symbol: str) -> list[Liquidation]:
        if not self.okx:
            return []
        try:
            raw: list[dict[str, Any]] = await self.okx.fetch_liquidations(
                to_ccxt_symbol(symbol), None, 100
            )
        except Exception as e:
            logger.warning(f"Failed to fetch okx liquidations for {symbol}: {e}")
            raise

        result = []
        for item in raw:
            liq = self._parse_okx_liquidation(symbol, item)
            if liq:
                result.append(liq)
        return result
