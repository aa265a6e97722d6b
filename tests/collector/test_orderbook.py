# tests/collector/test_orderbook.py
from unittest.mock import AsyncMock, MagicMock

from src.collector.orderbook import OrderbookFetcher, to_spot_symbol


def test_to_spot_symbol():
    assert to_spot_symbol("BTCUSDT") == "BTC/USDT"
    assert to_spot_symbol("ETH/USDT:USDT") == "ETH/USDT"


async def test_fetch_all_filters_failures_and_empty_books():
    fetcher = OrderbookFetcher(exchanges=["binance", "okx", "kraken"], depth=5)

    good = MagicMock()
    good.fetch_order_book = AsyncMock(
        return_value={
            "bids": [[100.0, 1.0], [99.0, 2.0]],
            "asks": [[101.0, 1.0, 0]],
            "timestamp": 1706600000000,
        }
    )
    broken = MagicMock()
    broken.fetch_order_book = AsyncMock(side_effect=RuntimeError("timeout"))
    empty = MagicMock()
    empty.fetch_order_book = AsyncMock(return_value={"bids": [], "asks": []})

    fetcher.exchanges = {"binance": good, "okx": broken, "kraken": empty}

    books = await fetcher.fetch_all("BTCUSDT")

    assert len(books) == 1
    assert books[0].exchange == "binance"
    assert books[0].best_bid == 100.0
    assert books[0].best_ask == 101.0
    good.fetch_order_book.assert_awaited_once_with("BTC/USDT", 5)
