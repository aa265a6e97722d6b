# tests/notifier/test_telegram.py
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.notifier.telegram import TelegramNotifier, normalize_symbol


@pytest.fixture
def notifier():
    with patch("src.notifier.telegram.Bot"):
        yield TelegramNotifier(bot_token="test", chat_id="123")


def _update(text: str) -> MagicMock:
    update = MagicMock()
    update.message.text = text
    update.message.reply_text = AsyncMock()
    return update


async def test_send_message():
    with patch("src.notifier.telegram.Bot") as MockBot:
        mock_bot = MagicMock()
        mock_bot.send_message = AsyncMock()
        MockBot.return_value = mock_bot

        notifier = TelegramNotifier(bot_token="test", chat_id="123")
        await notifier.send_message("Hello")

        mock_bot.send_message.assert_called_once_with(
            chat_id="123",
            text="Hello",
            parse_mode="HTML",
        )


def test_parse_arb_command():
    assert TelegramNotifier._parse_arb_command("/arb") == ("BTCUSDT", None)
    assert TelegramNotifier._parse_arb_command("/arb eth") == ("ETHUSDT", None)
    assert TelegramNotifier._parse_arb_command("/arb SOL 25000") == ("SOLUSDT", 25000.0)
    assert TelegramNotifier._parse_arb_command("/arb BTCUSDT 1000.5") == ("BTCUSDT", 1000.5)
    assert TelegramNotifier._parse_arb_command("/arb 50000 BTC") is None


def test_normalize_symbol():
    assert normalize_symbol("btc") == "BTCUSDT"
    assert normalize_symbol("ETHUSDT") == "ETHUSDT"


async def test_report_calls_callback(notifier):
    notifier.on_report = AsyncMock(return_value="report text")
    update = _update("/report eth")

    await notifier._handle_report(update, MagicMock())

    notifier.on_report.assert_awaited_once_with("ETH")
    update.message.reply_text.assert_awaited_once_with("report text")


async def test_report_rejects_unknown_symbol(notifier):
    notifier.on_report = AsyncMock()
    update = _update("/report DOGE")

    await notifier._handle_report(update, MagicMock())

    notifier.on_report.assert_not_called()
    update.message.reply_text.assert_awaited_once_with("用法: /report [BTC|ETH]")


async def test_arb_passes_symbol_and_size(notifier):
    notifier.on_arb = AsyncMock(return_value="arb text")
    update = _update("/arb ETH 5000")

    await notifier._handle_arb(update, MagicMock())

    notifier.on_arb.assert_awaited_once_with("ETHUSDT", 5000.0)
    update.message.reply_text.assert_awaited_once_with("arb text")


async def test_callback_failure_replies_with_error(notifier):
    notifier.on_squeeze = AsyncMock(side_effect=RuntimeError("boom"))
    update = _update("/squeeze")

    await notifier._handle_squeeze(update, MagicMock())

    update.message.reply_text.assert_awaited_once_with("⚠️ 数据获取失败，请稍后重试")


async def test_status_without_callback(notifier):
    update = _update("/status")

    await notifier._handle_status(update, MagicMock())

    update.message.reply_text.assert_awaited_once_with("系统运行中")
