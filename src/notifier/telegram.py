# src/notifier/telegram.py
import logging
import re
from collections.abc import Callable, Coroutine
from typing import Any

from telegram import Bot, BotCommand, Update
from telegram.ext import Application, CommandHandler, ContextTypes

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = """
🔔 <b>Derivatives Signal Monitor</b> - 永续合约信号监控

<b>功能：</b>
• 多交易所衍生品聚合 (OI / 资金费率 / 多空比)
• 市场状态与资金轮动判断
• 轧多 / 轧空预警
• 跨所现货套利分析
• 定时情报报告

输入 /help 查看所有命令
"""

HELP_MESSAGE = """
📖 <b>命令列表</b>

<b>📊 市场情报</b>
/report [BTC|ETH] - 获取情报报告
/squeeze - 当前轧仓信号
/status - 查看系统状态

<b>💱 套利</b>
/arb [SYMBOL] [SIZE] - 跨所套利分析

<b>💡 示例</b>
• /report ETH - ETH 视角报告
• /arb BTC 50000 - 5 万美元 BTC 套利测算
"""

BOT_COMMANDS = [
    BotCommand("start", "开始使用"),
    BotCommand("help", "查看帮助"),
    BotCommand("report", "获取情报报告"),
    BotCommand("squeeze", "轧仓信号"),
    BotCommand("arb", "跨所套利分析"),
    BotCommand("status", "系统状态"),
]


def normalize_symbol(symbol: str) -> str:
    """BTC -> BTCUSDT"""
    symbol = symbol.upper()
    return symbol if symbol.endswith("USDT") else f"{symbol}USDT"


class TelegramNotifier:
    def __init__(self, bot_token: str, chat_id: str):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.bot = Bot(token=bot_token)
        self.app: Application | None = None  # type: ignore[type-arg]

        # Callbacks
        self.on_report: Callable[[str], Coroutine[Any, Any, str]] | None = None
        self.on_squeeze: Callable[[], Coroutine[Any, Any, str]] | None = None
        self.on_arb: Callable[[str, float | None], Coroutine[Any, Any, str]] | None = None
        self.on_status: Callable[[], Coroutine[Any, Any, str]] | None = None

    async def send_message(self, text: str) -> None:
        await self.bot.send_message(
            chat_id=self.chat_id,
            text=text,
            parse_mode="HTML",
        )

    @staticmethod
    def _parse_arb_command(text: str) -> tuple[str, float | None] | None:
        match = re.match(r"/arb(?:@\w+)?(?:\s+([A-Za-z]+))?(?:\s+([\d.]+))?\s*$", text.strip())
        if not match:
            return None
        symbol = normalize_symbol(match.group(1) or "BTC")
        size = float(match.group(2)) if match.group(2) else None
        return symbol, size

    async def _reply(
        self,
        update: Update,
        callback: Callable[[], Coroutine[Any, Any, str]] | None,
        fallback: str,
    ) -> None:
        if not update.message:
            return
        if not callback:
            await update.message.reply_text(fallback)
            return
        try:
            text = await callback()
        except Exception as e:
            logger.error(f"Command failed: {e}")
            text = "⚠️ 数据获取失败，请稍后重试"
        await update.message.reply_text(text)

    async def _handle_report(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not update.message.text:
            return

        parts = update.message.text.split()
        symbol = parts[1].upper() if len(parts) > 1 else "BTC"
        if symbol not in ("BTC", "ETH"):
            await update.message.reply_text("用法: /report [BTC|ETH]")
            return

        callback = self.on_report
        await self._reply(update, (lambda: callback(symbol)) if callback else None, "报告生成中...")

    async def _handle_squeeze(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._reply(update, self.on_squeeze, "扫描中...")

    async def _handle_arb(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not update.message.text:
            return

        result = self._parse_arb_command(update.message.text)
        if not result:
            await update.message.reply_text("用法: /arb BTC 50000")
            return

        symbol, size = result
        callback = self.on_arb
        await self._reply(update, (lambda: callback(symbol, size)) if callback else None, "分析中...")

    async def _handle_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._reply(update, self.on_status, "系统运行中")

    async def _handle_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message:
            return
        await update.message.reply_text(WELCOME_MESSAGE, parse_mode="HTML")

    async def _handle_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message:
            return
        await update.message.reply_text(HELP_MESSAGE, parse_mode="HTML")

    def setup_handlers(self, app: Application) -> None:  # type: ignore[type-arg]
        app.add_handler(CommandHandler("start", self._handle_start))
        app.add_handler(CommandHandler("help", self._handle_help))
        app.add_handler(CommandHandler("report", self._handle_report))
        app.add_handler(CommandHandler("squeeze", self._handle_squeeze))
        app.add_handler(CommandHandler("arb", self._handle_arb))
        app.add_handler(CommandHandler("status", self._handle_status))

    async def start_polling(self) -> None:
        self.app = Application.builder().token(self.bot_token).build()
        self.setup_handlers(self.app)
        await self.app.initialize()
        await self.app.start()

        await self.bot.set_my_commands(BOT_COMMANDS)

        if self.app.updater:
            await self.app.updater.start_polling()

    async def stop_polling(self) -> None:
        if self.app:
            if self.app.updater:
                await self.app.updater.stop()
            await self.app.stop()
            await self.app.shutdown()
