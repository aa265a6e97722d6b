# src/main.py
import asyncio
import logging
import signal
import time
from pathlib import Path

from src.aggregator.derivatives import DerivativesAggregator
from src.aggregator.intelligence import IntelligenceService
from src.aggregator.liquidation import LiquidationAggregator
from src.aggregator.pressure import MarketPressureCalculator
from src.alert.manager import AlertManager
from src.client.binance import BinanceClient
from src.client.macro import MacroClient
from src.collector.binance_liq import BinanceLiquidationCollector
from src.collector.cache_seeder import CacheSeeder, CacheSeedError
from src.collector.derivatives import DerivativesFetcher
from src.collector.orderbook import OrderbookFetcher
from src.config import Config, load_config
from src.engine.arbitrage import analyze_arbitrage
from src.engine.squeeze import SqueezeScanner
from src.notifier.formatter import (
    format_arbitrage,
    format_intelligence_report,
    format_squeeze_alert,
    format_squeeze_list,
)
from src.notifier.telegram import TelegramNotifier
from src.storage.cache import TimeSeriesCache
from src.storage.liquidations import LiquidationBuffer

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class SignalMonitor:
    def __init__(self, config: Config):
        self.config = config
        cache_cfg = config.cache
        self.cache = TimeSeriesCache(
            min_interval_ms=cache_cfg.min_interval_minutes * 60 * 1000,
            price_retention_ms=cache_cfg.price_retention_days * 24 * 3600 * 1000,
            oi_retention_ms=cache_cfg.oi_retention_hours * 3600 * 1000,
        )
        self.binance_client = BinanceClient()
        self.macro_client = MacroClient()
        self.fetcher = DerivativesFetcher(self.binance_client)
        self.orderbooks = OrderbookFetcher(config.arbitrage.exchanges, config.arbitrage.depth)
        self.liq_buffer = LiquidationBuffer()
        self.seeder = CacheSeeder(self.cache, self.binance_client)
        self.alert_manager = AlertManager(config.alerts)
        self.notifier = TelegramNotifier(config.telegram.bot_token, config.telegram.chat_id)

        exchanges = config.exchanges
        derivative_sources = {}
        liquidation_sources = {}
        if exchanges.binance.enabled:
            derivative_sources["binance"] = self.fetcher.fetch_binance
            liquidation_sources["binance"] = self.liq_buffer.fetch
        if exchanges.bybit.enabled:
            derivative_sources["bybit"] = self.fetcher.fetch_bybit
        if exchanges.okx.enabled:
            derivative_sources["okx"] = self.fetcher.fetch_okx
            liquidation_sources["okx"] = self.fetcher.fetch_okx_liquidations

        self.derivatives = DerivativesAggregator(derivative_sources, self.cache)
        self.liquidations = LiquidationAggregator(liquidation_sources)
        self.pressure = MarketPressureCalculator(
            self.derivatives, self.liquidations, self.fetcher.fetch_price
        )
        self.scanner = SqueezeScanner(
            self.fetcher.fetch_squeeze_snapshot,
            self.fetcher.fetch_bybit_positioning if exchanges.bybit.enabled else None,
            self.liquidations,
        )
        self.intelligence = IntelligenceService(
            cache=self.cache,
            derivatives=self.derivatives,
            liquidations=self.liquidations,
            pressure=self.pressure,
            macro=self.macro_client,
            scanner=self.scanner,
            squeeze_symbols=config.symbols,
            ttl_seconds=config.intervals.intelligence_ttl_seconds,
            price_source=self.fetcher.fetch_price,
        )

        self.collectors: list[BinanceLiquidationCollector] = []
        self.running = False
        self.start_time = time.time()

    async def init(self) -> None:
        await self.binance_client.init()
        await self.macro_client.init()
        await self.fetcher.init()
        await self.orderbooks.init()

        # 预热完成后才启动各个循环
        try:
            await self.seeder.seed(self.config.symbols)
        except CacheSeedError as e:
            logger.error(f"{e}, continuing with empty cache")

        if self.config.exchanges.binance.enabled:
            self.collectors.append(
                BinanceLiquidationCollector(
                    symbols=self.config.symbols,
                    on_liquidation=self.liq_buffer.add,
                )
            )

        self.notifier.on_report = self._on_report
        self.notifier.on_squeeze = self._on_squeeze
        self.notifier.on_arb = self._on_arb
        self.notifier.on_status = self._on_status

    async def _on_report(self, symbol: str) -> str:
        report = await self.intelligence.get_report()
        return format_intelligence_report(report, symbol)

    async def _on_squeeze(self) -> str:
        signals = await self.scanner.detect_squeeze_multi(self.config.symbols)
        return format_squeeze_list(signals)

    async def _on_arb(self, symbol: str, size: float | None) -> str:
        cfg = self.config.arbitrage
        books = await self.orderbooks.fetch_all(symbol)
        price = await self.fetcher.fetch_price(symbol)
        if not price and books:
            price = books[0].best_ask

        analysis = analyze_arbitrage(
            books,
            size or cfg.default_size_usd,
            price,
            volume_30d=cfg.volume_30d,
            symbol=symbol,
        )
        return format_arbitrage(analysis)

    async def _on_status(self) -> str:
        uptime = time.time() - self.start_time
        days = int(uptime // 86400)
        hours = int((uptime % 86400) // 3600)
        minutes = int((uptime % 3600) // 60)

        seed = self.seeder.last_result
        if seed is None:
            seed_line = "未执行"
        elif seed.ok:
            seed_line = f"🟢 {len(seed.seeded)} 个币种"
        else:
            seed_line = f"🟡 失败: {', '.join(seed.failed)}"

        snapshots = self.cache.get_stats()
        stats = self.alert_manager.get_suppression_stats()
        active = self.alert_manager.get_active_alerts()

        return f"""🔧 系统状态

运行时间: {days}d {hours}h {minutes}m
缓存预热: {seed_line}
价格快照: {sum(snapshots.price_snapshots.values())} | OI 快照: {sum(snapshots.oi_snapshots.values())}

信号处理: {stats.total_processed} | 已告警: {stats.alerts_fired}
活跃告警: {len(active)}

监控币种: {", ".join(self.config.symbols)}
"""

    async def _update_cache(self) -> None:
        interval = self.config.cache.update_minutes * 60
        while self.running:
            await asyncio.sleep(interval)
            try:
                updated = await self.seeder.update(self.config.symbols)
                logger.debug(f"Cache updated for {updated} symbols")
            except Exception as e:
                logger.error(f"Failed to update cache: {e}")

    async def _scan_squeezes(self) -> None:
        interval = self.config.intervals.squeeze_scan_minutes * 60
        while self.running:
            await asyncio.sleep(interval)
            try:
                signals = await self.scanner.detect_squeeze_multi(self.config.symbols)
            except Exception as e:
                logger.error(f"Squeeze scan failed: {e}")
                continue

            for sig in signals:
                decision = self.alert_manager.process_signal(sig)
                if not decision.should_alert:
                    continue
                try:
                    await self.notifier.send_message(format_squeeze_alert(sig))
                except Exception as e:
                    logger.error(f"Failed to send squeeze alert for {sig.symbol}: {e}")

    async def _scheduled_report(self) -> None:
        interval = self.config.intervals.report_hours * 3600
        while self.running:
            await asyncio.sleep(interval)
            try:
                report = await self.intelligence.get_report()
                await self.notifier.send_message(format_intelligence_report(report))
            except Exception as e:
                logger.error(f"Failed to send scheduled report: {e}")

    async def _cleanup_alerts(self) -> None:
        interval = self.config.intervals.alert_cleanup_hours * 3600
        while self.running:
            await asyncio.sleep(interval)
            self.alert_manager.cleanup()

    async def run(self) -> None:
        await self.init()
        self.running = True

        for collector in self.collectors:
            await collector.start()

        await self.notifier.start_polling()

        tasks = [
            asyncio.create_task(self._update_cache()),
            asyncio.create_task(self._scan_squeezes()),
            asyncio.create_task(self._scheduled_report()),
            asyncio.create_task(self._cleanup_alerts()),
        ]

        logger.info("Signal Monitor started")

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        await stop_event.wait()

        self.running = False
        for task in tasks:
            task.cancel()
        for collector in self.collectors:
            await collector.stop()
        await self.notifier.stop_polling()
        await self.orderbooks.close()
        await self.fetcher.close()
        await self.macro_client.close()
        await self.binance_client.close()

        logger.info("Signal Monitor stopped")


async def main() -> None:
    config = load_config(Path("config.yaml"))
    monitor = SignalMonitor(config)
    await monitor.run()


if __name__ == "__main__":
    asyncio.run(main())
