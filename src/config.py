# src/config.py
from pathlib import Path

import yaml
from pydantic import BaseModel, field_validator


class ExchangeConfig(BaseModel):
    enabled: bool = True


class ExchangesConfig(BaseModel):
    binance: ExchangeConfig = ExchangeConfig()
    bybit: ExchangeConfig = ExchangeConfig()
    okx: ExchangeConfig = ExchangeConfig()


class CacheConfig(BaseModel):
    min_interval_minutes: int = 5
    price_retention_days: int = 7
    oi_retention_hours: int = 24
    update_minutes: int = 5


class AlertSettingsConfig(BaseModel):
    min_probability: float = 60
    min_strength: str = "IMMINENT"
    cooldown_minutes: int = 15
    suppress_near_settlement: bool = True
    blackout_hours: list[int] = [23, 0, 7, 8, 15, 16]
    min_active_components: int = 3

    @field_validator("min_strength")
    @classmethod
    def _check_strength(cls, v: str) -> str:
        v = v.upper()
        if v not in ("LOADING", "BUILDING", "IMMINENT", "ACTIVE"):
            raise ValueError(f"unknown squeeze strength: {v}")
        return v


class ArbitrageConfig(BaseModel):
    exchanges: list[str] = ["binance", "bybit", "okx", "kucoin", "gateio", "bitget", "kraken"]
    default_size_usd: float = 100_000
    volume_30d: float = 0
    depth: int = 50


class IntervalsConfig(BaseModel):
    squeeze_scan_minutes: int = 1
    report_hours: int = 8
    alert_cleanup_hours: int = 1
    intelligence_ttl_seconds: int = 30


class TelegramConfig(BaseModel):
    bot_token: str
    chat_id: str


class Config(BaseModel):
    exchanges: ExchangesConfig = ExchangesConfig()
    symbols: list[str] = ["BTCUSDT", "ETHUSDT", "SOLUSDT"]
    cache: CacheConfig = CacheConfig()
    alerts: AlertSettingsConfig = AlertSettingsConfig()
    arbitrage: ArbitrageConfig = ArbitrageConfig()
    intervals: IntervalsConfig = IntervalsConfig()
    telegram: TelegramConfig

    @field_validator("symbols")
    @classmethod
    def _upper_symbols(cls, v: list[str]) -> list[str]:
        return [s.upper() for s in v]


def load_config(path: Path) -> Config:
    with open(path) as f:
        data = yaml.safe_load(f)
    return Config(**data)
