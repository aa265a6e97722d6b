# tests/test_config.py
from pathlib import Path

import pytest
from pydantic import ValidationError

from src.config import load_config


def test_load_config_from_yaml(tmp_path: Path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("""
exchanges:
  binance:
    enabled: true
  bybit:
    enabled: false
  okx:
    enabled: true

symbols:
  - btcusdt
  - ETHUSDT

cache:
  min_interval_minutes: 5
  price_retention_days: 7
  oi_retention_hours: 24
  update_minutes: 10

alerts:
  min_probability: 70
  min_strength: active
  cooldown_minutes: 30
  suppress_near_settlement: false

arbitrage:
  exchanges: [binance, okx]
  default_size_usd: 50000

intervals:
  squeeze_scan_minutes: 2
  report_hours: 4

telegram:
  bot_token: "test_token"
  chat_id: "test_chat"
""")

    config = load_config(config_file)

    assert config.exchanges.binance.enabled is True
    assert config.exchanges.bybit.enabled is False
    assert config.symbols == ["BTCUSDT", "ETHUSDT"]
    assert config.cache.update_minutes == 10
    assert config.alerts.min_probability == 70
    assert config.alerts.min_strength == "ACTIVE"
    assert config.alerts.suppress_near_settlement is False
    assert config.alerts.blackout_hours == [23, 0, 7, 8, 15, 16]
    assert config.arbitrage.exchanges == ["binance", "okx"]
    assert config.arbitrage.default_size_usd == 50000
    assert config.intervals.report_hours == 4
    assert config.intervals.intelligence_ttl_seconds == 30
    assert config.telegram.bot_token == "test_token"


def test_load_config_defaults(tmp_path: Path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("""
telegram:
  bot_token: "t"
  chat_id: "1"
""")

    config = load_config(config_file)

    assert config.symbols == ["BTCUSDT", "ETHUSDT", "SOLUSDT"]
    assert config.alerts.min_strength == "IMMINENT"
    assert config.alerts.cooldown_minutes == 15
    assert config.cache.min_interval_minutes == 5


def test_invalid_strength_rejected(tmp_path: Path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("""
alerts:
  min_strength: HUGE
telegram:
  bot_token: "t"
  chat_id: "1"
""")

    with pytest.raises(ValidationError):
        load_config(config_file)
