# tests/alert/test_manager.py
import pytest
from pydantic import ValidationError

from src.alert.manager import AlertManager, SuppressReason
from src.config import AlertSettingsConfig
from src.engine.squeeze import SqueezeComponent, SqueezeSignal, TriggerZone

DAY_START = 1_706_572_800_000  # 2024-01-30 00:00 UTC
HOUR = 3600 * 1000
MIN = 60 * 1000
NOON = DAY_START + 12 * HOUR


def _signal(symbol="BTCUSDT", probability=72.0, strength="IMMINENT", active=4, type="LONG_SQUEEZE"):
    names = [
        "oi_rising",
        "funding_extreme",
        "directional_imbalance",
        "liquidation_cluster",
        "volume_absorption",
        "price_rejection",
    ]
    components = {
        name: SqueezeComponent(name, i < active, 0.0, 0.0, 1.0 if i < active else 0.0)
        for i, name in enumerate(names)
    }
    return SqueezeSignal(
        symbol=symbol,
        type=type,
        strength=strength,
        probability=probability,
        components=components,
        nearest_liquidation_price=95.0,
        estimated_liquidation_value=0.0,
        trigger_zone=TriggerZone(97.0, 100.0),
        timestamp=NOON,
    )


def test_alert_passes_all_gates():
    manager = AlertManager()

    decision = manager.process_signal(_signal(), now_ms=NOON)

    assert decision.should_alert is True
    assert decision.reason == "ALERT: BTCUSDT LONG_SQUEEZE at 72% probability"
    assert manager.last_notified["BTCUSDT"] == NOON
    assert list(manager.alerts) == ["BTCUSDT-LONG_SQUEEZE"]


def test_probability_floor():
    decision = AlertManager().process_signal(_signal(probability=52.4), now_ms=NOON)

    assert decision.should_alert is False
    assert decision.reason == "Probability 52% below threshold 60%"
    assert decision.suppressed_by == SuppressReason.PROBABILITY


def test_strength_floor():
    decision = AlertManager().process_signal(_signal(strength="BUILDING"), now_ms=NOON)

    assert decision.reason == "Strength BUILDING below threshold IMMINENT"


def test_cooldown_blocks_second_alert():
    manager = AlertManager()

    first = manager.process_signal(_signal(), now_ms=NOON)
    second = manager.process_signal(_signal(probability=90, strength="ACTIVE", active=6), now_ms=NOON + 3 * MIN)

    assert first.should_alert is True
    assert second.should_alert is False
    assert second.reason == "Cooldown: 12m remaining for BTCUSDT"
    assert second.suppressed_by == SuppressReason.COOLDOWN


def test_cooldown_is_per_symbol_and_expires():
    manager = AlertManager()
    manager.process_signal(_signal(), now_ms=NOON)

    assert manager.process_signal(_signal(symbol="ETHUSDT"), now_ms=NOON + MIN).should_alert
    assert manager.process_signal(_signal(), now_ms=NOON + 15 * MIN).should_alert


@pytest.mark.parametrize("hour", [23, 0, 7, 8, 15, 16])
def test_settlement_blackout(hour):
    decision = AlertManager().process_signal(_signal(), now_ms=DAY_START + hour * HOUR + 30 * MIN)

    assert decision.should_alert is False
    assert decision.reason == f"Suppressed: Near funding settlement (hour {hour} UTC)"


def test_settlement_blackout_can_be_disabled():
    manager = AlertManager(AlertSettingsConfig(suppress_near_settlement=False))

    assert manager.process_signal(_signal(), now_ms=DAY_START + 8 * HOUR).should_alert


def test_low_quality():
    manager = AlertManager(AlertSettingsConfig(min_strength="LOADING"))

    decision = manager.process_signal(_signal(active=2), now_ms=NOON)

    assert decision.reason == "Low quality: Only 2/6 components active"


def test_alert_overwrites_same_key():
    manager = AlertManager(AlertSettingsConfig(cooldown_minutes=0))

    manager.process_signal(_signal(probability=70), now_ms=NOON)
    manager.process_signal(_signal(probability=80), now_ms=NOON + MIN)

    assert len(manager.alerts) == 1
    assert manager.alerts["BTCUSDT-LONG_SQUEEZE"].signal.probability == 80


def test_active_alerts_sorted_and_filtered():
    manager = AlertManager()
    manager.process_signal(_signal("BTCUSDT", probability=70), now_ms=NOON)
    manager.process_signal(_signal("ETHUSDT", probability=85), now_ms=NOON)
    manager.process_signal(_signal("SOLUSDT", probability=75), now_ms=NOON)
    manager.alerts["SOLUSDT-LONG_SQUEEZE"].resolved_at = NOON + MIN

    assert [a.signal.symbol for a in manager.get_active_alerts()] == ["ETHUSDT", "BTCUSDT"]


def test_suppression_stats_count_real_decisions():
    manager = AlertManager()
    manager.process_signal(_signal(), now_ms=NOON)
    manager.process_signal(_signal(), now_ms=NOON + MIN)
    manager.process_signal(_signal(probability=10), now_ms=NOON)

    stats = manager.get_suppression_stats()

    assert stats.total_processed == 3
    assert stats.alerts_fired == 1
    assert stats.suppressed[SuppressReason.COOLDOWN] == 1
    assert stats.suppressed[SuppressReason.PROBABILITY] == 1
    assert stats.suppressed[SuppressReason.SETTLEMENT] == 0


def test_update_settings_validates():
    manager = AlertManager()

    settings = manager.update_settings(min_probability=80, min_strength="active")

    assert settings.min_probability == 80
    assert settings.min_strength == "ACTIVE"
    assert manager.settings.cooldown_minutes == 15
    with pytest.raises(ValidationError):
        manager.update_settings(min_strength="HUGE")


def test_cleanup_removes_old_alerts():
    manager = AlertManager()
    manager.process_signal(_signal("BTCUSDT"), now_ms=NOON)
    manager.process_signal(_signal("ETHUSDT"), now_ms=NOON + 22 * HOUR)

    removed = manager.cleanup(now_ms=NOON + 25 * HOUR)

    assert removed == 1
    assert list(manager.alerts) == ["ETHUSDT-LONG_SQUEEZE"]
