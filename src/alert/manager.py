# src/alert/manager.py
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from src.config import AlertSettingsConfig
from src.engine.squeeze import SqueezeSignal, strength_rank

logger = logging.getLogger(__name__)

ALERT_TTL_MS = 24 * 3600 * 1000
TOTAL_COMPONENTS = 6


class SuppressReason(Enum):
    PROBABILITY = "probability"
    STRENGTH = "strength"
    COOLDOWN = "cooldown"
    SETTLEMENT = "settlement"
    QUALITY = "quality"


@dataclass
class AlertDecision:
    should_alert: bool
    reason: str
    suppressed_by: SuppressReason | None = None


@dataclass
class SqueezeAlert:
    id: str  # symbol-type
    signal: SqueezeSignal
    created_at: int
    notified_at: int | None = None
    suppressed: bool = False
    suppress_reason: str | None = None
    confirmed_at: int | None = None
    resolved_at: int | None = None


@dataclass
class SuppressionStats:
    total_processed: int = 0
    alerts_fired: int = 0
    suppressed: dict[SuppressReason, int] = field(
        default_factory=lambda: {reason: 0 for reason in SuppressReason}
    )


class AlertManager:
    """轧仓信号告警过滤

    依次检查: 概率下限 → 强度下限 → 同币种冷却 → 资金费结算时段 → 激活维度数。
    """

    def __init__(self, settings: AlertSettingsConfig | None = None):
        self.settings = settings or AlertSettingsConfig()
        self.alerts: dict[str, SqueezeAlert] = {}
        self.last_notified: dict[str, int] = {}
        self.stats = SuppressionStats()

    def update_settings(self, **changes) -> AlertSettingsConfig:
        self.settings = AlertSettingsConfig(**{**self.settings.model_dump(), **changes})
        logger.info(f"Alert settings updated: {changes}")
        return self.settings

    def _check(self, signal: SqueezeSignal, now_ms: int) -> AlertDecision | None:
        s = self.settings

        if signal.probability < s.min_probability:
            return AlertDecision(
                False,
                f"Probability {signal.probability:.0f}% below threshold {s.min_probability:g}%",
                SuppressReason.PROBABILITY,
            )

        if strength_rank(signal.strength) < strength_rank(s.min_strength):
            return AlertDecision(
                False,
                f"Strength {signal.strength} below threshold {s.min_strength}",
                SuppressReason.STRENGTH,
            )

        cooldown_ms = s.cooldown_minutes * 60 * 1000
        last = self.last_notified.get(signal.symbol)
        if last is not None and now_ms - last < cooldown_ms:
            remaining = math.ceil((cooldown_ms - (now_ms - last)) / 60_000)
            return AlertDecision(
                False,
                f"Cooldown: {remaining}m remaining for {signal.symbol}",
                SuppressReason.COOLDOWN,
            )

        if s.suppress_near_settlement:
            # 资金费结算 00:00 / 08:00 / 16:00 UTC 前后
            hour = datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc).hour
            if hour in s.blackout_hours:
                return AlertDecision(
                    False,
                    f"Suppressed: Near funding settlement (hour {hour} UTC)",
                    SuppressReason.SETTLEMENT,
                )

        active = signal.active_count
        if active < s.min_active_components:
            return AlertDecision(
                False,
                f"Low quality: Only {active}/{TOTAL_COMPONENTS} components active",
                SuppressReason.QUALITY,
            )

        return None

    def process_signal(self, signal: SqueezeSignal, now_ms: int | None = None) -> AlertDecision:
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        self.stats.total_processed += 1
        decision = self._check(signal, now_ms)
        if decision:
            self.stats.suppressed[decision.suppressed_by] += 1
            logger.debug(f"Signal {signal.symbol} {signal.type} suppressed: {decision.reason}")
            return decision

        self.last_notified[signal.symbol] = now_ms
        alert_id = f"{signal.symbol}-{signal.type}"
        self.alerts[alert_id] = SqueezeAlert(
            id=alert_id, signal=signal, created_at=now_ms, notified_at=now_ms
        )
        self.stats.alerts_fired += 1

        reason = f"ALERT: {signal.symbol} {signal.type} at {signal.probability:.0f}% probability"
        logger.info(reason)
        return AlertDecision(True, reason)

    def get_active_alerts(self) -> list[SqueezeAlert]:
        active = [a for a in self.alerts.values() if not a.suppressed and a.resolved_at is None]
        return sorted(active, key=lambda a: a.signal.probability, reverse=True)

    def get_suppression_stats(self) -> SuppressionStats:
        return self.stats

    def cleanup(self, now_ms: int | None = None) -> int:
        """删除 24 小时前创建的告警，返回删除数量"""
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        cutoff = now_ms - ALERT_TTL_MS
        expired = [alert_id for alert_id, a in self.alerts.items() if a.created_at < cutoff]
        for alert_id in expired:
            del self.alerts[alert_id]

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired alerts")
        return len(expired)
