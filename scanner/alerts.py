"""
Scanner - Alerts.

============================================================
PURPOSE
============================================================
Surfaces scan failures that need attention: skipped heights,
stalled or paused networks, reorgs deeper than allowed.

PRINCIPLES:
- Every alert is attributed to a network (and a height when known)
- Clear alert lifecycle (trigger -> acknowledge -> resolve)
- Notification-only: handlers never influence the scan loop

============================================================
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


class AlertTier(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class ScanAlert:
    """One surfaced scan condition."""

    network_id: str
    tier: AlertTier
    category: str
    title: str
    message: str
    height: Optional[int] = None
    alert_id: str = field(default_factory=lambda: f"alert_{uuid.uuid4().hex[:12]}")
    triggered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "network_id": self.network_id,
            "height": self.height,
            "tier": self.tier.value,
            "category": self.category,
            "title": self.title,
            "message": self.message,
            "triggered_at": self.triggered_at.isoformat(),
            "acknowledged": self.acknowledged,
            "resolved": self.resolved,
        }


# ============================================================
# ALERT HISTORY
# ============================================================

class AlertHistory:
    """Bounded alert history, newest last."""

    def __init__(self, max_history: int = 10000):
        self._alerts: List[ScanAlert] = []
        self._max_history = max_history
        self._alerts_by_id: Dict[str, ScanAlert] = {}

    def add(self, alert: ScanAlert) -> None:
        self._alerts.append(alert)
        self._alerts_by_id[alert.alert_id] = alert

        if len(self._alerts) > self._max_history:
            removed = self._alerts[:-self._max_history]
            self._alerts = self._alerts[-self._max_history:]
            for old in removed:
                self._alerts_by_id.pop(old.alert_id, None)

    def get(self, alert_id: str) -> Optional[ScanAlert]:
        return self._alerts_by_id.get(alert_id)

    def get_recent(self, limit: int = 100) -> List[ScanAlert]:
        """Newest first."""
        return self._alerts[-limit:][::-1]

    def get_active(self, network_id: Optional[str] = None) -> List[ScanAlert]:
        return [
            a for a in self._alerts
            if not a.resolved and (network_id is None or a.network_id == network_id)
        ]

    def get_by_tier(self, tier: AlertTier) -> List[ScanAlert]:
        return [a for a in self._alerts if a.tier == tier]

    def get_by_category(self, category: str) -> List[ScanAlert]:
        return [a for a in self._alerts if a.category == category]

    def __len__(self) -> int:
        return len(self._alerts)

    def stats(self) -> Dict[str, Any]:
        return {
            "total_alerts": len(self._alerts),
            "active_alerts": len(self.get_active()),
            "by_tier": {tier.value: len(self.get_by_tier(tier)) for tier in AlertTier},
        }


# ============================================================
# ALERT MANAGER
# ============================================================

# Type for notification handlers
NotificationHandler = Callable[[ScanAlert], Awaitable[Any]]


class AlertManager:
    """
    Records scan alerts and dispatches them to handlers.

    Handler failures are logged and never reach the scanner.
    """

    def __init__(
        self,
        notification_handlers: Optional[List[NotificationHandler]] = None,
        max_history: int = 10000,
    ):
        self._handlers = list(notification_handlers or [])
        self._history = AlertHistory(max_history)

    @property
    def history(self) -> AlertHistory:
        return self._history

    def add_handler(self, handler: NotificationHandler) -> None:
        self._handlers.append(handler)

    def remove_handler(self, handler: NotificationHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def raise_alert(
        self,
        network_id: str,
        tier: AlertTier,
        category: str,
        title: str,
        message: str,
        height: Optional[int] = None,
    ) -> ScanAlert:
        """Record an alert and notify every handler."""
        alert = ScanAlert(
            network_id=network_id,
            tier=tier,
            category=category,
            title=title,
            message=message,
            height=height,
        )
        self._history.add(alert)

        where = f" at height {height}" if height is not None else ""
        log = logger.error if tier == AlertTier.CRITICAL else logger.warning
        log(f"[{network_id}] Alert [{tier.value}] {title}{where}: {message}")

        for handler in self._handlers:
            try:
                await handler(alert)
            except Exception as e:
                logger.error(f"Notification handler error: {e}")
        return alert

    def acknowledge(self, alert_id: str, acknowledged_by: str) -> bool:
        alert = self._history.get(alert_id)
        if alert is None:
            return False
        alert.acknowledged = True
        alert.acknowledged_at = datetime.now(timezone.utc)
        alert.acknowledged_by = acknowledged_by
        return True

    def resolve_network(self, network_id: str, category: Optional[str] = None) -> int:
        """Resolve active alerts of a network, optionally of one category."""
        resolved = 0
        now = datetime.now(timezone.utc)
        for alert in self._history.get_active(network_id):
            if category is None or alert.category == category:
                alert.resolved = True
                alert.resolved_at = now
                resolved += 1
        return resolved

    def get_active_alerts(self, network_id: Optional[str] = None) -> List[ScanAlert]:
        return self._history.get_active(network_id)

    def get_critical_alerts(self) -> List[ScanAlert]:
        return [a for a in self._history.get_active() if a.tier == AlertTier.CRITICAL]

    def get_alert_summary(self) -> Dict[str, Any]:
        active = self._history.get_active()
        return {
            "active_count": len(active),
            "critical_count": sum(1 for a in active if a.tier == AlertTier.CRITICAL),
            "warning_count": sum(1 for a in active if a.tier == AlertTier.WARNING),
            "stats": self._history.stats(),
        }
