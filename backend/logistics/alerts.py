"""
Logistics AI alerts: creation, inbox queries and real-time delivery.

Alerts are stored per tenant through an AlertStore and optionally pushed to
an AlertSink. RedisAlertSink publishes to Redis pub/sub so websocket
workers can fan them out to connected dashboards.

Alert sources:
  1. Delay prediction: tier above none (critical / warning / info)
  2. Route suggestions: at least one high-priority suggestion (warning)
"""

import json
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime

import redis.asyncio as aioredis
import structlog

from core.config import get_settings
from logistics.models import (
    AiAlert,
    AlertSeverity,
    AlertType,
    DelayPrediction,
    EntityType,
    Priority,
    RiskTier,
    RouteSuggestion,
    new_id,
    utcnow,
)
from logistics.providers import AlertSink
from logistics.stores import AlertStore

logger = structlog.get_logger()

SEVERITY_BY_TIER = {
    RiskTier.HIGH: AlertSeverity.CRITICAL,
    RiskTier.MEDIUM: AlertSeverity.WARNING,
    RiskTier.LOW: AlertSeverity.INFO,
    RiskTier.NONE: AlertSeverity.INFO,
}

SUGGESTIONS_URL = "/logistics-ai/suggestions"


def severity_for_tier(tier: RiskTier) -> AlertSeverity:
    return SEVERITY_BY_TIER[RiskTier(tier)]


@dataclass(frozen=True)
class AlertFilters:
    unread_only: bool = False
    type: AlertType | None = None
    severity: AlertSeverity | None = None
    limit: int | None = None


class AlertService:
    def __init__(self, store: AlertStore, sink: AlertSink | None = None):
        self.store = store
        self.sink = sink

    async def create(
        self,
        tenant_id: str,
        alert_type: AlertType,
        severity: AlertSeverity,
        title: str,
        message: str,
        *,
        action_required: bool = False,
        entity_id: str | None = None,
        entity_type: EntityType | None = None,
        action_url: str | None = None,
        expires_at: datetime | None = None,
    ) -> AiAlert:
        """Store a new alert and push it to the sink. Sink failures are logged only."""
        alert = AiAlert(
            id=new_id("alert"),
            tenant_id=tenant_id,
            type=alert_type,
            severity=severity,
            title=title,
            message=message,
            action_required=action_required,
            entity_id=entity_id,
            entity_type=entity_type,
            action_url=action_url,
            is_read=False,
            created_at=utcnow(),
            expires_at=expires_at,
        )
        await self.store.add(alert)
        logger.info(
            "alert.created",
            tenant_id=tenant_id,
            alert_id=alert.id,
            alert_type=alert_type.value,
            severity=severity.value,
        )

        if self.sink is not None:
            try:
                await self.sink.publish(alert)
            except Exception:
                logger.error("alert.publish_failed", tenant_id=tenant_id, alert_id=alert.id, exc_info=True)
        return alert

    async def delay_prediction_alert(self, prediction: DelayPrediction) -> AiAlert:
        tier = prediction.predicted_delay
        return await self.create(
            prediction.tenant_id,
            AlertType.DELAY_PREDICTION,
            severity_for_tier(tier),
            f"Delay predicted - {tier.value.upper()}",
            (
                f"Order {prediction.order_id} may be {prediction.delay_minutes_estimate} minutes late. "
                f"Confidence: {prediction.confidence_score * 100:.0f}%"
            ),
            action_required=tier == RiskTier.HIGH,
            entity_id=prediction.order_id,
            entity_type=EntityType.ORDER,
            action_url=f"/orders/{prediction.order_id}",
        )

    async def route_suggestions_alert(
        self,
        tenant_id: str,
        driver_id: str,
        suggestions: Sequence[RouteSuggestion],
    ) -> AiAlert | None:
        """Warn when at least one suggestion is high priority."""
        urgent = [s for s in suggestions if s.priority == Priority.HIGH]
        if not urgent:
            return None
        return await self.create(
            tenant_id,
            AlertType.ROUTE_SUGGESTION,
            AlertSeverity.WARNING,
            "Route suggestions available",
            f"{len(urgent)} high-priority route suggestion(s) ready for review",
            action_required=True,
            entity_id=driver_id,
            entity_type=EntityType.DRIVER,
            action_url=SUGGESTIONS_URL,
        )

    # ── Inbox ──────────────────────────────────────────────────────────

    async def get_alerts(self, tenant_id: str, filters: AlertFilters | None = None) -> list[AiAlert]:
        filters = filters or AlertFilters()
        alerts = await self.store.list_alerts(tenant_id)
        if filters.unread_only:
            alerts = [a for a in alerts if not a.is_read]
        if filters.type is not None:
            alerts = [a for a in alerts if a.type == filters.type]
        if filters.severity is not None:
            alerts = [a for a in alerts if a.severity == filters.severity]
        if filters.limit is not None:
            alerts = alerts[: filters.limit]
        return alerts

    async def mark_as_read(self, tenant_id: str, alert_id: str) -> bool:
        alert = await self.store.get(tenant_id, alert_id)
        if alert is None:
            return False
        if not alert.is_read:
            await self.store.replace(replace(alert, is_read=True))
        return True

    async def mark_all_as_read(self, tenant_id: str) -> int:
        unread = [a for a in await self.store.list_alerts(tenant_id) if not a.is_read]
        for alert in unread:
            await self.store.replace(replace(alert, is_read=True))
        return len(unread)

    async def delete(self, tenant_id: str, alert_id: str) -> bool:
        return await self.store.delete(tenant_id, alert_id)

    async def unread_count(self, tenant_id: str) -> int:
        return sum(1 for a in await self.store.list_alerts(tenant_id) if not a.is_read)

    async def cleanup_expired(self, tenant_id: str, now: datetime | None = None) -> int:
        removed = await self.store.delete_expired(tenant_id, now or utcnow())
        if removed:
            logger.info("alert.expired_removed", tenant_id=tenant_id, removed=removed)
        return removed


# ──────────────────────────────────────────────────────────────────────────
# Redis pub/sub delivery
# ──────────────────────────────────────────────────────────────────────────


class RedisAlertSink(AlertSink):
    """Publish alerts to ``<prefix>:<tenant_id>`` for real-time delivery."""

    def __init__(self, redis_url: str | None = None, channel_prefix: str | None = None):
        settings = get_settings()
        self.redis_url = redis_url or settings.redis_url
        self.channel_prefix = channel_prefix or settings.alert_channel_prefix

    def channel_for(self, tenant_id: str) -> str:
        return f"{self.channel_prefix}:{tenant_id}"

    async def publish(self, alert: AiAlert) -> int:
        payload = json.dumps(
            {
                "type": "alert",
                "payload": {
                    "alert_id": alert.id,
                    "alert_type": alert.type.value,
                    "severity": alert.severity.value,
                    "title": alert.title,
                    "message": alert.message,
                    "entity_id": alert.entity_id,
                    "entity_type": alert.entity_type.value if alert.entity_type else None,
                    "action_required": alert.action_required,
                    "action_url": alert.action_url,
                    "created_at": alert.created_at.isoformat(),
                },
            }
        )
        redis = aioredis.from_url(self.redis_url)
        try:
            return await redis.publish(self.channel_for(alert.tenant_id), payload)
        finally:
            await redis.aclose()
