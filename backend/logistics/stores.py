"""
Tenant-scoped stores: Abstract interfaces plus in-memory backends.

The engine only talks to these interfaces, so the in-memory maps below can
be swapped for a database-backed implementation (see
db.decision_log_store.SqlDecisionLogStore) without touching engine logic.

In-memory backends guard every mutation with an asyncio.Lock: settings are
last-writer-wins, and no decision-log append is ever lost.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from logistics.models import AiAlert, AiDecisionLog, DecisionType, LogisticsAiSettings


@dataclass(frozen=True)
class DecisionLogFilters:
    """Optional filters for decision log queries. start/end bound created_at inclusively."""

    type: DecisionType | None = None
    order_id: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int | None = None

    def matches(self, record: AiDecisionLog) -> bool:
        if self.type is not None and record.type != self.type:
            return False
        if self.order_id is not None and record.order_id != self.order_id:
            return False
        if self.start is not None and record.created_at < self.start:
            return False
        if self.end is not None and record.created_at > self.end:
            return False
        return True


# ── Decision log ───────────────────────────────────────────────────────────


class DecisionLogStore(ABC):
    """Append-only per-tenant storage for decision audit records."""

    @abstractmethod
    async def append(self, record: AiDecisionLog) -> None: ...

    @abstractmethod
    async def query(self, tenant_id: str, filters: DecisionLogFilters) -> list[AiDecisionLog]:
        """Matching records, newest first."""
        ...

    @abstractmethod
    async def delete_older_than(self, tenant_id: str, cutoff: datetime) -> int:
        """Drop records created before ``cutoff`` and return how many went."""
        ...

    @abstractmethod
    async def delete_tenant(self, tenant_id: str) -> int: ...


class InMemoryDecisionLogStore(DecisionLogStore):
    def __init__(self):
        self._records: dict[str, list[AiDecisionLog]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def append(self, record: AiDecisionLog) -> None:
        async with self._lock:
            self._records[record.tenant_id].append(record)

    async def query(self, tenant_id: str, filters: DecisionLogFilters) -> list[AiDecisionLog]:
        async with self._lock:
            records = list(self._records.get(tenant_id, ()))
        matched = [r for r in records if filters.matches(r)]
        # Appends arrive in time order, so reversing keeps ties newest-first
        matched.reverse()
        matched.sort(key=lambda r: r.created_at, reverse=True)
        if filters.limit is not None:
            matched = matched[: filters.limit]
        return matched

    async def delete_older_than(self, tenant_id: str, cutoff: datetime) -> int:
        async with self._lock:
            records = self._records.get(tenant_id, [])
            kept = [r for r in records if r.created_at >= cutoff]
            removed = len(records) - len(kept)
            if tenant_id in self._records:
                self._records[tenant_id] = kept
            return removed

    async def delete_tenant(self, tenant_id: str) -> int:
        async with self._lock:
            return len(self._records.pop(tenant_id, []))


# ── Settings ───────────────────────────────────────────────────────────────


class SettingsStore(ABC):
    """One settings row per tenant."""

    @abstractmethod
    async def get(self, tenant_id: str) -> LogisticsAiSettings | None: ...

    @abstractmethod
    async def put(self, settings: LogisticsAiSettings) -> None: ...

    @abstractmethod
    async def delete(self, tenant_id: str) -> bool: ...


class InMemorySettingsStore(SettingsStore):
    def __init__(self):
        self._settings: dict[str, LogisticsAiSettings] = {}
        self._lock = asyncio.Lock()

    async def get(self, tenant_id: str) -> LogisticsAiSettings | None:
        async with self._lock:
            return self._settings.get(tenant_id)

    async def put(self, settings: LogisticsAiSettings) -> None:
        async with self._lock:
            self._settings[settings.tenant_id] = settings

    async def delete(self, tenant_id: str) -> bool:
        async with self._lock:
            return self._settings.pop(tenant_id, None) is not None


# ── Alerts ─────────────────────────────────────────────────────────────────


class AlertStore(ABC):
    """Per-tenant alert inbox."""

    @abstractmethod
    async def add(self, alert: AiAlert) -> None: ...

    @abstractmethod
    async def get(self, tenant_id: str, alert_id: str) -> AiAlert | None: ...

    @abstractmethod
    async def list_alerts(self, tenant_id: str) -> list[AiAlert]:
        """Every alert for the tenant, newest first."""
        ...

    @abstractmethod
    async def replace(self, alert: AiAlert) -> None: ...

    @abstractmethod
    async def delete(self, tenant_id: str, alert_id: str) -> bool: ...

    @abstractmethod
    async def delete_expired(self, tenant_id: str, now: datetime) -> int:
        """Drop alerts whose expires_at is at or before ``now``."""
        ...


class InMemoryAlertStore(AlertStore):
    def __init__(self):
        self._alerts: dict[str, dict[str, AiAlert]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    async def add(self, alert: AiAlert) -> None:
        async with self._lock:
            self._alerts[alert.tenant_id][alert.id] = alert

    async def get(self, tenant_id: str, alert_id: str) -> AiAlert | None:
        async with self._lock:
            return self._alerts.get(tenant_id, {}).get(alert_id)

    async def list_alerts(self, tenant_id: str) -> list[AiAlert]:
        async with self._lock:
            alerts = list(self._alerts.get(tenant_id, {}).values())
        alerts.reverse()
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        return alerts

    async def replace(self, alert: AiAlert) -> None:
        async with self._lock:
            tenant_alerts = self._alerts.get(alert.tenant_id)
            if tenant_alerts is not None and alert.id in tenant_alerts:
                tenant_alerts[alert.id] = alert

    async def delete(self, tenant_id: str, alert_id: str) -> bool:
        async with self._lock:
            return self._alerts.get(tenant_id, {}).pop(alert_id, None) is not None

    async def delete_expired(self, tenant_id: str, now: datetime) -> int:
        async with self._lock:
            tenant_alerts = self._alerts.get(tenant_id, {})
            expired = [
                alert_id
                for alert_id, alert in tenant_alerts.items()
                if alert.expires_at is not None and alert.expires_at <= now
            ]
            for alert_id in expired:
                del tenant_alerts[alert_id]
            return len(expired)
