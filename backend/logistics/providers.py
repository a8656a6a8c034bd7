"""
External collaborators consumed by the decision engine.

The engine never owns delivery history, live conditions, plans or routes.
Each is reached through one of the interfaces below, which the host
application implements against its own storage and telemetry.

History-backed helpers at the bottom derive dataset sufficiency and driver
performance from any HistoryProvider.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from core.config import get_settings
from logistics.models import (
    AiAlert,
    CurrentConditions,
    DeliveryHistoryRecord,
    DeliveryStatus,
    PlanTier,
    RoutePoint,
    TenantPlanInfo,
    TrafficLevel,
    utcnow,
)

logger = structlog.get_logger()

ON_TIME_THRESHOLD_MINUTES = 5


@dataclass(frozen=True)
class HistoryFilters:
    driver_id: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    region: str | None = None
    status: DeliveryStatus | None = None
    limit: int | None = None

    def matches(self, record: DeliveryHistoryRecord) -> bool:
        if self.driver_id is not None and record.driver_id != self.driver_id:
            return False
        if self.start is not None and record.created_at < self.start:
            return False
        if self.end is not None and record.created_at > self.end:
            return False
        if self.region is not None and record.region != self.region:
            return False
        if self.status is not None and record.status != self.status:
            return False
        return True


@dataclass(frozen=True)
class OrderContext:
    """Assignment details for an order: who delivers it and when it was promised."""

    driver_id: str = ""
    eta_original: datetime | None = None


@dataclass(frozen=True)
class CurrentRoute:
    driver_id: str
    points: tuple[RoutePoint, ...] = field(default_factory=tuple)


# ── Interfaces ─────────────────────────────────────────────────────────────


class HistoryProvider(ABC):
    @abstractmethod
    async def get_delivery_history(self, tenant_id: str, filters: HistoryFilters) -> list[DeliveryHistoryRecord]:
        """Delivery records matching ``filters``, oldest first."""
        ...


class ConditionsProvider(ABC):
    @abstractmethod
    async def get_current_conditions(self, tenant_id: str, order_id: str) -> CurrentConditions:
        """Traffic, weather, hour, weekday and region around an order right now."""
        ...

    async def get_order_context(self, tenant_id: str, order_id: str) -> OrderContext | None:
        """Driver and promised ETA for the order, when the host knows them."""
        return None


class DatasetValidator(ABC):
    @abstractmethod
    async def is_dataset_sufficient(self, tenant_id: str) -> bool: ...


class PlanProvider(ABC):
    @abstractmethod
    async def get_plan(self, tenant_id: str) -> TenantPlanInfo | None: ...


class CurrentRouteProvider(ABC):
    @abstractmethod
    async def get_current_route(self, tenant_id: str, driver_id: str) -> CurrentRoute | None: ...


class RouteTrafficProvider(ABC):
    @abstractmethod
    async def get_leg_traffic(self, points: Sequence[RoutePoint]) -> list[TrafficLevel]:
        """Traffic level for each stop on the route."""
        ...


class DriverPerformanceProvider(ABC):
    @abstractmethod
    async def get_average_delay(self, tenant_id: str, driver_id: str) -> float | None:
        """Average delay in minutes, or None when the driver has no history."""
        ...


class AlertSink(ABC):
    """Outbound channel for alerts (websocket fan-out, push, email...)."""

    @abstractmethod
    async def publish(self, alert: AiAlert) -> None: ...


# ── History-backed helpers ─────────────────────────────────────────────────


class InMemoryHistoryProvider(HistoryProvider):
    """History held in a list; handy for tests and seeded demos."""

    def __init__(self, records: Sequence[DeliveryHistoryRecord] = ()):
        self.records = list(records)

    async def get_delivery_history(self, tenant_id: str, filters: HistoryFilters) -> list[DeliveryHistoryRecord]:
        matched = sorted((r for r in self.records if filters.matches(r)), key=lambda r: r.created_at)
        if filters.limit is not None:
            matched = matched[-filters.limit :]
        return matched


class HistoryDatasetValidator(DatasetValidator):
    """
    Dataset sufficiency from raw delivery history.

    Sufficient when the trailing 7 days hold at least ``min_orders_last_7_days``
    orders AND the tenant has at least ``min_completed_deliveries`` completed
    deliveries overall.
    """

    def __init__(
        self,
        history: HistoryProvider,
        min_orders_last_7_days: int | None = None,
        min_completed_deliveries: int | None = None,
    ):
        settings = get_settings()
        self.history = history
        self.min_orders = (
            min_orders_last_7_days if min_orders_last_7_days is not None else settings.min_orders_last_7_days
        )
        self.min_completed = (
            min_completed_deliveries if min_completed_deliveries is not None else settings.min_completed_deliveries
        )

    async def is_dataset_sufficient(self, tenant_id: str, now: datetime | None = None) -> bool:
        since = (now or utcnow()) - timedelta(days=7)
        recent = await self.history.get_delivery_history(tenant_id, HistoryFilters(start=since))
        if len(recent) < self.min_orders:
            logger.info(
                "dataset.insufficient",
                tenant_id=tenant_id,
                reason="recent_orders",
                count=len(recent),
                required=self.min_orders,
            )
            return False

        completed = await self.history.get_delivery_history(
            tenant_id, HistoryFilters(status=DeliveryStatus.COMPLETED)
        )
        if len(completed) < self.min_completed:
            logger.info(
                "dataset.insufficient",
                tenant_id=tenant_id,
                reason="completed_deliveries",
                count=len(completed),
                required=self.min_completed,
            )
            return False
        return True


class HistoryDriverPerformance(DriverPerformanceProvider):
    """Average delay over the trailing ``days`` of a driver's deliveries."""

    def __init__(self, history: HistoryProvider, days: int = 30):
        self.history = history
        self.days = days

    async def get_average_delay(self, tenant_id: str, driver_id: str) -> float | None:
        since = utcnow() - timedelta(days=self.days)
        records = await self.history.get_delivery_history(tenant_id, HistoryFilters(driver_id=driver_id, start=since))
        if not records:
            return None
        return sum(r.delay_minutes for r in records) / len(records)


class StaticPlanProvider(PlanProvider):
    """Fixed tenant → plan mapping with an optional default."""

    def __init__(self, plans: dict[str, TenantPlanInfo] | None = None, default: TenantPlanInfo | None = None):
        self.plans = dict(plans or {})
        self.default = default

    async def get_plan(self, tenant_id: str) -> TenantPlanInfo | None:
        return self.plans.get(tenant_id, self.default)


FREE_PLAN = TenantPlanInfo(plan=PlanTier.FREE, delay_prediction=False, route_optimization=False, auto_alerts=False)
PRO_PLAN = TenantPlanInfo(plan=PlanTier.PRO, delay_prediction=True, route_optimization=True, auto_alerts=True)
ENTERPRISE_PLAN = TenantPlanInfo(
    plan=PlanTier.ENTERPRISE, delay_prediction=True, route_optimization=True, auto_alerts=True
)


# ── Summaries ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RegionSummary:
    deliveries: int
    average_delay: float


@dataclass(frozen=True)
class DriverHistorySummary:
    total_deliveries: int
    average_delay_minutes: float
    on_time_percentage: float
    average_distance_km: float
    performance_by_region: dict[str, RegionSummary]


def summarize_driver_history(history: Sequence[DeliveryHistoryRecord]) -> DriverHistorySummary:
    """Totals, on-time share and per-region averages for a set of deliveries."""
    total = len(history)
    if total == 0:
        return DriverHistorySummary(0, 0.0, 0.0, 0.0, {})

    by_region: dict[str, list[float]] = {}
    for record in history:
        by_region.setdefault(record.region, []).append(record.delay_minutes)

    return DriverHistorySummary(
        total_deliveries=total,
        average_delay_minutes=sum(r.delay_minutes for r in history) / total,
        on_time_percentage=sum(1 for r in history if r.delay_minutes <= ON_TIME_THRESHOLD_MINUTES) / total * 100,
        average_distance_km=sum(r.distance_km for r in history) / total,
        performance_by_region={
            region: RegionSummary(deliveries=len(delays), average_delay=sum(delays) / len(delays))
            for region, delays in by_region.items()
        },
    )
