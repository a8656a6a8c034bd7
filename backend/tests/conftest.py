"""
Test Configuration: Fixtures for stores, fake providers and a wired engine.

Every external collaborator is replaced by a small in-process fake so tests
control plans, dataset sufficiency, conditions and routes directly. The
SQL-backed audit store gets its own in-memory SQLite engine per test.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from db.session import create_engine, create_schema, create_session_factory
from logistics.alerts import AlertService
from logistics.audit_log import DecisionAuditLog
from logistics.engine import LogisticsDecisionEngine
from logistics.feature_gate import FeatureGate, PlanCache
from logistics.models import (
    AiAlert,
    CurrentConditions,
    DeliveryHistoryRecord,
    DeliveryStatus,
    Priority,
    RoutePoint,
    TrafficLevel,
)
from logistics.providers import (
    PRO_PLAN,
    AlertSink,
    ConditionsProvider,
    CurrentRoute,
    CurrentRouteProvider,
    DatasetValidator,
    DriverPerformanceProvider,
    InMemoryHistoryProvider,
    OrderContext,
    RouteTrafficProvider,
    StaticPlanProvider,
)
from logistics.settings_service import SettingsService
from logistics.stores import InMemoryAlertStore, InMemoryDecisionLogStore, InMemorySettingsStore

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TENANT_ID = "tenant_001"
DRIVER_ID = "driver_001"
ORDER_ID = "order_001"

# Short enough to keep timeout tests fast, long enough for in-process work
TEST_DEADLINE_MS = 200

ETA = datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)


# ── Builders ───────────────────────────────────────────────────────────────


def make_record(
    delay_minutes: float = 0,
    region: str = "centro",
    status: DeliveryStatus = DeliveryStatus.COMPLETED,
    driver_id: str = DRIVER_ID,
    created_at: datetime | None = None,
    order_id: str = "hist",
) -> DeliveryHistoryRecord:
    created = created_at or datetime.now(timezone.utc) - timedelta(hours=1)
    return DeliveryHistoryRecord(
        order_id=order_id,
        driver_id=driver_id,
        distance_km=4.0,
        eta_original=created,
        eta_actual=created + timedelta(minutes=delay_minutes) if math.isfinite(delay_minutes) else created,
        status=status,
        delay_minutes=delay_minutes,
        hour_of_day=created.hour,
        day_of_week=created.weekday(),
        region=region,
        created_at=created,
    )


def make_point(
    order_id: str,
    latitude: float,
    longitude: float,
    priority: Priority = Priority.MEDIUM,
    service_minutes: float = 5.0,
) -> RoutePoint:
    return RoutePoint(
        order_id=order_id,
        latitude=latitude,
        longitude=longitude,
        address=f"{order_id} street",
        estimated_service_time_minutes=service_minutes,
        priority=priority,
    )


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def point_factory():
    return make_point


@pytest.fixture
def zigzag_points():
    """Four stops along a meridian, listed out of order (~1.1 km per 0.01°)."""
    return [
        make_point("a", -23.50, -46.60),
        make_point("c", -23.52, -46.60),
        make_point("b", -23.51, -46.60),
        make_point("d", -23.53, -46.60),
    ]


# ── Fakes ──────────────────────────────────────────────────────────────────


class FakeConditions(ConditionsProvider):
    def __init__(self, conditions: CurrentConditions | None = None, context: OrderContext | None = None):
        self.conditions = conditions or CurrentConditions()
        self.context = context
        self.fail = False

    async def get_current_conditions(self, tenant_id, order_id):
        if self.fail:
            raise ConnectionError("conditions service unavailable")
        return self.conditions

    async def get_order_context(self, tenant_id, order_id):
        return self.context


class FakeValidator(DatasetValidator):
    def __init__(self, sufficient: bool = True):
        self.sufficient = sufficient
        self.calls = 0

    async def is_dataset_sufficient(self, tenant_id):
        self.calls += 1
        return self.sufficient


class FakeRouteProvider(CurrentRouteProvider):
    def __init__(self, points=()):
        self.points = tuple(points)

    async def get_current_route(self, tenant_id, driver_id):
        if not self.points:
            return None
        return CurrentRoute(driver_id=driver_id, points=self.points)


class FakeTraffic(RouteTrafficProvider):
    def __init__(self, level: TrafficLevel = TrafficLevel.LOW):
        self.level = level

    async def get_leg_traffic(self, points):
        return [self.level for _ in points]


class FakeDriverPerformance(DriverPerformanceProvider):
    def __init__(self, average_delay: float | None = None):
        self.average_delay = average_delay

    async def get_average_delay(self, tenant_id, driver_id):
        return self.average_delay


class RecordingSink(AlertSink):
    def __init__(self, fail: bool = False):
        self.published: list[AiAlert] = []
        self.fail = fail

    async def publish(self, alert):
        if self.fail:
            raise ConnectionError("redis down")
        self.published.append(alert)


class CountingScorer:
    """Wraps a scoring function and counts invocations."""

    def __init__(self, fn):
        self.fn = fn
        self.calls = 0

    def __call__(self, history, conditions):
        self.calls += 1
        return self.fn(history, conditions)


# ── Wired engine ───────────────────────────────────────────────────────────


@dataclass
class EngineHarness:
    engine: LogisticsDecisionEngine
    history: InMemoryHistoryProvider
    conditions: FakeConditions
    validator: FakeValidator
    plans: StaticPlanProvider
    gate: FeatureGate
    settings: SettingsService
    audit_log: DecisionAuditLog
    audit_store: InMemoryDecisionLogStore
    alerts: AlertService
    alert_store: InMemoryAlertStore
    sink: RecordingSink
    routes: FakeRouteProvider
    traffic: FakeTraffic
    driver_performance: FakeDriverPerformance


@pytest.fixture
def harness_factory():
    """Build an engine around fakes; keyword arguments override the defaults."""

    def build(**overrides) -> EngineHarness:
        history = overrides.pop("history", InMemoryHistoryProvider())
        conditions = overrides.pop("conditions", FakeConditions(context=OrderContext(DRIVER_ID, ETA)))
        validator = overrides.pop("validator", FakeValidator())
        plans = overrides.pop("plans", StaticPlanProvider(default=PRO_PLAN))
        gate = FeatureGate(plans, PlanCache(ttl_seconds=300))
        audit_store = InMemoryDecisionLogStore()
        audit_log = DecisionAuditLog(audit_store, max_queue_size=overrides.pop("audit_queue_size", 100))
        settings = SettingsService(InMemorySettingsStore(), audit_log)
        alert_store = InMemoryAlertStore()
        sink = overrides.pop("sink", RecordingSink())
        alerts = AlertService(alert_store, sink)
        routes = overrides.pop("routes", FakeRouteProvider())
        traffic = overrides.pop("traffic", FakeTraffic())
        driver_performance = overrides.pop("driver_performance", FakeDriverPerformance())

        engine = LogisticsDecisionEngine(
            history=history,
            conditions=conditions,
            dataset_validator=validator,
            gate=gate,
            settings_service=settings,
            audit_log=audit_log,
            alert_service=alerts,
            route_provider=routes,
            traffic_provider=traffic,
            driver_performance=driver_performance,
            deadline_ms=overrides.pop("deadline_ms", TEST_DEADLINE_MS),
            **overrides,
        )
        return EngineHarness(
            engine=engine,
            history=history,
            conditions=conditions,
            validator=validator,
            plans=plans,
            gate=gate,
            settings=settings,
            audit_log=audit_log,
            audit_store=audit_store,
            alerts=alerts,
            alert_store=alert_store,
            sink=sink,
            routes=routes,
            traffic=traffic,
            driver_performance=driver_performance,
        )

    return build


# ── Database ───────────────────────────────────────────────────────────────


@pytest.fixture
async def session_factory():
    """Fresh in-memory SQLite schema per test."""
    engine = create_engine(TEST_DATABASE_URL, echo=False)
    await create_schema(engine)
    yield create_session_factory(engine)
    await engine.dispose()
