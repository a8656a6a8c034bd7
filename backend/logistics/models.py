"""
Logistics AI domain objects.

Value objects flowing through the decision engine. Everything here is
immutable; state changes (suggestion approval, alert read flag, settings
updates) produce new instances via dataclasses.replace.
"""

import re
import uuid
from dataclasses import dataclass, field, fields, is_dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from core.errors import InvalidSuggestionTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


# ── Enumerations ───────────────────────────────────────────────────────────


class RiskTier(str, Enum):
    """Discretized delay risk."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


PRIORITY_RANK = {Priority.HIGH: 3, Priority.MEDIUM: 2, Priority.LOW: 1}


class TrafficLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DeliveryStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DELAYED = "delayed"


class FactorType(str, Enum):
    TRAFFIC = "traffic"
    WEATHER = "weather"
    HISTORICAL = "historical"
    DRIVER_PERFORMANCE = "driver_performance"
    TIME_OF_DAY = "time_of_day"
    REGION = "region"


class SuggestionType(str, Enum):
    REORDER_STOPS = "reorder_stops"
    CHANGE_DRIVER = "change_driver"
    ALTERNATIVE_ROUTE = "alternative_route"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class AlertType(str, Enum):
    DELAY_PREDICTION = "delay_prediction"
    ROUTE_SUGGESTION = "route_suggestion"
    ETA_UPDATE = "eta_update"
    DRIVER_PERFORMANCE = "driver_performance"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class EntityType(str, Enum):
    ORDER = "order"
    DRIVER = "driver"
    ROUTE = "route"


class DecisionType(str, Enum):
    DELAY = "delay"
    ROUTE = "route"
    ALERT = "alert"


class PlanTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


# ── Inputs ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DeliveryHistoryRecord:
    """One completed/cancelled/delayed delivery, as supplied by the history provider."""

    order_id: str
    driver_id: str
    distance_km: float
    eta_original: datetime
    eta_actual: datetime
    status: DeliveryStatus
    delay_minutes: float
    hour_of_day: int
    day_of_week: int
    region: str
    weather_condition: str | None = None
    traffic_level: TrafficLevel | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class CurrentConditions:
    """Conditions around an order at scoring time. Every field is optional."""

    traffic_level: TrafficLevel | None = None
    weather_condition: str | None = None
    hour_of_day: int | None = None
    day_of_week: int | None = None
    region: str | None = None


_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str) -> tuple[int, int]:
    """Parse an HH:MM clock string into (hour, minute)."""
    match = _HHMM.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"Expected HH:MM, got {value!r}")
    return int(match.group(1)), int(match.group(2))


@dataclass(frozen=True)
class RoutePoint:
    order_id: str
    latitude: float
    longitude: float
    address: str = ""
    estimated_service_time_minutes: float = 0.0
    priority: Priority = Priority.MEDIUM

    def __post_init__(self):
        if self.estimated_service_time_minutes < 0:
            raise ValueError("estimated_service_time_minutes must be >= 0")


@dataclass(frozen=True)
class RouteConstraints:
    max_stops_per_route: int
    max_route_duration_minutes: int
    working_hours_start: str = "08:00"
    working_hours_end: str = "18:00"
    vehicle_capacity: int | None = None

    def __post_init__(self):
        if self.max_stops_per_route <= 0:
            raise ValueError("max_stops_per_route must be > 0")
        if self.max_route_duration_minutes <= 0:
            raise ValueError("max_route_duration_minutes must be > 0")
        parse_hhmm(self.working_hours_start)
        parse_hhmm(self.working_hours_end)


@dataclass(frozen=True)
class RouteOptimizationRequest:
    """Stops to sequence plus the constraints to respect."""

    points: tuple[RoutePoint, ...]
    constraints: RouteConstraints
    driver_id: str | None = None
    order_ids: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "points", tuple(self.points))
        if not self.order_ids:
            object.__setattr__(self, "order_ids", tuple(p.order_id for p in self.points))
        else:
            object.__setattr__(self, "order_ids", tuple(self.order_ids))


# ── Outputs ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DelayFactor:
    """A weighted, human-readable contributor to delay risk."""

    type: FactorType
    weight: float
    description: str


@dataclass(frozen=True)
class DelayPrediction:
    id: str
    tenant_id: str
    order_id: str
    driver_id: str
    predicted_delay: RiskTier
    delay_minutes_estimate: int
    confidence_score: float
    eta_original: datetime
    eta_predicted: datetime
    factors: tuple[DelayFactor, ...]
    fallback_used: bool
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class OptimizedRoute:
    id: str
    tenant_id: str
    driver_id: str
    points: tuple[RoutePoint, ...]
    total_distance_km: float
    estimated_duration_minutes: int
    estimated_delay_risk: RiskTier
    fallback_used: bool
    created_at: datetime


@dataclass(frozen=True)
class ImprovementEstimate:
    time_reduction_minutes: int
    distance_reduction_km: float
    delay_risk_reduction: float


# pending is the only non-terminal state
_SUGGESTION_TRANSITIONS = {
    SuggestionStatus.PENDING: {
        SuggestionStatus.APPROVED,
        SuggestionStatus.REJECTED,
        SuggestionStatus.EXPIRED,
    },
}


@dataclass(frozen=True)
class RouteSuggestion:
    id: str
    tenant_id: str
    type: SuggestionType
    priority: Priority
    title: str
    description: str
    estimated_improvement: ImprovementEstimate
    confidence: float
    requires_confirmation: bool
    status: SuggestionStatus
    created_at: datetime
    expires_at: datetime

    def is_lapsed(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def effective_status(self, now: datetime | None = None) -> SuggestionStatus:
        """Status with time-driven expiry applied (pending past expires_at reads as expired)."""
        if self.status == SuggestionStatus.PENDING and self.is_lapsed(now):
            return SuggestionStatus.EXPIRED
        return self.status

    def approve(self, now: datetime | None = None) -> "RouteSuggestion":
        return self._transition(SuggestionStatus.APPROVED, self.effective_status(now))

    def reject(self, now: datetime | None = None) -> "RouteSuggestion":
        return self._transition(SuggestionStatus.REJECTED, self.effective_status(now))

    def expire(self, now: datetime | None = None) -> "RouteSuggestion":
        if not self.is_lapsed(now):
            raise InvalidSuggestionTransition(self.id, self.status.value, SuggestionStatus.EXPIRED.value)
        return self._transition(SuggestionStatus.EXPIRED, self.status)

    def _transition(self, target: SuggestionStatus, current: SuggestionStatus) -> "RouteSuggestion":
        if target not in _SUGGESTION_TRANSITIONS.get(current, set()):
            raise InvalidSuggestionTransition(self.id, current.value, target.value)
        return replace(self, status=target)


@dataclass(frozen=True)
class AiAlert:
    id: str
    tenant_id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    action_required: bool = False
    entity_id: str | None = None
    entity_type: EntityType | None = None
    action_url: str | None = None
    is_read: bool = False
    created_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None


# ── Tenant state ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LogisticsAiSettings:
    tenant_id: str
    delay_prediction_enabled: bool = True
    route_optimization_enabled: bool = True
    auto_alerts_enabled: bool = True
    confidence_threshold: float = 0.7
    prediction_horizon_minutes: int = 60
    max_suggestions_per_driver: int = 5
    working_hours_enabled: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class AiDecisionLog:
    id: str
    tenant_id: str
    type: DecisionType
    input: dict[str, Any]
    output: dict[str, Any]
    confidence_score: float
    fallback_used: bool
    order_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TenantPlanInfo:
    plan: PlanTier
    delay_prediction: bool
    route_optimization: bool
    auto_alerts: bool


# ── Serialization ──────────────────────────────────────────────────────────


def to_snapshot(value: Any) -> Any:
    """Convert domain objects into JSON-friendly structures for audit snapshots."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_snapshot(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, dict):
        return {str(k): to_snapshot(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_snapshot(v) for v in value]
    return value
