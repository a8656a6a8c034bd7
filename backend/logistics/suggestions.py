"""
Route suggestions for a driver's in-progress route.

Three independent generators, any combination of which may fire:
  - reorder_stops: nearest-neighbor would save more than 1 km
  - alternative_route: at least one leg reports heavy traffic
  - change_driver: the driver's historical average delay exceeds 20 min

Every suggestion starts pending and needs confirmation before it is acted on.
"""

from collections.abc import Sequence
from datetime import datetime, timedelta

from logistics.geo import round_half_up, total_distance_km
from logistics.models import (
    PRIORITY_RANK,
    ImprovementEstimate,
    Priority,
    RoutePoint,
    RouteSuggestion,
    SuggestionStatus,
    SuggestionType,
    TrafficLevel,
    new_id,
    utcnow,
)
from logistics.route_optimizer import apply_nearest_neighbor

REORDER_MIN_SAVING_KM = 1.0
REORDER_HIGH_PRIORITY_KM = 3.0
DRIVER_DELAY_THRESHOLD_MINUTES = 20

REORDER_TTL = timedelta(hours=1)
ALTERNATIVE_TTL = timedelta(minutes=30)
CHANGE_DRIVER_TTL = timedelta(hours=2)


def _suggestion(
    tenant_id: str,
    kind: SuggestionType,
    priority: Priority,
    title: str,
    description: str,
    improvement: ImprovementEstimate,
    confidence: float,
    now: datetime,
    ttl: timedelta,
) -> RouteSuggestion:
    return RouteSuggestion(
        id=new_id(f"suggest_{kind.value}"),
        tenant_id=tenant_id,
        type=kind,
        priority=priority,
        title=title,
        description=description,
        estimated_improvement=improvement,
        confidence=confidence,
        requires_confirmation=True,
        status=SuggestionStatus.PENDING,
        created_at=now,
        expires_at=now + ttl,
    )


def reorder_suggestion(tenant_id: str, points: Sequence[RoutePoint], now: datetime) -> RouteSuggestion | None:
    if len(points) < 3:
        return None

    saving = total_distance_km(points) - total_distance_km(apply_nearest_neighbor(points))
    if saving <= REORDER_MIN_SAVING_KM:
        return None

    return _suggestion(
        tenant_id,
        SuggestionType.REORDER_STOPS,
        Priority.HIGH if saving > REORDER_HIGH_PRIORITY_KM else Priority.MEDIUM,
        "Reorder stops",
        f"Reordering the remaining stops could save {saving:.1f} km",
        ImprovementEstimate(
            time_reduction_minutes=round_half_up(saving * 2),
            distance_reduction_km=saving,
            delay_risk_reduction=0.2,
        ),
        0.8,
        now,
        REORDER_TTL,
    )


def alternative_route_suggestion(
    tenant_id: str,
    leg_traffic: Sequence[TrafficLevel | str],
    now: datetime,
) -> RouteSuggestion | None:
    if not any(level == TrafficLevel.HIGH for level in leg_traffic):
        return None

    return _suggestion(
        tenant_id,
        SuggestionType.ALTERNATIVE_ROUTE,
        Priority.MEDIUM,
        "Alternative route",
        "Heavy traffic detected on the current route. An alternative is available.",
        ImprovementEstimate(time_reduction_minutes=15, distance_reduction_km=2.0, delay_risk_reduction=0.3),
        0.7,
        now,
        ALTERNATIVE_TTL,
    )


def change_driver_suggestion(
    tenant_id: str,
    driver_id: str,
    driver_average_delay: float | None,
    now: datetime,
) -> RouteSuggestion | None:
    if driver_average_delay is None or driver_average_delay <= DRIVER_DELAY_THRESHOLD_MINUTES:
        return None

    return _suggestion(
        tenant_id,
        SuggestionType.CHANGE_DRIVER,
        Priority.LOW,
        "Consider reassigning driver",
        f"Driver {driver_id} averages {driver_average_delay:.0f} min of delay in this area",
        ImprovementEstimate(time_reduction_minutes=10, distance_reduction_km=0.0, delay_risk_reduction=0.4),
        0.6,
        now,
        CHANGE_DRIVER_TTL,
    )


def generate_suggestions(
    tenant_id: str,
    driver_id: str,
    points: Sequence[RoutePoint],
    leg_traffic: Sequence[TrafficLevel | str] = (),
    driver_average_delay: float | None = None,
    now: datetime | None = None,
) -> list[RouteSuggestion]:
    """Build every applicable suggestion for the driver's route, highest priority first."""
    now = now or utcnow()
    candidates = [
        reorder_suggestion(tenant_id, points, now),
        alternative_route_suggestion(tenant_id, leg_traffic, now),
        change_driver_suggestion(tenant_id, driver_id, driver_average_delay, now),
    ]
    suggestions = [s for s in candidates if s is not None]
    return sorted(suggestions, key=lambda s: PRIORITY_RANK[s.priority], reverse=True)
