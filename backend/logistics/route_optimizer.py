"""
Route Optimizer: Geospatial stop sequencing for a single driver route.

Pipeline (applied in order when there are more than two stops):
  1. Priority ordering: stable sort high > medium > low
  2. Working-hours pass: parses the window, never reorders
  3. Nearest-neighbor: from the first stop, repeatedly visit the closest
     unvisited stop (ties resolved by list order)
  4. Truncate to max_stops_per_route, dropping the lowest-priority tail

Duration: travel at 30 km/h plus each stop's service time.
Risk: stop count, total service time and high-priority load.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

import structlog

from logistics.geo import estimate_duration_minutes, point_distance_km, round_half_up, total_distance_km
from logistics.models import (
    PRIORITY_RANK,
    OptimizedRoute,
    Priority,
    RiskTier,
    RouteConstraints,
    RoutePoint,
    new_id,
    parse_hhmm,
    utcnow,
)

logger = structlog.get_logger()

UNASSIGNED_DRIVER = "unassigned"

# Route validation penalties
MAX_STOPS = 10
MAX_DURATION_MINUTES = 120
MAX_DISTANCE_KM = 50

# Alternative-route acceptance
REORDER_MIN_RATIO = 0.95
REORDER_MIN_SAVING_KM = 0.5
PRIORITY_MIN_SAVING_KM = 0.3


@dataclass(frozen=True)
class RouteValidation:
    is_valid: bool
    violations: tuple[str, ...]
    score: int


@dataclass(frozen=True)
class AlternativeRoute:
    """A reordered candidate for an existing route."""

    points: tuple[RoutePoint, ...]
    time_reduction_minutes: int
    distance_reduction_km: float
    confidence: float
    strategy: str = "nearest_neighbor"


# ──────────────────────────────────────────────────────────────────────────
# Pipeline stages
# ──────────────────────────────────────────────────────────────────────────


def apply_priority_ordering(points: Sequence[RoutePoint]) -> list[RoutePoint]:
    return sorted(points, key=lambda p: PRIORITY_RANK[Priority(p.priority)], reverse=True)


def apply_working_hours(
    points: Sequence[RoutePoint],
    constraints: RouteConstraints,
    now: datetime | None = None,
) -> list[RoutePoint]:
    """Working-hours window check. Stops keep their current order."""
    start_hour, _ = parse_hhmm(constraints.working_hours_start)
    end_hour, _ = parse_hhmm(constraints.working_hours_end)
    current_hour = (now or utcnow()).hour
    if current_hour < start_hour or current_hour > end_hour:
        logger.debug("route.outside_working_hours", hour=current_hour, start=start_hour, end=end_hour)
    return list(points)


def apply_nearest_neighbor(points: Sequence[RoutePoint]) -> list[RoutePoint]:
    """Greedy nearest-neighbor tour starting from the first point."""
    if len(points) <= 2:
        return list(points)

    ordered = [points[0]]
    remaining = list(points[1:])
    while remaining:
        current = ordered[-1]
        nearest_index = 0
        nearest_distance = point_distance_km(current, remaining[0])
        for i in range(1, len(remaining)):
            distance = point_distance_km(current, remaining[i])
            if distance < nearest_distance:
                nearest_distance = distance
                nearest_index = i
        ordered.append(remaining.pop(nearest_index))
    return ordered


def optimize_points(
    points: Sequence[RoutePoint],
    constraints: RouteConstraints,
    now: datetime | None = None,
) -> list[RoutePoint]:
    """Run the full sequencing pipeline over the highest-priority max_stops_per_route stops."""
    prioritized = apply_priority_ordering(points)[: constraints.max_stops_per_route]
    windowed = apply_working_hours(prioritized, constraints, now)
    if len(windowed) <= 2:
        return windowed

    optimized = apply_nearest_neighbor(windowed)

    # Greedy tours can lose to the input order on adversarial layouts
    if total_distance_km(optimized) > total_distance_km(windowed):
        optimized = windowed
    return optimized


# ──────────────────────────────────────────────────────────────────────────
# Route assessment
# ──────────────────────────────────────────────────────────────────────────


def assess_route_delay_risk(points: Sequence[RoutePoint]) -> RiskTier:
    total_service = sum(p.estimated_service_time_minutes for p in points)
    high_priority = sum(1 for p in points if p.priority == Priority.HIGH)
    stops = len(points)

    if stops > 8 or total_service > 60:
        return RiskTier.HIGH
    if stops > 6 or total_service > 45:
        return RiskTier.MEDIUM
    if high_priority > 2:
        return RiskTier.MEDIUM
    if stops > 4:
        return RiskTier.LOW
    return RiskTier.NONE


def validate_route(route: OptimizedRoute) -> RouteValidation:
    """Score a route out of 100, subtracting a penalty per violated limit."""
    violations = []
    score = 100

    if len(route.points) > MAX_STOPS:
        violations.append("too_many_stops")
        score -= 20
    if route.estimated_duration_minutes > MAX_DURATION_MINUTES:
        violations.append("duration_too_long")
        score -= 15
    if route.total_distance_km > MAX_DISTANCE_KM:
        violations.append("distance_too_long")
        score -= 10
    if route.estimated_delay_risk == RiskTier.HIGH:
        violations.append("high_delay_risk")
        score -= 25

    return RouteValidation(is_valid=not violations, violations=tuple(violations), score=max(0, score))


def build_optimized_route(
    tenant_id: str,
    driver_id: str | None,
    points: Sequence[RoutePoint],
    constraints: RouteConstraints,
    now: datetime | None = None,
) -> OptimizedRoute:
    """Optimize the stops and wrap them with distance, duration and risk."""
    ordered = optimize_points(points, constraints, now)
    distance = total_distance_km(ordered)
    return OptimizedRoute(
        id=new_id("route"),
        tenant_id=tenant_id,
        driver_id=driver_id or UNASSIGNED_DRIVER,
        points=tuple(ordered),
        total_distance_km=distance,
        estimated_duration_minutes=estimate_duration_minutes(ordered, distance),
        estimated_delay_risk=assess_route_delay_risk(ordered),
        fallback_used=False,
        created_at=now or utcnow(),
    )


# ──────────────────────────────────────────────────────────────────────────
# Alternatives
# ──────────────────────────────────────────────────────────────────────────


def _priority_grouped(points: Sequence[RoutePoint]) -> list[RoutePoint] | None:
    groups = {tier: [p for p in points if p.priority == tier] for tier in (Priority.HIGH, Priority.MEDIUM, Priority.LOW)}
    if not groups[Priority.HIGH]:
        return None
    ordered = []
    for tier in (Priority.HIGH, Priority.MEDIUM, Priority.LOW):
        ordered.extend(apply_nearest_neighbor(groups[tier]))
    return ordered


def generate_alternative_routes(points: Sequence[RoutePoint]) -> list[AlternativeRoute]:
    """Candidate reorderings of an existing route, best time saving first."""
    original = total_distance_km(points)
    alternatives = []

    if len(points) >= 3:
        reordered = apply_nearest_neighbor(points)
        distance = total_distance_km(reordered)
        saving = original - distance
        if distance < original * REORDER_MIN_RATIO and saving > REORDER_MIN_SAVING_KM:
            alternatives.append(
                AlternativeRoute(
                    points=tuple(reordered),
                    time_reduction_minutes=round_half_up(saving * 2),
                    distance_reduction_km=saving,
                    confidence=0.8,
                    strategy="nearest_neighbor",
                )
            )

    grouped = _priority_grouped(points)
    if grouped is not None:
        saving = original - total_distance_km(grouped)
        if saving > PRIORITY_MIN_SAVING_KM:
            alternatives.append(
                AlternativeRoute(
                    points=tuple(grouped),
                    time_reduction_minutes=round_half_up(saving * 1.5),
                    distance_reduction_km=saving,
                    confidence=0.7,
                    strategy="priority_grouped",
                )
            )

    return sorted(alternatives, key=lambda a: a.time_reduction_minutes, reverse=True)
