"""
Traffic Heuristics: time-of-day traffic levels for stops and route legs.

Levels come from the clock alone:
  - weekday rush hour (07-09, 17-19) → high
  - weekend rush hour, lunch (11-13) or daytime (10-16) → medium
  - otherwise → low

Each leg is rated at the time the driver is expected to start it, walking
the route from ``now`` at the level's typical speed plus service time.
Used as the engine's default RouteTrafficProvider when the host supplies
no live feed.

Usage:
    analysis = analyze_route_traffic(points, now)
    forecasts, advice = predict_traffic_evolution(now, hours_ahead=6)
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from logistics.geo import point_distance_km, round_half_up
from logistics.models import RoutePoint, TrafficLevel, utcnow
from logistics.providers import RouteTrafficProvider

RUSH_HOURS = (range(7, 10), range(17, 20))
LUNCH_HOURS = range(11, 14)
DAYTIME_HOURS = range(10, 17)
WEEKEND = (5, 6)

# Midpoints of the observed speed bands per level
TYPICAL_SPEED_KMH = {
    TrafficLevel.LOW: 50.0,
    TrafficLevel.MEDIUM: 32.5,
    TrafficLevel.HIGH: 20.0,
}
FREE_FLOW_SPEED_KMH = 50.0

SEGMENT_CAUSES = {
    TrafficLevel.MEDIUM: "Moderate traffic, heavy vehicle volume",
    TrafficLevel.HIGH: "Heavy traffic, severe congestion",
}

FORECAST_BASE_CONFIDENCE = 0.8
FORECAST_CONFIDENCE_STEP = 0.1
FORECAST_MIN_CONFIDENCE = 0.3


def _is_rush_hour(hour: int) -> bool:
    return any(hour in window for window in RUSH_HOURS)


def traffic_level_at(when: datetime) -> TrafficLevel:
    hour = when.hour
    weekend = when.weekday() in WEEKEND
    if _is_rush_hour(hour) and not weekend:
        return TrafficLevel.HIGH
    if hour in LUNCH_HOURS or _is_rush_hour(hour) or hour in DAYTIME_HOURS:
        return TrafficLevel.MEDIUM
    return TrafficLevel.LOW


def level_for_speed(average_speed_kmh: float) -> TrafficLevel:
    if average_speed_kmh < 25:
        return TrafficLevel.HIGH
    if average_speed_kmh < 40:
        return TrafficLevel.MEDIUM
    return TrafficLevel.LOW


# ── Route analysis ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TrafficSegment:
    start_index: int
    end_index: int
    level: TrafficLevel
    delay_minutes: int
    cause: str


@dataclass(frozen=True)
class RouteTrafficAnalysis:
    total_distance_km: float
    average_speed_kmh: float
    traffic_level: TrafficLevel
    leg_levels: tuple[TrafficLevel, ...]
    congested_segments: tuple[TrafficSegment, ...] = field(default_factory=tuple)

    @property
    def total_delay_minutes(self) -> int:
        return sum(s.delay_minutes for s in self.congested_segments)


def analyze_route_traffic(points: Sequence[RoutePoint], now: datetime | None = None) -> RouteTrafficAnalysis:
    """Rate every leg of the route and collect the congested ones."""
    clock = now or utcnow()
    total_distance = 0.0
    speeds = []
    levels = []
    segments = []

    for i in range(len(points) - 1):
        start, end = points[i], points[i + 1]
        distance = point_distance_km(start, end)
        level = traffic_level_at(clock)
        speed = TYPICAL_SPEED_KMH[level]

        total_distance += distance
        speeds.append(speed)
        levels.append(level)

        if level != TrafficLevel.LOW:
            delay = (distance / speed - distance / FREE_FLOW_SPEED_KMH) * 60
            segments.append(
                TrafficSegment(
                    start_index=i,
                    end_index=i + 1,
                    level=level,
                    delay_minutes=max(0, round_half_up(delay)),
                    cause=SEGMENT_CAUSES[level],
                )
            )

        travel = timedelta(hours=distance / speed)
        clock = clock + travel + timedelta(minutes=end.estimated_service_time_minutes)

    average_speed = sum(speeds) / len(speeds) if speeds else FREE_FLOW_SPEED_KMH
    return RouteTrafficAnalysis(
        total_distance_km=total_distance,
        average_speed_kmh=average_speed,
        traffic_level=level_for_speed(average_speed),
        leg_levels=tuple(levels),
        congested_segments=tuple(segments),
    )


# ── Forecast ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TrafficForecast:
    time: datetime
    level: TrafficLevel
    confidence: float
    factors: tuple[str, ...]


def _forecast_factors(when: datetime, level: TrafficLevel) -> tuple[str, ...]:
    factors = []
    weekend = when.weekday() in WEEKEND
    if _is_rush_hour(when.hour) and not weekend:
        factors.append("rush_hour")
    if weekend:
        factors.append("weekend_traffic")
    if level == TrafficLevel.HIGH:
        factors.append("adverse_conditions")
    return tuple(factors)


def predict_traffic_evolution(
    now: datetime | None = None,
    hours_ahead: int = 6,
) -> tuple[list[TrafficForecast], list[str]]:
    """Hourly levels for the next ``hours_ahead`` hours plus planning advice.

    Confidence starts at 0.7 one hour out and drops 0.1 per hour, floored at 0.3.
    """
    now = now or utcnow()
    forecasts = []
    for i in range(1, hours_ahead + 1):
        when = now + timedelta(hours=i)
        level = traffic_level_at(when)
        confidence = max(FORECAST_MIN_CONFIDENCE, FORECAST_BASE_CONFIDENCE - i * FORECAST_CONFIDENCE_STEP)
        forecasts.append(TrafficForecast(when, level, round(confidence, 2), _forecast_factors(when, level)))

    recommendations = []
    if traffic_level_at(now) == TrafficLevel.HIGH:
        recommendations.append("Consider alternative routes now")
        recommendations.append("Shift delivery windows away from peak hours")
    elif any(f.level == TrafficLevel.HIGH for f in forecasts):
        recommendations.append("Plan alternative routes for the upcoming peak")
    return forecasts, recommendations


# ── Provider ───────────────────────────────────────────────────────────────


class HeuristicTrafficProvider(RouteTrafficProvider):
    """Clock-driven leg traffic for hosts without a live traffic feed."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    def current_level(self) -> TrafficLevel:
        return traffic_level_at(self._clock())

    async def get_leg_traffic(self, points: Sequence[RoutePoint]) -> list[TrafficLevel]:
        return list(analyze_route_traffic(points, self._clock()).leg_levels)
