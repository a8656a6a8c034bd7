"""
Tests for the clock-driven traffic heuristics.

Covers:
  - Levels by hour and weekday
  - Leg rating as the driver moves through the day
  - Hourly forecasts and planning advice
  - The default route traffic provider
"""

from datetime import datetime, timezone

import pytest

from logistics.models import TrafficLevel
from logistics.traffic import (
    HeuristicTrafficProvider,
    analyze_route_traffic,
    level_for_speed,
    predict_traffic_evolution,
    traffic_level_at,
)

# 2026-03-02 is a Monday, 2026-03-07 a Saturday
MONDAY = datetime(2026, 3, 2, tzinfo=timezone.utc)
SATURDAY = datetime(2026, 3, 7, tzinfo=timezone.utc)


def _at(day: datetime, hour: int, minute: int = 0) -> datetime:
    return day.replace(hour=hour, minute=minute)


# ── Levels ─────────────────────────────────────────────────────────────


class TestTrafficLevelAt:
    @pytest.mark.parametrize("hour", [7, 8, 9, 17, 18, 19])
    def test_weekday_rush_hour_is_high(self, hour):
        assert traffic_level_at(_at(MONDAY, hour)) == TrafficLevel.HIGH

    @pytest.mark.parametrize("hour", [8, 18])
    def test_weekend_rush_hour_is_medium(self, hour):
        assert traffic_level_at(_at(SATURDAY, hour)) == TrafficLevel.MEDIUM

    @pytest.mark.parametrize("hour", [10, 12, 16])
    def test_daytime_is_medium(self, hour):
        assert traffic_level_at(_at(MONDAY, hour)) == TrafficLevel.MEDIUM

    @pytest.mark.parametrize("hour", [0, 6, 20, 23])
    def test_night_is_low(self, hour):
        assert traffic_level_at(_at(MONDAY, hour)) == TrafficLevel.LOW

    def test_speed_bands(self):
        assert level_for_speed(20) == TrafficLevel.HIGH
        assert level_for_speed(32.5) == TrafficLevel.MEDIUM
        assert level_for_speed(50) == TrafficLevel.LOW


# ── Route analysis ─────────────────────────────────────────────────────


class TestAnalyzeRouteTraffic:
    def test_clear_night_route(self, zigzag_points):
        analysis = analyze_route_traffic(zigzag_points, _at(MONDAY, 22))
        assert analysis.leg_levels == (TrafficLevel.LOW,) * 3
        assert analysis.congested_segments == ()
        assert analysis.average_speed_kmh == 50
        assert analysis.traffic_level == TrafficLevel.LOW
        assert analysis.total_delay_minutes == 0

    def test_rush_hour_leg_delay(self, zigzag_points):
        analysis = analyze_route_traffic(zigzag_points, _at(MONDAY, 8))
        first = analysis.congested_segments[0]
        assert (first.start_index, first.end_index) == (0, 1)
        assert first.level == TrafficLevel.HIGH
        # ~2.2 km at 20 km/h instead of 50 km/h
        assert first.delay_minutes == 4
        assert first.cause.startswith("Heavy traffic")
        assert analysis.traffic_level == TrafficLevel.HIGH

    def test_legs_rated_when_driver_reaches_them(self, zigzag_points):
        """The first leg starts in the rush hour, the rest after 10:00."""
        analysis = analyze_route_traffic(zigzag_points, _at(MONDAY, 9, 50))
        assert analysis.leg_levels == (TrafficLevel.HIGH, TrafficLevel.MEDIUM, TrafficLevel.MEDIUM)
        assert analysis.traffic_level == TrafficLevel.MEDIUM

    def test_single_stop_has_no_legs(self, point_factory):
        analysis = analyze_route_traffic([point_factory("only", 0, 0)], _at(MONDAY, 8))
        assert analysis.leg_levels == ()
        assert analysis.total_distance_km == 0
        assert analysis.traffic_level == TrafficLevel.LOW


# ── Forecast ───────────────────────────────────────────────────────────


class TestPredictTrafficEvolution:
    def test_hourly_levels_and_confidence(self):
        forecasts, advice = predict_traffic_evolution(_at(MONDAY, 5), hours_ahead=6)
        assert [f.time.hour for f in forecasts] == [6, 7, 8, 9, 10, 11]
        assert [f.level for f in forecasts] == [
            TrafficLevel.LOW,
            TrafficLevel.HIGH,
            TrafficLevel.HIGH,
            TrafficLevel.HIGH,
            TrafficLevel.MEDIUM,
            TrafficLevel.MEDIUM,
        ]
        assert [f.confidence for f in forecasts] == [0.7, 0.6, 0.5, 0.4, 0.3, 0.3]
        assert advice == ["Plan alternative routes for the upcoming peak"]

    def test_current_peak_advice(self):
        _, advice = predict_traffic_evolution(_at(MONDAY, 8), hours_ahead=2)
        assert advice == ["Consider alternative routes now", "Shift delivery windows away from peak hours"]

    def test_quiet_night_has_no_advice(self):
        _, advice = predict_traffic_evolution(_at(MONDAY, 21), hours_ahead=3)
        assert advice == []

    def test_factors(self):
        forecasts, _ = predict_traffic_evolution(_at(MONDAY, 7), hours_ahead=1)
        assert forecasts[0].factors == ("rush_hour", "adverse_conditions")

        forecasts, _ = predict_traffic_evolution(_at(SATURDAY, 7), hours_ahead=1)
        assert forecasts[0].factors == ("weekend_traffic",)


# ── Provider ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestHeuristicTrafficProvider:
    async def test_leg_levels_follow_the_clock(self, zigzag_points):
        provider = HeuristicTrafficProvider(clock=lambda: _at(MONDAY, 8))
        assert provider.current_level() == TrafficLevel.HIGH
        levels = await provider.get_leg_traffic(zigzag_points)
        assert len(levels) == 3
        assert TrafficLevel.HIGH in levels

    async def test_night_route_is_clear(self, zigzag_points):
        provider = HeuristicTrafficProvider(clock=lambda: _at(MONDAY, 23))
        assert await provider.get_leg_traffic(zigzag_points) == [TrafficLevel.LOW] * 3
