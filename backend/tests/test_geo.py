"""
Tests for geospatial helpers.

Covers:
  - Haversine distance in km
  - Tour length along a visiting order
  - Duration estimate and half-up rounding
"""

from logistics.geo import (
    estimate_duration_minutes,
    haversine_km,
    round_half_up,
    total_distance_km,
)
from logistics.models import RoutePoint

# ── Haversine Distance ─────────────────────────────────────────────────


class TestHaversineKm:
    def test_same_point_is_zero(self):
        assert haversine_km(-23.55, -46.63, -23.55, -46.63) == 0.0

    def test_known_distance_sao_paulo_rio(self):
        """São Paulo (-23.55, -46.63) to Rio (-22.91, -43.17) ≈ 360 km."""
        dist = haversine_km(-23.55, -46.63, -22.91, -43.17)
        assert 350 < dist < 370

    def test_hundredth_of_a_degree_latitude(self):
        """0.01° of latitude ≈ 1.11 km."""
        dist = haversine_km(-23.50, -46.60, -23.51, -46.60)
        assert 1.10 < dist < 1.12

    def test_symmetry(self):
        d1 = haversine_km(-23.5, -46.6, -22.9, -43.2)
        d2 = haversine_km(-22.9, -43.2, -23.5, -46.6)
        assert abs(d1 - d2) < 1e-9


# ── Tour Length ────────────────────────────────────────────────────────


class TestTotalDistance:
    def test_empty_and_single_point(self):
        assert total_distance_km([]) == 0
        assert total_distance_km([RoutePoint("a", -23.5, -46.6)]) == 0

    def test_sums_consecutive_legs(self):
        points = [
            RoutePoint("a", -23.50, -46.60),
            RoutePoint("b", -23.51, -46.60),
            RoutePoint("c", -23.52, -46.60),
        ]
        direct = haversine_km(-23.50, -46.60, -23.52, -46.60)
        assert abs(total_distance_km(points) - direct) < 1e-6

    def test_order_matters(self):
        a = RoutePoint("a", -23.50, -46.60)
        b = RoutePoint("b", -23.51, -46.60)
        c = RoutePoint("c", -23.52, -46.60)
        assert total_distance_km([a, c, b]) > total_distance_km([a, b, c])


# ── Duration ───────────────────────────────────────────────────────────


class TestDuration:
    def test_travel_at_thirty_kmh_plus_service(self):
        """15 km at 30 km/h is 30 min, plus 2 × 5 min of service."""
        points = [
            RoutePoint("a", 0, 0, estimated_service_time_minutes=5),
            RoutePoint("b", 0, 0, estimated_service_time_minutes=5),
        ]
        assert estimate_duration_minutes(points, 15.0) == 40

    def test_no_points_no_distance(self):
        assert estimate_duration_minutes([], 0.0) == 0


class TestRoundHalfUp:
    def test_half_rounds_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(0.5) == 1

    def test_below_half_rounds_down(self):
        assert round_half_up(2.49) == 2
        assert round_half_up(0.0) == 0
