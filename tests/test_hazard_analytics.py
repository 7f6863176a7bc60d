"""
Unit tests for proximity filtering, hazards ahead on a route and route summaries.
"""

import pytest

from roadguard.hazard_analytics import (
    filter_by_proximity, generate_status_text, hazards_ahead_on_route, route_summary,
)
from roadguard.models import GeoPoint, HazardFilters, HazardMatch, HazardType, Severity
from roadguard.utils import distance_meters


@pytest.fixture
def route(origin, move):
    """Straight route heading north: 500 m behind the origin to 1 km ahead, a point every 100 m"""
    return [move(origin, north_m=d) for d in range(-500, 1001, 100)]


class TestFilterByProximity:

    def test_end_to_end_warning_distance(self, make_hazard):
        origin = GeoPoint(28.6139, 77.2090)
        hazard = make_hazard(GeoPoint(28.6150, 77.2100), HazardType.POTHOLE, Severity.HIGH)
        expected = distance_meters(origin, hazard.location)

        assert filter_by_proximity([hazard], origin, 100, HazardFilters()) == []

        matches = filter_by_proximity([hazard], origin, 200, HazardFilters())
        assert len(matches) == 1
        assert matches[0].hazard is hazard
        assert matches[0].distance_from_user == pytest.approx(expected)
        assert 100 < matches[0].distance_from_user < 200

    def test_sorted_by_distance(self, origin, move, make_hazard):
        hazards = [make_hazard(move(origin, north_m=d)) for d in (90, 10, 50, 30)]
        distances = [m.distance_from_user for m in filter_by_proximity(hazards, origin, 100)]
        assert distances == sorted(distances)
        assert len(distances) == 4

    def test_radius_is_inclusive_and_enforced(self, origin, move, make_hazard):
        hazards = [make_hazard(move(origin, east_m=d)) for d in (20, 80, 120)]
        matches = filter_by_proximity(hazards, origin, 100)
        assert all(m.distance_from_user <= 100 for m in matches)
        assert len(matches) == 2

    def test_zero_radius_only_exact_origin(self, origin, move, make_hazard):
        at_origin = make_hazard(GeoPoint(origin.lat, origin.lng))
        nearby = make_hazard(move(origin, north_m=1))
        matches = filter_by_proximity([at_origin, nearby], origin, 0)
        assert [m.hazard for m in matches] == [at_origin]

    def test_type_and_severity_filters(self, origin, move, make_hazard):
        bump = make_hazard(move(origin, north_m=10), HazardType.SPEED_BREAKER, Severity.LOW)
        hole = make_hazard(move(origin, north_m=20), HazardType.POTHOLE, Severity.HIGH)
        cover = make_hazard(move(origin, north_m=30), HazardType.MANHOLE, Severity.MEDIUM)

        filters = HazardFilters(types=frozenset({HazardType.POTHOLE, HazardType.MANHOLE}),
                                severities=frozenset({Severity.HIGH, Severity.LOW}))
        matches = filter_by_proximity([bump, hole, cover], origin, 100, filters)
        assert [m.hazard for m in matches] == [hole]

    def test_only_verified(self, origin, move, make_hazard):
        verified = make_hazard(move(origin, north_m=40), verified=True)
        pending = make_hazard(move(origin, north_m=10))
        matches = filter_by_proximity([verified, pending], origin, 100, HazardFilters(only_verified=True))
        assert [m.hazard for m in matches] == [verified]

    def test_absent_origin(self, origin, make_hazard):
        assert filter_by_proximity([make_hazard(origin)], None, 100) == []

    def test_invalid_hazard_location_is_skipped(self, origin, make_hazard):
        broken = make_hazard(GeoPoint(float('nan'), 77.0))
        assert filter_by_proximity([broken], origin, 1000) == []


class TestStatusText:

    def test_normal_road(self):
        assert generate_status_text([]) == "Normal Road"

    def test_closest_hazard(self, origin, make_hazard):
        match = HazardMatch(hazard=make_hazard(origin, HazardType.MANHOLE, Severity.HIGH),
                            distance_from_user=140.4)
        assert generate_status_text([match]) == "Pothole Ahead (HIGH) - 140m"

    def test_speed_breaker_label(self, origin, make_hazard):
        match = HazardMatch(hazard=make_hazard(origin, HazardType.SPEED_BREAKER, Severity.LOW),
                            distance_from_user=35.0)
        assert generate_status_text([match]) == "Speed Breaker Ahead (LOW) - 35m"


class TestHazardsAhead:

    def test_hazard_on_route_ahead(self, origin, move, route, make_hazard):
        hazard = make_hazard(move(origin, north_m=300, east_m=10))
        matches = hazards_ahead_on_route([hazard], route, origin, 500, HazardFilters())
        assert len(matches) == 1
        assert matches[0].route_index == 8
        assert matches[0].distance_from_user == pytest.approx(distance_meters(origin, hazard.location))

    def test_hazard_behind_user_is_excluded(self, origin, move, route, make_hazard):
        hazard = make_hazard(move(origin, north_m=-300))
        assert hazards_ahead_on_route([hazard], route, origin, 500) == []

    def test_hazard_off_route_is_excluded(self, origin, move, route, make_hazard):
        on_route = make_hazard(move(origin, north_m=300, east_m=20))
        off_route = make_hazard(move(origin, north_m=300, east_m=80))
        matches = hazards_ahead_on_route([on_route, off_route], route, origin, 500)
        assert [m.hazard for m in matches] == [on_route]

    def test_look_ahead_limit(self, origin, move, route, make_hazard):
        hazard = make_hazard(move(origin, north_m=800))
        assert hazards_ahead_on_route([hazard], route, origin, 500) == []
        assert len(hazards_ahead_on_route([hazard], route, origin, 1000)) == 1

    def test_sorted_nearest_first(self, origin, move, route, make_hazard):
        far = make_hazard(move(origin, north_m=400))
        near = make_hazard(move(origin, north_m=150))
        matches = hazards_ahead_on_route([far, near], route, origin, 1000)
        assert [m.hazard for m in matches] == [near, far]

    def test_filters_apply(self, origin, move, route, make_hazard):
        hazard = make_hazard(move(origin, north_m=200), severity=Severity.LOW)
        filters = HazardFilters(severities=frozenset({Severity.HIGH}))
        assert hazards_ahead_on_route([hazard], route, origin, 500, filters) == []

    def test_absent_inputs(self, origin, move, route, make_hazard):
        hazards = [make_hazard(move(origin, north_m=100))]
        assert hazards_ahead_on_route([], route, origin, 500) == []
        assert hazards_ahead_on_route(hazards, [], origin, 500) == []
        assert hazards_ahead_on_route(hazards, route, None, 500) == []


class TestRouteSummary:

    def test_counts_hazards_near_route(self, origin, move, route, make_hazard):
        hazards = [
            make_hazard(move(origin, north_m=100, east_m=30), HazardType.SPEED_BREAKER, Severity.LOW),
            make_hazard(move(origin, north_m=200, east_m=90), HazardType.POTHOLE, Severity.HIGH),
            make_hazard(move(origin, north_m=300), HazardType.MANHOLE, Severity.HIGH),
            make_hazard(move(origin, north_m=400, east_m=150), HazardType.POTHOLE, Severity.MEDIUM),
        ]
        summary = route_summary(hazards, route, HazardFilters())
        assert summary == {
            "speed_breaker": {"low": 1, "medium": 0, "high": 0},
            "pothole": {"low": 0, "medium": 0, "high": 2},
        }

    def test_each_hazard_counted_once(self, origin, move, route, make_hazard):
        hazard = make_hazard(move(origin, north_m=50), HazardType.SPEED_BREAKER, Severity.MEDIUM)
        summary = route_summary([hazard], route)
        assert summary["speed_breaker"]["medium"] == 1

    def test_filters_apply(self, origin, move, route, make_hazard):
        hazard = make_hazard(move(origin, north_m=50), verified=False)
        summary = route_summary([hazard], route, HazardFilters(only_verified=True))
        assert summary["pothole"]["high"] == 0

    def test_empty_route(self, origin, make_hazard):
        assert route_summary([make_hazard(origin)], [], HazardFilters()) == {}
