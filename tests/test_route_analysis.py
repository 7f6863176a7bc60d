"""
Tests for route-based hazard prediction: speed profile, elevation profile and
fusion with existing reports.
"""

import pytest

from roadguard.exceptions import ProviderError
from roadguard.models import (
    ElevationSample, HazardSource, HazardType, Route, RouteLeg, RouteStep, Severity,
)
from roadguard.providers import ElevationProvider
from roadguard.route_analysis import (
    analyze_route, cluster_predictions, detect_elevation_changes, detect_speed_changes,
)


def _step(location, speed_kmh, duration_s=36.0):
    """Step covering speed_kmh over duration_s seconds"""
    if speed_kmh is None:
        return RouteStep(start_location=location, distance_m=500.0, duration_s=None)
    return RouteStep(start_location=location, distance_m=speed_kmh / 3.6 * duration_s, duration_s=duration_s)


def _route(origin, move, *speeds_per_leg):
    legs = []
    distance = 0
    for speeds in speeds_per_leg:
        steps = []
        for speed in speeds:
            steps.append(_step(move(origin, north_m=distance), speed))
            distance += 500
        legs.append(RouteLeg(steps=steps))
    path = [move(origin, north_m=d) for d in range(0, distance + 1, 100)]
    return Route(path=path, legs=legs)


class FixedElevations(ElevationProvider):
    def __init__(self, elevations):
        self.elevations = elevations
        self.requested = []

    def lookup(self, points):
        self.requested = list(points)
        return [ElevationSample(location=p, elevation=e) for p, e in zip(points, self.elevations)]


class BrokenElevations(ElevationProvider):
    def lookup(self, points):
        raise RuntimeError("quota exceeded")


class TestSpeedChanges:

    def test_moderate_drop_is_predicted(self, origin, move):
        route = _route(origin, move, [60, 35])
        candidates = detect_speed_changes(route)

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.type == HazardType.SPEED_BREAKER
        assert candidate.source == HazardSource.ROUTE_ANALYSIS
        assert candidate.severity == Severity.LOW
        assert candidate.confidence == pytest.approx(25 / 60)
        assert candidate.location == route.legs[0].steps[1].start_location

    def test_low_confidence_change_is_dropped(self, origin, move):
        assert detect_speed_changes(_route(origin, move, [60, 38])) == []

    def test_small_change_is_ignored(self, origin, move):
        assert detect_speed_changes(_route(origin, move, [50, 40, 45])) == []

    @pytest.mark.parametrize("speeds,severity,confidence", [
        ([70, 35], Severity.MEDIUM, 35 / 60),
        ([80, 35], Severity.HIGH, 45 / 60),
        ([10, 85], Severity.HIGH, 1.0),
        ([50, 0], Severity.HIGH, 50 / 60),
    ])
    def test_severity_and_confidence(self, origin, move, speeds, severity, confidence):
        candidates = detect_speed_changes(_route(origin, move, speeds))
        assert len(candidates) == 1
        assert candidates[0].severity == severity
        assert candidates[0].confidence == pytest.approx(confidence)

    def test_consecutive_steps_span_legs(self, origin, move):
        route = _route(origin, move, [60], [35])
        candidates = detect_speed_changes(route)
        assert len(candidates) == 1
        assert candidates[0].location == route.legs[1].steps[0].start_location

    def test_steps_without_timing_are_skipped(self, origin, move):
        assert detect_speed_changes(_route(origin, move, [60, None, 35])) == []

    def test_absent_route(self):
        assert detect_speed_changes(None) == []

    def test_stationary_step_has_zero_speed(self, origin):
        assert RouteStep(start_location=origin, distance_m=0.0, duration_s=30.0).average_speed_kmh == 0
        assert RouteStep(start_location=origin, distance_m=100.0, duration_s=0.0).average_speed_kmh is None
        assert RouteStep(start_location=origin, distance_m=None, duration_s=30.0).average_speed_kmh is None


class TestElevationChanges:

    def test_elevation_profile(self, origin, move):
        elevations = [100, 100.5, 105, 105, 111.5, 114]
        samples = [ElevationSample(location=move(origin, north_m=i * 100), elevation=e)
                   for i, e in enumerate(elevations)]

        candidates = detect_elevation_changes(samples)

        assert [c.location for c in candidates] == [samples[2].location, samples[4].location]
        assert [c.severity for c in candidates] == [Severity.MEDIUM, Severity.HIGH]
        assert candidates[0].confidence == pytest.approx(0.45)
        assert candidates[1].confidence == pytest.approx(0.65)
        assert all(c.source == HazardSource.ELEVATION_DETECTION for c in candidates)

    def test_too_few_samples(self, origin):
        assert detect_elevation_changes([]) == []
        assert detect_elevation_changes([ElevationSample(origin, 100)]) == []


class TestClustering:

    def test_candidate_near_existing_report_is_boosted(self, origin, move, make_hazard):
        route = _route(origin, move, [60, 35])
        candidate_location = route.legs[0].steps[1].start_location
        existing = [make_hazard(move(candidate_location, east_m=20))]

        predictions = cluster_predictions(detect_speed_changes(route), existing)

        assert len(predictions) == 1
        assert predictions[0].confidence == pytest.approx(0.85)
        assert predictions[0].clustered is True
        assert predictions[0].verified_by == 1

    def test_unclustered_candidate_keeps_confidence(self, origin, move, make_hazard):
        route = _route(origin, move, [60, 35])
        far = [make_hazard(move(origin, east_m=5000))]

        predictions = cluster_predictions(detect_speed_changes(route), far)

        assert predictions[0].confidence == pytest.approx(25 / 60)
        assert predictions[0].clustered is False
        assert predictions[0].verified_by == 0

    def test_boost_is_capped(self, origin, move, make_hazard):
        route = _route(origin, move, [60, 35])
        location = route.legs[0].steps[1].start_location
        existing = [make_hazard(move(location, east_m=i)) for i in range(1, 8)]

        predictions = cluster_predictions(detect_speed_changes(route), existing)
        assert predictions[0].confidence == 1.0
        assert predictions[0].verified_by == 7


class TestAnalyzeRoute:

    def test_combines_detectors(self, origin, move):
        route = _route(origin, move, [60, 35])
        provider = FixedElevations([100, 100, 108] + [108] * 10)

        analysis = analyze_route(route, [], provider)

        assert len(analysis.speed_changes) == 1
        assert len(analysis.elevation_hazards) == 1
        assert len(analysis.predicted_hazards) == 2
        assert analysis.errors == []

    def test_elevation_failure_keeps_speed_results(self, origin, move):
        route = _route(origin, move, [60, 35])

        analysis = analyze_route(route, [], BrokenElevations())

        assert len(analysis.predicted_hazards) == 1
        assert analysis.elevation_hazards == []
        assert len(analysis.errors) == 1
        assert analysis.errors[0].startswith("elevation:")

    def test_without_elevation_provider(self, origin, move):
        analysis = analyze_route(_route(origin, move, [60, 35]), [])
        assert len(analysis.predicted_hazards) == 1
        assert analysis.errors == []

    def test_absent_route(self):
        analysis = analyze_route(None, [])
        assert analysis.predicted_hazards == []
        assert analysis.errors == []


class TestElevationProvider:

    def test_path_is_sampled(self, origin, move):
        path = [move(origin, north_m=d * 10) for d in range(250)]
        provider = FixedElevations([0] * 250)

        samples = provider.elevation_along_path(path)

        assert len(provider.requested) <= 100
        assert provider.requested[0] == path[0]
        assert provider.requested[-1] == path[-1]
        assert len(samples) == len(provider.requested)

    def test_lookup_errors_are_wrapped(self, origin):
        with pytest.raises(ProviderError):
            BrokenElevations().elevation_along_path([origin, origin])

    def test_empty_path(self):
        assert FixedElevations([]).elevation_along_path([]) == []
