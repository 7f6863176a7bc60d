"""
Tests for manual hazard reports and confirmed motion detections.
"""

import pytest

from roadguard.database import OfflineHazardStore
from roadguard.exceptions import StoreError
from roadguard.models import DetectionEvent, GeoPoint, HazardSource, HazardType, Severity
from roadguard.reporting import HazardReporter


class ReadOnlyStore(OfflineHazardStore):
    def create(self, hazard):
        raise StoreError("read-only file system")


@pytest.fixture
def store(tmp_path):
    return OfflineHazardStore(str(tmp_path / "hazards.json"))


@pytest.fixture
def reporter(store):
    return HazardReporter(store)


class TestManualReports:

    def test_report_is_stored(self, reporter, store, origin):
        hazard_id = reporter.report_manual(HazardType.SPEED_BREAKER, Severity.MEDIUM, origin)

        hazard = store.read(hazard_id)
        assert hazard.type == HazardType.SPEED_BREAKER
        assert hazard.severity == Severity.MEDIUM
        assert hazard.source == HazardSource.MANUAL_REPORT
        assert hazard.verified is False
        assert hazard.confidence is None

    def test_duplicate_nearby_report_is_ignored(self, reporter, store, origin, move):
        reporter.report_manual(HazardType.POTHOLE, Severity.HIGH, origin)

        assert reporter.report_manual(HazardType.POTHOLE, Severity.LOW, move(origin, north_m=3)) is None
        assert reporter.report_manual(HazardType.MANHOLE, Severity.LOW, move(origin, north_m=3)) is not None
        assert reporter.report_manual(HazardType.POTHOLE, Severity.LOW, move(origin, north_m=10)) is not None
        assert len(store.list_hazards()) == 3

    def test_invalid_location(self, reporter, store):
        assert reporter.report_manual(HazardType.POTHOLE, Severity.HIGH, GeoPoint(95.0, 10.0)) is None
        assert store.list_hazards() == []

    def test_location_description(self, store, origin):
        reporter = HazardReporter(store, describe_location=lambda lat, lon: ("New Delhi", "Delhi"))
        hazard = store.read(reporter.report_manual(HazardType.POTHOLE, Severity.HIGH, origin))
        assert (hazard.city, hazard.region) == ("New Delhi", "Delhi")

    def test_store_failure(self, tmp_path, origin):
        reporter = HazardReporter(ReadOnlyStore(str(tmp_path / "hazards.json")))
        assert reporter.report_manual(HazardType.POTHOLE, Severity.HIGH, origin) is None


class TestDetections:

    @pytest.fixture
    def event(self):
        return DetectionEvent(type=HazardType.SPEED_BREAKER, severity=Severity.MEDIUM,
                              peak_acceleration=2.5, confidence=0.5, timestamp=12.0)

    def test_confirmed_detection(self, reporter, store, origin, event):
        hazard = store.read(reporter.confirm_detection(event, origin))
        assert hazard.source == HazardSource.MOTION_DETECTION
        assert hazard.confidence == pytest.approx(0.5)
        assert hazard.type == HazardType.SPEED_BREAKER

    def test_confirmation_without_position(self, reporter, store, event):
        assert reporter.confirm_detection(event, None) is None
        assert store.list_hazards() == []

    def test_dismissed_detection_is_not_stored(self, reporter, store, event):
        reporter.dismiss_detection(event)
        assert store.list_hazards() == []
