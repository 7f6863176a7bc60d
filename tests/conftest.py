import math
import sys
from pathlib import Path

import pytest

# Allow running from the repo root without installing the package
sys.path.insert(0, str(Path(__file__).parent.parent))

from roadguard.models import GeoPoint, HazardRecord, HazardSource, HazardType, Severity

METERS_PER_DEGREE = math.pi / 180 * 6371000


def offset(point: GeoPoint, north_m: float = 0.0, east_m: float = 0.0) -> GeoPoint:
    """Point displaced by the given meters (small-distance approximation)"""
    lat = point.lat + north_m / METERS_PER_DEGREE
    lng = point.lng + east_m / (METERS_PER_DEGREE * math.cos(math.radians(point.lat)))
    return GeoPoint(lat, lng)


@pytest.fixture
def origin() -> GeoPoint:
    return GeoPoint(28.6139, 77.2090)


@pytest.fixture
def move():
    return offset


@pytest.fixture
def make_hazard():
    counter = iter(range(1, 10_000))

    def _make(location, hazard_type=HazardType.POTHOLE, severity=Severity.HIGH, **kwargs):
        kwargs.setdefault('id', f"h{next(counter)}")
        kwargs.setdefault('source', HazardSource.MANUAL_REPORT)
        return HazardRecord(type=hazard_type, severity=severity, location=location, **kwargs)

    return _make
