import math
from typing import List, Sequence

import numpy as np

from roadguard.models import GeoPoint, HazardRecord

EARTH_RADIUS_M = 6371000  # Earth radius in meters


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two GPS coordinates in meters"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = math.sin(delta_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    a = min(1.0, a)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    return calculate_distance(a.lat, a.lng, b.lat, b.lng)


def bearing_degrees(a: GeoPoint, b: GeoPoint) -> float:
    """Initial bearing from a to b, in [0, 360)"""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    delta_lambda = math.radians(b.lng - a.lng)

    y = math.sin(delta_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)

    bearing = math.degrees(math.atan2(y, x)) % 360.0
    # -0.0 % 360 and tiny negatives can round up to 360.0
    return 0.0 if bearing >= 360.0 else bearing


def is_valid_point(point) -> bool:
    return isinstance(point, GeoPoint) and point.is_valid()


def path_length(points: Sequence[GeoPoint]) -> float:
    """Total length in meters of a polyline"""
    return sum(distance_meters(points[i], points[i + 1]) for i in range(len(points) - 1))


def sample_path(points: Sequence[GeoPoint], max_samples: int = 100) -> List[GeoPoint]:
    """Evenly spaced subsample of a path, never more than max_samples points"""
    if not points or max_samples <= 0:
        return []
    n = len(points)
    if n <= max_samples:
        return list(points)
    if max_samples == 1:
        return [points[0]]
    # spread over the whole path so the last point is always kept
    return [points[round(i * (n - 1) / (max_samples - 1))] for i in range(max_samples)]


def create_confidence_report(hazards: List[HazardRecord]) -> dict:
    """Create a confidence analysis report"""
    confidences = [h.confidence for h in hazards if h.confidence is not None]
    if not confidences:
        return {}

    return {
        'average_confidence': float(np.mean(confidences)),
        'max_confidence': float(np.max(confidences)),
        'min_confidence': float(np.min(confidences)),
        'std_confidence': float(np.std(confidences)),
        'confidence_distribution': {
            'weak': len([c for c in confidences if c < 0.4]),
            'moderate': len([c for c in confidences if 0.4 <= c < 0.7]),
            'strong': len([c for c in confidences if 0.7 <= c < 0.9]),
            'very_strong': len([c for c in confidences if c >= 0.9])
        }
    }
