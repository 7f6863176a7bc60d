import logging
from typing import Dict, Iterable, List, Optional, Sequence

from roadguard.config import config
from roadguard.models import GeoPoint, HazardFilters, HazardMatch, HazardRecord, HazardType, Severity
from roadguard.utils import distance_meters, is_valid_point

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    HazardType.SPEED_BREAKER: "Speed Breaker",
    HazardType.POTHOLE: "Pothole",
    HazardType.MANHOLE: "Pothole",
}


def _located(hazards: Iterable[HazardRecord], filters: HazardFilters):
    for hazard in hazards or []:
        if not filters.accepts(hazard):
            continue
        if not is_valid_point(hazard.location):
            logger.debug(f"Skipping hazard {hazard.id} with invalid location {hazard.location}")
            continue
        yield hazard


def filter_by_proximity(hazards: Iterable[HazardRecord], origin: Optional[GeoPoint],
                        radius_m: float, filters: Optional[HazardFilters] = None) -> List[HazardMatch]:
    """Hazards within radius_m of origin that pass the filters, nearest first"""
    if not is_valid_point(origin):
        return []
    filters = filters or HazardFilters()

    matches = []
    for hazard in _located(hazards, filters):
        distance = distance_meters(origin, hazard.location)
        if distance <= radius_m:
            matches.append(HazardMatch(hazard=hazard, distance_from_user=distance))

    return sorted(matches, key=lambda m: m.distance_from_user)


def generate_status_text(matches: Sequence[HazardMatch]) -> str:
    if not matches:
        return "Normal Road"

    closest = matches[0]
    label = STATUS_LABELS.get(closest.hazard.type, "Hazard")
    distance = round(closest.distance_from_user or 0)
    return f"{label} Ahead ({closest.hazard.severity.value.upper()}) - {distance}m"


def nearest_route_index(route_points: Sequence[GeoPoint], origin: GeoPoint):
    """Index of the route point closest to origin and the distance to it"""
    best_index = 0
    best_distance = float('inf')
    for i, point in enumerate(route_points):
        distance = distance_meters(origin, point)
        if distance < best_distance:
            best_distance = distance
            best_index = i
    return best_index, best_distance


def hazards_ahead_on_route(hazards: Iterable[HazardRecord], route_points: Sequence[GeoPoint],
                           origin: Optional[GeoPoint], look_ahead_m: float,
                           filters: Optional[HazardFilters] = None) -> List[HazardMatch]:
    if not route_points or not is_valid_point(origin) or not hazards:
        return []
    filters = filters or HazardFilters()

    user_index, _ = nearest_route_index(route_points, origin)

    ahead = []
    for hazard in _located(hazards, filters):
        distance_from_user = distance_meters(origin, hazard.location)
        if distance_from_user >= look_ahead_m:
            continue
        for i in range(user_index, len(route_points)):
            if distance_meters(hazard.location, route_points[i]) < config.ROUTE_MATCH_RADIUS_METERS:
                ahead.append(HazardMatch(hazard=hazard, distance_from_user=distance_from_user,
                                         route_index=i))
                break

    return sorted(ahead, key=lambda m: m.distance_from_user)


def is_near_route(location: GeoPoint, route_points: Sequence[GeoPoint], radius_m: float) -> bool:
    return any(distance_meters(location, point) <= radius_m for point in route_points)


def route_summary(hazards: Iterable[HazardRecord], route_points: Sequence[GeoPoint],
                  filters: Optional[HazardFilters] = None) -> Dict[str, Dict[str, int]]:
    """Severity counts per hazard type for hazards near the route; manholes count as potholes"""
    if not route_points:
        return {}
    filters = filters or HazardFilters()

    summary = {
        HazardType.SPEED_BREAKER.value: {s.value: 0 for s in Severity},
        HazardType.POTHOLE.value: {s.value: 0 for s in Severity},
    }

    for hazard in _located(hazards, filters):
        if is_near_route(hazard.location, route_points, config.ROUTE_SUMMARY_RADIUS_METERS):
            normalized = HazardType.POTHOLE if hazard.type == HazardType.MANHOLE else hazard.type
            summary[normalized.value][hazard.severity.value] += 1

    return summary
