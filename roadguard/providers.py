import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from roadguard.config import config
from roadguard.exceptions import ProviderError
from roadguard.models import ElevationSample, GeoPoint, Route, RouteLeg, RouteStep
from roadguard.utils import sample_path

logger = logging.getLogger(__name__)


def _coordinate(obj, *names):
    for name in names:
        if isinstance(obj, dict):
            value = obj.get(name)
        else:
            value = getattr(obj, name, None)
        if callable(value):
            value = value()
        if value is not None:
            return float(value)
    return None


def normalize_point(obj) -> Optional[GeoPoint]:
    """
    Coerce the coordinate shapes mapping providers hand back into a GeoPoint.
    Accepts GeoPoints, (lat, lng) pairs, dicts or objects exposing lat/lng
    (plain values or zero-argument methods) or latitude/longitude, and dicts
    nesting any of those under 'location'. Returns None when no usable
    coordinate is found.
    """
    if obj is None:
        return None
    if isinstance(obj, GeoPoint):
        return obj
    if isinstance(obj, (tuple, list)) and len(obj) == 2:
        try:
            point = GeoPoint(float(obj[0]), float(obj[1]))
        except (TypeError, ValueError):
            return None
        return point if point.is_valid() else None

    try:
        lat = _coordinate(obj, 'lat', 'latitude')
        lng = _coordinate(obj, 'lng', 'lon', 'longitude')
    except (TypeError, ValueError) as e:
        logger.debug(f"Unusable coordinate {obj!r}: {e}")
        return None

    if lat is None or lng is None:
        nested = obj.get('location') if isinstance(obj, dict) else getattr(obj, 'location', None)
        if nested is not None and nested is not obj:
            return normalize_point(nested)
        return None

    point = GeoPoint(lat, lng)
    return point if point.is_valid() else None


def _value(field) -> Optional[float]:
    if field is None:
        return None
    if isinstance(field, dict):
        field = field.get('value')
    try:
        return float(field) if field is not None else None
    except (TypeError, ValueError):
        return None


def parse_route(raw: dict) -> Optional[Route]:
    """Build a Route from a directions-style response (first route only)"""
    routes = (raw or {}).get('routes') or []
    if not routes:
        return None
    first = routes[0]

    path = [p for p in (normalize_point(p) for p in first.get('overview_path') or []) if p is not None]
    legs = []
    for leg in first.get('legs') or []:
        steps = []
        for step in leg.get('steps') or []:
            start = normalize_point(step.get('start_location'))
            if start is None:
                continue
            steps.append(RouteStep(
                start_location=start,
                distance_m=_value(step.get('distance')),
                duration_s=_value(step.get('duration')),
            ))
        legs.append(RouteLeg(steps=steps))

    return Route(path=path, legs=legs)


class RouteProvider(ABC):
    @abstractmethod
    def get_route(self, origin: GeoPoint, destination: GeoPoint) -> Optional[Route]:
        pass


class ElevationProvider(ABC):
    @abstractmethod
    def lookup(self, points: Sequence[GeoPoint]) -> List[ElevationSample]:
        pass

    def elevation_along_path(self, path: Sequence[GeoPoint]) -> List[ElevationSample]:
        """Elevations for an evenly sampled copy of the path"""
        if not path:
            return []
        sampled = sample_path(path, config.ELEVATION_MAX_SAMPLES)
        try:
            samples = self.lookup(sampled)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Elevation lookup failed: {e}") from e
        logger.info(f"Received elevation data: {len(samples)} points")
        return samples
