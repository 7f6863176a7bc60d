import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from roadguard.config import config
from roadguard.models import (
    ElevationSample, HazardRecord, HazardSource, HazardType, PredictedHazard, Route, Severity,
)
from roadguard.providers import ElevationProvider
from roadguard.utils import distance_meters, is_valid_point

logger = logging.getLogger(__name__)


@dataclass
class RouteAnalysis:
    predicted_hazards: List[PredictedHazard] = field(default_factory=list)
    speed_changes: List[PredictedHazard] = field(default_factory=list)
    elevation_hazards: List[PredictedHazard] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def _speed_severity(speed_delta: float) -> Severity:
    if speed_delta > 40:
        return Severity.HIGH
    if speed_delta > 30:
        return Severity.MEDIUM
    return Severity.LOW


def _elevation_severity(elevation_change: float) -> Severity:
    if elevation_change > 5:
        return Severity.HIGH
    if elevation_change > 3:
        return Severity.MEDIUM
    return Severity.LOW


def detect_speed_changes(route: Optional[Route]) -> List[PredictedHazard]:
    """Speed breakers where the average speed of consecutive steps jumps by more than 20 km/h"""
    if route is None:
        return []

    candidates = []
    steps = route.steps()
    for prev_step, step in zip(steps, steps[1:]):
        speed = step.average_speed_kmh
        prev_speed = prev_step.average_speed_kmh
        if speed is None or prev_speed is None:
            continue

        speed_delta = abs(speed - prev_speed)
        if speed_delta <= config.SPEED_CHANGE_THRESHOLD_KMH:
            continue

        confidence = min(speed_delta / 60, 1.0)
        if confidence < config.MIN_CONFIDENCE_THRESHOLD:
            continue
        candidates.append(PredictedHazard(
            location=step.start_location,
            type=HazardType.SPEED_BREAKER,
            severity=_speed_severity(speed_delta),
            source=HazardSource.ROUTE_ANALYSIS,
            confidence=confidence,
        ))

    return candidates


def detect_elevation_changes(samples: Sequence[ElevationSample],
                             threshold: float = config.ELEVATION_CHANGE_THRESHOLD_M) -> List[PredictedHazard]:
    candidates = []
    if not samples or len(samples) < 2:
        return candidates

    for prev, curr in zip(samples, samples[1:]):
        if prev is None or curr is None or not is_valid_point(curr.location):
            continue
        elevation_change = abs(curr.elevation - prev.elevation)
        if elevation_change <= threshold:
            continue

        confidence = min(elevation_change / 10, 1.0)
        if confidence < config.MIN_CONFIDENCE_THRESHOLD:
            continue
        candidates.append(PredictedHazard(
            location=curr.location,
            type=HazardType.SPEED_BREAKER,
            severity=_elevation_severity(elevation_change),
            source=HazardSource.ELEVATION_DETECTION,
            confidence=confidence,
        ))

    return candidates


def cluster_predictions(candidates: Sequence[PredictedHazard],
                        existing: Sequence[HazardRecord]) -> List[PredictedHazard]:
    """Boost candidates that coincide with existing reports; drop the weak ones"""
    predictions = []
    for candidate in candidates:
        if not is_valid_point(candidate.location):
            continue

        nearby = [
            h for h in existing or []
            if is_valid_point(h.location)
            and distance_meters(candidate.location, h.location) < config.CLUSTER_RADIUS_METERS
        ]

        if nearby:
            confidence = min(0.8 + len(nearby) * 0.05, 1.0)
        else:
            confidence = candidate.confidence if candidate.confidence is not None \
                else config.MIN_CONFIDENCE_THRESHOLD

        if confidence < config.MIN_CONFIDENCE_THRESHOLD:
            continue
        predictions.append(PredictedHazard(
            location=candidate.location,
            type=candidate.type,
            severity=candidate.severity,
            source=candidate.source,
            confidence=confidence,
            verified_by=len(nearby),
            clustered=bool(nearby),
        ))

    return predictions


def analyze_route(route: Optional[Route], existing: Sequence[HazardRecord],
                  elevation_provider: Optional[ElevationProvider] = None) -> RouteAnalysis:
    """Run both heuristic detectors over a route and fuse them with existing reports"""
    analysis = RouteAnalysis()
    if route is None or (not route.path and not route.legs):
        return analysis

    try:
        analysis.speed_changes = detect_speed_changes(route)
    except Exception as e:
        logger.error(f"Error analyzing speed profile: {e}")
        analysis.errors.append(f"speed_profile: {e}")

    if elevation_provider is not None and route.path:
        try:
            logger.info(f"Fetching elevation data for {len(route.path)} points")
            samples = elevation_provider.elevation_along_path(route.path)
            analysis.elevation_hazards = detect_elevation_changes(samples)
        except Exception as e:
            logger.error(f"Error analyzing elevation: {e}")
            analysis.errors.append(f"elevation: {e}")

    analysis.predicted_hazards = cluster_predictions(
        analysis.speed_changes + analysis.elevation_hazards, existing)

    logger.info(f"Route analysis complete: {len(analysis.speed_changes)} speed changes, "
                f"{len(analysis.elevation_hazards)} elevation hazards, "
                f"{len(analysis.predicted_hazards)} predicted hazards")
    return analysis
