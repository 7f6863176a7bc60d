import math
import logging
import threading
from typing import Callable, List, Optional, Sequence

from roadguard.config import config
from roadguard.hazard_analytics import nearest_route_index
from roadguard.models import GeoPoint, HazardFilters, HazardRecord, SegmentStatus
from roadguard.utils import distance_meters, is_valid_point, path_length

logger = logging.getLogger(__name__)


def _segment_indices(route_points: Sequence[GeoPoint]) -> List[int]:
    """Segment number for every route point, cutting a new segment each time the
    accumulated distance reaches the segment length"""
    segments = []
    current = 0
    accumulated = 0.0
    for i in range(len(route_points) - 1):
        segments.append(current)
        accumulated += distance_meters(route_points[i], route_points[i + 1])
        if accumulated >= config.SEGMENT_LENGTH_METERS:
            current += 1
            accumulated = 0.0
    segments.append(current)
    return segments


def segment_status(origin: Optional[GeoPoint], route_points: Sequence[GeoPoint],
                   hazards: Sequence[HazardRecord], filters: Optional[HazardFilters] = None) -> SegmentStatus:
    if not is_valid_point(origin) or not route_points:
        return SegmentStatus()
    filters = filters or HazardFilters()

    nearest, distance_to_route = nearest_route_index(route_points, origin)

    total_length = path_length(route_points)
    total_segments = max(1, math.ceil(total_length / config.SEGMENT_LENGTH_METERS))
    segment_index = min(_segment_indices(route_points)[nearest], total_segments - 1)

    radius = config.SEGMENT_LENGTH_METERS * config.SEGMENT_HAZARD_RADIUS_FACTOR
    hazard_count = 0
    for hazard in hazards or []:
        if not filters.accepts(hazard) or not is_valid_point(hazard.location):
            continue
        if distance_meters(origin, hazard.location) < radius:
            hazard_count += 1

    return SegmentStatus(
        segment_index=segment_index,
        total_segments=total_segments,
        hazard_count=hazard_count,
        is_idle=hazard_count <= config.SEGMENT_IDLE_MAX_HAZARDS,
        distance_covered=distance_to_route,
    )


class RoadStatusMonitor:
    """
    Recomputes the segment status on a fixed cadence from the latest inputs.

    Inputs are held in a single slot: each update replaces the previous one.
    A tick that fires while the previous computation is still running is
    dropped rather than queued.
    """

    def __init__(self, on_status: Callable[[SegmentStatus], None],
                 interval: float = config.STATUS_INTERVAL_SEC):
        self.on_status = on_status
        self.interval = interval
        self._inputs = None
        self._inputs_lock = threading.Lock()
        self._busy = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.status = SegmentStatus()

    def update_inputs(self, origin: Optional[GeoPoint], route_points: Sequence[GeoPoint],
                      hazards: Sequence[HazardRecord], filters: Optional[HazardFilters] = None):
        with self._inputs_lock:
            self._inputs = (origin, list(route_points or []), list(hazards or []), filters)

    def tick(self) -> bool:
        """Run one computation; returns False when skipped"""
        with self._inputs_lock:
            inputs = self._inputs
        if inputs is None:
            return False
        origin, route_points, hazards, filters = inputs
        if not is_valid_point(origin) or not route_points:
            return False

        if not self._busy.acquire(blocking=False):
            logger.debug("Segment status still computing, dropping tick")
            return False
        try:
            self.status = segment_status(origin, route_points, hazards, filters)
        finally:
            self._busy.release()

        try:
            self.on_status(self.status)
        except Exception as e:
            logger.error(f"Road status callback error: {e}")
        return True

    def _run(self):
        while not self._stop.wait(self.interval):
            self.tick()

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="road-status", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join()
            self._thread = None
