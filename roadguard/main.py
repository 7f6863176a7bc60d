import logging
import threading
import time
from typing import List, Optional

from roadguard.announcer import AnnouncementQueue
from roadguard.config import config
from roadguard.database import HazardRepository, OfflineHazardStore, SqliteHazardStore
from roadguard.exceptions import ProviderError, StoreError
from roadguard.gps_provider import BaseGPS, PositionTracker, RealGPS, ReverseGeocoder, SimulatedGPS
from roadguard.hazard_analytics import (
    filter_by_proximity, generate_status_text, hazards_ahead_on_route, route_summary,
)
from roadguard.models import (
    DetectionEvent, GeoPoint, HazardFilters, HazardMatch, HazardRecord, MotionSample, Position,
    PredictedHazard, Route, SegmentStatus,
)
from roadguard.motion_detector import MotionClassifier
from roadguard.providers import ElevationProvider, RouteProvider
from roadguard.reporting import HazardReporter
from roadguard.road_status import RoadStatusMonitor
from roadguard.route_analysis import analyze_route
from roadguard.verification import VerificationWorkflow

logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)
logger = logging.getLogger(__name__)


def log_speaker(text: str, cancel: threading.Event):
    logger.info(f"ANNOUNCE: {text}")


class RoadGuardSystem:
    def __init__(self, store=None, gps: Optional[BaseGPS] = None,
                 elevation_provider: Optional[ElevationProvider] = None,
                 route_provider: Optional[RouteProvider] = None,
                 speaker=log_speaker, geocode: bool = False):
        self.store = store or self._open_store()
        if gps is None:
            if config.USE_SIMULATION:
                gps = SimulatedGPS()
            else:
                gps = RealGPS(config.GPS_PORT, config.GPS_BAUDRATE)
        self.gps = gps
        self.elevation_provider = elevation_provider
        self.route_provider = route_provider
        self.tracker = PositionTracker()
        self.reporter = HazardReporter(self.store, ReverseGeocoder() if geocode else None)
        self.classifier = MotionClassifier(on_detection=self._on_detection)
        self.announcer = AnnouncementQueue(speaker)
        self.road_status = RoadStatusMonitor(self._on_segment_status)
        self.verification = VerificationWorkflow(self.store)

        self.filters = HazardFilters()
        self.warning_distance = config.WARNING_DISTANCE_METERS
        self.hazards: List[HazardRecord] = []
        self.route: Optional[Route] = None
        self.predicted_hazards: List[PredictedHazard] = []
        self.summary = {}
        self.navigating = False
        self.hazards_nearby: List[HazardMatch] = []
        self.hazards_ahead: List[HazardMatch] = []
        self.status_text = generate_status_text([])
        self.segment_status = SegmentStatus()
        self.pending_detection: Optional[DetectionEvent] = None
        self.running = False

        self._unsubscribe = self.store.subscribe(self._on_hazards)

    @staticmethod
    def _open_store():
        fallback = OfflineHazardStore()
        try:
            primary = SqliteHazardStore()
        except StoreError as e:
            logger.warning(f"Could not open hazard database: {e}. Using offline store.")
            return fallback
        return HazardRepository(primary, fallback)

    # ---------- store ----------
    def _on_hazards(self, hazards: List[HazardRecord]):
        self.hazards = hazards
        logger.info(f"Received hazards: {len(hazards)}")
        if self.route is not None:
            self.summary = route_summary(hazards, self.route.path, self.filters)

    # ---------- route ----------
    def set_route(self, route: Optional[Route]):
        self.route = route
        if route is None:
            self.predicted_hazards = []
            self.summary = {}
            self.hazards_ahead = []
            self.navigating = False
            return

        analysis = analyze_route(route, self.hazards, self.elevation_provider)
        self.predicted_hazards = analysis.predicted_hazards
        self.summary = route_summary(self.hazards, route.path, self.filters)
        logger.info(f"Route summary: {self.summary}")

    def plan_route(self, destination: GeoPoint) -> Optional[Route]:
        """Fetch a route from the current position and make it the active route"""
        origin = self.tracker.location
        if self.route_provider is None or origin is None:
            logger.warning("Cannot plan a route without a route provider and a position fix")
            return None
        try:
            route = self.route_provider.get_route(origin, destination)
        except ProviderError as e:
            logger.error(f"Route request failed: {e}")
            return None
        self.set_route(route)
        return route

    def start_navigation(self):
        self.navigating = True
        self.road_status.start()
        position = self.tracker.location
        if position is not None and self.route is not None:
            self.hazards_ahead = hazards_ahead_on_route(
                self.hazards, self.route.path, position, self.warning_distance, self.filters)
            logger.info(f"Initial hazard check - found {len(self.hazards_ahead)} hazards "
                        f"within {self.warning_distance}m")

    def stop_navigation(self):
        self.navigating = False
        self.hazards_ahead = []
        self.road_status.stop()

    # ---------- position ----------
    def on_position(self, fix: Position) -> Position:
        position = self.tracker.update(fix)
        origin = position.point

        self.hazards_nearby = filter_by_proximity(self.hazards, origin, self.warning_distance, self.filters)
        if self.navigating and self.route is not None:
            self.hazards_ahead = hazards_ahead_on_route(
                self.hazards, self.route.path, origin, self.warning_distance, self.filters)
            self.road_status.update_inputs(origin, self.route.path, self.hazards, self.filters)

        text = generate_status_text(self.hazards_nearby)
        if text != self.status_text:
            self.status_text = text
            if self.hazards_nearby:
                self.announcer.announce(text, priority=0)

        prompt = self.verification.refresh(origin, self.hazards)
        if prompt is not None:
            logger.debug(f"Verification prompt for hazard {prompt.hazard.id} "
                         f"at {prompt.distance_from_user:.0f}m")
        return position

    def _on_segment_status(self, status: SegmentStatus):
        self.segment_status = status

    # ---------- motion ----------
    def on_motion_sample(self, sample: MotionSample):
        self.classifier.add_sample(sample)

    def _on_detection(self, event: DetectionEvent):
        self.pending_detection = event

    def confirm_detection(self) -> Optional[str]:
        event, self.pending_detection = self.pending_detection, None
        if event is None:
            return None
        return self.reporter.confirm_detection(event, self.tracker.location)

    def dismiss_detection(self):
        event, self.pending_detection = self.pending_detection, None
        if event is not None:
            self.reporter.dismiss_detection(event)

    # ---------- lifecycle ----------
    def run(self):
        """Poll the position source until interrupted"""
        self.running = True
        self.announcer.start()
        self.classifier.enable()
        try:
            while self.running:
                fix = self.gps.get_gps_data()
                if fix is not None:
                    self.on_position(fix)
                time.sleep(config.STATUS_INTERVAL_SEC)
        except KeyboardInterrupt:
            logger.info("Shutting down...")
        finally:
            self.shutdown()

    def shutdown(self):
        self.running = False
        self.classifier.disable()
        self.road_status.stop()
        self.announcer.stop()
        self._unsubscribe()
        self.gps.close()
        logger.info("RoadGuard stopped")


def main():
    system = RoadGuardSystem()
    system.run()


if __name__ == '__main__':
    main()
