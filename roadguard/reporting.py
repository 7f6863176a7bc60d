import logging
from typing import Callable, Optional, Tuple

from roadguard.config import config
from roadguard.database import HazardStore
from roadguard.exceptions import StoreError
from roadguard.models import (
    DetectionEvent, GeoPoint, HazardRecord, HazardSource, HazardType, Severity,
)
from roadguard.utils import is_valid_point

logger = logging.getLogger(__name__)

LocationDescriber = Callable[[float, float], Tuple[str, str]]


class HazardReporter:
    """Turns manual reports and confirmed motion detections into stored hazards"""

    def __init__(self, store: HazardStore, describe_location: Optional[LocationDescriber] = None):
        self.store = store
        self.describe_location = describe_location

    def is_duplicate(self, hazard_type: HazardType, location: GeoPoint) -> bool:
        return bool(self.store.find_nearby(location, config.DUPLICATE_RADIUS_METERS, hazard_type))

    def _save(self, hazard: HazardRecord) -> Optional[str]:
        if not is_valid_point(hazard.location):
            logger.warning(f"Refusing hazard with invalid location {hazard.location}")
            return None

        try:
            if self.is_duplicate(hazard.type, hazard.location):
                logger.info(f"Duplicate {hazard.type.value} at ({hazard.location.lat}, {hazard.location.lng})")
                return None

            if self.describe_location:
                hazard.city, hazard.region = self.describe_location(hazard.location.lat, hazard.location.lng)

            hazard_id = self.store.create(hazard)
        except StoreError as e:
            logger.error(f"Failed to save hazard: {e}")
            return None

        logger.info(f"New hazard reported: ID={hazard_id}, Type={hazard.type.value}, "
                    f"Severity={hazard.severity.value}, "
                    f"Location=({hazard.location.lat:.6f}, {hazard.location.lng:.6f})")
        return hazard_id

    def report_manual(self, hazard_type: HazardType, severity: Severity,
                      location: GeoPoint) -> Optional[str]:
        return self._save(HazardRecord(
            type=hazard_type,
            severity=severity,
            location=location,
            source=HazardSource.MANUAL_REPORT,
        ))

    def confirm_detection(self, event: DetectionEvent, location: Optional[GeoPoint]) -> Optional[str]:
        """Persist a detection the traveler confirmed at their current location"""
        if location is None:
            logger.warning(f"No position for confirmed {event.type.value} detection")
            return None
        return self._save(HazardRecord(
            type=event.type,
            severity=event.severity,
            location=location,
            source=HazardSource.MOTION_DETECTION,
            confidence=event.confidence,
        ))

    def dismiss_detection(self, event: DetectionEvent):
        logger.info(f"Detection dismissed: {event.type.value} ({event.severity.value})")
