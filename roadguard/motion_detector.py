import math
import logging
from collections import deque
from typing import Callable, Optional, Tuple

import numpy as np

from roadguard.config import config
from roadguard.models import DetectionEvent, HazardType, MotionSample, Severity

logger = logging.getLogger(__name__)


class MotionClassifier:
    """
    Turns a stream of 3-axis acceleration samples into hazard detections.

    Each sample is reduced to a peak-G value (distance from the baseline in g).
    The most recent samples are kept in a bounded buffer and the tail of that
    buffer is matched against per-type amplitude/duration signatures.
    """

    def __init__(self, on_detection: Optional[Callable[[DetectionEvent], None]] = None):
        self.on_detection = on_detection
        self.enabled = False
        self.baseline: Optional[Tuple[float, float, float]] = None
        self.buffer = deque(maxlen=config.MOTION_BUFFER_SIZE)
        self.last_detection_ts: Optional[float] = None

    def enable(self):
        if not self.enabled:
            logger.info("Motion detection enabled")
        self.enabled = True

    def disable(self):
        """Stop consuming samples and drop all buffered state"""
        self.enabled = False
        self.baseline = None
        self.buffer.clear()
        self.last_detection_ts = None
        logger.info("Motion detection disabled")

    def add_sample(self, sample: MotionSample) -> Optional[DetectionEvent]:
        if not self.enabled:
            return None

        x = sample.x or 0.0
        y = sample.y or 0.0
        z = sample.z or 0.0

        if self.baseline is None:
            # The first sample after enabling only anchors the zero offset
            self.baseline = (0.0, 0.0, 0.0)
            return None

        bx, by, bz = self.baseline
        peak_g = math.sqrt((x - bx) ** 2 + (y - by) ** 2 + (z - bz) ** 2) / config.GRAVITY
        self.buffer.append((sample.timestamp, peak_g))

        if self.last_detection_ts is not None and \
                sample.timestamp - self.last_detection_ts < config.MOTION_DEBOUNCE_SEC:
            return None

        event = self._analyze_buffer()
        if event is None:
            return None

        self.last_detection_ts = sample.timestamp
        logger.info(f"Detected {event.type.value} ({event.severity.value}) - "
                    f"Peak G: {event.peak_acceleration:.2f}")
        if self.on_detection:
            self.on_detection(event)
        return event

    def _analyze_buffer(self) -> Optional[DetectionEvent]:
        if len(self.buffer) < config.MOTION_MIN_SAMPLES:
            return None

        window = list(self.buffer)[-config.MOTION_WINDOW_SIZE:]
        timestamps = np.array([ts for ts, _ in window])
        peaks = np.array([peak for _, peak in window])
        max_peak = float(peaks.max())
        min_peak = float(peaks.min())
        duration = float(timestamps[-1] - timestamps[0])

        hazard_type = self.classify_window(max_peak, min_peak, duration)
        if hazard_type is None:
            return None

        return DetectionEvent(
            type=hazard_type,
            severity=self.classify_severity(max_peak, hazard_type),
            peak_acceleration=max_peak,
            confidence=min(max_peak / 5, 1.0),
            timestamp=float(timestamps[-1]),
        )

    @staticmethod
    def classify_window(max_peak: float, min_peak: float, duration: float) -> Optional[HazardType]:
        # Speed breaker: sharp vertical jolt over a moderate duration
        if max_peak > 1.8 and 0.2 < duration < 0.6:
            return HazardType.SPEED_BREAKER
        # Pothole: dip followed by rebound, longer duration
        if min_peak < -1.5 and max_peak > 1.5 and 0.3 < duration < 0.9:
            return HazardType.POTHOLE
        # Manhole: very sharp spike over a short time
        if max_peak > 2.0 and min_peak > -0.5 and 0.08 < duration < 0.25:
            return HazardType.MANHOLE
        return None

    @staticmethod
    def classify_severity(peak_g: float, hazard_type: HazardType) -> Severity:
        thresholds = config.MOTION_SEVERITY_THRESHOLDS[hazard_type.value]
        if peak_g > thresholds['high']:
            return Severity.HIGH
        if peak_g > thresholds['medium']:
            return Severity.MEDIUM
        return Severity.LOW
