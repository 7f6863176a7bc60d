import os
from dataclasses import dataclass



@dataclass
class Config:
    # GPS Configuration
    USE_SIMULATION = True  # Set to False to use real GPS
    GPS_PORT: str = 'COM10'
    GPS_BAUDRATE: int = 9600
    DEFAULT_LOCATION: tuple = (28.6139, 77.2090)  # used when no fix is available
    SPEED_SMOOTHING_WINDOW: int = 5

    # Database Configuration
    DB_PATH: str = os.getenv('ROADGUARD_DB_PATH', 'roadguard.db')

    # Paths
    DATA_DIR: str = os.getenv('ROADGUARD_DATA_DIR', 'data')
    OFFLINE_LOG_DIR: str = os.path.join(DATA_DIR, 'offline_logs')
    EXPORT_DIR: str = os.path.join(DATA_DIR, 'exports')

    # Reporting
    DUPLICATE_RADIUS_METERS: float = 5.0  # Same type within 5 meters is the same hazard

    # Motion detection (accelerations in g, durations in seconds)
    GRAVITY: float = 9.81
    MOTION_BUFFER_SIZE: int = 100
    MOTION_WINDOW_SIZE: int = 50
    MOTION_MIN_SAMPLES: int = 5
    MOTION_DEBOUNCE_SEC: float = 1.5
    MOTION_SEVERITY_THRESHOLDS: dict | None = None

    # Proximity / route matching (meters)
    WARNING_DISTANCE_METERS: float = 100.0
    ROUTE_MATCH_RADIUS_METERS: float = 50.0
    ROUTE_SUMMARY_RADIUS_METERS: float = 100.0
    SEGMENT_LENGTH_METERS: float = 2000.0
    SEGMENT_HAZARD_RADIUS_FACTOR: float = 1.5
    SEGMENT_IDLE_MAX_HAZARDS: int = 4
    STATUS_INTERVAL_SEC: float = 1.0

    # Route analysis
    MIN_CONFIDENCE_THRESHOLD: float = 0.4  # predictions below this are never shown
    SPEED_CHANGE_THRESHOLD_KMH: float = 20.0
    ELEVATION_CHANGE_THRESHOLD_M: float = 2.0
    CLUSTER_RADIUS_METERS: float = 50.0
    ELEVATION_MAX_SAMPLES: int = 100

    # Verification
    VOTING_RADIUS_METERS: float = 200.0
    VERIFY_YES_VOTES: int = 3
    REMOVE_NO_VOTES: int = 2
    REMOVAL_VOTES_REQUIRED: int = 20

    # Announcements
    ANNOUNCEMENT_GAP_SEC: float = 0.3

    def __post_init__(self):
        # Per-type peak-G breakpoints: (high, medium)
        self.MOTION_SEVERITY_THRESHOLDS = {
            'speed_breaker': {'high': 3.2, 'medium': 2.3},
            'pothole': {'high': 3.0, 'medium': 2.0},
            'manhole': {'high': 3.8, 'medium': 2.7},
        }


config = Config()
