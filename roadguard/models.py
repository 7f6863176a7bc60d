import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, FrozenSet
from enum import Enum


class HazardType(Enum):
    SPEED_BREAKER = "speed_breaker"
    POTHOLE = "pothole"
    MANHOLE = "manhole"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class HazardSource(Enum):
    MANUAL_REPORT = "manual_report"
    MOTION_DETECTION = "motion_detection"
    ELEVATION_DETECTION = "elevation_detection"
    ROUTE_ANALYSIS = "route_analysis"


class Vote(Enum):
    YES = "yes"
    NO = "no"


@dataclass(frozen=True)
class GeoPoint:
    """A WGS84 latitude/longitude pair in decimal degrees."""
    lat: float
    lng: float

    def is_valid(self) -> bool:
        return (
            isinstance(self.lat, (int, float)) and isinstance(self.lng, (int, float))
            and math.isfinite(self.lat) and math.isfinite(self.lng)
            and -90.0 <= self.lat <= 90.0 and -180.0 <= self.lng <= 180.0
        )


@dataclass
class HazardRecord:
    type: HazardType
    severity: Severity
    location: GeoPoint
    source: HazardSource = HazardSource.MANUAL_REPORT
    verified: bool = False
    vote_yes: int = 0
    vote_no: int = 0
    confidence: Optional[float] = None
    removal_requested: bool = False
    removal_votes: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    city: Optional[str] = None
    region: Optional[str] = None
    id: Optional[str] = None

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type.value,
            'severity': self.severity.value,
            'lat': self.location.lat,
            'lng': self.location.lng,
            'source': self.source.value,
            'verified': self.verified,
            'vote_yes': self.vote_yes,
            'vote_no': self.vote_no,
            'confidence': self.confidence,
            'removal_requested': self.removal_requested,
            'removal_votes': self.removal_votes,
            'created_at': self.created_at.isoformat(),
            'city': self.city,
            'region': self.region,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'HazardRecord':
        created_at = data.get('created_at')
        confidence = data.get('confidence')
        return cls(
            id=data.get('id'),
            type=HazardType(data['type']),
            severity=Severity(data['severity']),
            location=GeoPoint(float(data['lat']), float(data['lng'])),
            source=HazardSource(data.get('source') or HazardSource.MANUAL_REPORT.value),
            verified=bool(data.get('verified', False)),
            vote_yes=int(data.get('vote_yes') or 0),
            vote_no=int(data.get('vote_no') or 0),
            confidence=float(confidence) if confidence is not None else None,
            removal_requested=bool(data.get('removal_requested', False)),
            removal_votes=int(data.get('removal_votes') or 0),
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.now(),
            city=data.get('city'),
            region=data.get('region'),
        )


@dataclass
class DetectionEvent:
    type: HazardType
    severity: Severity
    peak_acceleration: float  # in g
    confidence: float
    timestamp: float  # seconds, sample clock


@dataclass
class PredictedHazard:
    location: GeoPoint
    type: HazardType
    severity: Severity
    source: HazardSource
    confidence: float
    verified_by: int = 0
    clustered: bool = False


@dataclass(frozen=True)
class HazardFilters:
    types: FrozenSet[HazardType] = frozenset(HazardType)
    severities: FrozenSet[Severity] = frozenset(Severity)
    only_verified: bool = False

    def accepts(self, hazard: HazardRecord) -> bool:
        if hazard.type not in self.types:
            return False
        if hazard.severity not in self.severities:
            return False
        if self.only_verified and not hazard.verified:
            return False
        return True


@dataclass
class HazardMatch:
    """A hazard annotated with its distance to the traveler."""
    hazard: HazardRecord
    distance_from_user: float  # meters
    route_index: Optional[int] = None


@dataclass
class SegmentStatus:
    segment_index: int = 0
    total_segments: int = 0
    hazard_count: int = 0
    is_idle: bool = True
    distance_covered: float = 0.0  # meters from origin to the nearest route point


@dataclass
class Position:
    lat: float
    lng: float
    accuracy: float = 0.0
    timestamp: float = 0.0  # seconds
    speed: Optional[float] = None  # km/h
    heading: Optional[float] = None  # degrees

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.lat, self.lng)


@dataclass
class MotionSample:
    x: Optional[float]
    y: Optional[float]
    z: Optional[float]
    timestamp: float  # seconds


@dataclass
class RouteStep:
    start_location: GeoPoint
    distance_m: Optional[float]
    duration_s: Optional[float]

    @property
    def average_speed_kmh(self) -> Optional[float]:
        if self.distance_m is None or not self.duration_s:
            return None
        return self.distance_m / self.duration_s * 3.6


@dataclass
class RouteLeg:
    steps: List[RouteStep] = field(default_factory=list)


@dataclass
class Route:
    path: List[GeoPoint] = field(default_factory=list)
    legs: List[RouteLeg] = field(default_factory=list)

    def steps(self) -> List[RouteStep]:
        return [step for leg in self.legs for step in leg.steps]


@dataclass
class ElevationSample:
    location: GeoPoint
    elevation: float  # meters
