import time
import serial
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Optional, Tuple
from geopy.geocoders import Nominatim

from roadguard.config import config
from roadguard.models import GeoPoint, Position
from roadguard.utils import bearing_degrees, distance_meters

logger = logging.getLogger(__name__)


class ReverseGeocoder:
    def __init__(self, user_agent: str = "roadguard"):
        self.geolocator = Nominatim(user_agent=user_agent)

    def __call__(self, lat: float, lon: float) -> Tuple[str, str]:
        try:
            location = self.geolocator.reverse((lat, lon), timeout=5)
            if location and location.raw.get('address'):
                address = location.raw['address']
                return address.get('city', address.get('town', 'Unknown')), address.get('state', 'Unknown')
        except Exception as e:
            logger.debug(f"Geocoding error: {e}")
        return 'Unknown', 'Unknown'


class BaseGPS(ABC):
    @abstractmethod
    def get_gps_data(self) -> Optional[Position]:
        pass

    def close(self):
        pass


class RealGPS(BaseGPS):
    def __init__(self, port, baudrate):
        self.ser = None
        self.port = port
        self.baudrate = baudrate
        try:
            self.ser = serial.Serial(port, baudrate, timeout=1)
            logger.info("GPS serial port opened")
        except Exception as e:
            logger.warning(f"Could not open GPS port: {e}")

    def get_gps_data(self) -> Optional[Position]:
        try:
            if not self.ser or not self.ser.is_open:
                return None

            line = self.ser.readline().decode('utf-8', errors='ignore').strip()
            if not line:
                return None
            return self.parse_nmea_sentence(line)
        except Exception as e:
            logger.error(f"GPS reading error: {e}")
        return None

    @classmethod
    def parse_nmea_sentence(cls, sentence: str) -> Optional[Position]:
        try:
            parts = sentence.split(',')
            if parts[0] == '$GPGGA' and len(parts) >= 6:
                lat = cls._nmea_to_decimal(parts[2], parts[3])
                lon = cls._nmea_to_decimal(parts[4], parts[5])
                if lat is not None and lon is not None:
                    return Position(lat=lat, lng=lon, timestamp=time.time())
            elif parts[0] == '$GPRMC' and len(parts) >= 7 and parts[2] == 'A':
                lat = cls._nmea_to_decimal(parts[3], parts[4])
                lon = cls._nmea_to_decimal(parts[5], parts[6])
                speed = None
                if len(parts) >= 8 and parts[7]:
                    speed = float(parts[7]) * 1.852  # knots to km/h
                heading = None
                if len(parts) >= 9 and parts[8]:
                    heading = float(parts[8])
                if lat is not None and lon is not None:
                    return Position(lat=lat, lng=lon, timestamp=time.time(), speed=speed, heading=heading)
        except (ValueError, IndexError) as e:
            logger.debug(f"NMEA parse error: {e}")
        return None

    @staticmethod
    def _nmea_to_decimal(coord_str, direction) -> Optional[float]:
        try:
            if not coord_str or '.' not in coord_str:
                return None

            if direction in ['N', 'S']:
                degrees = int(coord_str[:2])
                minutes = float(coord_str[2:])
            else:
                degrees = int(coord_str[:3])
                minutes = float(coord_str[3:])

            decimal = degrees + minutes / 60.0
            if direction in ['S', 'W']:
                decimal *= -1
            return decimal
        except ValueError:
            return None

    def close(self):
        if self.ser and self.ser.is_open:
            self.ser.close()


class SimulatedGPS(BaseGPS):
    def __init__(self, location: Tuple[float, float] = config.DEFAULT_LOCATION):
        self.location = location

    def get_gps_data(self) -> Optional[Position]:
        lat, lon = self.location
        return Position(lat=lat, lng=lon, accuracy=0.0, timestamp=time.time())


class PositionTracker:
    """Derives smoothed speed and heading from successive fixes"""

    def __init__(self, window: int = config.SPEED_SMOOTHING_WINDOW):
        self.last: Optional[Position] = None
        self.speed_history = deque(maxlen=window)

    def update(self, fix: Position) -> Position:
        speed = 0.0
        heading = fix.heading

        if fix.speed is not None and fix.speed >= 0:
            speed = fix.speed
        elif self.last is not None:
            time_diff = fix.timestamp - self.last.timestamp
            if time_diff > 0.5:
                distance = distance_meters(self.last.point, fix.point)
                speed = distance / time_diff * 3.6
                if heading is None:
                    heading = bearing_degrees(self.last.point, fix.point)

        self.speed_history.append(max(0.0, speed))
        smoothed = sum(self.speed_history) / len(self.speed_history)

        position = Position(lat=fix.lat, lng=fix.lng, accuracy=fix.accuracy, timestamp=fix.timestamp,
                            speed=smoothed, heading=heading)
        self.last = position
        return position

    def reset(self):
        self.last = None
        self.speed_history.clear()

    @property
    def location(self) -> Optional[GeoPoint]:
        return self.last.point if self.last else None
