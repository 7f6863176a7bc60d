class RoadGuardError(Exception):
    """Base class for errors raised by roadguard"""


class StoreError(RoadGuardError):
    """A hazard store read or write failed"""


class HazardNotFoundError(StoreError):
    def __init__(self, hazard_id):
        super().__init__(f"Hazard {hazard_id} not found")
        self.hazard_id = hazard_id


class ProviderError(RoadGuardError):
    """A route, elevation or position provider failed"""
