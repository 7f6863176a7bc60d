"""
roadguard: crowdsourced road-hazard inference and verification.

Submodules:
- motion_detector: acceleration samples to hazard detections.
- hazard_analytics: proximity filtering, hazards ahead on a route, route summary.
- road_status: 2 km segment status and its periodic monitor.
- route_analysis: speed-profile / elevation predictions fused with reports.
- verification: crowd voting state machine.
- database: hazard stores (SQLite primary, offline JSON fallback).
"""

__all__ = [
    "motion_detector",
    "hazard_analytics",
    "road_status",
    "route_analysis",
    "verification",
    "database",
]
