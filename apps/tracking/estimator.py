"""
Distance, ETA and route geometry between two coordinates.

Provider geometry (Google Directions) wins when reachable; otherwise a
sinusoidally curved straight-line estimate is returned and flagged
``fallback=True`` so clients can tell the two apart.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

from django.conf import settings
from django.utils import timezone

from apps.utils.exceptions import UpstreamUnavailable
from apps.utils.validators import validate_lat_lng

from .directions import DirectionsClient

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

FALLBACK_WARNING = "Using estimated route - directions provider unavailable"


def _point(location):
    lat, lng = float(location["latitude"]), float(location["longitude"])
    validate_lat_lng(lat, lng)
    return lat, lng


def haversine_km(origin, destination) -> float:
    lat1, lon1 = _point(origin)
    lat2, lon2 = _point(destination)
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def eta_minutes(distance_km, speed_kmh=None, traffic_factor=1.0) -> int:
    speed = speed_kmh or settings.ROUTE_BASE_SPEED_KMH
    effective_speed = speed / traffic_factor
    return round(distance_km / effective_speed * 60)


def fallback_polyline(origin, destination, points=None, amplitude=None):
    points = points or settings.ROUTE_FALLBACK_POINTS
    amplitude = settings.ROUTE_CURVE_AMPLITUDE if amplitude is None else amplitude
    lat1, lon1 = _point(origin)
    lat2, lon2 = _point(destination)

    coordinates = []
    for i in range(points + 1):
        ratio = i / points
        curve = amplitude * math.sin(ratio * math.pi)
        coordinates.append({
            "latitude": lat1 + (lat2 - lat1) * ratio + curve,
            "longitude": lon1 + (lon2 - lon1) * ratio + curve,
        })
    return coordinates


@dataclass
class RouteEstimate:
    distance_km: float
    eta_minutes: int
    polyline: List[dict]
    fallback: bool
    distance: dict
    duration: dict
    steps: List[dict] = field(default_factory=list)
    bounds: Optional[dict] = None
    summary: str = ""
    warnings: List[str] = field(default_factory=list)

    def as_route_data(self, route_type="partner-to-customer", origin=None, destination=None):
        return {
            "route_type": route_type,
            "coordinates": self.polyline,
            "distance": self.distance,
            "duration": self.duration,
            "distance_km": round(self.distance_km, 3),
            "eta": self.eta_minutes,
            "steps": self.steps,
            "bounds": self.bounds,
            "summary": self.summary,
            "origin": origin,
            "destination": destination,
            "fallback": self.fallback,
            "warnings": self.warnings,
            "last_updated": timezone.now().isoformat(),
        }


class RouteEstimator:

    def __init__(self, client=None, speed_kmh=None, fallback_traffic_factor=None):
        self.client = client or DirectionsClient()
        self.speed_kmh = speed_kmh or settings.ROUTE_BASE_SPEED_KMH
        self.fallback_traffic_factor = fallback_traffic_factor or settings.ROUTE_TRAFFIC_FACTOR

    def estimate(self, origin, destination) -> RouteEstimate:
        try:
            directions = self.client.get_directions(origin, destination)
        except UpstreamUnavailable as exc:
            logger.warning(f"Falling back to estimated route: {exc.message}")
            return self.fallback(origin, destination)

        distance_m = directions["distance"]["value"]
        duration_s = directions["duration"]["value"]
        return RouteEstimate(
            distance_km=distance_m / 1000,
            eta_minutes=round(duration_s / 60),
            polyline=directions["coordinates"],
            fallback=False,
            distance=directions["distance"],
            duration=directions["duration"],
            steps=directions.get("steps", []),
            bounds=directions.get("bounds"),
            summary=directions.get("summary", ""),
        )

    def fallback(self, origin, destination) -> RouteEstimate:
        distance = haversine_km(origin, destination)
        eta = eta_minutes(distance, self.speed_kmh, self.fallback_traffic_factor)
        return RouteEstimate(
            distance_km=distance,
            eta_minutes=eta,
            polyline=fallback_polyline(origin, destination),
            fallback=True,
            distance={"text": f"{distance:.1f} km", "value": round(distance * 1000)},
            duration={"text": f"{eta} mins", "value": eta * 60},
            warnings=[FALLBACK_WARNING],
        )
