import logging

import requests
from django.conf import settings

from apps.utils.exceptions import UpstreamUnavailable
from apps.utils.resilience import CircuitBreaker

logger = logging.getLogger(__name__)

DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"


def decode_polyline(encoded):
    """
    Google encoded polyline -> [{"latitude", "longitude"}].
    """
    coordinates = []
    index = lat = lng = 0
    while index < len(encoded):
        deltas = []
        for _ in range(2):
            shift = result = 0
            while True:
                byte = ord(encoded[index]) - 63
                index += 1
                result |= (byte & 0x1F) << shift
                shift += 5
                if byte < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lng += deltas[1]
        coordinates.append({"latitude": lat / 1e5, "longitude": lng / 1e5})
    return coordinates


def _latlng(point):
    return f"{point['latitude']},{point['longitude']}"


class DirectionsClient:
    """
    Thin Google Directions client. Every failure (missing key, timeout,
    HTTP error, non-OK status, open circuit) surfaces as UpstreamUnavailable.
    """

    def __init__(self, api_key=None, timeout=None, session=None, breaker=None):
        self.api_key = api_key if api_key is not None else settings.GOOGLE_MAPS_API_KEY
        self.timeout = timeout or settings.DIRECTIONS_TIMEOUT
        self.session = session or requests.Session()
        self.breaker = breaker or CircuitBreaker(
            "google_directions",
            failure_threshold=settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
            recovery_timeout=settings.CIRCUIT_BREAKER_RECOVERY_TIMEOUT,
            failure_window=settings.CIRCUIT_BREAKER_FAILURE_WINDOW,
        )

    def get_directions(self, origin, destination, mode="driving", traffic=True, alternatives=False):
        if not self.api_key:
            raise UpstreamUnavailable("Directions API key is not configured.")

        params = {
            "origin": _latlng(origin),
            "destination": _latlng(destination),
            "mode": mode,
            "alternatives": str(alternatives).lower(),
            "key": self.api_key,
        }
        if traffic:
            params["departure_time"] = "now"

        try:
            data = self.breaker(self._fetch)(params)
        except UpstreamUnavailable:
            raise
        except (requests.RequestException, ValueError, KeyError, IndexError) as exc:
            logger.warning(f"Directions request failed: {exc}")
            raise UpstreamUnavailable(f"Directions provider failed: {exc}") from exc

        return data

    def _fetch(self, params):
        response = self.session.get(DIRECTIONS_URL, params=params, timeout=self.timeout)
        response.raise_for_status()
        payload = response.json()

        if payload.get("status") != "OK" or not payload.get("routes"):
            raise ValueError(f"Directions API status {payload.get('status')}")

        return self._parse(payload["routes"][0])

    @staticmethod
    def _parse(route):
        leg = route["legs"][0]
        # duration_in_traffic only comes back when departure_time is set
        duration = leg.get("duration_in_traffic") or leg["duration"]
        return {
            "coordinates": decode_polyline(route["overview_polyline"]["points"]),
            "distance": {"text": leg["distance"]["text"], "value": leg["distance"]["value"]},
            "duration": {"text": duration["text"], "value": duration["value"]},
            "steps": [
                {
                    "instruction": step.get("html_instructions", ""),
                    "distance": step["distance"],
                    "duration": step["duration"],
                    "start_location": step["start_location"],
                    "end_location": step["end_location"],
                }
                for step in leg.get("steps", [])
            ],
            "bounds": route.get("bounds"),
            "summary": route.get("summary", ""),
        }
