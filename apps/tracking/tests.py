import math
from unittest.mock import MagicMock

import requests
from django.test import SimpleTestCase, override_settings

from apps.tracking.directions import DirectionsClient, decode_polyline
from apps.tracking.estimator import (
    FALLBACK_WARNING,
    RouteEstimator,
    eta_minutes,
    fallback_polyline,
    haversine_km,
)
from apps.utils.exceptions import UpstreamUnavailable
from apps.utils.kvstore import InMemoryKeyValueStore
from apps.utils.resilience import CircuitBreaker

ORIGIN = {"latitude": 12.9716, "longitude": 77.5946}
DESTINATION = {"latitude": 12.9352, "longitude": 77.6245}


def directions_payload():
    return {
        "status": "OK",
        "routes": [{
            "summary": "Hosur Rd",
            "bounds": {"northeast": {"lat": 12.97, "lng": 77.62}},
            "overview_polyline": {"points": "_p~iF~ps|U_ulLnnqC_mqNvxq`@"},
            "legs": [{
                "distance": {"text": "6.2 km", "value": 6200},
                "duration": {"text": "18 mins", "value": 1080},
                "duration_in_traffic": {"text": "24 mins", "value": 1440},
                "steps": [{
                    "html_instructions": "Head south",
                    "distance": {"text": "6.2 km", "value": 6200},
                    "duration": {"text": "18 mins", "value": 1080},
                    "start_location": {"lat": 12.9716, "lng": 77.5946},
                    "end_location": {"lat": 12.9352, "lng": 77.6245},
                }],
            }],
        }],
    }


def breaker():
    return CircuitBreaker("test_directions", failure_threshold=2, store=InMemoryKeyValueStore())


class GeometryTests(SimpleTestCase):
    def test_haversine_known_distance(self):
        # One degree of latitude on a 6371 km sphere
        distance = haversine_km({"latitude": 0, "longitude": 0}, {"latitude": 1, "longitude": 0})
        self.assertAlmostEqual(distance, 6371 * math.pi / 180, places=6)

    def test_eta_uses_base_speed_and_traffic_factor(self):
        self.assertEqual(eta_minutes(15, speed_kmh=30), 30)
        self.assertEqual(eta_minutes(15, speed_kmh=30, traffic_factor=1.2), 36)

    def test_fallback_polyline_shape(self):
        coords = fallback_polyline(ORIGIN, DESTINATION, points=20, amplitude=0.001)
        self.assertEqual(len(coords), 21)
        self.assertAlmostEqual(coords[0]["latitude"], ORIGIN["latitude"])
        self.assertAlmostEqual(coords[-1]["longitude"], DESTINATION["longitude"])

        mid_lat = (ORIGIN["latitude"] + DESTINATION["latitude"]) / 2
        self.assertAlmostEqual(coords[10]["latitude"], mid_lat + 0.001)

    def test_decode_polyline(self):
        self.assertEqual(
            decode_polyline("_p~iF~ps|U_ulLnnqC_mqNvxq`@"),
            [
                {"latitude": 38.5, "longitude": -120.2},
                {"latitude": 40.7, "longitude": -120.95},
                {"latitude": 43.252, "longitude": -126.453},
            ],
        )


class DirectionsClientTests(SimpleTestCase):
    def test_parses_provider_route(self):
        session = MagicMock()
        session.get.return_value.json.return_value = directions_payload()

        client = DirectionsClient(api_key="key", timeout=2, session=session, breaker=breaker())
        data = client.get_directions(ORIGIN, DESTINATION)

        self.assertEqual(data["distance"], {"text": "6.2 km", "value": 6200})
        self.assertEqual(data["duration"]["value"], 1440)
        self.assertEqual(len(data["coordinates"]), 3)
        self.assertEqual(data["summary"], "Hosur Rd")
        _, kwargs = session.get.call_args
        self.assertEqual(kwargs["timeout"], 2)

    def test_missing_key_is_upstream_unavailable(self):
        client = DirectionsClient(api_key="", session=MagicMock(), breaker=breaker())
        with self.assertRaises(UpstreamUnavailable):
            client.get_directions(ORIGIN, DESTINATION)

    def test_timeouts_open_the_circuit(self):
        session = MagicMock()
        session.get.side_effect = requests.Timeout("slow")
        client = DirectionsClient(api_key="key", session=session, breaker=breaker())

        for _ in range(2):
            with self.assertRaises(UpstreamUnavailable):
                client.get_directions(ORIGIN, DESTINATION)

        session.get.reset_mock()
        with self.assertRaises(UpstreamUnavailable):
            client.get_directions(ORIGIN, DESTINATION)
        session.get.assert_not_called()

    def test_non_ok_status(self):
        session = MagicMock()
        session.get.return_value.json.return_value = {"status": "ZERO_RESULTS", "routes": []}
        client = DirectionsClient(api_key="key", session=session, breaker=breaker())
        with self.assertRaises(UpstreamUnavailable):
            client.get_directions(ORIGIN, DESTINATION)


@override_settings(ROUTE_BASE_SPEED_KMH=30, ROUTE_TRAFFIC_FACTOR=1.2)
class RouteEstimatorTests(SimpleTestCase):
    def test_provider_route_supersedes_fallback(self):
        client = MagicMock()
        client.get_directions.return_value = {
            "coordinates": [ORIGIN, DESTINATION],
            "distance": {"text": "6.2 km", "value": 6200},
            "duration": {"text": "24 mins", "value": 1440},
            "steps": [],
            "summary": "Hosur Rd",
        }

        estimate = RouteEstimator(client=client).estimate(ORIGIN, DESTINATION)

        self.assertFalse(estimate.fallback)
        self.assertEqual(estimate.eta_minutes, 24)
        self.assertEqual(estimate.distance_km, 6.2)
        self.assertEqual(estimate.polyline, [ORIGIN, DESTINATION])

    def test_provider_failure_falls_back(self):
        client = MagicMock()
        client.get_directions.side_effect = UpstreamUnavailable("down")

        estimate = RouteEstimator(client=client).estimate(ORIGIN, DESTINATION)

        distance = haversine_km(ORIGIN, DESTINATION)
        self.assertTrue(estimate.fallback)
        self.assertEqual(estimate.eta_minutes, round(distance / (30 / 1.2) * 60))
        self.assertEqual(len(estimate.polyline), 21)
        self.assertEqual(estimate.warnings, [FALLBACK_WARNING])

        route = estimate.as_route_data(origin=ORIGIN, destination=DESTINATION)
        self.assertTrue(route["fallback"])
        self.assertEqual(route["duration"]["value"], estimate.eta_minutes * 60)
