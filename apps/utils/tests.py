# apps/utils/tests.py
import json
import logging
from unittest.mock import MagicMock, patch

from django.core.cache import caches
from django.db import OperationalError
from django.test import RequestFactory, SimpleTestCase
from rest_framework import serializers, status
from rest_framework.exceptions import NotAuthenticated

from .exceptions import (
    BusinessValidationError,
    InvalidTransition,
    ProductNotFound,
    UpstreamUnavailable,
    custom_exception_handler,
)
from .health import health_check
from .kvstore import CacheKeyValueStore, InMemoryKeyValueStore
from .logging import JSONFormatter
from .resilience import CircuitBreaker
from .validators import validate_coordinates, validate_lat_lng


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class InMemoryKeyValueStoreTests(SimpleTestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.store = InMemoryKeyValueStore(clock=self.clock)

    def test_ttl_expiry(self):
        self.store.set("k", "v", ttl=10)
        self.assertEqual(self.store.get("k"), "v")
        self.clock.now = 10
        self.assertIsNone(self.store.get("k"))

    def test_add_only_when_absent(self):
        self.assertTrue(self.store.add("k", 1, ttl=5))
        self.assertFalse(self.store.add("k", 2, ttl=5))
        self.assertEqual(self.store.get("k"), 1)
        self.clock.now = 6
        self.assertTrue(self.store.add("k", 3, ttl=5))

    def test_incr_keeps_first_window(self):
        self.assertEqual(self.store.incr("c", ttl=10), 1)
        self.clock.now = 8
        self.assertEqual(self.store.incr("c", ttl=10), 2)
        self.clock.now = 11
        self.assertEqual(self.store.incr("c", ttl=10), 1)

    def test_pop(self):
        self.store.set("ticket", "user-1")
        self.assertEqual(self.store.pop("ticket"), "user-1")
        self.assertIsNone(self.store.pop("ticket"))


class CacheKeyValueStoreTests(SimpleTestCase):

    def setUp(self):
        caches["default"].clear()
        self.store = CacheKeyValueStore()

    def test_pop_is_single_use(self):
        self.store.set("ws_ticket:abc", "user-1", ttl=30)
        self.assertEqual(self.store.pop("ws_ticket:abc"), "user-1")
        self.assertIsNone(self.store.pop("ws_ticket:abc"))

    def test_pop_loses_when_another_caller_deleted_first(self):
        self.store.set("ws_ticket:abc", "user-1", ttl=30)
        # Concurrent consumer removed the key between our read and delete
        with patch.object(CacheKeyValueStore, "delete", return_value=False):
            self.assertIsNone(self.store.pop("ws_ticket:abc"))


class HealthCheckTests(SimpleTestCase):

    def test_failure_hides_backend_detail(self):
        request = RequestFactory().get("/api/v1/utils/health/")
        with patch("apps.utils.health.connection") as connection:
            connection.cursor.side_effect = OperationalError("could not connect to 10.0.0.5:5432")
            with self.assertLogs("apps.utils.health", level="ERROR"):
                response = health_check(request)

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        body = json.loads(response.content)
        self.assertEqual(body["detail"], "Backing service unavailable.")
        self.assertNotIn("10.0.0.5", response.content.decode())
        self.assertEqual(body["components"]["db"], "unknown")


class CircuitBreakerTests(SimpleTestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.breaker = CircuitBreaker(
            "maps", failure_threshold=2, recovery_timeout=30, failure_window=60,
            store=InMemoryKeyValueStore(clock=self.clock),
        )

    def test_opens_after_threshold(self):
        failing = self.breaker(MagicMock(side_effect=ConnectionError("boom")))

        for _ in range(2):
            with self.assertRaises(ConnectionError):
                failing()

        self.assertTrue(self.breaker.is_open)
        with self.assertRaises(UpstreamUnavailable):
            failing()
        self.assertEqual(failing.__wrapped__.call_count, 2)

    def test_recovers_after_timeout(self):
        func = MagicMock(side_effect=[ConnectionError(), ConnectionError(), "ok"])
        wrapped = self.breaker(func)
        for _ in range(2):
            with self.assertRaises(ConnectionError):
                wrapped()

        self.clock.now = 31
        self.assertEqual(wrapped(), "ok")
        self.assertFalse(self.breaker.is_open)

    def test_success_resets_failures(self):
        func = MagicMock(side_effect=[ConnectionError(), "ok", ConnectionError()])
        wrapped = self.breaker(func)

        with self.assertRaises(ConnectionError):
            wrapped()
        wrapped()
        with self.assertRaises(ConnectionError):
            wrapped()

        self.assertFalse(self.breaker.is_open)


class ExceptionHandlerTests(SimpleTestCase):

    def test_domain_errors(self):
        response = custom_exception_handler(InvalidTransition("Order is no longer 'pending'."), {})
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data, {"error": "Order is no longer 'pending'.", "code": "invalid_transition"})

        response = custom_exception_handler(ProductNotFound("p-1"), {})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["code"], "product_not_found")

        response = custom_exception_handler(BusinessValidationError("Bad"), {})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_serializer_errors_keep_details(self):
        exc = serializers.ValidationError({"items": ["This field is required."]})
        response = custom_exception_handler(exc, {})
        self.assertEqual(response.data["code"], "validation_error")
        self.assertIn("items", response.data["details"])

    def test_drf_errors_flattened(self):
        response = custom_exception_handler(NotAuthenticated(), {})
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data["code"], "not_authenticated")

    def test_unhandled_errors_hide_internals(self):
        with self.assertLogs("apps.utils.exceptions", level="ERROR"):
            response = custom_exception_handler(KeyError("secret_column"), {})
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertNotIn("secret_column", json.dumps(response.data))


class JSONFormatterTests(SimpleTestCase):

    def test_scrubs_and_carries_context(self):
        record = logging.LogRecord("apps.payments", logging.INFO, __file__, 1, {"signature": "abc", "amount": "10"}, None, None)
        record.order_id = "o-1"

        line = json.loads(JSONFormatter().format(record))

        self.assertIn("REDACTED", line["msg"])
        self.assertNotIn("abc", line["msg"])
        self.assertEqual(line["order_id"], "o-1")


class ValidatorTests(SimpleTestCase):

    def test_lat_lng_validator(self):
        validate_lat_lng(12.9716, 77.5946)

        with self.assertRaises(ValueError):
            validate_lat_lng(91.0, 77.5946)

        with self.assertRaises(ValueError):
            validate_lat_lng(12.9716, 181.0)

    def test_coordinates_validator(self):
        self.assertEqual(
            validate_coordinates({"latitude": 1, "longitude": 2}), {"latitude": 1, "longitude": 2}
        )
        with self.assertRaises(serializers.ValidationError):
            validate_coordinates({"latitude": 1})
        with self.assertRaises(serializers.ValidationError):
            validate_coordinates({"latitude": 100, "longitude": 2})
