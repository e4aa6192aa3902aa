import functools
import logging

from apps.utils.exceptions import UpstreamUnavailable
from apps.utils.kvstore import get_key_value_store

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """
    Opens after `failure_threshold` failures inside `failure_window` seconds and
    rejects calls for `recovery_timeout` seconds. State lives in the key-value
    store so every worker sees the same circuit.
    """

    def __init__(self, service_name, failure_threshold=5, recovery_timeout=60,
                 failure_window=120, store=None):
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_window = failure_window
        self._store = store
        self.cache_key_failures = f"cb_failures:{service_name}"
        self.cache_key_open = f"cb_open:{service_name}"

    @property
    def store(self):
        return self._store or get_key_value_store()

    @property
    def is_open(self):
        return bool(self.store.get(self.cache_key_open))

    def record_failure(self):
        failures = self.store.incr(self.cache_key_failures, ttl=self.failure_window)
        if failures >= self.failure_threshold:
            logger.warning(f"Circuit OPEN for {self.service_name} after {failures} failures")
            self.store.set(self.cache_key_open, "OPEN", ttl=self.recovery_timeout)
            self.store.delete(self.cache_key_failures)

    def record_success(self):
        self.store.delete(self.cache_key_failures)

    def __call__(self, func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if self.is_open:
                raise UpstreamUnavailable(
                    f"{self.service_name} is temporarily unavailable."
                )

            try:
                result = func(*args, **kwargs)
            except Exception:
                self.record_failure()
                raise

            self.record_success()
            return result

        return wrapper
