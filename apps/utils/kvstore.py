"""
Short-lived keyed values with TTL (circuit breaker counters, WebSocket
tickets, alert de-duplication).

Callers receive a store instance instead of touching a module-level dict, so
tests can inject ``InMemoryKeyValueStore`` while production points
``KEY_VALUE_STORE`` at the Redis-backed Django cache.
"""
import functools
import threading
import time

from django.conf import settings
from django.core.cache import caches
from django.utils.module_loading import import_string


class KeyValueStore:
    """Interface shared by every backend. ``ttl`` is in seconds, None = no expiry."""

    def get(self, key, default=None):
        raise NotImplementedError

    def set(self, key, value, ttl=None):
        raise NotImplementedError

    def add(self, key, value, ttl=None) -> bool:
        """Set only if the key is absent. Returns True when the value was stored."""
        raise NotImplementedError

    def incr(self, key, ttl=None) -> int:
        """Increment a counter, creating it with ``ttl`` on first use."""
        raise NotImplementedError

    def delete(self, key) -> bool:
        """Returns True only for the caller that actually removed the key."""
        raise NotImplementedError

    def pop(self, key, default=None):
        """Read and remove. Of several concurrent callers only one gets the value."""
        value = self.get(key)
        if value is None or not self.delete(key):
            return default
        return value


class CacheKeyValueStore(KeyValueStore):
    """Backed by a Django cache alias (django-redis in production)."""

    def __init__(self, alias="default"):
        self.alias = alias

    @property
    def cache(self):
        return caches[self.alias]

    def get(self, key, default=None):
        return self.cache.get(key, default)

    def set(self, key, value, ttl=None):
        self.cache.set(key, value, timeout=ttl)

    def add(self, key, value, ttl=None):
        return bool(self.cache.add(key, value, timeout=ttl))

    def incr(self, key, ttl=None):
        # add() is a no-op when the counter already exists, so the TTL window
        # starts at the first increment
        self.cache.add(key, 0, timeout=ttl)
        try:
            return self.cache.incr(key)
        except ValueError:
            # Expired between add() and incr()
            self.cache.set(key, 1, timeout=ttl)
            return 1

    def delete(self, key):
        # Django >= 3.1 backends (django-redis included) report whether a key was removed
        return bool(self.cache.delete(key))


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store for tests and single-process development."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data = {}
        self._lock = threading.Lock()

    def _expiry(self, ttl):
        return None if ttl is None else self._clock() + ttl

    def _live(self, key):
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return item

    def get(self, key, default=None):
        with self._lock:
            item = self._live(key)
            return default if item is None else item[0]

    def set(self, key, value, ttl=None):
        with self._lock:
            self._data[key] = (value, self._expiry(ttl))

    def add(self, key, value, ttl=None):
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, self._expiry(ttl))
            return True

    def incr(self, key, ttl=None):
        with self._lock:
            item = self._live(key)
            if item is None:
                self._data[key] = (1, self._expiry(ttl))
                return 1
            value, expires_at = item
            self._data[key] = (value + 1, expires_at)
            return value + 1

    def delete(self, key):
        with self._lock:
            return self._data.pop(key, None) is not None

    def pop(self, key, default=None):
        with self._lock:
            item = self._live(key)
            if item is None:
                return default
            del self._data[key]
            return item[0]


@functools.lru_cache(maxsize=None)
def get_key_value_store() -> KeyValueStore:
    """Instantiate the backend configured in ``settings.KEY_VALUE_STORE``."""
    backend = import_string(
        getattr(settings, "KEY_VALUE_STORE", "apps.utils.kvstore.CacheKeyValueStore")
    )
    options = getattr(settings, "KEY_VALUE_STORE_OPTIONS", {})
    return backend(**options)
