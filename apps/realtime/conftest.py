import pytest


@pytest.fixture(autouse=True)
def _allow_consumer_connection_housekeeping(django_db_blocker):
    # Consumers run database_sync_to_async, which calls close_old_connections()
    # on the shared executor thread. When earlier DB tests left a connection
    # open there, pytest-django's blocker would reject that housekeeping check
    # (Django's own test runner does not block it).
    with django_db_blocker.unblock():
        yield
