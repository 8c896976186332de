import threading

import pytest

from pelico.config import ReconcilerSettings
from pelico.database.db import DBManager
from pelico.database.ops import LibraryStore
from pelico.metadata.cache import MetadataCache
from pelico.metadata.resolver import MetadataResolver
from pelico.models import MetadataCandidate
from pelico.reconciler import BatchReconciler


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeCatalog:
    """
    In-memory catalog keyed by exact title. Counts calls so tests can check
    that the cache shields it.
    """

    def __init__(self, entries=None, error=None):
        self.entries = dict(entries or {})
        self.error = error
        self.calls = []
        self._lock = threading.Lock()

    def search(self, title, platform=None):
        with self._lock:
            self.calls.append((title, platform))
        if self.error is not None:
            raise self.error
        return [MetadataCandidate(**dict(row)) for row in self.entries.get(title, [])]


@pytest.fixture
def db_manager():
    """Returns a DBManager on an in-memory SQLite database with the schema initialized."""
    manager = DBManager(":memory:")
    manager.connect()
    try:
        yield manager
    finally:
        manager.close()


@pytest.fixture
def conn(db_manager):
    return db_manager.connect()


@pytest.fixture
def store(db_manager):
    """Returns a LibraryStore attached to the in-memory DB."""
    return LibraryStore(db_manager.connect(), db_manager.lock)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def cache(clock):
    return MetadataCache(ttl=60.0, clock=clock)


@pytest.fixture
def resolver(catalog, cache):
    r = MetadataResolver(catalog, cache, max_in_flight=2, timeout=2.0)
    try:
        yield r
    finally:
        r.close()


@pytest.fixture
def settings():
    return ReconcilerSettings(hash_workers=2, catalog_workers=2)


@pytest.fixture
def reconciler(store, resolver, settings):
    return BatchReconciler(store, resolver, settings=settings)
