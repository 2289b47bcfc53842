import mongomock
import pytest
from fastapi.testclient import TestClient

from cache import ProductCache
from database import Counter, MongoStore
from events import EventBus
from main import create_app
from services import CatalogService, OrderService, TrackingService


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingBus(EventBus):
    """Keeps every published event, plus the cache state at publish time."""

    def __init__(self, cache=None):
        super().__init__()
        self.cache = cache
        self.events = []
        self.cache_seen = []

    def publish(self, kind, payload):
        self.events.append((kind.value, payload))
        if self.cache is not None:
            self.cache_seen.append(self.cache.get())
        super().publish(kind, payload)

    def kinds(self):
        return [kind for kind, _ in self.events]


class CountingStore(MongoStore):
    def __init__(self, collection, key):
        super().__init__(collection, key)
        self.find_calls = 0

    def find(self, filter=None, sort=None):
        self.find_calls += 1
        return super().find(filter, sort)


@pytest.fixture
def db():
    return mongomock.MongoClient()["shop_test"]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ProductCache(ttl=60, clock=clock)


@pytest.fixture
def bus(cache):
    return RecordingBus(cache)


@pytest.fixture
def product_store(db):
    store = CountingStore(db["product"], "id")
    store.ensure_indexes()
    return store


@pytest.fixture
def catalog(db, product_store, cache, bus):
    return CatalogService(product_store, Counter(db["counters"], "product"), cache, bus, sort="id")


@pytest.fixture
def orders(db, bus):
    store = MongoStore(db["order"], "orderId")
    store.ensure_indexes()
    return OrderService(store, bus)


@pytest.fixture
def tracking(db, bus):
    store = MongoStore(db["tracking"], "qrId")
    store.ensure_indexes()
    return TrackingService(store, bus)


@pytest.fixture
def app(db):
    return create_app(database=db)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
