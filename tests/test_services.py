import pytest

from cache import ProductCache
from database import Counter
from errors import ConflictError, NotFoundError, StoreUnavailableError, ValidationError
from services import CatalogService
from tests.conftest import CountingStore


def screenshot(size: int) -> dict:
    prefix = "data:image/png;base64,"
    return {"data": prefix + "A" * (size - len(prefix)), "filename": "upi.png", "uploadedAt": "2024-05-01T10:00:00"}


def make_order(order_id="ORD-1", **extra):
    order = {
        "orderId": order_id,
        "customer": {"name": "Asha", "phone": "9876543210", "address": "12 MG Road"},
        "items": [{"productId": 1, "name": "Widget", "price": 100.0, "quantity": 2}],
        "total": 200.0,
        "paymentMethod": "upi",
    }
    order.update(extra)
    return order


# ---------------------- Catalog ----------------------

def test_product_lifecycle(catalog, bus):
    created = catalog.create_product({"name": "Widget", "price": 100})
    assert bus.events[-1] == ("product-added", created)
    assert isinstance(created["id"], int)
    assert created in catalog.list_products()

    updated = catalog.patch_product(created["id"], {"price": 120})
    assert bus.events[-1] == ("product-updated", updated)
    [listed] = catalog.list_products()
    assert listed["price"] == 120
    assert listed["name"] == "Widget"

    catalog.delete_product(created["id"])
    assert bus.events[-1] == ("product-deleted", {"id": created["id"]})
    assert catalog.list_products() == []


def test_every_write_invalidates_before_publishing(catalog, bus):
    product = catalog.create_product({"name": "Widget", "price": 100})
    catalog.list_products()
    catalog.patch_product(product["id"], {"price": 1})
    catalog.list_products()
    catalog.delete_product(product["id"])
    assert bus.kinds() == ["product-added", "product-updated", "product-deleted"]
    assert bus.cache_seen == [None, None, None]


def test_reads_within_window_hit_cache(catalog, product_store):
    catalog.create_product({"name": "Widget", "price": 100})
    first = catalog.list_products()
    second = catalog.list_products()
    assert first == second
    assert product_store.find_calls == 1


def test_cache_expires_after_window(catalog, product_store, clock):
    catalog.list_products()
    clock.advance(61)
    catalog.list_products()
    assert product_store.find_calls == 2


def test_read_after_writes_reflects_all_of_them(catalog):
    catalog.list_products()
    ids = [catalog.create_product({"name": f"P{n}", "price": n})["id"] for n in range(5)]
    catalog.list_products()
    catalog.patch_product(ids[0], {"badge": "Sale"})
    catalog.delete_product(ids[4])
    products = catalog.list_products()
    assert [p["id"] for p in products] == ids[:4]
    assert products[0]["badge"] == "Sale"


def test_patch_only_touches_supplied_fields(catalog):
    product = catalog.create_product(
        {"name": "Phone case", "category": "Accessories", "price": 100, "originalPrice": 150, "inStock": True}
    )
    updated = catalog.patch_product(product["id"], {"price": 50})
    assert updated["price"] == 50
    for field in ("name", "category", "originalPrice", "inStock", "createdAt"):
        assert updated[field] == product[field]


def test_patch_cannot_change_identity(catalog):
    product = catalog.create_product({"name": "Widget"})
    with pytest.raises(ValidationError):
        catalog.patch_product(product["id"], {"id": product["id"] + 1})


def test_patch_missing_product(catalog, bus):
    with pytest.raises(NotFoundError):
        catalog.patch_product(404, {"price": 1})
    assert bus.events == []


def test_empty_patch_returns_product_without_broadcast(catalog, bus):
    product = catalog.create_product({"name": "Widget"})
    assert catalog.patch_product(product["id"], {}) == product
    assert bus.kinds() == ["product-added"]


def test_delete_missing_product_leaves_cache_and_bus_alone(catalog, cache, bus):
    catalog.list_products()
    with pytest.raises(NotFoundError):
        catalog.delete_product(999)
    assert cache.get() is not None
    assert bus.events == []


def test_explicit_and_assigned_ids(catalog):
    assert catalog.create_product({"id": 10, "name": "Ten"})["id"] == 10
    assert catalog.create_product({"name": "Next"})["id"] == 11


def test_assigned_ids_skip_ids_already_in_collection(db, catalog, bus):
    db["product"].insert_one({"id": 1, "name": "Seeded"})
    db["product"].insert_one({"id": 4, "name": "Seeded too"})
    created = catalog.create_product({"name": "New"})
    assert created["id"] == 5
    assert catalog.create_product({"name": "Newer"})["id"] == 6
    assert bus.kinds() == ["product-added", "product-added"]


def test_duplicate_id_rejected_without_invalidating(catalog, cache, bus):
    catalog.create_product({"id": 1, "name": "One"})
    catalog.list_products()
    with pytest.raises(ConflictError) as excinfo:
        catalog.create_product({"id": 1, "name": "Again"})
    assert isinstance(excinfo.value, ValidationError)
    assert cache.get() is not None
    assert bus.kinds() == ["product-added"]


def test_non_integer_id_rejected(catalog):
    with pytest.raises(ValidationError):
        catalog.create_product({"id": "abc", "name": "Bad"})


def test_sort_by_id_is_ascending(catalog):
    for product_id in (3, 1, 2):
        catalog.create_product({"id": product_id, "name": str(product_id)})
    assert [p["id"] for p in catalog.list_products()] == [1, 2, 3]


def test_sort_newest_first(db, cache, bus):
    store = CountingStore(db["product"], "id")
    catalog = CatalogService(store, Counter(db["counters"], "product"), cache, bus, sort="newest")
    for product_id in (3, 1, 2):
        catalog.create_product({"id": product_id, "name": str(product_id)})
    assert [p["id"] for p in catalog.list_products()] == [2, 1, 3]


def test_unknown_sort_policy(db, cache, bus, product_store):
    with pytest.raises(ValueError):
        CatalogService(product_store, Counter(db["counters"], "product"), cache, bus, sort="price")


def test_populate_racing_a_write_is_discarded(db, cache, bus):
    class RacingStore(CountingStore):
        def find(self, filter=None, sort=None):
            result = super().find(filter, sort)
            if self.find_calls == 1:
                # a write lands while this read is still in flight
                catalog.create_product({"name": "Late"})
            return result

    store = RacingStore(db["product"], "id")
    catalog = CatalogService(store, Counter(db["counters"], "product"), cache, bus)
    assert catalog.list_products() == []
    assert cache.get() is None
    assert [p["name"] for p in catalog.list_products()] == ["Late"]


def test_cache_fault_degrades_to_miss(db, product_store, bus):
    class BrokenCache(ProductCache):
        def get(self):
            raise RuntimeError("slot corrupted")

    catalog = CatalogService(product_store, Counter(db["counters"], "product"), BrokenCache(), bus)
    catalog.create_product({"name": "Widget"})
    assert [p["name"] for p in catalog.list_products()] == ["Widget"]


def test_store_outage_leaves_cache_untouched(catalog, cache, product_store, monkeypatch):
    catalog.create_product({"name": "Widget"})
    version = cache.version

    def unavailable(*args, **kwargs):
        raise StoreUnavailableError("timed out")

    monkeypatch.setattr(product_store, "find", unavailable)
    with pytest.raises(StoreUnavailableError):
        catalog.list_products()
    assert cache.get() is None
    assert cache.version == version


# ---------------------- Orders ----------------------

def test_create_order_defaults(orders, bus):
    order = orders.create(make_order())
    assert order["status"] == "Pending"
    assert order["orderDate"]
    assert bus.events == [("order-added", order)]


def test_duplicate_order_id(orders):
    orders.create(make_order())
    with pytest.raises(ConflictError):
        orders.create(make_order())


def test_order_requires_id(orders):
    with pytest.raises(ValidationError):
        orders.create(make_order(order_id=""))


def test_oversized_screenshot_is_rejected_and_not_stored(orders, bus):
    with pytest.raises(ValidationError):
        orders.create(make_order(paymentScreenshot=screenshot(10 * 1024 * 1024 + 1)))
    assert orders.list() == []
    assert bus.events == []


def test_screenshot_at_limit_is_accepted(orders):
    order = orders.create(make_order(paymentScreenshot=screenshot(10 * 1024 * 1024)))
    assert order["paymentScreenshot"]["filename"] == "upi.png"


def test_screenshot_must_be_image_data(orders):
    with pytest.raises(ValidationError):
        orders.create(make_order(paymentScreenshot={"data": "data:text/plain;base64,aGk="}))


def test_update_order_status(orders, bus):
    orders.create(make_order())
    updated = orders.update("ORD-1", {"status": "Shipped"})
    assert updated["status"] == "Shipped"
    assert updated["items"] == make_order()["items"]
    assert bus.events[-1] == ("order-updated", updated)


def test_order_items_cannot_be_rewritten(orders):
    orders.create(make_order())
    with pytest.raises(ValidationError):
        orders.update("ORD-1", {"items": []})


def test_update_checks_screenshot(orders):
    orders.create(make_order())
    with pytest.raises(ValidationError):
        orders.update("ORD-1", {"paymentScreenshot": {"data": "not an image"}})


def test_update_missing_order(orders):
    with pytest.raises(NotFoundError):
        orders.update("NOPE", {"status": "Shipped"})


def test_delete_order(orders, bus):
    orders.create(make_order())
    orders.delete("ORD-1")
    assert bus.events[-1] == ("order-deleted", {"orderId": "ORD-1"})
    with pytest.raises(NotFoundError):
        orders.get("ORD-1")
    with pytest.raises(NotFoundError):
        orders.delete("ORD-1")


def test_orders_listed_newest_first(orders):
    orders.create(make_order("A", orderDate="2024-01-01T00:00:00"))
    orders.create(make_order("B", orderDate="2024-03-01T00:00:00"))
    orders.create(make_order("C", orderDate="2024-02-01T00:00:00"))
    assert [o["orderId"] for o in orders.list()] == ["B", "C", "A"]


# ---------------------- Tracking ----------------------

def test_tracking_lifecycle(tracking, bus):
    record = tracking.create(
        {"qrId": "QR-7", "qrPassword": "1234", "status": "Received", "createdAt": "2024-05-01T09:00:00"}
    )
    assert record["createdAt"] == "2024-05-01T09:00:00"
    updated = tracking.update("QR-7", {"status": "Repairing", "lastUpdated": "2024-05-02T09:00:00"})
    assert updated["qrPassword"] == "1234"
    assert tracking.get("QR-7")["status"] == "Repairing"
    tracking.delete("QR-7")
    assert bus.kinds() == ["tracking-added", "tracking-updated", "tracking-deleted"]
    assert bus.events[-1][1] == {"qrId": "QR-7"}


def test_tracking_key_cannot_change(tracking):
    tracking.create({"qrId": "QR-7"})
    with pytest.raises(ValidationError):
        tracking.update("QR-7", {"qrId": "QR-8"})


def test_tracking_listed_newest_first(tracking):
    tracking.create({"qrId": "A", "createdAt": "2024-01-01"})
    tracking.create({"qrId": "B", "createdAt": "2024-02-01"})
    assert [t["qrId"] for t in tracking.list()] == ["B", "A"]
