"""
Business operations behind the HTTP routes.

Every write follows the same sequence: write to MongoDB, then (catalog only)
invalidate the product cache, then publish the change event, then return.
Nothing is invalidated or published when the write fails.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import config
from cache import ProductCache, Snapshot
from database import Counter, MongoStore, SortSpec
from errors import NotFoundError, ValidationError
from events import EventBus, EventKind

logger = logging.getLogger(__name__)

PRODUCT_SORTS: Dict[str, SortSpec] = {
    "id": [("id", 1)],
    # ObjectIds grow with insertion time
    "newest": [("_id", -1)],
}

SCREENSHOT_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CatalogService:
    """Product CRUD. The only code allowed to touch the product cache."""

    def __init__(
        self,
        store: MongoStore,
        counter: Counter,
        cache: ProductCache,
        bus: EventBus,
        sort: Optional[str] = None,
    ):
        sort = sort or config.PRODUCT_SORT
        if sort not in PRODUCT_SORTS:
            raise ValueError(f"Unknown product sort policy: {sort!r}")
        self.store = store
        self.counter = counter
        self.cache = cache
        self.bus = bus
        self.sort = PRODUCT_SORTS[sort]
        self._seeded = False

    # -- cache access is best-effort: any fault is a miss --

    def _read_cache(self) -> Tuple[Optional[Snapshot], Optional[int]]:
        try:
            return self.cache.get(), self.cache.version
        except Exception:
            logger.warning("Product cache read failed, treating as miss", exc_info=True)
            return None, None

    def _fill_cache(self, products: List[Dict[str, Any]], version: Optional[int]) -> None:
        if version is None:
            return
        try:
            self.cache.populate(products, version)
        except Exception:
            logger.warning("Product cache populate failed", exc_info=True)

    def list_products(self) -> List[Dict[str, Any]]:
        cached, version = self._read_cache()
        if cached is not None:
            logger.debug("Product cache hit (%d products)", len(cached))
            return list(cached)
        logger.debug("Product cache miss")
        products = self.store.find(sort=self.sort)
        self._fill_cache(products, version)
        return products

    def get_product(self, product_id: int) -> Dict[str, Any]:
        product = self.store.find_one({"id": product_id})
        if product is None:
            raise NotFoundError("Product not found")
        return product

    def _next_id(self) -> int:
        if not self._seeded:
            # ids already in the collection may predate the sequence
            self.counter.bump(self.store.max_value("id"))
            self._seeded = True
        return self.counter.next()

    def create_product(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(data)
        product_id = record.get("id")
        if product_id is None:
            record["id"] = self._next_id()
        elif isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError("Product id must be an integer")
        else:
            self.counter.bump(product_id)
        now = _now()
        record.update({"createdAt": now, "updatedAt": now})

        product = self.store.insert(record)
        self.cache.invalidate()
        self.bus.publish(EventKind.PRODUCT_ADDED, product)
        logger.info("Product %s created", product["id"])
        return product

    def patch_product(self, product_id: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``fields`` into the product. Fields not supplied are left alone."""
        fields = dict(fields)
        if fields.get("id", product_id) != product_id:
            raise ValidationError("Product id cannot be changed")
        fields.pop("id", None)
        if not fields:
            return self.get_product(product_id)

        fields["updatedAt"] = _now()
        product = self.store.update_one({"id": product_id}, fields)
        if product is None:
            raise NotFoundError("Product not found")
        self.cache.invalidate()
        self.bus.publish(EventKind.PRODUCT_UPDATED, product)
        logger.info("Product %s updated (%s)", product_id, ", ".join(sorted(fields)))
        return product

    def delete_product(self, product_id: int) -> None:
        if self.store.delete_one({"id": product_id}) is None:
            raise NotFoundError("Product not found")
        self.cache.invalidate()
        self.bus.publish(EventKind.PRODUCT_DELETED, {"id": product_id})
        logger.info("Product %s deleted", product_id)


class _RecordService:
    """Write-through CRUD keyed by a business identity, no caching."""

    label = "Record"
    added: EventKind
    updated: EventKind
    deleted: EventKind
    sort: SortSpec = []
    immutable_fields: Tuple[str, ...] = ()

    def __init__(self, store: MongoStore, bus: EventBus):
        self.store = store
        self.bus = bus

    @property
    def key(self) -> str:
        return self.store.key

    def check(self, data: Dict[str, Any]) -> None:
        """Hook for record-specific validation on create and update."""

    def prepare(self, record: Dict[str, Any]) -> None:
        """Hook for defaults applied on create."""

    def list(self) -> List[Dict[str, Any]]:
        return self.store.find(sort=self.sort)

    def get(self, key: str) -> Dict[str, Any]:
        record = self.store.find_one({self.key: key})
        if record is None:
            raise NotFoundError(f"{self.label} not found")
        return record

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(data)
        if not record.get(self.key):
            raise ValidationError(f"{self.key} is required")
        self.check(record)
        self.prepare(record)
        created = self.store.insert(record)
        self.bus.publish(self.added, created)
        logger.info("%s %s created", self.label, created[self.key])
        return created

    def update(self, key: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        fields = dict(fields)
        if fields.get(self.key, key) != key:
            raise ValidationError(f"{self.key} cannot be changed")
        fields.pop(self.key, None)
        for name in self.immutable_fields:
            if name in fields:
                raise ValidationError(f"{name} cannot be changed")
        self.check(fields)
        if not fields:
            return self.get(key)

        record = self.store.update_one({self.key: key}, fields)
        if record is None:
            raise NotFoundError(f"{self.label} not found")
        self.bus.publish(self.updated, record)
        logger.info("%s %s updated (%s)", self.label, key, ", ".join(sorted(fields)))
        return record

    def delete(self, key: str) -> None:
        if self.store.delete_one({self.key: key}) is None:
            raise NotFoundError(f"{self.label} not found")
        self.bus.publish(self.deleted, {self.key: key})
        logger.info("%s %s deleted", self.label, key)


class TrackingService(_RecordService):
    label = "Tracking record"
    added = EventKind.TRACKING_ADDED
    updated = EventKind.TRACKING_UPDATED
    deleted = EventKind.TRACKING_DELETED
    # createdAt is a client-supplied string
    sort = [("createdAt", -1)]


class OrderService(_RecordService):
    label = "Order"
    added = EventKind.ORDER_ADDED
    updated = EventKind.ORDER_UPDATED
    deleted = EventKind.ORDER_DELETED
    sort = [("orderDate", -1)]
    # line items are snapshots taken at checkout
    immutable_fields = ("items",)

    def __init__(self, store: MongoStore, bus: EventBus, max_screenshot_bytes: Optional[int] = None):
        super().__init__(store, bus)
        self.max_screenshot_bytes = (
            config.MAX_SCREENSHOT_BYTES if max_screenshot_bytes is None else max_screenshot_bytes
        )

    def check(self, data: Dict[str, Any]) -> None:
        screenshot = data.get("paymentScreenshot")
        if not screenshot:
            return
        payload = screenshot.get("data") or ""
        if not SCREENSHOT_PREFIX.match(payload):
            raise ValidationError("Payment screenshot must be a base64 image data URL")
        size = len(payload.encode("utf-8"))
        if size > self.max_screenshot_bytes:
            raise ValidationError(
                f"Payment screenshot is too large ({size} bytes, limit {self.max_screenshot_bytes})"
            )

    def prepare(self, record: Dict[str, Any]) -> None:
        record.setdefault("status", "Pending")
        if not record.get("orderDate"):
            record["orderDate"] = _now().isoformat()
