import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, Request, WebSocket
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import config
from cache import ProductCache
from database import Counter, MongoStore, get_database
from errors import ServiceError
from events import EventBus, Subscription
from notifications import SmsNotifier
from schemas import (
    CamelModel,
    Customer,
    Order,
    OrderItem,
    OrderUpdate,
    Product,
    ProductUpdate,
    TrackingRecord,
    TrackingUpdate,
)
from services import CatalogService, OrderService, TrackingService

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------- Wiring ----------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    for store in app.state.stores:
        try:
            await run_in_threadpool(store.ensure_indexes)
        except ServiceError as e:
            logger.error("Could not create indexes on %s: %s", store.name, e.message)
    yield


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app(
    database: Optional[Database] = None,
    cache: Optional[ProductCache] = None,
    bus: Optional[EventBus] = None,
    product_sort: Optional[str] = None,
) -> FastAPI:
    """Build the API around one database and one in-process cache and bus."""
    db = database if database is not None else get_database()
    cache = cache or ProductCache()
    bus = bus or EventBus()

    products = MongoStore(db["product"], "id")
    tracking = MongoStore(db["tracking"], "qrId")
    orders = MongoStore(db["order"], "orderId")

    app = FastAPI(title="Shop API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ServiceError, service_error_handler)

    app.state.db = db
    app.state.stores = [products, tracking, orders]
    app.state.bus = bus
    app.state.catalog = CatalogService(products, Counter(db["counters"], "product"), cache, bus, sort=product_sort)
    app.state.tracking = TrackingService(tracking, bus)
    app.state.orders = OrderService(orders, bus)
    app.state.notifier = SmsNotifier()

    app.include_router(router)
    return app


def get_catalog(request: Request) -> CatalogService:
    return request.app.state.catalog


def get_tracking(request: Request) -> TrackingService:
    return request.app.state.tracking


def get_orders(request: Request) -> OrderService:
    return request.app.state.orders


# ---------------------- Schemas ----------------------

class OrderDetails(CamelModel):
    id: Union[str, int]
    customer: Customer
    items: List[OrderItem]
    total: float
    payment_method: str


class SmsRequest(CamelModel):
    order_details: OrderDetails
    owner_phone: Optional[str] = None


# ---------------------- Root & Health ----------------------

@router.get("/")
def read_root():
    return {"message": "Shop FastAPI Backend Running"}


@router.get("/test")
def test_database(request: Request):
    db = request.app.state.db
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": getattr(db, "name", None),
        "subscribers": request.app.state.bus.subscriber_count,
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


# ---------------------- Products ----------------------

@router.get("/api/products")
def list_products(catalog: CatalogService = Depends(get_catalog)) -> List[Dict[str, Any]]:
    return catalog.list_products()


@router.post("/api/products")
def create_product(product: Product, catalog: CatalogService = Depends(get_catalog)) -> Dict[str, Any]:
    return catalog.create_product(product.to_document())


@router.api_route("/api/products/{product_id}", methods=["PATCH", "PUT"])
def update_product(
    product_id: int, payload: ProductUpdate, catalog: CatalogService = Depends(get_catalog)
) -> Dict[str, Any]:
    return catalog.patch_product(product_id, payload.to_document(partial=True))


@router.delete("/api/products/{product_id}")
def delete_product(product_id: int, catalog: CatalogService = Depends(get_catalog)) -> Dict[str, bool]:
    catalog.delete_product(product_id)
    return {"success": True}


# ---------------------- Tracking ----------------------

@router.get("/api/tracking")
def list_tracking(service: TrackingService = Depends(get_tracking)) -> List[Dict[str, Any]]:
    return service.list()


@router.get("/api/tracking/{qr_id}")
def get_tracking_record(qr_id: str, service: TrackingService = Depends(get_tracking)) -> Dict[str, Any]:
    return service.get(qr_id)


@router.post("/api/tracking")
def create_tracking(record: TrackingRecord, service: TrackingService = Depends(get_tracking)) -> Dict[str, Any]:
    return service.create(record.to_document())


@router.put("/api/tracking/{qr_id}")
def update_tracking(
    qr_id: str, payload: TrackingUpdate, service: TrackingService = Depends(get_tracking)
) -> Dict[str, Any]:
    return service.update(qr_id, payload.to_document(partial=True))


@router.delete("/api/tracking/{qr_id}")
def delete_tracking(qr_id: str, service: TrackingService = Depends(get_tracking)) -> Dict[str, bool]:
    service.delete(qr_id)
    return {"success": True}


# ---------------------- Orders ----------------------

@router.get("/api/orders")
def list_orders(service: OrderService = Depends(get_orders)) -> List[Dict[str, Any]]:
    return service.list()


@router.get("/api/orders/{order_id}")
def get_order(order_id: str, service: OrderService = Depends(get_orders)) -> Dict[str, Any]:
    return service.get(order_id)


@router.post("/api/orders")
def create_order(order: Order, service: OrderService = Depends(get_orders)) -> Dict[str, Any]:
    return service.create(order.to_document())


@router.put("/api/orders/{order_id}")
def update_order(order_id: str, payload: OrderUpdate, service: OrderService = Depends(get_orders)) -> Dict[str, Any]:
    return service.update(order_id, payload.to_document(partial=True))


@router.delete("/api/orders/{order_id}")
def delete_order(order_id: str, service: OrderService = Depends(get_orders)) -> Dict[str, bool]:
    service.delete(order_id)
    return {"success": True}


@router.post("/api/send-order-sms")
def send_order_sms(req: SmsRequest, request: Request) -> Dict[str, Any]:
    notifier: SmsNotifier = request.app.state.notifier
    return notifier.send_order_sms(req.order_details.to_document(), req.owner_phone)


# ---------------------- Live events ----------------------

async def _forward(websocket: WebSocket, sub: Subscription) -> None:
    while True:
        message = await sub.next_message()
        await websocket.send_json(message)


@router.websocket("/ws")
async def events_ws(websocket: WebSocket):
    bus: EventBus = websocket.app.state.bus
    # subscribe before accepting so no event published after the handshake is missed
    sub = bus.subscribe()
    await websocket.accept()
    logger.info("Client connected: %s (%d live)", sub.id, bus.subscriber_count)

    sender = asyncio.create_task(_forward(websocket, sub))
    try:
        while True:
            # inbound messages are ignored; only the disconnect matters
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        bus.unsubscribe(sub)
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        logger.info("Client disconnected: %s (%d live)", sub.id, bus.subscriber_count)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
