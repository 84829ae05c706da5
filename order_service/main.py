"""
Orders service — FastAPI.

POST /orders                create an order and queue it for preparation
GET  /orders                list orders
GET  /orders/{id}           one order
GET  /orders/{id}/details   detail view (dish block + processing time once completed)
GET  /orders/logs, /logs    query the system log table
GET  /api/v1/health         health / readiness
GET  /api/v1/status         dependency connectivity
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Literal, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import settings
from .context import ServiceContext
from .errors import OrderServiceError
from .logsink import configure_logging

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Models ───────────────────────────────────────────────────────

class OrderCreated(BaseModel):
    orderId: str
    status: str


class OrderSummary(BaseModel):
    orderId: str
    status: str
    dish: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None
    createdAt: datetime
    finishedAt: Optional[datetime] = None


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context


# ── Routes ───────────────────────────────────────────────────────

@router.get("/api/v1/health")
def health():
    return {"up": True}


@router.get("/api/v1/status")
def status(ctx: ServiceContext = Depends(get_context)):
    return {
        "service": ctx.settings.SERVICE_NAME,
        "ts": datetime.now(timezone.utc).isoformat(),
        "postgres": ctx.store.status(),
        "queue": ctx.queue.status(),
    }


@router.post("/orders", status_code=202, response_model=OrderCreated)
def create_order(ctx: ServiceContext = Depends(get_context)):
    order = ctx.orders.create_order()
    return OrderCreated(orderId=order.id, status=order.status.value)


@router.get("/orders", response_model=list[OrderSummary])
def list_orders(ctx: ServiceContext = Depends(get_context)):
    return [OrderSummary(**o.summary()) for o in ctx.orders.list_orders()]


# Declared before /orders/{order_id} so "logs" is not taken for an id.
@router.get("/orders/logs")
@router.get("/logs")
def list_logs(
    service: Optional[str] = Query(None),
    level: Optional[Literal["info", "warning", "error", "debug"]] = Query(None),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    limit: int = Query(100, ge=1, le=1000),
    skip: int = Query(0, ge=0),
    ctx: ServiceContext = Depends(get_context),
):
    return ctx.logs.query(
        service=service, level=level, start=start_date, end=end_date, limit=limit, skip=skip
    )


@router.get("/orders/{order_id}", response_model=OrderSummary)
def get_order(order_id: str, ctx: ServiceContext = Depends(get_context)):
    return OrderSummary(**ctx.orders.get_order(order_id).summary())


@router.get("/orders/{order_id}/details")
def get_order_details(order_id: str, ctx: ServiceContext = Depends(get_context)):
    return ctx.orders.get_order_details(order_id)


# ── App ──────────────────────────────────────────────────────────

async def service_error_handler(request: Request, exc: OrderServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        detail = "unable to process the request"
    else:
        detail = str(exc)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.reason, "detail": detail})


def create_app(context: Optional[ServiceContext] = None, start_consumers: bool = True) -> FastAPI:
    ctx = context or ServiceContext.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(ctx.settings.LOG_LEVEL)
        try:
            await asyncio.to_thread(ctx.connect)
        except OrderServiceError as exc:
            logger.critical("orders service could not connect to its backends: %s", exc)
            sys.exit(1)

        store_handler, listener = ctx.logs.background_handler()
        listener.start()
        service_logger = logging.getLogger("order_service")
        service_logger.addHandler(store_handler)

        consumers = ctx.consumers() if start_consumers else []
        for consumer in consumers:
            consumer.start()
        app.state.consumers = consumers
        logger.info("orders service listening on port %s", ctx.settings.APP_PORT)
        try:
            yield
        finally:
            for consumer in consumers:
                await consumer.stop()
            service_logger.removeHandler(store_handler)
            listener.stop()
            ctx.close()

    app = FastAPI(title="orders-service", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.context = ctx
    app.state.consumers = []
    app.add_exception_handler(OrderServiceError, service_error_handler)
    app.include_router(router)
    return app


app = create_app()


def run():
    configure_logging(settings.LOG_LEVEL)
    uvicorn.run(app, host="0.0.0.0", port=settings.APP_PORT)


if __name__ == "__main__":
    run()
